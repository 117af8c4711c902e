from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException

from .config import CONFIG
from .permissions import has_moderation_authority


@dataclass
class ActorContext:
    user_id: str
    is_moderator: bool = False


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization token.")
    return parts[1]


def _decode_token(token: str) -> Dict[str, Any]:
    audience = CONFIG.jwt_audience
    try:
        return jwt.decode(
            token,
            CONFIG.jwt_secret,
            algorithms=["HS256"],
            audience=audience if audience else None,
            options={"verify_aud": bool(audience)},
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc


async def get_actor(authorization: Optional[str] = Header(None)) -> ActorContext:
    """Resolve the caller from an externally issued bearer token."""
    token = _parse_bearer_token(authorization)
    claims = _decode_token(token)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject.")
    return ActorContext(user_id=str(user_id), is_moderator=has_moderation_authority(str(user_id)))

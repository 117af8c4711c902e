"""Async client for the HTTP API plus the local-state helpers callers build on it.

``Reconciler`` applies a change locally before the server confirms it and
settles the result by request order: a response to an older request never
replaces state confirmed by a newer one. ``PagedListLoader`` allows one
"load more" in flight per list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import httpx

from .config import CONFIG

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteError(Exception):
    def __init__(self, status_code: Optional[int], kind: str, message: str, field: Optional[str] = None) -> None:
        super().__init__(f"{kind}: {message}")
        self.status_code = status_code
        self.kind = kind
        self.message = message
        self.field = field


def _error_from_response(resp: httpx.Response) -> RemoteError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return RemoteError(
            resp.status_code,
            detail.get("error", "RemoteError"),
            detail.get("message", ""),
            detail.get("field"),
        )
    message = detail if isinstance(detail, str) else (resp.text or "<empty response>")
    return RemoteError(resp.status_code, "RemoteError", message)


@dataclass
class NestlingClient:
    base_url: str
    access_token: str
    timeout: float = field(default_factory=lambda: CONFIG.remote_timeout_seconds)
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Send one request; failures raise RemoteError and are never retried here."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url.rstrip("/"),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.request(method, path, params=params, json=json, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise RemoteError(None, "Timeout", f"{method} {path} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteError(None, "NetworkError", str(exc)) from exc
        if resp.status_code >= 400:
            error = _error_from_response(resp)
            logger.info(
                "remote call failed",
                extra={"method": method, "path": path, "status": resp.status_code, "error": error.kind},
            )
            raise error
        return resp.json() if resp.content else None

    async def update_baby(self, baby_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/api/v1/babies/{baby_id}", json=payload)

    async def delete_baby(self, baby_id: int) -> None:
        await self.request("DELETE", f"/api/v1/babies/{baby_id}")

    async def list_family_members(self, baby_id: int) -> List[Dict[str, Any]]:
        return await self.request("GET", f"/api/v1/babies/{baby_id}/family-members")

    async def add_family_member(self, baby_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"/api/v1/babies/{baby_id}/family-members", json=payload)

    async def update_family_member(self, baby_id: int, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/api/v1/babies/{baby_id}/family-members/{user_id}", json=payload)

    async def set_primary(self, baby_id: int, user_id: str, is_primary: bool) -> Dict[str, Any]:
        return await self.update_family_member(baby_id, user_id, {"isPrimary": is_primary})

    async def remove_family_member(self, baby_id: int, user_id: str) -> None:
        await self.request("DELETE", f"/api/v1/babies/{baby_id}/family-members/{user_id}")

    async def submit_badge(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", "/api/v1/badge-collections", json=payload)

    async def verify_badge(self, collection_id: int, action: str, note: Optional[str] = None) -> Dict[str, Any]:
        return await self.request(
            "PATCH",
            f"/api/v1/badge-collections/{collection_id}/verify",
            json={"action": action, "verificationNote": note},
        )

    async def batch_verify(self, collection_ids: List[int], action: str, note: Optional[str] = None) -> Dict[str, Any]:
        return await self.request(
            "POST",
            "/api/v1/badge-collections/batch-verify",
            json={"collectionIds": collection_ids, "action": action, "verificationNote": note},
        )

    async def baby_collections(self, baby_id: int, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return await self.request(
            "GET",
            f"/api/v1/badge-collections/baby/{baby_id}",
            params={"page": page, "limit": limit},
        )

    async def care_tips(self, **filters: Any) -> Dict[str, Any]:
        params = {name: value for name, value in filters.items() if value is not None}
        return await self.request("GET", "/api/v1/care-tips", params=params)


@dataclass
class OptimisticCommand(Generic[T]):
    seq: int
    apply: Callable[[T], T]
    tentative: T


class Reconciler(Generic[T]):
    """Holds the displayed state for one entity and settles optimistic commands against it."""

    def __init__(self, confirmed: T) -> None:
        self.confirmed = confirmed
        self.state = confirmed
        self._last_seq = 0
        self._confirmed_seq = 0
        self._pending: Dict[int, OptimisticCommand[T]] = {}

    def begin(self, apply: Callable[[T], T]) -> OptimisticCommand[T]:
        self._last_seq += 1
        tentative = apply(self.state)
        command = OptimisticCommand(seq=self._last_seq, apply=apply, tentative=tentative)
        self._pending[command.seq] = command
        self.state = tentative
        return command

    def _replay(self) -> T:
        state = self.confirmed
        for seq in sorted(self._pending):
            if seq > self._confirmed_seq:
                state = self._pending[seq].apply(state)
        return state

    def confirm(self, command: OptimisticCommand[T], authoritative: T) -> bool:
        """Accept the server's answer unless a newer request was already confirmed."""
        self._pending.pop(command.seq, None)
        if command.seq < self._confirmed_seq:
            logger.debug("stale confirmation discarded", extra={"seq": command.seq})
            return False
        self.confirmed = authoritative
        self._confirmed_seq = command.seq
        self.state = self._replay()
        return True

    def fail(self, command: OptimisticCommand[T]) -> bool:
        """Roll the command back; returns False when a newer confirmation already covers it."""
        self._pending.pop(command.seq, None)
        if command.seq < self._confirmed_seq:
            return False
        self.state = self._replay()
        return True

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    async def run(self, apply: Callable[[T], T], remote: Callable[[], Awaitable[T]]) -> T:
        command = self.begin(apply)
        try:
            authoritative = await remote()
        except Exception:
            self.fail(command)
            raise
        self.confirm(command, authoritative)
        return self.state


class PagedListLoader(Generic[T]):
    """Accumulates pages of one list; ``fetch_page(page)`` returns an ``{items, pagination}`` dict."""

    def __init__(self, fetch_page: Callable[[int], Awaitable[Dict[str, Any]]]) -> None:
        self._fetch_page = fetch_page
        self.items: List[T] = []
        self.next_page = 1
        self.has_next_page = True
        self._loading = False
        self._generation = 0

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def load_more(self) -> Optional[List[T]]:
        if self._loading or not self.has_next_page:
            return None
        generation = self._generation
        self._loading = True
        try:
            page = await self._fetch_page(self.next_page)
        finally:
            if generation == self._generation:
                self._loading = False
        if generation != self._generation:
            # reset() ran while this page was in flight
            return None
        items = list(page.get("items", []))
        pagination = page.get("pagination") or {}
        self.items.extend(items)
        self.next_page += 1
        self.has_next_page = bool(pagination.get("hasNextPage", False))
        return items

    def reset(self) -> None:
        """Start over from page 1; a load still in flight is discarded when it lands."""
        self._generation += 1
        self._loading = False
        self.items = []
        self.next_page = 1
        self.has_next_page = True

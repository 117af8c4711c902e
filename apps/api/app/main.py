from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import initialize_db
from .routes import badges as badge_routes
from .routes import content as content_routes
from .routes import family as family_routes

logger = logging.getLogger(__name__)

initialize_db()

app = FastAPI(
    title="Nestling API",
    version="0.1.0",
    description="Family access control and badge verification for baby trackers",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(family_routes.router)
app.include_router(badge_routes.router)
app.include_router(content_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    logger.info("root request")
    return {"service": "nestling-api", "docs": "/docs"}

from __future__ import annotations

import json
from threading import Thread
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from .api_models import RecordsResponse, StatusResponse
from .errors import PublishError
from .events import latest_events
from .publisher import Publisher
from .runtime import RuntimeState
from .settings import Settings, settings as default_settings


def _decode(payload: str) -> Any:
    # Foreign values under the prefix are returned as the raw string.
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        return payload


def create_app(runtime: RuntimeState, publisher: Publisher, settings: Settings | None = None) -> FastAPI:
    """Read-only status API for a running companion."""
    cfg = settings or default_settings
    app = FastAPI(title="beachhead-companion")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        return StatusResponse(**runtime.snapshot(), ttl_s=cfg.ttl_s, poll_interval_s=cfg.poll_interval_s)

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return latest_events(limit)

    @app.get("/records", response_model=RecordsResponse)
    def records(prefix: str = "") -> RecordsResponse:
        try:
            raw = publisher.query(prefix)
        except PublishError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return RecordsResponse(prefix=prefix, entries={k: _decode(v) for k, v in raw.items()})

    return app


def serve_in_background(app: FastAPI, host: str, port: int) -> uvicorn.Server:
    """Run the API in a daemon thread; returns the server so it can be shut down."""
    # uvicorn leaves signal handling alone outside the main thread.
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    Thread(target=server.run, name="beachhead-api", daemon=True).start()
    return server

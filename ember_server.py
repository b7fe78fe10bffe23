"""Ember backend server.

Mounts the Ember review-prompt router under a FastAPI application.
Gate and skip state persist in an SQLite database under ``data/ember/``.
An optional ``config.json`` in the same directory overrides the prompt
configuration, and an optional ``engagements.json`` seeds the bundled
in-memory engagement store.

Usage::

    # Development (auto-reload)
    uvicorn ember_server:app --reload --port 8430

    # Or run directly
    python ember_server.py
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger("ember")

_DATA_DIR = Path("data/ember")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Ember API",
    description="Review-prompt eligibility and throttling engine.",
    version="0.1.0",
)

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_status: dict[str, Any] = {"loaded": False, "error": None}


def _load_json(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def build_store(data: dict[str, Any]) -> Any:
    """Build an in-memory engagement store from seed data.

    Args:
        data: Mapping with optional ``engagements``, ``initiator``,
            ``participant_id``, ``participant_engagements`` and
            ``assignment_records`` keys.

    Returns:
        A populated InMemoryEngagementStore.
    """
    from ember.src.models import AssignmentRecord, Engagement, InitiatorContext
    from ember.src.providers import InMemoryEngagementStore

    initiator = data.get("initiator")
    return InMemoryEngagementStore(
        [Engagement.from_dict(e) for e in data.get("engagements", [])],
        initiator=InitiatorContext(**initiator) if initiator else None,
        participant_id=data.get("participant_id"),
        participant_engagements=[
            Engagement.from_dict(e) for e in data.get("participant_engagements", [])
        ],
        assignment_records=[
            AssignmentRecord.from_dict(r) for r in data.get("assignment_records", [])
        ],
    )


def _mount_ember(data_dir: Path = _DATA_DIR) -> None:
    """Mount the Ember router at ``/api/ember/``.

    Initializes the SQLite key-value store, the recording sink and the
    prompt coordinator, and injects them via ``configure()``.
    """
    try:
        from ember.src.config import PromptConfig
        from ember.src.coordinator import PromptCoordinator
        from ember.src.providers import RecordingPresentationSink
        from ember.src.server import configure, router as ember_router
        from ember.src.storage import SqliteKeyValueStore

        data_dir.mkdir(parents=True, exist_ok=True)
        kv_store = SqliteKeyValueStore(data_dir / "ember.db")
        kv_store.initialize_schema()

        config = PromptConfig.from_dict(_load_json(data_dir / "config.json"))
        store = build_store(_load_json(data_dir / "engagements.json"))
        sink = RecordingPresentationSink()
        coordinator = PromptCoordinator(store, sink, kv_store, config=config)

        configure(coordinator, kv_store=kv_store, sink=sink)
        app.include_router(ember_router, prefix="/api/ember", tags=["ember"])
        _status["loaded"] = True
        logger.info("Ember router mounted at /api/ember/")
    except Exception as exc:
        _status["error"] = str(exc)
        logger.warning("Ember router failed to load: %s", exc)


@app.get("/api/health")
async def unified_health() -> dict[str, Any]:
    """Return whether the Ember router loaded.

    Returns:
        Dictionary with overall status and the load error, if any.
    """
    return {
        "status": "ok" if _status["loaded"] else "error",
        "version": "0.1.0",
        "ember": _status,
    }


_mount_ember()


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the Ember server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()

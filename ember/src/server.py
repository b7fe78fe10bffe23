"""FastAPI router for the Ember review-prompt engine.

Exposes REST endpoints for decision requests, skip recording, lifecycle
resets, and collection of presented prompts. Designed to be mounted at
``/api/ember/`` by the parent application.

Example::

    from fastapi import FastAPI
    from ember.src.server import router

    app = FastAPI()
    app.include_router(router, prefix="/api/ember")
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ember.src.coordinator import Decision, Outcome, PromptCoordinator
from ember.src.models import ContextSnapshot, Role
from ember.src.providers import InMemoryEngagementStore, RecordingPresentationSink
from ember.src.storage import KeyValueStore
from shared.hardening import (
    ErrorFormatter,
    InputValidator,
    SystemHealthChecker,
    ValidationError,
)

logger = logging.getLogger(__name__)

_VERSION = "0.1.0"

# ===================================================================
# Pydantic request models
# ===================================================================


class DecideRequest(BaseModel):
    """Request body for a decision cycle."""

    role: Role


class PresentRequest(BaseModel):
    """Request body for presenting a specific engagement (deep link)."""

    role: Role
    household_id: str = Field(default="", max_length=200)


class SkipRequest(BaseModel):
    """Request body for recording a skipped engagement."""

    engagement_id: str = Field(..., min_length=1, max_length=200)


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "coordinator": None,
    "kv_store": None,
    "sink": None,
}

_validator = InputValidator()
_formatter = ErrorFormatter()


def get_coordinator() -> PromptCoordinator:
    """Return the PromptCoordinator, raising 503 if not initialised.

    Raises:
        HTTPException: 503 if the coordinator has not been initialised.
    """
    coordinator = _state.get("coordinator")
    if coordinator is None:
        raise HTTPException(
            status_code=503,
            detail="Ember coordinator not initialised. Call configure() first.",
        )
    return coordinator


def configure(
    coordinator: PromptCoordinator,
    kv_store: KeyValueStore | None = None,
    sink: RecordingPresentationSink | None = None,
) -> None:
    """Inject dependencies into the module-level state.

    Must be called before the router handles any requests.

    Args:
        coordinator: A fully-constructed PromptCoordinator.
        kv_store: Store backing the coordinator, for health checks.
        sink: Recording sink the coordinator presents to, if any.
    """
    _state["coordinator"] = coordinator
    _state["kv_store"] = kv_store
    _state["sink"] = sink


def _validated_id(raw: str) -> str:
    try:
        return _validator.validate_identifier(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=_formatter.format_request_error(exc).to_dict(),
        ) from exc


def _decision_payload(decision: Decision) -> dict[str, Any]:
    payload = decision.to_dict()
    if decision.error is not None:
        if decision.outcome is Outcome.FETCH_FAILED:
            friendly = _formatter.format_fetch_error(decision.error)
        else:
            friendly = _formatter.format_request_error(decision.error)
        payload["error"] = friendly.to_dict()
    return payload


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    """Return Ember service health status.

    Returns:
        Dictionary with status, version, and per-component checks.
    """
    checker = SystemHealthChecker(
        kv_store=_state.get("kv_store"),
        coordinator=_state.get("coordinator"),
    )
    checks = checker.full_check()
    configured = _state.get("coordinator") is not None
    return {
        "status": "ok" if configured else "not_configured",
        "version": _VERSION,
        "components": {c.component: c.to_dict() for c in checks},
    }


@router.get("/config")
async def get_config() -> dict[str, Any]:
    """Return the active prompt configuration."""
    return get_coordinator().config.to_dict()


# -------------------------------------------------------------------
# Decisions
# -------------------------------------------------------------------


@router.post("/decide")
async def decide(request: DecideRequest) -> dict[str, Any]:
    """Run one decision cycle for the given role.

    Args:
        request: The role of the current user.

    Returns:
        The decision: whether a prompt was presented, why, and for what.
    """
    try:
        coordinator = get_coordinator()
        decision = await coordinator.evaluate(request.role)
        return _decision_payload(decision)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to evaluate review prompt")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.post("/engagements/{engagement_id}/present")
async def present_engagement(engagement_id: str, request: PresentRequest) -> dict[str, Any]:
    """Present a review for a specific engagement, bypassing the gate.

    Args:
        engagement_id: Engagement to request a review for.
        request: Role and optional household.

    Returns:
        The decision for this presentation.
    """
    engagement_id = _validated_id(engagement_id)
    try:
        coordinator = get_coordinator()
        context = None
        household_id = _validator.sanitize_string(request.household_id, max_length=200)
        engagements = coordinator.engagement_store
        if isinstance(engagements, InMemoryEngagementStore):
            found = engagements.find(engagement_id)
            if found is not None:
                context = ContextSnapshot.for_engagement(found)
                household_id = household_id or found.household_id
        decision = await coordinator.present_engagement(
            engagement_id,
            request.role,
            household_id=household_id,
            context=context,
        )
        return _decision_payload(decision)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Failed to present engagement %s", engagement_id)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/prompts")
async def list_prompts(drain: bool = False) -> dict[str, Any]:
    """List prompts handed to the recording sink.

    Args:
        drain: Remove the returned prompts from the queue.

    Returns:
        Dictionary with the presented prompts, oldest first.
    """
    get_coordinator()
    sink = _state.get("sink")
    if sink is None:
        raise HTTPException(status_code=404, detail="No recording sink configured.")
    prompts = sink.drain() if drain else sink.prompts
    return {"prompts": [p.to_dict() for p in prompts]}


# -------------------------------------------------------------------
# Skips
# -------------------------------------------------------------------


@router.post("/skips", status_code=201)
async def mark_skipped(request: SkipRequest) -> dict[str, Any]:
    """Record that the user declined to review an engagement.

    Args:
        request: The engagement to skip.

    Returns:
        The engagement ID and whether it was newly recorded.
    """
    engagement_id = _validated_id(request.engagement_id)
    coordinator = get_coordinator()
    added = coordinator.mark_skipped(engagement_id)
    return {"engagement_id": engagement_id, "skipped": True, "added": added}


@router.get("/skips")
async def list_skips() -> dict[str, Any]:
    """List skipped engagement IDs in the order they were recorded."""
    coordinator = get_coordinator()
    return {"skipped": coordinator.skips.skipped_ids()}


@router.get("/skips/{engagement_id}")
async def is_skipped(engagement_id: str) -> dict[str, Any]:
    """Report whether an engagement has been skipped."""
    engagement_id = _validated_id(engagement_id)
    coordinator = get_coordinator()
    return {"engagement_id": engagement_id, "skipped": coordinator.is_skipped(engagement_id)}


# -------------------------------------------------------------------
# Lifecycle
# -------------------------------------------------------------------


@router.post("/lifetime/reset")
async def reset_lifetime() -> dict[str, Any]:
    """Allow a new prompt opportunity; call when the host app backgrounds."""
    coordinator = get_coordinator()
    coordinator.reset_lifetime()
    return {"reset": True}


@router.post("/debug/clear")
async def clear_all() -> dict[str, Any]:
    """Wipe gate and skip state. Only available with debug bypass enabled."""
    coordinator = get_coordinator()
    if not coordinator.config.debug_bypass:
        raise HTTPException(
            status_code=403,
            detail="Clearing review state requires debug_bypass.",
        )
    coordinator.clear_all()
    return {"cleared": True}

"""Auto-entry control endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from autopilot.api.auth import require_api_key
from autopilot.api.routes.common import run_response
from autopilot.api.state import get_component, get_maintenance

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/auto-entry/enable")
async def enable_auto_entry() -> dict[str, Any]:
    get_component("guardrails").set_enabled(True)
    return {"ok": True, "enabled": True}


@router.post("/auto-entry/disable")
async def disable_auto_entry() -> dict[str, Any]:
    """Stop new entries. Open positions stay under reconciliation."""
    logger.warning("Auto-entry disabled via API")
    get_component("guardrails").set_enabled(False)
    return {"ok": True, "enabled": False}


@router.post("/auto-entry/reset-failures")
async def reset_entry_failures() -> JSONResponse:
    return run_response(get_maintenance().reset_entry_failures())


@router.get("/auto-entry/status")
async def auto_entry_status() -> dict[str, Any]:
    guardrails = get_component("guardrails")
    breaker = get_component("breaker").get_state()
    return {
        "enabled": guardrails.is_enabled(),
        "scoring_breaker_open": breaker.is_triggered,
        "scoring_breaker_reason": breaker.trigger_reason,
        "scoring_errors_in_window": breaker.errors_in_window,
    }

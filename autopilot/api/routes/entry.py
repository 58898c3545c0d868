"""Auto-entry endpoint."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from autopilot.api.auth import require_api_key
from autopilot.api.routes.common import run_response
from autopilot.api.state import get_entry_engine

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/run")
async def run_auto_entry(
    limit: int | None = Query(default=None, ge=1, le=100),
    dry_run: bool = Query(default=False),
    allow_carryover: bool | None = Query(default=None),
) -> JSONResponse:
    """Turn qualifying AUTO_PENDING trades into bracket orders."""
    result = await get_entry_engine().run(limit=limit, dry_run=dry_run, allow_carryover=allow_carryover)
    return run_response(result)

"""AI scoring drain endpoint."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from autopilot.api.auth import require_api_key
from autopilot.api.routes.common import run_response
from autopilot.api.state import get_drain
from autopilot.config.constants import DrainStrategy

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/drain")
async def run_drain(
    limit: int | None = Query(default=None, ge=1, le=500),
    deadline_ms: int | None = Query(default=None, ge=1000, le=600_000),
    strategy: DrainStrategy = Query(default=DrainStrategy.RECENT_FIRST),
    release_limit: int = Query(default=0, ge=-1),
    dry_run: bool = Query(default=False),
) -> JSONResponse:
    """
    Score queued signals within a wall-clock budget.

    Returns counters for the run; a signal never ends the run in SCORING
    without a claim expiry.
    """
    result = await get_drain().run(
        limit=limit,
        deadline_ms=deadline_ms,
        strategy=strategy,
        release_limit=release_limit,
        dry_run=dry_run,
    )
    return run_response(result)

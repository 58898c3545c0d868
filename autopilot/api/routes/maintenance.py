"""Maintenance endpoints: reconciliation and ledger housekeeping."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from autopilot.api.auth import require_api_key
from autopilot.api.routes.common import run_response
from autopilot.api.state import get_maintenance, get_reconciler

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/reconcile-open-trades")
async def reconcile_open_trades(
    limit: int | None = Query(default=None, ge=1, le=500),
    dry_run: bool = Query(default=False),
    deadline_ms: int | None = Query(default=None, ge=1000, le=600_000),
) -> JSONResponse:
    """Align OPEN trades with broker positions and orders."""
    result = await get_reconciler().run(limit=limit, dry_run=dry_run, deadline_ms=deadline_ms)
    return run_response(result)


@router.post("/finalize-closes")
async def finalize_closes(
    limit: int = Query(default=100, ge=1, le=500),
    dry_run: bool = Query(default=False),
) -> JSONResponse:
    result = await get_reconciler().finalize_closes(limit=limit, dry_run=dry_run)
    return run_response(result)


@router.post("/archive-signals")
async def archive_signals(
    older_than_days: int = Query(default=3, ge=0),
    dry_run: bool = Query(default=False),
) -> JSONResponse:
    return run_response(get_maintenance().archive_signals(older_than_days, dry_run=dry_run))


@router.post("/repair-signals")
async def repair_signals(dry_run: bool = Query(default=False)) -> JSONResponse:
    """Rewrite SCORED signals carrying an invalid score to ERROR."""
    return run_response(get_maintenance().repair_signals(dry_run=dry_run))


@router.post("/cancel-order/{order_id}")
async def cancel_order(order_id: str) -> JSONResponse:
    return run_response(get_maintenance().cancel_order(order_id))

"""Shared response handling for engine routes."""

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from autopilot.monitoring.metrics import RunResult


def run_response(result: RunResult) -> JSONResponse:
    """200 for every handled outcome, 500 only for a fatal abort."""
    status_code = 500 if (not result.ok and result.error) else 200
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result.to_dict()))

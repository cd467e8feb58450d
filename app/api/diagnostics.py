"""
Diagnostics Route

GET /api/test-trace: one test span, exported in the background.
"""

from fastapi import APIRouter, Depends

from app.dependencies import Runtime, get_runtime
from orchestration.diagnostics import emit_test_trace


router = APIRouter()


@router.get("/test-trace")
async def diagnostic_trace(runtime: Runtime = Depends(get_runtime)):
    return await emit_test_trace(runtime.collector)

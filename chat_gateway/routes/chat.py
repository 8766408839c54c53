"""Chat message endpoints"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import structlog

from ..middleware.rate_limit import client_identifier, current_user_id
from ..models import ChatRequest, RateLimitStatistics
from ..pipeline import BLOCKED, RATE_LIMITED

logger = structlog.get_logger(__name__)
router = APIRouter()

_STATUS_CODES = {RATE_LIMITED: 429, BLOCKED: 403}


@router.post("/message")
async def send_message(payload: ChatRequest, request: Request):
    """Run a chat message through the gateway pipeline"""
    pipeline = request.app.state.pipeline

    outcome = await pipeline.handle(
        message=payload.message,
        session_key=payload.session_id,
        identifier=client_identifier(request),
        user_id=current_user_id(request),
        history=payload.conversation_history,
    )

    if outcome.ok:
        return outcome.response

    body = {"success": False, "error": outcome.status, "message": outcome.message}
    headers = {}
    if outcome.status == RATE_LIMITED:
        body["reset_time"] = outcome.reset_time
        headers["Retry-After"] = str(outcome.reset_time)
    return JSONResponse(status_code=_STATUS_CODES.get(outcome.status, 400), content=body, headers=headers)


@router.get("/rate-limit", response_model=RateLimitStatistics)
async def rate_limit_status(request: Request):
    """Current rate limit usage for the caller"""
    policy = request.app.state.pipeline.policy
    return await request.app.state.rate_limiter.get_statistics(
        client_identifier(request),
        policy.max_requests,
        policy.window_seconds,
    )

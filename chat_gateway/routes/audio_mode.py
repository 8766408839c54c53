"""Audio mode endpoints"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
import structlog

from ..middleware.auth import require_admin
from ..middleware.rate_limit import current_user_id
from ..models import AudioModeAction, AudioModeRequest, AudioStateRequest, AudioStatus, TransitionResult

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/toggle", response_model=TransitionResult, response_model_exclude_none=True)
async def toggle_audio_mode(payload: AudioModeRequest, request: Request):
    """Activate, deactivate, pause, resume or toggle audio mode"""
    controller = request.app.state.audio_controller
    user_id = current_user_id(request)

    operations = {
        AudioModeAction.ACTIVATE: controller.activate,
        AudioModeAction.DEACTIVATE: controller.deactivate,
        AudioModeAction.PAUSE: controller.pause,
        AudioModeAction.RESUME: controller.resume,
        AudioModeAction.TOGGLE: controller.toggle,
    }
    return await operations[payload.action](payload.session_id, user_id)


@router.post("/state", response_model=TransitionResult, response_model_exclude_none=True)
async def report_audio_state(payload: AudioStateRequest, request: Request):
    """Client reported state change (speech finished, recognition error, ...)"""
    return await request.app.state.audio_controller.transition(payload.session_id, payload.state)


@router.get("/status", response_model=AudioStatus)
async def audio_mode_status(request: Request, session_id: str = Query(...)):
    """Audio mode status for a chat session"""
    return await request.app.state.audio_controller.status(session_id)


@router.get("/statistics")
async def audio_mode_statistics(request: Request, user: Dict[str, Any] = Depends(require_admin)):
    """Process-wide audio mode event counters"""
    return await request.app.state.audio_controller.event_statistics()


@router.delete("/statistics")
async def reset_audio_mode_statistics(request: Request, user: Dict[str, Any] = Depends(require_admin)):
    """Reset audio mode event counters"""
    await request.app.state.audio_controller.reset_event_statistics()
    logger.info("Audio mode statistics reset by admin", admin=user.get("sub"))
    return {"message": "Statistics reset"}

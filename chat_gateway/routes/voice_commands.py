"""Voice command endpoints"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from ..audio.commands import CommandContext
from ..exceptions import CommandConflictError
from ..middleware.auth import require_admin
from ..middleware.rate_limit import current_user_id
from ..models import CommandDetectRequest, CommandExecuteRequest, CommandResult, CustomCommandRequest

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("")
async def list_commands(request: Request):
    """Enabled voice commands"""
    matcher = request.app.state.voice_commands
    return {
        "commands": [
            {
                "id": command.id,
                "phrases": command.phrases,
                "description": command.description,
                "confirmation_required": command.confirmation_required,
            }
            for command in matcher.available_commands()
        ]
    }


@router.post("/detect")
async def detect_command(payload: CommandDetectRequest, request: Request):
    """Check a transcript for a voice command without executing it"""
    match = request.app.state.voice_commands.detect(payload.transcript)
    return {"detected": match is not None, "match": match}


@router.post("/execute", response_model=CommandResult)
async def execute_command(payload: CommandExecuteRequest, request: Request):
    """Execute a command, optionally confirming one that asked for it"""
    context = CommandContext(
        session_key=payload.session_id,
        user_id=current_user_id(request),
        controller=request.app.state.audio_controller,
    )
    return await request.app.state.voice_commands.execute(
        payload.command_id,
        payload.parameters,
        context,
        confirmed=payload.confirmed,
    )


@router.get("/statistics")
async def command_statistics(request: Request):
    """Usage counters per command"""
    matcher = request.app.state.voice_commands
    return {
        "commands": await matcher.command_statistics(),
        "popular": await matcher.popular_commands(),
    }


@router.delete("/statistics")
async def reset_command_statistics(request: Request, user: Dict[str, Any] = Depends(require_admin)):
    await request.app.state.voice_commands.reset_statistics()
    return {"message": "Statistics reset"}


@router.post("", status_code=201)
async def register_custom_command(
    payload: CustomCommandRequest,
    request: Request,
    user: Dict[str, Any] = Depends(require_admin),
):
    """Register a custom voice command"""
    if not payload.phrases:
        raise HTTPException(status_code=400, detail="At least one phrase is required")
    try:
        command = request.app.state.voice_commands.register_custom_command(
            payload.command_id,
            payload.phrases,
            description=payload.description,
            success_message=payload.success_message,
            confirmation_required=payload.confirmation_required,
        )
    except CommandConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Custom command registered", "command_id": command.id, "phrases": command.phrases}

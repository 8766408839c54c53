"""
Voice command recognition and execution.

A transcript is matched against the phrase index: an exact phrase match wins
with confidence 1.0, otherwise the first phrase whose edit-distance
similarity beats the threshold is taken and whatever is left of the
transcript becomes the ``text`` parameter. Matched commands are executed
instead of sending the transcript to the AI provider.

Every phrase belongs to exactly one command; registering a phrase that is
already claimed raises ``CommandConflictError``.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..exceptions import CommandConflictError
from ..metrics import VOICE_COMMANDS_DETECTED, record_command_execution
from ..models import CommandMatch, CommandResult
from ..utils.store import Clock, KeyValueStore

logger = structlog.get_logger(__name__)

STATS_KEY = "voice_commands:stats"


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev_row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr_row = [i]
        for j, cb in enumerate(b, start=1):
            insert_cost = curr_row[j - 1] + 1
            delete_cost = prev_row[j] + 1
            replace_cost = prev_row[j - 1] + (0 if ca == cb else 1)
            curr_row.append(min(insert_cost, delete_cost, replace_cost))
        prev_row = curr_row
    return prev_row[-1]


def similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / max_len


def normalize(text: str) -> str:
    return " ".join(text.lower().split())


@dataclass
class CommandContext:
    """What a handler may need to know about the caller"""
    session_key: Optional[str] = None
    user_id: Optional[str] = None
    controller: Any = None
    last_response: Optional[str] = None


class CommandHandler(ABC):
    """Executes one voice command"""

    @abstractmethod
    async def execute(self, parameters: Dict[str, str], context: CommandContext) -> CommandResult:
        ...


class StaticResponseHandler(CommandHandler):
    """Client side action acknowledged with a fixed message"""

    def __init__(self, action: str, message: str, echo_parameters: bool = False):
        self.action = action
        self.message = message
        self.echo_parameters = echo_parameters

    async def execute(self, parameters, context):
        return CommandResult(
            action=self.action,
            message=self.message,
            success=True,
            parameters=parameters if self.echo_parameters else {},
        )


class ConfiguredInfoHandler(CommandHandler):
    """Reads out a configured value such as the support address"""

    def __init__(self, action: str, template: str, value: str, missing_message: str):
        self.action = action
        self.template = template
        self.value = value
        self.missing_message = missing_message

    async def execute(self, parameters, context):
        message = self.template.format(self.value) if self.value else self.missing_message
        return CommandResult(action=self.action, message=message, success=True)


class RepeatLastHandler(CommandHandler):

    async def execute(self, parameters, context):
        last = context.last_response
        if not last and context.controller and context.session_key:
            session = await context.controller.sessions.get(context.session_key)
            if session and session.interactions:
                last = session.interactions[-1].ai_response
        if not last:
            return CommandResult(action="repeat_last", message="There is nothing to repeat yet.", success=False)
        return CommandResult(action="repeat_last", message=last, success=True)


class AudioModeHandler(CommandHandler):
    """Drives the audio mode controller (deactivate, pause or toggle)"""

    def __init__(self, action: str, operation: str):
        self.action = action
        self.operation = operation

    async def execute(self, parameters, context):
        if context.controller is None or not context.session_key:
            return CommandResult(action=self.action, message="Audio mode is not available here.", success=False)

        result = await getattr(context.controller, self.operation)(context.session_key, context.user_id)
        return CommandResult(
            action=self.action,
            message=result.message,
            success=result.success,
            data={"state": result.state.value},
        )


class ShowHelpHandler(CommandHandler):

    def __init__(self, matcher: "VoiceCommandMatcher"):
        self.matcher = matcher

    async def execute(self, parameters, context):
        lines = ["Available voice commands:", ""]
        for command in self.matcher.available_commands():
            if command.phrases:
                lines.append(f"• {', '.join(command.phrases)} - {command.description}")
        return CommandResult(
            action="show_help",
            message="\n".join(lines),
            success=True,
            data={"commands": [c.id for c in self.matcher.available_commands() if c.phrases]},
        )


class CustomCommandHandler(CommandHandler):

    def __init__(self, success_message: str = "Custom command executed"):
        self.success_message = success_message

    async def execute(self, parameters, context):
        return CommandResult(
            action="custom_command",
            message=self.success_message,
            success=True,
            parameters=parameters,
        )


@dataclass
class VoiceCommand:
    """A spoken command and its handler"""
    id: str
    phrases: List[str]
    handler: CommandHandler
    description: str = ""
    enabled: bool = True
    confirmation_required: bool = False
    custom: bool = False
    parameters: List[str] = field(default_factory=list)


class VoiceCommandMatcher:
    """Registry, detector and executor of voice commands"""

    def __init__(self, store: KeyValueStore, threshold: float = 0.7, clock: Clock = time.time):
        self.store = store
        self.threshold = threshold
        self.clock = clock
        self.commands: Dict[str, VoiceCommand] = {}
        self.aliases: Dict[str, str] = {}

    def register(self, command: VoiceCommand):
        phrases = [normalize(p) for p in command.phrases if p.strip()]
        for phrase in phrases:
            owner = self.aliases.get(phrase)
            if owner is not None and owner != command.id:
                raise CommandConflictError(phrase, owner, command.id)

        previous = self.commands.get(command.id)
        if previous:
            for phrase in previous.phrases:
                self.aliases.pop(phrase, None)

        command.phrases = phrases
        self.commands[command.id] = command
        for phrase in phrases:
            self.aliases[phrase] = command.id

    def register_custom_command(
        self,
        command_id: str,
        phrases: Iterable[str],
        description: str = "",
        success_message: str = "Custom command executed",
        confirmation_required: bool = False,
    ) -> VoiceCommand:
        command = VoiceCommand(
            id=command_id,
            phrases=list(phrases),
            handler=CustomCommandHandler(success_message),
            description=description,
            confirmation_required=confirmation_required,
            custom=True,
        )
        self.register(command)
        logger.info("Custom voice command registered", command_id=command_id, phrases=command.phrases)
        return command

    def get(self, command_id: str) -> Optional[VoiceCommand]:
        return self.commands.get(command_id)

    def available_commands(self) -> List[VoiceCommand]:
        return [c for c in self.commands.values() if c.enabled]

    def detect(self, transcript: str) -> Optional[CommandMatch]:
        text = normalize(transcript)
        if not text:
            return None

        command_id = self.aliases.get(text)
        if command_id and self.commands[command_id].enabled:
            VOICE_COMMANDS_DETECTED.labels(command=command_id, match="exact").inc()
            return CommandMatch(command_id=command_id, parameters={}, confidence=1.0)

        for phrase, command_id in self.aliases.items():
            if not self.commands[command_id].enabled:
                continue
            score = similarity(text, phrase)
            if score > self.threshold:
                VOICE_COMMANDS_DETECTED.labels(command=command_id, match="fuzzy").inc()
                return CommandMatch(
                    command_id=command_id,
                    parameters=self._extract_parameters(text, phrase),
                    confidence=round(score, 4),
                )
        return None

    async def execute(
        self,
        command_id: str,
        parameters: Optional[Dict[str, str]] = None,
        context: Optional[CommandContext] = None,
        confirmed: bool = False,
    ) -> CommandResult:
        parameters = parameters or {}
        context = context or CommandContext()

        command = self.commands.get(command_id)
        if command is None or not command.enabled:
            record_command_execution(command_id, "unavailable")
            return CommandResult(
                action="unknown_command",
                message="Command not found or disabled",
                success=False,
                command_id=command_id,
            )

        if command.confirmation_required and not confirmed:
            record_command_execution(command_id, "confirmation_required")
            description = command.description[:1].lower() + command.description[1:]
            return CommandResult(
                action=command_id,
                message=f"Are you sure you want to {description}?",
                success=False,
                requires_confirmation=True,
                command_id=command_id,
                parameters=parameters,
            )

        result = await command.handler.execute(parameters, context)
        result.command_id = command_id
        await self._track_usage(command_id)
        record_command_execution(command_id, "success" if result.success else "failed")

        logger.info("Voice command executed",
                    command_id=command_id,
                    success=result.success,
                    session_key=context.session_key)
        return result

    async def command_statistics(self) -> Dict[str, Dict[str, Any]]:
        raw = await self.store.get(STATS_KEY)
        return json.loads(raw) if raw else {}

    async def popular_commands(self, limit: int = 5) -> Dict[str, Dict[str, Any]]:
        stats = await self.command_statistics()
        ranked = sorted(stats.items(), key=lambda item: item[1]["usage_count"], reverse=True)
        return dict(ranked[:limit])

    async def reset_statistics(self):
        await self.store.delete(STATS_KEY)
        logger.info("Voice command statistics reset")

    async def _track_usage(self, command_id: str):
        async with self.store.lock(STATS_KEY):
            stats = await self.command_statistics()
            entry = stats.setdefault(command_id, {"usage_count": 0, "last_used": None})
            entry["usage_count"] += 1
            entry["last_used"] = self.clock()
            await self.store.set(STATS_KEY, json.dumps(stats))

    @staticmethod
    def _extract_parameters(text: str, phrase: str) -> Dict[str, str]:
        if phrase not in text:
            return {}
        remaining = " ".join(text.replace(phrase, " ", 1).split())
        return {"text": remaining} if remaining else {}


def register_default_commands(
    matcher: VoiceCommandMatcher,
    disabled: Iterable[str] = (),
    contact_email: str = "",
    business_hours: str = "",
) -> VoiceCommandMatcher:
    """Install the built-in command vocabulary"""
    disabled = set(disabled)
    defaults = [
        VoiceCommand(
            id="clear_chat",
            phrases=["clear chat", "clear conversation", "start over", "new conversation"],
            handler=StaticResponseHandler("clear_chat", "Chat cleared successfully"),
            description="Clear the current conversation",
            confirmation_required=True,
        ),
        VoiceCommand(
            id="close_chat",
            phrases=["close chat", "end conversation", "goodbye", "bye"],
            handler=StaticResponseHandler("close_chat", "Goodbye! Thanks for chatting."),
            description="Close the chatbot",
        ),
        VoiceCommand(
            id="minimize_chat",
            phrases=["minimize chat", "minimize window", "hide chat"],
            handler=StaticResponseHandler("minimize_chat", "Chat minimized"),
            description="Minimize the chat window",
        ),
        VoiceCommand(
            id="stop_listening",
            phrases=["stop listening", "exit audio mode", "disable audio mode"],
            handler=AudioModeHandler("stop_listening", "deactivate"),
            description="Leave hands-free audio mode",
        ),
        VoiceCommand(
            id="pause_audio",
            phrases=["pause", "pause audio", "pause listening"],
            handler=AudioModeHandler("pause_audio", "pause"),
            description="Pause audio mode",
        ),
        VoiceCommand(
            id="toggle_audio_mode",
            phrases=["toggle audio mode", "audio mode"],
            handler=AudioModeHandler("toggle_audio_mode", "toggle"),
            description="Toggle hands-free audio mode",
        ),
        VoiceCommand(
            id="toggle_voice_output",
            phrases=["toggle voice output", "enable voice", "disable voice", "mute voice"],
            handler=StaticResponseHandler("toggle_voice_output", "Voice output toggled"),
            description="Toggle text-to-speech output",
        ),
        VoiceCommand(
            id="repeat_last",
            phrases=["repeat that", "say that again", "repeat last message"],
            handler=RepeatLastHandler(),
            description="Repeat the last AI response",
        ),
        VoiceCommand(
            id="show_help",
            phrases=["help", "what can you do", "show commands", "voice commands"],
            handler=ShowHelpHandler(matcher),
            description="Show available voice commands",
        ),
        VoiceCommand(
            id="save_conversation",
            phrases=["save conversation", "export chat", "download conversation"],
            handler=StaticResponseHandler("save_conversation", "Conversation saved"),
            description="Save the current conversation",
        ),
        VoiceCommand(
            id="send_feedback",
            phrases=["send feedback", "report issue", "leave feedback"],
            handler=StaticResponseHandler("send_feedback", "Feedback form opened"),
            description="Send feedback about the chatbot",
        ),
        VoiceCommand(
            id="contact_support",
            phrases=["contact support", "talk to human", "human agent", "live chat"],
            handler=ConfiguredInfoHandler(
                "contact_support",
                "Contact support at: {}",
                contact_email,
                "Support contact information not available",
            ),
            description="Request human support",
        ),
        VoiceCommand(
            id="show_business_hours",
            phrases=["business hours", "opening hours", "when are you open"],
            handler=ConfiguredInfoHandler(
                "show_business_hours",
                "Business hours: {}",
                business_hours,
                "Business hours not configured",
            ),
            description="Show business hours",
        ),
        VoiceCommand(
            id="audio_settings",
            phrases=["audio settings", "voice settings", "sound settings"],
            handler=StaticResponseHandler("audio_settings", "Audio settings opened"),
            description="Open audio settings",
        ),
        VoiceCommand(
            id="change_language",
            phrases=["change language", "switch language", "language settings"],
            handler=StaticResponseHandler("change_language", "Language settings opened", echo_parameters=True),
            description="Change chat language",
            parameters=["language"],
        ),
    ]

    for command in defaults:
        command.enabled = command.id not in disabled
        matcher.register(command)
    return matcher

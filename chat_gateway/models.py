"""Data models for the chat gateway"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AudioState(str, Enum):
    """Audio session state"""
    INACTIVE = "INACTIVE"
    ACTIVATING = "ACTIVATING"
    LISTENING = "LISTENING"
    PROCESSING = "PROCESSING"
    SPEAKING = "SPEAKING"
    WAITING = "WAITING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


class RateLimitDecision(BaseModel):
    """Outcome of a rate limit check"""
    allowed: bool
    limit: int
    used: int
    remaining: int
    reset_time: int
    window: int


class RateLimitStatistics(BaseModel):
    """Usage of one rate limit bucket"""
    max_requests: int
    used_requests: int
    remaining_requests: int
    time_window: int
    reset_time: int
    is_limited: bool
    percentage_used: float


class SessionSettings(BaseModel):
    """Audio settings captured when a session is created"""
    language: str = "en-US"
    auto_listen: bool = True
    timeout: int = 30
    max_time: int = 300


class Interaction(BaseModel):
    """One user message / AI response exchange"""
    user_message: str
    ai_response: str
    timestamp: float


class AudioSession(BaseModel):
    """Hands-free conversation context tied to one chat session"""
    id: str
    session_key: str
    user_id: Optional[str] = None
    state: AudioState = AudioState.ACTIVATING
    created_at: float
    last_activity_at: float
    ended_at: Optional[float] = None
    interaction_count: int = 0
    interactions: List[Interaction] = []
    settings: SessionSettings = Field(default_factory=SessionSettings)


class SessionStatistics(BaseModel):
    """Summary of an audio session"""
    session_id: str
    state: AudioState
    duration_seconds: float
    interaction_count: int
    started_at: float
    ended_at: Optional[float] = None
    average_response_time: Optional[float] = None


class ActivationInstructions(BaseModel):
    """Guidance sent to the client when audio mode starts"""
    welcome_message: str
    commands: List[str]
    tips: List[str]


class TransitionResult(BaseModel):
    """Result of an audio mode lifecycle operation"""
    success: bool
    state: AudioState
    message: str
    reason: Optional[str] = None
    session: Optional[AudioSession] = None
    instructions: Optional[ActivationInstructions] = None
    stats: Optional[SessionStatistics] = None


class AudioStatus(BaseModel):
    """Audio mode status for one chat session"""
    active: bool
    state: AudioState
    session_id: str
    uptime_seconds: float
    interactions: int
    last_activity: Optional[float] = None


class SpeechTiming(BaseModel):
    """Estimated speaking time of a response"""
    estimated_duration: float
    word_count: int
    speaking_rate: float
    chunks_count: int


class VoiceSettings(BaseModel):
    """Voice parameters for the client synthesizer"""
    rate: float
    pitch: float
    volume: float
    voice: str
    language: str


class SpeechPlan(BaseModel):
    """Text-to-speech metadata for a response"""
    should_speak: bool
    speech_text: str
    voice_settings: VoiceSettings
    chunks: List[str]
    timing: SpeechTiming


class NextAction(BaseModel):
    """Listening behaviour the client should adopt after a response"""
    action: str
    timeout: int
    prompt: str


class ConversationContext(BaseModel):
    """Summary of the audio conversation so far"""
    session_duration_seconds: float
    interaction_count: int
    recent_topics: List[str]
    flow_stage: str
    user_preferences: SessionSettings


class AudioMetadata(BaseModel):
    """Audio decoration attached to an AI response"""
    should_speak: bool
    speech_text: str
    voice_settings: VoiceSettings
    chunks: List[str]
    timing: SpeechTiming
    listen_delay_seconds: float
    next_action: NextAction
    conversation_context: ConversationContext
    session_state: AudioState
    auto_listen: bool


class CommandMatch(BaseModel):
    """Voice command found in a transcript"""
    command_id: str
    parameters: Dict[str, str] = {}
    confidence: float


class CommandResult(BaseModel):
    """Outcome of executing a voice command"""
    action: str
    message: str
    success: bool
    requires_confirmation: bool = False
    command_id: Optional[str] = None
    parameters: Dict[str, str] = {}
    data: Dict[str, Any] = {}


class ProviderReply(BaseModel):
    """Reply from the AI provider gateway"""
    response_text: str
    tokens_used: int = 0
    provider_name: str = "unknown"
    confidence: Optional[float] = None
    sources: List[Dict[str, Any]] = []


# API request/response models

class ChatMessage(BaseModel):
    """Message in the conversation history"""
    role: str
    content: str


class ChatRequest(BaseModel):
    """Chat message request"""
    message: str
    session_id: Optional[str] = None
    conversation_history: List[ChatMessage] = []


class ChatResponse(BaseModel):
    """Chat message response"""
    success: bool
    response: str
    session_id: str
    provider: Optional[str] = None
    tokens_used: int = 0
    audio: Optional[AudioMetadata] = None
    command_result: Optional[CommandResult] = None


class AudioModeAction(str, Enum):
    """Actions accepted by the audio mode toggle endpoint"""
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    PAUSE = "pause"
    RESUME = "resume"
    TOGGLE = "toggle"


class AudioModeRequest(BaseModel):
    """Audio mode toggle request"""
    action: AudioModeAction = AudioModeAction.TOGGLE
    session_id: str


class AudioStateRequest(BaseModel):
    """Client reported audio state change"""
    session_id: str
    state: AudioState


class CommandDetectRequest(BaseModel):
    """Transcript to check for voice commands"""
    transcript: str


class CommandExecuteRequest(BaseModel):
    """Voice command execution request"""
    command_id: str
    parameters: Dict[str, str] = {}
    session_id: Optional[str] = None
    confirmed: bool = False


class CustomCommandRequest(BaseModel):
    """Admin registration of a custom voice command"""
    command_id: str
    phrases: List[str]
    description: str = ""
    success_message: str = "Custom command executed"
    confirmation_required: bool = False

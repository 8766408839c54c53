"""Prometheus metrics for rate limiting, audio mode and voice commands"""

from prometheus_client import Counter, Gauge

RATE_LIMIT_DECISIONS = Counter(
    'rate_limit_decisions_total',
    'Rate limit decisions',
    ['outcome']
)

RATE_LIMIT_VIOLATIONS = Counter(
    'rate_limit_violations_total',
    'Requests denied by the rate limiter'
)

IDENTIFIERS_BLOCKED = Counter(
    'rate_limit_blocks_total',
    'Identifiers blocked after repeated violations'
)

AUDIO_MODE_EVENTS = Counter(
    'audio_mode_events_total',
    'Audio mode lifecycle events',
    ['event_type']
)

AUDIO_STATE_TRANSITIONS = Counter(
    'audio_state_transitions_total',
    'Audio session state transitions',
    ['state']
)

AUDIO_SESSIONS_ACTIVE = Gauge(
    'audio_sessions_active',
    'Audio sessions activated and not yet deactivated by this process'
)

VOICE_COMMANDS_DETECTED = Counter(
    'voice_commands_detected_total',
    'Voice commands detected in transcripts',
    ['command', 'match']
)

VOICE_COMMANDS_EXECUTED = Counter(
    'voice_commands_executed_total',
    'Voice commands executed',
    ['command', 'status']
)


def record_rate_limit_decision(allowed: bool):
    """Record one allow/deny decision"""
    RATE_LIMIT_DECISIONS.labels(outcome="allowed" if allowed else "denied").inc()


def record_audio_event(event_type: str):
    """Record an audio mode lifecycle event"""
    AUDIO_MODE_EVENTS.labels(event_type=event_type).inc()


def record_command_execution(command_id: str, status: str):
    """Record the outcome of a voice command"""
    VOICE_COMMANDS_EXECUTED.labels(command=command_id, status=status).inc()

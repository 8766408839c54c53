"""
Chat Gateway
FastAPI service for rate-limited chat with hands-free audio mode
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import structlog

from . import __version__
from .audio.commands import VoiceCommandMatcher, register_default_commands
from .audio.controller import AUDIO_MODE_FEATURE, AudioModeController
from .audio.enhancer import ResponseAudioEnhancer
from .audio.session_store import AudioSessionStore
from .audio.speech import SpeechPlanner
from .config import Settings, settings
from .entitlements import FeatureGate
from .exceptions import ProviderError, StorageError
from .middleware.auth import AuthMiddleware
from .middleware.metrics import MetricsMiddleware
from .models import SessionSettings
from .moderation import MessageFilter
from .pipeline import ChatPipeline, RateLimitPolicy
from .providers import AIProvider, HTTPProvider
from .rate_limiter import RateLimiter
from .routes import audio_mode, chat, health, voice_commands
from .security import LoggingAuditSink, SecurityMonitor
from .utils.http_client import http_pool
from .utils.logging import setup_logging
from .utils.redis_pool import redis_pool
from .utils.store import Clock, KeyValueStore, MemoryStore, RedisStore

# Setup structured logging
setup_logging(settings.log_level, settings.debug)
logger = structlog.get_logger(__name__)

VOICE_COMMANDS_FEATURE = "voice_commands"


def enabled_features(config: Settings):
    """Configured features minus the ones switched off by their own flag"""
    features = set(config.enabled_features)
    if not config.audio_mode_enabled:
        features.discard(AUDIO_MODE_FEATURE)
    if not config.voice_commands_enabled:
        features.discard(VOICE_COMMANDS_FEATURE)
    return features


def build_components(state, config: Settings, store: KeyValueStore, provider: AIProvider, clock: Clock):
    """Wire the gateway components onto ``app.state``"""
    features = FeatureGate(
        store,
        enabled_features=enabled_features(config),
        license_active=config.pro_license_active,
        entitled_users=config.entitled_users,
    )

    state.store = store
    state.features = features
    state.audit_log = LoggingAuditSink(store, clock=clock)
    state.security_monitor = SecurityMonitor(
        store,
        sink=state.audit_log,
        violation_threshold=config.violation_threshold,
        violation_window=config.violation_window,
        block_duration=config.block_duration,
        clock=clock,
    )
    state.rate_limiter = RateLimiter(store, audit=state.security_monitor, clock=clock)

    state.audio_sessions = AudioSessionStore(
        store,
        SessionSettings(
            language=config.voice_language,
            auto_listen=config.audio_auto_listen,
            timeout=config.audio_timeout,
            max_time=config.audio_max_time,
        ),
        ttl=config.audio_session_ttl,
        clock=clock,
    )
    state.audio_controller = AudioModeController(
        state.audio_sessions,
        features,
        store,
        audit=state.security_monitor,
        clock=clock,
    )

    planner = SpeechPlanner(
        enabled=config.tts_enabled,
        auto_play=config.tts_auto_play,
        smart_autoplay=config.tts_smart_autoplay,
        rate=config.tts_rate,
        pitch=config.tts_pitch,
        volume=config.tts_volume,
        voice_name=config.tts_voice_name,
        language=config.tts_language,
        chunk_size=config.tts_chunk_size,
        pause_detection=config.tts_pause_detection,
        custom_pronunciations=config.tts_custom_pronunciations,
    )
    state.audio_enhancer = ResponseAudioEnhancer(state.audio_sessions, planner, clock=clock)

    state.voice_commands = register_default_commands(
        VoiceCommandMatcher(store, threshold=config.command_match_threshold, clock=clock),
        disabled=config.disabled_commands,
        contact_email=config.contact_email,
        business_hours=config.business_hours,
    )

    state.pipeline = ChatPipeline(
        limiter=state.rate_limiter,
        monitor=state.security_monitor,
        controller=state.audio_controller,
        enhancer=state.audio_enhancer,
        commands=state.voice_commands,
        provider=provider,
        policy=RateLimitPolicy(
            enabled=config.rate_limit_enabled,
            max_requests=config.rate_limit_requests,
            window_seconds=config.rate_limit_window,
            atomic=config.rate_limit_atomic,
        ),
        max_message_length=config.max_message_length,
        commands_enabled=features.is_feature_enabled(VOICE_COMMANDS_FEATURE),
        message_filter=MessageFilter(config.blocked_words, spam_detection=config.spam_detection_enabled),
    )


def create_app(
    config: Settings = settings,
    store: Optional[KeyValueStore] = None,
    provider: Optional[AIProvider] = None,
    clock: Clock = time.time,
) -> FastAPI:
    """Create the gateway application; ``store`` and ``provider`` override the configured backends"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        # Startup
        logger.info("Starting Chat Gateway", storage_backend=config.storage_backend)

        backend = store
        if backend is None:
            if config.storage_backend == "redis":
                await redis_pool.initialize(config.redis_url)
                backend = RedisStore(
                    redis_pool.get_client(),
                    key_prefix=config.redis_key_prefix,
                    lock_timeout=config.storage_lock_timeout,
                )
                logger.info("Redis connection pool established")
            else:
                backend = MemoryStore(clock=clock)

        await http_pool.initialize(config.llm_timeout)
        build_components(
            app.state,
            config,
            backend,
            provider or HTTPProvider(http_pool, config.llm_service_url, config.llm_timeout),
            clock,
        )

        logger.info("Gateway startup complete")

        yield

        # Shutdown
        logger.info("Shutting down Gateway")
        await http_pool.close()
        await redis_pool.close()
        logger.info("Gateway shutdown complete")

    app = FastAPI(
        title="Chat Gateway",
        description="Rate-limited chat API with hands-free audio mode and voice commands",
        version=__version__,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    if config.metrics_enabled:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(AuthMiddleware, jwt_secret=config.jwt_secret, jwt_algorithm=config.jwt_algorithm)

    # Include routers
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(chat.router, prefix="/api/v1/chat", tags=["chat"])
    app.include_router(audio_mode.router, prefix="/api/v1/audio-mode", tags=["audio-mode"])
    app.include_router(voice_commands.router, prefix="/api/v1/voice-commands", tags=["voice-commands"])

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": "Chat Gateway",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if config.debug else "disabled",
        }

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logger.error("Storage unavailable", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=503,
            content={
                "error": "Service temporarily unavailable",
                "status_code": 503,
                "path": request.url.path,
            },
        )

    @app.exception_handler(ProviderError)
    async def provider_exception_handler(request: Request, exc: ProviderError):
        logger.error("AI provider failure", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=502,
            content={
                "error": "AI provider unavailable",
                "status_code": 502,
                "path": request.url.path,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Global HTTP exception handler"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error("Unhandled exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "path": request.url.path,
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chat_gateway.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )

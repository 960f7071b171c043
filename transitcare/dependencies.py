"""
Lazy-init shared dependencies used across routers.
"""

import logging
import random

from transitcare import settings

logger = logging.getLogger("transitcare-server")

# Global singletons - initialized lazily
_sessionmaker = None
_llm_client = None
_escalation_manager = None
_turn_handler = None


def get_engine_sessionmaker():
    """Lazy initialization of the SQLAlchemy sessionmaker (creates tables)."""
    global _sessionmaker
    if _sessionmaker is None:
        from transitcare.db.session import make_sessionmaker
        logger.info("Initializing database at %s (lazy)...", settings.DATABASE_URL)
        _sessionmaker = make_sessionmaker(settings.DATABASE_URL)
    return _sessionmaker


def get_llm_client():
    """Lazy initialization of the Gemini client.  None when unavailable."""
    global _llm_client
    if _llm_client is None:
        try:
            from google import genai
            logger.info("Initializing Gemini client (lazy)...")
            _llm_client = genai.Client(api_key=settings.GOOGLE_API_KEY or None)
        except Exception as e:
            logger.error("Gemini client initialization failed, deterministic fallbacks only: %s", e)
    return _llm_client


def get_escalation_manager():
    global _escalation_manager
    if _escalation_manager is None:
        from transitcare.engine.escalations import EscalationTaskManager
        _escalation_manager = EscalationTaskManager(get_engine_sessionmaker())
    return _escalation_manager


def get_turn_handler():
    """Wire the full turn pipeline once."""
    global _turn_handler
    if _turn_handler is None:
        from transitcare.engine.composer import GenerativeComposer
        from transitcare.engine.evaluator import RuleEvaluator
        from transitcare.engine.extractors import (
            FallbackSignalExtractor,
            KeywordSignalExtractor,
            LLMSignalExtractor,
        )
        from transitcare.engine.protocols import ProtocolStoreAccessor
        from transitcare.engine.recorder import InteractionRecorder
        from transitcare.engine.tools import ToolDispatcher
        from transitcare.engine.turn import TurnHandler

        session_factory = get_engine_sessionmaker()
        client = get_llm_client()

        extractor = FallbackSignalExtractor(
            primary=LLMSignalExtractor(
                client, settings.EXTRACTION_MODEL, settings.EXTRACTION_TIMEOUT_SECONDS,
            ),
            fallback=KeywordSignalExtractor(random.Random()),
            timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
        )
        _turn_handler = TurnHandler(
            protocols=ProtocolStoreAccessor(session_factory),
            extractor=extractor,
            evaluator=RuleEvaluator(),
            composer=GenerativeComposer(
                client, settings.COMPOSER_MODEL, settings.COMPOSITION_TIMEOUT_SECONDS,
            ),
            dispatcher=ToolDispatcher(get_escalation_manager()),
            recorder=InteractionRecorder(session_factory),
            history_window=settings.HISTORY_WINDOW,
        )
        logger.info("Turn handler initialized")
    return _turn_handler

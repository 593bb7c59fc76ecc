import logging
from typing import Dict, Optional
from langchain_core.language_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI
from telehealth.config.settings import settings

logger = logging.getLogger(__name__)

_model_cache: Dict[str, Optional[BaseChatModel]] = {}


def get_llm(model_key: str = "consultation_assistant") -> Optional[BaseChatModel]:
    """Gets the chat model used for in-consultation AI replies, or None when it can't be built"""
    global _model_cache
    cache_key = f"llm_{model_key}"
    if cache_key not in _model_cache:
        logger.info(f"Initializing LLM for key: '{model_key}'")
        if not settings.google_api_key:
            logger.warning("GOOGLE_API_KEY is not set. AI assistant replies are disabled")
            return None
        try:
            instance = ChatGoogleGenerativeAI(
                model=settings.ai_model, api_key=settings.google_api_key
            )
            _model_cache[cache_key] = instance
            logger.info(f"Initialized LLM '{settings.ai_model}' for key '{model_key}'")
        except Exception as e:
            logger.error(
                f"Failed to initialize LLM for key '{model_key}': {e}", exc_info=True
            )
            return None
    return _model_cache.get(cache_key)


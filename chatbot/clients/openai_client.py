"""OpenAI client factory.

All model access goes through one AsyncOpenAI instance. Functions that call
the API take an optional ``client`` argument and fall back to this shared
instance, which keeps them easy to drive with a fake client.
"""
import logging
import os
from typing import Optional

from openai import AsyncOpenAI

from chatbot import config

logger = logging.getLogger(__name__)

_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Get the shared AsyncOpenAI client using the configured API key.

    Returns:
        AsyncOpenAI client instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    global _client
    if _client is not None:
        return _client

    api_key = os.environ.get("OPENAI_API_KEY") or config.OPENAI_API_KEY
    if not api_key:
        raise ValueError("OPENAI_API_KEY not found in environment or chatbot.config")

    _client = AsyncOpenAI(api_key=api_key, timeout=config.OPENAI_TIMEOUT_SECONDS)
    logger.info("[OPENAI] Client initialized")
    return _client

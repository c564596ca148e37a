# intakeflow/llm/client.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Dict, Optional

from openai import OpenAI

from intakeflow.config import get_settings

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """
    Simple abstraction so we can swap providers if needed.
    """

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        """
        messages: list of {"role": "system"|"user"|"assistant", "content": "..."}
        returns: assistant content as a string
        """
        ...


class OpenAILLMClient(LLMClient):
    """
    OpenAI implementation using the official Python client. Any
    OpenAI-compatible endpoint works through OPENAI_BASE_URL.
    """

    def __init__(self, model: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        if not settings.openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set in environment (.env)."
            )

        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=timeout or settings.llm_timeout_seconds,
            max_retries=0,
        )
        self.default_model = model or settings.llm_model

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
    ) -> str:
        completion = self.client.chat.completions.create(
            model=model or self.default_model,
            messages=messages,
            temperature=temperature,
        )
        content = completion.choices[0].message.content
        return content or ""


# Worker pool for deadline-bounded calls. A call that overruns keeps its
# thread until the provider returns, but the caller is released on time.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="llm-call")


def call_with_deadline(
    client: Optional[LLMClient],
    messages: List[Dict[str, str]],
    timeout: float,
    temperature: float = 0.2,
) -> Optional[str]:
    """
    Run client.chat with a hard deadline.

    Returns the reply text, or None when there is no client, the call
    raised, the deadline passed or the reply was blank.
    """
    if client is None:
        logger.warning("No LLM client configured, skipping AI call")
        return None

    future = _executor.submit(client.chat, messages, temperature)
    try:
        text = future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.error(f"LLM call timed out after {timeout}s")
        return None
    except Exception as e:
        logger.error(f"LLM call failed: {e}")
        return None

    if not text or not text.strip():
        logger.warning("LLM returned an empty reply")
        return None
    return text

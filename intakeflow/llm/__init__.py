# intakeflow/llm/__init__.py
from .client import LLMClient, OpenAILLMClient, call_with_deadline

__all__ = ["LLMClient", "OpenAILLMClient", "call_with_deadline"]

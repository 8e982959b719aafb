"""Model access: provider adapters and the terminal invoker."""

from chatgate.llm.adapters import LLMAdapter
from chatgate.llm.adapters import NoopLLMAdapter
from chatgate.llm.adapters import OpenAICompatibleLLMAdapter
from chatgate.llm.adapters import build_llm_adapter
from chatgate.llm.adapters import parse_sse_line
from chatgate.llm.invoker import ModelInvoker

__all__ = [
    "LLMAdapter",
    "ModelInvoker",
    "NoopLLMAdapter",
    "OpenAICompatibleLLMAdapter",
    "build_llm_adapter",
    "parse_sse_line",
]

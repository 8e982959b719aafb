"""chatgate: FastMCP v2 server exposing the ``chat`` tool.

The tool delegates to a ``CompletionOrchestrator`` built by
``configure()``.  Call ``configure(...)`` before using the server.
"""

from __future__ import annotations

from time import perf_counter

from fastmcp import FastMCP

from chatgate.chat.schemas import ChatResult
from chatgate.chat.schemas import ReplyMessage
from chatgate.config import LLMConfig
from chatgate.config import LoggingConfig
from chatgate.config import MemoryConfig
from chatgate.config import ObservationConfig
from chatgate.config import PromptConfig
from chatgate.config import RetryConfig
from chatgate.config import ToolConfig
from chatgate.errors import GatewayError
from chatgate.llm import LLMAdapter
from chatgate.llm import ModelInvoker
from chatgate.llm import build_llm_adapter
from chatgate.memory import ConversationMemory
from chatgate.memory import ConversationStore
from chatgate.memory import build_conversation_store
from chatgate.observability import record_latency
from chatgate.orchestrator import CompletionOrchestrator
from chatgate.orchestrator import resolve_conversation_id
from chatgate.pipeline import build_advisor_chain
from chatgate.pipeline import model_options
from chatgate.prompts import FileSystemPromptProvider
from chatgate.prompts import SystemPromptProvider
from chatgate.tools import ToolProvider
from chatgate.tools import ToolRegistry

mcp = FastMCP("chatgate")

# ---------------------------------------------------------------------------
# Pipeline instance (set via configure())
# ---------------------------------------------------------------------------

_orchestrator: CompletionOrchestrator | None = None
_adapter: LLMAdapter | None = None
_store: ConversationStore | None = None
_memory: ConversationMemory | None = None


async def _close_quietly(resource: object) -> None:
    close = getattr(resource, "close", None)
    if close is None:
        return
    try:
        await close()
    except RuntimeError:
        # Tests may reconfigure across event loops.
        pass


async def configure(
    *,
    llm_config: LLMConfig | None = None,
    llm_adapter: LLMAdapter | None = None,
    memory_config: MemoryConfig | None = None,
    conversation_store: ConversationStore | None = None,
    retry_config: RetryConfig | None = None,
    logging_config: LoggingConfig | None = None,
    observation_config: ObservationConfig | None = None,
    prompt_config: PromptConfig | None = None,
    prompt_provider: SystemPromptProvider | None = None,
    tool_providers: list[ToolProvider] | None = None,
    tool_config: ToolConfig | None = None,
) -> CompletionOrchestrator:
    """Build the advisor pipeline and orchestrator behind the ``chat`` tool.

    ``llm_adapter``, ``conversation_store`` and ``prompt_provider`` override
    what the matching config would otherwise build.
    """
    global _orchestrator, _adapter, _store, _memory
    await shutdown()

    llm_cfg = llm_config or LLMConfig()
    memory_cfg = memory_config or MemoryConfig()
    prompt_cfg = prompt_config or PromptConfig()
    tool_cfg = tool_config or ToolConfig()

    _adapter = llm_adapter or build_llm_adapter(llm_cfg)
    registry = (
        ToolRegistry(tool_providers, timeout_seconds=tool_cfg.timeout_seconds)
        if tool_providers
        else None
    )
    invoker = ModelInvoker(_adapter, tools=registry, max_tool_rounds=tool_cfg.max_rounds)

    if memory_cfg.enabled:
        _store = conversation_store or build_conversation_store(memory_cfg)
        _memory = ConversationMemory(_store, max_window=memory_cfg.max_messages)

    chain = build_advisor_chain(
        invoker,
        memory=_memory,
        retry_config=retry_config,
        logging_config=logging_config,
        observation_config=observation_config,
    )
    prompts = prompt_provider or FileSystemPromptProvider(
        prompt_cfg.path, fallback=prompt_cfg.fallback
    )
    _orchestrator = CompletionOrchestrator(chain, prompts, options=model_options(llm_cfg))
    return _orchestrator


async def shutdown() -> None:
    """Close backend clients and release server resources."""
    global _orchestrator, _adapter, _store, _memory
    if _adapter is not None:
        await _close_quietly(_adapter)
        _adapter = None
    if _store is not None:
        await _close_quietly(_store)
        _store = None
    _memory = None
    _orchestrator = None


def _get_orchestrator() -> CompletionOrchestrator:
    """Return the orchestrator instance or raise."""
    if _orchestrator is None:
        raise RuntimeError("Chat pipeline not configured. Call configure() first.")
    return _orchestrator


def _get_memory() -> ConversationMemory | None:
    """Return the conversation memory (test helper)."""
    return _memory


def _chat_error(conversation_id: str | None, error_code: str, message: str) -> ChatResult:
    return ChatResult(
        status="error",
        conversation_id=conversation_id,
        error_code=error_code,
        message=message,
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def chat(
    messages: list[dict],
    conversation_id: str | None = None,
) -> ChatResult:
    """Send messages to the language model and return its reply.

    Args:
        messages: Ordered ``{role, content}`` objects (user, system, assistant).
        conversation_id: Conversation to continue; a new one is started when omitted.
    """
    start = perf_counter()
    ok = False
    try:
        orchestrator = _get_orchestrator()
        conv_id = resolve_conversation_id(conversation_id)
        try:
            reply = await orchestrator.complete(messages, conv_id)
        except GatewayError as exc:
            return _chat_error(conv_id, exc.category, exc.message)

        ok = True
        return ChatResult(
            conversation_id=conv_id,
            message=ReplyMessage(content=reply),
        )
    finally:
        record_latency(
            operation="mcp.chat",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )

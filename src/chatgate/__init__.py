"""chatgate: chat-completion gateway built around an ordered advisor pipeline."""

from chatgate.advisors import AdvisorChain
from chatgate.advisors import AdvisorChainBuilder
from chatgate.advisors import AdvisorContext
from chatgate.chat import Message
from chatgate.errors import ConversionFailure
from chatgate.errors import FatalUpstreamFailure
from chatgate.errors import GatewayError
from chatgate.errors import InvalidRequest
from chatgate.errors import ToolExecutionFailure
from chatgate.errors import TransientUpstreamFailure
from chatgate.memory import ConversationMemory
from chatgate.orchestrator import CompletionOrchestrator
from chatgate.pipeline import build_advisor_chain

__all__ = [
    "AdvisorChain",
    "AdvisorChainBuilder",
    "AdvisorContext",
    "CompletionOrchestrator",
    "ConversationMemory",
    "ConversionFailure",
    "FatalUpstreamFailure",
    "GatewayError",
    "InvalidRequest",
    "Message",
    "ToolExecutionFailure",
    "TransientUpstreamFailure",
    "build_advisor_chain",
]

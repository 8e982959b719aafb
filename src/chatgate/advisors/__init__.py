"""Advisor domain: the ordered interceptor chain and its built-in advisors."""

from chatgate.advisors.base import ATTR_MEMORY_HISTORY
from chatgate.advisors.base import ATTR_MODEL_INVOCATIONS
from chatgate.advisors.base import ATTR_RETRY_ATTEMPTS
from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import AdvisorDescriptor
from chatgate.advisors.base import CallNext
from chatgate.advisors.base import StreamNext
from chatgate.advisors.chain import AdvisorChain
from chatgate.advisors.chain import AdvisorChainBuilder
from chatgate.advisors.chain import TerminalInvocation
from chatgate.advisors.memory import MemoryAdvisor
from chatgate.advisors.observation import ObservationAdvisor
from chatgate.advisors.request_logging import LoggingAdvisor
from chatgate.advisors.request_logging import LogVerbosity
from chatgate.advisors.retry import RetryAdvisor
from chatgate.advisors.retry import RetryPolicy
from chatgate.advisors.retry import RetryState

__all__ = [
    "ATTR_MEMORY_HISTORY",
    "ATTR_MODEL_INVOCATIONS",
    "ATTR_RETRY_ATTEMPTS",
    "Advisor",
    "AdvisorChain",
    "AdvisorChainBuilder",
    "AdvisorContext",
    "AdvisorDescriptor",
    "CallNext",
    "LogVerbosity",
    "LoggingAdvisor",
    "MemoryAdvisor",
    "ObservationAdvisor",
    "RetryAdvisor",
    "RetryPolicy",
    "RetryState",
    "StreamNext",
    "TerminalInvocation",
]

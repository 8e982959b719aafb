"""Gateway error taxonomy.

Every error surfaced to a caller carries a human-readable message and a
stable ``category`` string.  Stack traces stay in the logs.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors the orchestrator hands back to callers."""

    category = "gateway_error"

    def __init__(self, message: str, *, category: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category


class InvalidRequest(GatewayError):
    """The caller sent nothing usable (no messages, or only blank ones)."""

    category = "invalid_request"


class UpstreamFailure(GatewayError):
    """The model backend failed and no advisor recovered."""

    category = "upstream_error"


class TransientUpstreamFailure(UpstreamFailure):
    """Timeout or transport failure; eligible for retry."""

    category = "connection"


class FatalUpstreamFailure(UpstreamFailure):
    """Non-retryable upstream failure (bad request, auth, malformed reply)."""

    category = "upstream_error"


class ConversionFailure(GatewayError):
    """Structured output could not be mapped onto the requested shape."""

    category = "conversion_error"

    def __init__(self, target: str, fields: list[str], detail: str = "") -> None:
        self.target = target
        self.fields = list(fields)
        listed = ", ".join(self.fields) if self.fields else "<response>"
        message = f"Failed to convert response to {target}: invalid or missing fields: {listed}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ToolExecutionFailure(GatewayError):
    """An external tool failed or timed out."""

    category = "tool_error"

    def __init__(self, tool_name: str, input_summary: str, reason: str) -> None:
        self.tool_name = tool_name
        self.input_summary = input_summary
        super().__init__(
            f"Tool '{tool_name}' failed for input {input_summary}: {reason}"
        )


class ObservationFailure(GatewayError):
    """Raised inside observers; always caught and logged, never surfaced."""

    category = "observation_error"


def timeout_failure(message: str) -> TransientUpstreamFailure:
    """Build a retryable failure in the ``timeout`` category."""
    return TransientUpstreamFailure(message, category="timeout")

"""External tool invocation.

Zero or more ``ToolProvider`` implementations sit behind a ``ToolRegistry``.
Any provider-side failure or timeout surfaces as ``ToolExecutionFailure``
naming the tool and a short summary of its input.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from fastmcp import Client

from chatgate.chat.schemas import ToolSpec
from chatgate.errors import ToolExecutionFailure

logger = logging.getLogger(__name__)

_INPUT_SUMMARY_CHARS = 200


def summarize_input(arguments: dict[str, Any]) -> str:
    """Compact, truncated JSON rendering of tool arguments for error messages."""
    try:
        text = json.dumps(arguments, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(arguments)
    if len(text) > _INPUT_SUMMARY_CHARS:
        return text[: _INPUT_SUMMARY_CHARS - 3] + "..."
    return text


@runtime_checkable
class ToolProvider(Protocol):
    """Capability exposing callable tools."""

    async def list_tools(self) -> list[ToolSpec]: ...

    async def execute(
        self, tool_name: str, arguments: dict[str, Any], timeout: float
    ) -> str: ...


class McpToolProvider:
    """Tools served by an MCP server, reached through a ``fastmcp.Client``."""

    def __init__(self, client: Client) -> None:
        self._client = client

    async def list_tools(self) -> list[ToolSpec]:
        async with self._client:
            tools = await self._client.list_tools()
        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in tools
        ]

    async def execute(
        self, tool_name: str, arguments: dict[str, Any], timeout: float
    ) -> str:
        async with self._client:
            result = await self._client.call_tool(tool_name, arguments, timeout=timeout)
        parts = [
            getattr(block, "text", "")
            for block in result.content
            if getattr(block, "text", None) is not None
        ]
        return "\n".join(parts)


class ToolRegistry:
    """Aggregates providers and routes each call to the provider owning the tool."""

    def __init__(
        self,
        providers: list[ToolProvider] | None = None,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._providers = list(providers or [])
        self._timeout = timeout_seconds
        self._routes: dict[str, ToolProvider] | None = None
        self._specs: list[ToolSpec] = []

    def __len__(self) -> int:
        return len(self._providers)

    async def list_tools(self) -> list[ToolSpec]:
        """Return every advertised tool; the first provider wins on name clashes."""
        if self._routes is None:
            routes: dict[str, ToolProvider] = {}
            specs: list[ToolSpec] = []
            for provider in self._providers:
                for spec in await provider.list_tools():
                    if spec.name in routes:
                        logger.warning("Duplicate tool name %s ignored", spec.name)
                        continue
                    routes[spec.name] = provider
                    specs.append(spec)
            self._routes = routes
            self._specs = specs
            logger.info("Tools registered: %d tools available", len(specs))
        return list(self._specs)

    def invalidate(self) -> None:
        """Forget the cached tool listing."""
        self._routes = None
        self._specs = []

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> str:
        await self.list_tools()
        assert self._routes is not None
        summary = summarize_input(arguments)
        provider = self._routes.get(tool_name)
        if provider is None:
            raise ToolExecutionFailure(tool_name, summary, "unknown tool")

        logger.debug("Executing tool %s with %s", tool_name, summary)
        try:
            async with asyncio.timeout(self._timeout):
                return await provider.execute(tool_name, arguments, self._timeout)
        except TimeoutError as exc:
            raise ToolExecutionFailure(
                tool_name, summary, f"timed out after {self._timeout}s"
            ) from exc
        except ToolExecutionFailure:
            raise
        except Exception as exc:
            raise ToolExecutionFailure(tool_name, summary, str(exc)) from exc

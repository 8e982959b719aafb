"""System prompt sources."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol
from typing import runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_PROMPT = "You are a helpful AI assistant."

_LANGUAGE_HINTS = (
    "same language",
    "language as the user",
    "answer in",
    "respond in",
)


@runtime_checkable
class SystemPromptProvider(Protocol):
    """Supplies the system prompt prepended to every request."""

    def get_prompt(self) -> str: ...

    def reload(self) -> None: ...


class StaticPromptProvider:
    """Fixed prompt, mostly for tests and embedding."""

    def __init__(self, prompt: str = DEFAULT_FALLBACK_PROMPT) -> None:
        self._prompt = prompt

    def get_prompt(self) -> str:
        return self._prompt

    def reload(self) -> None:
        return None


class FileSystemPromptProvider:
    """Prompt read from a UTF-8 file and cached until ``reload()``.

    A read failure keeps the previously loaded prompt, or the fallback when
    nothing was ever loaded.  A blank file always yields the fallback.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fallback: str = DEFAULT_FALLBACK_PROMPT,
    ) -> None:
        self._path = Path(path)
        self._fallback = fallback
        self._lock = threading.Lock()
        self._prompt: str | None = None
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def get_prompt(self) -> str:
        with self._lock:
            return self._prompt if self._prompt is not None else self._fallback

    def reload(self) -> None:
        try:
            loaded = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            with self._lock:
                if self._prompt is None:
                    logger.error(
                        "Failed to load system prompt from %s: %s. Using fallback prompt.",
                        self._path,
                        exc,
                    )
                    self._prompt = self._fallback
                else:
                    logger.error(
                        "Failed to reload system prompt from %s: %s. Keeping previous prompt.",
                        self._path,
                        exc,
                    )
            return

        if not loaded.strip():
            logger.warning(
                "System prompt file %s is empty or whitespace. Using fallback prompt.",
                self._path,
            )
            with self._lock:
                self._prompt = self._fallback
            return

        with self._lock:
            self._prompt = loaded
        logger.info("System prompt loaded successfully (length: %d characters)", len(loaded))
        _check_language_instructions(loaded)


def _check_language_instructions(prompt: str) -> bool:
    lowered = prompt.lower()
    if any(hint in lowered for hint in _LANGUAGE_HINTS):
        logger.debug("Language-matching instructions detected in system prompt")
        return True
    logger.warning(
        "System prompt may not include language-matching instructions. "
        "Consider telling the model to answer in the user's language."
    )
    return False

from __future__ import annotations


class DialogueError(Exception):
    """Base exception for the conversation simulator."""


class ConfigError(DialogueError):
    """Raised when required settings are missing or out of range."""


class GenerationError(DialogueError):
    """Raised when the language-model backend fails to produce a reply."""


class MemoryStoreError(DialogueError):
    """Raised when the episodic memory store cannot read or write."""

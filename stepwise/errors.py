"""Exceptions for failures that abort the current request."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad TOML, wrong types, corrupt settings)."""


class StorageError(AgentError):
    """Raised when session or settings state cannot be persisted."""


class CompletionTimeout(AgentError):
    """Raised when the completion API does not answer within the configured timeout."""


class RateLimitedError(AgentError):
    """Raised when the completion API rejects a request for rate limiting."""


class PathEscapeError(ValueError):
    """Raised when a path argument resolves outside the project root."""

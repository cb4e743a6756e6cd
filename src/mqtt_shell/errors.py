"""Application-level exception types for mqtt-shell."""

from __future__ import annotations


class ShellError(Exception):
    """Base exception for mqtt-shell."""


class InterpretError(ShellError):
    """Raised when an input line can not be tokenized or has an invalid operator order."""


class CommandError(ShellError):
    """Raised when a built-in command receives invalid arguments."""

    def __init__(self, message: str, usage: str | None = None) -> None:
        super().__init__(message)
        self.usage = usage

    def __str__(self) -> str:
        message = super().__str__()
        if self.usage:
            return f"{message}\n{self.usage}"
        return message


class BrokerError(ShellError):
    """Raised when the broker rejects or fails a publish, subscribe or unsubscribe."""


class PipelineError(ShellError):
    """Raised when a process pipeline can not be built or did not finish successfully."""


class ConfigurationError(ShellError):
    """Base exception for configuration and startup validation errors."""


class MacroConfigError(ConfigurationError):
    """Raised when a macro definition is invalid."""


class EnvironmentNotFoundError(ConfigurationError):
    """Raised when the requested environment file does not exist."""


class BrokerMissingError(ConfigurationError):
    """Raised when no broker URI is configured."""

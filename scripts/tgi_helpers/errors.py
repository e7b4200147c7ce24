"""Error taxonomy for the benchmark bootstrap.

Every failure raised by the bootstrap layer is a ``BenchmarkError`` carrying the
stage it happened in and an ``error_type`` for categorisation. The orchestrator is
the only place that turns one of these into a process exit status.
"""

from __future__ import annotations

from typing import ClassVar


class BenchmarkError(Exception):
    """Base exception for known bootstrap failures that should be reported without a traceback."""

    stage: ClassVar[str] = "bootstrap"

    def __init__(self, message: str, error_type: str = "unknown") -> None:
        """Initialise BenchmarkError with message and error type.

        Args:
            message: The user-friendly error message.
            error_type: The type of error for categorisation.
        """
        super().__init__(message)
        self.error_type = error_type

    @property
    def reason(self) -> str:
        """Human-readable cause, including the chained exception if there is one."""
        message = str(self)
        cause = self.__cause__
        if cause is not None and str(cause) and str(cause) not in message:
            return f"{message}: {cause}"
        return message


class ConfigError(BenchmarkError):
    """Missing or invalid user input."""

    stage = "configuration"

    MISSING_TOKENIZER = "missing_tokenizer"
    EMPTY_BATCH_SIZES = "empty_batch_sizes"
    INVALID_VALUE = "invalid_value"
    RUNNER_UNAVAILABLE = "runner_unavailable"


class TokenizerError(BenchmarkError):
    """Tokenizer could not be found, downloaded or parsed."""

    stage = "tokenizer"

    NOT_FOUND = "not_found"
    DOWNLOAD_FAILED = "download_failed"
    INVALID_FORMAT = "invalid_format"


class BackendConnectionError(BenchmarkError):
    """Shards could not be reached, attached or reset."""

    stage = "backend"

    UNREACHABLE = "unreachable"
    HANDSHAKE_FAILED = "handshake_failed"
    RESET_FAILED = "reset_failed"

"""Data models and defaults for the benchmark bootstrap.

This module contains the immutable run configuration handed to the benchmark run,
along with the defaults every configuration source falls back to.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import ConfigError

# Global configuration defaults
DEFAULT_REVISION = "main"
DEFAULT_BATCH_SIZES: tuple[int, ...] = (1, 2, 4, 8, 16, 32)
DEFAULT_SEQUENCE_LENGTH = 10
DEFAULT_DECODE_LENGTH = 8
DEFAULT_RUNS = 10
DEFAULT_WARMUPS = 1
DEFAULT_MASTER_SHARD_UDS_PATH = "/tmp/text-generation-server-0"  # noqa: S108
DEFAULT_RUNNER = "text_generation_benchmark:run"


@dataclass(frozen=True)
class GenerationParams:
    """Optional decoding parameters forwarded to the shards.

    Every field is independently optional; ``None`` leaves the backend default in
    place. ``watermark`` and ``do_sample`` are plain flags and default to off.
    """

    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    typical_p: float | None = None
    repetition_penalty: float | None = None
    watermark: bool = False
    do_sample: bool = False
    min_new_tokens: int | None = None

    def __post_init__(self) -> None:
        """Validate parameter ranges the shards would otherwise reject mid-run."""
        for name in ("temperature", "repetition_penalty"):
            value = getattr(self, name)
            if value is not None and not (math.isfinite(value) and value > 0):
                msg = f"{name} must be a positive number, got {value}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE)
        for name in ("top_p", "typical_p"):
            value = getattr(self, name)
            if value is not None and not (0 < value <= 1):
                msg = f"{name} must be in (0, 1], got {value}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE)
        for name in ("top_k", "min_new_tokens"):
            value = getattr(self, name)
            if value is not None and value < 1:
                msg = f"{name} must be at least 1, got {value}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE)

    @property
    def is_default(self) -> bool:
        """True when no parameter overrides the backend defaults."""
        return self == GenerationParams()

    def overrides(self) -> dict[str, Any]:
        """Return only the parameters that differ from the backend defaults."""
        defaults = asdict(GenerationParams())
        return {key: value for key, value in asdict(self).items() if value != defaults[key]}


@dataclass(frozen=True)
class RunConfig:
    """Resolved, validated benchmark plan.

    Built once per process by the config resolver and never mutated afterwards.
    """

    tokenizer_id: str
    revision: str = DEFAULT_REVISION
    batch_sizes: tuple[int, ...] = DEFAULT_BATCH_SIZES
    sequence_length: int = DEFAULT_SEQUENCE_LENGTH
    decode_length: int = DEFAULT_DECODE_LENGTH
    runs: int = DEFAULT_RUNS
    warmups: int = DEFAULT_WARMUPS
    backend_socket_path: str = DEFAULT_MASTER_SHARD_UDS_PATH
    generation_params: GenerationParams = field(default_factory=GenerationParams)
    runner: str = DEFAULT_RUNNER

    def __post_init__(self) -> None:
        """Enforce the invariants the benchmark run relies on without re-checking.

        Raises:
            ConfigError: If any field is out of range.
        """
        if not self.tokenizer_id:
            msg = "A tokenizer name or local path is required (--tokenizer-name / TOKENIZER_NAME)"
            raise ConfigError(msg, ConfigError.MISSING_TOKENIZER)

        # Normalise to a tuple so callers can pass any sequence
        object.__setattr__(self, "batch_sizes", tuple(self.batch_sizes))
        if not self.batch_sizes:
            msg = "batch sizes must not be empty"
            raise ConfigError(msg, ConfigError.EMPTY_BATCH_SIZES)
        non_positive = [size for size in self.batch_sizes if size < 1]
        if non_positive:
            msg = f"batch sizes must be positive, got {non_positive}"
            raise ConfigError(msg, ConfigError.INVALID_VALUE)

        for name in ("sequence_length", "decode_length", "runs"):
            if getattr(self, name) < 1:
                msg = f"{name} must be at least 1, got {getattr(self, name)}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE)
        if self.warmups < 0:
            msg = f"warmups must not be negative, got {self.warmups}"
            raise ConfigError(msg, ConfigError.INVALID_VALUE)
        if not self.backend_socket_path:
            msg = "master shard socket path must not be empty"
            raise ConfigError(msg, ConfigError.INVALID_VALUE)

    @property
    def total_iterations(self) -> int:
        """Number of benchmark iterations across the whole batch-size sweep."""
        return len(self.batch_sizes) * (self.warmups + self.runs)

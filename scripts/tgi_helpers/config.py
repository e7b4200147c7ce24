"""Run configuration resolution for the benchmark bootstrap.

This module turns command line flags, the process environment and an optional
``.env`` file into a validated ``RunConfig``. Every field can be given as a flag or
through an environment variable of the same logical name; flags win over the
process environment, which wins over the ``.env`` file, which wins over defaults.
"""

from __future__ import annotations

import argparse
import math
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import dotenv_values

from . import __version__
from .errors import ConfigError
from .logger import logger
from .models import (
    DEFAULT_BATCH_SIZES,
    DEFAULT_DECODE_LENGTH,
    DEFAULT_MASTER_SHARD_UDS_PATH,
    DEFAULT_REVISION,
    DEFAULT_RUNNER,
    DEFAULT_RUNS,
    DEFAULT_SEQUENCE_LENGTH,
    DEFAULT_WARMUPS,
    GenerationParams,
    RunConfig,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

# Argument destination -> environment variable consulted when the flag is absent
ENV_VARS = {
    "tokenizer_name": "TOKENIZER_NAME",
    "revision": "REVISION",
    "batch_size": "BATCH_SIZE",
    "sequence_length": "SEQUENCE_LENGTH",
    "decode_length": "DECODE_LENGTH",
    "runs": "RUNS",
    "warmups": "WARMUPS",
    "master_shard_uds_path": "MASTER_SHARD_UDS_PATH",
    "temperature": "TEMPERATURE",
    "top_k": "TOP_K",
    "top_p": "TOP_P",
    "typical_p": "TYPICAL_P",
    "repetition_penalty": "REPETITION_PENALTY",
    "watermark": "WATERMARK",
    "do_sample": "DO_SAMPLE",
    "min_new_tokens": "MIN_NEW_TOKENS",
    "runner": "BENCHMARK_RUNNER",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    Every option defaults to ``None`` so the resolver can tell an absent flag apart
    from one explicitly set, and fall back to the environment only for the former.

    Returns:
        The configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="tgi-benchmark",
        description=(
            "Text Generation Inference latency benchmark. Talks directly to the model "
            "shards over their gRPC Unix sockets, bypassing the router."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Every option can also be set through the environment variable shown in "
            "brackets, or in a .env file in the working directory.\n"
            "HUGGING_FACE_HUB_TOKEN authenticates tokenizer downloads; "
            "LOG_LEVEL sets verbosity."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument(
        "-t",
        "--tokenizer-name",
        help="Tokenizer model id on the Hugging Face hub, or a local directory [TOKENIZER_NAME]",
    )
    parser.add_argument(
        "--revision",
        help=f"Hub revision of the tokenizer (default: {DEFAULT_REVISION}) [REVISION]",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        action="append",
        help=(
            "Batch size to benchmark; repeat the flag or pass a comma separated list "
            f"(default: {','.join(map(str, DEFAULT_BATCH_SIZES))}) [BATCH_SIZE]"
        ),
    )
    parser.add_argument(
        "-s",
        "--sequence-length",
        help=f"Prompt length in tokens (default: {DEFAULT_SEQUENCE_LENGTH}) [SEQUENCE_LENGTH]",
    )
    parser.add_argument(
        "-d",
        "--decode-length",
        help=f"Tokens generated per run (default: {DEFAULT_DECODE_LENGTH}) [DECODE_LENGTH]",
    )
    parser.add_argument(
        "-r", "--runs", help=f"Measured runs per batch size (default: {DEFAULT_RUNS}) [RUNS]"
    )
    parser.add_argument(
        "-w", "--warmups", help=f"Discarded warmup runs (default: {DEFAULT_WARMUPS}) [WARMUPS]"
    )
    parser.add_argument(
        "-m",
        "--master-shard-uds-path",
        help=(
            "Unix socket of the master shard "
            f"(default: {DEFAULT_MASTER_SHARD_UDS_PATH}) [MASTER_SHARD_UDS_PATH]"
        ),
    )
    parser.add_argument(
        "--runner",
        help=f"Benchmark run callable as module:attribute (default: {DEFAULT_RUNNER}) "
        "[BENCHMARK_RUNNER]",
    )

    generation = parser.add_argument_group(
        "generation parameters",
        "Decoding strategy overrides; unset values keep the server defaults.",
    )
    generation.add_argument("--temperature", help="[TEMPERATURE]")
    generation.add_argument("--top-k", help="[TOP_K]")
    generation.add_argument("--top-p", help="[TOP_P]")
    generation.add_argument("--typical-p", help="[TYPICAL_P]")
    generation.add_argument("--repetition-penalty", help="[REPETITION_PENALTY]")
    generation.add_argument(
        "--watermark", action=argparse.BooleanOptionalAction, default=None, help="[WATERMARK]"
    )
    generation.add_argument(
        "--do-sample", action=argparse.BooleanOptionalAction, default=None, help="[DO_SAMPLE]"
    )
    generation.add_argument("--min-new-tokens", help="[MIN_NEW_TOKENS]")

    return parser


class ConfigResolver:
    """Resolves raw flags and environment values into a ``RunConfig``.

    Resolution is a pure transformation of its inputs: the environment and the
    ``.env`` values are captured at construction and nothing is written back.
    """

    def __init__(
        self, environ: Mapping[str, str] | None = None, env_file: str | Path | None = ".env"
    ) -> None:
        """Initialise resolver with the environment sources to fall back on.

        Args:
            environ: Process environment; defaults to ``os.environ``.
            env_file: Optional dotenv file consulted after the process environment.
        """
        self.environ = dict(os.environ if environ is None else environ)
        self.env_file = Path(env_file) if env_file else None
        self.dotenv: dict[str, str | None] = {}
        if self.env_file is not None and self.env_file.is_file():
            self.dotenv = dict(dotenv_values(self.env_file))
            logger.debug("📝 Loaded %d values from %s", len(self.dotenv), self.env_file)

    def resolve(self, argv: Sequence[str] | None = None) -> RunConfig:
        """Parse arguments and build the validated run configuration.

        Args:
            argv: Command line arguments, excluding the program name.

        Returns:
            The resolved run configuration.

        Raises:
            ConfigError: If a value is missing, malformed or out of range.
        """
        args = build_parser().parse_args(argv)

        found = self._lookup("tokenizer_name", args.tokenizer_name)
        tokenizer_name = found[0].strip() if found else ""
        if not tokenizer_name:
            msg = "A tokenizer name or local path is required (--tokenizer-name / TOKENIZER_NAME)"
            raise ConfigError(msg, ConfigError.MISSING_TOKENIZER)

        generation_params = GenerationParams(
            temperature=self._float("temperature", args.temperature),
            top_k=self._int("top_k", args.top_k),
            top_p=self._float("top_p", args.top_p),
            typical_p=self._float("typical_p", args.typical_p),
            repetition_penalty=self._float("repetition_penalty", args.repetition_penalty),
            watermark=self._flag("watermark", args.watermark),
            do_sample=self._flag("do_sample", args.do_sample),
            min_new_tokens=self._int("min_new_tokens", args.min_new_tokens),
        )

        return RunConfig(
            tokenizer_id=tokenizer_name,
            revision=self._str("revision", args.revision, DEFAULT_REVISION),
            batch_sizes=self._batch_sizes(args.batch_size),
            sequence_length=self._int_or_default(
                "sequence_length", args.sequence_length, DEFAULT_SEQUENCE_LENGTH
            ),
            decode_length=self._int_or_default(
                "decode_length", args.decode_length, DEFAULT_DECODE_LENGTH
            ),
            runs=self._int_or_default("runs", args.runs, DEFAULT_RUNS),
            warmups=self._int_or_default("warmups", args.warmups, DEFAULT_WARMUPS),
            backend_socket_path=self._str(
                "master_shard_uds_path", args.master_shard_uds_path, DEFAULT_MASTER_SHARD_UDS_PATH
            ),
            generation_params=generation_params,
            runner=self._str("runner", args.runner, DEFAULT_RUNNER),
        )

    def _lookup(self, dest: str, cli_value: str | None) -> tuple[str, str] | None:
        """Find the raw value for a field and describe where it came from.

        Returns:
            ``(value, source)`` or None when no source sets the field.
        """
        if cli_value is not None:
            return cli_value, f"--{dest.replace('_', '-')}"
        env_name = ENV_VARS[dest]
        if env_name in self.environ:
            return self.environ[env_name], env_name
        dotenv_value = self.dotenv.get(env_name)
        if dotenv_value is not None:
            return dotenv_value, f"{env_name} ({self.env_file})"
        return None

    def _str(self, dest: str, cli_value: str | None, default: str) -> str:
        found = self._lookup(dest, cli_value)
        if found is None:
            return default
        value, source = found
        value = value.strip()
        if not value:
            msg = f"{source} must not be empty"
            raise ConfigError(msg, ConfigError.INVALID_VALUE)
        return value

    def _int(self, dest: str, cli_value: str | None) -> int | None:
        found = self._lookup(dest, cli_value)
        if found is None:
            return None
        value, source = found
        try:
            return int(value.strip())
        except ValueError as e:
            msg = f"Invalid integer value for {source}: {value!r}"
            raise ConfigError(msg, ConfigError.INVALID_VALUE) from e

    def _int_or_default(self, dest: str, cli_value: str | None, default: int) -> int:
        value = self._int(dest, cli_value)
        return default if value is None else value

    def _float(self, dest: str, cli_value: str | None) -> float | None:
        found = self._lookup(dest, cli_value)
        if found is None:
            return None
        value, source = found
        try:
            parsed = float(value.strip())
        except ValueError as e:
            msg = f"Invalid number for {source}: {value!r}"
            raise ConfigError(msg, ConfigError.INVALID_VALUE) from e
        if not math.isfinite(parsed):
            msg = f"Invalid number for {source}: {value!r}"
            raise ConfigError(msg, ConfigError.INVALID_VALUE)
        return parsed

    def _flag(self, dest: str, cli_value: bool | None) -> bool:
        if cli_value is not None:
            return cli_value
        found = self._lookup(dest, None)
        if found is None:
            return False
        value, source = found
        normalised = value.strip().lower()
        if normalised in _TRUE_VALUES:
            return True
        if normalised in _FALSE_VALUES:
            return False
        msg = f"Invalid boolean value for {source}: {value!r}"
        raise ConfigError(msg, ConfigError.INVALID_VALUE)

    def _batch_sizes(self, cli_values: list[str] | None) -> tuple[int, ...]:
        """Resolve the batch-size sweep.

        An absent field yields the default sweep. A field, or any single ``-b`` flag,
        that is present but holds no sizes is an error, never a silent fallback.

        Returns:
            Batch sizes in the order given.

        Raises:
            ConfigError: If the list is empty or holds a non-positive or non-integer entry.
        """
        if cli_values is not None:
            raw_items, source = cli_values, "--batch-size"
        else:
            found = self._lookup("batch_size", None)
            if found is None:
                return DEFAULT_BATCH_SIZES
            raw_items, source = [found[0]], found[1]

        pieces = []
        for item in raw_items:
            item_pieces = [piece.strip() for piece in item.split(",") if piece.strip()]
            if not item_pieces:
                msg = f"{source} was given but contains no batch sizes"
                raise ConfigError(msg, ConfigError.EMPTY_BATCH_SIZES)
            pieces.extend(item_pieces)

        sizes = []
        for piece in pieces:
            try:
                size = int(piece)
            except ValueError as e:
                msg = f"Invalid batch size in {source}: {piece!r}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE) from e
            if size < 1:
                msg = f"Batch sizes must be positive, got {size} in {source}"
                raise ConfigError(msg, ConfigError.INVALID_VALUE)
            sizes.append(size)
        return tuple(sizes)

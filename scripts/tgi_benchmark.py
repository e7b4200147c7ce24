#!/usr/bin/env python3
"""Text Generation Inference latency benchmark.

Bootstraps a latency benchmark that bypasses the router and talks directly to the
model shards over their gRPC Unix sockets. The bootstrap runs in two phases:

1. A synchronous phase that resolves the run configuration and loads the tokenizer,
   from a local directory or the Hugging Face hub.
2. An asyncio phase that attaches to every shard behind the master socket, clears
   their caches, and hands the configuration, tokenizer and connection to the
   benchmark run.

Any failure stops the process with a non-zero exit status and a single diagnostic
line naming the failing stage. Nothing is retried: benchmarking against a retried,
possibly inconsistent server would invalidate the measurements.
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import TYPE_CHECKING

from tgi_helpers.backend import BackendConnector
from tgi_helpers.config import ConfigResolver
from tgi_helpers.errors import BenchmarkError
from tgi_helpers.logger import logger, setup_logging
from tgi_helpers.runner import load_runner
from tgi_helpers.tokenizer import TokenizerAcquirer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tgi_helpers.models import RunConfig
    from tgi_helpers.runner import BenchmarkRun
    from tgi_helpers.tokenizer import TokenizerHandle

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class Stage(Enum):
    """Bootstrap states, in the only order they can be entered."""

    INIT = "init"
    CONFIG_RESOLVED = "config_resolved"
    TOKENIZER_READY = "tokenizer_ready"
    RUNTIME_STARTED = "runtime_started"
    BACKEND_CONNECTED = "backend_connected"
    CACHE_CLEARED = "cache_cleared"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


_ORDER = list(Stage)[: list(Stage).index(Stage.SUCCESS)]


class BenchmarkBootstrap:
    """Sequences configuration, tokenizer, backend connection and the benchmark run.

    The bootstrap is single-pass: each instance runs once, moving forward through
    ``Stage`` until it reaches ``SUCCESS`` or ``FAILURE``. It owns the sharded
    connection for the whole run and is the only place that decides the exit status.
    """

    def __init__(
        self,
        resolver: ConfigResolver | None = None,
        acquirer: TokenizerAcquirer | None = None,
        connector: BackendConnector | None = None,
        runner: BenchmarkRun | None = None,
    ) -> None:
        """Initialise bootstrap with its collaborators.

        Args:
            resolver: Configuration resolver; reads the process environment by default.
            acquirer: Tokenizer acquirer.
            connector: Backend connector.
            runner: Benchmark run callable; loaded from the configuration when omitted.
        """
        self.resolver = resolver or ConfigResolver()
        self.acquirer = acquirer or TokenizerAcquirer()
        self.connector = connector or BackendConnector()
        self.runner = runner
        self.stage = Stage.INIT
        self.history = [Stage.INIT]

    def _advance(self, stage: Stage) -> None:
        """Move to the next stage.

        Raises:
            RuntimeError: If ``stage`` would skip a stage or go backwards.
        """
        if self.stage in (Stage.SUCCESS, Stage.FAILURE):
            msg = f"Bootstrap already finished ({self.stage.value})"
            raise RuntimeError(msg)
        if stage is not Stage.FAILURE:
            expected = (
                Stage.SUCCESS
                if self.stage is _ORDER[-1]
                else _ORDER[_ORDER.index(self.stage) + 1]
            )
            if stage is not expected:
                msg = f"Cannot move from {self.stage.value} to {stage.value}"
                raise RuntimeError(msg)
        logger.debug("➡️ Stage: %s -> %s", self.stage.value, stage.value)
        self.stage = stage
        self.history.append(stage)

    def run(self, argv: Sequence[str] | None = None) -> int:
        """Run the bootstrap and the benchmark.

        Args:
            argv: Command line arguments, excluding the program name.

        Returns:
            The process exit status.

        Raises:
            RuntimeError: If this bootstrap has already run.
        """
        if self.stage is not Stage.INIT:
            msg = f"Bootstrap has already run (stage {self.stage.value}); create a new one"
            raise RuntimeError(msg)

        try:
            config = self.resolver.resolve(argv)
            self._advance(Stage.CONFIG_RESOLVED)
            self._log_config(config)
            run_benchmark = self.runner or load_runner(config.runner)

            # The tokenizer is loaded before the event loop exists; blocking file and
            # network I/O stays out of the async phase.
            tokenizer = self.acquirer.acquire(config.tokenizer_id, config.revision)
            self._advance(Stage.TOKENIZER_READY)

            asyncio.run(self._run_async(config, tokenizer, run_benchmark))
        except BenchmarkError as e:
            self._advance(Stage.FAILURE)
            logger.error("❌ %s failed (%s): %s", e.stage.capitalize(), e.error_type, e.reason)
            return EXIT_FAILURE
        except KeyboardInterrupt:
            self._advance(Stage.FAILURE)
            logger.info("⏹️ Benchmark interrupted by user")
            return EXIT_INTERRUPTED
        except Exception:
            failed_at = self.stage
            self._advance(Stage.FAILURE)
            logger.exception("💥 Benchmark failed after stage %s", failed_at.value)
            return EXIT_FAILURE

        self._advance(Stage.SUCCESS)
        logger.info("🎉 Benchmark complete")
        return EXIT_SUCCESS

    async def _run_async(
        self, config: RunConfig, tokenizer: TokenizerHandle, run_benchmark: BenchmarkRun
    ) -> None:
        """Connect, reset and run the benchmark inside the event loop."""
        self._advance(Stage.RUNTIME_STARTED)
        client = await self.connector.connect(config.backend_socket_path)
        self._advance(Stage.BACKEND_CONNECTED)
        try:
            await self.connector.reset_cache(client)
            self._advance(Stage.CACHE_CLEARED)

            self._advance(Stage.RUNNING)
            result = run_benchmark(config, tokenizer, client)
            if inspect.isawaitable(result):
                await result
        finally:
            await client.close()

    @staticmethod
    def _log_config(config: RunConfig) -> None:
        """Log the resolved benchmark plan."""
        logger.info("🚀 Starting benchmark")
        logger.info("🔤 Tokenizer: %s (revision %s)", config.tokenizer_id, config.revision)
        logger.info("📦 Batch sizes: %s", ", ".join(map(str, config.batch_sizes)))
        logger.info(
            "📏 Sequence length: %s | Decode length: %s",
            config.sequence_length,
            config.decode_length,
        )
        logger.info(
            "🔄 Runs: %s | Warmups: %s | Total iterations: %s",
            config.runs,
            config.warmups,
            config.total_iterations,
        )
        logger.info("🔌 Master shard socket: %s", config.backend_socket_path)
        if config.generation_params.is_default:
            logger.info("⚙️ Generation parameters: backend defaults")
        else:
            logger.info("⚙️ Generation parameters:")
            for key, value in config.generation_params.overrides().items():
                logger.info("  %s: %s", key, value)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the benchmark.

    Raises:
        SystemExit: Always, with the bootstrap's exit status.
    """
    setup_logging()
    raise SystemExit(BenchmarkBootstrap().run(argv))


if __name__ == "__main__":
    main()

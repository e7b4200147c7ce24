"""Helper modules for the text-generation-server latency benchmark.

This package contains the bootstrap layer of the benchmark: configuration
resolution, tokenizer acquisition, shard connection and the orchestration
that hands a live connection to the benchmark run.
"""

from __future__ import annotations

__version__ = "0.1.0"

"""Lookup of the benchmark run callable.

The measurement loop lives outside this package. It is named by an import string
``module:attribute`` and called with ``(config, tokenizer, client)``; it may be a
plain function or a coroutine function.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from .errors import ConfigError

# Called as run(config, tokenizer, client); may return an awaitable
BenchmarkRun = Callable[..., Any]


def load_runner(import_string: str) -> BenchmarkRun:
    """Import the benchmark run callable named by ``import_string``.

    Args:
        import_string: Import string of the form ``package.module:attribute``.

    Returns:
        The callable.

    Raises:
        ConfigError: If the string is malformed, the module cannot be imported, or the
            attribute is missing or not callable.
    """
    module_name, sep, attribute = import_string.partition(":")
    if not sep or not module_name or not attribute:
        msg = f"Benchmark runner must look like 'module:attribute', got {import_string!r}"
        raise ConfigError(msg, ConfigError.RUNNER_UNAVAILABLE)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Could not import benchmark runner module {module_name!r}"
        raise ConfigError(msg, ConfigError.RUNNER_UNAVAILABLE) from e

    target: Any = module
    for part in attribute.split("."):
        target = getattr(target, part, None)
        if target is None:
            msg = f"Module {module_name!r} has no attribute {attribute!r}"
            raise ConfigError(msg, ConfigError.RUNNER_UNAVAILABLE)
    if not callable(target):
        msg = f"Benchmark runner {import_string!r} is not callable"
        raise ConfigError(msg, ConfigError.RUNNER_UNAVAILABLE)
    return target

"""
costcontrol_engines.tracer -- Engine invocation tracer emitting COST_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging: engine name, engine
    version, size of the result and duration_ms.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Does NOT introduce I/O into engines; emits a log record only.

Usage:
    from costcontrol_engines.tracer import traced_engine

    @traced_engine("category_rollup", "1.0")
    def compute_category_totals(items):
        ...
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Sized
from typing import Any

# Lives under the kernel namespace so configure_logging() picks it up.
_logger = logging.getLogger("costcontrol_kernel.engines.tracer")


def traced_engine(engine_name: str, engine_version: str) -> Callable:
    """Decorator that emits COST_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "category_rollup").
        engine_version: Engine version (e.g., "1.0").

    Returns:
        Decorator function.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.debug(
                "COST_ENGINE_TRACE",
                extra={
                    "trace_type": "COST_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "result_size": len(result) if isinstance(result, Sized) else None,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator

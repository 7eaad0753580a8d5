from __future__ import annotations

import logging
import resource
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

from tripletreex import config as cx_config


def _rss_bytes(usage: resource.struct_rusage) -> int:
    # ru_maxrss is reported in bytes on macOS and in kilobytes elsewhere.
    scale = 1 if sys.platform == "darwin" else 1024
    return int(usage.ru_maxrss) * scale


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


@dataclass
class OperationMetrics:
    """Metadata collector yielded by :func:`log_operation`."""

    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_metadata(self, **values: Any) -> None:
        self.metadata.update(values)

    def render(self) -> str:
        return " ".join(
            f"{key}={_format_value(value)}" for key, value in self.metadata.items()
        )


@contextmanager
def log_operation(logger: logging.Logger, name: str) -> Iterator[OperationMetrics | None]:
    """Log wall time, CPU time and RSS growth for the wrapped operation.

    Yields ``None`` when diagnostics are disabled so callers can skip
    collecting metadata altogether.
    """

    runtime = cx_config.runtime_config()
    if not runtime.enable_diagnostics:
        yield None
        return

    metrics = OperationMetrics(name=name)
    usage_before = resource.getrusage(resource.RUSAGE_SELF)
    start = time.perf_counter()
    try:
        yield metrics
    except Exception:
        wall_ms = (time.perf_counter() - start) * 1e3
        logger.warning("op=%s status=error wall_ms=%.3f", name, wall_ms)
        raise
    wall_ms = (time.perf_counter() - start) * 1e3
    usage_after = resource.getrusage(resource.RUSAGE_SELF)
    cpu_user_ms = (usage_after.ru_utime - usage_before.ru_utime) * 1e3
    cpu_system_ms = (usage_after.ru_stime - usage_before.ru_stime) * 1e3
    rss_delta = _rss_bytes(usage_after) - _rss_bytes(usage_before)
    extra = metrics.render()
    logger.info(
        "op=%s wall_ms=%.3f cpu_user_ms=%.3f cpu_system_ms=%.3f rss_delta=%d%s",
        name,
        wall_ms,
        cpu_user_ms,
        cpu_system_ms,
        rss_delta,
        f" {extra}" if extra else "",
    )


__all__ = ["OperationMetrics", "log_operation"]

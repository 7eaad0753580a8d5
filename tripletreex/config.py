from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict

_LOGGER = logging.getLogger("tripletreex")

SUMMARIZE_POLICIES = {"deterministic", "never"}
_DEFAULT_LEAF_SIZE = 16
_DEFAULT_MONTE_CARLO_MIN_TUPLES = 40


def _bool_from_env(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_optional_int(raw: str | None) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value '{raw}'") from exc


def _parse_summarize_policy(value: str | None) -> str:
    if value is None:
        return "deterministic"
    policy = value.strip().lower()
    if policy not in SUMMARIZE_POLICIES:
        raise ValueError(
            f"Unsupported summarize policy '{policy}'. Expected one of {SUMMARIZE_POLICIES}."
        )
    return policy


def _parse_leaf_size(raw: str | None) -> int:
    leaf_size = _parse_optional_int(raw)
    if leaf_size is None:
        return _DEFAULT_LEAF_SIZE
    if leaf_size <= 0:
        raise ValueError(f"Leaf size must be positive, got {leaf_size}.")
    return leaf_size


@dataclass(frozen=True)
class RuntimeConfig:
    enable_numba: bool
    enable_diagnostics: bool
    log_level: str
    metric: str
    leaf_size: int
    summarize_policy: str
    monte_carlo_samples: int
    monte_carlo_min_tuples: int
    seed: int | None

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        enable_numba = _bool_from_env(os.getenv("TRIPLETREEX_ENABLE_NUMBA"), default=False)
        enable_diagnostics = _bool_from_env(
            os.getenv("TRIPLETREEX_ENABLE_DIAGNOSTICS"), default=True
        )
        log_level = os.getenv("TRIPLETREEX_LOG_LEVEL", "INFO").upper()
        metric = os.getenv("TRIPLETREEX_METRIC", "euclidean").strip().lower() or "euclidean"
        leaf_size = _parse_leaf_size(os.getenv("TRIPLETREEX_LEAF_SIZE"))
        summarize_policy = _parse_summarize_policy(os.getenv("TRIPLETREEX_SUMMARIZE"))
        raw_samples = _parse_optional_int(os.getenv("TRIPLETREEX_MONTE_CARLO_SAMPLES"))
        monte_carlo_samples = max(raw_samples or 0, 0)
        raw_min_tuples = _parse_optional_int(os.getenv("TRIPLETREEX_MONTE_CARLO_MIN_TUPLES"))
        if raw_min_tuples is None:
            monte_carlo_min_tuples = _DEFAULT_MONTE_CARLO_MIN_TUPLES
        else:
            monte_carlo_min_tuples = max(raw_min_tuples, 0)
        seed = _parse_optional_int(os.getenv("TRIPLETREEX_SEED"))
        return cls(
            enable_numba=enable_numba,
            enable_diagnostics=enable_diagnostics,
            log_level=log_level,
            metric=metric,
            leaf_size=leaf_size,
            summarize_policy=summarize_policy,
            monte_carlo_samples=monte_carlo_samples,
            monte_carlo_min_tuples=monte_carlo_min_tuples,
            seed=seed,
        )


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("tripletreex")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@lru_cache(maxsize=None)
def runtime_config() -> RuntimeConfig:
    config = RuntimeConfig.from_env()
    _configure_logging(config.log_level)
    return config


def reset_runtime_config_cache() -> None:
    runtime_config.cache_clear()


def describe_runtime() -> Dict[str, Any]:
    """Return a serialisable view of the active runtime configuration."""

    config = runtime_config()
    return {
        "enable_numba": config.enable_numba,
        "enable_diagnostics": config.enable_diagnostics,
        "log_level": config.log_level,
        "metric": config.metric,
        "leaf_size": config.leaf_size,
        "summarize_policy": config.summarize_policy,
        "monte_carlo_samples": config.monte_carlo_samples,
        "monte_carlo_min_tuples": config.monte_carlo_min_tuples,
        "seed": config.seed,
    }


__all__ = [
    "SUMMARIZE_POLICIES",
    "RuntimeConfig",
    "describe_runtime",
    "reset_runtime_config_cache",
    "runtime_config",
]

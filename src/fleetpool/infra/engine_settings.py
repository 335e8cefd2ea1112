"""Booking engine configuration.

Loaded from environment variables into an immutable object that callers
pass into ``book()``. The engine itself never reads the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_STRATEGY = "sequential"


@dataclass(frozen=True)
class EngineSettings:
    """Knobs for the booking transaction coordinator.

    Attributes:
        book_max_attempts: Resolve-and-insert attempts for a group booking
            before giving up with NoUnitsAvailable.
        book_timeout_seconds: Deadline spanning all attempts. Checked only
            before a transaction begins, never mid-transaction.
        random_seed: Seed for the ``random`` strategy. None means OS entropy.
        default_strategy: Strategy used when a group has no policy row.
    """

    book_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    book_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    random_seed: int | None = None
    default_strategy: str = DEFAULT_STRATEGY

    def __post_init__(self) -> None:
        if self.book_max_attempts < 1:
            raise ValueError("book_max_attempts must be at least 1")
        if self.book_timeout_seconds <= 0:
            raise ValueError("book_timeout_seconds must be positive")


def _int_env(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str) -> float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_engine_settings() -> EngineSettings:
    """Build EngineSettings from FLEETPOOL_* environment variables."""
    max_attempts = _int_env("FLEETPOOL_BOOK_MAX_ATTEMPTS")
    timeout = _float_env("FLEETPOOL_BOOK_TIMEOUT_SECONDS")
    strategy = os.environ.get("FLEETPOOL_DEFAULT_STRATEGY", "").strip() or DEFAULT_STRATEGY

    return EngineSettings(
        book_max_attempts=max_attempts if max_attempts is not None else DEFAULT_MAX_ATTEMPTS,
        book_timeout_seconds=timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS,
        random_seed=_int_env("FLEETPOOL_RANDOM_SEED"),
        default_strategy=strategy,
    )

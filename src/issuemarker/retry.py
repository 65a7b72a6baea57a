"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter and simple classification of transient
failures from the GitHub and ZenHub APIs (rate limit / abuse / gateway
errors / dropped connections).

Environment overrides:
  ISSUE_MARKER_RETRY_ATTEMPTS (default 3)
  ISSUE_MARKER_RETRY_BASE (seconds base, default 0.5)
  ISSUE_MARKER_RETRY_MAX_SLEEP (cap in seconds, optional)

The caller supplies a thunk returning the desired result or raising. Only
transient errors trigger a retry; other failures propagate immediately.
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests

from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(
        default_factory=lambda: int(os.environ.get("ISSUE_MARKER_RETRY_ATTEMPTS", "3"))
    )
    base_sleep: float = field(
        default_factory=lambda: float(os.environ.get("ISSUE_MARKER_RETRY_BASE", "0.5"))
    )


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def _error_text(exc: BaseException) -> str:
    response_text = getattr(exc, "response_text", None)
    if isinstance(response_text, str) and response_text:
        return f"{exc} {response_text}"
    return str(exc)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    status = getattr(exc, "status", None)
    if isinstance(status, int) and status in TRANSIENT_STATUSES:
        return True
    return is_transient(_error_text(exc))


def _compute_sleep(attempt: int, cfg: RetryConfig, out: str) -> float:
    explicit = _extract_explicit_backoff(out)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("ISSUE_MARKER_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(fn: Callable[[], T], *, cfg: RetryConfig | None = None) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or not is_transient_error(exc):
                raise
            sleep_for = _compute_sleep(attempt, cfg, _error_text(exc))
            get_logger().warning(
                f"[retry] transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
                error=str(exc),
            )
            time.sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "is_transient", "is_transient_error", "run_with_retries"]

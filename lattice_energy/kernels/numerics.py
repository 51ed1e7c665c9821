"""Numeric safety helpers (scalar and torch forms).

------------------------------------------------------------------------------
COMMENT CONVENTION (numeric choices)
------------------------------------------------------------------------------
  # [CHOICE] <name>
  # [FORMULA] <math / mapping>
  # [NOTES] <caveats, invariants>
------------------------------------------------------------------------------

Every quantity leaving a kernel has magnitude >= MIN_MAGNITUDE or is exactly
the value a formula defines as zero (self-interaction). NaN/Inf never leave a
kernel; they are replaced by MIN_MAGNITUDE and counted in an `AnomalyCounter`.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Optional

import torch

# [CHOICE] magnitude floor
# [FORMULA] |x| >= 1e-30 for every divided or scrubbed value
# [NOTES] also the floor applied to every reduced energy channel.
MIN_MAGNITUDE = 1e-30

# [CHOICE] exponent clamp
# [FORMULA] exp(clamp(x, -100, 100))
EXP_LIMIT = 100.0


def safe_div(a: float, b: float) -> float:
    """`a / b`, or `±MIN_MAGNITUDE` (sign of `a`) when the divisor or result is unusable.

    The magnitude of the returned value is never below MIN_MAGNITUDE.
    """
    a = float(a)
    b = float(b)
    fallback = MIN_MAGNITUDE if a >= 0.0 else -MIN_MAGNITUDE
    if not math.isfinite(b) or abs(b) < MIN_MAGNITUDE:
        return fallback
    result = a / b
    if not math.isfinite(result):
        return fallback
    return math.copysign(max(abs(result), MIN_MAGNITUDE), 1.0 if result >= 0.0 else -1.0)


def safe_exp(x: float) -> float:
    """`exp(x)` with `x` clamped to `[-100, 100]`; 1.0 for NaN/Inf input."""
    x = float(x)
    if not math.isfinite(x):
        return 1.0
    return math.exp(min(max(x, -EXP_LIMIT), EXP_LIMIT))


def scrub(x: float) -> float:
    """Replace NaN/Inf with MIN_MAGNITUDE; finite values pass through."""
    x = float(x)
    return x if math.isfinite(x) else MIN_MAGNITUDE


def safe_div_tensor(a: torch.Tensor, b: torch.Tensor | float) -> torch.Tensor:
    """Elementwise `safe_div`."""
    a = torch.as_tensor(a)
    b = torch.as_tensor(b, dtype=a.dtype, device=a.device)
    a, b = torch.broadcast_tensors(a, b)
    floor = torch.full_like(a, MIN_MAGNITUDE)
    fallback = torch.where(a >= 0.0, floor, -floor)
    bad_divisor = ~torch.isfinite(b) | (b.abs() < MIN_MAGNITUDE)
    safe_b = torch.where(bad_divisor, torch.ones_like(b), b)
    result = a / safe_b
    bad = bad_divisor | ~torch.isfinite(result)
    sign = torch.where(result >= 0.0, torch.ones_like(result), -torch.ones_like(result))
    result = torch.clamp(result.abs(), min=MIN_MAGNITUDE) * sign
    return torch.where(bad, fallback, result)


def safe_exp_tensor(x: torch.Tensor) -> torch.Tensor:
    """Elementwise `safe_exp`."""
    finite = torch.isfinite(x)
    clamped = torch.clamp(torch.where(finite, x, torch.zeros_like(x)), -EXP_LIMIT, EXP_LIMIT)
    return torch.where(finite, torch.exp(clamped), torch.ones_like(x))


def scrub_tensor(x: torch.Tensor, counter: Optional["AnomalyCounter"] = None, label: str = "") -> torch.Tensor:
    """Elementwise `scrub`; non-finite entries are tallied in `counter` under `label`."""
    finite = torch.isfinite(x)
    if counter is not None:
        n_bad = int((~finite).sum().item())
        if n_bad:
            counter.add(label, n_bad)
    return torch.where(finite, x, torch.full_like(x, MIN_MAGNITUDE))


class AnomalyCounter:
    """Per-worker tally of scrubbed non-finite values, keyed by kernel label.

    Not thread-safe: each worker owns one and the owner merges them afterwards.
    """

    __slots__ = ("_counts",)

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def add(self, label: str, n: int = 1) -> None:
        self._counts[label or "unlabelled"] += int(n)

    def merge(self, other: "AnomalyCounter") -> None:
        self._counts.update(other._counts)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def items(self):
        return sorted(self._counts.items())

    def __bool__(self) -> bool:
        return self.total > 0

"""Scalar NURBS evaluation (Non-Uniform Rational B-Splines).

Two forms of the same evaluator:
- Scalar: `find_span` / `basis_functions` / `evaluate_nurbs`, pure Python floats,
  O(p^2) per call. This is the reference used by tests and by per-vertex
  accessors.
- Tabulated: `BasisTable.build(u, degree, knots)` computes spans and basis
  values for a whole tensor of parameters once; `BasisTable.evaluate` then
  turns any control-point/weight pair into per-parameter values with a
  gather and two reductions. The lattice uses this because `u_i` depends only
  on the vertex index, so the basis is shared by all six curves.

Notation follows Piegl & Tiller: degree `p`, `n` control points, knot vector of
length `n + p + 1`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import torch

from ..errors import ConfigurationError
from .numerics import MIN_MAGNITUDE, safe_div, safe_div_tensor, scrub, scrub_tensor

# [CHOICE] upper clamp on the curve parameter
# [FORMULA] u ∈ [0, 1 - U_EPS]
# [NOTES] keeps the span search inside the last non-degenerate knot interval.
U_EPS = 1e-15


def clamp_parameter(u: float) -> float:
    u = float(u)
    if u != u:  # NaN
        return 0.0
    return min(max(u, 0.0), 1.0 - U_EPS)


def check_shape(num_points: int, num_weights: int, num_knots: int, degree: int) -> None:
    """Raise ConfigurationError unless `|P| = |W|` and `|P| + p + 1 = |K|`."""
    if degree < 1:
        raise ConfigurationError(f"NURBS degree must be >= 1, got {degree}")
    if num_points != num_weights or num_points + degree + 1 != num_knots:
        raise ConfigurationError(
            "NURBS parameter mismatch: "
            f"control_points={num_points}, weights={num_weights}, knots={num_knots}, degree={degree}"
        )


def find_span(u: float, degree: int, knots: Sequence[float]) -> int:
    """Index `k` with `knots[k] <= u < knots[k+1]`, by bisection over `[p, n]`."""
    n = len(knots) - degree - 1
    lo_knot = float(knots[degree])
    hi_knot = float(knots[n])
    u = min(max(float(u), lo_knot), hi_knot)
    if u >= hi_knot:
        # Right end of the domain belongs to the last non-empty span.
        span = n - 1
        while span > degree and float(knots[span]) >= hi_knot:
            span -= 1
        return span
    low = degree
    high = n
    mid = (low + high) // 2
    while u < float(knots[mid]) or u >= float(knots[mid + 1]):
        if u < float(knots[mid]):
            high = mid
        else:
            low = mid
        mid = (low + high) // 2
    return mid


def basis_functions(u: float, span: int, degree: int, knots: Sequence[float]) -> list[float]:
    """Non-zero basis functions `N[span-p .. span]` at `u` (Cox-de Boor, triangular form)."""
    N = [0.0] * (degree + 1)
    left = [0.0] * (degree + 1)
    right = [0.0] * (degree + 1)
    N[0] = 1.0
    for j in range(1, degree + 1):
        left[j] = u - float(knots[span + 1 - j])
        right[j] = float(knots[span + j]) - u
        saved = 0.0
        for r in range(j):
            temp = safe_div(N[r], right[r + 1] + left[j - r])
            N[r] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        N[j] = saved
    return N


def evaluate_nurbs(
    u: float,
    control_points: Sequence[float],
    weights: Sequence[float],
    knots: Sequence[float],
    degree: int = 3,
) -> float:
    """Rational B-spline value at `u` (clamped into `[0, 1 - U_EPS]`)."""
    check_shape(len(control_points), len(weights), len(knots), degree)
    u = clamp_parameter(u)
    span = find_span(u, degree, knots)
    N = basis_functions(u, span, degree, knots)
    total = 0.0
    weight_sum = 0.0
    for i in range(degree + 1):
        idx = span - degree + i
        if 0 <= idx < len(control_points):
            w = float(weights[idx])
            total += N[i] * float(control_points[idx]) * w
            weight_sum += N[i] * w
    return scrub(safe_div(total, weight_sum))


@dataclass(frozen=True)
class NurbsCurve:
    """Scalar-valued NURBS curve. Shape is validated on construction."""

    control_points: tuple[float, ...]
    weights: tuple[float, ...]
    knots: tuple[float, ...]
    degree: int = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "control_points", tuple(float(c) for c in self.control_points))
        object.__setattr__(self, "weights", tuple(float(w) for w in self.weights))
        object.__setattr__(self, "knots", tuple(float(k) for k in self.knots))
        check_shape(len(self.control_points), len(self.weights), len(self.knots), int(self.degree))
        if any(b < a for a, b in zip(self.knots, self.knots[1:])):
            raise ConfigurationError(f"NURBS knots must be non-decreasing, got {self.knots}")

    def __call__(self, u: float) -> float:
        return evaluate_nurbs(u, self.control_points, self.weights, self.knots, self.degree)


@dataclass(frozen=True)
class BasisTable:
    """Spans and basis values for a tensor of curve parameters."""

    span: torch.Tensor    # (V,) int64
    basis: torch.Tensor   # (V, p+1)
    degree: int
    num_points: int

    @classmethod
    def build(cls, u: torch.Tensor, degree: int, knots: Sequence[float]) -> "BasisTable":
        num_points = len(knots) - degree - 1
        if num_points < 1:
            raise ConfigurationError(f"knot vector too short for degree {degree}: {len(knots)}")
        dtype = u.dtype
        dev = u.device
        K = torch.tensor([float(k) for k in knots], dtype=dtype, device=dev)
        u = torch.nan_to_num(u, nan=0.0).clamp(0.0, 1.0 - U_EPS)
        u = u.clamp(float(knots[degree]), float(knots[num_points]))

        # [CHOICE] vectorised span search
        # [FORMULA] span = max{k : K[k] <= u}, clamped to [p, n-1]
        # [NOTES] identical to the bisection in `find_span` for u < K[n].
        span = torch.searchsorted(K, u, right=True) - 1
        span = span.clamp(degree, num_points - 1)

        N = [torch.ones_like(u)] + [torch.zeros_like(u) for _ in range(degree)]
        left = [torch.zeros_like(u) for _ in range(degree + 1)]
        right = [torch.zeros_like(u) for _ in range(degree + 1)]
        for j in range(1, degree + 1):
            left[j] = u - K[span + 1 - j]
            right[j] = K[span + j] - u
            saved = torch.zeros_like(u)
            for r in range(j):
                temp = safe_div_tensor(N[r], right[r + 1] + left[j - r])
                N[r] = saved + right[r + 1] * temp
                saved = left[j - r] * temp
            N[j] = saved
        return cls(span=span, basis=torch.stack(N, dim=-1), degree=int(degree), num_points=int(num_points))

    def evaluate(self, control_points: Sequence[float], weights: Sequence[float]) -> torch.Tensor:
        """Curve values for every tabulated parameter."""
        check_shape(len(control_points), len(weights), self.num_points + self.degree + 1, self.degree)
        dtype = self.basis.dtype
        dev = self.basis.device
        P = torch.tensor([float(c) for c in control_points], dtype=dtype, device=dev)
        W = torch.tensor([float(w) for w in weights], dtype=dtype, device=dev)
        offsets = torch.arange(self.degree + 1, device=dev)
        idx = (self.span[:, None] - self.degree + offsets[None, :]).clamp(0, self.num_points - 1)
        w = W[idx]
        total = (self.basis * P[idx] * w).sum(dim=-1)
        weight_sum = (self.basis * w).sum(dim=-1)
        return scrub_tensor(safe_div_tensor(total, weight_sum))


__all__ = [
    "MIN_MAGNITUDE",
    "U_EPS",
    "BasisTable",
    "NurbsCurve",
    "basis_functions",
    "check_shape",
    "clamp_parameter",
    "evaluate_nurbs",
    "find_span",
]

"""Calculator configuration.

Two dataclasses:
- `LatticeParameters`: the real-valued physical/tuning options. Every option
  has a closed range; values outside it are clamped (or rejected in strict
  mode).
- `LatticeConfig`: structural options (dimensions, vertex count, threads,
  device). These are validated, never clamped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from typing import Optional

import torch

from ..errors import ConfigurationError
from ..kernels.numerics import MIN_MAGNITUDE

# [CHOICE] dimension ceiling
# [FORMULA] 1 <= d <= 26
# [NOTES] critical dimension of the bosonic model the calculator sweeps.
DIMENSION_LIMIT = 26
VERTEX_LIMIT = 1_000_000

PARAMETER_RANGES: dict[str, tuple[float, float]] = {
    "influence": (0.0, 10.0),
    "weak": (0.0, 1.0),
    "collapse": (0.0, 5.0),
    "two_d": (0.0, 5.0),
    "three_d_influence": (0.0, 5.0),
    "one_d_permeation": (0.0, 5.0),
    "nurb_matter_strength": (0.0, 1.0),
    "nurb_energy_strength": (0.0, 2.0),
    "nurb_regular_matter_strength": (0.0, 1.0),
    "alpha": (0.01, 10.0),
    "beta": (0.0, 1.0),
    "carroll_factor": (0.0, 1.0),
    "mean_field_approx": (0.0, 1.0),
    "asym_collapse": (0.0, 1.0),
    "perspective_trans": (0.0, 10.0),
    "perspective_focal": (1.0, 20.0),
    "spin_interaction": (0.0, 1.0),
    "em_field_strength": (0.0, 1.0e7),
    "renorm_factor": (0.1, 10.0),
    "vacuum_energy": (0.0, 1.0),
    "god_wave_freq": (0.1, 10.0),
}


def clamp_value(name: str, value: float, *, strict: bool = False) -> float:
    """Clamp `value` into the range of parameter `name`."""
    try:
        lo, hi = PARAMETER_RANGES[name]
    except KeyError:
        raise ConfigurationError(f"unknown parameter {name!r}") from None
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if math.isnan(value):
        raise ConfigurationError(f"{name} must be a number, got NaN")
    if lo <= value <= hi:
        return value
    if strict:
        raise ConfigurationError(f"{name}={value} outside [{lo}, {hi}]")
    return min(max(value, lo), hi)


@dataclass
class LatticeParameters:
    """Physical and tuning parameters.

    Only `influence`, `weak`, `one_d_permeation`, the three NURBS strengths,
    `spin_interaction`, `em_field_strength` and `god_wave_freq` enter the
    kernels. The rest are accepted, clamped and stored for callers that read
    them back.
    """

    # Kernel scales
    influence: float = 2.0
    weak: float = 0.1
    collapse: float = 5.0
    two_d: float = 1.5
    three_d_influence: float = 5.0
    one_d_permeation: float = 1.0
    nurb_matter_strength: float = 0.27
    nurb_energy_strength: float = 0.68
    nurb_regular_matter_strength: float = 0.05

    # Reserved modulation factors
    alpha: float = 0.1
    beta: float = 0.5
    carroll_factor: float = 0.1
    mean_field_approx: float = 0.5
    asym_collapse: float = 0.5

    # Reserved projection factors
    perspective_trans: float = 2.0
    perspective_focal: float = 4.0

    spin_interaction: float = 0.1
    em_field_strength: float = 1000.0
    renorm_factor: float = 1.0
    vacuum_energy: float = 0.1
    god_wave_freq: float = 1.5

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def clamped(self, *, strict: bool = False) -> tuple["LatticeParameters", list[str]]:
        """Copy with every value in range, plus the names that had to be clamped."""
        changed: list[str] = []
        values = {}
        for name in self.names():
            raw = float(getattr(self, name))
            value = clamp_value(name, raw, strict=strict)
            if value != raw:
                changed.append(name)
            values[name] = value
        return replace(self, **values), changed

    def set(self, name: str, value: float, *, strict: bool = False) -> float:
        """Assign a clamped value and return what was stored."""
        stored = clamp_value(name, value, strict=strict)
        setattr(self, name, stored)
        return stored

    def as_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in self.names()}


@dataclass
class LatticeConfig:
    """Structural configuration for a `LatticeCalculator`."""

    max_dimensions: int = DIMENSION_LIMIT
    mode: int = 3                        # initial dimension
    num_vertices: int = 1000
    parameters: LatticeParameters = field(default_factory=LatticeParameters)

    # [CHOICE] material density
    # [FORMULA] ρ_m >= 1e-30
    # [NOTES] scales matter/energy/regular-matter/kinetic kernels.
    material_density: float = 1.0e6

    # Reducer
    num_threads: Optional[int] = None    # None -> host CPU count (capped)

    # Device
    device: str = "cpu"
    dtype: torch.dtype = field(default_factory=lambda: torch.float64)

    # Behaviour
    strict: bool = False                 # reject out-of-range parameters instead of clamping
    debug: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError for any structural option out of range."""
        if not (1 <= int(self.max_dimensions) <= DIMENSION_LIMIT):
            raise ConfigurationError(
                f"max_dimensions must be in [1, {DIMENSION_LIMIT}], got {self.max_dimensions}"
            )
        if not (1 <= int(self.mode) <= int(self.max_dimensions)):
            raise ConfigurationError(f"mode must be in [1, {self.max_dimensions}], got {self.mode}")
        if not (1 <= int(self.num_vertices) <= VERTEX_LIMIT):
            raise ConfigurationError(f"num_vertices must be in [1, {VERTEX_LIMIT}], got {self.num_vertices}")
        if not math.isfinite(float(self.material_density)):
            raise ConfigurationError(f"material_density must be finite, got {self.material_density}")
        if self.num_threads is not None and int(self.num_threads) < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.dtype not in (torch.float32, torch.float64):
            raise ConfigurationError(f"dtype must be float32 or float64, got {self.dtype}")


def floor_density(value: float) -> float:
    return max(float(value), MIN_MAGNITUDE)

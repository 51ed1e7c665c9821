from __future__ import annotations

import math
from dataclasses import astuple, dataclass, fields, replace

from ..kernels.numerics import MIN_MAGNITUDE

# Channel order used by the reducer's accumulators and by printed tables.
ENERGY_FIELDS = (
    "observable",
    "potential",
    "nurb_matter",
    "nurb_energy",
    "nurb_regular_matter",
    "spin_energy",
    "momentum_energy",
    "field_energy",
    "god_wave_energy",
)


@dataclass(frozen=True)
class EnergyResult:
    """Reduced energies for one dimension. Every field is finite and >= 1e-30."""

    observable: float
    potential: float
    nurb_matter: float
    nurb_energy: float
    nurb_regular_matter: float
    spin_energy: float
    momentum_energy: float
    field_energy: float
    god_wave_energy: float

    @classmethod
    def floor(cls) -> "EnergyResult":
        """Fallback result: every channel at the floor, observable their sum."""
        m = MIN_MAGNITUDE
        return cls(
            observable=8 * m,
            potential=m,
            nurb_matter=m,
            nurb_energy=m,
            nurb_regular_matter=m,
            spin_energy=m,
            momentum_energy=m,
            field_energy=m,
            god_wave_energy=m,
        )

    def floored(self) -> "EnergyResult":
        """Copy with every field raised to at least MIN_MAGNITUDE (NaN -> floor)."""
        values = {}
        for f in fields(self):
            v = float(getattr(self, f.name))
            values[f.name] = v if (math.isfinite(v) and v >= MIN_MAGNITUDE) else MIN_MAGNITUDE
        return replace(self, **values)

    def as_dict(self) -> dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}

    def __str__(self) -> str:
        return ", ".join(f"{k}={v:.10g}" for k, v in self.as_dict().items())


@dataclass(frozen=True)
class DimensionData:
    """One row of a batch sweep."""

    dimension: int
    scale: float
    observable: float
    potential: float
    nurb_matter: float
    nurb_energy: float
    nurb_regular_matter: float
    spin_energy: float
    momentum_energy: float
    field_energy: float
    god_wave_energy: float

    @classmethod
    def from_energy(cls, dimension: int, scale: float, energy: EnergyResult) -> "DimensionData":
        return cls(int(dimension), float(scale), *astuple(energy.floored()))

    @classmethod
    def floor(cls, dimension: int, scale: float) -> "DimensionData":
        """Row recorded when a dimension fails: every energy at the floor."""
        m = MIN_MAGNITUDE
        return cls(int(dimension), float(scale), *([m] * len(ENERGY_FIELDS)))

    @property
    def energy(self) -> EnergyResult:
        return EnergyResult(**{name: getattr(self, name) for name in ENERGY_FIELDS})

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __str__(self) -> str:
        return f"Dimension {self.dimension}: scale={self.scale:.10g}, {self.energy}"

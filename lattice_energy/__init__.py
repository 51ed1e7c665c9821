"""Lattice Energy.

N-dimensional lattice energy calculator: NURBS-weighted per-vertex energy
channels reduced in parallel and normalised per dimension.

Keep this module intentionally light so importing `lattice_energy.kernels.*`
does not pull in the calculator and its console.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    "LatticeCalculator",
    "LatticeConfig",
    "LatticeParameters",
    "EnergyResult",
    "DimensionData",
    "NurbsTables",
]


def __getattr__(name: str):  # pragma: no cover
    if name == "LatticeCalculator":
        from .lattice.calculator import LatticeCalculator as _LatticeCalculator

        return _LatticeCalculator
    if name in ("LatticeConfig", "LatticeParameters"):
        from .lattice import config as _config

        return getattr(_config, name)
    if name in ("EnergyResult", "DimensionData"):
        from .lattice import results as _results

        return getattr(_results, name)
    if name == "NurbsTables":
        from .lattice.state import NurbsTables as _NurbsTables

        return _NurbsTables
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

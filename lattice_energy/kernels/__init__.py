"""Numeric kernels for the lattice energy calculator.

Pure functions over torch tensors: numeric safety helpers, the NURBS
evaluator and the per-vertex energy family. Nothing here holds state.
"""
from __future__ import annotations

__all__: list[str] = []

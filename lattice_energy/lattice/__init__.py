"""Lattice state, configuration, parallel reduction and the calculator facade."""
from __future__ import annotations

__all__: list[str] = []

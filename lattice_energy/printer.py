"""Tables for results and diagnostics.

Values are formatted like the reference console output: magnitudes below
1e-30 print as `0.000000`, magnitudes below 1e-3 in scientific notation, and
everything else fixed with six decimals.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

from rich.table import Table

from .kernels.numerics import MIN_MAGNITUDE
from .lattice.config import LatticeParameters
from .lattice.results import ENERGY_FIELDS, DimensionData
from .lattice.state import CURVE_NAMES, InteractionTable, LatticeState, NurbsTables

SCIENTIFIC_THRESHOLD = 1e-3

RESULT_COLUMNS = ("dimension", "scale") + ENERGY_FIELDS


def format_value(x: float) -> str:
    x = float(x)
    if not math.isfinite(x):
        return str(x)
    if abs(x) < MIN_MAGNITUDE:
        return "0.000000"
    if abs(x) < SCIENTIFIC_THRESHOLD:
        return f"{x:.6e}"
    return f"{x:.6f}"


def format_vector(values: Iterable[float]) -> str:
    return ", ".join(format_value(v) for v in values)


def results_table(rows: Sequence[DimensionData], *, title: str = "Dimension sweep") -> Table:
    """One row per dimension: dimension, scale and the nine energy channels."""
    table = Table(title=title)
    table.add_column("dimension", justify="right", style="cyan", no_wrap=True)
    for name in RESULT_COLUMNS[1:]:
        table.add_column(name, justify="right")
    for row in rows:
        table.add_row(str(row.dimension), *(format_value(getattr(row, name)) for name in RESULT_COLUMNS[1:]))
    return table


def parameter_table(params: LatticeParameters) -> Table:
    table = Table(title="Parameters")
    table.add_column("parameter", style="cyan", no_wrap=True)
    table.add_column("value", justify="right")
    for name, value in params.as_dict().items():
        table.add_row(name, format_value(value))
    return table


def vertex_table(state: LatticeState, *, limit: Optional[int] = None) -> Table:
    """Coordinates, momentum, spin and amplitude per vertex (first `limit` rows if given)."""
    n = state.num_vertices if limit is None else min(int(limit), state.num_vertices)
    table = Table(title=f"Vertices (dimension {state.dimension}, {state.num_vertices} vertices)")
    table.add_column("index", justify="right", style="cyan")
    table.add_column("coordinates")
    table.add_column("momentum")
    table.add_column("spin", justify="right")
    table.add_column("wave amplitude", justify="right")
    vertices = state.vertices[:n].tolist()
    momenta = state.momenta[:n].tolist()
    spins = state.spins[:n].tolist()
    amplitudes = state.wave_amplitudes[:n].tolist()
    for i in range(n):
        table.add_row(
            str(i),
            format_vector(vertices[i]),
            format_vector(momenta[i]),
            format_value(spins[i]),
            format_value(amplitudes[i]),
        )
    return table


def interaction_table(interactions: InteractionTable, *, limit: Optional[int] = None) -> Table:
    n = len(interactions) if limit is None else min(int(limit), len(interactions))
    table = Table(title=f"Interactions ({len(interactions)} vertices)")
    table.add_column("vertex", justify="right", style="cyan")
    table.add_column("distance", justify="right")
    table.add_column("strength", justify="right")
    table.add_column("vector potential")
    table.add_column("god wave amp", justify="right")
    for i in range(n):
        rec = interactions.record(i)
        table.add_row(
            str(rec.vertex_index),
            format_value(rec.distance),
            format_value(rec.strength),
            format_vector(rec.vector_potential),
            format_value(rec.god_wave_amplitude),
        )
    return table


def nurbs_table(tables: NurbsTables) -> Table:
    table = Table(title="NURBS tables")
    table.add_column("curve", style="cyan", no_wrap=True)
    table.add_column("control points")
    table.add_column("knots")
    table.add_column("weights")
    knots = format_vector(tables.knots)
    weights = format_vector(tables.weights)
    for name in CURVE_NAMES:
        table.add_row(name, format_vector(getattr(tables, name)), knots, weights)
    return table

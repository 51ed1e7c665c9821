"""Value formatting and rich tables."""

from __future__ import annotations

import pytest
import torch
from rich.console import Console as RichConsole

from lattice_energy.lattice.config import LatticeParameters
from lattice_energy.lattice.results import DimensionData, EnergyResult
from lattice_energy.lattice.state import LatticeState, NurbsTables
from lattice_energy.printer import (
    format_value,
    format_vector,
    interaction_table,
    nurbs_table,
    parameter_table,
    results_table,
    vertex_table,
)


@pytest.mark.parametrize(
    "x,expected",
    [
        (0.0, "0.000000"),
        (1e-31, "0.000000"),
        (-1e-31, "0.000000"),
        (1e-30, "1.000000e-30"),
        (5e-4, "5.000000e-04"),
        (-5e-4, "-5.000000e-04"),
        (0.001, "0.001000"),
        (-2.5, "-2.500000"),
        (1234.5, "1234.500000"),
        (float("nan"), "nan"),
    ],
)
def test_format_value(x, expected):
    assert format_value(x) == expected


def test_format_vector():
    assert format_vector([1.0, 0.0, 2e-4]) == "1.000000, 0.000000, 2.000000e-04"


def _render(table) -> str:
    console = RichConsole(record=True, width=400, file=open("/dev/null", "w"))
    console.print(table)
    return console.export_text()


def test_results_table_has_one_row_per_dimension():
    rows = [DimensionData.from_energy(d, 1.0, EnergyResult.floor()) for d in (1, 2)]
    table = results_table(rows)
    assert table.row_count == 2
    assert len(table.columns) == 11
    text = _render(table)
    assert "god_wave_energy" in text
    assert "8.000000e-30" in text


def test_diagnostic_tables():
    state = LatticeState.build(2, 5, one_d_permeation=1.0, tables=NurbsTables(), device=torch.device("cpu"))
    assert parameter_table(LatticeParameters()).row_count == len(LatticeParameters.names())
    assert nurbs_table(NurbsTables()).row_count == 6
    assert vertex_table(state).row_count == 5
    assert vertex_table(state, limit=2).row_count == 2
    assert interaction_table(state.interactions, limit=10).row_count == 5
    assert "regular_matter" in _render(nurbs_table(NurbsTables()))

"""End-to-end scenarios over small lattices (defaults unless stated)."""

from __future__ import annotations

import math

import pytest

from lattice_energy.console import Console
from lattice_energy.errors import ConfigurationError
from lattice_energy.kernels.numerics import MIN_MAGNITUDE
from lattice_energy.kernels.nurbs import evaluate_nurbs
from lattice_energy.lattice.calculator import LatticeCalculator
from lattice_energy.lattice.config import LatticeConfig, LatticeParameters
from lattice_energy.lattice.results import ENERGY_FIELDS


def _calc(**fields) -> LatticeCalculator:
    return LatticeCalculator(LatticeConfig(**fields), sink=Console(quiet=True))


def _assert_valid(result):
    for name, value in result.as_dict().items():
        assert math.isfinite(value), name
        assert value >= MIN_MAGNITUDE, name


def test_single_vertex_single_dimension():
    calc = _calc(max_dimensions=1, mode=1, num_vertices=1)
    r = calc.compute()
    _assert_valid(r)
    channels = [getattr(r, name) for name in ENERGY_FIELDS[1:]]
    assert r.observable == pytest.approx(sum(channels), rel=1e-12)
    # No other vertex to pair with: the sampled potential sits at the floor.
    assert r.potential == pytest.approx(MIN_MAGNITUDE)
    assert calc.vector_potential(0) == pytest.approx([calc.momentum(0).item() * 0.1])


def test_batch_orders_cosmological_channels():
    calc = _calc(max_dimensions=3, mode=3, num_vertices=100)
    rows = calc.compute_batch(1, 3)
    assert [r.dimension for r in rows] == [1, 2, 3]
    for row in rows:
        _assert_valid(row.energy)
        assert row.nurb_energy >= row.nurb_matter >= row.nurb_regular_matter


def test_full_dimension_after_time_steps():
    calc = _calc(max_dimensions=26, mode=26, num_vertices=1000, num_threads=2)
    for _ in range(10):
        calc.advance_cycle(0.01)
    assert calc.simulation_time == pytest.approx(0.10, abs=1e-5)
    r = calc.compute()
    _assert_valid(r)


def test_matter_channels_dominate_without_interactions():
    params = LatticeParameters(influence=0.0, em_field_strength=0.0, god_wave_freq=0.1, spin_interaction=0.0)
    r = _calc(max_dimensions=3, mode=3, num_vertices=100, parameters=params).compute()
    _assert_valid(r)
    cosmo = r.nurb_matter + r.nurb_energy + r.nurb_regular_matter
    assert r.nurb_matter / cosmo == pytest.approx(0.27, rel=1e-6)
    assert r.nurb_energy / cosmo == pytest.approx(0.68, rel=1e-6)
    assert r.nurb_regular_matter / cosmo == pytest.approx(0.05, rel=1e-6)
    assert cosmo > 0.9 * r.observable


def test_constant_curve_evaluates_to_one():
    knots = (0.0, 0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0, 1.0)
    assert evaluate_nurbs(0.37, [1.0] * 5, [1.0] * 5, knots) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize("fields", [{"num_vertices": 0}, {"mode": 0}, {"max_dimensions": 0, "mode": 0}])
def test_empty_lattice_is_rejected(fields):
    with pytest.raises(ConfigurationError):
        _calc(**fields)

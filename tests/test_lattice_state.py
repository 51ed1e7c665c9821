"""Lattice initialisation laws, shape invariants and index validation."""

from __future__ import annotations

import pytest
import torch

from lattice_energy.errors import ConfigurationError, VertexIndexError
from lattice_energy.kernels.nurbs import U_EPS
from lattice_energy.lattice.state import (
    MOMENTUM_SCALE,
    SPIN_MAGNITUDE,
    VERTEX_SPACING,
    LatticeState,
    NurbsTables,
    vertex_parameters,
)

CPU = torch.device("cpu")


def _build(d: int = 3, V: int = 4, **kw) -> LatticeState:
    kw.setdefault("one_d_permeation", 1.0)
    kw.setdefault("tables", NurbsTables())
    return LatticeState.build(d, V, device=CPU, **kw)


def test_initialisation_laws():
    d, V = 3, 4
    s = _build(d, V)
    for i in range(V):
        assert s.vertices[i].tolist() == pytest.approx([(i / V) * VERTEX_SPACING * d] * d)
        assert s.momenta[i].tolist() == pytest.approx([((i % 2) - 0.5) * MOMENTUM_SCALE * d] * d)
        sign = 1.0 if i % 2 == 0 else -1.0
        assert float(s.spins[i]) == pytest.approx(sign * SPIN_MAGNITUDE * d)
        assert float(s.wave_amplitudes[i]) == pytest.approx(1.0 * (1.0 + 0.1 * i / V) * 0.1)
    assert s.dtype == torch.float64


def test_one_d_permeation_scales_amplitudes():
    base = _build(2, 6)
    doubled = _build(2, 6, one_d_permeation=2.0)
    assert torch.allclose(doubled.wave_amplitudes, 2.0 * base.wave_amplitudes)


@pytest.mark.parametrize("d,width", [(1, 1), (2, 2), (3, 3), (5, 3), (26, 3)])
def test_shapes_are_consistent(d, width):
    V = 7
    s = _build(d, V)
    assert s.is_consistent()
    assert s.vertices.shape == (V, d)
    assert s.momenta.shape == (V, d)
    assert s.spins.shape == (V,)
    assert s.wave_amplitudes.shape == (V,)
    assert len(s.interactions) == V
    assert s.interactions.vector_potential.shape == (V, width)
    assert s.interactions.vertex_index.tolist() == list(range(V))


def test_total_charge_is_relative_to_requested_vertices():
    assert _build(3, 4).total_charge == pytest.approx(1.0)
    assert _build(3, 4, max_vertices=8).total_charge == pytest.approx(0.5)


def test_vertex_parameters_are_clamped():
    assert vertex_parameters(1, device=CPU, dtype=torch.float64).tolist() == [0.0]
    u = vertex_parameters(5, device=CPU, dtype=torch.float64).tolist()
    assert u[:4] == pytest.approx([0.0, 0.25, 0.5, 0.75])
    assert u[4] == pytest.approx(1.0 - U_EPS)
    assert u[4] < 1.0


def test_curve_values_follow_tables():
    s = _build(3, 10)
    assert s.curve_values["matter"].tolist() == pytest.approx([0.27] * 10, abs=1e-12)
    assert s.curve_values["energy"].tolist() == pytest.approx([0.68] * 10, abs=1e-12)
    assert float(s.curve_values["potential"][0]) == pytest.approx(1.0, abs=1e-12)


def test_nurbs_tables_shape_is_validated():
    with pytest.raises(ConfigurationError):
        NurbsTables(matter=(0.1, 0.2))
    with pytest.raises(ConfigurationError):
        NurbsTables().curve("dark")


@pytest.mark.parametrize("d,V", [(0, 4), (3, 0), (-1, 4)])
def test_build_rejects_empty_lattice(d, V):
    with pytest.raises(ConfigurationError):
        _build(d, V)


def test_index_errors_carry_caller_location():
    s = _build(3, 4)
    with pytest.raises(VertexIndexError) as info:
        s.set_spin(4, 1.0)
    err = info.value
    assert isinstance(err, IndexError)
    assert (err.index, err.size) == (4, 4)
    assert err.location is not None
    assert err.location.filename.endswith("test_lattice_state.py")
    assert err.location.function == "test_index_errors_carry_caller_location"

    with pytest.raises(VertexIndexError):
        s.check_index(-1)


def test_per_index_setters_check_dimension():
    s = _build(3, 4)
    s.set_vertex(1, [1.0, 2.0, 3.0])
    assert s.vertices[1].tolist() == [1.0, 2.0, 3.0]
    before = s.momenta.clone()
    with pytest.raises(ConfigurationError):
        s.set_momentum(1, [1.0, 2.0])
    assert torch.equal(s.momenta, before)


def test_bulk_replace_checks_shape():
    s = _build(2, 3)
    s.replace_vertices([[0.0, 1.0], [2.0, 3.0], [4.0, 5.0]])
    assert s.vertices.tolist() == [[0.0, 1.0], [2.0, 3.0], [4.0, 5.0]]
    s.replace_momenta(torch.zeros(3, 2))
    assert s.momenta.dtype == torch.float64

    with pytest.raises(ConfigurationError):
        s.replace_vertices([[0.0, 1.0], [2.0, 3.0]])
    with pytest.raises(ConfigurationError):
        s.replace_vertices([[0.0, 1.0, 2.0]] * 3)
    with pytest.raises(ConfigurationError):
        s.replace_spins([1.0, 2.0])
    s.replace_wave_amplitudes([0.5, 0.5, 0.5])
    assert s.wave_amplitudes.tolist() == [0.5, 0.5, 0.5]
    assert s.is_consistent()


def test_clone_is_independent():
    s = _build(3, 4)
    c = s.clone()
    c.set_spin(0, 9.0)
    c.interactions.distance[0] = 5.0
    assert float(s.spins[0]) != 9.0
    assert float(s.interactions.distance[0]) == 0.0

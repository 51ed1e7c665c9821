"""Static partition, per-worker accumulation, merge and ratio normalisation."""

from __future__ import annotations

import math

import pytest
import torch

from lattice_energy.kernels.energy import CHANNELS, KernelContext
from lattice_energy.kernels.numerics import MIN_MAGNITUDE
from lattice_energy.lattice.reducer import (
    ParallelReducer,
    chunk_size,
    normalise,
    partition,
    residual_fraction,
)
from lattice_energy.lattice.results import ENERGY_FIELDS
from lattice_energy.lattice.state import LatticeState, NurbsTables


def _ctx(d: int = 3, V: int = 64) -> tuple[KernelContext, LatticeState]:
    s = LatticeState.build(d, V, one_d_permeation=1.0, tables=NurbsTables(), device=torch.device("cpu"))
    ctx = KernelContext(
        vertices=s.vertices,
        momenta=s.momenta,
        spins=s.spins,
        wave_amplitudes=s.wave_amplitudes,
        curves=s.curve_values,
        dimension=d,
        material_density=1.0e6,
        influence=2.0,
        weak=0.1,
        nurb_matter_strength=0.27,
        nurb_energy_strength=0.68,
        nurb_regular_matter_strength=0.05,
        spin_interaction=0.1,
        em_field_strength=1000.0,
        god_wave_freq=1.5,
    )
    return ctx, s


def _covered(plan: list[list[slice]]) -> list[int]:
    return sorted(i for chunks in plan for sl in chunks for i in range(sl.start, sl.stop))


def test_partition_is_static_round_robin():
    plan = partition(10, 2)
    assert chunk_size(10, 2) == 2
    assert plan[0] == [slice(0, 2), slice(4, 6), slice(8, 10)]
    assert plan[1] == [slice(2, 4), slice(6, 8)]
    assert _covered(plan) == list(range(10))


@pytest.mark.parametrize("V,T", [(1, 1), (3, 8), (100, 3), (1001, 16)])
def test_partition_covers_every_vertex_once(V, T):
    plan = partition(V, T)
    assert len(plan) == T
    assert _covered(plan) == list(range(V))


def test_residual_fraction_falls_back_to_two_percent():
    assert residual_fraction() == 0.02


def test_normalise_applies_cosmological_split():
    sums = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0]
    V = 2
    r = normalise(sums, V)
    S = sum(sums)
    assert r.nurb_matter == pytest.approx(0.27 * S / V)
    assert r.nurb_energy == pytest.approx(0.68 * S / V)
    assert r.nurb_regular_matter == pytest.approx(0.05 * S / V)
    assert r.potential == pytest.approx(1.0 * 0.02 / V)
    assert r.spin_energy == pytest.approx(5.0 * 0.02 / V)
    assert r.momentum_energy == pytest.approx(6.0 * 0.02 / V)
    assert r.field_energy == pytest.approx(7.0 * 0.02 / V)
    assert r.god_wave_energy == pytest.approx(8.0 * 0.02 / V)
    channels = [getattr(r, name) for name in ENERGY_FIELDS[1:]]
    assert r.observable == pytest.approx(sum(channels), rel=1e-12)


def test_normalise_degenerate_total():
    r = normalise([0.0] * len(CHANNELS), 10)
    assert r.nurb_matter == pytest.approx(0.27 * 1e-10 / 10)
    assert r.potential == MIN_MAGNITUDE
    assert math.isfinite(r.observable)


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_normalise_never_returns_non_finite(bad):
    sums = [1.0] * len(CHANNELS)
    sums[4] = bad
    r = normalise(sums, 3)
    for name, value in r.as_dict().items():
        assert math.isfinite(value), name
        assert value >= MIN_MAGNITUDE, name


def test_energy_sums_deterministic_single_thread():
    ctx, _ = _ctx(3, 97)
    reducer = ParallelReducer(1)
    first, _ = reducer.energy_sums(ctx)
    second, _ = reducer.energy_sums(ctx)
    assert first == second
    assert len(first) == len(CHANNELS)


@pytest.mark.parametrize("T", [2, 3, 8])
def test_energy_sums_agree_across_thread_counts(T):
    ctx, _ = _ctx(4, 97)
    base, _ = ParallelReducer(1).energy_sums(ctx)
    threaded, _ = ParallelReducer(T).energy_sums(ctx)
    assert threaded == pytest.approx(base, rel=1e-12)
    again, _ = ParallelReducer(T).energy_sums(ctx)
    assert again == threaded


def test_update_interactions_fills_table():
    ctx, s = _ctx(5, 40)
    anomalies = ParallelReducer(4).update_interactions(ctx, s.interactions, 0.0)
    assert not anomalies
    table = s.interactions
    center = s.vertices.mean(dim=0)
    expected = torch.linalg.norm(s.vertices - center, dim=-1).clamp(min=1e-15)
    assert torch.allclose(table.distance, expected, rtol=1e-10, atol=1e-15)
    assert torch.allclose(table.strength, 2.0 / (table.distance + 1e-15) * 5, rtol=1e-10)
    assert torch.allclose(table.vector_potential, s.momenta[:, :3] * 0.1 * 5)
    assert bool(torch.isfinite(table.god_wave_amplitude).all())


def test_accelerations_agree_across_thread_counts():
    ctx, _ = _ctx(3, 50)
    one, _ = ParallelReducer(1).accelerations(ctx)
    many, _ = ParallelReducer(4).accelerations(ctx)
    assert one.shape == (50, 3)
    scale = float(one.abs().max())
    assert torch.allclose(one, many, rtol=1e-12, atol=1e-12 * scale)


def test_reducer_rejects_zero_threads():
    with pytest.raises(ValueError):
        ParallelReducer(0)

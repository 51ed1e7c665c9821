"""Parallel reduction over the vertex index space.

Vertices are split into static chunks of `max(1, V // (2T))`; worker `w` owns
chunks `w, w+T, w+2T, ...`. Each worker keeps its own float64 accumulator and
`AnomalyCounter` and never touches shared state except its own disjoint output
rows. Accumulators are merged on the calling thread in worker order, so a
fixed `(V, T)` always yields bit-identical sums.

Torch releases the GIL inside tensor ops, so a plain ThreadPoolExecutor gives
real parallelism for the chunked kernels.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

import torch

from ..kernels.energy import (
    CHANNELS,
    KernelContext,
    centroid_distance,
    god_wave_amplitude,
    gravitational_acceleration,
    interaction_strength,
    vector_potential,
    vertex_energies,
)
from ..kernels.numerics import MIN_MAGNITUDE, AnomalyCounter, safe_div
from .results import EnergyResult
from .state import InteractionTable, centroid

T = TypeVar("T")

# [CHOICE] cosmological split
# [FORMULA] matter : energy : regular = 0.27 : 0.68 : 0.05 of Σ|sum_c|
COSMOLOGICAL_RATIOS = {
    "nurb_matter": 0.27,
    "nurb_energy": 0.68,
    "nurb_regular_matter": 0.05,
}

# [CHOICE] residual channel fraction
# [FORMULA] f = remaining / 5 if remaining > tol else 0.02
# [NOTES] remaining = 1 - 0.27 - 0.68 - 0.05 is zero up to rounding, so the
#         0.02 fallback is what runs.
RESIDUAL_FALLBACK = 0.02
RESIDUAL_TOLERANCE = 1e-12

# [CHOICE] degenerate total
# [FORMULA] S <= 1e-15 -> S = 1e-10
TOTAL_FLOOR = 1e-15
TOTAL_FALLBACK = 1e-10


def chunk_size(num_vertices: int, num_threads: int) -> int:
    return max(1, int(num_vertices) // (2 * max(1, int(num_threads))))


def partition(num_vertices: int, num_threads: int) -> list[list[slice]]:
    """Static chunk assignment: one list of slices per worker (some may be empty)."""
    size = chunk_size(num_vertices, num_threads)
    chunks = [slice(s, min(s + size, num_vertices)) for s in range(0, num_vertices, size)]
    return [chunks[w::num_threads] for w in range(num_threads)]


def residual_fraction() -> float:
    remaining = 1.0 - sum(COSMOLOGICAL_RATIOS.values())
    residual = len(CHANNELS) - len(COSMOLOGICAL_RATIOS)
    return remaining / residual if remaining > RESIDUAL_TOLERANCE else RESIDUAL_FALLBACK


def normalise(sums: Sequence[float], num_vertices: int) -> EnergyResult:
    """Turn the eight merged channel sums into per-vertex normalised energies."""
    sums = [float(s) for s in sums]
    total = sum(abs(s) for s in sums)
    if not math.isfinite(total) or total <= TOTAL_FLOOR:
        total = TOTAL_FALLBACK
    fraction = residual_fraction()

    values: dict[str, float] = {}
    for name, s in zip(CHANNELS, sums):
        if name in COSMOLOGICAL_RATIOS:
            values[name] = safe_div(COSMOLOGICAL_RATIOS[name] * total, num_vertices)
        else:
            values[name] = safe_div(abs(s) * fraction, num_vertices)

    observable = sum(values.values())
    if not math.isfinite(observable) or not all(math.isfinite(v) for v in values.values()):
        return EnergyResult.floor()
    return EnergyResult(observable=max(observable, MIN_MAGNITUDE), **values).floored()


class ParallelReducer:
    """Runs chunked vertex kernels on `num_threads` workers."""

    def __init__(self, num_threads: int = 1) -> None:
        if int(num_threads) < 1:
            raise ValueError(f"num_threads must be >= 1, got {num_threads}")
        self.num_threads = int(num_threads)

    def run(self, num_vertices: int, work: Callable[[list[slice]], T]) -> list[T]:
        """Call `work(chunks)` once per worker; results are returned in worker order."""
        plan = partition(num_vertices, self.num_threads)
        if self.num_threads == 1:
            return [work(plan[0])]
        with ThreadPoolExecutor(max_workers=self.num_threads) as pool:
            futures = [pool.submit(work, chunks) for chunks in plan]
            return [f.result() for f in futures]

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def energy_sums(self, ctx: KernelContext) -> tuple[list[float], AnomalyCounter]:
        """Sum all eight channels over every vertex."""

        def work(chunks: list[slice]) -> tuple[torch.Tensor, AnomalyCounter]:
            counter = AnomalyCounter()
            acc = torch.zeros(len(CHANNELS), dtype=torch.float64, device=ctx.vertices.device)
            for sl in chunks:
                acc += vertex_energies(ctx, sl, counter).to(torch.float64).sum(dim=0)
            return acc, counter

        merged = torch.zeros(len(CHANNELS), dtype=torch.float64, device=ctx.vertices.device)
        anomalies = AnomalyCounter()
        for acc, counter in self.run(ctx.num_vertices, work):
            merged += acc
            anomalies.merge(counter)
        return [float(x) for x in merged.tolist()], anomalies

    def update_interactions(self, ctx: KernelContext, table: InteractionTable, time: float) -> AnomalyCounter:
        """Refresh every interaction record in place from the current lattice."""
        reference = centroid(ctx.vertices)

        def work(chunks: list[slice]) -> AnomalyCounter:
            counter = AnomalyCounter()
            for sl in chunks:
                distance = centroid_distance(ctx.vertices[sl], reference)
                table.distance[sl] = distance
                table.strength[sl] = interaction_strength(ctx, distance, counter)
                table.vector_potential[sl] = vector_potential(ctx, sl, counter)
                table.god_wave_amplitude[sl] = god_wave_amplitude(ctx, sl, time, counter)
            return counter

        anomalies = AnomalyCounter()
        for counter in self.run(ctx.num_vertices, work):
            anomalies.merge(counter)
        return anomalies

    def accelerations(self, ctx: KernelContext) -> tuple[torch.Tensor, AnomalyCounter]:
        """Gravitational acceleration for every vertex, shape (V, d)."""
        out = torch.zeros_like(ctx.vertices)

        def work(chunks: list[slice]) -> AnomalyCounter:
            counter = AnomalyCounter()
            for sl in chunks:
                out[sl] = gravitational_acceleration(ctx, sl, counter)
            return counter

        anomalies = AnomalyCounter()
        for counter in self.run(ctx.num_vertices, work):
            anomalies.merge(counter)
        return out, anomalies


__all__ = [
    "COSMOLOGICAL_RATIOS",
    "ParallelReducer",
    "chunk_size",
    "normalise",
    "partition",
    "residual_fraction",
]

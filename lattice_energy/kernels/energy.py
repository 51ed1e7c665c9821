"""Per-vertex energy kernels (torch, vectorised over vertex index).

Every kernel takes a `KernelContext` (read-only snapshot of the lattice and
parameters) and an index selector `idx` (a slice or an int64 tensor of vertex
indices) and returns one value per selected vertex. Results are scrubbed:
NaN/Inf never leave a kernel.

------------------------------------------------------------------------------
Kernels (d = current dimension, ρ = material density, N_x(u_i) = curve value)
------------------------------------------------------------------------------
  nurb_matter          S_m  · N_matter(u_i)  · a_i · ρ · d
  nurb_energy          S_e  · N_energy(u_i)  · a_i · ρ · d
  nurb_regular_matter  S_r  · N_regular(u_i) · a_i · ρ · d
  spin_energy          σ    · |s_i| · N_kinetic(u_i) · 0.2 · d
  em_field             E    · N_em(u_i)      · a_i · d
  god_wave             f    · N_kinetic(u_i) · a_i · d
  kinetic_energy       N_kinetic(u_i) · 0.5 · ρ · Σ_j p_ij² · d
  god_wave_amplitude   f · a_i · cos(f t) · N_kinetic(u_i) · d
  interaction          influence / (r + 1e-15) · d
  vector_potential     p_i[:min(3,d)] · weak · d
  grav. potential      influence · N_potential(u_i) / |v_i - v_j| · d   (0 for i = j)
  grav. acceleration   Σ_{j≠i} influence · N_potential(u_i) · (v_j - v_i)/|v_j - v_i|³ · d
------------------------------------------------------------------------------
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Union

import torch

from .numerics import MIN_MAGNITUDE, AnomalyCounter, safe_div_tensor, scrub_tensor

Index = Union[slice, torch.Tensor]

# [CHOICE] interaction softening
# [FORMULA] strength = influence / (r + 1e-15) · d
INTERACTION_SOFTENING = 1e-15

# [CHOICE] pairwise block size
# [NOTES] max elements of a (rows, cols, d) difference tensor held at once.
BLOCK_ELEMENTS = 1 << 22

# Reducer channel order (accumulator layout).
CHANNELS = (
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
class KernelContext:
    """Read-only snapshot of everything a kernel reads."""

    vertices: torch.Tensor          # (V, d)
    momenta: torch.Tensor           # (V, d)
    spins: torch.Tensor             # (V,)
    wave_amplitudes: torch.Tensor   # (V,)
    curves: Mapping[str, torch.Tensor]
    dimension: int
    material_density: float

    influence: float
    weak: float
    nurb_matter_strength: float
    nurb_energy_strength: float
    nurb_regular_matter_strength: float
    spin_interaction: float
    em_field_strength: float
    god_wave_freq: float

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    def rows(self, idx: Index) -> torch.Tensor:
        """Vertex indices selected by `idx`, as an int64 tensor."""
        return torch.arange(self.num_vertices, device=self.vertices.device)[idx]


def _scaled(ctx: KernelContext, values: torch.Tensor, label: str, counter: Optional[AnomalyCounter]) -> torch.Tensor:
    return scrub_tensor(values * float(ctx.dimension), counter, label)


# ----------------------------------------------------------------------
# Curve-weighted channel kernels
# ----------------------------------------------------------------------

def nurb_matter(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = ctx.nurb_matter_strength * ctx.curves["matter"][idx] * ctx.wave_amplitudes[idx] * ctx.material_density
    return _scaled(ctx, v, "nurb_matter", counter)


def nurb_energy(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = ctx.nurb_energy_strength * ctx.curves["energy"][idx] * ctx.wave_amplitudes[idx] * ctx.material_density
    return _scaled(ctx, v, "nurb_energy", counter)


def nurb_regular_matter(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = (
        ctx.nurb_regular_matter_strength
        * ctx.curves["regular_matter"][idx]
        * ctx.wave_amplitudes[idx]
        * ctx.material_density
    )
    return _scaled(ctx, v, "nurb_regular_matter", counter)


def spin_energy(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = ctx.spin_interaction * ctx.spins[idx].abs() * ctx.curves["kinetic"][idx] * 0.2
    return _scaled(ctx, v, "spin_energy", counter)


def em_field(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = ctx.em_field_strength * ctx.curves["em"][idx] * ctx.wave_amplitudes[idx]
    return _scaled(ctx, v, "field_energy", counter)


def god_wave(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    v = ctx.god_wave_freq * ctx.curves["kinetic"][idx] * ctx.wave_amplitudes[idx]
    return _scaled(ctx, v, "god_wave_energy", counter)


def kinetic_energy(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    p = ctx.momenta[idx]
    v = ctx.curves["kinetic"][idx] * 0.5 * ctx.material_density * (p * p).sum(dim=-1)
    return _scaled(ctx, v, "momentum_energy", counter)


def god_wave_amplitude(
    ctx: KernelContext, idx: Index, time: float, counter: Optional[AnomalyCounter] = None
) -> torch.Tensor:
    f = ctx.god_wave_freq
    v = f * ctx.wave_amplitudes[idx] * math.cos(f * float(time)) * ctx.curves["kinetic"][idx]
    return _scaled(ctx, v, "god_wave_amplitude", counter)


# ----------------------------------------------------------------------
# Interaction record kernels
# ----------------------------------------------------------------------

def interaction_strength(
    ctx: KernelContext, distance: torch.Tensor, counter: Optional[AnomalyCounter] = None
) -> torch.Tensor:
    v = ctx.influence * safe_div_tensor(torch.ones_like(distance), distance + INTERACTION_SOFTENING)
    return scrub_tensor(v * float(ctx.dimension), counter, "interaction")


def vector_potential(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    k = min(3, ctx.dimension)
    v = ctx.momenta[idx][..., :k] * ctx.weak * float(ctx.dimension)
    return scrub_tensor(v, counter, "vector_potential")


def centroid_distance(vertices: torch.Tensor, reference: torch.Tensor) -> torch.Tensor:
    """Euclidean distance of each vertex to `reference`, floored under the root."""
    diff = vertices - reference[None, :]
    return torch.sqrt(torch.clamp((diff * diff).sum(dim=-1), min=MIN_MAGNITUDE))


# ----------------------------------------------------------------------
# Pairwise gravitational kernels
# ----------------------------------------------------------------------

def _pair_distance(vi: torch.Tensor, vj: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    """Differences `v_j - v_i` (rows, cols, d) and floored distances (rows, cols)."""
    diff = vj[None, :, :] - vi[:, None, :]
    dist = torch.sqrt(torch.clamp((diff * diff).sum(dim=-1), min=MIN_MAGNITUDE))
    return diff, dist


def gravitational_potential(
    ctx: KernelContext, i: torch.Tensor, j: torch.Tensor, counter: Optional[AnomalyCounter] = None
) -> torch.Tensor:
    """Potential for every pair in the grid `i × j` (shape (len(i), len(j))); zero where i = j."""
    _, dist = _pair_distance(ctx.vertices[i], ctx.vertices[j])
    inv = safe_div_tensor(torch.ones_like(dist), dist)
    v = ctx.influence * ctx.curves["potential"][i][:, None] * inv * float(ctx.dimension)
    v = scrub_tensor(v, counter, "potential")
    return torch.where(i[:, None] == j[None, :], torch.zeros_like(v), v)


def sample_stride(num_vertices: int) -> int:
    """Stride of the stratified pairwise sample: `max(1, V // 100)`."""
    return max(1, int(num_vertices) // 100)


def sampled_potential(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    """Strided pairwise potential per vertex, rescaled by the stride and floored.

    Each vertex sums the potential to vertices `0, s, 2s, ... < V` (skipping
    itself), then multiplies by `s` to approximate the full sum.
    """
    rows = ctx.rows(idx)
    step = sample_stride(ctx.num_vertices)
    cols = torch.arange(0, ctx.num_vertices, step, device=ctx.vertices.device)
    out = torch.empty(rows.shape[0], dtype=ctx.vertices.dtype, device=ctx.vertices.device)
    block = max(1, BLOCK_ELEMENTS // max(1, cols.shape[0] * ctx.dimension))
    for start in range(0, rows.shape[0], block):
        r = rows[start:start + block]
        out[start:start + block] = gravitational_potential(ctx, r, cols, counter).sum(dim=-1)
    return torch.clamp(out * float(step), min=MIN_MAGNITUDE)


def gravitational_acceleration(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    """Acceleration of each selected vertex from every other vertex, shape (rows, d)."""
    rows = ctx.rows(idx)
    V = ctx.num_vertices
    d = ctx.dimension
    cols = torch.arange(V, device=ctx.vertices.device)
    out = torch.zeros(rows.shape[0], d, dtype=ctx.vertices.dtype, device=ctx.vertices.device)
    block = max(1, BLOCK_ELEMENTS // max(1, V * d))
    for start in range(0, rows.shape[0], block):
        r = rows[start:start + block]
        diff, dist = _pair_distance(ctx.vertices[r], ctx.vertices)
        force = ctx.influence * ctx.curves["potential"][r][:, None] * safe_div_tensor(torch.ones_like(dist), dist * dist) * float(d)
        force = torch.where(r[:, None] == cols[None, :], torch.zeros_like(force), force)
        out[start:start + block] = (force[..., None] * diff / dist[..., None]).sum(dim=1)
    return scrub_tensor(out, counter, "acceleration")


# ----------------------------------------------------------------------
# Bundle
# ----------------------------------------------------------------------

def vertex_energies(ctx: KernelContext, idx: Index, counter: Optional[AnomalyCounter] = None) -> torch.Tensor:
    """All eight channels for the selected vertices, each floored, shape (rows, 8) in CHANNELS order."""
    columns = (
        sampled_potential(ctx, idx, counter),
        nurb_matter(ctx, idx, counter),
        nurb_energy(ctx, idx, counter),
        nurb_regular_matter(ctx, idx, counter),
        spin_energy(ctx, idx, counter),
        kinetic_energy(ctx, idx, counter),
        em_field(ctx, idx, counter),
        god_wave(ctx, idx, counter),
    )
    return torch.clamp(torch.stack(columns, dim=-1), min=MIN_MAGNITUDE)


__all__ = [
    "CHANNELS",
    "KernelContext",
    "centroid_distance",
    "em_field",
    "god_wave",
    "god_wave_amplitude",
    "gravitational_acceleration",
    "gravitational_potential",
    "interaction_strength",
    "kinetic_energy",
    "nurb_energy",
    "nurb_matter",
    "nurb_regular_matter",
    "sample_stride",
    "sampled_potential",
    "spin_energy",
    "vector_potential",
    "vertex_energies",
]

"""Lattice state: vertices, momenta, spins, wave amplitudes and interactions.

All per-vertex data is held as contiguous tensors indexed by vertex:

    vertices         (V, d)
    momenta          (V, d)
    spins            (V,)
    wave_amplitudes  (V,)
    interactions     columnar `InteractionTable` with V rows

The six NURBS curves are evaluated once per rebuild at `u_i = i / max(1, V-1)`
and cached in `curve_values`, since `u_i` depends only on the vertex index.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterator, Optional, Sequence

import torch

from ..errors import ConfigurationError, VertexIndexError, caller_location
from ..kernels.numerics import safe_div_tensor
from ..kernels.nurbs import U_EPS, BasisTable, NurbsCurve

# [CHOICE] initialisation constants
# [FORMULA] x_ij = (i/V) * VERTEX_SPACING * d
#           p_ij = ((i mod 2) - 0.5) * MOMENTUM_SCALE * d
#           s_i  = ±SPIN_MAGNITUDE * d   (+ for even i)
#           a_i  = one_d_permeation * (1 + 0.1 * i/V) * 0.1
VERTEX_SPACING = 0.0254
MOMENTUM_SCALE = 0.01
SPIN_MAGNITUDE = 0.032774

CURVE_NAMES = ("matter", "energy", "regular_matter", "kinetic", "em", "potential")


@dataclass(frozen=True)
class NurbsTables:
    """Fixed control-point arrays sharing one knot vector and weight vector."""

    matter: tuple[float, ...] = (0.27, 0.27, 0.27, 0.27, 0.27)
    energy: tuple[float, ...] = (0.68, 0.68, 0.68, 0.68, 0.68)
    regular_matter: tuple[float, ...] = (0.05, 0.05, 0.05, 0.05, 0.05)
    kinetic: tuple[float, ...] = (0.1, 0.2, 0.3, 0.2, 0.1)
    em: tuple[float, ...] = (0.01, 0.02, 0.03, 0.02, 0.01)
    potential: tuple[float, ...] = (1.0, 0.8, 0.6, 0.4, 0.2)
    knots: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0, 1.0)
    weights: tuple[float, ...] = (1.0, 1.0, 1.0, 1.0, 1.0)
    degree: int = 3

    def __post_init__(self) -> None:
        # Building each curve validates its shape against knots/weights.
        for name in CURVE_NAMES:
            self.curve(name)

    def curve(self, name: str) -> NurbsCurve:
        if name not in CURVE_NAMES:
            raise ConfigurationError(f"unknown NURBS table {name!r}")
        return NurbsCurve(getattr(self, name), self.weights, self.knots, self.degree)

    def evaluate(self, basis: BasisTable) -> dict[str, torch.Tensor]:
        return {name: basis.evaluate(getattr(self, name), self.weights) for name in CURVE_NAMES}


def vertex_parameters(num_vertices: int, *, device: torch.device, dtype: torch.dtype) -> torch.Tensor:
    """Curve parameter per vertex: `u_i = i / max(1, V - 1)`, clamped to `1 - U_EPS`."""
    idx = torch.arange(num_vertices, device=device, dtype=dtype)
    u = idx / float(max(1, num_vertices - 1))
    return u.clamp(0.0, 1.0 - U_EPS)


@dataclass(frozen=True)
class Interaction:
    """One row of the interaction table, as plain Python values."""

    vertex_index: int
    distance: float
    strength: float
    vector_potential: tuple[float, ...]
    god_wave_amplitude: float


@dataclass
class InteractionTable:
    """Per-vertex interaction records, stored column-wise."""

    vertex_index: torch.Tensor        # (V,) int64
    distance: torch.Tensor            # (V,)
    strength: torch.Tensor            # (V,)
    vector_potential: torch.Tensor    # (V, min(3, d))
    god_wave_amplitude: torch.Tensor  # (V,)

    @classmethod
    def empty(cls, num_vertices: int, dimension: int, *, device: torch.device, dtype: torch.dtype) -> "InteractionTable":
        return cls(
            vertex_index=torch.arange(num_vertices, device=device, dtype=torch.int64),
            distance=torch.zeros(num_vertices, device=device, dtype=dtype),
            strength=torch.zeros(num_vertices, device=device, dtype=dtype),
            vector_potential=torch.zeros(num_vertices, min(3, dimension), device=device, dtype=dtype),
            god_wave_amplitude=torch.zeros(num_vertices, device=device, dtype=dtype),
        )

    def __len__(self) -> int:
        return int(self.vertex_index.shape[0])

    def record(self, i: int) -> Interaction:
        return Interaction(
            vertex_index=int(self.vertex_index[i].item()),
            distance=float(self.distance[i].item()),
            strength=float(self.strength[i].item()),
            vector_potential=tuple(float(x) for x in self.vector_potential[i].tolist()),
            god_wave_amplitude=float(self.god_wave_amplitude[i].item()),
        )

    def __iter__(self) -> Iterator[Interaction]:
        for i in range(len(self)):
            yield self.record(i)


@dataclass
class LatticeState:
    """Synthetic lattice of V points in d-space with per-vertex attributes."""

    dimension: int
    vertices: torch.Tensor
    momenta: torch.Tensor
    spins: torch.Tensor
    wave_amplitudes: torch.Tensor
    interactions: InteractionTable
    curve_values: dict[str, torch.Tensor] = field(default_factory=dict)
    total_charge: float = 0.0

    @classmethod
    def build(
        cls,
        dimension: int,
        num_vertices: int,
        *,
        one_d_permeation: float,
        tables: NurbsTables,
        device: torch.device,
        dtype: torch.dtype = torch.float64,
        max_vertices: Optional[int] = None,
    ) -> "LatticeState":
        """Allocate and initialise a lattice for `(dimension, num_vertices)`.

        Each vertex carries charge `1 / max_vertices`, so a lattice shrunk by the
        allocation retry holds less than unit total charge.
        """
        d = int(dimension)
        V = int(num_vertices)
        if d < 1:
            raise ConfigurationError(f"dimension must be >= 1, got {dimension}")
        if V < 1:
            raise ConfigurationError(f"num_vertices must be >= 1, got {num_vertices}")

        frac = torch.arange(V, device=device, dtype=dtype) / float(V)
        parity = (torch.arange(V, device=device) % 2).to(dtype)

        vertices = (frac * VERTEX_SPACING * d)[:, None].expand(V, d).clone()
        momenta = ((parity - 0.5) * MOMENTUM_SCALE * d)[:, None].expand(V, d).clone()
        spins = SPIN_MAGNITUDE * d * (1.0 - 2.0 * parity)
        wave_amplitudes = float(one_d_permeation) * (1.0 + 0.1 * frac) * 0.1

        for name, t in (("vertices", vertices), ("momenta", momenta), ("spins", spins), ("wave_amplitudes", wave_amplitudes)):
            if not bool(torch.isfinite(t).all()):
                raise ConfigurationError(f"non-finite {name} produced for dimension={d}, vertices={V}")

        basis = BasisTable.build(vertex_parameters(V, device=device, dtype=dtype), tables.degree, tables.knots)
        return cls(
            dimension=d,
            vertices=vertices,
            momenta=momenta,
            spins=spins,
            wave_amplitudes=wave_amplitudes,
            interactions=InteractionTable.empty(V, d, device=device, dtype=dtype),
            curve_values=tables.evaluate(basis),
            total_charge=V / float(max(1, max_vertices or V)),
        )

    # ------------------------------------------------------------------
    # Shape / index checks
    # ------------------------------------------------------------------

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def device(self) -> torch.device:
        return self.vertices.device

    @property
    def dtype(self) -> torch.dtype:
        return self.vertices.dtype

    def check_index(self, index: int) -> int:
        """Return `index` as int, or raise VertexIndexError located at the public caller."""
        i = int(index)
        if i < 0 or i >= self.num_vertices:
            raise VertexIndexError(i, self.num_vertices, caller_location())
        return i

    def is_consistent(self) -> bool:
        V = self.num_vertices
        return (
            self.momenta.shape == (V, self.dimension)
            and self.vertices.shape == (V, self.dimension)
            and self.spins.shape == (V,)
            and self.wave_amplitudes.shape == (V,)
            and len(self.interactions) == V
        )

    # ------------------------------------------------------------------
    # Per-index and bulk replacement
    # ------------------------------------------------------------------

    def _as_row(self, values: Sequence[float] | torch.Tensor, what: str, index: int) -> torch.Tensor:
        row = torch.as_tensor(values, dtype=self.dtype, device=self.device).reshape(-1)
        if row.shape[0] != self.dimension:
            raise ConfigurationError(
                f"{what} dimension mismatch at index {index}: expected {self.dimension}, got {row.shape[0]}"
            )
        return row

    def _as_matrix(self, values, what: str) -> torch.Tensor:
        if isinstance(values, torch.Tensor):
            mat = values.to(device=self.device, dtype=self.dtype)
        else:
            rows = [self._as_row(v, what, i) for i, v in enumerate(values)]
            mat = torch.stack(rows) if rows else torch.empty(0, self.dimension, device=self.device, dtype=self.dtype)
        if mat.ndim != 2 or mat.shape[1] != self.dimension:
            raise ConfigurationError(f"{what} must have shape (V, {self.dimension}), got {tuple(mat.shape)}")
        if mat.shape[0] != self.num_vertices:
            raise ConfigurationError(f"{what} must have {self.num_vertices} rows, got {mat.shape[0]}")
        return mat.clone()

    def _as_vector(self, values, what: str) -> torch.Tensor:
        vec = torch.as_tensor(values, dtype=self.dtype, device=self.device).reshape(-1)
        if vec.shape[0] != self.num_vertices:
            raise ConfigurationError(f"{what} must have {self.num_vertices} entries, got {vec.shape[0]}")
        return vec.clone()

    def set_vertex(self, index: int, vertex) -> None:
        i = self.check_index(index)
        self.vertices[i] = self._as_row(vertex, "vertex", i)

    def set_momentum(self, index: int, momentum) -> None:
        i = self.check_index(index)
        self.momenta[i] = self._as_row(momentum, "momentum", i)

    def set_spin(self, index: int, spin: float) -> None:
        i = self.check_index(index)
        self.spins[i] = float(spin)

    def set_wave_amplitude(self, index: int, amplitude: float) -> None:
        i = self.check_index(index)
        self.wave_amplitudes[i] = float(amplitude)

    def replace_vertices(self, vertices) -> None:
        self.vertices = self._as_matrix(vertices, "vertices")

    def replace_momenta(self, momenta) -> None:
        self.momenta = self._as_matrix(momenta, "momenta")

    def replace_spins(self, spins) -> None:
        self.spins = self._as_vector(spins, "spins")

    def replace_wave_amplitudes(self, amplitudes) -> None:
        self.wave_amplitudes = self._as_vector(amplitudes, "wave_amplitudes")

    def clone(self) -> "LatticeState":
        return replace(
            self,
            vertices=self.vertices.clone(),
            momenta=self.momenta.clone(),
            spins=self.spins.clone(),
            wave_amplitudes=self.wave_amplitudes.clone(),
            interactions=InteractionTable(
                vertex_index=self.interactions.vertex_index.clone(),
                distance=self.interactions.distance.clone(),
                strength=self.interactions.strength.clone(),
                vector_potential=self.interactions.vector_potential.clone(),
                god_wave_amplitude=self.interactions.god_wave_amplitude.clone(),
            ),
            curve_values={k: v.clone() for k, v in self.curve_values.items()},
        )


def centroid(vertices: torch.Tensor) -> torch.Tensor:
    """Mean vertex position (the reference point for interaction distances)."""
    V = vertices.shape[0]
    return safe_div_tensor(vertices.sum(dim=0), float(V))


__all__ = [
    "CURVE_NAMES",
    "Interaction",
    "InteractionTable",
    "LatticeState",
    "NurbsTables",
    "centroid",
    "vertex_parameters",
]

"""Lattice energy calculator facade.

Owns the parameter block, the lattice state, the NURBS tables, the cached
cosines and the per-dimension result table. Every public call is synchronous;
worker threads only exist inside `compute`, the interaction refresh and the
momentum update, and never outlive the call.

Usage:
    from lattice_energy import LatticeCalculator, LatticeConfig

    calc = LatticeCalculator(LatticeConfig(max_dimensions=5, num_vertices=200))
    for _ in range(10):
        calc.advance_cycle()
    rows = calc.compute_batch(1, 5)
"""

from __future__ import annotations

import copy
import math
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Mapping, Optional, Sequence

import torch

from ..console import Console
from ..errors import (
    AllocationError,
    ConfigurationError,
    LatticeError,
    VertexIndexError,
    is_allocation_failure,
)
from ..kernels import energy as kernels
from ..kernels.energy import KernelContext
from ..kernels.numerics import AnomalyCounter, scrub_tensor
from ..kernels.runtime import get_device, resolve_num_threads
from .config import VERTEX_LIMIT, LatticeConfig, LatticeParameters, floor_density
from .reducer import ParallelReducer, normalise
from .results import DimensionData, EnergyResult
from .state import InteractionTable, LatticeState, NurbsTables

# [CHOICE] allocation retry
# [FORMULA] V, V/2, V/4, ... (at most 5 halvings), then AllocationError
MAX_HALVINGS = 5

# [CHOICE] time step
# [FORMULA] p += a · dt · d ;  t += dt
DEFAULT_DT = 0.01

# [CHOICE] projection scale
# [NOTES] reserved; reported as `scale` in every DimensionData row.
AVG_PROJ_SCALE = 1.0

# Rows shown per diagnostic table in debug mode.
DEBUG_TABLE_ROWS = 32


class LatticeCalculator:
    """N-dimensional lattice energy calculator.

    Not reentrant: call it from one thread, and never mutate it while a
    `compute` is in flight.
    """

    def __init__(
        self,
        config: Optional[LatticeConfig] = None,
        *,
        sink: Optional[Console] = None,
        tables: Optional[NurbsTables] = None,
    ) -> None:
        config = replace(config, parameters=replace(config.parameters)) if config is not None else LatticeConfig()
        self.sink = sink if sink is not None else Console(debug=config.debug)
        if config.debug:
            self.sink.debug_enabled = True

        with self._reporting("configuration"):
            config.validate()
            params, clamped = config.parameters.clamped(strict=config.strict)
            self._device = get_device(config.device)
            num_threads = resolve_num_threads(config.num_threads)

        for name in clamped:
            self.sink.warn(
                f"Clamped {name}", detail=f"{getattr(config.parameters, name)} -> {getattr(params, name)}"
            )

        self._params = params
        self._strict = bool(config.strict)
        self._dtype = config.dtype
        self._max_dimensions = int(config.max_dimensions)
        self._mode = int(config.mode)
        self._num_vertices = int(config.num_vertices)
        self._material_density = floor_density(config.material_density)
        self._tables = tables if tables is not None else NurbsTables()
        self._reducer = ParallelReducer(num_threads)

        self._omega = 2.0 * math.pi / (2 * self._max_dimensions - 1)
        self._inv_max_dim = 1.0 / self._max_dimensions
        k = torch.arange(self._max_dimensions + 1, dtype=torch.float64)
        self._cached_cos = torch.cos(self._omega * k)

        self._simulation_time = 0.0
        self._needs_update = True
        self._dimension_data: dict[int, DimensionData] = {}
        self._current_dimension = self._mode
        self._state: LatticeState = self._rebuild(self._mode)

        self.sink.debug(
            "Calculator ready",
            detail=f"dimension={self._current_dimension} vertices={self.num_vertices} "
            f"threads={num_threads} device={self._device}",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _reporting(self, what: str):
        """Trace configuration and index errors through the sink, then re-raise."""
        try:
            yield
        except (ConfigurationError, VertexIndexError) as exc:
            self.sink.debug(f"{what} failed", detail=str(exc))
            raise

    def _report_anomalies(self, where: str, anomalies: AnomalyCounter) -> None:
        if anomalies:
            self.sink.debug(
                f"{where}: scrubbed {anomalies.total} non-finite values",
                detail=", ".join(f"{label}={n}" for label, n in anomalies.items()),
            )

    def _rebuild(self, dimension: int) -> LatticeState:
        """Build a lattice for `dimension`, halving the vertex count on allocation failure."""
        target = self._num_vertices
        vertices = target
        attempts: list[int] = []
        for attempt in range(MAX_HALVINGS + 1):
            attempts.append(vertices)
            try:
                state = LatticeState.build(
                    dimension,
                    vertices,
                    one_d_permeation=self._params.one_d_permeation,
                    tables=self._tables,
                    device=self._device,
                    dtype=self._dtype,
                    max_vertices=target,
                )
            except (MemoryError, RuntimeError) as exc:
                if not is_allocation_failure(exc):
                    raise
                if attempt == MAX_HALVINGS:
                    break
                reduced = max(1, vertices // 2)
                self.sink.warn(
                    f"Allocation failed for dimension {dimension}",
                    detail=f"reducing vertices {vertices} -> {reduced} (attempt {attempt + 1}/{MAX_HALVINGS})",
                )
                vertices = reduced
                continue

            self._state = state
            self._current_dimension = int(dimension)
            self._needs_update = True
            return state

        # The caller recovers by choosing a smaller vertex count.
        self._current_dimension = int(dimension)
        self._needs_update = True
        self.sink.debug(f"Allocation failed for dimension {dimension}", detail=f"tried {attempts}")
        raise AllocationError(dimension, attempts)

    def _check_lattice(self) -> None:
        if self._state.dimension != self._current_dimension or not self._state.is_consistent():
            raise ConfigurationError(
                f"lattice holds dimension {self._state.dimension} but the current dimension is "
                f"{self._current_dimension}; set a smaller vertex count to rebuild it"
            )

    def _refresh_interactions(self) -> None:
        ctx = self.kernel_context()
        anomalies = self._reducer.update_interactions(ctx, self._state.interactions, self._simulation_time)
        self._report_anomalies("interactions", anomalies)
        self._needs_update = False

    def kernel_context(self) -> KernelContext:
        """Snapshot of the lattice and parameters as read by the kernels."""
        s = self._state
        p = self._params
        return KernelContext(
            vertices=s.vertices,
            momenta=s.momenta,
            spins=s.spins,
            wave_amplitudes=s.wave_amplitudes,
            curves=s.curve_values,
            dimension=s.dimension,
            material_density=self._material_density,
            influence=p.influence,
            weak=p.weak,
            nurb_matter_strength=p.nurb_matter_strength,
            nurb_energy_strength=p.nurb_energy_strength,
            nurb_regular_matter_strength=p.nurb_regular_matter_strength,
            spin_interaction=p.spin_interaction,
            em_field_strength=p.em_field_strength,
            god_wave_freq=p.god_wave_freq,
        )

    # ------------------------------------------------------------------
    # Compute / batch / time stepping
    # ------------------------------------------------------------------

    def compute(self) -> EnergyResult:
        """Reduce every per-vertex channel and normalise into an EnergyResult."""
        self._check_lattice()
        if self._needs_update:
            self._refresh_interactions()
        ctx = self.kernel_context()
        sums, anomalies = self._reducer.energy_sums(ctx)
        self._report_anomalies("compute", anomalies)
        result = normalise(sums, ctx.num_vertices)
        self.sink.debug(f"compute d={ctx.dimension} V={ctx.num_vertices}", detail=str(result))
        return result

    def compute_batch(self, start: int, end: int) -> list[DimensionData]:
        """Compute every dimension in `[start, end]`, restoring the current dimension afterwards.

        A dimension that fails contributes an all-floor row instead of
        aborting the sweep.
        """
        start, end = int(start), int(end)
        if not (1 <= start <= end <= self._max_dimensions):
            with self._reporting("compute_batch"):
                raise ConfigurationError(
                    f"invalid dimension range [{start}, {end}] (valid: 1 <= start <= end <= {self._max_dimensions})"
                )

        original = self._current_dimension
        rows: list[DimensionData] = []
        try:
            for dim in range(start, end + 1):
                try:
                    self.set_current_dimension(dim)
                    data = DimensionData.from_energy(dim, AVG_PROJ_SCALE, self.compute())
                except (LatticeError, RuntimeError, MemoryError) as exc:
                    self.sink.warn(f"Dimension {dim} failed", detail=str(exc))
                    data = DimensionData.floor(dim, AVG_PROJ_SCALE)
                rows.append(data)
                self._dimension_data[dim] = data
        finally:
            if self._current_dimension != original or self._state.dimension != original:
                self.set_current_dimension(original)
        return rows

    def update_cache(self) -> DimensionData:
        """Compute the current dimension and record it in the dimension table."""
        data = DimensionData.from_energy(self._current_dimension, AVG_PROJ_SCALE, self.compute())
        self._dimension_data[self._current_dimension] = data
        return data

    def _check_dt(self, dt: float, what: str) -> float:
        dt = float(dt)
        if not math.isfinite(dt):
            with self._reporting(what):
                raise ConfigurationError(f"dt must be finite, got {dt}")
        return dt

    def update_momentum(self, dt: float = DEFAULT_DT) -> None:
        """`p_i += a_i · dt · d` for every vertex, from the gravitational acceleration field."""
        dt = self._check_dt(dt, "update_momentum")
        self._check_lattice()
        ctx = self.kernel_context()
        acc, anomalies = self._reducer.accelerations(ctx)
        momenta = scrub_tensor(ctx.momenta + acc * float(dt) * ctx.dimension, anomalies, "momenta")
        self._report_anomalies("update_momentum", anomalies)
        self._state.momenta = momenta
        self._needs_update = True

    def evolve_time_step(self, dt: float = DEFAULT_DT) -> None:
        dt = self._check_dt(dt, "evolve_time_step")
        self._simulation_time += dt
        self._needs_update = True

    def advance_cycle(self, dt: float = DEFAULT_DT) -> None:
        """Momentum update followed by a time step of `dt`; a non-finite `dt` changes nothing."""
        dt = self._check_dt(dt, "advance_cycle")
        self.update_momentum(dt)
        self.evolve_time_step(dt)
        self.sink.debug("Cycle advanced", detail=f"simulation_time={self._simulation_time:.6f}")

    def initialize_calculator(self) -> None:
        """Rebuild the lattice and interactions; in debug mode show the diagnostic tables."""
        from ..printer import interaction_table, nurbs_table, parameter_table, vertex_table

        self._rebuild(self._current_dimension)
        self._refresh_interactions()
        if self.sink.debug_enabled:
            self.sink.render(vertex_table(self._state, limit=DEBUG_TABLE_ROWS))
            self.sink.render(interaction_table(self._state.interactions, limit=DEBUG_TABLE_ROWS))
            self.sink.render(parameter_table(self._params))
            self.sink.render(nurbs_table(self._tables))

    def clone(self) -> "LatticeCalculator":
        """Independent copy, including lattice state and the dimension table."""
        other = copy.copy(self)
        other._params = replace(self._params)
        other._state = self._state.clone()
        other._cached_cos = self._cached_cos.clone()
        other._dimension_data = dict(self._dimension_data)
        return other

    # ------------------------------------------------------------------
    # Structural setters
    # ------------------------------------------------------------------

    def set_current_dimension(self, dimension: int) -> None:
        d = int(dimension)
        if not (1 <= d <= self._max_dimensions):
            with self._reporting("set_current_dimension"):
                raise ConfigurationError(f"dimension must be in [1, {self._max_dimensions}], got {dimension}")
        self._rebuild(d)
        self.sink.debug(f"Set current dimension: {d}")

    def set_mode(self, mode: int) -> None:
        """Change the initial dimension; drops the current dimension to `mode` if it was higher."""
        m = int(mode)
        if not (1 <= m <= self._max_dimensions):
            with self._reporting("set_mode"):
                raise ConfigurationError(f"mode must be in [1, {self._max_dimensions}], got {mode}")
        self._mode = m
        if self._current_dimension > m:
            self._rebuild(m)
        self._needs_update = True

    def set_num_vertices(self, num_vertices: int) -> None:
        n = int(num_vertices)
        if not (1 <= n <= VERTEX_LIMIT):
            with self._reporting("set_num_vertices"):
                raise ConfigurationError(f"num_vertices must be in [1, {VERTEX_LIMIT}], got {num_vertices}")
        self._num_vertices = n
        self._rebuild(self._current_dimension)

    def set_material_density(self, density: float) -> None:
        self._material_density = floor_density(density)
        self._needs_update = True

    def set_total_charge(self, value: float) -> None:
        self._state.total_charge = floor_density(value)

    def set_debug(self, enabled: bool) -> None:
        self.sink.debug_enabled = bool(enabled)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_parameter(self, name: str, value: float) -> float:
        """Store a clamped value (or raise in strict mode) and return it."""
        with self._reporting(f"set {name}"):
            stored = self._params.set(name, value, strict=self._strict)
        if stored != float(value):
            self.sink.warn(f"Clamped {name}", detail=f"{value} -> {stored}")
        self._needs_update = True
        self.sink.debug(f"Set {name}: {stored}")
        return stored

    def set_parameters(self, values: Mapping[str, float]) -> dict[str, float]:
        return {name: self.set_parameter(name, value) for name, value in values.items()}

    def get_parameter(self, name: str) -> float:
        if name not in LatticeParameters.names():
            with self._reporting("get_parameter"):
                raise ConfigurationError(f"unknown parameter {name!r}")
        return float(getattr(self._params, name))

    @property
    def parameters(self) -> LatticeParameters:
        """Copy of the parameter block."""
        return replace(self._params)

    # ------------------------------------------------------------------
    # Per-vertex state
    # ------------------------------------------------------------------

    def _mutate(self, what: str, fn: Callable[..., None], *args) -> None:
        with self._reporting(what):
            fn(*args)
        self._needs_update = True

    def set_vertex(self, index: int, vertex: Sequence[float]) -> None:
        self._mutate("set_vertex", self._state.set_vertex, index, vertex)

    def set_momentum(self, index: int, momentum: Sequence[float]) -> None:
        self._mutate("set_momentum", self._state.set_momentum, index, momentum)

    def set_spin(self, index: int, spin: float) -> None:
        self._mutate("set_spin", self._state.set_spin, index, spin)

    def set_wave_amplitude(self, index: int, amplitude: float) -> None:
        self._mutate("set_wave_amplitude", self._state.set_wave_amplitude, index, amplitude)

    def set_vertices(self, vertices) -> None:
        self._mutate("set_vertices", self._state.replace_vertices, vertices)

    def set_momenta(self, momenta) -> None:
        self._mutate("set_momenta", self._state.replace_momenta, momenta)

    def set_spins(self, spins) -> None:
        self._mutate("set_spins", self._state.replace_spins, spins)

    def set_wave_amplitudes(self, amplitudes) -> None:
        self._mutate("set_wave_amplitudes", self._state.replace_wave_amplitudes, amplitudes)

    def _index(self, index: int) -> int:
        with self._reporting("vertex access"):
            return self._state.check_index(index)

    def vertex(self, index: int) -> torch.Tensor:
        return self._state.vertices[self._index(index)].clone()

    def momentum(self, index: int) -> torch.Tensor:
        return self._state.momenta[self._index(index)].clone()

    def spin(self, index: int) -> float:
        return float(self._state.spins[self._index(index)].item())

    def wave_amplitude(self, index: int) -> float:
        return float(self._state.wave_amplitudes[self._index(index)].item())

    @property
    def vertices(self) -> torch.Tensor:
        return self._state.vertices.clone()

    @property
    def momenta(self) -> torch.Tensor:
        return self._state.momenta.clone()

    @property
    def spins(self) -> torch.Tensor:
        return self._state.spins.clone()

    @property
    def wave_amplitudes(self) -> torch.Tensor:
        return self._state.wave_amplitudes.clone()

    # ------------------------------------------------------------------
    # Per-vertex kernels
    # ------------------------------------------------------------------

    def _vertex_kernel(self, fn, index: int, *args) -> torch.Tensor:
        i = self._index(index)
        return fn(self.kernel_context(), slice(i, i + 1), *args)[0]

    def nurb_matter(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.nurb_matter, index))

    def nurb_energy(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.nurb_energy, index))

    def nurb_regular_matter(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.nurb_regular_matter, index))

    def spin_energy(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.spin_energy, index))

    def em_field(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.em_field, index))

    def god_wave(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.god_wave, index))

    def kinetic_energy(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.kinetic_energy, index))

    def god_wave_amplitude(self, index: int, time: float) -> float:
        return float(self._vertex_kernel(kernels.god_wave_amplitude, index, time))

    def vector_potential(self, index: int) -> list[float]:
        return self._vertex_kernel(kernels.vector_potential, index).tolist()

    def gravitational_acceleration(self, index: int) -> list[float]:
        return self._vertex_kernel(kernels.gravitational_acceleration, index).tolist()

    def sampled_potential(self, index: int) -> float:
        return float(self._vertex_kernel(kernels.sampled_potential, index))

    def interaction(self, index: int, distance: float) -> float:
        self._index(index)
        ctx = self.kernel_context()
        r = torch.tensor([float(distance)], dtype=ctx.vertices.dtype, device=ctx.vertices.device)
        return float(kernels.interaction_strength(ctx, r)[0])

    def gravitational_potential(self, index: int, other: int) -> float:
        i, j = self._index(index), self._index(other)
        ctx = self.kernel_context()
        rows = torch.tensor([i], device=ctx.vertices.device)
        cols = torch.tensor([j], device=ctx.vertices.device)
        return float(kernels.gravitational_potential(ctx, rows, cols)[0, 0])

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def current_dimension(self) -> int:
        return self._current_dimension

    @property
    def mode(self) -> int:
        return self._mode

    @property
    def max_dimensions(self) -> int:
        return self._max_dimensions

    @property
    def num_vertices(self) -> int:
        """Vertices actually allocated (smaller than requested after an allocation retry)."""
        return self._state.num_vertices

    @property
    def requested_vertices(self) -> int:
        return self._num_vertices

    @property
    def num_threads(self) -> int:
        return self._reducer.num_threads

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def debug(self) -> bool:
        return self.sink.debug_enabled

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def material_density(self) -> float:
        return self._material_density

    @property
    def total_charge(self) -> float:
        return float(self._state.total_charge)

    @property
    def simulation_time(self) -> float:
        return self._simulation_time

    @property
    def needs_update(self) -> bool:
        return self._needs_update

    @property
    def omega(self) -> float:
        return self._omega

    @property
    def inv_max_dim(self) -> float:
        return self._inv_max_dim

    @property
    def cached_cos(self) -> torch.Tensor:
        return self._cached_cos.clone()

    @property
    def avg_proj_scale(self) -> float:
        return AVG_PROJ_SCALE

    @property
    def interactions(self) -> InteractionTable:
        return self._state.interactions

    @property
    def nurbs_tables(self) -> NurbsTables:
        return self._tables

    @property
    def state(self) -> LatticeState:
        return self._state

    @property
    def dimension_data(self) -> dict[int, DimensionData]:
        return dict(sorted(self._dimension_data.items()))

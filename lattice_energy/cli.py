"""Lattice Energy command-line driver.

Builds a calculator, advances the lattice `--timesteps` cycles at the initial
dimension, then sweeps every dimension from 1 to `--dimensions` and prints one
table row per dimension.

Usage:
    python run.py                          # Defaults: 26 dimensions, 1000 vertices
    python run.py -d 5 -V 200 -t 0         # Small sweep, no time stepping
    python run.py -i -0.5 --weak=-1        # Negative values, clamped into range
    python run.py --profile                # Record a torch profiler trace
    python run.py --debug                  # Diagnostic tables and kernel traces
"""

from __future__ import annotations

import argparse
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import Optional, Sequence

from .console import Console
from .errors import ConfigurationError, LatticeError
from .lattice.calculator import DEFAULT_DT, LatticeCalculator
from .lattice.config import DIMENSION_LIMIT, LatticeConfig, LatticeParameters
from .lattice.profiler import create_profiler
from .printer import results_table

# (short, long, parameter name, help)
PARAMETER_OPTIONS = (
    ("-i", "--influence", "influence", "Scale on pairwise interaction and gravitational potential (0-10)"),
    ("-w", "--weak", "weak", "Scale on vector potential (0-1)"),
    ("-c", "--collapse", "collapse", "Collapse factor (0-5)"),
    ("-2", "--twod", "two_d", "Two-dimensional influence (0-5)"),
    ("-3", "--threed", "three_d_influence", "Three-dimensional influence (0-5)"),
    ("-1", "--oned", "one_d_permeation", "One-dimensional permeation, scales wave amplitudes (0-5)"),
    ("-n", "--nurbmatter", "nurb_matter_strength", "Matter kernel strength (0-1)"),
    ("-e", "--nurbenergy", "nurb_energy_strength", "Energy kernel strength (0-2)"),
    (None, "--nurbregular", "nurb_regular_matter_strength", "Regular-matter kernel strength (0-1)"),
    ("-a", "--alpha", "alpha", "Alpha modulation (0.01-10)"),
    ("-b", "--beta", "beta", "Beta modulation (0-1)"),
    ("-r", "--carroll", "carroll_factor", "Carroll factor (0-1)"),
    ("-f", "--meanfield", "mean_field_approx", "Mean-field approximation (0-1)"),
    ("-y", "--asymcollapse", "asym_collapse", "Asymmetric collapse (0-1)"),
    ("-p", "--perspectivetrans", "perspective_trans", "Perspective translation (0-10)"),
    ("-q", "--perspectivefocal", "perspective_focal", "Perspective focal length (1-20)"),
    ("-x", "--spininteraction", "spin_interaction", "Spin kernel strength (0-1)"),
    ("-z", "--emfield", "em_field_strength", "EM field strength (0-1e7)"),
    ("-u", "--renorm", "renorm_factor", "Renormalisation factor (0.1-10)"),
    ("-v", "--vacuum", "vacuum_energy", "Vacuum energy (0-1)"),
    ("-g", "--godwavefreq", "god_wave_freq", "God-wave frequency (0.1-10)"),
)

# Options taking a value, short form -> long form.
VALUE_OPTIONS = {
    "-d": "--dimensions",
    "-m": "--mode",
    "-t": "--timesteps",
    "-s": "--dt",
    "-V": "--vertices",
    **{short: long for short, long, _, _ in PARAMETER_OPTIONS if short},
}
VALUE_LONG_OPTIONS = frozenset(VALUE_OPTIONS.values()) | {long for _, long, _, _ in PARAMETER_OPTIONS} | {"--threads"}


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def join_negative_values(argv: Sequence[str]) -> list[str]:
    """Rewrite `-i -0.5` as `--influence=-0.5`.

    `-1`, `-2` and `-3` are options, so argparse reads any negative-looking
    token as a flag. An option that takes a value consumes the following
    number instead, whatever its sign.
    """
    out: list[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        long = VALUE_OPTIONS.get(arg, arg if arg in VALUE_LONG_OPTIONS else None)
        if long is not None and i + 1 < len(argv) and argv[i + 1].startswith("-") and _is_number(argv[i + 1]):
            out.append(f"{long}={argv[i + 1]}")
            i += 2
            continue
        out.append(arg)
        i += 1
    return out


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lattice-energy",
        description="N-dimensional lattice energy calculator. Out-of-range parameter values are clamped (or rejected with --strict); negative values may follow the option or use the --opt=value form.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    defaults = LatticeParameters()

    parser.add_argument("-d", "--dimensions", type=int, default=DIMENSION_LIMIT, help=f"Maximum dimension (1-{DIMENSION_LIMIT}, default {DIMENSION_LIMIT})")
    parser.add_argument("-m", "--mode", type=int, default=3, help="Initial dimension (1-dimensions, default 3)")
    parser.add_argument("-t", "--timesteps", type=int, default=10, help="Cycles to advance before the sweep (default 10)")
    parser.add_argument("-s", "--dt", type=float, default=DEFAULT_DT, help=f"Time step per cycle (default {DEFAULT_DT})")
    parser.add_argument("-V", "--vertices", type=int, default=1000, help="Lattice size (1-1000000, default 1000)")

    for short, long, name, help_text in PARAMETER_OPTIONS:
        flags = (short, long) if short else (long,)
        parser.add_argument(
            *flags,
            dest=name,
            type=float,
            default=getattr(defaults, name),
            metavar="X",
            help=f"{help_text}, default {getattr(defaults, name)}",
        )

    parser.add_argument("--threads", type=int, default=None, help="Reducer worker threads (default: CPU count, capped)")
    parser.add_argument("--device", type=str, default="cpu", help="Device (cpu, cuda)")
    parser.add_argument("--strict", action="store_true", help="Reject out-of-range parameters instead of clamping")
    parser.add_argument("--profile", action="store_true", help="Record a torch profiler trace")
    parser.add_argument("--profile-dir", type=str, default="artifacts/profile", help="Profiler trace directory")
    parser.add_argument("--debug", action="store_true", help="Verbose traces and diagnostic tables")
    return parser


def config_from_args(args: argparse.Namespace) -> LatticeConfig:
    params = LatticeParameters(**{name: getattr(args, name) for _, _, name, _ in PARAMETER_OPTIONS})
    return LatticeConfig(
        max_dimensions=args.dimensions,
        mode=args.mode,
        num_vertices=args.vertices,
        parameters=params,
        num_threads=args.threads,
        device=args.device,
        strict=args.strict,
        debug=args.debug,
    )


def run(calc: LatticeCalculator, *, timesteps: int, dt: float):
    """Advance `timesteps` cycles, then sweep every dimension."""
    if timesteps < 0:
        raise ConfigurationError(f"timesteps must be >= 0, got {timesteps}")
    if calc.debug:
        calc.initialize_calculator()
    for _ in range(timesteps):
        calc.advance_cycle(dt)
    return calc.compute_batch(1, calc.max_dimensions)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(join_negative_values(sys.argv[1:] if argv is None else argv))
    except SystemExit as exc:
        return 0 if exc.code in (0, None) else 1

    sink = Console(debug=args.debug)
    try:
        calc = LatticeCalculator(config_from_args(args), sink=sink)
        sink.header(
            "Lattice Energy",
            dimensions=f"1-{calc.max_dimensions}",
            vertices=str(calc.num_vertices),
            timesteps=f"{args.timesteps} x {args.dt}",
            threads=str(calc.num_threads),
            device=str(calc.device),
        )
        profiler = create_profiler(args.profile, device=args.device, output_dir=Path(args.profile_dir), sink=sink)
        with profiler if profiler is not None else nullcontext():
            with sink.spinner(f"Sweeping {calc.max_dimensions} dimensions..."):
                rows = run(calc, timesteps=args.timesteps, dt=args.dt)
    except (LatticeError, RuntimeError, MemoryError) as exc:
        sink.error("Simulation failed", detail=str(exc))
        return 1

    sink.render(results_table(rows))
    sink.success(
        "Done",
        detail=f"{len(rows)} dimensions, {calc.num_vertices} vertices, simulation_time={calc.simulation_time:.6f}",
    )
    return 0

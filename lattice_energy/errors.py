"""Error taxonomy for the lattice energy calculator.

Numeric anomalies (NaN/Inf) are deliberately absent here: they never escape a
kernel, they are floored to `MIN_MAGNITUDE` and counted instead.
"""

from __future__ import annotations

import inspect
import os
from dataclasses import dataclass
from typing import Optional, Sequence


class LatticeError(Exception):
    """Base class for every error raised by `lattice_energy`."""


class ConfigurationError(LatticeError, ValueError):
    """Invalid parameter, dimension, vertex count or NURBS table shape."""


@dataclass(frozen=True)
class SourceLocation:
    filename: str
    lineno: int
    function: str

    def __str__(self) -> str:
        return f"{self.filename}:{self.lineno} in {self.function}"


_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


def caller_location() -> Optional[SourceLocation]:
    """Location of the nearest frame outside this package (the public caller)."""
    frame = inspect.currentframe()
    try:
        while frame is not None:
            filename = os.path.abspath(frame.f_code.co_filename)
            if not filename.startswith(_PACKAGE_DIR + os.sep):
                return SourceLocation(filename, frame.f_lineno, frame.f_code.co_name)
            frame = frame.f_back
        return None
    finally:
        del frame


class VertexIndexError(LatticeError, IndexError):
    """Vertex index outside `[0, V)`."""

    def __init__(self, index: int, size: int, location: Optional[SourceLocation] = None):
        self.index = int(index)
        self.size = int(size)
        self.location = location
        where = f" at {location}" if location is not None else ""
        super().__init__(f"vertex index {self.index} out of range [0, {self.size}){where}")


class AllocationError(LatticeError, MemoryError):
    """Lattice rebuild failed after every reduced vertex count was tried."""

    def __init__(self, dimension: int, attempts: Sequence[int]):
        self.dimension = int(dimension)
        self.attempts = tuple(int(a) for a in attempts)
        super().__init__(
            f"could not allocate lattice for dimension {self.dimension} "
            f"(tried vertex counts {list(self.attempts)})"
        )


def is_allocation_failure(exc: BaseException) -> bool:
    """Whether `exc` is an out-of-memory condition from Python or torch."""
    if isinstance(exc, MemoryError):
        return True
    # torch reports CPU allocator exhaustion as a RuntimeError.
    if isinstance(exc, RuntimeError):
        msg = str(exc).lower()
        return "out of memory" in msg or "not enough memory" in msg
    return False

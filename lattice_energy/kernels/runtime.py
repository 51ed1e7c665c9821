"""Device and worker-thread resolution.

Lattice state is kept in float64 throughout, so the Apple MPS backend (which
has no float64 support) is never selected. CUDA is used only when asked for
explicitly and available; everything else runs on the CPU, where torch
releases the GIL inside tensor ops and worker threads run truly in parallel.
"""

from __future__ import annotations

import os
from typing import Optional

import torch

from ..errors import ConfigurationError

__all__ = [
    "cuda_supported",
    "get_device",
    "resolve_num_threads",
]

# [CHOICE] default worker cap
# [NOTES] the reduction is memory-bound past a handful of workers.
MAX_DEFAULT_THREADS = 16


def cuda_supported() -> bool:
    try:
        return bool(torch.cuda.is_available())
    except RuntimeError:
        return False


def get_device(requested: Optional[str] = None) -> torch.device:
    """Get the device to hold the lattice on.

    `None`/"auto" resolves to CPU; "cuda" is honoured only when available.
    """
    name = (requested or "auto").lower()
    if name in ("auto", "cpu"):
        return torch.device("cpu")
    if name.startswith("cuda"):
        if not cuda_supported():
            raise ConfigurationError(f"device {requested!r} requested but CUDA is not available")
        return torch.device(name)
    raise ConfigurationError(f"unsupported device {requested!r} (float64 lattice needs 'cpu' or 'cuda')")


def resolve_num_threads(requested: Optional[int] = None) -> int:
    """Number of reducer workers: `requested`, or the host CPU count capped at MAX_DEFAULT_THREADS."""
    if requested is not None:
        n = int(requested)
        if n < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {requested}")
        return n
    return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_THREADS))

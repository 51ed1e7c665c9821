from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional

from ..console import Console


def create_profiler(enabled: bool, *, device: str = "cpu", output_dir: Path, sink: Console) -> Optional[Any]:
    """Create a torch profiler if profiling is enabled."""
    if not enabled:
        return None

    from torch.profiler import ProfilerActivity, profile

    activities = [ProfilerActivity.CPU]
    if str(device).startswith("cuda"):
        activities.append(ProfilerActivity.CUDA)

    # No schedule: the whole run is recorded and the trace saved on exit.
    return profile(
        activities=activities,
        on_trace_ready=lambda p: save_profiler_trace(p, output_dir, sink),
        record_shapes=True,
        profile_memory=True,
    )


def save_profiler_trace(profiler, output_dir: Path, sink: Console) -> Path:
    """Save profiler trace and print summary."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    # Chrome trace for visualization
    trace_path = output_dir / f"trace_{int(time.time())}.json"
    profiler.export_chrome_trace(str(trace_path))
    sink.info("Profiler trace saved", detail=f"{trace_path} (view in chrome://tracing)")

    sink.render(profiler.key_averages().table(sort_by="cpu_time_total", row_limit=20))
    return trace_path

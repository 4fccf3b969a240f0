"""Container resource telemetry."""
from .engine import TelemetryEngine, build_sample, compute_cpu_percent, format_bytes
from .models import TelemetrySample

__all__ = ["TelemetryEngine", "TelemetrySample", "build_sample", "compute_cpu_percent", "format_bytes"]

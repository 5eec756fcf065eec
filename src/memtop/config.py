"""Default configuration values for memtop."""

from dataclasses import dataclass

MEGABYTE = 1024 * 1024


@dataclass(frozen=True)
class MonitorConfig:
    """Poll loop cadence."""

    ticks: int = 10
    interval: float = 1.0  # seconds between ticks


@dataclass(frozen=True)
class PressureConfig:
    """Limits for the synthetic memory-pressure arena."""

    max_megabytes: int = 1024  # hard ceiling per allocation request
    page_stride: int = 4096  # one byte is written every page_stride bytes
    tui_step_megabytes: int = 50


@dataclass(frozen=True)
class SamplerConfig:
    """Bounds applied to CPU utilization readings."""

    min_percent: float = 0.0
    max_percent: float = 999.0


MONITOR = MonitorConfig()
PRESSURE = PressureConfig()
SAMPLER = SamplerConfig()

"""Metric descriptors."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple


class Unit(enum.Enum):
    """Measurement unit of a metric."""

    AMPERES = "amperes"
    BYTES = "bytes"
    CELSIUS = "celsius"
    GRAMS = "grams"
    JOULES = "joules"
    METERS = "meters"
    RATIOS = "ratios"
    SECONDS = "seconds"
    VOLTS = "volts"


class MetricType(enum.Enum):
    """Type of a metric as reported in the text exposition format."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    INFO = "info"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MetricDescriptor:
    """Descriptor for a single metric."""

    name: str
    """Name of the metric excluding the unit suffix."""
    field_name: str
    metric_type: MetricType
    unit: Optional[Unit]
    help: str

    def full_name(self) -> str:
        """Name of the metric including the unit suffix, if any."""
        if self.unit is None:
            return self.name
        return f"{self.name}_{self.unit.value}"


@dataclass(frozen=True)
class MetricGroupDescriptor:
    """Descriptor for a group of metrics."""

    crate_name: str
    crate_version: str
    module_path: str
    name: str
    line: int
    metrics: Tuple[MetricDescriptor, ...]


@dataclass(frozen=True)
class FullMetricDescriptor:
    """A metric descriptor together with the descriptor of its group."""

    group: MetricGroupDescriptor
    metric: MetricDescriptor
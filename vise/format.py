"""Text exposition formats for metrics and conversions between them."""

from __future__ import annotations

import enum
import io
from dataclasses import dataclass
from typing import Optional, Protocol

from vise.descriptors import MetricType

OPEN_METRICS_CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"
"""Content type for the OpenMetrics text format."""

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
"""Content type for the Prometheus text format."""

_ASCII_WHITESPACE = frozenset(" \t\n\r\x0c")

_TYPE_PREFIX = "# TYPE "
_EOF_LINE = "# EOF"


class Format(enum.Enum):
    """Metrics export format.

    The formats differ in whether counters carry the ``_total`` suffix, whether
    info metrics carry the ``_info`` suffix, and whether the ``# EOF``
    terminator is emitted:

    * ``OPEN_METRICS``: ``_total`` yes, ``_info`` yes, ``# EOF`` yes;
    * ``OPEN_METRICS_FOR_PROMETHEUS``: no, no, yes;
    * ``PROMETHEUS``: no, no, no (and info types are reported as gauges).
    """

    OPEN_METRICS = "open_metrics"
    PROMETHEUS = "prometheus"
    OPEN_METRICS_FOR_PROMETHEUS = "open_metrics_for_prometheus"

    @property
    def content_type(self) -> str:
        """HTTP content type matching this format."""
        if self is Format.PROMETHEUS:
            return PROMETHEUS_CONTENT_TYPE
        return OPEN_METRICS_CONTENT_TYPE


class _Writer(Protocol):
    def write(self, text: str) -> object: ...


def _metric_type_from_str(value: str) -> MetricType:
    return {
        "counter": MetricType.COUNTER,
        "gauge": MetricType.GAUGE,
        "histogram": MetricType.HISTOGRAM,
        "info": MetricType.INFO,
    }.get(value, MetricType.UNKNOWN)


@dataclass(frozen=True)
class MetricTypeDefinition:
    """Metric name and type parsed from the body of a ``# TYPE`` line."""

    name: str
    type: MetricType

    @classmethod
    def parse(cls, line: str) -> MetricTypeDefinition:
        """Parse ``"<name> <type>"``; raise ``ValueError`` if there is no separator."""
        trimmed = line.strip()
        split_pos = next(
            (pos for pos, ch in enumerate(trimmed) if ch in _ASCII_WHITESPACE), None
        )
        if split_pos is None:
            raise ValueError(f"Malformed metric type definition: {line!r}")
        name = trimmed[:split_pos]
        type_str = trimmed[split_pos + 1 :]
        return cls(name=name, type=_metric_type_from_str(type_str))


def _split_lines(text: str) -> list[str]:
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [part[:-1] if part.endswith("\r") else part for part in parts]


class PrometheusWrapper:
    """Streaming transform of OpenMetrics text into the Prometheus dialect.

    Text may be written in arbitrary chunks; complete lines are transformed and
    passed to the underlying writer. :meth:`flush` must be called at the end so
    that an unterminated last line is not lost. Used as a context manager, the
    wrapper flushes on successful exit.
    """

    def __init__(
        self,
        writer: _Writer,
        *,
        remove_eof_terminator: bool = False,
        translate_info_metrics_type: bool = False,
    ) -> None:
        self._writer = writer
        self.remove_eof_terminator = remove_eof_terminator
        self.translate_info_metrics_type = translate_info_metrics_type
        self._last_metric_definition: Optional[MetricTypeDefinition] = None
        self._last_line = ""

    def __enter__(self) -> PrometheusWrapper:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.flush()

    def _transform_value_line(self, line: str) -> Optional[str]:
        name_end = next(
            (pos for pos, ch in enumerate(line) if ch == "{" or ch in _ASCII_WHITESPACE),
            None,
        )
        if name_end is None:
            raise ValueError(f"Malformed metric value line: {line!r}")
        name, rest = line[:name_end], line[name_end:]

        definition = self._last_metric_definition
        if definition is None:
            return None
        suffix = {MetricType.COUNTER: "_total", MetricType.INFO: "_info"}.get(
            definition.type
        )
        if suffix is not None and name.endswith(suffix):
            if name[: -len(suffix)] == definition.name:
                return f"{definition.name}{rest}"
        return None

    def _handle_line(self) -> None:
        line, self._last_line = self._last_line, ""
        if line == _EOF_LINE and self.remove_eof_terminator:
            return

        transformed: Optional[str] = None
        if line.startswith(_TYPE_PREFIX):
            definition = MetricTypeDefinition.parse(line[len(_TYPE_PREFIX) :])
            if self.translate_info_metrics_type and definition.type is MetricType.INFO:
                transformed = f"# TYPE {definition.name} gauge"
            self._last_metric_definition = definition
        elif not line.startswith("#"):
            transformed = self._transform_value_line(line)

        self._writer.write(f"{transformed if transformed is not None else line}\n")

    def write(self, text: str) -> None:
        """Write a chunk of OpenMetrics text."""
        lines = _split_lines(text)
        for index, line in enumerate(lines):
            self._last_line += line
            if index + 1 < len(lines) or text.endswith("\n"):
                self._handle_line()

    def flush(self) -> None:
        """Process the buffered, unterminated last line, if any."""
        if self._last_line:
            self._handle_line()


def translate(text: str, format: Format) -> str:
    """Convert OpenMetrics-encoded ``text`` into the requested ``format``."""
    if format is Format.OPEN_METRICS:
        return text
    buffer = io.StringIO()
    with PrometheusWrapper(
        buffer,
        remove_eof_terminator=format is Format.PROMETHEUS,
        translate_info_metrics_type=format is Format.PROMETHEUS,
    ) as wrapper:
        wrapper.write(text)
    return buffer.getvalue()
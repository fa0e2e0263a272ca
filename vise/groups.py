"""Definitions of metric groups: structs whose fields are individual metrics."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

from vise.attributes import (
    AttributeError_,
    DefinitionError,
    RawAttrs,
    ensure_no_generics,
    metrics_attribute,
)
from vise.buckets import Buckets
from vise.descriptors import MetricDescriptor, MetricGroupDescriptor, MetricType, Unit

_METRIC_NAME = re.compile(r"[a-z_][a-z0-9_]*", re.ASCII)
_LABEL_NAME = re.compile(r"[a-z_][a-z0-9_]*", re.ASCII)
_TRAILING_PUNCTUATION = (".", "!", "?")


def _assert_metric_prefix(prefix: str) -> None:
    if not _METRIC_NAME.fullmatch(prefix):
        raise DefinitionError(
            f"Metric prefix `{prefix}` is invalid; it must consist of lowercase ASCII "
            "letters, digits and underscores, and must not start with a digit"
        )


def _assert_metric_name(name: str) -> None:
    if not _METRIC_NAME.fullmatch(name):
        raise DefinitionError(
            f"Metric name `{name}` is invalid; it must consist of lowercase ASCII "
            "letters, digits and underscores, and must not start with a digit"
        )


def _assert_label_names(labels: Sequence[str]) -> None:
    for label in labels:
        if not isinstance(label, str) or not _LABEL_NAME.fullmatch(label):
            raise DefinitionError(
                f"Label name `{label}` is invalid; it must consist of lowercase ASCII "
                "letters, digits and underscores, and must not start with a digit"
            )


def collect_docs(lines: Union[str, Iterable[str], None]) -> str:
    """Join doc lines into a single help string.

    Lines are trimmed, empty ones dropped, the rest joined with spaces, and a
    single trailing ``.``, ``!`` or ``?`` is removed.
    """
    if lines is None:
        return ""
    if isinstance(lines, str):
        lines = lines.splitlines()
    docs = " ".join(stripped for stripped in (line.strip() for line in lines) if stripped)
    if docs.endswith(_TRAILING_PUNCTUATION):
        docs = docs[:-1]
    return docs


@dataclass(frozen=True)
class MetricsAttrs:
    """Group-level ``metrics`` attributes."""

    prefix: Optional[str] = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> MetricsAttrs:
        """Parse attribute arguments; unknown keys raise ``AttributeError_``."""
        values = {}
        for key, value in raw.items():
            if key == "prefix":
                if not isinstance(value, str):
                    raise AttributeError_("`prefix` attribute must be a string")
                values["prefix"] = value
            else:
                raise AttributeError_(
                    "Unsupported attribute; only `prefix` attribute is supported"
                )
        return cls(**values)


@dataclass(frozen=True)
class MetricsFieldAttrs:
    """Field-level ``metrics`` attributes."""

    buckets: Optional[Buckets] = None
    unit: Optional[Unit] = None
    labels: Optional[Tuple[str, ...]] = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> MetricsFieldAttrs:
        """Parse attribute arguments; unknown or mistyped values raise ``AttributeError_``."""
        values: dict = {}
        for key, value in raw.items():
            if key == "buckets":
                if not isinstance(value, Buckets):
                    if isinstance(value, str) or not isinstance(value, Iterable):
                        raise AttributeError_("`buckets` must be a `Buckets` instance")
                    value = Buckets.values(value)
                values["buckets"] = value
            elif key == "unit":
                if not isinstance(value, Unit):
                    raise AttributeError_("`unit` must be a `Unit` value")
                values["unit"] = value
            elif key == "labels":
                if isinstance(value, str):
                    raise AttributeError_("`labels` must be a sequence of label names")
                values["labels"] = tuple(value)
            else:
                raise AttributeError_(
                    "Unsupported attribute; only `buckets`, `unit` and `labels` "
                    "attributes are supported"
                )
        return cls(**values)


@dataclass(frozen=True)
class MetricsField:
    """A single metric within a group."""

    name: str
    metric_type: MetricType
    docs: str = ""
    attrs: MetricsFieldAttrs = field(default_factory=MetricsFieldAttrs)

    @classmethod
    def parse(
        cls,
        name: Optional[str],
        metric_type: MetricType,
        docs: Union[str, Iterable[str], None] = None,
        attrs: Optional[RawAttrs] = None,
    ) -> MetricsField:
        """Build a field from its name, type, doc lines and raw attributes."""
        if not name:
            raise DefinitionError("Only named fields are supported")
        if not isinstance(metric_type, MetricType):
            raise DefinitionError(f"Field `{name}` is not a metric")
        field_attrs = metrics_attribute(attrs, MetricsFieldAttrs.parse)
        return cls(
            name=name,
            metric_type=metric_type,
            docs=collect_docs(docs),
            attrs=field_attrs,
        )

    def full_name(self, prefix: Optional[str] = None) -> str:
        """Metric name with the group prefix, excluding the unit suffix."""
        return f"{prefix}_{self.name}" if prefix else self.name

    def describe(self, prefix: Optional[str] = None) -> MetricDescriptor:
        """Descriptor of this metric within a group with the given prefix."""
        return MetricDescriptor(
            name=self.full_name(prefix),
            field_name=self.name,
            metric_type=self.metric_type,
            unit=self.attrs.unit,
            help=self.docs,
        )

    def _validate(self) -> None:
        is_histogram = self.metric_type is MetricType.HISTOGRAM
        if is_histogram and self.attrs.buckets is None:
            raise DefinitionError(
                f"Histogram `{self.name}` requires `buckets` to be specified"
            )
        if not is_histogram and self.attrs.buckets is not None:
            raise DefinitionError(
                f"`buckets` can only be specified for histograms, not for `{self.name}`"
            )
        _assert_metric_name(self.name)
        if self.attrs.labels is not None:
            _assert_label_names(self.attrs.labels)


def _to_field(spec: Any) -> MetricsField:
    if isinstance(spec, MetricsField):
        return spec
    return MetricsField.parse(*spec)


@dataclass(frozen=True)
class MetricsGroup:
    """A validated group of metrics together with its source metadata."""

    name: str
    attrs: MetricsAttrs
    fields: Tuple[MetricsField, ...]
    crate_name: str = ""
    crate_version: str = ""
    module_path: str = ""
    line: int = 0

    @classmethod
    def new(
        cls,
        name: str,
        fields: Optional[Iterable[Any]],
        attrs: Optional[RawAttrs] = None,
        generics: Any = (),
        crate_name: str = "",
        crate_version: str = "",
        module_path: str = "",
        line: int = 0,
    ) -> MetricsGroup:
        """Build and validate a group.

        ``fields`` is ``None`` for non-struct types; otherwise it holds
        ``MetricsField``s or ``(name, metric_type[, docs[, raw_attrs]])`` tuples.
        """
        ensure_no_generics(generics, "Metrics")
        if fields is None:
            raise DefinitionError("#[derive(Metrics)] can only be placed on structs")
        group_attrs = metrics_attribute(attrs, MetricsAttrs.parse)
        parsed = tuple(_to_field(spec) for spec in fields)

        if group_attrs.prefix is not None:
            _assert_metric_prefix(group_attrs.prefix)
        for metric_field in parsed:
            metric_field._validate()

        return cls(
            name=name,
            attrs=group_attrs,
            fields=parsed,
            crate_name=crate_name,
            crate_version=crate_version,
            module_path=module_path,
            line=line,
        )

    @property
    def prefix(self) -> Optional[str]:
        """Non-empty prefix of metric names, if any."""
        return self.attrs.prefix or None

    def descriptor(self) -> MetricGroupDescriptor:
        """Descriptor of this group and all its metrics."""
        prefix = self.prefix
        return MetricGroupDescriptor(
            crate_name=self.crate_name,
            crate_version=self.crate_version,
            module_path=self.module_path,
            name=self.name,
            line=self.line,
            metrics=tuple(metric_field.describe(prefix) for metric_field in self.fields),
        )
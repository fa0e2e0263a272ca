"""Handling of ``metrics`` attributes shared by label and metric definitions.

Raw attributes are given either as a mapping from the attribute path to its
arguments (``{"metrics": {"prefix": "app"}}``) or as an iterable of
``(path, arguments)`` pairs. Only the first ``metrics`` attribute is used.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, TypeVar, Union

T = TypeVar("T")

RawAttrs = Union[Mapping[str, Mapping[str, Any]], Iterable[Tuple[str, Mapping[str, Any]]]]

_METRICS_PATH = "metrics"


class DefinitionError(ValueError):
    """Invalid definition of a metric group, a label set or a label value."""


class AttributeError_(DefinitionError):
    """Unsupported or malformed ``metrics`` attribute."""


def metrics_attribute(
    raw_attrs: Optional[RawAttrs], parser: Callable[[Mapping[str, Any]], T]
) -> T:
    """Parse the first ``metrics`` attribute with ``parser``.

    If there is no such attribute, ``parser`` is called with empty arguments,
    which yields the default configuration.
    """
    if raw_attrs is None:
        items: Iterable[Tuple[str, Mapping[str, Any]]] = ()
    elif isinstance(raw_attrs, Mapping):
        items = raw_attrs.items()
    else:
        items = raw_attrs

    for path, args in items:
        if path == _METRICS_PATH:
            return parser(args if args is not None else {})
    return parser({})


def ensure_no_generics(generics: Optional[Iterable[Any]], derived_macro: str) -> None:
    """Raise ``DefinitionError`` if any generic parameters are present."""
    if generics and any(True for _ in generics):
        raise DefinitionError(
            f"Generics are not supported for `derive({derived_macro})` macro"
        )
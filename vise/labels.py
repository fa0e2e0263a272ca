"""Definitions of label values and label sets."""

from __future__ import annotations

import enum
import re
import string
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from vise.attributes import (
    AttributeError_,
    DefinitionError,
    RawAttrs,
    ensure_no_generics,
    metrics_attribute,
)
from vise.descriptors import Unit

_TO_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)
_TO_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)

_INVALID_CASE = (
    "Invalid case specified; should be one of: lowercase, UPPERCASE, camelCase, "
    "snake_case, SCREAMING_SNAKE_CASE, kebab-case, SCREAMING-KEBAB-CASE"
)

_LABEL_NAME = re.compile(r"[a-z_][a-z0-9_]*", re.ASCII)


class RenameRule(enum.Enum):
    """Case conversion applied to enum variant names to get label values."""

    LOWER_CASE = "lowercase"
    UPPER_CASE = "UPPERCASE"
    CAMEL_CASE = "camelCase"
    SNAKE_CASE = "snake_case"
    SCREAMING_SNAKE_CASE = "SCREAMING_SNAKE_CASE"
    KEBAB_CASE = "kebab-case"
    SCREAMING_KEBAB_CASE = "SCREAMING-KEBAB-CASE"

    @classmethod
    def parse(cls, value: str) -> RenameRule:
        """Parse a rule from its name, e.g. ``"snake_case"``."""
        try:
            return cls(value)
        except ValueError:
            raise AttributeError_(_INVALID_CASE) from None

    def transform(self, ident: str) -> str:
        """Convert a CamelCase identifier according to this rule."""
        if self is RenameRule.LOWER_CASE:
            return ident.translate(_TO_LOWER)
        if self is RenameRule.UPPER_CASE:
            return ident.translate(_TO_UPPER)
        if self is RenameRule.CAMEL_CASE:
            return ident[:1].translate(_TO_LOWER) + ident[1:]

        spacing, scream = {
            RenameRule.SNAKE_CASE: ("_", False),
            RenameRule.SCREAMING_SNAKE_CASE: ("_", True),
            RenameRule.KEBAB_CASE: ("-", False),
            RenameRule.SCREAMING_KEBAB_CASE: ("-", True),
        }[self]
        table = _TO_UPPER if scream else _TO_LOWER
        pieces = []
        for index, ch in enumerate(ident):
            if index > 0 and ch in string.ascii_uppercase:
                pieces.append(spacing)
            pieces.append(ch.translate(table))
        return "".join(pieces)


@dataclass(frozen=True)
class LabelAttrs:
    """Type-level ``metrics`` attributes for label values and label sets."""

    rename_all: Optional[RenameRule] = None
    format: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> LabelAttrs:
        """Parse attribute arguments; unknown keys raise ``AttributeError_``."""
        values = {}
        for key, value in raw.items():
            if key == "rename_all":
                values["rename_all"] = RenameRule.parse(value)
            elif key in ("format", "label"):
                values[key] = value
            else:
                raise AttributeError_(
                    "Unsupported attribute; only `rename_all`, `format` and `label` "
                    "are supported"
                )
        return cls(**values)


@dataclass(frozen=True)
class _VariantAttrs:
    name: Optional[str] = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> _VariantAttrs:
        values = {}
        for key, value in raw.items():
            if key == "name":
                values["name"] = value
            else:
                raise AttributeError_("Unsupported attribute; only `name` is supported")
        return cls(**values)


@dataclass(frozen=True)
class _LabelFieldAttrs:
    skip: Optional[Callable[[Any], bool]] = None
    unit: Optional[Unit] = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> _LabelFieldAttrs:
        values = {}
        for key, value in raw.items():
            if key in ("skip", "unit"):
                values[key] = value
            else:
                raise AttributeError_("unsupported attribute")
        return cls(**values)


@dataclass(frozen=True)
class EnumVariant:
    """Enum variant together with the label value it is encoded as."""

    ident: str
    label_value: str


def _label_value_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _assert_label_name(name: str) -> None:
    if not _LABEL_NAME.fullmatch(name):
        raise DefinitionError(
            f"Label name `{name}` is invalid; it must consist of lowercase ASCII letters, "
            "digits and underscores, and must not start with a digit"
        )


def _parse_label_attrs(
    attrs: Optional[RawAttrs], generics: Any, derived_macro: str
) -> LabelAttrs:
    ensure_no_generics(generics, derived_macro)
    label_attrs = metrics_attribute(attrs, LabelAttrs.parse)
    if label_attrs.format is not None and label_attrs.rename_all is not None:
        raise DefinitionError(
            "`rename_all` and `format` attributes cannot be specified together"
        )
    return label_attrs


def _normalize_variant(spec: Any) -> Tuple[str, Optional[RawAttrs], bool]:
    if isinstance(spec, enum.Enum):
        return spec.name, None, False
    if isinstance(spec, str):
        return spec, None, False
    ident, *rest = spec
    raw_attrs = rest[0] if rest else None
    has_fields = bool(rest[1]) if len(rest) > 1 else False
    return ident, raw_attrs, has_fields


def _extract_enum_variants(
    variants: Optional[Iterable[Any]], case: RenameRule
) -> Tuple[EnumVariant, ...]:
    if variants is None:
        raise DefinitionError("`rename_all` attribute can only be placed on enums")

    seen = set()
    result: List[EnumVariant] = []
    for spec in variants:
        ident, raw_attrs, has_fields = _normalize_variant(spec)
        if has_fields:
            raise DefinitionError(
                "To use `rename_all` attribute, all enum variants must be plain "
                "(have no fields)"
            )
        if not ident.isascii():
            raise DefinitionError("Variant name must consist of ASCII chars")
        variant_attrs = metrics_attribute(raw_attrs, _VariantAttrs.parse)
        label_value = (
            variant_attrs.name if variant_attrs.name is not None else case.transform(ident)
        )
        if label_value in seen:
            raise DefinitionError(f"Label value `{label_value}` is redefined")
        seen.add(label_value)
        result.append(EnumVariant(ident=ident, label_value=label_value))
    return tuple(result)


@dataclass(frozen=True)
class EncodeLabelValue:
    """Encoding of values of a type as label values.

    With ``rename_all``, the type is an enum whose variants map to renamed
    labels; otherwise values are rendered with ``format`` (a ``str.format``
    template, ``"{}"`` by default).
    """

    name: str
    attrs: LabelAttrs
    enum_variants: Optional[Tuple[EnumVariant, ...]] = None

    @classmethod
    def new(
        cls,
        name: str,
        attrs: Optional[RawAttrs] = None,
        variants: Optional[Iterable[Any]] = None,
        generics: Any = (),
    ) -> EncodeLabelValue:
        """Build the encoding for type ``name``.

        ``variants`` is ``None`` for non-enum types; otherwise it holds enum
        members, variant names, or ``(name, raw_attrs[, has_fields])`` tuples.
        """
        label_attrs = _parse_label_attrs(attrs, generics, "EncodeLabelValue")
        enum_variants = None
        if label_attrs.rename_all is not None:
            enum_variants = _extract_enum_variants(variants, label_attrs.rename_all)
        return cls(name=name, attrs=label_attrs, enum_variants=enum_variants)

    def encode(self, value: Any) -> str:
        """Return the label value for ``value``."""
        if self.enum_variants is not None:
            ident = value.name if isinstance(value, enum.Enum) else value
            match = next((v for v in self.enum_variants if v.ident == ident), None)
            if match is None:
                raise ValueError(f"`{ident}` is not a variant of `{self.name}`")
            return match.label_value
        template = self.attrs.format if self.attrs.format is not None else "{}"
        return template.format(value)


@dataclass(frozen=True)
class LabelField:
    """Named field of a label set encoded as a single label."""

    name: str
    is_option: bool = False
    skip: Optional[Callable[[Any], bool]] = None
    unit: Optional[Unit] = None

    @classmethod
    def parse(
        cls, name: Optional[str], attrs: Optional[RawAttrs] = None, is_option: bool = False
    ) -> LabelField:
        """Build a field from its name, raw attributes and optionality."""
        if not name:
            raise DefinitionError("Encoded fields must be named")
        field_attrs = metrics_attribute(attrs, _LabelFieldAttrs.parse)
        return cls(
            name=name, is_option=is_option, skip=field_attrs.skip, unit=field_attrs.unit
        )

    def label(self) -> str:
        """Label name, with a leading ``r#`` stripped."""
        return self.name[2:] if self.name.startswith("r#") else self.name

    def _key(self) -> str:
        label = self.label()
        return f"{label}_{self.unit.value}" if self.unit is not None else label

    def encode(self, obj: Any) -> Optional[Tuple[str, str]]:
        """Return ``(key, value)`` for this field of ``obj``, or ``None`` if skipped.

        Optional fields are skipped when ``None`` unless a ``skip`` predicate is set.
        """
        attr = self.label()
        value = obj[attr] if isinstance(obj, Mapping) else getattr(obj, attr)
        skip = self.skip
        if skip is None and self.is_option:
            skip = _is_none
        if skip is not None and skip(value):
            return None
        return self._key(), _label_value_str(value)


def _is_none(value: Any) -> bool:
    return value is None


def _to_field(spec: Any) -> LabelField:
    if isinstance(spec, LabelField):
        return spec
    if isinstance(spec, str):
        return LabelField.parse(spec)
    return LabelField.parse(*spec)


@dataclass(frozen=True)
class EncodeLabelSet:
    """Encoding of objects as a set of labels.

    With the ``label`` attribute, the whole object is a single label value;
    otherwise each field is a label.
    """

    name: str
    attrs: LabelAttrs
    fields: Optional[Tuple[LabelField, ...]] = None

    @classmethod
    def new(
        cls,
        name: str,
        attrs: Optional[RawAttrs] = None,
        fields: Optional[Iterable[Any]] = None,
        generics: Any = (),
    ) -> EncodeLabelSet:
        """Build the encoding for type ``name``.

        ``fields`` is ``None`` for non-struct types; otherwise it holds
        ``LabelField``s, field names, or ``(name, raw_attrs[, is_option])`` tuples.
        """
        label_attrs = _parse_label_attrs(attrs, generics, "EncodeLabelSet")
        if label_attrs.label is not None:
            _assert_label_name(label_attrs.label)
            return cls(name=name, attrs=label_attrs, fields=None)

        if fields is None:
            raise DefinitionError(
                "Non-singleton `EncodeLabelSet` can only be derived on structs"
            )
        parsed = tuple(_to_field(spec) for spec in fields)
        for field in parsed:
            _assert_label_name(field.label())
        return cls(name=name, attrs=label_attrs, fields=parsed)

    def encode(self, obj: Any) -> List[Tuple[str, str]]:
        """Return the ``(key, value)`` label pairs for ``obj`` in field order."""
        if self.attrs.label is not None:
            return [(self.attrs.label, _label_value_str(obj))]
        pairs = (field.encode(obj) for field in self.fields or ())
        return [pair for pair in pairs if pair is not None]
import enum
from types import SimpleNamespace

import pytest

from vise.attributes import AttributeError_, DefinitionError
from vise.descriptors import Unit
from vise.labels import (
    EncodeLabelSet,
    EncodeLabelValue,
    EnumVariant,
    LabelAttrs,
    LabelField,
    RenameRule,
)


@pytest.mark.parametrize(
    "rule, expected",
    [
        (RenameRule.LOWER_CASE, "testident"),
        (RenameRule.UPPER_CASE, "TESTIDENT"),
        (RenameRule.CAMEL_CASE, "testIdent"),
        (RenameRule.SNAKE_CASE, "test_ident"),
        (RenameRule.SCREAMING_SNAKE_CASE, "TEST_IDENT"),
        (RenameRule.KEBAB_CASE, "test-ident"),
        (RenameRule.SCREAMING_KEBAB_CASE, "TEST-IDENT"),
    ],
)
def test_renaming_rules(rule, expected):
    assert rule.transform("TestIdent") == expected


def test_rename_rule_parse():
    assert RenameRule.parse("snake_case") is RenameRule.SNAKE_CASE
    assert RenameRule.parse("SCREAMING-KEBAB-CASE") is RenameRule.SCREAMING_KEBAB_CASE
    with pytest.raises(AttributeError_, match="Invalid case specified"):
        RenameRule.parse("what")


def test_encoding_label_set():
    label_set = EncodeLabelSet.new(
        "TestLabels",
        fields=[
            ("r#type", None),
            ("kind", {"metrics": {"skip": lambda value: not value}}),
        ],
    )
    fields = label_set.fields
    assert len(fields) == 2
    assert fields[0].label() == "type"
    assert fields[1].label() == "kind"
    assert fields[1].skip is not None and fields[0].skip is None


def test_label_value_redefinition_error():
    with pytest.raises(DefinitionError) as info:
        EncodeLabelValue.new(
            "Label",
            attrs={"metrics": {"rename_all": "snake_case"}},
            variants=["First", ("Second", {"metrics": {"name": "first"}})],
        )
    assert "Label value `first` is redefined" in str(info.value)


def test_duplicate_label_value():
    with pytest.raises(DefinitionError, match="Label value `test` is redefined"):
        EncodeLabelValue.new(
            "Label",
            attrs={"metrics": {"rename_all": "snake_case"}},
            variants=["Test", ("Other", {"metrics": {"name": "test"}})],
        )


def test_non_ascii_variant():
    with pytest.raises(DefinitionError, match="ASCII"):
        EncodeLabelValue.new(
            "Label", attrs={"metrics": {"rename_all": "snake_case"}}, variants=["Хорошо"]
        )


def test_rename_all_with_complex_fields():
    with pytest.raises(DefinitionError, match="must be plain"):
        EncodeLabelValue.new(
            "Label",
            attrs={"metrics": {"rename_all": "snake_case"}},
            variants=["Test", ("Value", None, True)],
        )


def test_rename_and_format_clash():
    with pytest.raises(DefinitionError, match="cannot be specified together"):
        EncodeLabelValue.new(
            "Label",
            attrs={"metrics": {"rename_all": "snake_case", "format": "{!r}"}},
            variants=["Test", "Value"],
        )


def test_unsupported_rename_rule():
    with pytest.raises(AttributeError_, match="Invalid case specified"):
        EncodeLabelValue.new(
            "Label", attrs={"metrics": {"rename_all": "what"}}, variants=["Test"]
        )


def test_unsupported_variant_attr():
    with pytest.raises(AttributeError_, match="only `name` is supported"):
        EncodeLabelValue.new(
            "Label",
            attrs={"metrics": {"rename_all": "snake_case"}},
            variants=["Test", ("Other", {"metrics": {"rename": "_"}})],
        )


def test_unsupported_attribute_for_set():
    with pytest.raises(AttributeError_, match="Unsupported attribute"):
        EncodeLabelSet.new("LabelSet", attrs={"metrics": {"what": 42}}, fields=["method"])


def test_unsupported_containers():
    with pytest.raises(DefinitionError, match="can only be derived on structs"):
        EncodeLabelSet.new("Unsupported", fields=None)
    with pytest.raises(DefinitionError, match="can only be placed on enums"):
        EncodeLabelValue.new(
            "UnsupportedForValue", attrs={"metrics": {"rename_all": "snake_case"}}
        )
    with pytest.raises(DefinitionError, match="must be named"):
        EncodeLabelSet.new("UnsupportedToo", fields=[(None, None)])


@pytest.mark.parametrize("generics", [["'a"], ["const N: usize"], ["T"]])
def test_unsupported_generics(generics):
    with pytest.raises(DefinitionError, match=r"derive\(EncodeLabelValue\)"):
        EncodeLabelValue.new("Unsupported", generics=generics)
    with pytest.raises(DefinitionError, match=r"derive\(EncodeLabelSet\)"):
        EncodeLabelSet.new("Unsupported", fields=["label"], generics=generics)


@pytest.mark.parametrize("field_name", ["код", "what?"])
def test_bogus_label_name_in_field(field_name):
    with pytest.raises(DefinitionError, match="Label name"):
        EncodeLabelSet.new("Labels", fields=["test", field_name])


def test_bogus_label_name_in_attr():
    with pytest.raises(DefinitionError, match="Label name"):
        EncodeLabelSet.new("Label", attrs={"metrics": {"label": "what?"}})


def test_label_attrs_parse():
    attrs = LabelAttrs.parse({"rename_all": "kebab-case", "label": "stage"})
    assert attrs.rename_all is RenameRule.KEBAB_CASE
    assert attrs.label == "stage"
    assert attrs.format is None
    assert LabelAttrs.parse({}) == LabelAttrs()


class _Stage(enum.Enum):
    ReadInput = 1
    WriteOutput = 2


def test_encode_enum_variants():
    value = EncodeLabelValue.new(
        "Stage", attrs={"metrics": {"rename_all": "snake_case"}}, variants=_Stage
    )
    assert value.enum_variants == (
        EnumVariant("ReadInput", "read_input"),
        EnumVariant("WriteOutput", "write_output"),
    )
    assert value.encode(_Stage.ReadInput) == "read_input"
    assert value.encode("WriteOutput") == "write_output"
    with pytest.raises(ValueError):
        value.encode("Missing")


def test_encode_with_format():
    plain = EncodeLabelValue.new("Code")
    assert plain.encode(404) == "404"
    quoted = EncodeLabelValue.new("Name", attrs={"metrics": {"format": "{!r}"}})
    assert quoted.encode("call") == "'call'"


def test_encode_label_set_fields():
    label_set = EncodeLabelSet.new(
        "Labels",
        fields=[
            ("r#type", None),
            ("kind", {"metrics": {"skip": lambda value: not value}}),
            ("shard", None, True),
        ],
    )
    obj = SimpleNamespace(type="call", kind="", shard=None)
    assert label_set.encode(obj) == [("type", "call")]
    obj = SimpleNamespace(type="call", kind="fast", shard=3)
    assert label_set.encode(obj) == [("type", "call"), ("kind", "fast"), ("shard", "3")]
    assert label_set.encode({"type": "x", "kind": "y", "shard": None}) == [
        ("type", "x"),
        ("kind", "y"),
    ]


def test_encode_label_set_singleton():
    label_set = EncodeLabelSet.new("Facade", attrs={"metrics": {"label": "facade"}})
    assert label_set.fields is None
    assert label_set.encode("vise") == [("facade", "vise")]


def test_label_field_with_unit_and_bool():
    field = LabelField.parse("timeout", {"metrics": {"unit": Unit.SECONDS}})
    assert field.label() == "timeout"
    assert field.encode({"timeout": 5}) == ("timeout_seconds", "5")
    flag = LabelField.parse("enabled")
    assert flag.encode({"enabled": True}) == ("enabled", "true")
    with pytest.raises(AttributeError_, match="unsupported attribute"):
        LabelField.parse("x", {"metrics": {"what": 1}})
"""Tests for nested parameter flattening."""

from cloudfusion.utils.complextype import ComplexType


def test_map_uses_one_based_indexes():
    data = {"Attribute": [{"Name": "color", "Value": "red"}, {"Name": "size"}]}
    assert ComplexType.map(data) == {
        "Attribute.1.Name": "color",
        "Attribute.1.Value": "red",
        "Attribute.2.Name": "size",
    }


def test_default_key_prefixes_every_entry():
    assert ComplexType.map(["a", "b"], "InstanceId") == {
        "InstanceId.1": "a",
        "InstanceId.2": "b",
    }


def test_scalar_with_default_key():
    assert ComplexType.map("i-123", "InstanceId") == {"InstanceId": "i-123"}


def test_json_and_yaml_agree():
    from_json = ComplexType.json('{"Tag": [{"Key": "env", "Value": "prod"}]}')
    from_yaml = ComplexType.yaml("Tag:\n  - Key: env\n    Value: prod\n")
    assert from_json == from_yaml == {"Tag.1.Key": "env", "Tag.1.Value": "prod"}


def test_sibling_keys_do_not_leak_prefixes():
    data = {"A": {"B": 1}, "C": 2}
    assert ComplexType.map(data) == {"A.B": 1, "C": 2}

"""Tests for schema/validators.py."""

from otcprovider.diagnostics.models import Severity
from otcprovider.schema.validators import (
    int_at_least,
    int_between,
    string_in_slice,
    string_len_between,
    string_match,
    validate_email,
    validate_json_string,
    validate_name,
    validate_stack_template,
)


def test_string_len_between():
    check = string_len_between(1, 3)
    assert check("ab") == []
    assert check("abcd")[0].summary == "Invalid length"


def test_string_in_slice():
    check = string_in_slice(["backup", "replication"])
    assert check("backup") == []
    assert check("Backup")
    assert string_in_slice(["backup"], ignore_case=True)("BACKUP") == []


def test_int_ranges():
    assert int_between(0, 10)(10) == []
    assert int_between(0, 10)(11)
    assert int_at_least(1)(0)


def test_string_match_custom_message():
    diags = string_match(r"^\d+$", "digits only")("12a")
    assert diags[0].detail == "digits only"


def test_validate_name():
    check = validate_name(8)
    assert check("stack_01") == []
    assert check("bad name")
    assert check("x" * 9)


def test_validate_email():
    assert validate_email("") == []
    assert validate_email("user@example.com") == []
    assert validate_email("not-an-email")


def test_validate_json_string():
    assert validate_json_string('{"a": 1}') == []
    assert validate_json_string("{nope")[0].summary == "Invalid JSON"


class TestValidateStackTemplate:
    def test_yaml_with_version(self):
        assert validate_stack_template("heat_template_version: 2016-04-08\nresources: {}\n") == []

    def test_missing_version_warns(self):
        diags = validate_stack_template('{"resources": {}}')
        assert diags[0].severity is Severity.WARNING

    def test_not_a_mapping(self):
        assert validate_stack_template("- a\n- b\n")[0].summary == "Invalid template"

    def test_invalid_yaml(self):
        assert validate_stack_template("a: [unclosed")[0].summary == "Invalid template"

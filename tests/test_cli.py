"""Tests for the otcprovider introspection CLI."""

import json

import pytest
from otcprovider import cli
from otcprovider.core.errors import ExitCode


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from replacing the test logging configuration."""
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


class TestResourcesCommand:
    def test_lists_types_with_timeouts(self, capsys):
        assert cli.main(["resources"]) == ExitCode.SUCCESS

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 7
        rts = [line for line in lines if line.startswith("opentelekomcloud_rts_stack_v1\t")]
        assert rts == ["opentelekomcloud_rts_stack_v1\tcreate=30m update=30m delete=30m"]

    def test_timeout_format(self):
        assert cli._format_timeout(600) == "10m"
        assert cli._format_timeout(90) == "1m30s"
        assert cli._format_timeout(None) == "-"


class TestSchemaCommand:
    def test_json(self, capsys):
        assert cli.main(["schema", "opentelekomcloud_cbr_vault_v3", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["name"] == "opentelekomcloud_cbr_vault_v3"
        assert data["importable"] is True
        assert data["reconcilers"] == ["resources", "backup_policy", "tags"]
        assert data["fields"]["billing"]["block"]["object_type"]["force_new"] is True

    def test_table_includes_nested_fields(self, capsys):
        assert cli.main(["schema", "opentelekomcloud_cbr_vault_v3"]) == 0
        assert "billing.0.object_type" in capsys.readouterr().out

    def test_unknown_type(self, capsys):
        assert cli.main(["schema", "opentelekomcloud_nope"]) == ExitCode.CONFIG_ERROR
        assert "Unknown resource type: opentelekomcloud_nope" in capsys.readouterr().err


class TestParseIdCommand:
    def test_composite_id(self, capsys):
        code = cli.main(
            ["parse-id", "opentelekomcloud_waf_dedicated_precise_protection_rule_v1", "pol-1/rule-1"]
        )
        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"policy_id": "pol-1", "id": "rule-1"}

    def test_bad_id(self, capsys):
        code = cli.main(["parse-id", "opentelekomcloud_waf_dedicated_precise_protection_rule_v1", "rule-1"])
        assert code == ExitCode.VALIDATION_ERROR
        assert "expected format <policy_id>/<id>" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage: otcprovider" in capsys.readouterr().out


def test_schema_rows_flags():
    billing = cli.default_registry().get("opentelekomcloud_cbr_vault_v3").fields()["billing"]
    rows = {path: flags for path, _, flags in cli._schema_rows({"billing": billing})}
    assert rows["billing"] == "required"
    assert rows["billing.0.object_type"] == "required,force_new"

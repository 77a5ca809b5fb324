"""Unit tests for the CLI: command registration and end-to-end local verbs."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from kubemft import __version__
from kubemft.cli.app import app

runner = CliRunner()

SAMPLE = b"apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: demo\n"


@pytest.fixture
def manifest_file(make_file):
    return make_file(SAMPLE, name="cm.yaml")


class TestCliApp:
    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in (
            "pack", "dump", "list", "delete", "push", "pull", "sign", "verify", "key", "schema",
        ):
            assert command in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.parametrize("command", ["pack", "cp", "apply", "gc", "path"])
    def test_subcommand_help(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


class TestLocalCommands:
    def test_pack_skip_sign_then_dump(self, env_settings, manifest_file):
        result = runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])
        assert result.exit_code == 0, result.output
        assert "Packed" in result.output

        dumped = runner.invoke(app, ["dump", "app:v1"])
        assert dumped.exit_code == 0
        assert dumped.stdout_bytes == SAMPLE

    def test_pack_without_key_fails(self, env_settings, manifest_file):
        result = runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file)])
        assert result.exit_code == 1
        assert "pack failed" in result.output
        assert not (env_settings.storage_dir / "local" / "app").exists()

    def test_pack_sign_verify(self, env_settings, manifest_file):
        assert runner.invoke(app, ["key", "generate"]).exit_code == 0
        packed = runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file)])
        assert packed.exit_code == 0, packed.output
        assert "Signed" in packed.output

        verified = runner.invoke(app, ["verify", "app:v1"])
        assert verified.exit_code == 0, verified.output
        assert "Verified" in verified.output

    def test_dump_missing(self, env_settings):
        result = runner.invoke(app, ["dump", "app:missing"])
        assert result.exit_code == 1
        assert "dump failed" in result.output

    def test_invalid_reference(self, env_settings):
        result = runner.invoke(app, ["dump", "Bad Name:v1"])
        assert result.exit_code == 2
        assert "Invalid reference" in result.output

    def test_path(self, env_settings, manifest_file):
        runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])
        result = runner.invoke(app, ["path", "app:v1"])
        assert result.exit_code == 0
        path = result.stdout.strip()
        assert path.startswith(str(env_settings.storage_dir))
        with open(path, "rb") as fh:
            assert fh.read() == SAMPLE

    def test_list_json(self, env_settings, manifest_file):
        runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])
        runner.invoke(app, ["pack", "app:v2", "-f", str(manifest_file), "--skip-sign"])
        result = runner.invoke(app, ["list", "-o", "json"])
        assert result.exit_code == 0
        entries = json.loads(result.stdout)
        assert [(e["repository"], e["tag"]) for e in entries] == [("app", "v1"), ("app", "v2")]
        assert entries[0]["size"] == f"{len(SAMPLE)}B"

    def test_list_table_empty(self, env_settings):
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No artifacts stored" in result.output

    def test_list_bad_format(self, env_settings):
        result = runner.invoke(app, ["list", "-o", "yaml"])
        assert result.exit_code == 2

    def test_delete_confirm_and_force(self, env_settings, manifest_file):
        runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])

        declined = runner.invoke(app, ["delete", "app:v1"], input="n\n")
        assert declined.exit_code == 0
        assert runner.invoke(app, ["dump", "app:v1"]).exit_code == 0

        deleted = runner.invoke(app, ["delete", "app:v1", "--force"])
        assert deleted.exit_code == 0
        assert "Deleted" in deleted.output
        assert runner.invoke(app, ["dump", "app:v1"]).exit_code == 1

        again = runner.invoke(app, ["delete", "app:v1", "--force"])
        assert again.exit_code == 0
        assert "Nothing to delete" in again.output

    def test_cp(self, env_settings, manifest_file):
        runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])
        result = runner.invoke(app, ["cp", "app:v1", "registry.test/team/app:v1"])
        assert result.exit_code == 0, result.output
        dumped = runner.invoke(app, ["dump", "registry.test/team/app:v1"])
        assert dumped.stdout_bytes == SAMPLE

        conflict = runner.invoke(app, ["cp", "app:v1", "registry.test/team/app:v1"])
        assert conflict.exit_code == 1

    def test_push_local_reference_rejected(self, env_settings, manifest_file):
        runner.invoke(app, ["pack", "app:v1", "-f", str(manifest_file), "--skip-sign"])
        result = runner.invoke(app, ["push", "app:v1"])
        assert result.exit_code == 2
        assert "local sandbox" in result.output


class TestKeyCommands:
    def test_generate_list_export(self, env_settings):
        assert runner.invoke(app, ["key", "generate", "--name", "ci"]).exit_code == 0

        listed = runner.invoke(app, ["key", "list"])
        assert listed.exit_code == 0
        assert "ci" in listed.output

        exported = runner.invoke(app, ["key", "export", "--name", "ci"])
        assert exported.exit_code == 0
        assert exported.stdout_bytes.startswith(b"-----BEGIN PUBLIC KEY-----")

    def test_generate_twice_conflicts(self, env_settings):
        assert runner.invoke(app, ["key", "generate"]).exit_code == 0
        result = runner.invoke(app, ["key", "generate"])
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert runner.invoke(app, ["key", "generate", "--force"]).exit_code == 0

    def test_import_and_delete(self, env_settings, tmp_dir):
        runner.invoke(app, ["key", "generate"])
        exported = tmp_dir / "colleague.pub"
        assert runner.invoke(app, ["key", "export", "-o", str(exported)]).exit_code == 0

        imported = runner.invoke(app, ["key", "import", str(exported)])
        assert imported.exit_code == 0
        assert (env_settings.key_dir / "colleague.pub").exists()

        deleted = runner.invoke(app, ["key", "delete", "colleague"])
        assert deleted.exit_code == 0
        assert not (env_settings.key_dir / "colleague.pub").exists()

    def test_delete_missing_key(self, env_settings):
        result = runner.invoke(app, ["key", "delete", "ghost"])
        assert result.exit_code == 1


BAD_WIDGET = b"apiVersion: example.com/v1\nkind: Widget\nmetadata:\n  name: w\nspec:\n  size: big\n"


class TestSchemaCommands:
    def test_add_list_delete(self, env_settings, crd_file):
        added = runner.invoke(app, ["schema", "add", "-f", str(crd_file)])
        assert added.exit_code == 0, added.output
        assert "Registered" in added.output

        listed = runner.invoke(app, ["schema", "list", "-o", "json"])
        assert listed.exit_code == 0
        assert [(s["kind"], s["version"]) for s in json.loads(listed.stdout)] == [
            ("Widget", "v1"),
            ("Widget", "v1beta1"),
        ]

        deleted = runner.invoke(app, ["schema", "delete", "example.com/Widget"])
        assert deleted.exit_code == 0
        assert "Deleted" in deleted.output
        empty = runner.invoke(app, ["schema", "list"])
        assert "No schemas registered" in empty.output

    def test_add_rejects_non_crd(self, env_settings, manifest_file):
        result = runner.invoke(app, ["schema", "add", "-f", str(manifest_file)])
        assert result.exit_code == 1
        assert "schema add failed" in result.output

    def test_delete_bad_format(self, env_settings):
        result = runner.invoke(app, ["schema", "delete", "Widget"])
        assert result.exit_code == 2

    def test_delete_missing(self, env_settings):
        result = runner.invoke(app, ["schema", "delete", "example.com/Widget"])
        assert result.exit_code == 1

    def test_pack_validates_against_registered_schema(self, env_settings, crd_file, make_file):
        assert runner.invoke(app, ["schema", "add", "-f", str(crd_file)]).exit_code == 0
        bad = make_file(BAD_WIDGET, name="widget.yaml")

        rejected = runner.invoke(app, ["pack", "widget:v1", "-f", str(bad), "--skip-sign"])
        assert rejected.exit_code == 1
        assert "pack failed" in rejected.output
        assert not (env_settings.storage_dir / "local" / "widget").exists()

        skipped = runner.invoke(
            app, ["pack", "widget:v1", "-f", str(bad), "--skip-sign", "--skip-validation"]
        )
        assert skipped.exit_code == 0, skipped.output

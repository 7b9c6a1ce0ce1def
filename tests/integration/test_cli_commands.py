"""Integration tests for CLI commands."""

import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from null_space.cli.main import app


runner = CliRunner()


def invoke(*args):
    return runner.invoke(app, list(args))


def add_note(vault="V1", title="hello", content="world", tags=("a/b",), password="pw1"):
    args = ["note", "add", vault, "--title", title, "--content", content, "--password", password]
    for tag in tags:
        args += ["--tag", tag]
    result = invoke(*args)
    assert result.exit_code == 0, result.output
    return re.search(r"Note ID: (\S+)", result.stdout).group(1)


@pytest.fixture
def vault_v1(cli_env: Path) -> Path:
    """A vault named V1 with password pw1."""
    result = invoke("vault", "create", "V1", "--description", "first", "--password", "pw1")
    assert result.exit_code == 0, result.output
    return cli_env


class TestVersionCommand:
    def test_version(self, cli_env):
        result = invoke("version")

        assert result.exit_code == 0
        assert "null-space v0.1.0" in result.stdout


class TestVaultCommands:
    """Tests for vault create/list/rename/delete."""

    def test_create_and_list(self, vault_v1):
        result = invoke("vault", "list")

        assert result.exit_code == 0
        assert "V1" in result.stdout
        assert "first" in result.stdout
        assert (vault_v1 / "vaults" / "vaults_list.json").exists()

    def test_list_empty(self, cli_env):
        result = invoke("vault", "list")

        assert result.exit_code == 0
        assert "No vaults yet" in result.stdout

    def test_create_blank_name(self, cli_env):
        result = invoke("vault", "create", " ", "--password", "pw")

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_rename(self, vault_v1):
        result = invoke("vault", "rename", "V1", "Renamed")

        assert result.exit_code == 0
        listing = invoke("vault", "list").stdout
        assert "Renamed" in listing

    def test_delete(self, vault_v1):
        result = invoke("vault", "delete", "V1", "--yes")

        assert result.exit_code == 0
        assert "No vaults yet" in invoke("vault", "list").stdout

    def test_delete_cancelled(self, vault_v1):
        result = runner.invoke(app, ["vault", "delete", "V1"], input="n\n")

        assert result.exit_code == 0
        assert "V1" in invoke("vault", "list").stdout

    def test_delete_prompts_outside_event_loop(self, vault_v1, monkeypatch):
        """The confirmation prompt runs before any event loop starts."""
        import asyncio

        import typer

        prompts = []

        def confirm(text, *args, **kwargs):
            with pytest.raises(RuntimeError):
                asyncio.get_running_loop()
            prompts.append(text)
            return True

        monkeypatch.setattr(typer, "confirm", confirm)

        result = invoke("vault", "delete", "V1")

        assert result.exit_code == 0
        assert prompts == ["Delete vault 'V1' and all of its notes?"]
        assert "No vaults yet" in invoke("vault", "list").stdout

    def test_unknown_vault(self, cli_env):
        result = invoke("vault", "delete", "nope", "--yes")

        assert result.exit_code == 1
        assert "No vault matches" in result.stdout


class TestNoteCommands:
    """Tests for note add/list/show/edit/delete."""

    def test_add_and_show(self, vault_v1):
        note_id = add_note()

        result = invoke("note", "show", "V1", note_id, "--password", "pw1")

        assert result.exit_code == 0
        assert "hello" in result.stdout
        assert "world" in result.stdout
        assert "a/b" in result.stdout

    def test_wrong_password(self, vault_v1):
        result = invoke("note", "add", "V1", "--title", "t", "--password", "wrong")

        assert result.exit_code == 1
        assert "Wrong password" in result.stdout

    def test_password_prompt(self, vault_v1):
        result = runner.invoke(app, ["note", "add", "V1", "--title", "prompted"], input="pw1\n")

        assert result.exit_code == 0
        assert "Added note 'prompted'" in result.stdout

    def test_add_from_file(self, vault_v1, tmp_path):
        body = tmp_path / "body.md"
        body.write_text("# Heading\n\nFrom a file", encoding="utf-8")

        result = invoke("note", "add", "V1", "--title", "filed", "--file", str(body), "--password", "pw1")
        note_id = re.search(r"Note ID: (\S+)", result.stdout).group(1)

        shown = invoke("note", "show", "V1", note_id, "--password", "pw1")
        assert "From a file" in shown.stdout

    def test_list_with_tag_filter(self, vault_v1):
        add_note(title="Work item", tags=("work/project",))
        add_note(title="Home item", tags=("home",))

        result = invoke("note", "list", "V1", "--tag", "work", "--password", "pw1")

        assert result.exit_code == 0
        assert "Work item" in result.stdout
        assert "Home item" not in result.stdout

    def test_edit(self, vault_v1):
        note_id = add_note()

        result = invoke("note", "edit", "V1", note_id, "--content", "changed", "--password", "pw1")

        assert result.exit_code == 0
        assert "version 2" in result.stdout
        shown = invoke("note", "show", "V1", note_id, "--password", "pw1")
        assert "changed" in shown.stdout

    def test_edit_clear_tags(self, vault_v1):
        note_id = add_note(tags=("work/project", "home"))

        result = invoke("note", "edit", "V1", note_id, "--clear-tags", "--password", "pw1")

        assert result.exit_code == 0
        shown = invoke("note", "show", "V1", note_id, "--password", "pw1")
        assert "Tags:" not in shown.stdout
        assert "version 2" in result.stdout

    def test_edit_replace_tags(self, vault_v1):
        note_id = add_note(tags=("work/project",))

        invoke("note", "edit", "V1", note_id, "--tag", "home", "--password", "pw1")

        shown = invoke("note", "show", "V1", note_id, "--password", "pw1")
        assert "Tags: home" in shown.stdout
        assert "work/project" not in shown.stdout

    def test_show_missing(self, vault_v1):
        result = invoke("note", "show", "V1", "missing", "--password", "pw1")

        assert result.exit_code == 1
        assert "not found" in result.stdout.lower()

    def test_delete(self, vault_v1):
        note_id = add_note()

        result = invoke("note", "delete", "V1", note_id)

        assert result.exit_code == 0
        assert "No notes" in invoke("note", "list", "V1", "--password", "pw1").stdout


class TestSearchCommands:
    """Tests for search and reindex."""

    def test_search(self, vault_v1):
        add_note(title="Groceries", content="milk and eggs")
        add_note(title="Travel", content="train tickets")

        result = invoke("search", "V1", "eggs")

        assert result.exit_code == 0
        assert "Groceries" in result.stdout
        assert "Travel" not in result.stdout

    def test_search_no_matches(self, vault_v1):
        add_note()

        result = invoke("search", "V1", "zebra")

        assert result.exit_code == 0
        assert "No matches" in result.stdout

    def test_reindex(self, vault_v1):
        add_note(title="one")
        add_note(title="two")

        result = invoke("reindex", "V1", "--password", "pw1")

        assert result.exit_code == 0
        assert "Indexed 2 notes" in result.stdout


class TestArchiveCommands:
    """Tests for export and import."""

    def test_export_import_roundtrip(self, vault_v1, tmp_path):
        add_note()
        archive = tmp_path / "v1.zip"

        exported = invoke("export", "V1", str(archive), "--password", "pw1")
        assert exported.exit_code == 0, exported.output
        assert archive.exists()

        imported = invoke("import", str(archive), "--password", "pw1")
        assert imported.exit_code == 0, imported.output
        assert "V1 (imported)" in imported.stdout

        listing = invoke("note", "list", "V1 (imported)", "--password", "pw1")
        assert "hello" in listing.stdout

    def test_import_wrong_password(self, vault_v1, tmp_path):
        archive = tmp_path / "v1.zip"
        invoke("export", "V1", str(archive), "--password", "pw1")

        result = invoke("import", str(archive), "--password", "nope")

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_import_missing_file(self, cli_env, tmp_path):
        result = invoke("import", str(tmp_path / "missing.zip"), "--password", "pw")

        assert result.exit_code == 1
        assert "not found" in result.stdout.lower()

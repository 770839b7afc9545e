"""Tests for the fetchkit command line interface."""
from argparse import Namespace
from pathlib import Path

import pytest

from vault_fetchkit.cli import main as cli
from vault_fetchkit.secrets.domains import preferences
from vault_fetchkit.secrets.workflows import secret_operations


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    fake_home = tmp_path / "home"
    fake_home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: fake_home)
    app_dir = fake_home / ".config" / "vault-fetchkit"
    monkeypatch.setattr(preferences, "PREFERENCES_DIR", app_dir)
    monkeypatch.setattr(preferences, "PREFERENCES_FILE", app_dir / "preferences.json")
    return fake_home


@pytest.fixture
def fake_get_secrets(monkeypatch):
    """Replace get_secrets with a dict lookup and record the calls."""
    store = {"DB_USER": "admin", "DB_PASS": "s3cret"}
    calls = []

    def _get_secrets(names, project_id=None, quiet=False):
        calls.append((list(names), project_id, quiet))
        return {name: store.get(name) for name in dict.fromkeys(names)}

    monkeypatch.setattr(secret_operations, "get_secrets", _get_secrets)
    return calls


def _exit_code(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestTopLevel:
    """Test suite for argument handling in main."""

    def test_version(self, capsys):
        cli.main(["version"])
        assert capsys.readouterr().out.strip() == f"vault-fetchkit {cli.VERSION}"

    def test_no_command_is_usage_error(self, capsys):
        assert _exit_code([]) == 2
        assert "usage" in capsys.readouterr().out.lower()

    def test_group_without_subcommand_prints_group_help(self, capsys):
        assert _exit_code(["secrets"]) == 2
        assert "get" in capsys.readouterr().out

    def test_unexpected_error_exits_1(self, monkeypatch, capsys):
        def boom(names, project_id=None, quiet=False):
            raise RuntimeError("backend exploded")

        monkeypatch.setattr(secret_operations, "get_secrets", boom)

        assert _exit_code(["secrets", "get", "DB_USER"]) == 1
        assert "backend exploded" in capsys.readouterr().err


class TestSecretsGet:
    """Test suite for 'fetchkit secrets get'."""

    def test_prints_each_secret(self, fake_get_secrets, capsys):
        assert _exit_code(["secrets", "get", "DB_USER", "DB_PASS"]) == 0

        out = capsys.readouterr().out.splitlines()
        assert out == ["Secret 'DB_USER': admin", "Secret 'DB_PASS': s3cret"]

    def test_quiet_prints_values_only(self, fake_get_secrets, capsys):
        assert _exit_code(["secrets", "get", "-q", "DB_USER", "DB_PASS"]) == 0

        assert capsys.readouterr().out.splitlines() == ["admin", "s3cret"]
        assert fake_get_secrets[0][2] is True

    def test_project_id_forwarded(self, fake_get_secrets):
        _exit_code(["secrets", "get", "--project-id", "my-proj", "DB_USER"])
        assert fake_get_secrets == [(["DB_USER"], "my-proj", False)]

    def test_missing_secret_exits_1(self, fake_get_secrets, capsys):
        """Found values are still printed; missing names are reported on stderr."""
        assert _exit_code(["secrets", "get", "DB_USER", "NOPE"]) == 1

        captured = capsys.readouterr()
        assert "admin" in captured.out
        assert "Secret 'NOPE' not found" in captured.err

    @pytest.mark.parametrize("bad_name", ["has space", "semi;colon", "a" * 256])
    def test_invalid_name_is_usage_error(self, fake_get_secrets, bad_name, capsys):
        assert _exit_code(["secrets", "get", "DB_USER", bad_name]) == 2

        assert "Invalid secret name" in capsys.readouterr().err
        assert fake_get_secrets == []


class TestConfigCommands:
    """Test suite for 'fetchkit config ...'."""

    def test_set_path_rejects_missing_file(self, temp_home, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            cli.cmd_config_set_path(Namespace(path=str(tmp_path / "nonexistent.yml")))

        assert exc_info.value.code == 1
        assert preferences.get_preference("config_path") is None

    def test_set_path_rejects_directory(self, temp_home, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            cli.cmd_config_set_path(Namespace(path=str(tmp_path)))
        assert exc_info.value.code == 1

    def test_set_path_stores_absolute_path(self, temp_home, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yml"
        config_file.write_text("gcp: {}")
        monkeypatch.chdir(tmp_path)

        cli.cmd_config_set_path(Namespace(path="config.yml"))

        assert preferences.get_preference("config_path") == str(config_file.resolve())

    def test_show_with_preference(self, temp_home, tmp_path, capsys):
        config_file = tmp_path / "config.yml"
        config_file.write_text("gcp: {}")
        preferences.set_preference("config_path", str(config_file))

        cli.cmd_config_show(Namespace())

        out = capsys.readouterr().out
        assert f"Config path: {config_file}" in out
        assert "Source: preference" in out

    def test_show_default(self, temp_home, capsys):
        cli.cmd_config_show(Namespace())

        out = capsys.readouterr().out
        assert str(temp_home / ".config" / "vault-fetchkit" / "config.yml") in out
        assert "Source: default (file not found)" in out

    def test_clear(self, temp_home, capsys):
        preferences.set_preference("config_path", "/etc/fetchkit.yml")

        cli.main(["config", "clear"])

        assert preferences.get_preference("config_path") is None
        assert "cleared" in capsys.readouterr().out


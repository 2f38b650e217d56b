"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from extensions.client import RegistryClient
from extensions.installer import SourceInstaller
from extensions.integrity import compute_digest
from pipeline import cli
from pipeline import config as config_module
from tests.helpers import FakeServer, make_entry, make_source_code, publish

runner = CliRunner()


def squash(text: str) -> str:
    """Drop all whitespace so wrapped console output can be matched."""
    return "".join(text.split())


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SOURCES_RUNTIME", raising=False)
    monkeypatch.setattr(config_module, "_config", None)


@pytest.fixture
def published(server: FakeServer, client: RegistryClient, monkeypatch: pytest.MonkeyPatch) -> str:
    code = make_source_code()
    publish(server, [(make_entry(code=code), code)])
    monkeypatch.setattr(cli, "get_client", lambda: client)
    return code


# ---------------------------------------------------------------------------
# Offline commands
# ---------------------------------------------------------------------------


class TestHash:
    def test_json_output(self, tmp_path: Path) -> None:
        path = tmp_path / "example.py"
        path.write_text(make_source_code(), encoding="utf-8")

        result = runner.invoke(cli.app, ["hash", str(path), "--json"])

        assert result.exit_code == 0
        assert compute_digest(path.read_bytes()) in squash(result.output)
        assert compute_digest(path.read_bytes(), "sha512") in squash(result.output)

    def test_table_output(self, tmp_path: Path) -> None:
        path = tmp_path / "example.py"
        path.write_text("x = 1\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["hash", str(path)])

        assert result.exit_code == 0
        assert "sha256" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(cli.app, ["hash", str(tmp_path / "missing.py")])
        assert result.exit_code != 0


class TestCheck:
    def test_valid_source(self, tmp_path: Path) -> None:
        path = tmp_path / "example.py"
        path.write_text(make_source_code(), encoding="utf-8")

        result = runner.invoke(cli.app, ["check", str(path)])

        assert result.exit_code == 0
        assert "Security: no denylisted patterns" in result.output

    def test_violations_fail(self, tmp_path: Path) -> None:
        path = tmp_path / "example.py"
        path.write_text(make_source_code() + "\nimport os\nopen('x')\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["check", str(path)])

        assert result.exit_code == 1
        assert "privilegedmoduleimport" in squash(result.output)
        assert "open()" in squash(result.output)

    def test_structure_failure(self, tmp_path: Path) -> None:
        path = tmp_path / "example.py"
        path.write_text("x = 1\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["check", str(path)])

        assert result.exit_code == 1
        assert "Structure" in result.output


def test_runtime_reports_configured_class(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SOURCES_RUNTIME", "restricted")

    result = runner.invoke(cli.app, ["runtime"])

    assert result.exit_code == 0
    assert "restricted" in result.output
    assert "configured" in result.output


def test_runtime_rejects_unknown_class(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SOURCES_RUNTIME", "browser")

    result = runner.invoke(cli.app, ["runtime"])

    assert result.exit_code == 1


def test_version() -> None:
    result = runner.invoke(cli.app, ["version"])

    assert result.exit_code == 0
    assert "remote-sources v1.0.0" in result.output


# ---------------------------------------------------------------------------
# Registry commands
# ---------------------------------------------------------------------------


class TestRegistryCommands:
    def test_list(self, published: str) -> None:
        result = runner.invoke(cli.app, ["list"])

        assert result.exit_code == 0
        assert "example" in result.output

    def test_search_without_results(self, published: str) -> None:
        result = runner.invoke(cli.app, ["search", "nothing-matches"])

        assert result.exit_code == 0
        assert "No sources found" in result.output

    def test_info(self, published: str) -> None:
        result = runner.invoke(cli.app, ["info", "example"])

        assert result.exit_code == 0
        assert "Example Source" in result.output
        assert compute_digest(published) in squash(result.output)

    def test_info_unknown_source(self, published: str) -> None:
        result = runner.invoke(cli.app, ["info", "missing"])

        assert result.exit_code == 1
        assert "not found in registry" in result.output

    def test_list_registry_unreachable(self, server: FakeServer, client: RegistryClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "get_client", lambda: client)

        result = runner.invoke(cli.app, ["list"])

        assert result.exit_code == 1
        assert "Failed to fetch registry" in result.output


class TestInstallCommand:
    def test_install(self, published: str, installer: SourceInstaller, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "build_installer", lambda: installer)

        result = runner.invoke(cli.app, ["install", "example"])

        assert result.exit_code == 0
        assert "Installed" in result.output
        assert "search" in result.output

    def test_install_failure_exits_nonzero(
        self, server: FakeServer, installer: SourceInstaller, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        code = make_source_code()
        publish(server, [(make_entry(code=code, sha256="0" * 64), code)])
        monkeypatch.setattr(cli, "build_installer", lambda: installer)

        result = runner.invoke(cli.app, ["install", "example"])

        assert result.exit_code == 1
        assert "IntegrityError" in result.output


    def test_install_with_unknown_runtime(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCES_RUNTIME", "browser")

        result = runner.invoke(cli.app, ["install", "example"])

        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "browser" in result.output


def test_hash_json_is_valid_integrity_block(tmp_path: Path) -> None:
    path = tmp_path / "example.py"
    path.write_bytes(b"abc")

    result = runner.invoke(cli.app, ["hash", str(path), "--json"])

    assert json.loads(result.output)["integrity"]["sha256"] == compute_digest(b"abc")

"""Tests for the CLI.

These tests run the Typer app with a temporary database and work
directory; docker is never executed (subprocess.run is mocked).
"""

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx
from typer.testing import CliRunner

from buildstash import __version__
from buildstash.cli import app, demo_build_args, provider_from_settings
from buildstash.config import Settings
from buildstash.credentials import (
    HttpTokenProvider,
    StaticCredentialProvider,
    TimestampTokenProvider,
)
from buildstash.stash.service import stash_lock

runner = CliRunner()

CONFIG_YAML = """
context:
  location: ../
dockerfile:
  location: ../Dockerfile
buildArgs:
  AWS_CODEARTIFACT_DOMAIN: elisabethtest
  AWS_ACCOUNT_ID: "1234567890"
  AWS_REGION: us-east-1
tags:
  - docker-build-secret-repro:fixed
  - docker-build-secret-repro:working
push: false
exports:
  - cacheonly: {}
"""


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Environment pointing all state into tmp_path."""
    return {
        "BUILDSTASH_DB_URL": f"sqlite:///{tmp_path}/state/stash.db",
        "BUILDSTASH_WORK_DIR": str(tmp_path / "work"),
        "BUILDSTASH_LOCK_DIR": str(tmp_path / "locks"),
        "BUILDSTASH_TOKEN_URL": "",
        "BUILDSTASH_LOG_LEVEL": "WARNING",
    }


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write the demo build configuration."""
    path = tmp_path / "app-image.yaml"
    path.write_text(CONFIG_YAML)
    return path


def _invoke_build(args: list[str]):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0)
        result = runner.invoke(app, ["build", *args])
    return result, mock_run


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "buildstash" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, cli_env) -> None:
        """CLI config should show all sections."""
        with patch.dict(os.environ, cli_env):
            result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Credentials:" in result.stdout
        assert "Paths:" in result.stdout
        assert "Operational:" in result.stdout
        assert "CodeArtifact domain" in result.stdout

    def test_config_masks_token(self, cli_env) -> None:
        """CLI config should never print the static token."""
        env = {**cli_env, "BUILDSTASH_CODEARTIFACT_AUTH_TOKEN": "very-secret"}
        with patch.dict(os.environ, env):
            text = runner.invoke(app, ["config"]).stdout
            json_text = runner.invoke(app, ["config", "--json"]).stdout

        assert "very-secret" not in text
        assert "[secret]" in text
        assert "very-secret" not in json_text

    def test_config_json(self, cli_env) -> None:
        """CLI config --json should output JSON."""
        with patch.dict(os.environ, cli_env):
            result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert parsed["secret_arg_name"] == "CODEARTIFACT_TOKEN"


class TestCLIFingerprint:
    """Test CLI fingerprint command."""

    def test_fingerprint(self, config_file) -> None:
        """Should print the fingerprint."""
        result = runner.invoke(app, ["fingerprint", str(config_file)])
        assert result.exit_code == 0
        assert "sha256:" in result.stdout

    def test_fingerprint_json(self, config_file) -> None:
        """Should print fingerprint and canonical inputs as JSON."""
        result = runner.invoke(app, ["fingerprint", str(config_file), "--json"])
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["fingerprint"].startswith("sha256:")
        assert data["inputs"]["exports"] == ["type=cacheonly"]

    def test_fingerprint_invalid(self, tmp_path) -> None:
        """Should exit 1 on an invalid config."""
        path = tmp_path / "bad.yaml"
        path.write_text("context: ''\ndockerfile: Dockerfile\n")

        result = runner.invoke(app, ["fingerprint", str(path)])
        assert result.exit_code == 1
        assert "invalid_config" in result.stdout


class TestCLIBuild:
    """Test CLI build command."""

    def test_build_then_reuse(self, cli_env, config_file) -> None:
        """A second build with unchanged inputs should reuse the secret."""
        with patch.dict(os.environ, cli_env):
            first, mock_run = _invoke_build([str(config_file), "--json"])
            assert first.exit_code == 0, first.stdout
            env_first = mock_run.call_args.kwargs["env"]["CODEARTIFACT_TOKEN"]

            second, mock_run = _invoke_build([str(config_file), "--json"])
            assert second.exit_code == 0, second.stdout
            env_second = mock_run.call_args.kwargs["env"]["CODEARTIFACT_TOKEN"]

        first_data = json.loads(first.stdout)
        second_data = json.loads(second.stdout)

        assert first_data["target"] == "app-image"
        assert first_data["stash"]["outcome"] == "created"
        assert second_data["stash"]["outcome"] == "reused"
        assert second_data["stash"]["generation"] == 0
        assert env_first == env_second
        assert env_first.startswith("temp-token-")

        assert first_data["build_args"]["CODEARTIFACT_TOKEN"] == "[secret]"
        assert first_data["secrets_used"]["token_preview"] == "[secret]"
        assert first_data["secrets_used"]["domain"] == "elisabethtest"
        assert env_first not in first.stdout

    def test_changed_config_refreshes(self, cli_env, config_file) -> None:
        """Changing the config should stage a new generation."""
        with patch.dict(os.environ, cli_env):
            _invoke_build([str(config_file)])
            config_file.write_text(CONFIG_YAML.replace("  AWS_REGION", "  ADDME: '1'\n  AWS_REGION"))
            result, _ = _invoke_build([str(config_file), "--json"])

        data = json.loads(result.stdout)
        assert data["stash"]["outcome"] == "replaced"
        assert data["stash"]["generation"] == 1

    def test_static_token_never_printed(self, cli_env, config_file) -> None:
        """The static token should reach docker only via the environment."""
        env = {**cli_env, "BUILDSTASH_CODEARTIFACT_AUTH_TOKEN": "tok-static"}
        with patch.dict(os.environ, env):
            result, mock_run = _invoke_build([str(config_file)])

        assert result.exit_code == 0
        assert "tok-static" not in result.stdout
        assert "CODEARTIFACT_TOKEN=[secret]" in result.stdout
        assert mock_run.call_args.kwargs["env"]["CODEARTIFACT_TOKEN"] == "tok-static"
        assert "tok-static" not in " ".join(mock_run.call_args.args[0])

    def test_build_failure_exit_code(self, cli_env, config_file) -> None:
        """A failing docker build should exit 1 with build_failed."""
        with patch.dict(os.environ, cli_env):
            with patch("subprocess.run") as mock_run:
                mock_run.return_value = MagicMock(returncode=2)
                result = runner.invoke(app, ["build", str(config_file)])

        assert result.exit_code == 1
        assert "build_failed" in result.stdout

    def test_empty_secret_arg_rejected(self, cli_env, config_file) -> None:
        """An empty --secret-arg should fail instead of using the default."""
        with patch.dict(os.environ, cli_env):
            result, mock_run = _invoke_build([str(config_file), "--secret-arg", ""])

        assert result.exit_code == 1
        assert "invalid_config" in result.stdout
        mock_run.assert_not_called()

    def test_token_endpoint_client_closed(self, cli_env, config_file) -> None:
        """The token endpoint client should be closed after the build."""
        env = {**cli_env, "BUILDSTASH_TOKEN_URL": "https://tokens.example.com/t"}
        with patch.dict(os.environ, env), respx.mock:
            respx.post("https://tokens.example.com/t").mock(
                return_value=httpx.Response(200, json={"authorizationToken": "tok-h"})
            )
            with patch.object(HttpTokenProvider, "close", autospec=True) as close:
                result, mock_run = _invoke_build([str(config_file)])

        assert result.exit_code == 0, result.stdout
        assert mock_run.call_args.kwargs["env"]["CODEARTIFACT_TOKEN"] == "tok-h"
        close.assert_called_once()

    def test_codeartifact_args(self, cli_env, tmp_path) -> None:
        """--codeartifact-args should add the CodeArtifact build arguments."""
        path = tmp_path / "plain.yaml"
        path.write_text("context: .\ndockerfile: Dockerfile\n")

        with patch.dict(os.environ, cli_env):
            result, _ = _invoke_build([str(path), "--codeartifact-args", "--json"])

        data = json.loads(result.stdout)
        assert data["build_args"]["AWS_CODEARTIFACT_DOMAIN"] == "elisabethtest"
        assert data["build_args"]["AWS_REGION"] == "us-east-1"


class TestCLIStash:
    """Test CLI stash commands."""

    def test_show_empty(self, cli_env) -> None:
        """stash show --json should return [] when nothing is staged."""
        with patch.dict(os.environ, cli_env):
            result = runner.invoke(app, ["stash", "show", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_show_and_clear(self, cli_env, config_file) -> None:
        """Staged secrets should be listed without values and clearable."""
        with patch.dict(os.environ, cli_env):
            _invoke_build([str(config_file), "--target", "web"])

            shown = runner.invoke(app, ["stash", "show", "--json"])
            entries = json.loads(shown.stdout)
            assert [e["target"] for e in entries] == ["web"]
            assert "temp-token-" not in shown.stdout

            cleared = runner.invoke(app, ["stash", "clear", "web"])
            assert cleared.exit_code == 0

            again = runner.invoke(app, ["stash", "clear", "web"])
            assert again.exit_code == 1

    def test_clear_waits_for_stash_lock(self, cli_env, config_file) -> None:
        """stash clear should honor the per-target lock held by a build."""
        env = {**cli_env, "BUILDSTASH_LOCK_TIMEOUT": "0.2"}
        with patch.dict(os.environ, env):
            _invoke_build([str(config_file), "--target", "web"])

            with stash_lock(Path(cli_env["BUILDSTASH_LOCK_DIR"]), "web"):
                blocked = runner.invoke(app, ["stash", "clear", "web"])

            shown = runner.invoke(app, ["stash", "show", "--json"])

        assert blocked.exit_code == 1
        assert "lock_timeout" in blocked.stdout
        assert [e["target"] for e in json.loads(shown.stdout)] == ["web"]


class TestProviderFromSettings:
    """Tests for provider selection."""

    def test_token_url_wins(self) -> None:
        settings = Settings(
            token_url="https://tokens.example.com", codeartifact_auth_token="x"
        )
        assert isinstance(provider_from_settings(settings), HttpTokenProvider)

    def test_static_token(self) -> None:
        settings = Settings(token_url=None, codeartifact_auth_token="x")
        assert isinstance(provider_from_settings(settings), StaticCredentialProvider)

    def test_demo_fallback(self) -> None:
        settings = Settings(token_url=None, codeartifact_auth_token=None)
        assert isinstance(provider_from_settings(settings), TimestampTokenProvider)

    def test_demo_build_args(self) -> None:
        settings = Settings(aws_region="eu-west-1")
        assert demo_build_args(settings)["AWS_REGION"] == "eu-west-1"

"""Tests for zwave2mqtt._cli — command line entry point.

Test Techniques Used:
    - Specification-based Testing: CLI flag parsing and defaults
    - State-based Testing: Verifying settings propagation to the gateway
    - Error Condition Testing: Invalid flag values, config errors
    - Behavioural Testing: Exit codes and output text
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from zwave2mqtt._cli import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR, build_cli
from zwave2mqtt._settings import Settings

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _FakeGateway:
    """Records the settings it was built with and returns at once."""

    def __init__(self, settings: Settings, *, error: Exception | None = None) -> None:
        self.settings = settings
        self.error = error
        self.ran = False

    async def run(self) -> None:
        self.ran = True
        if self.error is not None:
            raise self.error


@pytest.fixture
def runner() -> CliRunner:
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[MagicMock]:
    """Run in an empty directory with logging setup stubbed out."""
    monkeypatch.chdir(tmp_path)
    with patch("zwave2mqtt._cli.configure_logging") as configure:
        yield configure


@pytest.fixture
def built() -> list[_FakeGateway]:
    return []


@pytest.fixture
def factory(built: list[_FakeGateway]):
    def make(settings: Settings) -> _FakeGateway:
        gateway = _FakeGateway(settings)
        built.append(gateway)
        return gateway

    return make


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------


class TestVersionAndHelp:
    """--version and --help output.

    Technique: Specification-based Testing.
    """

    def test_version_prints_and_exits(self, runner: CliRunner, built: list[_FakeGateway], factory) -> None:
        result = runner.invoke(build_cli(version="1.0.0", gateway_factory=factory), ["--version"])

        assert result.exit_code == EXIT_OK
        assert "zwave2mqtt v1.0.0" in result.output
        assert built == []

    def test_help_lists_options(self, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(version="1.0.0"), ["--help"])

        assert result.exit_code == EXIT_OK
        for option in ("--version", "--log-level", "--log-format", "--env-file"):
            assert option in result.output


class TestSettingsLoading:
    """Settings reach the gateway with CLI overrides applied.

    Technique: State-based Testing.
    """

    def test_clean_run(self, runner: CliRunner, built: list[_FakeGateway], factory) -> None:
        result = runner.invoke(build_cli(gateway_factory=factory), [])

        assert result.exit_code == EXIT_OK
        assert built[0].ran is True

    def test_env_file_is_read(
        self,
        runner: CliRunner,
        built: list[_FakeGateway],
        factory,
        tmp_path: Path,
    ) -> None:
        env = tmp_path / "custom.env"
        env.write_text("ZWAVE2MQTT_MQTT__HOST=broker.custom\n")

        result = runner.invoke(build_cli(gateway_factory=factory), ["--env-file", str(env)])

        assert result.exit_code == EXIT_OK
        assert built[0].settings.mqtt.host == "broker.custom"

    def test_log_overrides(self, runner: CliRunner, built: list[_FakeGateway], factory, _isolated_cwd: MagicMock) -> None:
        result = runner.invoke(
            build_cli(version="2.0", gateway_factory=factory),
            ["--log-level", "debug", "--log-format", "TEXT"],
        )

        assert result.exit_code == EXIT_OK
        logging_settings = built[0].settings.logging
        assert logging_settings.level == "DEBUG"
        assert logging_settings.format == "text"
        _isolated_cwd.assert_called_once_with(logging_settings, service="zwave2mqtt", version="2.0")

    @pytest.mark.parametrize(
        "args",
        [["--log-level", "INVALID"], ["--log-format", "yaml"]],
    )
    def test_invalid_log_option(self, runner: CliRunner, built: list[_FakeGateway], factory, args: list[str]) -> None:
        result = runner.invoke(build_cli(gateway_factory=factory), args)

        assert result.exit_code != EXIT_OK
        assert built == []


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class TestExitCodes:
    """Exit code tests.

    Technique: Behavioural Testing.
    """

    def test_exit_code_constants(self) -> None:
        assert EXIT_OK == 0
        assert EXIT_CONFIG_ERROR == 1
        assert EXIT_RUNTIME_ERROR == 3

    def test_config_error_exits_one(
        self,
        runner: CliRunner,
        built: list[_FakeGateway],
        factory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("ZWAVE2MQTT_MQTT__PORT", "0")

        result = runner.invoke(build_cli(gateway_factory=factory), [])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert built == []

    def test_runtime_error_exits_three(self, runner: CliRunner) -> None:
        def failing(settings: Settings) -> _FakeGateway:
            return _FakeGateway(settings, error=RuntimeError("kaboom"))

        result = runner.invoke(build_cli(gateway_factory=failing), [])

        assert result.exit_code == EXIT_RUNTIME_ERROR

    def test_factory_error_exits_three(self, runner: CliRunner) -> None:
        def broken(settings: Settings) -> _FakeGateway:  # noqa: ARG001
            msg = "No module named 'missing'"
            raise ImportError(msg)

        result = runner.invoke(build_cli(gateway_factory=broken), [])

        assert result.exit_code == EXIT_RUNTIME_ERROR

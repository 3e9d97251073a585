"""Tests for the drive-profiler command line."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from driveprof.cli.main import cli
from driveprof.profiling.report import SEPARATOR

pytestmark = [pytest.mark.cli, pytest.mark.unit]

BENCH_ARGS = ["bench", "--entries", "5", "--entry-size", "100", "--latency", "0", "-i", "1"]


@pytest.fixture
def runner():
    return CliRunner()


class TestBench:
    """Test the self-contained loopback benchmark."""

    def test_bench_completes(self, runner):
        """Test a small benchmark prints the banner and a final report."""
        result = runner.invoke(cli, BENCH_ARGS)
        assert result.exit_code == 0, result.output
        assert "Profiling drive download for" in result.output
        assert "Printing progress every 1 seconds" in result.output
        assert "Using temporary directory" in result.output
        assert "Fully downloaded in" in result.output
        assert SEPARATOR in result.output
        assert "xxx.xxx.xxx.xxx" in result.output

    def test_bench_detail(self, runner):
        """Test --detail adds per-message replication counts."""
        result = runner.invoke(cli, [*BENCH_ARGS, "--detail"])
        assert result.exit_code == 0, result.output
        assert "Commands:" in result.output
        assert "DHT commands:" in result.output

    def test_bench_ip(self, runner):
        """Test --ip prints the observed address."""
        result = runner.invoke(cli, [*BENCH_ARGS, "--ip"])
        assert result.exit_code == 0, result.output
        assert "Address: 127.0.0.1:" in result.output

    def test_bench_rejects_invalid_loss(self, runner):
        """Test an out-of-range loss rate is reported as an error."""
        result = runner.invoke(cli, [*BENCH_ARGS, "--loss", "2"])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestProfile:
    """Test argument validation of the profile command."""

    def test_invalid_key(self, runner):
        """Test a key that is neither z-base-32 nor hex is rejected."""
        result = runner.invoke(cli, ["profile", "not-a-key"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_peer_list(self, runner, tmp_path):
        """Test an unreadable remote peer list is rejected before setup."""
        result = runner.invoke(
            cli,
            ["profile", "00" * 32, "--remote-peers", str(tmp_path / "missing.txt")],
        )
        assert result.exit_code == 1
        assert "Cannot read remote peer list" in result.output

    def test_unknown_backend(self, runner):
        """Test an unregistered backend name is rejected."""
        result = runner.invoke(cli, ["profile", "00" * 32, "--backend", "nope"])
        assert result.exit_code == 1
        assert "Unknown backend" in result.output

    def test_interval_below_one(self, runner):
        """Test sub-second intervals are rejected by validation."""
        result = runner.invoke(cli, ["profile", "00" * 32, "-i", "0.5"])
        assert result.exit_code == 1

    def test_bad_config_file(self, runner, tmp_path):
        """Test a malformed configuration file is reported."""
        path = tmp_path / "bad.toml"
        path.write_text("[profiler\n", encoding="utf-8")
        result = runner.invoke(cli, ["-c", str(path), "profile", "00" * 32])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestHelp:
    """Test command discovery."""

    def test_lists_commands(self, runner):
        """Test both commands appear in the group help."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "profile" in result.output
        assert "bench" in result.output

"""Unit tests for CLI argument parsing and command dispatch."""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from leverage_kit.cli import _run, build_parser
from leverage_kit.models import LeverageLimits
from leverage_kit.plan import TransactionPlan


class TestBuildParser:
    def test_markets_command(self) -> None:
        args = build_parser().parse_args(["markets"])
        assert args.command == "markets"

    def test_limits_command(self) -> None:
        args = build_parser().parse_args(["limits", "SUI"])
        assert args.command == "limits"
        assert args.asset == "SUI"

    def test_preview_command(self) -> None:
        args = build_parser().parse_args(["preview", "SUI", "1.5", "2.5"])
        assert args.asset == "SUI"
        assert args.amount == "1.5"
        assert args.multiplier == 2.5

    def test_build_leverage_command(self) -> None:
        args = build_parser().parse_args(["build-leverage", "LBTC", "0.01", "3"])
        assert args.command == "build-leverage"
        assert args.multiplier == 3.0

    def test_global_flags(self) -> None:
        args = build_parser().parse_args(
            ["--config", "/tmp/c.yaml", "--log-level", "DEBUG", "--protocol", "navi", "portfolio"]
        )
        assert args.config == "/tmp/c.yaml"
        assert args.log_level == "DEBUG"
        assert args.protocol == "navi"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "LOUD", "markets"])

    def test_no_command(self) -> None:
        args = build_parser().parse_args([])
        assert args.command is None


def _args(sample_yaml_path: Path, *argv: str) -> argparse.Namespace:
    return build_parser().parse_args(["--config", str(sample_yaml_path), *argv])


class TestRun:
    @pytest.mark.asyncio
    async def test_limits_prints_json(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        session = MagicMock()
        session.initialize = AsyncMock()
        session.get_max_borrowable = AsyncMock(return_value="12.5")
        session.get_max_withdrawable = AsyncMock(return_value="3")
        session.get_leverage_limits = AsyncMock(
            return_value=LeverageLimits(max_leverage=4.0, safe_leverage=3.2, target_ltv=0.6)
        )

        with patch("leverage_kit.cli.LeverageSession", return_value=session):
            await _run(_args(sample_yaml_path, "limits", "SUI"))

        out = json.loads(capsys.readouterr().out)
        assert out["max_borrowable"] == "12.5"
        assert out["leverage"]["max_leverage"] == 4.0
        session.initialize.assert_awaited_once_with(None, "0xTEST")

    @pytest.mark.asyncio
    async def test_address_flag_overrides_wallet(self, sample_yaml_path: Path) -> None:
        session = MagicMock()
        session.initialize = AsyncMock()
        session.get_aggregated_markets = AsyncMock(return_value={})

        with patch("leverage_kit.cli.LeverageSession", return_value=session):
            await _run(_args(sample_yaml_path, "--address", "0xother", "markets"))

        session.initialize.assert_awaited_once_with(None, "0xother")

    @pytest.mark.asyncio
    async def test_build_deleverage_prints_plan(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        session = MagicMock()
        session.initialize = AsyncMock()
        session.build_deleverage_transaction = AsyncMock(
            return_value=TransactionPlan("0xTEST", 1_000)
        )

        with patch("leverage_kit.cli.LeverageSession", return_value=session):
            await _run(_args(sample_yaml_path, "build-deleverage"))

        out = json.loads(capsys.readouterr().out)
        assert out == {"sender": "0xTEST", "gas_budget": 1000, "steps": [], "funding_checks": []}

    @pytest.mark.asyncio
    async def test_missing_address_exits(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text(
            'chain:\n  rpc_endpoints: ["https://rpc"]\nprotocols:\n  navi:\n    package_id: "0xnavi"\n'
        )
        with pytest.raises(SystemExit):
            await _run(build_parser().parse_args(["--config", str(cfg_file), "markets"]))

"""Tests for the rcheck command line interface."""

from __future__ import annotations

import importlib
import json
import logging
import sys
import types

import click
import pytest
import toml
from click.testing import CliRunner

from retrieve_checker import __version__
from retrieve_checker.activity import LoggingHost
from retrieve_checker.cli.main import build_collaborators, cli, load_factory, retrieval_hints
from retrieve_checker.config import config as config_module
from retrieve_checker.models import Config, RetrievalStats
from retrieve_checker.service import Collaborators
from retrieve_checker.utils.exceptions import ConfigurationError, PeerResolutionError

cli_main = importlib.import_module("retrieve_checker.cli.main")

pytestmark = [pytest.mark.unit, pytest.mark.cli]

CID = "bafkreih25dih6ug3xtj73vswccw423b56ilrwmnos4cbwhrceudopdp5sq"


@pytest.fixture(autouse=True)
def _reset_global_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config_manager", None)


@pytest.fixture
def runner():
    return CliRunner()


def _stats(**kwargs) -> RetrievalStats:
    return RetrievalStats(**kwargs)


class TestRetrievalHints:
    """Test cases for retrieval_hints."""

    def test_success_has_no_hints(self):
        stats = _stats(status_code=200, protocol="http", provider_address="/dns/a.com/tcp/443/https")
        assert retrieval_hints(stats, CID) == []

    def test_no_provider_has_no_hints(self):
        assert retrieval_hints(_stats(indexer_result="NO_VALID_ADVERTISEMENT"), CID) == []

    def test_graphsync_suggests_lassie(self):
        address = "/ip4/1.2.3.4/tcp/3000/p2p/12D3KooW"
        stats = _stats(status_code=600, protocol="graphsync", provider_address=address)

        lines = retrieval_hints(stats, CID)

        assert lines[0] == "The retrieval failed."
        assert any("--protocols graphsync" in line and f'--providers "{address}"' in line for line in lines)
        assert lines[-1].startswith("How to install Lassie: https://github.com/filecoin-project/lassie")

    def test_http_suggests_url_and_curl(self):
        stats = _stats(status_code=502, protocol="http", provider_address="/dns/frisbii.fly.dev/tcp/443/https")

        lines = retrieval_hints(stats, CID)

        url = f"https://frisbii.fly.dev/ipfs/{CID}?dag-scope=block"
        assert f"  {url}" in lines
        assert f'  curl -i "{url}"' in lines
        assert any("--protocols http" in line for line in lines)

    def test_http_with_bad_address(self):
        stats = _stats(status_code=702, protocol="http", provider_address="/ip4/1.2.3.4/udp/80/http")

        lines = retrieval_hints(stats, CID)

        assert lines[0] == "The retrieval failed."
        assert lines[1].startswith('The provider address "/ip4/1.2.3.4/udp/80/http" cannot be converted to a URL: ')
        assert len(lines) == 2


class TestLoadFactory:
    """Test cases for load_factory."""

    def test_loads_attribute(self):
        assert load_factory("json:dumps") is json.dumps

    @pytest.mark.parametrize("target", ["json", ":dumps", "json:"])
    def test_rejects_malformed_target(self, target):
        with pytest.raises(click.BadParameter, match="module:factory"):
            load_factory(target)

    def test_rejects_missing_module(self):
        with pytest.raises(click.BadParameter, match="Cannot import"):
            load_factory("definitely_not_a_module_xyz:factory")

    def test_rejects_missing_attribute(self):
        with pytest.raises(click.BadParameter, match="has no attribute"):
            load_factory("json:nope")


class TestBuildCollaborators:
    """Test cases for build_collaborators."""

    @pytest.mark.asyncio
    async def test_sync_factory(self):
        wired = Collaborators(source=object(), reporter=object())

        result = await build_collaborators(lambda session, config: wired, None, Config())

        assert result is wired
        assert isinstance(result.host, LoggingHost)

    @pytest.mark.asyncio
    async def test_async_factory(self):
        wired = Collaborators(source=object(), reporter=object())

        async def factory(session, config):
            return wired

        assert await build_collaborators(factory, None, Config()) is wired

    @pytest.mark.asyncio
    async def test_wrong_return_type(self):
        with pytest.raises(ConfigurationError, match="must return Collaborators, got dict"):
            await build_collaborators(lambda session, config: {}, None, Config())


class TestCommands:
    """Test cases for CLI commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_multiaddr(self, runner):
        result = runner.invoke(cli, ["multiaddr", "/dns/frisbii.fly.dev/tcp/443/https"])

        assert result.exit_code == 0
        assert result.output.strip() == "https://frisbii.fly.dev"

    def test_multiaddr_error_shows_code(self, runner):
        result = runner.invoke(cli, ["multiaddr", "/ip4/1.2.3.4/udp/80/http"])

        assert result.exit_code == 1
        assert "(code UNSUPPORTED_MULTIADDR_PROTO)" in result.output

    def test_config_toml(self, runner, monkeypatch):
        monkeypatch.setenv("RCHECK_RPC_AUTH_TOKEN", "s3cret")

        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 0
        data = toml.loads(result.output)
        assert data["chain"]["rpc_auth_token"] == "***"

    def test_config_json_with_secrets(self, runner, monkeypatch):
        monkeypatch.setenv("RCHECK_RPC_AUTH_TOKEN", "s3cret")

        result = runner.invoke(cli, ["config", "--format", "json", "--show-secrets"])

        assert result.exit_code == 0
        assert json.loads(result.output)["chain"]["rpc_auth_token"] == "s3cret"

    def test_config_file_option(self, runner, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text(toml.dumps({"indexer": {"url": "http://localhost:3000"}}), encoding="utf-8")

        result = runner.invoke(cli, ["--config", str(path), "config", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["indexer"]["url"] == "http://localhost:3000"

    @pytest.mark.parametrize(
        ("flags", "expected"),
        [("-v", logging.INFO), ("-vv", logging.DEBUG), ("-vvvvv", logging.DEBUG)],
    )
    def test_verbose_lowers_configured_level(self, runner, monkeypatch, flags, expected):
        monkeypatch.setenv("RCHECK_LOG_LEVEL", "WARNING")

        result = runner.invoke(cli, [flags, "config"])

        assert result.exit_code == 0
        assert logging.getLogger("retrieve_checker").level == expected

    def test_verbose_from_default_level_reaches_debug(self, runner):
        result = runner.invoke(cli, ["-v", "config"])

        assert result.exit_code == 0
        assert logging.getLogger("retrieve_checker").level == logging.DEBUG

    def test_invalid_config_is_reported(self, runner, monkeypatch):
        monkeypatch.setenv("RCHECK_INDEXER_MAX_ATTEMPTS", "0")

        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_check_json_output(self, runner, monkeypatch):
        seen = {}

        async def fake_run_check(config, task, peer_id=None, collaborators=None):
            seen.update(task=task, peer_id=peer_id, collaborators=collaborators)
            return _stats(
                status_code=200,
                indexer_result="OK",
                protocol="http",
                provider_id="12D3KooW",
                provider_address="/dns/frisbii.fly.dev/tcp/443/https",
                byte_length=200,
            )

        monkeypatch.setattr(cli_main, "_run_check", fake_run_check)

        result = runner.invoke(cli, ["check", CID, "f01spark", "--peer-id", "12D3KooW", "--json"])

        assert result.exit_code == 0, result.output
        measurement = json.loads(result.output)
        assert measurement["statusCode"] == 200
        assert measurement["byteLength"] == 200
        assert seen["task"].cid == CID
        assert seen["task"].miner_id == "f01spark"
        assert seen["peer_id"] == "12D3KooW"
        assert seen["collaborators"] is None

    def test_check_table_output_with_hints(self, runner, monkeypatch):
        async def fake_run_check(config, task, peer_id=None, collaborators=None):
            return _stats(
                status_code=502,
                indexer_result="OK",
                protocol="http",
                provider_address="/dns/frisbii.fly.dev/tcp/443/https",
            )

        monkeypatch.setattr(cli_main, "_run_check", fake_run_check)

        result = runner.invoke(cli, ["check", CID, "f01spark"])

        assert result.exit_code == 0, result.output
        assert "Measurement" in result.output
        assert "The retrieval failed." in result.output
        assert "curl -i" in result.output

    def test_check_peer_resolution_failure(self, runner, monkeypatch):
        async def fake_run_check(config, task, peer_id=None, collaborators=None):
            try:
                raise ConnectionError("lotus down")
            except ConnectionError as e:
                raise PeerResolutionError(f"Error fetching PeerID for miner {task.miner_id}.") from e

        monkeypatch.setattr(cli_main, "_run_check", fake_run_check)

        result = runner.invoke(cli, ["check", CID, "f0999"])

        assert result.exit_code == 1
        assert "Error fetching PeerID for miner f0999. (lotus down)" in result.output

    def test_run_requires_collaborators(self, runner):
        result = runner.invoke(cli, ["run"])

        assert result.exit_code == 2
        assert "--collaborators" in result.output

    def test_run_reports_bad_factory(self, runner, monkeypatch):
        module = types.ModuleType("rcheck_test_wiring")
        module.factory = lambda session, config: "not collaborators"
        monkeypatch.setitem(sys.modules, "rcheck_test_wiring", module)

        result = runner.invoke(cli, ["run", "--collaborators", "rcheck_test_wiring:factory"])

        assert result.exit_code == 1
        assert "must return Collaborators" in result.output

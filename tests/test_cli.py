"""Tests for the typer CLI and the one-shot analyzer/export helpers."""

import json

import pytest
import yaml
from typer.testing import CliRunner

import ham_analyzer
from ham import app
from ham_analyzer import censorship_verdict, config_document, export_config, reachability, run_analyze
from ham_probe import ScanConfig, __version__

runner = CliRunner()


class TestExportCommand:
    def test_json(self) -> None:
        result = runner.invoke(app, ["export", "json"])
        assert result.exit_code == 0, result.output
        doc = json.loads(result.stdout)["ham_config"]
        assert doc["version"] == __version__
        assert doc["scan_intervals"] == 2.0
        assert doc["protocols"] == ["dns", "https", "ping", "tcp", "udp"]
        assert "8.8.8.8:53" in doc["test_endpoints"]

    def test_yaml_uses_config_file(self, tmp_path) -> None:
        path = tmp_path / "ham.yaml"
        path.write_text("probes:\n  - {name: web, kind: tcp, target: 'example.org:80'}\n")
        result = runner.invoke(app, ["export", "YAML", "--config", str(path)])
        assert result.exit_code == 0, result.output
        doc = yaml.safe_load(result.stdout)["ham_config"]
        assert [p["name"] for p in doc["probes"]] == ["web"]

    def test_qr_not_implemented(self) -> None:
        result = runner.invoke(app, ["export", "qr"])
        assert result.exit_code == 0
        assert "not yet implemented" in result.output

    def test_unsupported_format(self) -> None:
        result = runner.invoke(app, ["export", "xml"])
        assert result.exit_code == 2
        assert "Unsupported format: xml" in result.output

    def test_bad_config(self, tmp_path) -> None:
        path = tmp_path / "ham.yaml"
        path.write_text("probes:\n  - {name: x, kind: gopher, target: a}\n")
        result = runner.invoke(app, ["export", "json", "--config", str(path)])
        assert result.exit_code == 2
        assert "Config error" in result.output


def test_check_rejects_target_without_port(tmp_path) -> None:
    path = tmp_path / "ham.yaml"
    path.write_text("probes:\n  - {name: web, kind: tcp, target: example.org}\n")
    result = runner.invoke(app, ["check", "--config", str(path)])
    assert result.exit_code == 2
    assert "needs a port" in result.output


def test_check_prints_catalog() -> None:
    result = runner.invoke(app, ["check"])
    assert result.exit_code == 0, result.output
    assert "Probes: 5" in result.output
    assert "TCP:443" in result.output


def test_scan_without_terminal_fails_fast() -> None:
    result = runner.invoke(app, ["scan"])
    assert result.exit_code == 1
    assert "Cannot start live scan" in result.output


def test_scan_missing_config() -> None:
    result = runner.invoke(app, ["scan", "--config", "/nonexistent/ham.yaml"])
    assert result.exit_code == 2


# --- analyzer ---

@pytest.mark.parametrize("score,label", [(10, "Reachable"), (8, "Reachable"), (7, "Limited"),
                                         (4, "Limited"), (3, "Blocked"), (0, "Blocked")])
def test_reachability(score: int, label: str) -> None:
    assert reachability(score)[0] == label


@pytest.mark.parametrize("accessible,verdict", [
    (4, "Network appears uncensored"),
    (3, "Partial censorship detected"),
    (2, "Heavy censorship likely"),
    (0, "Heavy censorship likely"),
])
def test_censorship_verdict(accessible: int, verdict: str) -> None:
    assert censorship_verdict(accessible, 4)[0] == verdict


def test_censorship_verdict_no_domains() -> None:
    assert censorship_verdict(0, 0)[0] == "Heavy censorship likely"


def test_config_document_round_trips_probes() -> None:
    cfg = ScanConfig()
    doc = config_document(cfg)["ham_config"]
    assert len(doc["probes"]) == len(cfg.probes)
    assert doc["probes"][0] == {"name": "TCP:80", "kind": "tcp", "target": "www.google.com:80",
                                "detail": "HTTP connectivity", "timeout_secs": 3.0}


def test_export_config_rejects_unknown_format() -> None:
    with pytest.raises(ValueError):
        export_config(ScanConfig(), "toml")


@pytest.mark.asyncio
async def test_run_analyze_report(monkeypatch, capsys) -> None:
    async def route():
        return True

    async def tcp(addr, _timeout):
        return {"8.8.8.8:53": 10, "1.1.1.1:53": 5}.get(addr, 0)

    async def dns(domain, _timeout):
        return 10 if domain in ("google.com", "youtube.com") else 0

    monkeypatch.setattr(ham_analyzer, "has_default_route", route)
    monkeypatch.setattr(ham_analyzer, "tcp_probe", tcp)
    monkeypatch.setattr(ham_analyzer, "dns_probe", dns)

    await run_analyze(0.1)
    out = capsys.readouterr().out
    assert "Default route found" in out
    assert "Google DNS - Reachable" in out
    assert "Cloudflare DNS - Limited" in out
    assert "OpenDNS - Blocked" in out
    assert "facebook.com - DNS blocked" in out
    assert "google.com - DNS resolves" in out
    assert "Heavy censorship likely" in out

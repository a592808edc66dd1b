"""Command-line runner argument handling and summary output."""
import asyncio
from pathlib import Path
from types import SimpleNamespace

from stack_e2e import capture_stack_screenshots as cli
from stack_e2e.evidence import Evidence
from stack_e2e.orchestrator import FAILED, PASSED, SKIPPED, ServiceResult
from stack_e2e.services import ServiceRegistry


def test_parse_args():
    args = cli.parse_args(["--service", "jellyfin", "--service", "sonarr", "--evidence-dir", "out", "--api-checks"])
    assert args.services == ["jellyfin", "sonarr"]
    assert args.evidence_dir == Path("out")
    assert args.api_checks is True
    assert args.host is None


def test_unknown_service_exits_before_launching(capsys):
    assert cli.main(["--service", "plex"]) == 2
    assert "plex" in capsys.readouterr().out


def test_summary_lists_each_result(capsys):
    results = [
        ServiceResult("jellyfin", PASSED, evidence=Evidence("jellyfin", Path("shots/jellyfin.png"), 1920, 2400)),
        ServiceResult("qbittorrent", FAILED, reason="qbittorrent: login returned HTTP 401"),
        ServiceResult("sabnzbd", SKIPPED, reason="SABNZBD_API_KEY not set"),
    ]

    cli.print_summary("Service screenshots", results)

    out = capsys.readouterr().out
    assert "1920x2400" in out
    assert "HTTP 401" in out
    assert "SABNZBD_API_KEY not set" in out


def test_api_check_crash_is_recorded_and_later_checks_run(monkeypatch):
    async def crash(registry, client, config):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    async def ok(registry, client, config):
        return {}

    checks = [SimpleNamespace(name="broken", run=crash), SimpleNamespace(name="healthy", run=ok)]
    monkeypatch.setattr(cli, "API_CHECKS", checks)

    results = asyncio.run(cli.run_api_checks(ServiceRegistry("127.0.0.1")))

    assert [r.status for r in results] == [FAILED, PASSED]
    assert results[0].reason.startswith("ValueError")

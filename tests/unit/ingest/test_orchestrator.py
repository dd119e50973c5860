"""Unit tests for download orchestration."""

from __future__ import annotations

import gzip
import re
import sqlite3
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from core.config import TowerDbConfig
from core.errors import TowerDbDecodeError, TowerDbNetworkError, TowerDbStateError
from core.types import DownloadSettings
from ingest.download_run import DownloadRun
from ingest.orchestrator import DownloadOrchestrator

_HEADER = "radio,mcc,net,area,cell,unit,lon,lat,range,samples,changeable,created,updated,averageSignal"
_OCID_URL = "https://ocid.test/dl?token={api_key}"
_MLS_URL = "https://mls.test/export-{date}.csv.gz"


def _gzip_csv(row_count: int, header: str = _HEADER, mcc: int = 310) -> bytes:
    rows = [f"GSM,{mcc},5,100,{index},0,-80.1,40.2,1000,5,1,1,1,0" for index in range(row_count)]
    return gzip.compress(("\n".join([header, *rows]) + "\n").encode("utf-8"))


def _config(tmp_path: Path) -> TowerDbConfig:
    return replace(
        TowerDbConfig.from_env(),
        data_root=tmp_path,
        opencellid_url_template=_OCID_URL,
        mozilla_url_template=_MLS_URL,
    )


def _client(payloads: dict[str, bytes]) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = payloads.get(request.url.host)
        if payload is None:
            return httpx.Response(404)
        return httpx.Response(
            200,
            headers={"Content-Length": str(len(payload))},
            stream=httpx.ByteStream(payload),
        )

    return httpx.Client(transport=httpx.MockTransport(handler))


def _staging_files(root: Path) -> list[Path]:
    return sorted(root.glob("lacells-staging-*"))


class _FakeResource:
    def __init__(self, name: str) -> None:
        self.name = name
        self.acquired = 0
        self.released = 0

    def acquire(self) -> None:
        self.acquired += 1

    def release(self) -> None:
        self.released += 1


class _FailingResource(_FakeResource):
    def acquire(self) -> None:
        raise RuntimeError("wake lock denied")


class _CancelAfterPolls(DownloadRun):
    def __init__(self, allowed_polls: int) -> None:
        super().__init__()
        self._allowed_polls = allowed_polls
        self._polls = 0

    def is_cancelled(self) -> bool:
        self._polls += 1
        return self._polls > self._allowed_polls


def test_orchestrator_publishes_database(tmp_path) -> None:
    """Successful run should publish an indexed database and log completion."""
    config = _config(tmp_path)
    run = DownloadRun()
    settings = DownloadSettings(use_mozilla=True)
    with _client({"mls.test": _gzip_csv(25)}) as client:
        result = DownloadOrchestrator(settings, config, run, client=client).run()

    with sqlite3.connect(config.new_database_path) as connection:
        count = connection.execute("SELECT COUNT(*) FROM cells").fetchone()[0]
        indexes = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }
    assert result.state == "completed" and run.state == "completed"
    assert result.published_path == config.new_database_path
    assert count == 25
    assert {"cells_cell_idx", "cells_position_idx"} <= indexes
    assert _staging_files(tmp_path) == []
    assert run.log_text().endswith("[info]  Finished\n")


def test_orchestrator_runs_providers_in_order(tmp_path) -> None:
    """Both providers should be ingested sequentially into one database."""
    config = _config(tmp_path)
    settings = DownloadSettings(use_opencellid=True, use_mozilla=True, opencellid_api_key="k")
    payloads = {"ocid.test": _gzip_csv(3), "mls.test": _gzip_csv(4, mcc=262)}
    with _client(payloads) as client:
        result = DownloadOrchestrator(
            settings,
            config,
            DownloadRun(),
            client=client,
            now=datetime(2024, 5, 10, 12, tzinfo=timezone.utc),
        ).run()

    assert [item.provider for item in result.providers] == ["opencellid", "mozilla"]
    assert [item.records_inserted for item in result.providers] == [3, 4]


def test_orchestrator_discards_on_missing_column(tmp_path) -> None:
    """A header missing 'area' should fail the run and keep the old database."""
    config = _config(tmp_path)
    config.new_database_path.write_bytes(b"previous database")
    run = DownloadRun()
    bad_header = _HEADER.replace("area,", "")
    with _client({"mls.test": _gzip_csv(5, header=bad_header)}) as client:
        with pytest.raises(TowerDbDecodeError):
            DownloadOrchestrator(DownloadSettings(), config, run, client=client).run()

    assert config.new_database_path.read_bytes() == b"previous database"
    assert _staging_files(tmp_path) == []
    assert run.state == "failed" and isinstance(run.error, TowerDbDecodeError)
    assert "[fail]  decode error:" in run.log_text()


def test_orchestrator_discards_on_cancel(tmp_path) -> None:
    """Cancelling mid-download should discard the staged database without error."""
    config = _config(tmp_path)
    config.new_database_path.write_bytes(b"previous database")
    run = _CancelAfterPolls(allowed_polls=501)
    with _client({"mls.test": _gzip_csv(2000)}) as client:
        result = DownloadOrchestrator(DownloadSettings(), config, run, client=client).run()

    assert result.state == "cancelled" and run.state == "cancelled"
    assert result.providers[0].records_read == 500
    assert config.new_database_path.read_bytes() == b"previous database"
    assert _staging_files(tmp_path) == []
    assert "Download cancelled, new database discarded" in run.log_text()


def test_orchestrator_releases_resources_on_failure(tmp_path) -> None:
    """Keep-alive resources should be released once even when the run fails."""
    config = _config(tmp_path)
    resources = [_FakeResource("wake"), _FakeResource("wifi")]
    with _client({}) as client:
        with pytest.raises(TowerDbNetworkError):
            DownloadOrchestrator(
                DownloadSettings(),
                config,
                DownloadRun(),
                client=client,
                resources=resources,
            ).run()

    assert [(item.acquired, item.released) for item in resources] == [(1, 1), (1, 1)]


def test_orchestrator_warns_about_unusable_filter(tmp_path) -> None:
    """A filter without valid codes should be logged as accepting everything."""
    config = _config(tmp_path)
    run = DownloadRun()
    settings = DownloadSettings(mcc_filters="abc,1000", mnc_filters="5")
    with _client({"mls.test": _gzip_csv(2)}) as client:
        DownloadOrchestrator(settings, config, run, client=client).run()

    log_text = run.log_text()
    assert "[warn]  MCC filter 'abc,1000' has no valid codes in 0-999, accepting all" in log_text
    assert "[info]  MCC filter: world" in log_text
    assert "[info]  MNC filter: 5" in log_text


def test_orchestrator_rejects_second_run_on_same_handle(tmp_path) -> None:
    """A run handle should not be reused after it finished."""
    config = _config(tmp_path)
    run = DownloadRun()
    with _client({"mls.test": _gzip_csv(1)}) as client:
        DownloadOrchestrator(DownloadSettings(), config, run, client=client).run()
        with pytest.raises(TowerDbStateError):
            DownloadOrchestrator(DownloadSettings(), config, run, client=client).run()

    assert run.state == "completed"


def test_orchestrator_logs_counts_when_stream_is_truncated(tmp_path) -> None:
    """A truncated export should leave the counts reached so far in the run log."""
    config = _config(tmp_path)
    run = DownloadRun()
    truncated = _gzip_csv(3000)[:-20]
    with _client({"mls.test": truncated}) as client:
        with pytest.raises(TowerDbDecodeError):
            DownloadOrchestrator(DownloadSettings(), config, run, client=client).run()

    log_text = run.log_text()
    match = re.search(
        r"\[fail\]  Ingest stopped: Records read (\d+), records inserted (\d+)", log_text
    )
    assert match is not None
    assert 0 < int(match.group(1)) < 3000
    assert match.group(1) == match.group(2)
    assert "[fail]  decode error:" in log_text
    assert _staging_files(tmp_path) == []


def test_orchestrator_logs_resource_acquisition_failure(tmp_path) -> None:
    """A resource that cannot be acquired should fail the run with a logged reason."""
    config = _config(tmp_path)
    run = DownloadRun()
    held = _FakeResource("wifi")
    with _client({"mls.test": _gzip_csv(1)}) as client:
        with pytest.raises(RuntimeError, match="wake lock denied"):
            DownloadOrchestrator(
                DownloadSettings(),
                config,
                run,
                client=client,
                resources=[held, _FailingResource("wake")],
            ).run()

    assert (held.acquired, held.released) == (1, 1)
    assert run.state == "failed"
    assert "[fail]  unexpected error: wake lock denied" in run.log_text()
    assert not config.new_database_path.exists()


def test_orchestrator_skips_remaining_providers_after_cancel(tmp_path) -> None:
    """Cancelling during the first provider should never fetch the second one."""
    config = _config(tmp_path)
    requested_hosts: list[str] = []
    payloads = {"ocid.test": _gzip_csv(2000), "mls.test": _gzip_csv(10)}

    def handler(request: httpx.Request) -> httpx.Response:
        requested_hosts.append(request.url.host)
        payload = payloads[request.url.host]
        return httpx.Response(
            200,
            headers={"Content-Length": str(len(payload))},
            stream=httpx.ByteStream(payload),
        )

    settings = DownloadSettings(use_opencellid=True, use_mozilla=True, opencellid_api_key="k")
    run = _CancelAfterPolls(allowed_polls=101)
    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = DownloadOrchestrator(settings, config, run, client=client).run()

    assert requested_hosts == ["ocid.test"]
    assert result.state == "cancelled"
    assert [(item.provider, item.records_read) for item in result.providers] == [
        ("opencellid", 100)
    ]
    assert "Getting data from Mozilla" not in run.log_text()
    assert not config.new_database_path.exists()

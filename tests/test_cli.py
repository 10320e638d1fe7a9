"""Tests for osget.cli module."""

from __future__ import annotations

import json
import subprocess
from unittest.mock import patch

import pytest

from osget import cli
from osget.exceptions import DownloadFailed


@pytest.fixture(autouse=True)
def isolated_env(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("OSGET_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("VENDOR_COOLDOWN", "0")


class TestList:
    def test_lists_entries(self, catalog_file, capsys):
        assert cli.main(["--catalog", str(catalog_file), "list"]) == 0
        out = capsys.readouterr().out
        assert "ubuntu" in out
        assert "Ubuntu  (2 releases)" in out
        assert "windows" in out

    def test_arch_filter_with_alias(self, catalog_file, capsys):
        with patch("osget.cli.log") as mock_log:
            assert cli.main(["--catalog", str(catalog_file), "list", "--arch", "arm64"]) == 0
        out = capsys.readouterr().out
        assert "Ubuntu  (1 release)" in out
        assert "windows" not in out
        mock_log.assert_called_once_with("INFO", "Showing operating systems for arch: aarch64")

    def test_catalog_from_environment(self, catalog_file, monkeypatch, capsys):
        monkeypatch.setenv("OSGET_CATALOG", str(catalog_file))
        assert cli.main(["list"]) == 0
        assert "vendoros" in capsys.readouterr().out

    def test_missing_catalog(self, tmp_path):
        with patch("osget.cli.log") as mock_log:
            assert cli.main(["--catalog", str(tmp_path / "nope.json"), "list"]) == 1
        level, message = mock_log.call_args[0]
        assert level == "ERROR"
        assert "Catalog file missing" in message


class TestShow:
    def test_show(self, catalog_file, capsys):
        assert cli.main(["--catalog", str(catalog_file), "show", "windows"]) == 0
        out = capsys.readouterr().out
        assert "dev-build Arabic x86_64" in out
        assert "iso: custom" in out

    def test_unknown(self, catalog_file):
        assert cli.main(["--catalog", str(catalog_file), "show", "haiku"]) == 1


class TestBuild:
    def test_unknown_os_exits_1(self, catalog_file):
        with patch("osget.cli.log") as mock_log:
            assert cli.main(["--catalog", str(catalog_file), "build", "haiku"]) == 1
        assert mock_log.call_args[0][0] == "ERROR"
        assert "UnknownOS" in mock_log.call_args[0][1]

    def test_prints_path(self, catalog_file, tmp_path, capsys):
        with patch("osget.orchestrator.Orchestrator.build", return_value=tmp_path / "x.iso") as mock_build:
            assert cli.main(["--catalog", str(catalog_file), "build", "ubuntu", "--release", "22.04", "--arch", "amd64"]) == 0
        assert str(tmp_path / "x.iso") in capsys.readouterr().out
        os_id, selector = mock_build.call_args[0]
        assert os_id == "ubuntu"
        assert selector.release == "22.04"
        assert selector.arch == "amd64"

    def test_transient_failure(self, catalog_file):
        with patch("osget.orchestrator.Orchestrator.build", side_effect=DownloadFailed("mirror down")):
            assert cli.main(["--catalog", str(catalog_file), "build", "ubuntu"]) == 1

    def test_unexpected_error(self, catalog_file, capsys):
        with patch("osget.orchestrator.Orchestrator.build", side_effect=KeyError("boom")):
            assert cli.main(["--catalog", str(catalog_file), "build", "ubuntu"]) == 1
        assert "Traceback" in capsys.readouterr().err


class TestValidate:
    def test_valid(self, catalog_file):
        assert cli.main(["validate", str(catalog_file)]) == 0

    def test_invalid(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([{"os": "x", "prettyName": "X", "releases": [{"release": "1"}]}]))
        assert cli.main(["validate", str(path)]) == 1

    def test_unreachable_urls(self, catalog_file):
        with patch("osget.cli.url_errors", return_value=["[ubuntu] 22.04 x86_64 HTTP 404"]):
            assert cli.main(["validate", str(catalog_file), "--check-urls"]) == 1


class TestPublish:
    def test_writes_files(self, catalog_file, tmp_path):
        out = tmp_path / "site"
        assert cli.main(["publish", str(catalog_file), "--output-dir", str(out), "--name", "os"]) == 0
        assert (out / "os.json").exists()
        assert (out / "os.json.gz").exists()
        assert (out / "os.json.zst").exists()


class TestDriver:
    def test_unknown_family(self):
        with patch("osget.cli.log") as mock_log:
            assert cli.main(["driver", "beos"]) == 1
        assert "Available: elementary, windows" in mock_log.call_args[0][1]

    def test_missing_parameters(self):
        assert cli.main(["driver", "elementary"]) == 1

    def test_unsupported_parameter_exits_1(self, tmp_path):
        assert (
            cli.main(
                ["driver", "windows", "--arch", "x86_64", "--release", "dev", "--edition", "Klingon", "--output", str(tmp_path)]
            )
            == 1
        )

    def test_parameters_from_environment(self, tmp_path, monkeypatch):
        build_dir = tmp_path / "os"
        build_dir.mkdir()
        (build_dir / "build.sh").write_text("#!/bin/sh\n")
        output = tmp_path / "output"
        output.mkdir()
        monkeypatch.setenv("ELEMENTARY_BUILD_DIR", str(build_dir))
        monkeypatch.setenv("ARCH", "x86_64")
        monkeypatch.setenv("RELEASE", "8-daily")
        monkeypatch.setenv("OUTPUT_DIR", str(output))

        def _run(cmd, check=True, cwd=None, **kwargs):
            (cwd / "builds" / "amd64").mkdir(parents=True)
            (cwd / "builds" / "amd64" / "daily.iso").write_bytes(b"iso")
            return subprocess.CompletedProcess(cmd, 0)

        with patch("osget.drivers.base.run", side_effect=_run):
            assert cli.main(["driver", "elementary"]) == 0
        assert (output / "elementary-8-daily.iso").exists()

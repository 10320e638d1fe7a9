"""Tests for osget.resolver and osget.download modules."""

from __future__ import annotations

import hashlib
import lzma

import pytest
import requests
import responses
from responses import matchers

from osget.download import download_file, fetch_text
from osget.exceptions import (
    ArchiveError,
    ChecksumMismatch,
    DownloadFailed,
    ManualResolutionRequired,
    MissingLocalFile,
)
from osget.models import Artifact, CustomSource, FileSource, WebSource
from osget.resolver import Resolver

URL = "https://mirror.example.com/images/os.iso"
BODY = b"0123456789" * 50


def sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@pytest.fixture
def resolver():
    return Resolver(progress=False)


class TestDownloadFile:
    @responses.activate
    def test_fresh_download(self, tmp_path):
        responses.add(responses.GET, URL, body=BODY)
        partial = tmp_path / "os.iso.part"
        assert download_file(URL, partial, progress=False) == partial
        assert partial.read_bytes() == BODY
        assert "Range" not in responses.calls[0].request.headers

    @responses.activate
    def test_resume_appends_on_206(self, tmp_path):
        partial = tmp_path / "os.iso.part"
        partial.write_bytes(BODY[:100])
        responses.add(
            responses.GET,
            URL,
            body=BODY[100:],
            status=206,
            match=[matchers.header_matcher({"Range": "bytes=100-"})],
        )
        download_file(URL, partial, progress=False)
        assert partial.read_bytes() == BODY

    @responses.activate
    def test_restart_on_200(self, tmp_path):
        partial = tmp_path / "os.iso.part"
        partial.write_bytes(b"stale bytes")
        responses.add(responses.GET, URL, body=BODY, status=200)
        download_file(URL, partial, progress=False)
        assert partial.read_bytes() == BODY

    @responses.activate
    def test_416_means_complete(self, tmp_path):
        partial = tmp_path / "os.iso.part"
        partial.write_bytes(BODY)
        responses.add(responses.GET, URL, status=416)
        download_file(URL, partial, progress=False)
        assert partial.read_bytes() == BODY

    @responses.activate
    def test_http_error(self, tmp_path):
        responses.add(responses.GET, URL, status=404)
        with pytest.raises(DownloadFailed, match="404") as excinfo:
            download_file(URL, tmp_path / "os.iso.part", progress=False)
        assert excinfo.value.transient

    @responses.activate
    def test_connection_error_keeps_partial(self, tmp_path):
        partial = tmp_path / "os.iso.part"
        partial.write_bytes(BODY[:10])
        responses.add(responses.GET, URL, body=requests.ConnectionError("reset"))
        with pytest.raises(DownloadFailed):
            download_file(URL, partial, progress=False)
        assert partial.read_bytes() == BODY[:10]

    @responses.activate
    def test_fetch_text(self):
        responses.add(responses.GET, "https://api.example.com/page", body="hello")
        assert fetch_text("https://api.example.com/page") == "hello"
        assert responses.calls[0].request.headers["User-Agent"].startswith("osget/")


class TestResolveWeb:
    @responses.activate
    def test_checksum_verified(self, tmp_path, resolver):
        responses.add(responses.GET, URL, body=BODY)
        path = resolver.resolve(WebSource(url=URL, checksum=sha256(BODY)), tmp_path)
        assert path == tmp_path / "os.iso"
        assert path.read_bytes() == BODY
        assert not (tmp_path / "os.iso.part").exists()

    @responses.activate
    def test_checksum_mismatch_leaves_no_file(self, tmp_path, resolver):
        responses.add(responses.GET, URL, body=b"tampered")
        with pytest.raises(ChecksumMismatch) as excinfo:
            resolver.resolve(WebSource(url=URL, checksum=sha256(BODY)), tmp_path)
        assert list(tmp_path.iterdir()) == []
        assert excinfo.value.artifact == "os.iso"
        assert not excinfo.value.transient

    @responses.activate
    def test_file_name_overrides_url_name(self, tmp_path, resolver):
        responses.add(responses.GET, URL, body=BODY)
        path = resolver.resolve(WebSource(url=URL, file_name="ubuntu.iso"), tmp_path)
        assert path == tmp_path / "ubuntu.iso"

    @responses.activate
    def test_same_bytes_in_two_directories(self, tmp_path, resolver):
        responses.add(responses.GET, URL, body=BODY)
        source = WebSource(url=URL, checksum=sha256(BODY))
        first = resolver.resolve(source, tmp_path / "a")
        second = resolver.resolve(source, tmp_path / "b")
        assert first.read_bytes() == second.read_bytes() == BODY

    @responses.activate
    def test_cached_file_reused(self, tmp_path, resolver):
        (tmp_path / "os.iso").write_bytes(BODY)
        path = resolver.resolve(WebSource(url=URL, checksum=sha256(BODY)), tmp_path)
        assert path.read_bytes() == BODY
        assert len(responses.calls) == 0

    @responses.activate
    def test_bad_cached_file_refetched(self, tmp_path, resolver):
        (tmp_path / "os.iso").write_bytes(b"corrupted")
        responses.add(responses.GET, URL, body=BODY)
        path = resolver.resolve(WebSource(url=URL, checksum=sha256(BODY)), tmp_path)
        assert path.read_bytes() == BODY
        assert len(responses.calls) == 1

    @responses.activate
    def test_archive_extracted(self, tmp_path, resolver):
        archive_url = "https://mirror.example.com/images/disk.raw.xz"
        packed = lzma.compress(BODY)
        responses.add(responses.GET, archive_url, body=packed)
        source = WebSource(url=archive_url, checksum=sha256(packed), archive_format="xz", file_name="disk.raw")
        path = resolver.resolve_artifact(Artifact(source, size_bytes=len(BODY)), tmp_path)
        assert path == tmp_path / "disk.raw"
        assert path.read_bytes() == BODY
        assert not (tmp_path / "disk.raw.xz").exists()

    @responses.activate
    def test_corrupt_archive(self, tmp_path, resolver):
        archive_url = "https://mirror.example.com/images/disk.raw.xz"
        responses.add(responses.GET, archive_url, body=b"not xz at all")
        with pytest.raises(ArchiveError) as excinfo:
            resolver.resolve(WebSource(url=archive_url, archive_format="xz"), tmp_path)
        assert excinfo.value.artifact == "disk.raw.xz"
        assert list(tmp_path.iterdir()) == []


class TestResolveOther:
    @responses.activate
    def test_custom_requires_manual_resolution(self, tmp_path, resolver):
        dest = tmp_path / "dest"
        with pytest.raises(ManualResolutionRequired):
            resolver.resolve(CustomSource(), dest)
        assert not dest.exists()
        assert len(responses.calls) == 0

    def test_file_present(self, tmp_path, resolver):
        (tmp_path / "vendor.img").write_bytes(BODY)
        assert resolver.resolve(FileSource("vendor.img"), tmp_path) == tmp_path / "vendor.img"

    def test_file_missing(self, tmp_path, resolver):
        with pytest.raises(MissingLocalFile) as excinfo:
            resolver.resolve(FileSource("vendor.img"), tmp_path)
        assert excinfo.value.artifact == "vendor.img"

    def test_file_checksum_checked_but_kept(self, tmp_path, resolver):
        (tmp_path / "vendor.img").write_bytes(b"other")
        with pytest.raises(ChecksumMismatch):
            resolver.resolve_file(FileSource("vendor.img"), tmp_path, checksum=sha256(BODY))
        assert (tmp_path / "vendor.img").exists()

    def test_unknown_variant(self, tmp_path, resolver):
        with pytest.raises(TypeError):
            resolver.resolve("https://example.com/x.iso", tmp_path)

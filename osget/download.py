"""HTTP transfers for osget: resumable file downloads and page fetches."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import requests

from osget.constants import DOWNLOAD_CHUNK_SIZE, USER_AGENT
from osget.exceptions import DownloadFailed
from osget.utils import format_size, log


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


def fetch_text(url: str, session: Optional[requests.Session] = None, timeout: float = 60) -> str:
    """GET a page and return its body; raises ``DownloadFailed`` on any failure."""
    owned = session is None
    session = session or new_session()
    try:
        response = session.get(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as exc:
        raise DownloadFailed(f"Failed to fetch {url}: {exc}") from exc
    finally:
        if owned:
            session.close()
    if response.status_code >= 400:
        raise DownloadFailed(f"HTTP error fetching {url}: {response.status_code} {response.reason}")
    return response.text


def download_file(
    url: str,
    partial: Path,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 60,
    expected_size: Optional[int] = None,
    label: str = "Downloading",
    progress: bool = True,
) -> Path:
    """Stream ``url`` into ``partial``, continuing an existing partial file.

    A leftover ``partial`` from an interrupted run is resumed with a Range
    request. The server answering 200 instead of 206 restarts the transfer;
    416 means the partial file already holds the whole body. The partial file
    is kept on transport errors so the next invocation can continue it.
    """
    owned = session is None
    session = session or new_session()
    offset = partial.stat().st_size if partial.exists() else 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    log("INFO", f"{label}: {url}")
    try:
        try:
            response = session.get(url, headers=headers, stream=True, timeout=timeout, allow_redirects=True)
        except requests.RequestException as exc:
            raise DownloadFailed(f"Failed to download {url}: {exc}") from exc

        with response:
            if offset and response.status_code == 416:
                log("INFO", f"Partial download {partial.name} already complete ({format_size(offset)})")
                return partial
            if response.status_code >= 400:
                raise DownloadFailed(f"HTTP error downloading {url}: {response.status_code} {response.reason}")

            if offset and response.status_code == 206:
                log("INFO", f"Resuming {partial.name} at {format_size(offset)}")
                mode = "ab"
            else:
                offset = 0
                mode = "wb"

            length = response.headers.get("Content-Length")
            total_bytes = int(length) + offset if length and length.isdigit() else expected_size
            _stream_to_file(response, partial, mode, offset, total_bytes, progress, url)
    finally:
        if owned:
            session.close()
    return partial


def _stream_to_file(
    response: requests.Response,
    partial: Path,
    mode: str,
    offset: int,
    total_bytes: Optional[int],
    progress: bool,
    url: str,
) -> None:
    downloaded = offset
    start_time = time.time()
    try:
        with open(partial, mode) as f:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                downloaded += len(chunk)
                if progress:
                    _print_progress(downloaded, offset, total_bytes, start_time)
    except requests.RequestException as exc:
        if progress:
            print(flush=True)
        raise DownloadFailed(f"Transfer of {url} interrupted after {format_size(downloaded)}: {exc}") from exc
    if progress:
        print(flush=True)  # newline after progress
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {format_size(downloaded - offset)} in {elapsed:.1f}s")


def _print_progress(downloaded: int, offset: int, total_bytes: Optional[int], start_time: float) -> None:
    elapsed = time.time() - start_time
    speed = (downloaded - offset) / elapsed if elapsed > 0 else 0
    downloaded_mb = downloaded / (1024 * 1024)
    if total_bytes:
        total_mb = total_bytes / (1024 * 1024)
        pct = min(downloaded * 100 / total_bytes, 100.0)
        remaining = max(total_bytes - downloaded, 0) / speed if speed > 0 else 0
        eta_str = time.strftime("%M:%S", time.gmtime(remaining))
        bar_len = 30
        filled = min(int(bar_len * downloaded / total_bytes), bar_len)
        bar = "#" * filled + "-" * (bar_len - filled)
        print(
            f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
            f"({speed / (1024 * 1024):.1f} MiB/s, ETA {eta_str})",
            end="", flush=True,
        )
    else:
        print(
            f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)",
            end="", flush=True,
        )

"""Windows images assembled from UUP dump update packages."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional

import requests

from osget.download import fetch_text
from osget.drivers.base import (
    BuildDriver,
    DownloadItem,
    DriverParameters,
    SourcePlan,
    register_driver,
)
from osget.exceptions import DownloadFailed, SourceNotFound
from osget.utils import log, normalize_arch

UUPDUMP_URL = "https://uupdump.net"

UUP_ARCHES = {
    "x86_64": "amd64",
    "aarch64": "arm64",
}

UUP_RINGS = {
    "retail": "retail",
    "release_preview": "rp",
    "beta": "wis",
    "dev": "wif",
    "canary": "canary",
}

UUP_LANGUAGES = {
    "Arabic": "ar-sa",
    "Brazilian Portuguese": "pt-br",
    "Bulgarian": "bg-bg",
    "Chinese (Simplified)": "zh-cn",
    "Chinese (Traditional)": "zh-tw",
    "Croatian": "hr-hr",
    "Czech": "cs-cz",
    "Danish": "da-dk",
    "Dutch": "nl-nl",
    "English International": "en-gb",
    "English (United States)": "en-us",
    "Estonian": "et-ee",
    "Finnish": "fi-fi",
    "French": "fr-fr",
    "French Canadian": "fr-ca",
    "German": "de-de",
    "Greek": "el-gr",
    "Hebrew": "he-il",
    "Hungarian": "hu-hu",
    "Italian": "it-it",
    "Japanese": "ja-jp",
    "Korean": "ko-kr",
    "Latvian": "lv-lv",
    "Lithuanian": "lt-lt",
    "Norwegian": "nb-no",
    "Polish": "pl-pl",
    "Portuguese": "pt-pt",
    "Romanian": "ro-ro",
    "Russian": "ru-ru",
    "Serbian Latin": "sr-latn-rs",
    "Slovak": "sk-sk",
    "Slovenian": "sl-si",
    "Spanish": "es-es",
    "Spanish (Mexico)": "es-mx",
    "Swedish": "sv-se",
    "Thai": "th-th",
    "Turkish": "tr-tr",
    "Ukrainian": "uk-ua",
}

UUP_EDITIONS = "core;professional"

_UPDATE_ID_RE = re.compile(r"<code>([0-9a-f-]{36})</code")
_BUILD_MARKERS = (", version", "Insider Preview")


def find_update_id(html: str) -> Optional[str]:
    """Pick the newest build's update id out of a ``fetchupd.php`` page.

    The JSON flavour of fetchupd is unreliable, so the HTML listing is
    scraped: rows mentioning cumulative "update" packages are skipped, and
    the id is taken from the few lines following a build title.
    """
    lines = [line for line in html.splitlines() if "update" not in line.lower()]
    for index, line in enumerate(lines):
        if not any(marker in line for marker in _BUILD_MARKERS):
            continue
        for candidate in lines[index : index + 8]:
            match = _UPDATE_ID_RE.search(candidate)
            if match:
                return match.group(1)
    return None


def parse_aria2_script(text: str) -> List[DownloadItem]:
    """Read an aria2 input file: a URL line followed by indented options."""
    items: List[DownloadItem] = []
    url: Optional[str] = None
    options: Dict[str, str] = {}

    def flush() -> None:
        if url is None:
            return
        name = Path(options.get("out") or url.split("?", 1)[0].rsplit("/", 1)[-1]).name
        checksum = options.get("checksum")
        if checksum and "=" in checksum:
            algo, digest = checksum.split("=", 1)
            checksum = f"{algo}:{digest}"
        items.append(DownloadItem(url=url, file_name=name, checksum=checksum or None))

    for raw in text.splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        if raw[0].isspace():
            key, _, value = raw.strip().partition("=")
            options[key] = value
            continue
        flush()
        url = raw.strip()
        options = {}
    flush()
    return items


@register_driver
class WindowsUUPDriver(BuildDriver):
    family = "windows"
    workspace_excludes = ("UUPs", "*.ISO", "*.iso")

    def __init__(self, settings, *, session: Optional[requests.Session] = None, **kwargs) -> None:
        super().__init__(settings, **kwargs)
        self.session = session

    @property
    def tooling_dir(self) -> Optional[Path]:
        return self.settings.uup_converter_dir

    def download_dir(self) -> Path:
        return self.work_dir / "UUPs"

    def resolve_parameters(self, params: DriverParameters) -> Dict[str, str]:
        arch = UUP_ARCHES.get(normalize_arch(params.arch))
        if arch is None:
            raise self._unsupported("architecture", params.arch, UUP_ARCHES)
        ring = UUP_RINGS.get(params.release_name)
        if ring is None:
            raise self._unsupported("release", params.release, UUP_RINGS)
        lang = UUP_LANGUAGES.get(params.edition or "")
        if lang is None:
            raise self._unsupported("language", params.edition, UUP_LANGUAGES)
        return {"arch": arch, "ring": ring, "lang": lang}

    def identify_source(self, tokens: Dict[str, str]) -> Optional[SourcePlan]:
        fetch_url = f"{UUPDUMP_URL}/fetchupd.php?arch={tokens['arch']}&ring={tokens['ring']}"
        try:
            page = self._get(fetch_url)
        except DownloadFailed as exc:
            raise SourceNotFound(f"Failed to fetch update ID: {exc.message}") from exc
        update_id = find_update_id(page)
        if not update_id:
            raise SourceNotFound(f"Failed to fetch update ID for {tokens['arch']}/{tokens['ring']}")
        log("INFO", f"Found update ID: {update_id}")

        self.cooldown.wait("requesting the UUP file list")

        script_url = (
            f"{UUPDUMP_URL}/get.php?id={update_id}&pack={tokens['lang']}"
            f"&edition={UUP_EDITIONS}&aria2=2"
        )
        try:
            script = self._get(script_url)
        except DownloadFailed as exc:
            raise SourceNotFound(f"Failed to fetch UUP file list for {update_id}: {exc.message}") from exc
        for line in script.splitlines():
            if line.startswith("#UUPDUMP_ERROR"):
                raise SourceNotFound(f"uupdump refused the file list for {update_id}: {line.partition(':')[2]}")
        items = parse_aria2_script(script)
        if not items:
            raise SourceNotFound(f"UUP file list for {update_id} is empty")
        return SourcePlan(source_id=update_id, items=items)

    def assemble_command(self, tokens: Dict[str, str]) -> List[str]:
        return ["./convert.sh"]

    def locate_output(self) -> Optional[Path]:
        for pattern in ("*.ISO", "*.iso"):
            found = sorted(self.work_dir.glob(pattern))
            if found:
                return found[0]
        return None

    def _get(self, url: str) -> str:
        return fetch_text(url, session=self.session, timeout=self.settings.download_timeout)

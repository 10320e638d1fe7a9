"""Shared test fixtures for osget."""

from __future__ import annotations

import hashlib
import json

import pytest

from osget.config import Settings
from osget.drivers import CooldownPolicy

UBUNTU_ISO = b"ubuntu 22.04 live server image"
UBUNTU_URL = "https://releases.example.com/22.04/ubuntu-22.04-live-server-amd64.iso"


def sha256_of(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@pytest.fixture
def ubuntu_image():
    """URL and bytes of the ubuntu 22.04 ISO listed in the sample catalog."""
    return UBUNTU_URL, UBUNTU_ISO


@pytest.fixture
def sample_catalog_data() -> list:
    """A small catalog in wire format covering every source kind."""
    return [
        {
            "os": "ubuntu",
            "prettyName": "Ubuntu",
            "homepage": "https://ubuntu.com/",
            "releases": [
                {
                    "release": "22.04",
                    "iso": [{"source": {"web": {"url": UBUNTU_URL, "checksum": sha256_of(UBUNTU_ISO)}}}],
                },
                {
                    "release": "20.04",
                    "arch": "aarch64",
                    "img": [{"source": {"web": {"url": "https://releases.example.com/20.04/arm.img"}}}],
                },
            ],
        },
        {
            "os": "windows",
            "prettyName": "Windows",
            "releases": [
                {"release": "dev-build", "edition": "Arabic", "guestOS": "windows", "iso": [{"source": "custom"}]},
            ],
        },
        {
            "os": "vendoros",
            "prettyName": "Vendor OS",
            "releases": [{"release": "1.0", "img": [{"source": {"file": {"fileName": "vendor.img"}}}]}],
        },
    ]


@pytest.fixture
def catalog_file(tmp_path, sample_catalog_data):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(sample_catalog_data))
    return path


@pytest.fixture
def settings(tmp_path, catalog_file) -> Settings:
    """Settings rooted entirely under ``tmp_path``, with one download worker."""
    output = tmp_path / "output"
    output.mkdir()
    return Settings(
        catalog_path=catalog_file,
        work_dir=tmp_path / "work",
        output_dir=output,
        download_workers=1,
        download_timeout=5,
        vendor_cooldown=0,
        uup_converter_dir=tmp_path / "uup",
        elementary_build_dir=tmp_path / "elementary",
    )


@pytest.fixture
def no_cooldown() -> CooldownPolicy:
    return CooldownPolicy(delay=0)


_SETTINGS_ENV_VARS = [
    "OSGET_CATALOG",
    "OSGET_WORK_DIR",
    "OUTPUT_DIR",
    "DOWNLOAD_WORKERS",
    "DOWNLOAD_TIMEOUT",
    "VENDOR_COOLDOWN",
    "UUP_CONVERTER_DIR",
    "ELEMENTARY_BUILD_DIR",
    "ARCH",
    "RELEASE",
    "EDITION",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Clear every environment variable osget reads."""
    for key in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(key, raising=False)

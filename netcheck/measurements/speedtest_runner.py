"""Ookla speedtest CLI runner: binary management, server listing and test runs."""

from __future__ import annotations

import io
import logging
import os
import platform
import shutil
import subprocess
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import requests

from ..config import AppConfig
from .models import SpeedResult
from .parsers import extract_json_document, parse_server_list, parse_speedtest_payload

LOGGER = logging.getLogger(__name__)

BASE_FLAGS = ["--format=json", "--progress=no", "--accept-license", "--accept-gdpr"]

# Executable name inside each release archive type.
ARCHIVE_MEMBERS = {".zip": "speedtest.exe", ".tgz": "speedtest"}


def ookla_binary_path(config: AppConfig) -> Path:
    name = config.ookla.binary_name
    if platform.system() == "Windows" and not name.endswith(".exe"):
        name += ".exe"
    return config.paths.bin_dir / name


def _archive_kind(url: str) -> str:
    for suffix in ARCHIVE_MEMBERS:
        if url.endswith(suffix):
            return suffix
    raise RuntimeError(f"Unsupported Ookla release archive: {url}")


def extract_binary(payload: bytes, kind: str) -> bytes:
    """Return the speedtest executable from a downloaded ``.zip`` or ``.tgz``."""
    wanted = ARCHIVE_MEMBERS[kind]
    buffer = io.BytesIO(payload)
    if kind == ".zip":
        with zipfile.ZipFile(buffer) as archive:
            name = next((n for n in archive.namelist() if PurePosixPath(n).name == wanted), None)
            if name is not None:
                return archive.read(name)
    else:
        with tarfile.open(fileobj=buffer, mode="r:gz") as archive:
            for member in archive.getmembers():
                if member.isfile() and PurePosixPath(member.name).name == wanted:
                    return archive.extractfile(member).read()
    raise RuntimeError(f"{wanted} not found in the Ookla release archive")


def download_ookla_binary(config: AppConfig) -> Path:
    """Fetch the release for this platform and swap it into ``bin/``.

    The new executable is staged next to the old one and moved over it in one
    step, so a failed download leaves the installed binary untouched.
    """
    platform_key = config.ookla_platform_key
    url = config.ookla.urls.get(platform_key)
    if not url:
        raise ValueError(
            f"No Ookla download URL configured for {platform_key} (have: {', '.join(config.ookla.urls) or 'none'})"
        )

    LOGGER.info("Downloading Ookla CLI for %s from %s", platform_key, url)
    response = requests.get(url, timeout=120)
    response.raise_for_status()
    executable = extract_binary(response.content, _archive_kind(url))

    destination = ookla_binary_path(config)
    destination.parent.mkdir(parents=True, exist_ok=True)
    staging = destination.with_name(destination.name + ".part")
    staging.write_bytes(executable)
    staging.chmod(0o755)
    os.replace(staging, destination)
    LOGGER.info("Ookla CLI installed at %s", destination)
    return destination


def ensure_ookla_binary(config: AppConfig) -> Path:
    """Locate the speedtest CLI: ``bin/`` first, then ``PATH``, then a download."""
    binary_path = ookla_binary_path(config)
    if binary_path.exists():
        return binary_path

    on_path = shutil.which(config.ookla.binary_name)
    if on_path:
        LOGGER.debug("Using speedtest binary from PATH: %s", on_path)
        return Path(on_path)

    if not config.ookla.auto_download:
        raise FileNotFoundError(
            f"speedtest not found in {binary_path.parent} or on PATH and ookla.auto_download is off"
        )
    return download_ookla_binary(config)


def _invoke(command: List[str], timeout: int) -> str:
    LOGGER.debug("Running speedtest command: %s", " ".join(command))
    completed = subprocess.run(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        timeout=timeout,
        check=False,
    )
    if completed.returncode != 0:
        raise RuntimeError(
            f"speedtest exited with status {completed.returncode}: {(completed.stdout or '').strip()}"
        )
    return completed.stdout or ""


def list_servers(config: AppConfig, binary_path: Path) -> List[Dict[str, Any]]:
    command = [str(binary_path), "--servers", *BASE_FLAGS]
    output = _invoke(command, config.speedtest.timeout_seconds)
    return parse_server_list(extract_json_document(output))


def select_nearest_servers(servers: List[Dict[str, Any]], count: int = 3) -> List[str]:
    """Ids of the ``count`` servers with the smallest reported distance."""

    def _distance(entry: Dict[str, Any]) -> float:
        try:
            return float(entry.get("distance"))
        except (TypeError, ValueError):
            return float("inf")

    ranked = sorted(servers, key=_distance)
    return [str(entry["id"]) for entry in ranked[:count]]


def run_speedtest(config: AppConfig, binary_path: Path, server_id: Optional[str] = None) -> SpeedResult:
    command = [str(binary_path), *BASE_FLAGS]
    if server_id:
        command += ["--server-id", str(server_id)]
    if config.speedtest.extra_args:
        command += list(config.speedtest.extra_args)

    output = _invoke(command, config.speedtest.timeout_seconds)
    data = extract_json_document(output)
    if not isinstance(data, dict):
        raise ValueError("speedtest output is not a JSON object")
    if data.get("type") == "log" and data.get("level") == "error":
        raise RuntimeError(f"speedtest reported an error: {data.get('message')}")
    return parse_speedtest_payload(data)

import logging
import stat
import tarfile
import tempfile
import zipfile
from pathlib import Path

import requests

log = logging.getLogger(__name__)

BINARIES = ("ffmpeg", "ffprobe")
CHUNK_SIZE = 1024 * 1024


class FetchError(Exception):
    pass


def download(url: str, dest: Path, timeout: int = 60) -> Path:
    log.info("Downloading %s", url)
    try:
        with requests.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
    except requests.RequestException as e:
        raise FetchError(f"Download failed: {e}") from e
    return dest


def extract_binaries(archive: Path, tools_dir: Path) -> list[Path]:
    tools_dir.mkdir(parents=True, exist_ok=True)
    written = []

    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for name in zf.namelist():
                target = _binary_name(name)
                if target:
                    dest = tools_dir / target
                    dest.write_bytes(zf.read(name))
                    written.append(dest)
    elif tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            for member in tf.getmembers():
                target = _binary_name(member.name)
                if target and member.isfile():
                    src = tf.extractfile(member)
                    if src is None:
                        continue
                    dest = tools_dir / target
                    dest.write_bytes(src.read())
                    written.append(dest)
    else:
        raise FetchError(f"Unsupported archive format: {archive.name}")

    if not written:
        raise FetchError(f"No ffmpeg/ffprobe binaries found in {archive.name}")

    for path in written:
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        log.info("Installed %s", path)
    return written


def fetch_ffmpeg(url: str, tools_dir: Path) -> list[Path]:
    with tempfile.TemporaryDirectory() as tmp_dir:
        archive = download(url, Path(tmp_dir) / "ffmpeg-archive")
        return extract_binaries(archive, tools_dir)


def _binary_name(member: str) -> str | None:
    name = member.replace("\\", "/").rsplit("/", 1)[-1]
    for binary in BINARIES:
        if name in (binary, f"{binary}.exe"):
            return name
    return None

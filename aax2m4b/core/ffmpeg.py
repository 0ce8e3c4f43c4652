import json
import logging
import subprocess
from pathlib import Path

log = logging.getLogger(__name__)


class FFmpegError(Exception):
    pass


class ProbeError(FFmpegError):
    pass


def run_ffmpeg(cmd: list[str]):
    log.debug("Running: %s", " ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise FFmpegError(f"ffmpeg error: {result.stderr}")


def probe(ffprobe: str, path: str, decryption_args: list[str] | None = None) -> dict:
    cmd = [
        ffprobe, "-v", "quiet", "-print_format", "json",
        "-show_format", "-show_chapters",
        *(decryption_args or []),
        path,
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed for {path}: {result.stderr}")
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid JSON for {path}: {e}") from e
    if not isinstance(data, dict):
        raise ProbeError(f"ffprobe returned unexpected output for {path}")
    return data


def check_integrity(ffprobe: str, path: str) -> bool:
    """Shallow check that the container's metadata can be read at all."""
    p = Path(path)
    if not p.exists() or p.stat().st_size == 0:
        return False
    try:
        result = subprocess.run(
            [ffprobe, "-v", "error", "-print_format", "json", "-show_format", path],
            capture_output=True,
            text=True,
        )
    except OSError:
        log.exception("Could not run ffprobe on %s", path)
        return False
    if result.returncode != 0:
        log.warning("Integrity check failed for %s: %s", path, result.stderr.strip())
        return False
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return False
    return "format" in data

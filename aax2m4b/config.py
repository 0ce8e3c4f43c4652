import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

DEFAULTS = {
    "input_path": ".",
    "output_path": "./audiobooks",
    "activation_bytes": "",
    "bitrate": "64",
    "log_level": "info",
    "clobber": "false",
    "recursive": "true",
    "loop_interval": "300",
    "ffmpeg_path": "ffmpeg",
    "ffprobe_path": "ffprobe",
    "tools_dir": "./tools",
    "ffmpeg_download_url": "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz",
    "split_mp3": "false",
}

ENV_MAP = {
    "input_path": "AAX2M4B_INPUT",
    "output_path": "AAX2M4B_OUTPUT",
    "activation_bytes": "AAX2M4B_ACTIVATION_BYTES",
    "bitrate": "AAX2M4B_BITRATE",
    "log_level": "AAX2M4B_LOG_LEVEL",
    "clobber": "AAX2M4B_CLOBBER",
    "recursive": "AAX2M4B_RECURSIVE",
    "loop_interval": "AAX2M4B_LOOP_INTERVAL",
    "ffmpeg_path": "FFMPEG_PATH",
    "ffprobe_path": "FFPROBE_PATH",
    "tools_dir": "AAX2M4B_TOOLS_DIR",
    "ffmpeg_download_url": "FFMPEG_DOWNLOAD_URL",
    "split_mp3": "AAX2M4B_SPLIT_MP3",
}

TRUE_VALUES = ("true", "1", "yes", "on")


class ConfigError(Exception):
    pass


@dataclass
class Settings:
    input_path: str = ""
    output_path: str = ""
    activation_bytes: str = ""
    bitrate: str = ""
    log_level: str = ""
    clobber: str = ""
    recursive: str = ""
    loop_interval: str = ""
    ffmpeg_path: str = ""
    ffprobe_path: str = ""
    tools_dir: str = ""
    ffmpeg_download_url: str = ""
    split_mp3: str = ""

    max_authors_before_various: int = 4
    default_aac_bitrate: str = "64k"
    source_extensions: tuple[str, ...] = (".aax", ".aaxc")
    source_marker: str = "-AAX"
    chapter_suffix: str = "-chapters.json"
    voucher_suffix: str = ".voucher"
    library_file: str = "library.tsv"
    cover_name: str = "cover.jpg"
    metadata_name: str = "metadata.json"
    cover_max_size: tuple[int, int] = (1400, 1400)

    def __post_init__(self):
        # Explicit values (CLI flags) win over the environment, which wins over defaults.
        for key, env_name in ENV_MAP.items():
            if getattr(self, key):
                continue
            env_val = os.environ.get(env_name)
            if env_val is not None:
                setattr(self, key, env_val)
            else:
                setattr(self, key, DEFAULTS.get(key, ""))

    def get(self, key: str) -> str:
        val = getattr(self, key, None)
        if val is not None:
            return str(val)
        return DEFAULTS.get(key, "")

    def flag(self, key: str) -> bool:
        return self.get(key).strip().lower() in TRUE_VALUES

    @property
    def aac_bitrate(self) -> str:
        value = self.get("bitrate").strip().lower().rstrip("k")
        if not value.isdigit():
            return self.default_aac_bitrate
        return f"{value}k"

    @property
    def ffmpeg(self) -> str:
        return _resolve_binary(self.ffmpeg_path, self.tools_dir, "ffmpeg")

    @property
    def ffprobe(self) -> str:
        return _resolve_binary(self.ffprobe_path, self.tools_dir, "ffprobe")

    def check_folders(self):
        for label, path in (("Input", self.input_path), ("Output", self.output_path)):
            p = Path(path)
            if not p.is_dir():
                raise ConfigError(f"{label} folder does not exist: {path}")
            mode = os.R_OK | os.W_OK if label == "Output" else os.R_OK
            if not os.access(p, mode):
                raise ConfigError(f"{label} folder is not accessible: {path}")


def _resolve_binary(configured: str, tools_dir: str, name: str) -> str:
    if configured and Path(configured).is_file():
        return configured
    for candidate in (Path(tools_dir) / name, Path(tools_dir) / f"{name}.exe"):
        if candidate.is_file():
            return str(candidate)
    found = shutil.which(configured or name)
    return found or configured or name


# Characters rejected in a path component on at least one supported platform.
SANITIZE_CHARS = re.compile(r'[\\:*?"<>|\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    cleaned = SANITIZE_CHARS.sub("_", name.replace("/", "_")).strip()
    # "", "." and ".." would resolve outside the intended directory.
    if not cleaned.strip("."):
        return "_"
    return cleaned


Config = Settings

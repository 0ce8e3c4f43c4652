import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

log = logging.getLogger(__name__)


class DecryptionError(Exception):
    pass


class DecryptionMode(StrEnum):
    ACTIVATION_BYTES = "activation_bytes"
    VOUCHER = "voucher"


@dataclass(frozen=True)
class DecryptionParams:
    mode: DecryptionMode
    activation_bytes: str | None = None
    key: str | None = None
    iv: str | None = None

    def ffmpeg_args(self) -> list[str]:
        if self.mode == DecryptionMode.VOUCHER:
            return ["-audible_key", self.key or "", "-audible_iv", self.iv or ""]
        if self.activation_bytes:
            return ["-activation_bytes", self.activation_bytes]
        return []

    def __repr__(self) -> str:
        return f"DecryptionParams(mode={self.mode.value})"


def voucher_path(source: Path, suffix: str = ".voucher") -> Path:
    return source.with_suffix(suffix)


def load_voucher(path: Path) -> DecryptionParams:
    if not path.exists():
        raise DecryptionError(f"Voucher not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise DecryptionError(f"Voucher is not valid JSON: {path}: {e}") from e

    if not isinstance(data, dict):
        raise DecryptionError(f"Voucher has unexpected structure: {path}")
    license_response = (data.get("content_license") or {}).get("license_response") or {}
    key = license_response.get("key")
    iv = license_response.get("iv")
    if not key or not iv:
        raise DecryptionError(f"Voucher has no key/iv pair: {path}")
    return DecryptionParams(mode=DecryptionMode.VOUCHER, key=key, iv=iv)


def params_for(source: Path, activation_bytes: str | None, voucher_suffix: str = ".voucher") -> DecryptionParams:
    if source.suffix.lower() == ".aaxc":
        return load_voucher(voucher_path(source, voucher_suffix))
    if not activation_bytes:
        raise DecryptionError(f"Activation bytes are required to decrypt {source.name}")
    return DecryptionParams(mode=DecryptionMode.ACTIVATION_BYTES, activation_bytes=activation_bytes)

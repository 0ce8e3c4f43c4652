import logging
from dataclasses import dataclass, field

from aax2m4b.core.ffmpeg import ProbeError, probe

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeChapter:
    id: int
    start_time: str
    end_time: str
    title: str | None = None


@dataclass(frozen=True)
class BookInfo:
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    genre: str | None = None
    copyright: str | None = None
    comment: str | None = None
    creation_time: str | None = None
    date: str | None = None
    duration: str | None = None
    format_name: str | None = None
    chapters: tuple[ProbeChapter, ...] = field(default_factory=tuple)

    @property
    def duration_seconds(self) -> float | None:
        if not self.duration:
            return None
        try:
            return float(self.duration)
        except ValueError:
            return None

    @property
    def duration_str(self) -> str:
        seconds = self.duration_seconds
        if seconds is None:
            return "unknown"
        hours, remainder = divmod(int(seconds), 3600)
        minutes, secs = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_probe(data: dict) -> BookInfo:
    fmt = data.get("format") or {}
    tags = _lower_keys(fmt.get("tags"))

    chapters = []
    for idx, raw in enumerate(data.get("chapters") or []):
        start = raw.get("start_time")
        end = raw.get("end_time")
        if start is None or end is None:
            raise ProbeError(f"Chapter {idx} is missing start_time/end_time")
        chapters.append(ProbeChapter(
            id=raw.get("id", idx),
            start_time=str(start),
            end_time=str(end),
            title=_lower_keys(raw.get("tags")).get("title"),
        ))

    duration = fmt.get("duration")
    return BookInfo(
        title=tags.get("title"),
        artist=tags.get("artist"),
        album=tags.get("album"),
        genre=tags.get("genre"),
        copyright=tags.get("copyright"),
        comment=tags.get("comment"),
        creation_time=tags.get("creation_time"),
        date=tags.get("date"),
        duration=str(duration) if duration is not None else None,
        format_name=fmt.get("format_name"),
        chapters=tuple(chapters),
    )


def probe_book(ffprobe: str, path: str, decryption_args: list[str] | None = None) -> BookInfo:
    data = probe(ffprobe, path, decryption_args)
    if "format" not in data:
        raise ProbeError(f"No format information for {path}")
    info = parse_probe(data)
    log.debug("Probed %s: %r with %d chapters", path, info.title, len(info.chapters))
    return info


def _lower_keys(tags: dict | None) -> dict:
    if not tags:
        return {}
    return {str(k).lower(): v for k, v in tags.items()}

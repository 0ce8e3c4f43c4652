"""Chapter timeline construction.

A book's chapters come from exactly one of two places:

* the ``<base>-chapters.json`` side-file Audible ships next to the download,
  whose chapters may nest (parts containing chapters), or
* the chapter list reported by ffprobe for the container itself.

If the side-file exists it wins, even when it holds no chapters. Probed
chapters are renumbered as "Chapter N"; their embedded titles are ignored.
The resulting intervals are millisecond based with an inclusive end, ready to
be rendered as an FFMETADATA chapter document.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path

from aax2m4b.core.probe import BookInfo, ProbeChapter

log = logging.getLogger(__name__)

FFMETADATA_HEADER = ";FFMETADATA1"

SOURCE_SIDE_FILE = "side-file"
SOURCE_PROBE = "probe"
SOURCE_NONE = "none"


class ChapterFileError(Exception):
    pass


@dataclass
class ChapterNode:
    title: str = ""
    start_offset_ms: int = 0
    length_ms: int = 0
    children: list["ChapterNode"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ChapterNode":
        return cls(
            title=data.get("title") or "",
            start_offset_ms=int(data.get("start_offset_ms") or 0),
            length_ms=int(data.get("length_ms") or 0),
            children=[cls.from_dict(c) for c in data.get("chapters") or []],
        )


@dataclass(frozen=True)
class ChapterInterval:
    index: int
    start_ms: int
    end_ms: int
    title: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms + 1


@dataclass
class Timeline:
    chapters: list[ChapterInterval]
    source: str

    def __len__(self) -> int:
        return len(self.chapters)

    def render(self) -> str:
        return render_ffmetadata(self.chapters)


def side_file_path(source: Path, marker: str = "-AAX", suffix: str = "-chapters.json") -> Path:
    name = source.name
    base = name.split(marker)[0] if marker in name else source.stem
    return source.parent / f"{base}{suffix}"


def load_side_file(path: Path) -> list[ChapterNode]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ChapterFileError(f"Invalid chapter file {path}: {e}") from e

    if not isinstance(data, dict):
        return []
    chapter_info = (data.get("content_metadata") or {}).get("chapter_info") or {}
    return [ChapterNode.from_dict(c) for c in chapter_info.get("chapters") or []]


def flatten(nodes: list[ChapterNode]) -> list[ChapterNode]:
    flat: list[ChapterNode] = []
    for node in nodes:
        flat.append(node)
        if node.children:
            flat.extend(flatten(node.children))
    return flat


def from_nodes(nodes: list[ChapterNode]) -> list[ChapterInterval]:
    intervals = []
    for idx, node in enumerate(flatten(nodes), 1):
        intervals.append(ChapterInterval(
            index=idx,
            start_ms=node.start_offset_ms,
            end_ms=node.start_offset_ms + node.length_ms - 1,
            title=node.title or f"Chapter {idx}",
        ))
    return intervals


def from_probe(chapters: tuple[ProbeChapter, ...] | list[ProbeChapter]) -> list[ChapterInterval]:
    intervals = []
    for idx, chapter in enumerate(chapters, 1):
        intervals.append(ChapterInterval(
            index=idx,
            start_ms=_seconds_to_ms(chapter.start_time),
            end_ms=_seconds_to_ms(chapter.end_time) - 1,
            title=f"Chapter {idx}",
        ))
    return intervals


def build_timeline(
    source: Path,
    info: BookInfo,
    marker: str = "-AAX",
    suffix: str = "-chapters.json",
) -> Timeline:
    side_file = side_file_path(source, marker, suffix)
    if side_file.exists():
        log.info("Using chapter file %s", side_file.name)
        return Timeline(from_nodes(load_side_file(side_file)), SOURCE_SIDE_FILE)
    if info.chapters:
        return Timeline(from_probe(info.chapters), SOURCE_PROBE)
    return Timeline([], SOURCE_NONE)


def render_ffmetadata(chapters: list[ChapterInterval]) -> str:
    lines = [FFMETADATA_HEADER, ""]
    for chapter in chapters:
        lines.append("[CHAPTER]")
        lines.append("TIMEBASE=1/1000")
        lines.append(f"START={chapter.start_ms}")
        lines.append(f"END={chapter.end_ms}")
        lines.append(f"title={_escape(chapter.title)}")
        lines.append("")
    return "\n".join(lines)


def write_chapter_file(timeline: Timeline, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(timeline.render(), encoding="utf-8")
    return path


def _seconds_to_ms(value: str) -> int:
    try:
        ms = Decimal(value) * 1000
    except InvalidOperation as e:
        raise ValueError(f"Invalid chapter time: {value!r}") from e
    return int(ms.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _escape(value: str) -> str:
    for ch in ("\\", "=", ";", "#", "\n"):
        value = value.replace(ch, "\\" + ch)
    return value

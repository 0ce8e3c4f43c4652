import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path

from bs4 import BeautifulSoup
from mutagen.mp4 import MP4, MP4Cover, MP4FreeForm

from aax2m4b.core.library import LibraryEntry
from aax2m4b.core.naming import split_names
from aax2m4b.core.probe import BookInfo

log = logging.getLogger(__name__)

FREEFORM = "----:com.apple.iTunes:"
AUDIOBOOK_MEDIA_TYPE = 2


class MetadataError(Exception):
    pass


@dataclass
class TagSet:
    title: str | None = None
    subtitle: str | None = None
    album: str | None = None
    artists: list[str] = field(default_factory=list)
    narrators: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    series: list[str] = field(default_factory=list)
    year: int | None = None
    copyright: str | None = None
    description: str | None = None
    asin: str | None = None


@dataclass
class SidecarMetadata:
    title: str | None = None
    subtitle: str | None = None
    authors: list[str] = field(default_factory=list)
    narrators: list[str] = field(default_factory=list)
    series: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    publishedYear: str | None = None
    publishedDate: str | None = None
    description: str | None = None
    asin: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def format_series(entry: LibraryEntry) -> list[str]:
    if not entry.series_title or not entry.series_title.strip():
        return []
    return [f"{entry.series_title.strip()} #{entry.series_sequence or ''}".strip()]


def project_matched(entry: LibraryEntry, info: BookInfo) -> tuple[TagSet, SidecarMetadata]:
    release = entry.release
    authors = split_names(entry.authors)
    narrators = split_names(entry.narrators)
    genres = split_names(entry.genres)
    series = format_series(entry)

    tags = TagSet(
        title=entry.title,
        subtitle=entry.subtitle,
        album=entry.title,
        artists=authors,
        narrators=narrators,
        genres=genres,
        series=series,
        year=release.year if release else None,
        copyright=info.copyright,
        description=entry.extended_product_description,
        asin=entry.asin,
    )
    sidecar = SidecarMetadata(
        title=entry.title,
        subtitle=entry.subtitle,
        authors=authors,
        narrators=narrators,
        series=series,
        genres=genres,
        publishedYear=str(release.year) if release else None,
        publishedDate=release.isoformat() if release else None,
        description=entry.extended_product_description,
        asin=entry.asin,
    )
    return tags, sidecar


def project_raw(info: BookInfo) -> tuple[TagSet, SidecarMetadata]:
    year = parse_year(info.date) if info.date is not None else None
    genres = [info.genre] if info.genre else []

    tags = TagSet(
        title=info.title,
        album=info.album,
        artists=[info.artist] if info.artist else [],
        genres=genres,
        year=year,
        copyright=info.copyright,
        description=info.comment,
    )
    sidecar = SidecarMetadata(
        title=info.title,
        authors=split_names(info.artist),
        genres=genres,
        publishedYear=str(year) if year is not None else None,
        description=info.comment,
    )
    return tags, sidecar


def project(entry: LibraryEntry | None, info: BookInfo) -> tuple[TagSet, SidecarMetadata]:
    if entry is not None:
        return project_matched(entry, info)
    return project_raw(info)


def parse_year(value: str) -> int:
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        return date.fromisoformat(value[:10]).year
    except ValueError as e:
        raise MetadataError(f"Malformed date tag: {value!r}") from e


def write_tags(path: Path, tags: TagSet, cover: Path | None = None):
    audio = MP4(str(path))
    if audio.tags is None:
        audio.add_tags()

    if tags.title:
        audio["\xa9nam"] = [tags.title]
    if tags.album:
        audio["\xa9alb"] = [tags.album]
    if tags.artists:
        audio["\xa9ART"] = [", ".join(tags.artists)]
        audio["aART"] = [", ".join(tags.artists)]
    if tags.narrators:
        audio["\xa9wrt"] = [", ".join(tags.narrators)]
        audio[FREEFORM + "NARRATOR"] = [MP4FreeForm(", ".join(tags.narrators).encode("utf-8"))]
    if tags.genres:
        audio["\xa9gen"] = tags.genres
    if tags.series:
        audio["\xa9grp"] = tags.series
    if tags.year is not None:
        audio["\xa9day"] = [str(tags.year)]
    if tags.copyright:
        audio["cprt"] = [tags.copyright]
    if tags.description:
        audio["ldes"] = [tags.description]
        audio["desc"] = [tags.description[:255]]
    if tags.subtitle:
        audio[FREEFORM + "SUBTITLE"] = [MP4FreeForm(tags.subtitle.encode("utf-8"))]
    if tags.asin:
        audio[FREEFORM + "ASIN"] = [MP4FreeForm(tags.asin.encode("utf-8"))]
    audio["stik"] = [AUDIOBOOK_MEDIA_TYPE]

    if cover and cover.exists():
        audio["covr"] = [MP4Cover(cover.read_bytes(), imageformat=MP4Cover.FORMAT_JPEG)]

    audio.save()
    log.debug("Tagged %s", path.name)


def write_sidecar(book_dir: Path, sidecar: SidecarMetadata, name: str = "metadata.json") -> Path:
    path = book_dir / name
    path.write_text(json.dumps(sidecar.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")

    if sidecar.description:
        desc = BeautifulSoup(sidecar.description, "lxml").get_text(separator="\n").strip()
        if desc:
            (book_dir / "desc.txt").write_text(desc, encoding="utf-8")

    log.info("Metadata written to %s", path)
    return path

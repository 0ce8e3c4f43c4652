import csv
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from aax2m4b.core.naming import is_boxset_title, normalize_for_comparison, strip_part

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LibraryEntry:
    asin: str | None = None
    title: str | None = None
    subtitle: str | None = None
    authors: str | None = None
    narrators: str | None = None
    series_title: str | None = None
    series_sequence: str | None = None
    genres: str | None = None
    release_date: str | None = None
    extended_product_description: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "LibraryEntry":
        def value(key):
            val = row.get(key)
            if val is None:
                return None
            val = val.strip()
            return val or None

        return cls(
            asin=value("asin"),
            title=value("title"),
            subtitle=value("subtitle"),
            authors=value("authors"),
            narrators=value("narrators"),
            series_title=value("series_title"),
            series_sequence=value("series_sequence"),
            genres=value("genres"),
            release_date=value("release_date"),
            extended_product_description=value("extended_product_description"),
        )

    @property
    def release(self) -> date | None:
        if not self.release_date:
            return None
        try:
            return date.fromisoformat(self.release_date[:10])
        except ValueError:
            log.debug("Unparseable release date %r for %s", self.release_date, self.asin)
            return None


@dataclass
class MatchResult:
    key: str
    entry: LibraryEntry | None = None
    duplicate: bool = False

    @property
    def resolved(self) -> bool:
        return self.entry is not None


class LibraryIndex:
    """Read-only lookup of library entries by normalized title."""

    def __init__(self, entries: list[LibraryEntry]):
        self.entries = sorted(entries, key=lambda e: e.authors or "")
        self._by_key: dict[str, list[LibraryEntry]] = {}
        for entry in self.entries:
            key = normalize_for_comparison(f"{entry.title or ''}{entry.subtitle or ''}")
            if key:
                self._by_key.setdefault(key, []).append(entry)

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, key: str) -> list[LibraryEntry]:
        return self._by_key.get(key, [])

    def match(self, title: str | None) -> MatchResult:
        if not title:
            return MatchResult(key="")

        comparison = strip_part(title) if is_boxset_title(title) else title
        key = normalize_for_comparison(comparison)
        candidates = self.lookup(key)

        if len(candidates) == 1:
            return MatchResult(key=key, entry=candidates[0])
        if len(candidates) > 1:
            log.warning("Duplicate library entries for %r (%d matches), using probed metadata",
                        title, len(candidates))
            return MatchResult(key=key, duplicate=True)
        log.debug("No library entry for %r", title)
        return MatchResult(key=key)


def load_library(path: Path) -> LibraryIndex | None:
    if not path.exists():
        log.info("No library index at %s, skipping library matching", path)
        return None

    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f, delimiter="\t")
        entries = [LibraryEntry.from_row(row) for row in reader]

    log.info("Loaded %d library entries from %s", len(entries), path)
    return LibraryIndex(entries)

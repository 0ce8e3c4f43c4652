"""String cleanup for display titles, author folders and match keys."""

import re

MAX_AUTHORS_BEFORE_VARIOUS = 4

UNKNOWN_AUTHOR = "Unknown"
VARIOUS_AUTHORS = "Various"

# Detection matches "Part 10" too, stripping only removes "Part 1" .. "Part 9".
BOXSET_TITLE = re.compile(r"Part [0-9]")
BOXSET_PART = re.compile(r"\bPart [1-9]\b")
BOXSET_FILENAME = re.compile(r"Part_[0-9]-LC")

NON_ALNUM = re.compile(r"[^a-z0-9]")


def clean_title(title: str | None) -> str | None:
    if title is None:
        return None
    # Removals can splice a new "(Unabridged)" together, so run to a fixed point.
    while True:
        cleaned = (
            title.replace("(Unabridged)", "")
            .replace(":", " -")
            .replace("'", "")
            .replace("?", "")
            .strip()
        )
        if cleaned == title:
            return cleaned
        title = cleaned


def clean_author(name: str | None, max_authors: int = MAX_AUTHORS_BEFORE_VARIOUS) -> str:
    if not name:
        return UNKNOWN_AUTHOR
    if len(name.split(",")) > max_authors:
        return VARIOUS_AUTHORS
    return name.replace("Jr.", "Jr").strip()


def normalize_for_comparison(text: str | None) -> str:
    if not text:
        return ""
    return NON_ALNUM.sub("", text.lower())


def is_boxset_title(title: str | None) -> bool:
    return bool(title and BOXSET_TITLE.search(title))


def is_boxset_filename(filename: str) -> bool:
    return bool(BOXSET_FILENAME.search(filename))


def strip_part(title: str) -> str:
    return BOXSET_PART.sub("", title).strip()


def split_names(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def chapter_number_width(total: int) -> int:
    if total > 100:
        return 3
    if total > 10:
        return 2
    return 1


def chapter_filename(title: str, index: int, total: int, ext: str = "mp3") -> str:
    return f"{title}-{index:0{chapter_number_width(total)}d}.{ext}"

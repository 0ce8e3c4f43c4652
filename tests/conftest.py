import json
from pathlib import Path

import pytest

from aax2m4b.config import ENV_MAP, Settings
from aax2m4b.core.probe import BookInfo, ProbeChapter


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_name in ENV_MAP.values():
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture
def input_dir(tmp_path) -> Path:
    path = tmp_path / "input"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path) -> Path:
    path = tmp_path / "output"
    path.mkdir()
    return path


@pytest.fixture
def settings(input_dir, output_dir) -> Settings:
    return Settings(
        input_path=str(input_dir),
        output_path=str(output_dir),
        activation_bytes="deadbeef",
        ffmpeg_path="ffmpeg",
        ffprobe_path="ffprobe",
    )


@pytest.fixture
def probe_data() -> dict:
    return {
        "format": {
            "filename": "Book-AAX.aax",
            "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
            "duration": "400.000000",
            "tags": {
                "title": "The Long Road: A Novel (Unabridged)",
                "artist": "Jane Doe, John Roe",
                "album": "The Long Road",
                "genre": "Audiobook",
                "copyright": "(c) 2020 Publisher",
                "comment": "A story about a road.",
                "date": "2020",
            },
        },
        "chapters": [
            {"id": 0, "start_time": "0.000000", "end_time": "100.000000", "tags": {"title": "Opening"}},
            {"id": 1, "start_time": "100.000000", "end_time": "250.000000", "tags": {"title": "Middle"}},
            {"id": 2, "start_time": "250.000000", "end_time": "400.000000", "tags": {"title": "End"}},
        ],
    }


@pytest.fixture
def book_info() -> BookInfo:
    return BookInfo(
        title="The Long Road: A Novel (Unabridged)",
        artist="Jane Doe, John Roe",
        album="The Long Road",
        genre="Audiobook",
        copyright="(c) 2020 Publisher",
        comment="A story about a road.",
        date="2020",
        duration="400.000000",
        chapters=(
            ProbeChapter(id=0, start_time="0", end_time="100", title="Opening"),
            ProbeChapter(id=1, start_time="100", end_time="250", title="Middle"),
            ProbeChapter(id=2, start_time="250", end_time="400", title="End"),
        ),
    )


@pytest.fixture
def write_side_file():
    def _write(path: Path, chapters: list[dict]) -> Path:
        path.write_text(json.dumps({
            "content_metadata": {"chapter_info": {"chapters": chapters}},
            "response_groups": ["chapter_info"],
        }))
        return path
    return _write


LIBRARY_COLUMNS = [
    "asin", "title", "subtitle", "extended_product_description", "authors", "narrators",
    "series_title", "series_sequence", "genres", "runtime_length_min", "release_date",
]


@pytest.fixture
def write_library():
    def _write(path: Path, rows: list[dict]) -> Path:
        lines = ["\t".join(LIBRARY_COLUMNS)]
        for row in rows:
            lines.append("\t".join(str(row.get(col, "")) for col in LIBRARY_COLUMNS))
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path
    return _write

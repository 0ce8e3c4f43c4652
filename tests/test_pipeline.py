import json
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from aax2m4b.config import Settings
from aax2m4b.core.decryption import DecryptionError
from aax2m4b.core.library import LibraryEntry, LibraryIndex
from aax2m4b.core.metadata import MetadataError
from aax2m4b.pipeline import ConversionPipeline, FileStatus, Stage


class FakeBuilder:
    """Stands in for ffmpeg by writing placeholder files."""

    def __init__(self):
        self.calls: list[str] = []
        self.chapter_docs: list[str] = []
        self.work_files: list[Path] = []
        self.fail_on: str | None = None

    def _record(self, name: str, dest: Path | None = None):
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} failed")
        if dest is not None:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(b"data")
            self.work_files.append(dest)

    def transcode(self, source, decryption, dest):
        self._record("transcode", dest)
        return dest

    def fallback_transcode(self, source, decryption, dest):
        self._record("fallback_transcode", dest)
        return dest

    def extract_cover(self, source, decryption, dest):
        self._record("extract_cover")
        return None

    def mux(self, audio, chapter_file, cover, dest):
        self.chapter_docs.append(chapter_file.read_text(encoding="utf-8"))
        self._record("mux", dest)
        return dest

    def split_mp3(self, source, chapters, book_dir, title):
        self._record("split_mp3")
        return []


@pytest.fixture
def source(input_dir) -> Path:
    path = input_dir / "Book-AAX_44_128.aax"
    path.write_bytes(b"aax")
    return path


@pytest.fixture
def make_pipeline(book_info):
    patches = []

    def _make(settings: Settings, library=None, integrity=(True,), info=book_info):
        pipeline = ConversionPipeline(settings, library)
        pipeline.builder = FakeBuilder()
        pipeline.mocks = {}
        for target, kwargs in (
            ("aax2m4b.pipeline.probe_book", {"return_value": info}),
            ("aax2m4b.pipeline.check_integrity", {"side_effect": list(integrity)}),
            ("aax2m4b.pipeline.write_tags", {}),
        ):
            p = patch(target, **kwargs)
            pipeline.mocks[target.rsplit(".", 1)[-1]] = p.start()
            patches.append(p)
        return pipeline

    yield _make
    for p in reversed(patches):
        p.stop()


def expected_output(output_dir: Path) -> Path:
    return output_dir / "Jane Doe, John Roe" / "The Long Road - A Novel" / "The Long Road - A Novel.m4b"


class TestHappyPath:
    def test_converts_into_author_title_folder(self, settings, source, output_dir, make_pipeline):
        pipeline = make_pipeline(settings)
        result = pipeline.process(source)

        assert result.status == FileStatus.CONVERTED
        assert result.output == expected_output(output_dir)
        assert result.output.exists()
        assert not result.used_fallback
        assert pipeline.builder.calls == ["transcode", "extract_cover", "mux"]

    def test_probe_chapters_drive_the_mux(self, settings, source, make_pipeline):
        pipeline = make_pipeline(settings)
        pipeline.process(source)
        doc = pipeline.builder.chapter_docs[0]
        assert doc.startswith(";FFMETADATA1\n")
        assert "START=250000\nEND=399999\ntitle=Chapter 3" in doc

    def test_writes_sidecar_and_tags(self, settings, source, output_dir, make_pipeline):
        pipeline = make_pipeline(settings)
        result = pipeline.process(source)

        metadata = json.loads((result.output.parent / "metadata.json").read_text(encoding="utf-8"))
        assert metadata["title"] == "The Long Road: A Novel (Unabridged)"
        assert metadata["publishedYear"] == "2020"
        write_tags = pipeline.mocks["write_tags"]
        assert write_tags.call_args[0][0] == result.output

    def test_intermediates_removed(self, settings, source, make_pipeline):
        pipeline = make_pipeline(settings)
        pipeline.process(source)
        work_files = [p for p in pipeline.builder.work_files if p.suffix != ".m4b"]
        assert work_files
        assert not any(p.exists() for p in work_files)

    def test_events(self, settings, source, make_pipeline):
        events = []
        pipeline = make_pipeline(settings)
        pipeline.set_event_callback(lambda event, data: events.append(event))
        pipeline.process(source)
        assert events == ["probed", "converted"]

    def test_library_match_used_for_metadata(self, settings, source, make_pipeline, book_info):
        library = LibraryIndex([LibraryEntry(
            asin="B0123", title="The Long Road", subtitle="A Novel", authors="Jane Doe",
            release_date="2018-05-01",
        )])
        info = replace(book_info, title="The Long Road: A Novel")
        pipeline = make_pipeline(settings, library=library, info=info)
        result = pipeline.process(source)

        metadata = json.loads((result.output.parent / "metadata.json").read_text(encoding="utf-8"))
        assert metadata["asin"] == "B0123"
        assert metadata["publishedDate"] == "2018-05-01"

    def test_sidecar_cover_copied_to_book_dir(self, settings, source, input_dir, make_pipeline):
        Image.new("RGB", (500, 500)).save(input_dir / "Book_(500).jpg")
        pipeline = make_pipeline(settings)
        result = pipeline.process(source)

        assert "extract_cover" not in pipeline.builder.calls
        assert (result.output.parent / "cover.jpg").exists()
        assert pipeline.mocks["write_tags"].call_args[0][2] == result.output.parent / "cover.jpg"

    def test_unreadable_sidecar_cover_falls_back_to_embedded(self, settings, source, input_dir, make_pipeline):
        (input_dir / "Book_(500).jpg").write_bytes(b"not a jpeg")
        pipeline = make_pipeline(settings)
        pipeline.process(source)
        assert "extract_cover" in pipeline.builder.calls

    def test_split_mp3(self, input_dir, output_dir, source, make_pipeline):
        settings = Settings(
            input_path=str(input_dir), output_path=str(output_dir),
            activation_bytes="deadbeef", split_mp3="true",
        )
        pipeline = make_pipeline(settings)
        pipeline.process(source)
        assert pipeline.builder.calls[-1] == "split_mp3"


class TestExistingOutput:
    def test_skips_without_clobber(self, settings, source, output_dir, make_pipeline):
        out = expected_output(output_dir)
        out.parent.mkdir(parents=True)
        out.write_bytes(b"old")

        pipeline = make_pipeline(settings)
        result = pipeline.process(source)

        assert result.status == FileStatus.SKIPPED
        assert out.read_bytes() == b"old"
        assert pipeline.builder.calls == []

    def test_replaces_with_clobber(self, input_dir, output_dir, source, make_pipeline):
        out = expected_output(output_dir)
        out.parent.mkdir(parents=True)
        out.write_bytes(b"old")
        (out.parent / "stale.txt").write_text("stale")

        settings = Settings(
            input_path=str(input_dir), output_path=str(output_dir),
            activation_bytes="deadbeef", clobber="true",
        )
        pipeline = make_pipeline(settings)
        result = pipeline.process(source)

        assert result.status == FileStatus.CONVERTED
        assert out.read_bytes() == b"data"
        assert not (out.parent / "stale.txt").exists()


class TestFallback:
    def test_unreadable_output_triggers_fallback(self, settings, source, make_pipeline):
        pipeline = make_pipeline(settings, integrity=(False,))
        result = pipeline.process(source)

        assert result.status == FileStatus.CONVERTED
        assert result.used_fallback
        assert pipeline.builder.calls == ["transcode", "extract_cover", "mux", "fallback_transcode", "mux"]
        assert pipeline.mocks["check_integrity"].call_count == 1

    def test_fallback_event(self, settings, source, make_pipeline):
        events = []
        pipeline = make_pipeline(settings, integrity=(False,))
        pipeline.set_event_callback(lambda event, data: events.append(event))
        pipeline.process(source)
        assert "fallback" in events


class TestFailures:
    def test_failure_before_mux_removes_empty_book_dir(self, settings, source, output_dir, make_pipeline):
        pipeline = make_pipeline(settings)
        pipeline.builder.fail_on = "transcode"
        with pytest.raises(RuntimeError):
            pipeline.process(source)
        assert not expected_output(output_dir).parent.exists()

    def test_missing_activation_bytes(self, input_dir, output_dir, source, make_pipeline):
        settings = Settings(input_path=str(input_dir), output_path=str(output_dir))
        pipeline = make_pipeline(settings)
        with pytest.raises(DecryptionError):
            pipeline.process(source)

    def test_invalid_chapter_file_is_fatal(self, settings, source, input_dir, make_pipeline):
        (input_dir / "Book-chapters.json").write_text("{broken")
        pipeline = make_pipeline(settings)
        with pytest.raises(Exception, match="Invalid chapter file"):
            pipeline.process(source)
        assert "mux" not in pipeline.builder.calls

    def test_malformed_date_fails_before_output_is_written(self, settings, source, output_dir, make_pipeline, book_info):
        info = replace(book_info, date="May 2020")
        with pytest.raises(MetadataError):
            make_pipeline(settings, info=info).process(source)
        assert not expected_output(output_dir).exists()

        pipeline = make_pipeline(settings, info=info)
        with pytest.raises(MetadataError):
            pipeline.process(source)
        assert pipeline.builder.calls == []

    def test_failure_after_mux_removes_output(self, settings, source, output_dir, make_pipeline):
        pipeline = make_pipeline(settings)
        pipeline.mocks["write_tags"].side_effect = OSError("disk full")
        with pytest.raises(OSError):
            pipeline.process(source)
        assert not expected_output(output_dir).exists()

        result = make_pipeline(settings).process(source)
        assert result.status == FileStatus.CONVERTED


class TestBoxSet:
    def test_parts_share_folder_without_purge(self, settings, input_dir, output_dir, make_pipeline, book_info):
        info = replace(book_info, title="Saga Part 2")
        source = input_dir / "Saga_Part_2-LC_64_22050_stereo.aax"
        source.write_bytes(b"aax")
        book_dir = output_dir / "Jane Doe, John Roe" / "Saga"
        book_dir.mkdir(parents=True)
        (book_dir / "Saga Part 1.m4b").write_bytes(b"part1")

        pipeline = make_pipeline(settings, info=info)
        result = pipeline.process(source)

        assert result.output == book_dir / "Saga Part 2.m4b"
        assert (book_dir / "Saga Part 1.m4b").exists()


def test_untitled_source_uses_file_name(settings, source, output_dir, make_pipeline, book_info):
    pipeline = make_pipeline(settings, info=replace(book_info, title=None))
    result = pipeline.process(source)
    assert result.output.name == "Book.m4b"


def test_stage_reaches_cleanup(settings, source, make_pipeline):
    pipeline = make_pipeline(settings)
    stages = []
    advance = pipeline._advance

    def spy(job, stage):
        stages.append(stage)
        advance(job, stage)

    pipeline._advance = spy
    pipeline.process(source)
    assert stages[0] == Stage.PROBE
    assert stages[-2:] == [Stage.DONE, Stage.CLEANUP]

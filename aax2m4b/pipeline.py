"""Per-file conversion state machine.

Each source runs strictly in order::

    probe -> prepare_output -> primary_transcode -> extract_cover
          -> build_chapters -> mux -> integrity_check
          -> [fallback_transcode -> mux] -> write_metadata -> cleanup

The fallback path re-encodes through PCM when the stream-copied container
cannot be read back. Its result is accepted without a second integrity check.
Intermediates live in a per-job temporary directory and are removed on every
exit path.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from aax2m4b.config import Config, sanitize_filename
from aax2m4b.core.chapters import Timeline, build_timeline, write_chapter_file
from aax2m4b.core.decryption import DecryptionParams, params_for
from aax2m4b.core.ffmpeg import check_integrity
from aax2m4b.core.library import LibraryIndex, MatchResult
from aax2m4b.core.m4b_builder import M4BBuilder
from aax2m4b.core.metadata import SidecarMetadata, TagSet, project, write_sidecar, write_tags
from aax2m4b.core.naming import clean_author, clean_title, is_boxset_filename, strip_part
from aax2m4b.core.output_manager import OutputManager
from aax2m4b.core.probe import BookInfo, probe_book
from aax2m4b.events import EventPublisher

log = logging.getLogger(__name__)


class Stage(StrEnum):
    PENDING = "pending"
    PROBE = "probe"
    PREPARE_OUTPUT = "prepare_output"
    PRIMARY_TRANSCODE = "primary_transcode"
    EXTRACT_COVER = "extract_cover"
    BUILD_CHAPTERS = "build_chapters"
    MUX = "mux"
    INTEGRITY_CHECK = "integrity_check"
    FALLBACK_TRANSCODE = "fallback_transcode"
    WRITE_METADATA = "write_metadata"
    CLEANUP = "cleanup"
    DONE = "done"


class FileStatus(StrEnum):
    CONVERTED = "converted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FileResult:
    source: Path
    status: FileStatus
    output: Path | None = None
    error: str | None = None
    used_fallback: bool = False


@dataclass
class ConversionJob:
    source: Path
    stage: Stage = Stage.PENDING
    decryption: DecryptionParams | None = None
    info: BookInfo | None = None
    title: str = ""
    author: str = ""
    boxset: bool = False
    book_dir: Path | None = None
    output_file: Path | None = None
    match: MatchResult | None = None
    tags: TagSet | None = None
    sidecar: SidecarMetadata | None = None
    timeline: Timeline | None = None
    audio_path: Path | None = None
    cover_path: Path | None = None
    chapter_path: Path | None = None
    used_fallback: bool = False
    muxed: bool = False
    extra_intermediates: list[Path] = field(default_factory=list)

    @property
    def intermediates(self) -> list[Path]:
        paths = [self.audio_path, self.cover_path, self.chapter_path, *self.extra_intermediates]
        return [p for p in paths if p is not None]


class ConversionPipeline(EventPublisher):
    def __init__(self, config: Config, library: LibraryIndex | None = None):
        self.config = config
        self.library = library
        self.clobber = config.flag("clobber")
        self.split_mp3 = config.flag("split_mp3")
        self.output_mgr = OutputManager(config)
        self.builder = M4BBuilder(config)

    def _advance(self, job: ConversionJob, stage: Stage):
        log.debug("%s: %s -> %s", job.source.name, job.stage, stage)
        job.stage = stage

    def process(self, source: Path) -> FileResult:
        job = ConversionJob(source=source)
        with tempfile.TemporaryDirectory(prefix="aax2m4b-", ignore_cleanup_errors=True) as tmp_dir:
            try:
                return self._run(job, Path(tmp_dir))
            except Exception:
                # A failed file leaves no .m4b behind.
                if job.muxed and job.output_file is not None:
                    job.output_file.unlink(missing_ok=True)
                if job.book_dir is not None:
                    self.output_mgr.remove_if_empty(job.book_dir)
                raise
            finally:
                self._advance(job, Stage.CLEANUP)
                self.output_mgr.cleanup(job.intermediates)

    def _run(self, job: ConversionJob, work: Path) -> FileResult:
        self._probe(job)
        self._prepare_output(job)

        if not self._primary_transcode(job, work):
            return FileResult(source=job.source, status=FileStatus.SKIPPED, output=job.output_file)

        self._extract_cover(job, work)
        self._build_chapters(job, work)
        self._mux(job)

        self._advance(job, Stage.INTEGRITY_CHECK)
        if not check_integrity(self.config.ffprobe, str(job.output_file)):
            self._fallback(job, work)

        self._write_metadata(job)
        self._advance(job, Stage.DONE)

        self._publish("converted", {
            "source": job.source.name, "output": str(job.output_file), "fallback": job.used_fallback,
        })
        return FileResult(
            source=job.source,
            status=FileStatus.CONVERTED,
            output=job.output_file,
            used_fallback=job.used_fallback,
        )

    def _probe(self, job: ConversionJob):
        self._advance(job, Stage.PROBE)
        job.decryption = params_for(job.source, self.config.activation_bytes, self.config.voucher_suffix)
        job.info = probe_book(self.config.ffprobe, str(job.source), job.decryption.ffmpeg_args())

        if self.library is not None:
            job.match = self.library.match(job.info.title)
            if job.match.duplicate:
                self._publish("warning", {
                    "source": job.source.name,
                    "message": f"Multiple library entries match '{job.info.title}', using probed metadata",
                })

        # Projected before any output exists.
        entry = job.match.entry if job.match else None
        job.tags, job.sidecar = project(entry, job.info)

        self._publish("probed", {
            "source": job.source.name,
            "title": clean_title(job.info.title),
            "author": job.info.artist,
            "duration": job.info.duration_str,
            "chapters": len(job.info.chapters),
            "matched": bool(job.match and job.match.resolved),
        })

    def _prepare_output(self, job: ConversionJob):
        self._advance(job, Stage.PREPARE_OUTPUT)
        job.title = clean_title(job.info.title) or _fallback_title(job.source, self.config.source_marker)
        job.author = clean_author(job.info.artist, self.config.max_authors_before_various)
        job.boxset = is_boxset_filename(job.source.name)

        dir_title = strip_part(job.title) if job.boxset else job.title
        job.book_dir = self.output_mgr.prepare(job.author, dir_title)
        job.output_file = self.output_mgr.output_file(job.book_dir, job.title)

    def _primary_transcode(self, job: ConversionJob, work: Path) -> bool:
        self._advance(job, Stage.PRIMARY_TRANSCODE)
        if job.output_file.exists():
            if not self.clobber:
                log.info("%s already exists, skipping", job.output_file)
                self._publish("skipped", {"source": job.source.name, "output": str(job.output_file)})
                return False
            log.info("%s already exists, replacing", job.output_file)
            job.output_file.unlink()

        # Parts of a box-set share one folder, so only single books start clean.
        if not job.boxset:
            self.output_mgr.purge(job.book_dir)

        job.audio_path = work / f"{sanitize_filename(job.title)}.m4a"
        self.builder.transcode(job.source, job.decryption, job.audio_path)
        return True

    def _extract_cover(self, job: ConversionJob, work: Path):
        self._advance(job, Stage.EXTRACT_COVER)
        sidecar = self.output_mgr.find_sidecar_cover(job.source)
        if sidecar is not None:
            log.debug("Using cover %s", sidecar.name)
            job.cover_path = self.output_mgr.stage_cover(sidecar, work)
        if job.cover_path is None:
            extracted = work / "embedded_cover.jpg"
            job.extra_intermediates.append(extracted)
            image = self.builder.extract_cover(job.source, job.decryption, extracted)
            if image is not None:
                job.cover_path = self.output_mgr.stage_cover(image, work)

    def _build_chapters(self, job: ConversionJob, work: Path):
        self._advance(job, Stage.BUILD_CHAPTERS)
        job.timeline = build_timeline(
            job.source, job.info, self.config.source_marker, self.config.chapter_suffix,
        )
        job.chapter_path = write_chapter_file(job.timeline, work / "chapters.txt")
        log.info("%s: %d chapters from %s", job.source.name, len(job.timeline), job.timeline.source)

    def _mux(self, job: ConversionJob):
        self._advance(job, Stage.MUX)
        self.builder.mux(job.audio_path, job.chapter_path, job.cover_path, job.output_file)
        job.muxed = True

    def _fallback(self, job: ConversionJob, work: Path):
        log.warning("Problem with %s, trying fallback processing", job.output_file.name)
        self._publish("fallback", {"source": job.source.name})
        self._advance(job, Stage.FALLBACK_TRANSCODE)
        job.output_file.unlink(missing_ok=True)

        dir_title = strip_part(job.title) if job.boxset else job.title
        job.book_dir = self.output_mgr.prepare(job.author, dir_title)
        job.output_file = self.output_mgr.output_file(job.book_dir, job.title)

        self.output_mgr.cleanup([job.audio_path])
        job.audio_path = work / f"{sanitize_filename(job.title)}-fallback.m4a"
        self.builder.fallback_transcode(job.source, job.decryption, job.audio_path)
        job.used_fallback = True
        self._mux(job)

    def _write_metadata(self, job: ConversionJob):
        self._advance(job, Stage.WRITE_METADATA)
        cover = None
        if job.cover_path is not None and job.cover_path.exists():
            cover = job.book_dir / self.config.cover_name
            shutil.copyfile(job.cover_path, cover)

        write_tags(job.output_file, job.tags, cover)
        write_sidecar(job.book_dir, job.sidecar, self.config.metadata_name)

        if self.split_mp3 and job.timeline.chapters:
            self.builder.split_mp3(
                job.output_file, job.timeline.chapters, job.book_dir, sanitize_filename(job.title),
            )


def _fallback_title(source: Path, marker: str) -> str:
    name = source.stem
    return name.split(marker)[0] if marker in name else name

import logging
import time
from pathlib import Path

from aax2m4b.config import Settings
from aax2m4b.core.library import LibraryIndex, load_library
from aax2m4b.events import EventPublisher
from aax2m4b.pipeline import ConversionPipeline, FileResult, FileStatus

log = logging.getLogger(__name__)


class BatchRunner(EventPublisher):
    def __init__(self, settings: Settings):
        self.settings = settings
        self.input_dir = Path(settings.input_path)
        self._running = False

    def scan(self) -> list[Path]:
        extensions = tuple(ext.lower() for ext in self.settings.source_extensions)
        candidates = self.input_dir.rglob("*") if self.settings.flag("recursive") else self.input_dir.iterdir()
        files = sorted(p for p in candidates if p.is_file() and p.suffix.lower() in extensions)
        log.info("Found %d files to process in %s", len(files), self.input_dir)
        return files

    def load_library(self) -> LibraryIndex | None:
        return load_library(self.input_dir / self.settings.library_file)

    def run_once(self) -> list[FileResult]:
        self.settings.check_folders()

        files = self.scan()
        library = self.load_library()
        pipeline = ConversionPipeline(self.settings, library)
        pipeline.set_event_callback(self._event_callback)
        self._publish("batch_started", {"files": len(files), "library": len(library) if library else 0})

        results = [self.process_file(pipeline, path) for path in files]

        self._publish("batch_completed", {
            "converted": sum(1 for r in results if r.status == FileStatus.CONVERTED),
            "skipped": sum(1 for r in results if r.status == FileStatus.SKIPPED),
            "failed": sum(1 for r in results if r.status == FileStatus.FAILED),
        })
        return results

    def process_file(self, pipeline: ConversionPipeline, path: Path) -> FileResult:
        self._publish("file_started", {"source": path.name})
        try:
            result = pipeline.process(path)
        except Exception as e:
            log.exception("Conversion of %s failed", path.name)
            result = FileResult(source=path, status=FileStatus.FAILED, error=str(e))
            self._publish("failed", {"source": path.name, "error": str(e)})
        return result

    def run(self, loop: bool = False, interval: int | None = None) -> list[FileResult]:
        interval = interval if interval is not None else int(self.settings.get("loop_interval") or 300)
        self._running = True
        while True:
            results = self.run_once()
            if not loop or not self._running:
                return results
            log.info("Run complete, sleeping for %d seconds", interval)
            self._publish("sleeping", {"seconds": interval})
            time.sleep(interval)

    def stop(self):
        self._running = False

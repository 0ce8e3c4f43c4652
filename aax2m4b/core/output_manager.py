import logging
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from aax2m4b.config import Config, sanitize_filename

log = logging.getLogger(__name__)


class OutputManager:
    def __init__(self, config: Config):
        self.output_dir = Path(config.output_path)
        self.source_marker = config.source_marker
        self.cover_name = config.cover_name
        self.cover_max_size = config.cover_max_size

    def book_dir(self, author: str, title: str) -> Path:
        return self.output_dir / sanitize_filename(author) / sanitize_filename(title)

    def prepare(self, author: str, title: str) -> Path:
        book_dir = self.book_dir(author, title)
        book_dir.mkdir(parents=True, exist_ok=True)
        return book_dir

    def output_file(self, book_dir: Path, title: str, ext: str = "m4b") -> Path:
        return book_dir / f"{sanitize_filename(title)}.{ext}"

    def purge(self, book_dir: Path):
        """Remove files left in the book directory by an earlier run."""
        if not book_dir.is_dir():
            return
        for entry in book_dir.iterdir():
            if entry.is_file() or entry.is_symlink():
                log.debug("Purging %s", entry)
                entry.unlink()

    def find_sidecar_cover(self, source: Path) -> Path | None:
        name = source.name
        base = name.split(self.source_marker)[0] if self.source_marker in name else source.stem
        pattern = re.compile(rf"^{re.escape(base)}_\(\d+\)\.jpg$", re.IGNORECASE)
        candidates = [
            p for p in source.parent.iterdir()
            if p.is_file() and pattern.match(p.name)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.stat().st_size)

    def stage_cover(self, image_path: Path, dest_dir: Path) -> Path | None:
        dest = dest_dir / self.cover_name
        try:
            with Image.open(image_path) as img:
                img = img.convert("RGB")
                img.thumbnail(self.cover_max_size, Image.LANCZOS)
                img.save(str(dest), "JPEG")
        except (OSError, UnidentifiedImageError) as e:
            log.warning("Could not use cover image %s: %s", image_path, e)
            return None
        return dest

    def cleanup(self, paths: list[Path]):
        for path in paths:
            try:
                if path.exists():
                    path.unlink()
                    log.debug("Removed intermediate %s", path)
            except OSError as e:
                log.debug("Could not remove %s: %s", path, e)

    def remove_if_empty(self, book_dir: Path):
        try:
            book_dir.rmdir()
        except OSError:
            return
        log.debug("Removed empty directory %s", book_dir)

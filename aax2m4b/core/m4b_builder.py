import logging
from pathlib import Path

from aax2m4b.config import Config
from aax2m4b.core.chapters import ChapterInterval
from aax2m4b.core.decryption import DecryptionParams
from aax2m4b.core.ffmpeg import FFmpegError, run_ffmpeg
from aax2m4b.core.naming import chapter_filename

log = logging.getLogger(__name__)


class M4BBuilder:
    def __init__(self, config: Config):
        self.ffmpeg = config.ffmpeg
        self.aac_bitrate = config.aac_bitrate

    def transcode(self, source: Path, decryption: DecryptionParams, dest: Path) -> Path:
        """Decrypt and copy the audio stream, dropping the embedded chapter map."""
        run_ffmpeg([
            self.ffmpeg, "-y",
            *decryption.ffmpeg_args(),
            "-i", str(source),
            "-map_chapters", "-1", "-vn",
            "-codec:a", "copy",
            str(dest),
        ])
        return dest

    def fallback_transcode(self, source: Path, decryption: DecryptionParams, dest: Path) -> Path:
        """Decode to PCM and re-encode to AAC for sources that do not survive a stream copy."""
        wav_path = dest.with_suffix(".wav")
        try:
            run_ffmpeg([
                self.ffmpeg, "-y",
                *decryption.ffmpeg_args(),
                "-i", str(source),
                "-map_chapters", "-1", "-vn",
                "-codec:a", "pcm_s16le",
                str(wav_path),
            ])
            run_ffmpeg([
                self.ffmpeg, "-y",
                "-i", str(wav_path),
                "-vn",
                "-codec:a", "aac", "-b:a", self.aac_bitrate,
                str(dest),
            ])
        finally:
            wav_path.unlink(missing_ok=True)
        return dest

    def extract_cover(self, source: Path, decryption: DecryptionParams, dest: Path) -> Path | None:
        try:
            run_ffmpeg([
                self.ffmpeg, "-y",
                *decryption.ffmpeg_args(),
                "-i", str(source),
                "-an", "-vcodec", "copy",
                str(dest),
            ])
        except FFmpegError as e:
            log.warning("No embedded cover extracted from %s: %s", source.name, e)
            return None
        return dest if dest.exists() and dest.stat().st_size > 0 else None

    def mux(self, audio: Path, chapter_file: Path, cover: Path | None, dest: Path) -> Path:
        cmd = [
            self.ffmpeg, "-y",
            "-i", str(audio),
            "-i", str(chapter_file),
        ]
        if cover:
            cmd += ["-i", str(cover)]
        cmd += [
            "-map", "0:a",
            "-map_metadata", "1",
            "-map_chapters", "1",
        ]
        if cover:
            cmd += ["-map", "2:v", "-c:v", "copy", "-disposition:v", "attached_pic"]
        cmd += [
            "-c:a", "copy",
            "-movflags", "+faststart",
            str(dest),
        ]
        run_ffmpeg(cmd)
        return dest

    def split_mp3(
        self,
        source: Path,
        chapters: list[ChapterInterval],
        book_dir: Path,
        title: str,
    ) -> list[Path]:
        total = len(chapters)
        outputs = []
        playlist = ["#EXTM3U"]
        for chapter in chapters:
            out = book_dir / chapter_filename(title, chapter.index, total)
            run_ffmpeg([
                self.ffmpeg, "-y",
                "-i", str(source),
                "-ss", _ms_to_seconds(chapter.start_ms),
                "-to", _ms_to_seconds(chapter.end_ms + 1),
                "-vn", "-map_chapters", "-1",
                "-codec:a", "libmp3lame", "-b:a", self.aac_bitrate,
                str(out),
            ])
            outputs.append(out)
            playlist.append(f"#EXTINF:{chapter.duration_ms // 1000},{title} - {chapter.title}")
            playlist.append(out.name)
            log.debug("Wrote chapter %d/%d: %s", chapter.index, total, out.name)

        (book_dir / f"{title}.m3u").write_text("\n".join(playlist) + "\n", encoding="utf-8")
        return outputs


def _ms_to_seconds(ms: int) -> str:
    return f"{ms / 1000:.3f}"

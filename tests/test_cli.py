from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from aax2m4b.fetch import FetchError
from aax2m4b.main import _make_config, cli
from aax2m4b.pipeline import FileResult, FileStatus


def test_make_config_maps_flags():
    config = _make_config(clobber=True, recursive=False, bitrate=96, input_path=None)
    assert config.clobber == "true"
    assert config.recursive == "false"
    assert config.aac_bitrate == "96k"
    assert config.input_path == "."


class TestConvert:
    def test_prints_summary(self, input_dir, output_dir):
        results = [
            FileResult(source=Path("A.aax"), status=FileStatus.CONVERTED),
            FileResult(source=Path("B.aax"), status=FileStatus.FAILED, error="bad voucher"),
        ]
        with patch("aax2m4b.main.BatchRunner.run", return_value=results) as run:
            result = CliRunner().invoke(cli, [
                "convert", "-i", str(input_dir), "-o", str(output_dir), "-a", "deadbeef",
            ])

        assert result.exit_code == 0, result.output
        assert "Converted: 1  Skipped: 0  Failed: 1" in result.output
        assert "B.aax: bad voucher" in result.output
        run.assert_called_once_with(loop=False)

    def test_options_reach_settings(self, input_dir, output_dir):
        captured = {}

        def fake_run(self, loop=False, interval=None):
            captured["settings"] = self.settings
            return []

        with patch("aax2m4b.main.BatchRunner.run", fake_run):
            CliRunner().invoke(cli, [
                "convert", "-i", str(input_dir), "-o", str(output_dir),
                "--clobber", "--no-recursive", "--split-mp3", "-b", "128",
            ])

        settings = captured["settings"]
        assert settings.input_path == str(input_dir)
        assert settings.flag("clobber")
        assert not settings.flag("recursive")
        assert settings.flag("split_mp3")
        assert settings.aac_bitrate == "128k"

    def test_missing_folder_aborts(self, tmp_path, output_dir):
        result = CliRunner().invoke(cli, [
            "convert", "-i", str(tmp_path / "missing"), "-o", str(output_dir),
        ])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_converts_folder_end_to_end(self, input_dir, output_dir, book_info):
        (input_dir / "Book-AAX_44_128.aax").write_bytes(b"aax")

        def fake_run_ffmpeg(cmd):
            Path(cmd[-1]).write_bytes(b"data")

        with patch("aax2m4b.pipeline.probe_book", return_value=book_info), \
                patch("aax2m4b.pipeline.check_integrity", return_value=True), \
                patch("aax2m4b.pipeline.write_tags"), \
                patch("aax2m4b.core.m4b_builder.run_ffmpeg", side_effect=fake_run_ffmpeg):
            result = CliRunner().invoke(cli, [
                "convert", "-i", str(input_dir), "-o", str(output_dir), "-a", "deadbeef",
            ])

        assert result.exit_code == 0, result.output
        book_dir = output_dir / "Jane Doe, John Roe" / "The Long Road - A Novel"
        assert (book_dir / "The Long Road - A Novel.m4b").exists()
        assert (book_dir / "metadata.json").exists()
        assert "Successfully converted Book-AAX_44_128.aax to M4B." in result.output


class TestFetch:
    def test_lists_installed_binaries(self, tmp_path):
        installed = [tmp_path / "ffmpeg", tmp_path / "ffprobe"]
        with patch("aax2m4b.main.fetch_ffmpeg", return_value=installed) as fetch:
            result = CliRunner().invoke(cli, ["fetch-ffmpeg", "--url", "http://x/ff.tar.xz", "--dest", str(tmp_path)])

        assert result.exit_code == 0, result.output
        fetch.assert_called_once_with("http://x/ff.tar.xz", tmp_path)
        assert str(tmp_path / "ffprobe") in result.output

    def test_failure_aborts(self, tmp_path):
        with patch("aax2m4b.main.fetch_ffmpeg", side_effect=FetchError("404")):
            result = CliRunner().invoke(cli, ["fetch-ffmpeg", "--dest", str(tmp_path)])
        assert result.exit_code == 1
        assert "Fetch failed: 404" in result.output


def test_info(input_dir, book_info, write_library):
    source = input_dir / "Book-AAX_44_128.aax"
    source.write_bytes(b"aax")
    write_library(input_dir / "library.tsv", [{"asin": "B01", "title": "Unrelated"}])

    with patch("aax2m4b.main.probe_book", return_value=book_info):
        result = CliRunner().invoke(cli, ["info", str(source), "-a", "deadbeef"])

    assert result.exit_code == 0, result.output
    assert "Title:     The Long Road - A Novel" in result.output
    assert "Chapters:  3 (from probe)" in result.output
    assert "Library:   no match" in result.output

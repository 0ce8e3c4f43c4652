import logging
from pathlib import Path

import click

from aax2m4b.config import Config, ConfigError
from aax2m4b.core.chapters import build_timeline
from aax2m4b.core.decryption import params_for
from aax2m4b.core.library import load_library
from aax2m4b.core.naming import clean_author, clean_title
from aax2m4b.core.probe import probe_book
from aax2m4b.fetch import FetchError, fetch_ffmpeg
from aax2m4b.pipeline import FileStatus
from aax2m4b.runner import BatchRunner


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _make_config(**overrides) -> Config:
    fields = {}
    for key, val in overrides.items():
        if val is None:
            continue
        if isinstance(val, bool):
            val = "true" if val else "false"
        fields[key] = str(val)
    return Config(**fields)


def _echo_event(event_type: str, data: dict):
    if event_type == "batch_started":
        click.echo(f"Found {data['files']} files to process")
        if data["library"]:
            click.echo(f"Library index: {data['library']} entries")
    elif event_type == "file_started":
        click.echo(f"\nProcessing {data['source']} ...")
    elif event_type == "probed":
        click.echo(f"  Title:    {data['title']}")
        click.echo(f"  Author:   {data['author']}")
        click.echo(f"  Length:   {data['duration']}")
        click.echo(f"  Chapters: {data['chapters']}")
        if data["matched"]:
            click.echo("  Library:  matched")
    elif event_type == "warning":
        click.echo(f"  Warning: {data['message']}")
    elif event_type == "skipped":
        click.echo(f"  File already exists ... skipping ({data['output']})")
    elif event_type == "fallback":
        click.echo("  Problem with file, trying fallback processing")
    elif event_type == "converted":
        click.echo(f"Successfully converted {data['source']} to M4B.")
    elif event_type == "failed":
        click.echo(f"Conversion of {data['source']} failed: {data['error']}", err=True)
    elif event_type == "sleeping":
        click.echo(f"Run complete, sleeping for {data['seconds']} seconds")


@click.group()
@click.option("--log-level", default=None, help="Log level (debug, info, warning, error)")
@click.pass_context
def cli(ctx, log_level):
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option("--input", "-i", "input_path", default=None, help="Folder containing AAX/AAXC files")
@click.option("--output", "-o", "output_path", default=None, help="Root folder for converted books")
@click.option("--bitrate", "-b", type=int, default=None, help="Bitrate in kbps for re-encodes (default 64)")
@click.option("--activation-bytes", "-a", default=None, help="Activation bytes for decrypting AAX files")
@click.option("--clobber/--no-clobber", default=None, help="Replace books that were already converted")
@click.option("--recursive/--no-recursive", default=None, help="Scan the input folder recursively")
@click.option("--split-mp3", is_flag=True, default=False, help="Also write one MP3 per chapter")
@click.option("--loop", "-l", "loop", is_flag=True, default=False, help="Re-scan and convert on an interval")
@click.option("--loop-interval", type=int, default=None, help="Seconds to sleep between loop runs")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Disable progress output")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def convert(ctx, input_path, output_path, bitrate, activation_bytes, clobber, recursive,
            split_mp3, loop, loop_interval, quiet, verbose):
    config = _make_config(
        input_path=input_path,
        output_path=output_path,
        bitrate=bitrate,
        activation_bytes=activation_bytes,
        clobber=clobber,
        recursive=recursive,
        split_mp3=split_mp3 or None,
        loop_interval=loop_interval,
    )
    if verbose:
        level = "debug"
    elif quiet:
        level = "warning"
    else:
        level = ctx.obj.get("log_level") or config.log_level
    _setup_logging(level)

    runner = BatchRunner(config)
    if not quiet:
        runner.set_event_callback(_echo_event)

    try:
        results = runner.run(loop=loop)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise click.Abort from e

    if not quiet:
        converted = [r for r in results if r.status == FileStatus.CONVERTED]
        skipped = [r for r in results if r.status == FileStatus.SKIPPED]
        failed = [r for r in results if r.status == FileStatus.FAILED]
        click.echo(f"\nConverted: {len(converted)}  Skipped: {len(skipped)}  Failed: {len(failed)}")
        for result in failed:
            click.echo(f"  {result.source.name}: {result.error}")


@cli.command("fetch-ffmpeg")
@click.option("--url", default=None, help="Archive URL of an ffmpeg build")
@click.option("--dest", default=None, help="Folder to install ffmpeg/ffprobe into")
@click.pass_context
def fetch(ctx, url, dest):
    _setup_logging(ctx.obj.get("log_level") or "info")
    config = _make_config(ffmpeg_download_url=url, tools_dir=dest)
    click.echo("Fetching latest ffmpeg ...")
    try:
        installed = fetch_ffmpeg(config.ffmpeg_download_url, Path(config.tools_dir))
    except FetchError as e:
        click.echo(f"Fetch failed: {e}", err=True)
        raise click.Abort from e
    for path in installed:
        click.echo(f"  {path}")
    click.echo("Done")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--activation-bytes", "-a", default=None, help="Activation bytes for decrypting AAX files")
@click.pass_context
def info(ctx, file, activation_bytes):
    _setup_logging(ctx.obj.get("log_level") or "warning")
    config = _make_config(activation_bytes=activation_bytes)

    decryption = params_for(file, config.activation_bytes, config.voucher_suffix)
    book = probe_book(config.ffprobe, str(file), decryption.ffmpeg_args())
    timeline = build_timeline(file, book, config.source_marker, config.chapter_suffix)

    click.echo(f"Title:     {clean_title(book.title)}")
    click.echo(f"Author(s): {clean_author(book.artist)}")
    click.echo(f"Length:    {book.duration_str}")
    click.echo(f"Chapters:  {len(timeline)} (from {timeline.source})")

    library = load_library(file.parent / config.library_file)
    if library is not None:
        match = library.match(book.title)
        if match.resolved:
            click.echo(f"Library:   {match.entry.title} [{match.entry.asin}]")
        elif match.duplicate:
            click.echo("Library:   duplicate title, not matched")
        else:
            click.echo("Library:   no match")


if __name__ == "__main__":
    cli()

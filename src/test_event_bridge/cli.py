"""CLI for the test event bridge.

Provides commands to convert runner JSON output into service messages,
to run a test command and convert its output on the fly, and to summarize
converted output.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

import click

from .config import BridgeConfig, create_default_config, resolve_config_for_cli
from .converter import TestEventsConverter
from .exceptions import UnknownResult
from .sinks import StreamSink
from .summary import format_summary, summarize

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Longest line read from a child process; runner events carry whole test
# output and stack traces on one line.
STREAM_LIMIT = 64 * 1024 * 1024


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Test Event Bridge - convert test runner JSON events to service messages."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_config(config_path: str | None) -> BridgeConfig:
    try:
        return resolve_config_for_cli(config_path)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _build_converter(config: BridgeConfig, stream: TextIO) -> tuple[TestEventsConverter, StreamSink]:
    sink = StreamSink(stream, forward_raw=config.output.forward_raw)
    converter = TestEventsConverter(
        sink,
        config.create_resolver(),
        location_prefix=config.locations.prefix,
    )
    return converter, sink


def feed_lines(converter: TestEventsConverter, lines: Iterable[str]) -> int:
    """Feed lines to a converter and count the lines that failed.

    Lines that abort with UnknownResult are reported and skipped.
    """
    failures = 0
    for line in lines:
        try:
            ok = converter.feed(line)
        except UnknownResult as exc:
            logger.error("%s", exc)
            ok = False
        if not ok:
            failures += 1
    return failures


@cli.command("convert")
@click.argument("input_file", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file path")
@click.option("--strict", is_flag=True, help="Exit with status 1 if any line failed to convert")
def convert_command(input_file: TextIO, config_path: str | None, strict: bool) -> None:
    """Convert runner JSON output (file or stdin) to service messages."""
    config = _load_config(config_path)
    stdout = click.get_text_stream("stdout")
    converter, sink = _build_converter(config, stdout)

    failures = feed_lines(converter, input_file)
    sink.flush()

    if failures:
        logger.info("%d of %d lines could not be converted", failures, converter.lines_fed)
        if strict:
            sys.exit(1)


@cli.command("run", context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file path")
@click.option("--cwd", type=click.Path(file_okay=False), default=None, help="Working directory for the command")
def run_command(command: tuple[str, ...], config_path: str | None, cwd: str | None) -> None:
    """Run a test COMMAND and convert its output while it runs.

    Example: test-event-bridge run -- dart test --reporter json
    """
    config = _load_config(config_path)
    stdout = click.get_text_stream("stdout")
    converter, sink = _build_converter(config, stdout)

    returncode = asyncio.run(
        run_and_convert(list(command), converter, Path(cwd) if cwd else None)
    )
    sink.flush()
    sys.exit(returncode)


async def _forward_stderr(stream: asyncio.StreamReader) -> None:
    while True:
        line = await stream.readline()
        if not line:
            break
        sys.stderr.write(line.decode("utf-8", errors="replace"))


async def _convert_stdout(stream: asyncio.StreamReader, converter: TestEventsConverter) -> int:
    failures = 0
    while True:
        line = await stream.readline()
        if not line:
            break
        failures += feed_lines(converter, [line.decode("utf-8", errors="replace")])
    return failures


async def run_and_convert(
    command: list[str],
    converter: TestEventsConverter,
    cwd: Path | None = None,
) -> int:
    """Run a command and feed its stdout to the converter line by line.

    Args:
        command: Command and arguments to execute.
        converter: Converter receiving the command's stdout.
        cwd: Working directory. Defaults to the current directory.

    Returns:
        The command's exit code, 127 if the command was not found.
    """
    logger.debug("Running %s", " ".join(command))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            limit=STREAM_LIMIT,
        )
    except FileNotFoundError:
        logger.error("Command not found: %s", command[0])
        return 127

    try:
        if process.stdout is None or process.stderr is None:
            raise RuntimeError("Subprocess pipes were not created")
        failures, _ = await asyncio.gather(
            _convert_stdout(process.stdout, converter),
            _forward_stderr(process.stderr),
        )
    except BaseException:
        logger.error("Aborting command %s", command[0])
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
        raise

    returncode = await process.wait()

    if failures:
        logger.info("%d lines could not be converted", failures)
    logger.debug("Command %s completed with exit code %d", command[0], returncode)
    return returncode


@cli.command("summary")
@click.argument("input_file", type=click.File("r", encoding="utf-8"), default="-")
def summary_command(input_file: TextIO) -> None:
    """Summarize converted service-message output."""
    result = summarize(input_file)
    click.echo("=" * 50)
    click.echo("Test Summary")
    click.echo("=" * 50)
    for line in format_summary(result):
        click.echo(line)

    if not result.all_passed:
        sys.exit(1)


@cli.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config")
@click.argument("project_path", type=click.Path(file_okay=False, path_type=Path), default=".")
def init_command(project_path: Path, force: bool) -> None:
    """Create a default .test-bridge/config.toml in PROJECT_PATH."""
    try:
        config_file = create_default_config(project_path, force=force)
    except FileExistsError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Created {config_file}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

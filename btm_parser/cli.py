"""Command-line interface for the BTM parser."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import typer
from typer.core import TyperCommand

from btm_parser import __version__
from btm_parser.config import OUTPUT_FORMATS, Config, load_config, save_example_config
from btm_parser.errors import BTMParserError, ConfigError, FileNotFound, MalformedArchive
from btm_parser.logs import setup_logging
from btm_parser.output.render import render_json, render_table
from btm_parser.parser import parse


class DumpCommand(TyperCommand):
    """Command whose usage errors exit with status 1 like every other failure."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise


app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"btm-parser version {__version__}")
        raise typer.Exit()


@app.command(cls=DumpCommand)
def dump(
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Path to BackgroundItems-v*.btm"
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Write output to file instead of stdout"
    ),
    output_format: Optional[str] = typer.Option(
        None,
        "--format",
        help="Output format: json (default) or table"
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to configuration file (default: ~/.btm-parser.yaml)"
    ),
    root: Optional[Path] = typer.Option(
        None,
        "--root",
        help="Resolve bundle paths against this mount point (e.g. a disk image)"
    ),
    no_resolve: bool = typer.Option(
        False,
        "--no-resolve",
        help="Skip executable path resolution for login items and apps"
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Show debug diagnostics on stderr"
    ),
    generate_config: Optional[Path] = typer.Option(
        None,
        "--generate-config",
        help="Generate example configuration file at specified path and exit"
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """
    Parse a BackgroundItems-v*.btm file (macOS 13+).

    By default, prints the decoded items as JSON to stdout.
    Use --out to write results to a file.
    Use --format table for a human-readable view.
    Use --root to look up app bundles inside a mounted image.

    Examples:
        btm-parser -f BackgroundItems-v13.btm
        btm-parser -f BackgroundItems-v13.btm -o items.json
        btm-parser -f BackgroundItems-v13.btm --format table
        btm-parser -f image/private/var/db/com.apple.backgroundtaskmanagement/BackgroundItems-v13.btm --root image
    """
    if generate_config:
        try:
            save_example_config(generate_config)
            print(f"✓ Example configuration saved to {generate_config}", file=sys.stderr)
            sys.exit(0)
        except OSError as e:
            print(f"Error generating config: {e}", file=sys.stderr)
            sys.exit(1)

    try:
        config = load_config(config_file)
    except (FileNotFoundError, ConfigError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # CLI overrides config
    if root:
        config.bundle_root = str(root)
    if no_resolve:
        config.resolve_executables = False
    if output_format:
        if output_format not in OUTPUT_FORMATS:
            print(f"Error: Invalid format '{output_format}'. Must be one of: {', '.join(OUTPUT_FORMATS)}", file=sys.stderr)
            sys.exit(1)
        config.output_format = output_format

    setup_logging(logging.DEBUG if debug else config.logging_level)

    if not file:
        print("Error: No input file specified (use -f/--file).", file=sys.stderr)
        sys.exit(1)

    output = _parse_and_render(file, config)

    try:
        if out:
            if not out.parent.exists():
                print(f"Error: Directory does not exist: {out.parent}", file=sys.stderr)
                sys.exit(1)
            out.write_text(output, encoding="utf-8")
            print(f"✓ Parsed data written to {out}", file=sys.stderr)
        else:
            print(output)
    except OSError as e:
        print(f"Output failed: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


def _parse_and_render(file: Path, config: Config) -> str:
    """Parse the BTM file and render it, exiting with status 1 on failure."""
    try:
        result = parse(file, config)
    except FileNotFound as e:
        print(f"Error: BTM file not found at path: {e.path}", file=sys.stderr)
        sys.exit(1)
    except MalformedArchive as e:
        print(f"Error: Failed to decode BTM file. Reason: {e.reason}", file=sys.stderr)
        sys.exit(1)
    except BTMParserError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if config.output_format == "table":
        return render_table(result)
    return render_json(result)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
HEIC to JPEG Converter

Converts HEIC/HEIF photos to JPEG (quality 95), writing each output next to
its source with the extension replaced by .jpg. Transparent pixels are
composited over white. Optionally strips the EXIF segment from the result,
shows the EXIF of source files, or checks JPEG files for leftover EXIF.

Pipeline per file:
    read -> decode (pillow-heif) -> normalize -> encode (Pillow)
         -> strip EXIF (optional) -> atomic write

Prerequisites:
    - exiftool (only for --show-exif)

Usage:
    heic-convert                       # Convert every HEIC under .
    heic-convert ~/Photos --remove-exif
    heic-convert photo.HEIC --show-exif
    heic-convert ~/Photos --check-exif
"""

from __future__ import annotations

import argparse
import io
import logging
import os
import shutil
import sys
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Final, override

import exiftool
import pillow_heif
from exiftool.exceptions import ExifToolException
from PIL import Image
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from jpeg_container import ParseError, check_exif_in_jpeg, strip_metadata, write_bytes_atomic
from raster import CanonicalRaster, PixelSource, from_pillow, normalize

__all__: Final[list[str]] = [
    "BatchSummary",
    "CheckSummary",
    "ConversionError",
    "ConversionResult",
    "ConvertOptions",
    "DecodeError",
    "EncodeError",
    "JPEG_QUALITY",
    "MetadataError",
    "NotFoundError",
    "UnsupportedFormatError",
    "convert_all",
    "convert_heic_to_jpeg",
    "decode_heic",
    "encode_jpeg",
    "find_heic_files",
    "find_jpeg_files",
    "generate_output_path",
    "is_heic_file",
    "is_jpeg_file",
    "main",
    "read_display_tags",
    "run_check_exif",
    "run_convert",
    "run_show_exif",
]

# ╔══════════════════════════════════════════════════════════════════╗
# ║                        CONFIGURATION                              ║
# ╚══════════════════════════════════════════════════════════════════╝

# JPEG encoding quality (0-100)
JPEG_QUALITY: Final[int] = 95

HEIC_EXTENSIONS: Final[frozenset[str]] = frozenset({".heic", ".heif"})
JPEG_EXTENSIONS: Final[frozenset[str]] = frozenset({".jpg", ".jpeg"})
OUTPUT_EXTENSION: Final[str] = ".jpg"

# Parallel conversions; overridden by --jobs
JOBS_ENV_VAR: Final[str] = "HEIC_CONVERT_JOBS"

# Shown first by --show-exif, in this order (exiftool tag names)
IMPORTANT_TAGS: Final[tuple[str, ...]] = (
    "DateTimeOriginal",
    "ModifyDate",
    "Make",
    "Model",
    "Orientation",
    "XResolution",
    "YResolution",
    "ResolutionUnit",
    "Software",
    "Artist",
    "Copyright",
    "ExifVersion",
    "Flash",
    "FocalLength",
    "FNumber",
    "ExposureTime",
    "ISO",
    "GPSLatitude",
    "GPSLongitude",
    "ExifImageWidth",
    "ExifImageHeight",
)
MAX_OTHER_TAGS: Final[int] = 10

# ═══════════════════════════════════════════════════════════════════
#                        END CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

pillow_heif.register_heif_opener()

console = Console()
logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#                        EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════


class ConversionError(Exception):
    """Base exception for conversion errors."""


class NotFoundError(ConversionError):
    """Raised when the input path does not exist."""


class UnsupportedFormatError(ConversionError):
    """Raised when a file does not have a supported extension."""


class DecodeError(ConversionError):
    """Raised when source bytes cannot be decoded as HEIC/HEIF."""


class EncodeError(ConversionError):
    """Raised when the canonical raster cannot be encoded as JPEG."""


class MetadataError(ConversionError):
    """Raised when metadata cannot be read for display."""


# ═══════════════════════════════════════════════════════════════════
#                        DATA MODELS
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class ConvertOptions:
    """Options for HEIC to JPEG conversion."""

    remove_exif: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class ConversionResult:
    """Outcome of one successful conversion."""

    source: Path
    output: Path
    exif_warning: str | None = None  # Set when EXIF removal failed


@dataclass(frozen=True, slots=True, kw_only=True)
class BatchSummary:
    """Success/failure counts for a batch run."""

    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


# ═══════════════════════════════════════════════════════════════════
#                        RUNTIME HELPERS
# ═══════════════════════════════════════════════════════════════════


def _get_env_int(var_name: str, /) -> int | None:
    """Get a positive int from environment variable, or None if invalid."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        return None
    try:
        result = int(value)
        return result if result > 0 else None
    except ValueError:
        return None


def default_jobs() -> int:
    """Worker count from HEIC_CONVERT_JOBS, else the CPU count."""
    return _get_env_int(JOBS_ENV_VAR) or os.cpu_count() or 1


class _ColoredFormatter(logging.Formatter):
    """Logging formatter with colored level names."""

    _LEVEL_COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: "\033[0;37m",
        logging.INFO: "\033[0;32m",
        logging.WARNING: "\033[1;33m",
        logging.ERROR: "\033[0;31m",
    }
    _RESET: ClassVar[str] = "\033[0m"

    @override
    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, self._RESET)
        return f"{color}[{record.levelname}]{self._RESET} {record.name}: {record.getMessage()}"


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr; DEBUG when verbose, else WARNING."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h.formatter, _ColoredFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_ColoredFormatter())
        root.addHandler(handler)


# ═══════════════════════════════════════════════════════════════════
#                        FILE DISCOVERY
# ═══════════════════════════════════════════════════════════════════


def is_heic_file(path: Path) -> bool:
    """Check for a .heic/.heif extension (case-insensitive)."""
    return path.suffix.lower() in HEIC_EXTENSIONS


def is_jpeg_file(path: Path) -> bool:
    """Check for a .jpg/.jpeg extension (case-insensitive)."""
    return path.suffix.lower() in JPEG_EXTENSIONS


def _find_files(directory: Path, predicate: Callable[[Path], bool]) -> tuple[Path, ...]:
    if not directory.is_dir():
        raise NotFoundError(f"Directory not found: {directory}")
    files = [p for p in directory.rglob("*") if p.is_file() and predicate(p)]
    return tuple(sorted(files))


def find_heic_files(directory: Path) -> tuple[Path, ...]:
    """Recursively find HEIC/HEIF files, sorted by path."""
    return _find_files(directory, is_heic_file)


def find_jpeg_files(directory: Path) -> tuple[Path, ...]:
    """Recursively find JPEG files, sorted by path."""
    return _find_files(directory, is_jpeg_file)


def generate_output_path(input_path: Path) -> Path:
    """Output path next to the input with the extension replaced by .jpg."""
    return input_path.with_suffix(OUTPUT_EXTENSION)


def resolve_targets(
    target: Path,
    predicate: Callable[[Path], bool],
    finder: Callable[[Path], tuple[Path, ...]],
    kind: str,
) -> tuple[Path, ...]:
    """Expand a file or directory argument into the files to process.

    Raises:
        NotFoundError: If target does not exist.
        UnsupportedFormatError: If target is a file of the wrong kind.
    """
    if not target.exists():
        raise NotFoundError(f"Path not found: {target}")
    if target.is_dir():
        return finder(target)
    if not predicate(target):
        raise UnsupportedFormatError(f"Not a {kind} file: {target}")
    return (target,)


# ═══════════════════════════════════════════════════════════════════
#                        CODECS
# ═══════════════════════════════════════════════════════════════════


def decode_heic(data: bytes) -> PixelSource:
    """Decode HEIC/HEIF bytes into a raster.

    Raises:
        DecodeError: If the bytes are not a valid HEIF image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            return from_pillow(image)
    except (OSError, ValueError, RuntimeError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Failed to decode HEIC data: {e}") from e


def encode_jpeg(raster: CanonicalRaster, quality: int = JPEG_QUALITY) -> bytes:
    """Encode a canonical raster as baseline JPEG.

    Raises:
        EncodeError: If Pillow cannot encode the raster.
    """
    if raster.bounds.is_empty:
        raise EncodeError(f"Cannot encode an empty {raster.bounds.width}x{raster.bounds.height} image")

    buffer = io.BytesIO()
    try:
        raster.to_pillow().save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as e:
        raise EncodeError(f"Failed to encode JPEG: {e}") from e
    return buffer.getvalue()


# ═══════════════════════════════════════════════════════════════════
#                        CONVERSION
# ═══════════════════════════════════════════════════════════════════


def convert_heic_to_jpeg(
    input_path: Path,
    options: ConvertOptions = ConvertOptions(),
    quality: int = JPEG_QUALITY,
) -> ConversionResult:
    """Convert one HEIC file to JPEG next to it.

    Nothing is written unless encoding succeeded. An EXIF removal failure
    does not fail the conversion; the unstripped JPEG is kept and the
    problem is returned in ``exif_warning``.

    Raises:
        NotFoundError: If input_path does not exist.
        UnsupportedFormatError: If input_path is not a HEIC/HEIF file.
        DecodeError: If the file cannot be decoded.
        EncodeError: If the JPEG cannot be encoded.
        OSError: If reading the input or writing the output fails.
    """
    if not input_path.exists():
        raise NotFoundError(f"File not found: {input_path}")
    if not is_heic_file(input_path):
        raise UnsupportedFormatError(f"Not a HEIC file: {input_path}")

    raster = decode_heic(input_path.read_bytes())
    bounds = raster.bounds
    logger.debug("Decoded %s (%dx%d, %s)", input_path, bounds.width, bounds.height, type(raster).__name__)

    jpeg_bytes = encode_jpeg(normalize(raster), quality)

    exif_warning: str | None = None
    if options.remove_exif:
        try:
            jpeg_bytes = strip_metadata(jpeg_bytes)
        except ParseError as e:
            exif_warning = f"EXIF removal failed: {e}"
            logger.warning("%s: %s", input_path, exif_warning)

    output_path = generate_output_path(input_path)
    write_bytes_atomic(output_path, jpeg_bytes)
    logger.debug("Wrote %s (%d bytes)", output_path, len(jpeg_bytes))

    return ConversionResult(source=input_path, output=output_path, exif_warning=exif_warning)


def convert_all(
    paths: tuple[Path, ...],
    options: ConvertOptions,
    jobs: int = 1,
    on_before: Callable[[Path], None] | None = None,
) -> BatchSummary:
    """Convert files in parallel, reporting each result as it completes.

    A failing file is reported and counted; it never stops the batch.
    ``on_before`` runs for each file ahead of submission (used for --show-exif).
    """
    succeeded = 0
    failed = 0

    with (
        Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress,
        ThreadPoolExecutor(max_workers=max(1, jobs)) as executor,
    ):
        task = progress.add_task("Converting...", total=len(paths))
        future_to_path: dict[Future[ConversionResult], Path] = {}

        for path in paths:
            if on_before is not None:
                on_before(path)
            future_to_path[executor.submit(convert_heic_to_jpeg, path, options)] = path

        for future in as_completed(future_to_path):
            path = future_to_path[future]
            try:
                result = future.result()
            except (ConversionError, OSError) as e:
                failed += 1
                console.print(f"[red]✗[/] Conversion failed: {path} - {e}")
            else:
                succeeded += 1
                if result.exif_warning:
                    console.print(f"[yellow]Warning:[/] {result.output}: {result.exif_warning}")
                console.print(f"[green]✓[/] {result.source} → {result.output}")
            progress.advance(task)

    return BatchSummary(succeeded=succeeded, failed=failed)


# ═══════════════════════════════════════════════════════════════════
#                        EXIF DISPLAY
# ═══════════════════════════════════════════════════════════════════


def read_display_tags(path: Path) -> dict[str, str]:
    """Read EXIF tags of any image with exiftool, keyed by tag name.

    Raises:
        MetadataError: If exiftool is missing or fails.
    """
    if not shutil.which("exiftool"):
        raise MetadataError("exiftool not found in PATH")

    try:
        with exiftool.ExifToolHelper(common_args=["-G"]) as et:
            metadata = et.get_metadata(str(path))[0]
    except (ExifToolException, OSError) as e:
        raise MetadataError(f"exiftool failed for {path}: {e}") from e

    tags: dict[str, str] = {}
    for key, value in metadata.items():
        group, _, name = key.partition(":")
        if group == "EXIF" and name:
            tags[name] = str(value)
    return tags


def show_exif(path: Path) -> None:
    """Print the EXIF tags of one file, important tags first."""
    tags = read_display_tags(path)

    if not tags:
        console.print(f"[bold]EXIF: {path.name}[/] [dim]none[/]")
        return

    table = Table(title=f"EXIF: {path.name}")
    table.add_column("Tag", style="cyan")
    table.add_column("Value")

    for name in IMPORTANT_TAGS:
        if name in tags:
            table.add_row(name, tags.pop(name))

    others = sorted(tags)
    for name in others[:MAX_OTHER_TAGS]:
        table.add_row(f"[dim]{name}[/]", tags[name])
    if len(others) > MAX_OTHER_TAGS:
        table.add_row("[dim]...[/]", f"[dim]{len(others) - MAX_OTHER_TAGS} more tag(s)[/]")

    console.print(table)


def _show_exif_warning_only(path: Path) -> None:
    try:
        show_exif(path)
    except MetadataError as e:
        console.print(f"[yellow]Warning:[/] could not show EXIF for {path}: {e}")


# ═══════════════════════════════════════════════════════════════════
#                        COMMANDS
# ═══════════════════════════════════════════════════════════════════


def _print_summary(title: str, rows: list[tuple[str, int]]) -> None:
    table = Table(title=title)
    table.add_column("Result", style="cyan")
    table.add_column("Files", justify="right")
    for label, count in rows:
        table.add_row(label, str(count))
    console.print(table)


def run_convert(
    target: Path,
    options: ConvertOptions,
    jobs: int = 1,
    show_exif_first: bool = False,
) -> BatchSummary:
    """Convert a HEIC file, or every HEIC file under a directory.

    Raises:
        NotFoundError: If target does not exist.
        UnsupportedFormatError: If target is a non-HEIC file.
    """
    heic_files = resolve_targets(target, is_heic_file, find_heic_files, "HEIC")

    if not heic_files:
        console.print(f"[yellow]No HEIC files found in {target}[/]")
        return BatchSummary()

    summary = convert_all(
        heic_files,
        options,
        jobs=jobs,
        on_before=_show_exif_warning_only if show_exif_first else None,
    )

    if summary.total > 1:
        _print_summary(
            "Conversion Results",
            [("Succeeded", summary.succeeded), ("Failed", summary.failed)],
        )
    return summary


def run_show_exif(target: Path) -> BatchSummary:
    """Display EXIF for a HEIC file, or every HEIC file under a directory."""
    heic_files = resolve_targets(target, is_heic_file, find_heic_files, "HEIC")

    if not heic_files:
        console.print(f"[yellow]No HEIC files found in {target}[/]")
        return BatchSummary()

    failed = 0
    for path in heic_files:
        try:
            show_exif(path)
        except MetadataError as e:
            console.print(f"[yellow]Warning:[/] could not show EXIF for {path}: {e}")
            failed += 1

    summary = BatchSummary(succeeded=len(heic_files) - failed, failed=failed)
    if summary.total > 1:
        _print_summary("EXIF Display Results", [("Shown", summary.succeeded), ("Failed", summary.failed)])
    return summary


@dataclass(frozen=True, slots=True, kw_only=True)
class CheckSummary:
    """Counts for --check-exif."""

    clean: int = 0
    with_exif: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.clean + self.with_exif + self.errors


def run_check_exif(target: Path) -> CheckSummary:
    """Report whether JPEG files still carry EXIF."""
    jpeg_files = resolve_targets(target, is_jpeg_file, find_jpeg_files, "JPEG")

    clean = with_exif = errors = 0
    for path in jpeg_files:
        try:
            found, tags = check_exif_in_jpeg(path)
        except (ParseError, OSError) as e:
            console.print(f"[red]✗[/] Error: {path} - {e}")
            errors += 1
            continue

        if found:
            console.print(f"[red]✗[/] EXIF present: {path}")
            if tags:
                console.print(f"  First tag: {tags[0]}")
                if len(tags) > 1:
                    console.print(f"  ({len(tags) - 1} more tag(s))")
            with_exif += 1
        else:
            console.print(f"[green]✓[/] No EXIF: {path}")
            clean += 1

    summary = CheckSummary(clean=clean, with_exif=with_exif, errors=errors)
    _print_summary(
        "EXIF Check Results",
        [
            ("Total", summary.total),
            ("No EXIF", summary.clean),
            ("EXIF present", summary.with_exif),
            ("Errors", summary.errors),
        ],
    )
    return summary


# ═══════════════════════════════════════════════════════════════════
#                        CLI
# ═══════════════════════════════════════════════════════════════════


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="heic-convert",
        description="Convert HEIC/HEIF images to JPEG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Without a path, every HEIC file under the current directory is converted.
Output files are written next to their sources with a .jpg extension.

Environment variables:
  {JOBS_ENV_VAR}  Parallel conversions (default: CPU count)

Examples:
  %(prog)s                          # Convert all HEIC files under .
  %(prog)s IMG_0001.HEIC            # Convert one file
  %(prog)s ~/Photos --remove-exif   # Convert and strip EXIF
  %(prog)s ~/Photos --show-exif     # Show EXIF without converting
  %(prog)s ~/Photos --check-exif    # Check JPEG files for leftover EXIF
""",
    )
    parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path("."),
        help="File or directory to process (default: current directory)",
    )
    parser.add_argument(
        "--remove-exif",
        action="store_true",
        help="Strip EXIF from the converted JPEG",
    )
    parser.add_argument(
        "--show-exif",
        action="store_true",
        help="Show EXIF of HEIC files (converts too when combined with --remove-exif)",
    )
    parser.add_argument(
        "--check-exif",
        action="store_true",
        help="Check JPEG files for remaining EXIF",
    )
    parser.add_argument(
        "--jobs",
        "-j",
        type=int,
        default=default_jobs(),
        help=f"Parallel conversions (default: ${JOBS_ENV_VAR} or CPU count)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Script entry point."""
    args = parse_arguments(argv)
    configure_logging(args.verbose)

    try:
        if args.check_exif:
            run_check_exif(args.path)
        elif args.show_exif and not args.remove_exif:
            run_show_exif(args.path)
        else:
            options = ConvertOptions(remove_exif=args.remove_exif)
            run_convert(args.path, options, jobs=args.jobs, show_exif_first=args.show_exif)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        sys.exit(130)
    except (NotFoundError, UnsupportedFormatError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
TPG Unpacker
Extract TPG texture packages into editable PNG images

Features:
- One PNG image and one JSON sidecar per texture
- Sidecars keep the id hash, format and unidentified header fields
- Package-level manifest for byte-identical repacking
- Parallel per-texture decoding
- Per-texture error report; one bad texture does not stop the others
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

try:
    from PIL import Image
    PIL_AVAILABLE = True
except ImportError:
    PIL_AVAILABLE = False
    print("Warning: PIL/Pillow not installed. Image conversion features will be disabled.")

from tpg_errors import DecodeError, TPGError
from tpg_package import TextureMeta, TexturePackage, TextureRecord, read_texture_package
from tpg_pool import DEFAULT_WORKERS, run_ordered


# Configure logging
logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)

IMAGE_SUFFIX = '.png'
SIDECAR_SUFFIX = '.json'
MANIFEST_NAME = 'archive.json'


@dataclass
class ExtractionStats:
    """Statistics for extraction process"""
    total: int = 0
    success: int = 0
    failed: int = 0

    def add_total(self):
        self.total += 1

    def add_success(self):
        self.success += 1

    def add_failed(self):
        self.failed += 1

    def print_summary(self):
        logger.info(f"\n### Extraction Summary ###")
        logger.info(f"Total textures: {self.total}")
        logger.info(f"Successfully processed: {self.success}")
        logger.info(f"Failed: {self.failed}")


@dataclass
class ExtractionReport:
    """Outcome of extracting one package"""
    output_dir: Path
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[DecodeError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def texture_basename(index: int, id_hash: int) -> str:
    """File stem for a record; the position prefix keeps duplicate hashes apart"""
    return f"{index:04d}_{id_hash:08x}"


def build_manifest(package: TexturePackage) -> dict:
    return {
        'record_count': len(package.textures),
        'header_reserved': package.header_reserved.hex(),
        'textures': [texture_basename(i, r.id_hash) for i, r in enumerate(package.textures)],
    }


def save_as_png(rgba_data: bytes, width: int, height: int, output_path: Union[str, Path], flip: bool = False):
    """Save RGBA data as PNG"""
    if not PIL_AVAILABLE:
        raise RuntimeError("PIL/Pillow is required for image saving")

    img = Image.frombytes('RGBA', (width, height), rgba_data)
    # textures are stored bottom-up for OpenGL
    if flip:
        img = img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    img.save(output_path, 'PNG')


def write_json(path: Union[str, Path], data: dict):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
        f.write('\n')


def _extract_record_worker(task: Tuple[int, TextureRecord, str, bool, bool]
                           ) -> Tuple[str, str, Optional[TPGError]]:
    """Decode and save one record; returns (basename, status, codec error)"""
    index, record, output_dir, flip, overwrite = task
    basename = texture_basename(index, record.id_hash)
    image_path = Path(output_dir) / (basename + IMAGE_SUFFIX)
    sidecar_path = Path(output_dir) / (basename + SIDECAR_SUFFIX)

    if not overwrite and image_path.exists() and sidecar_path.exists():
        return basename, 'skipped', None

    try:
        rgba = record.decode()
    except TPGError as e:
        return basename, 'failed', e

    save_as_png(rgba, record.width, record.height, image_path, flip)
    write_json(sidecar_path, TextureMeta.from_record(record, index, flip).to_dict())
    return basename, 'written', None


def extract_records(package: TexturePackage, output_dir: Union[str, Path],
                    workers: int = DEFAULT_WORKERS, flip: bool = True, overwrite: bool = False,
                    stats: ExtractionStats = None) -> ExtractionReport:
    """Write one image and one sidecar per record, plus the package manifest"""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    report = ExtractionReport(output_dir=output_path)

    tasks = [(i, record, str(output_path), flip, overwrite) for i, record in enumerate(package.textures)]
    results = run_ordered(_extract_record_worker, tasks, workers)

    for (index, record, *_), (basename, status, error) in zip(tasks, results):
        if stats:
            stats.add_total()
        if status == 'failed':
            failure = DecodeError(f"Failed to decode texture: {type(error).__name__}: {error.message}",
                                  record_index=index, id_hash=record.id_hash)
            failure.__cause__ = error
            logger.error(f"* {failure}")
            report.failures.append(failure)
            if stats:
                stats.add_failed()
            continue
        if status == 'skipped':
            logger.info(f"* Skipping, already exists: {basename}")
            report.skipped.append(basename)
        else:
            logger.info(f"* Extracting: {basename} ({record.format.name} {record.width}x{record.height})")
            report.written.append(basename)
        if stats:
            stats.add_success()

    write_json(output_path / MANIFEST_NAME, build_manifest(package))
    return report


def extract_package(archive_path: Union[str, Path], output_dir: Union[str, Path] = None,
                    workers: int = DEFAULT_WORKERS, flip: bool = True, overwrite: bool = False,
                    stats: ExtractionStats = None) -> ExtractionReport:
    """Extract a single TPG file; output defaults to the archive path without suffix"""
    archive_path = Path(archive_path)
    if output_dir is None:
        output_dir = archive_path.with_suffix('')
    logger.info(f"\n### Extracting package: {archive_path}")

    package = read_texture_package(archive_path)
    logger.debug(f"{len(package.textures)} textures in {archive_path}")
    return extract_records(package, output_dir, workers, flip, overwrite, stats)


def extract_directory(input_dir: Union[str, Path], output_dir: Union[str, Path], recursive: bool = False,
                      workers: int = DEFAULT_WORKERS, flip: bool = True, overwrite: bool = False,
                      stats: ExtractionStats = None) -> List[ExtractionReport]:
    """Extract every TPG file in a directory, each into its own subdirectory"""
    input_path = Path(input_dir)
    pattern = "**/*.tpg" if recursive else "*.tpg"
    reports = []
    for tpg_file in sorted(input_path.glob(pattern)):
        if not tpg_file.is_file():
            continue
        target = Path(output_dir) / tpg_file.relative_to(input_path).with_suffix('')
        try:
            reports.append(extract_package(tpg_file, target, workers, flip, overwrite, stats))
        except TPGError as e:
            logger.error(f"Failed to extract {tpg_file}: {e}")
            if stats:
                stats.add_failed()
    return reports


def main():
    """Main function"""
    parser = argparse.ArgumentParser(
        description='TPG Unpacker - Extract TPG texture packages to PNG + JSON',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Output layout:
  NNNN_<hash>.png   texture image (RGBA)
  NNNN_<hash>.json  sidecar: id hash, format, size, unidentified fields
  archive.json      package-level header fields and texture order

Examples:
  %(prog)s textures.tpg
  %(prog)s textures.tpg -o ./extracted --no-flip
        """
    )

    parser.add_argument('input', help='Path to TPG file')
    parser.add_argument('-o', '--output', help='Output directory (default: input path without extension)')
    parser.add_argument('-j', '--workers', type=int, default=DEFAULT_WORKERS,
                        help=f'Worker processes (default: {DEFAULT_WORKERS})')
    parser.add_argument('--no-flip', action='store_true', help='Keep stored (bottom-up) row order')
    parser.add_argument('--overwrite', action='store_true', help='Overwrite existing files')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    input_path = Path(args.input)
    if not input_path.is_file():
        logger.error(f"Input file does not exist: {input_path}")
        sys.exit(1)

    if not PIL_AVAILABLE:
        logger.error("Error: PIL/Pillow is required for image operations")
        logger.error("Install with: pip install Pillow")
        sys.exit(1)

    stats = ExtractionStats()
    try:
        report = extract_package(input_path, args.output, args.workers, not args.no_flip, args.overwrite, stats)
    except TPGError as e:
        logger.error(f"Error unpacking TPG file: {e}")
        sys.exit(1)
    stats.print_summary()
    if not report.ok:
        sys.exit(1)


if __name__ == '__main__':
    main()

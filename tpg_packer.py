#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
TPG Packer
Build TPG texture packages from extracted PNG + JSON pairs

Features:
- Re-encodes every image into the format named by its sidecar
- Optional forced format for all textures
- Restores id hashes and unidentified header fields verbatim
- Byte-identical output for an unmodified extract directory
- Parallel per-texture encoding
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

try:
    from PIL import Image
    PIL_AVAILABLE = True
except ImportError:
    PIL_AVAILABLE = False
    print("Warning: PIL/Pillow not installed. Image conversion features will be disabled.")

from tpg_errors import (CorruptArchiveError, DimensionMismatchError, InvalidRecordError, MissingPairError,
                        TPGError, UnsupportedFormatError)
from tpg_formats import FormatLike, TexFormat, encode, parse_format
from tpg_package import (DEFAULT_HEADER_RESERVED, TextureMeta, TexturePackage, TextureRecord,
                         write_texture_package)
from tpg_pool import DEFAULT_WORKERS, run_ordered
from tpg_unpacker import IMAGE_SUFFIX, MANIFEST_NAME, SIDECAR_SUFFIX


# Configure logging
logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


@dataclass
class PackingStats:
    """Statistics for packing process"""
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
        logger.info(f"\n### Packing Summary ###")
        logger.info(f"Total textures: {self.total}")
        logger.info(f"Successfully processed: {self.success}")
        logger.info(f"Failed: {self.failed}")


@dataclass
class TexturePair:
    """An image and its sidecar"""
    name: str
    image_path: Path
    sidecar_path: Path


PairEntry = Tuple[TexturePair, TextureMeta]


def scan_directory_for_pairs(input_dir: Union[str, Path]) -> List[TexturePair]:
    """Match images with sidecars by file stem, sorted by stem"""
    input_path = Path(input_dir)
    images = {p.stem: p for p in input_path.glob('*' + IMAGE_SUFFIX) if p.is_file()}
    sidecars = {p.stem: p for p in input_path.glob('*' + SIDECAR_SUFFIX)
                if p.is_file() and p.name != MANIFEST_NAME}

    orphans = sorted(set(images) - set(sidecars))
    if orphans:
        raise MissingPairError(f"Missing sidecar for image(s): {', '.join(images[n].name for n in orphans)}")
    orphans = sorted(set(sidecars) - set(images))
    if orphans:
        raise MissingPairError(f"Missing image for sidecar(s): {', '.join(sidecars[n].name for n in orphans)}")

    return [TexturePair(name, images[name], sidecars[name]) for name in sorted(images)]


def load_sidecar(path: Union[str, Path], index: int = None) -> TextureMeta:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return TextureMeta.from_dict(data)
    except UnsupportedFormatError as e:
        raise UnsupportedFormatError(f"{e.message} in {path}", record_index=index) from None
    except (ValueError, TypeError, AttributeError) as e:
        raise InvalidRecordError(f"Invalid sidecar {path}: {e}", record_index=index) from e


def load_manifest(input_dir: Union[str, Path]) -> Optional[dict]:
    manifest_path = Path(input_dir) / MANIFEST_NAME
    if not manifest_path.is_file():
        return None
    try:
        with open(manifest_path, 'r', encoding='utf-8') as f:
            manifest = json.load(f)
    except ValueError as e:
        raise CorruptArchiveError(f"Invalid {MANIFEST_NAME} in {input_dir}: {e}") from e
    if not isinstance(manifest, dict):
        raise CorruptArchiveError(f"Invalid {MANIFEST_NAME} in {input_dir}: expected a JSON object")
    return manifest


def manifest_header_reserved(manifest: Optional[dict]) -> bytes:
    if manifest is None or 'header_reserved' not in manifest:
        return DEFAULT_HEADER_RESERVED
    try:
        return bytes.fromhex(manifest['header_reserved'])
    except (ValueError, TypeError) as e:
        raise CorruptArchiveError(f"Invalid header_reserved in {MANIFEST_NAME}: {e}") from e


def sort_by_record_index(entries: List[PairEntry]) -> List[PairEntry]:
    """Order pairs by the record index in their sidecar

    Sidecars without an index keep file stem order and go after the indexed ones.
    """
    claimed = {}
    for pair, meta in entries:
        if meta.index is None:
            continue
        if meta.index < 0:
            raise InvalidRecordError(f"Negative record index {meta.index} in {pair.sidecar_path}")
        if meta.index in claimed:
            raise InvalidRecordError(
                f"Sidecars {claimed[meta.index]} and {pair.sidecar_path.name} both claim record index {meta.index}",
                record_index=meta.index)
        claimed[meta.index] = pair.sidecar_path.name
    return sorted(entries, key=lambda entry: (entry[1].index is None, entry[1].index or 0))


def check_manifest_listing(manifest: Optional[dict], names: List[str]):
    """Fail unless the manifest lists exactly these textures in this order"""
    if manifest is None or 'textures' not in manifest:
        return
    listed = manifest['textures']
    if not isinstance(listed, list):
        raise CorruptArchiveError(f"Invalid textures list in {MANIFEST_NAME}")

    present = set(names)
    missing = [name for name in listed if name not in present]
    if missing:
        raise MissingPairError(f"{MANIFEST_NAME} lists texture(s) not in the directory: {', '.join(missing)}")
    listed_names = set(listed)
    unlisted = [name for name in names if name not in listed_names]
    if unlisted:
        raise MissingPairError(f"Texture(s) not listed in {MANIFEST_NAME}: {', '.join(unlisted)}")
    if listed != names:
        raise InvalidRecordError(f"Sidecar record indices disagree with the texture order in {MANIFEST_NAME}")


def load_rgba_image(image_path: Union[str, Path], meta: TextureMeta, index: int = None) -> bytes:
    """Read an image as RGBA8888 in stored (unflipped) row order"""
    if not PIL_AVAILABLE:
        raise RuntimeError("PIL/Pillow is required for image conversion")

    with Image.open(image_path) as img:
        if img.size != (meta.width, meta.height):
            raise DimensionMismatchError(
                f"Image {image_path} is {img.size[0]}x{img.size[1]}, sidecar says {meta.width}x{meta.height}",
                record_index=index, id_hash=meta.id_hash)
        if img.mode != 'RGBA':
            img = img.convert('RGBA')
        if meta.flipped:
            img = img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        return img.tobytes()


def _pack_record_worker(task: Tuple[int, str, TextureMeta, Optional[TexFormat]]) -> TextureRecord:
    index, image_path, meta, forced_format = task
    rgba = load_rgba_image(image_path, meta, index)
    target_format = forced_format if forced_format is not None else meta.format
    texels = encode(target_format, meta.width, meta.height, rgba)
    return TextureRecord(
        id_hash=meta.id_hash,
        format=target_format,
        width=meta.width,
        height=meta.height,
        texel_bytes=texels,
        reserved=meta.reserved,
    )


def build_package(input_dir: Union[str, Path], forced_format: FormatLike = None,
                  workers: int = DEFAULT_WORKERS, stats: PackingStats = None) -> TexturePackage:
    """Build a package model from a directory of image + sidecar pairs"""
    input_path = Path(input_dir)
    if not input_path.is_dir():
        raise NotADirectoryError(f"Input path is not a directory: {input_dir}")
    if forced_format is not None:
        forced_format = parse_format(forced_format)

    pairs = scan_directory_for_pairs(input_path)
    manifest = load_manifest(input_path)
    header_reserved = manifest_header_reserved(manifest)

    entries = [(pair, load_sidecar(pair.sidecar_path, i)) for i, pair in enumerate(pairs)]
    entries = sort_by_record_index(entries)
    check_manifest_listing(manifest, [pair.name for pair, _ in entries])

    tasks = []
    for i, (pair, meta) in enumerate(entries):
        tasks.append((i, str(pair.image_path), meta, forced_format))
        if stats:
            stats.add_total()

    try:
        records = run_ordered(_pack_record_worker, tasks, workers)
    except TPGError:
        if stats:
            stats.add_failed()
        raise

    for (pair, _), record in zip(entries, records):
        logger.info(f"* Packing: {pair.name} ({record.format.name} {record.width}x{record.height})")
        if stats:
            stats.add_success()

    return TexturePackage(textures=records, header_reserved=header_reserved)


def pack_directory(input_dir: Union[str, Path], output_path: Union[str, Path],
                   forced_format: FormatLike = None, workers: int = DEFAULT_WORKERS,
                   overwrite: bool = False, stats: PackingStats = None) -> TexturePackage:
    """Create a TPG file from a directory; the file is only written if every texture packs"""
    logger.info(f"\n### Creating TPG from directory: {input_dir}")
    output_file = Path(output_path)
    if output_file.exists() and not overwrite:
        raise FileExistsError(f"Output file already exists: {output_file} (use --overwrite to replace)")

    package = build_package(input_dir, forced_format, workers, stats)
    write_texture_package(package, output_file)
    logger.info(f"* Created TPG file: {output_file} ({len(package.textures)} textures)")
    return package


def main():
    """Main function"""
    parser = argparse.ArgumentParser(
        description='TPG Packer - Create TPG texture packages from PNG + JSON pairs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Formats:
  rgba5551, rgba4444, rgb565, rgba8888, l8, la88

Examples:
  %(prog)s ./textures -o textures.tpg
  %(prog)s ./textures -o textures.tpg --format rgba4444 --overwrite
        """
    )

    parser.add_argument('input', help='Input directory produced by the unpacker')
    parser.add_argument('-o', '--output', required=True, help='Output TPG file path')
    parser.add_argument('-f', '--format', help='Force every texture into this format')
    parser.add_argument('-j', '--workers', type=int, default=DEFAULT_WORKERS,
                        help=f'Worker processes (default: {DEFAULT_WORKERS})')
    parser.add_argument('--overwrite', action='store_true', help='Overwrite existing output file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not PIL_AVAILABLE:
        logger.error("Error: PIL/Pillow is required for image operations")
        logger.error("Install with: pip install Pillow")
        sys.exit(1)

    stats = PackingStats()
    try:
        pack_directory(args.input, args.output, args.format, args.workers, args.overwrite, stats)
    except (TPGError, OSError) as e:
        logger.error(f"Failed to create TPG from {args.input}: {e}")
        stats.print_summary()
        sys.exit(1)
    stats.print_summary()


if __name__ == '__main__':
    main()

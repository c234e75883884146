#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
TPG Toolkit - Unified TPG texture package tool
Extract TPG packages to PNG + JSON, pack them back, and inspect headers
"""
import argparse
import logging
import sys
from pathlib import Path

from tpg_errors import TPGError
from tpg_package import parse_header
from tpg_packer import PIL_AVAILABLE, PackingStats, pack_directory
from tpg_pool import DEFAULT_WORKERS
from tpg_unpacker import ExtractionStats, extract_directory, extract_package

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


def show_info(input_path: Path):
    """Log header and index of a TPG file"""
    with open(input_path, 'rb') as f:
        data = f.read()
    header_reserved, entries = parse_header(data)
    logger.info(f"TPG File: {input_path}")
    logger.info(f"Size: {len(data)} bytes")
    logger.info(f"Header fields: {header_reserved.hex() or '-'}")
    logger.info(f"Textures: {len(entries)}")
    for i, entry in enumerate(entries):
        logger.info(f"  [{i:4d}] {entry.id_hash:08x} {entry.format_name:<9} "
                    f"{entry.width}x{entry.height} @0x{entry.data_offset:x} reserved={entry.reserved.hex()}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='TPG Toolkit - Unified TPG texture package tool',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Supported operations:
  extract  - Extract TPG files to PNG images and JSON sidecars
  pack     - Pack an extracted directory back into a TPG file
  info     - Display header and index of a TPG file

Formats:
  rgba5551, rgba4444, rgb565, rgba8888, l8, la88

Examples:
  %(prog)s extract textures.tpg -o ./output
  %(prog)s extract ./game_data -o ./output -r
  %(prog)s pack ./output/textures -o textures.tpg
  %(prog)s pack ./output/textures -o textures.tpg --format rgba4444
  %(prog)s info textures.tpg
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging and tracebacks')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    extract_parser = subparsers.add_parser('extract', help='Extract TPG files to PNG + JSON')
    extract_parser.add_argument('input', help='Path to TPG file or directory')
    extract_parser.add_argument('-o', '--output', help='Output directory (default: next to the input)')
    extract_parser.add_argument('-r', '--recursive', action='store_true', help='Recursive search in subdirectories')
    extract_parser.add_argument('-j', '--workers', type=int, default=DEFAULT_WORKERS,
                                help=f'Worker processes (default: {DEFAULT_WORKERS})')
    extract_parser.add_argument('--no-flip', action='store_true', help='Keep stored (bottom-up) row order')
    extract_parser.add_argument('--overwrite', action='store_true', help='Overwrite existing files')

    pack_parser = subparsers.add_parser('pack', help='Pack a directory into a TPG file')
    pack_parser.add_argument('input', help='Input directory produced by extract')
    pack_parser.add_argument('-o', '--output', required=True, help='Output TPG file path')
    pack_parser.add_argument('-f', '--format', help='Force every texture into this format')
    pack_parser.add_argument('-j', '--workers', type=int, default=DEFAULT_WORKERS,
                             help=f'Worker processes (default: {DEFAULT_WORKERS})')
    pack_parser.add_argument('--overwrite', action='store_true', help='Overwrite existing output file')

    info_parser = subparsers.add_parser('info', help='Display TPG header information')
    info_parser.add_argument('input', help='Path to TPG file')

    return parser


def run_extract(args) -> int:
    input_path = Path(args.input)
    stats = ExtractionStats()
    flip = not args.no_flip

    if input_path.is_file():
        report = extract_package(input_path, args.output, args.workers, flip, args.overwrite, stats)
        ok = report.ok
    elif input_path.is_dir():
        output_dir = args.output or str(input_path)
        reports = extract_directory(input_path, output_dir, args.recursive, args.workers,
                                    flip, args.overwrite, stats)
        ok = all(report.ok for report in reports) and stats.failed == 0
    else:
        logger.error(f"Input not found: {args.input}")
        return 1

    stats.print_summary()
    return 0 if ok else 1


def run_pack(args) -> int:
    stats = PackingStats()
    try:
        pack_directory(args.input, args.output, args.format, args.workers, args.overwrite, stats)
    finally:
        stats.print_summary()
    return 0


def run_info(args) -> int:
    input_path = Path(args.input)
    if not input_path.is_file():
        logger.error(f"File not found: {input_path}")
        return 1
    show_info(input_path)
    return 0


def main(argv=None) -> int:
    """Main function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command in ['extract', 'pack'] and not PIL_AVAILABLE:
        logger.error("Error: PIL/Pillow is required for image operations")
        logger.error("Install with: pip install Pillow")
        return 1

    commands = {
        'extract': run_extract,
        'pack': run_pack,
        'info': run_info,
    }
    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        logger.info("\nOperation cancelled by user")
        return 130
    except (TPGError, OSError) as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())

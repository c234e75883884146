# -*- coding: utf-8 -*-
"""
TPG texture package container

Reading and writing of .tpg packages: a fixed header, one index entry per
texture, then the raw texel data of every texture, back to back.

Layout (little-endian):
    0x00  u32  record count
    0x04  u32  index offset (0x20 in every known package)
    0x08  ...  global header fields, not decoded, kept verbatim
    index: 36 bytes per record
        +0x00 u32 id hash
        +0x04 u32 width
        +0x08 u32 height
        +0x0C 16  four unidentified i32 fields, kept verbatim
        +0x1C u32 format tag
        +0x20 u32 texel data offset
    texel data: width * height * bytes_per_texel(format) bytes per record

There is no stored data length; the length always follows from the
format and dimensions.
"""
import logging
import struct
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Tuple, Union

from tpg_errors import (CorruptArchiveError, InvalidRecordError,
                        TruncatedInputError, UnsupportedFormatError)
from tpg_formats import FormatLike, TexFormat, convert, decode, parse_format, texel_size

logger = logging.getLogger(__name__)

HEADER_STRUCT = struct.Struct('<II')
ENTRY_STRUCT = struct.Struct('<III16sII')
DEFAULT_INDEX_OFFSET = 0x20
DEFAULT_HEADER_RESERVED = bytes(DEFAULT_INDEX_OFFSET - HEADER_STRUCT.size)
RESERVED_SIZE = 16
RESERVED_FIELD_OFFSETS = (0x0C, 0x10, 0x14, 0x18)
U32_MAX = 0xFFFFFFFF


def reserved_to_fields(reserved: bytes) -> Dict[str, str]:
    """Unidentified index fields as hex strings keyed by entry offset"""
    return {f"0x{offset:02x}": reserved[i * 4:i * 4 + 4].hex()
            for i, offset in enumerate(RESERVED_FIELD_OFFSETS)}


def reserved_from_fields(fields: Dict[str, str]) -> bytes:
    """Inverse of reserved_to_fields(); missing fields are zero"""
    out = bytearray(RESERVED_SIZE)
    for i, offset in enumerate(RESERVED_FIELD_OFFSETS):
        value = fields.get(f"0x{offset:02x}")
        if value is None:
            continue
        raw = bytes.fromhex(value)
        if len(raw) != 4:
            raise ValueError(f"Reserved field 0x{offset:02x} must be 4 bytes, got {len(raw)}")
        out[i * 4:i * 4 + 4] = raw
    return bytes(out)


@dataclass(frozen=True)
class TextureRecord:
    """A single texture of a TPG package"""
    id_hash: int
    format: TexFormat
    width: int
    height: int
    texel_bytes: bytes = field(repr=False)
    reserved: bytes = bytes(RESERVED_SIZE)

    @property
    def expected_size(self) -> int:
        return texel_size(parse_format(self.format), self.width, self.height)

    def validate(self, index: int = None):
        """Raise InvalidRecordError unless the record can be written as-is"""
        id_hash = self.id_hash if isinstance(self.id_hash, int) else None

        def fail(message):
            raise InvalidRecordError(message, record_index=index, id_hash=id_hash)

        if not isinstance(self.id_hash, int) or not 0 <= self.id_hash <= U32_MAX:
            fail(f"id hash out of range: {self.id_hash!r}")
        for name in ('width', 'height'):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 < value <= U32_MAX:
                fail(f"{name} must be a positive 32-bit integer, got {value!r}")
        try:
            tex_format = parse_format(self.format)
        except UnsupportedFormatError as e:
            fail(e.message)
        if len(self.reserved) != RESERVED_SIZE:
            fail(f"reserved fields must be {RESERVED_SIZE} bytes, got {len(self.reserved)}")
        expected = self.expected_size
        if len(self.texel_bytes) != expected:
            fail(f"{tex_format.name} {self.width}x{self.height} needs {expected} texel bytes, "
                 f"got {len(self.texel_bytes)}")

    def decode(self) -> bytes:
        """Texels as an RGBA8888 pixel buffer"""
        return decode(self.format, self.width, self.height, self.texel_bytes)

    def with_format(self, tex_format: FormatLike) -> 'TextureRecord':
        """New record holding the same image re-encoded in tex_format"""
        tex_format = parse_format(tex_format)
        texels = convert(self.format, tex_format, self.width, self.height, self.texel_bytes)
        return replace(self, format=tex_format, texel_bytes=texels)

    def reserved_fields(self) -> Dict[str, str]:
        return reserved_to_fields(self.reserved)


@dataclass
class TextureMeta:
    """Per-texture sidecar contents"""
    id_hash: int
    format: TexFormat
    width: int
    height: int
    reserved: bytes = bytes(RESERVED_SIZE)
    index: int = None
    flipped: bool = True

    @classmethod
    def from_record(cls, record: TextureRecord, index: int = None, flipped: bool = True) -> 'TextureMeta':
        return cls(record.id_hash, record.format, record.width, record.height,
                   record.reserved, index, flipped)

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'id_hash': f"{self.id_hash:08x}",
            'format': self.format.name,
            'width': self.width,
            'height': self.height,
            'reserved': reserved_to_fields(self.reserved),
            'flipped': self.flipped,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TextureMeta':
        """Parse a sidecar dict; id_hash may be a hex string or an int"""
        missing = [key for key in ('id_hash', 'format', 'width', 'height') if key not in data]
        if missing:
            raise InvalidRecordError(f"Sidecar is missing fields: {', '.join(missing)}",
                                     record_index=data.get('index'))

        id_hash = data['id_hash']
        if isinstance(id_hash, str):
            id_hash = int(id_hash, 16)
        index = data.get('index')
        if index is not None:
            index = int(index)
        return cls(
            id_hash=id_hash,
            format=parse_format(data['format']),
            width=int(data['width']),
            height=int(data['height']),
            reserved=reserved_from_fields(data.get('reserved') or {}),
            index=index,
            flipped=bool(data.get('flipped', True)),
        )


@dataclass
class IndexEntry:
    """Raw index entry, before texel data is attached"""
    id_hash: int = 0
    width: int = 0
    height: int = 0
    reserved: bytes = bytes(RESERVED_SIZE)
    format_tag: int = 0
    data_offset: int = 0

    @property
    def format_name(self) -> str:
        try:
            return TexFormat(self.format_tag).name
        except ValueError:
            return f"UNKNOWN({self.format_tag})"


@dataclass
class TexturePackage:
    """Represents a TPG file"""
    textures: List[TextureRecord] = None
    header_reserved: bytes = DEFAULT_HEADER_RESERVED

    def __post_init__(self):
        if self.textures is None:
            self.textures = []

    @property
    def index_offset(self) -> int:
        return HEADER_STRUCT.size + len(self.header_reserved)

    @property
    def data_offset(self) -> int:
        return self.index_offset + len(self.textures) * ENTRY_STRUCT.size


# ==================== READING ====================

class PackageReader:
    """Reader for TPG files"""

    def read_index(self, data: bytes) -> Tuple[bytes, List[IndexEntry], int]:
        """Parse header and index; returns (header_reserved, entries, index_end)"""
        if len(data) < HEADER_STRUCT.size:
            raise TruncatedInputError(
                f"Unexpected end of file while reading header (need {HEADER_STRUCT.size} bytes, got {len(data)})")

        record_count, index_offset = HEADER_STRUCT.unpack_from(data, 0)
        if index_offset < HEADER_STRUCT.size:
            raise CorruptArchiveError(f"Index offset 0x{index_offset:x} overlaps the file header")

        index_end = index_offset + record_count * ENTRY_STRUCT.size
        if len(data) < index_end:
            raise TruncatedInputError(
                f"Unexpected end of file while reading index of {record_count} records "
                f"(need {index_end} bytes, got {len(data)})")

        header_reserved = bytes(data[HEADER_STRUCT.size:index_offset])
        entries = []
        for i in range(record_count):
            fields = ENTRY_STRUCT.unpack_from(data, index_offset + i * ENTRY_STRUCT.size)
            entries.append(IndexEntry(*fields))
        logger.debug(f"Index: {record_count} records at 0x{index_offset:x}, data from 0x{index_end:x}")
        return header_reserved, entries, index_end

    def read_from(self, data: bytes) -> TexturePackage:
        """Parse a whole TPG buffer"""
        header_reserved, entries, index_end = self.read_index(data)
        package = TexturePackage(header_reserved=header_reserved)
        for i, entry in enumerate(entries):
            package.textures.append(self._read_record(data, i, entry, index_end))
        return package

    def _read_record(self, data: bytes, index: int, entry: IndexEntry, index_end: int) -> TextureRecord:
        try:
            tex_format = parse_format(entry.format_tag)
        except UnsupportedFormatError as e:
            raise UnsupportedFormatError(e.message, record_index=index, id_hash=entry.id_hash) from None

        if entry.width == 0 or entry.height == 0:
            raise CorruptArchiveError(f"Invalid dimensions {entry.width}x{entry.height}",
                                      record_index=index, id_hash=entry.id_hash)
        if entry.data_offset < index_end:
            raise CorruptArchiveError(
                f"Texel offset 0x{entry.data_offset:x} points into the header/index (ends at 0x{index_end:x})",
                record_index=index, id_hash=entry.id_hash)

        size = texel_size(tex_format, entry.width, entry.height)
        end = entry.data_offset + size
        if end > len(data):
            raise TruncatedInputError(
                f"Unexpected end of file while reading texel data "
                f"(need bytes 0x{entry.data_offset:x}-0x{end:x}, file is 0x{len(data):x})",
                record_index=index, id_hash=entry.id_hash)

        texels = bytes(data[entry.data_offset:end])
        if len(texels) != size:
            raise CorruptArchiveError(f"Texel data is {len(texels)} bytes, expected {size}",
                                      record_index=index, id_hash=entry.id_hash)
        logger.debug(f"Record {index}: id={entry.id_hash:08x} {tex_format.name} "
                     f"{entry.width}x{entry.height} @0x{entry.data_offset:x}")
        return TextureRecord(
            id_hash=entry.id_hash,
            format=tex_format,
            width=entry.width,
            height=entry.height,
            texel_bytes=texels,
            reserved=entry.reserved,
        )


def parse(data: bytes) -> TexturePackage:
    return PackageReader().read_from(data)


def parse_header(data: bytes) -> Tuple[bytes, List[IndexEntry]]:
    """Header and index only, without touching texel data"""
    header_reserved, entries, _ = PackageReader().read_index(data)
    return header_reserved, entries


def read_texture_package(path: Union[str, Path]) -> TexturePackage:
    with open(path, 'rb') as f:
        data = f.read()
    return parse(data)


# ==================== WRITING ====================

def serialize(package: TexturePackage) -> bytes:
    """Serialize a package, recomputing every offset"""
    for i, record in enumerate(package.textures):
        record.validate(i)

    header_reserved = bytes(package.header_reserved)
    index_offset = package.index_offset
    data_offset = package.data_offset

    buf = bytearray()
    buf.extend(HEADER_STRUCT.pack(len(package.textures), index_offset))
    buf.extend(header_reserved)

    current_offset = data_offset
    for record in package.textures:
        buf.extend(ENTRY_STRUCT.pack(
            record.id_hash,
            record.width,
            record.height,
            bytes(record.reserved),
            int(parse_format(record.format)),
            current_offset,
        ))
        current_offset += len(record.texel_bytes)

    if current_offset > U32_MAX:
        raise InvalidRecordError(f"Package too large for 32-bit offsets ({current_offset} bytes)")

    for record in package.textures:
        buf.extend(record.texel_bytes)

    return bytes(buf)


def write_texture_package(package: TexturePackage, output_path: Union[str, Path]):
    """Write package to a TPG file; nothing is written if serialization fails"""
    data = serialize(package)

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, 'wb') as f:
        f.write(data)


def with_forced_format(package: TexturePackage, tex_format: FormatLike) -> TexturePackage:
    """Copy of package with every record re-encoded to tex_format"""
    tex_format = parse_format(tex_format)
    return TexturePackage(
        textures=[record.with_format(tex_format) for record in package.textures],
        header_reserved=package.header_reserved,
    )

# -*- coding: utf-8 -*-
"""
TPG pixel formats

Conversion between the texel encodings stored in TPG packages and
canonical RGBA8888 (one byte per channel, R, G, B, A order).

Formats:
- RGBA5551  u16 LE, R[15:11] G[10:6] B[5:1] A[0]           lossy
- RGBA4444  u16 LE, R[15:12] G[11:8] B[7:4] A[3:0]         lossy
- RGB565    u16 LE, R[15:11] G[10:5] B[4:0], opaque        lossy
- RGBA8888  bytes R, G, B, A                               lossless
- L8        byte L, decodes to (L, L, L, 255)              lossy
- LA88      bytes L, A, decodes to (L, L, L, A)            lossy

Reduced channels expand to the full 0-255 range, so the top code of any
bit depth decodes to 255. Reducing a channel rounds to nearest with ties
rounding up. Luminance is the integer Rec.601 weighting of R, G and B.
"""
import struct
from enum import IntEnum
from typing import Callable, Dict, List, Union

from tpg_errors import FormatError, UnsupportedFormatError


class TexFormat(IntEnum):
    """TPG texture formats (tag as stored in the index)"""
    RGBA5551 = 0
    RGBA4444 = 1
    RGB565 = 2
    RGBA8888 = 3
    L8 = 4
    LA88 = 5

    @classmethod
    def from_string(cls, format_str: str) -> 'TexFormat':
        """Convert a symbolic name (case-insensitive) to TexFormat"""
        format_map = {
            'rgba5551': cls.RGBA5551,
            'r5g5b5a1': cls.RGBA5551,
            'rgba4444': cls.RGBA4444,
            'r4g4b4a4': cls.RGBA4444,
            'rgb565': cls.RGB565,
            'r5g6b5': cls.RGB565,
            'rgba8888': cls.RGBA8888,
            'r8g8b8a8': cls.RGBA8888,
            'l8': cls.L8,
            'la88': cls.LA88,
            'l8a8': cls.LA88,
        }
        try:
            return format_map[format_str.strip().lower()]
        except KeyError:
            raise UnsupportedFormatError(f"Unknown texture format name: {format_str!r}") from None


FormatLike = Union[TexFormat, int, str]

_BYTES_PER_TEXEL = {
    TexFormat.RGBA5551: 2,
    TexFormat.RGBA4444: 2,
    TexFormat.RGB565: 2,
    TexFormat.RGBA8888: 4,
    TexFormat.L8: 1,
    TexFormat.LA88: 2,
}

LOSSLESS_FORMATS = frozenset({TexFormat.RGBA8888})


def parse_format(value: FormatLike) -> TexFormat:
    """Resolve a TexFormat, a numeric tag or a symbolic name"""
    if isinstance(value, TexFormat):
        return value
    if isinstance(value, str):
        return TexFormat.from_string(value)
    try:
        return TexFormat(value)
    except ValueError:
        raise UnsupportedFormatError(f"Unknown texture format tag: {value}") from None


def bytes_per_texel(tex_format: TexFormat) -> int:
    """Plain table lookup; names and raw tags go through parse_format first"""
    return _BYTES_PER_TEXEL[tex_format]


def texel_size(tex_format: TexFormat, width: int, height: int) -> int:
    """Number of texel bytes a width x height image takes in tex_format"""
    return width * height * bytes_per_texel(tex_format)


def is_lossless(tex_format: FormatLike) -> bool:
    return parse_format(tex_format) in LOSSLESS_FORMATS


# ==================== CHANNEL QUANTIZATION ====================

def expand_channel(value: int, bits: int) -> int:
    """Scale an n-bit channel value to 0-255, rounding to nearest"""
    top = (1 << bits) - 1
    return (value * 255 + top // 2) // top


def reduce_channel(value: int, bits: int) -> int:
    """Scale a 0-255 channel value to n bits, round half up"""
    top = (1 << bits) - 1
    return (2 * value * top + 255) // 510


def luminance(r: int, g: int, b: int) -> int:
    return (299 * r + 587 * g + 114 * b + 500) // 1000


def _expand_table(bits: int) -> List[int]:
    return [expand_channel(v, bits) for v in range(1 << bits)]


def _reduce_table(bits: int) -> List[int]:
    return [reduce_channel(v, bits) for v in range(256)]


_EXPAND1 = _expand_table(1)
_EXPAND4 = _expand_table(4)
_EXPAND5 = _expand_table(5)
_EXPAND6 = _expand_table(6)
_REDUCE1 = _reduce_table(1)
_REDUCE4 = _reduce_table(4)
_REDUCE5 = _reduce_table(5)
_REDUCE6 = _reduce_table(6)


def _iter_rgba(rgba: bytes):
    return zip(rgba[0::4], rgba[1::4], rgba[2::4], rgba[3::4])


def _pack_shorts(shorts: List[int]) -> bytes:
    return struct.pack(f'<{len(shorts)}H', *shorts)


# ==================== DECODERS ====================

def convert_rgba5551_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    rgba = bytearray(width * height * 4)
    for i, (short,) in enumerate(struct.iter_unpack('<H', data)):
        o = i * 4
        rgba[o + 0] = _EXPAND5[(short >> 11) & 0x1F]
        rgba[o + 1] = _EXPAND5[(short >> 6) & 0x1F]
        rgba[o + 2] = _EXPAND5[(short >> 1) & 0x1F]
        rgba[o + 3] = _EXPAND1[short & 0x1]
    return bytes(rgba)


def convert_rgba4444_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    rgba = bytearray(width * height * 4)
    for i, (short,) in enumerate(struct.iter_unpack('<H', data)):
        o = i * 4
        rgba[o + 0] = _EXPAND4[(short >> 12) & 0xF]
        rgba[o + 1] = _EXPAND4[(short >> 8) & 0xF]
        rgba[o + 2] = _EXPAND4[(short >> 4) & 0xF]
        rgba[o + 3] = _EXPAND4[short & 0xF]
    return bytes(rgba)


def convert_rgb565_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    rgba = bytearray(width * height * 4)
    for i, (short,) in enumerate(struct.iter_unpack('<H', data)):
        o = i * 4
        rgba[o + 0] = _EXPAND5[(short >> 11) & 0x1F]
        rgba[o + 1] = _EXPAND6[(short >> 5) & 0x3F]
        rgba[o + 2] = _EXPAND5[short & 0x1F]
        rgba[o + 3] = 255
    return bytes(rgba)


def convert_rgba8888_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    return bytes(data)


def convert_l8_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    """Convert L8 format to RGBA8888 (grayscale, opaque)"""
    rgba = bytearray(width * height * 4)
    for i, gray in enumerate(data):
        o = i * 4
        rgba[o + 0] = gray
        rgba[o + 1] = gray
        rgba[o + 2] = gray
        rgba[o + 3] = 255
    return bytes(rgba)


def convert_la88_to_rgba8888(data: bytes, width: int, height: int) -> bytes:
    """Convert LA88 format to RGBA8888 (grayscale with alpha)"""
    rgba = bytearray(width * height * 4)
    for i in range(width * height):
        gray = data[i * 2]
        o = i * 4
        rgba[o + 0] = gray
        rgba[o + 1] = gray
        rgba[o + 2] = gray
        rgba[o + 3] = data[i * 2 + 1]
    return bytes(rgba)


# ==================== ENCODERS ====================

def convert_rgba8888_to_rgba5551(rgba: bytes, width: int, height: int) -> bytes:
    return _pack_shorts([
        (_REDUCE5[r] << 11) | (_REDUCE5[g] << 6) | (_REDUCE5[b] << 1) | _REDUCE1[a]
        for r, g, b, a in _iter_rgba(rgba)
    ])


def convert_rgba8888_to_rgba4444(rgba: bytes, width: int, height: int) -> bytes:
    return _pack_shorts([
        (_REDUCE4[r] << 12) | (_REDUCE4[g] << 8) | (_REDUCE4[b] << 4) | _REDUCE4[a]
        for r, g, b, a in _iter_rgba(rgba)
    ])


def convert_rgba8888_to_rgb565(rgba: bytes, width: int, height: int) -> bytes:
    # alpha is dropped
    return _pack_shorts([
        (_REDUCE5[r] << 11) | (_REDUCE6[g] << 5) | _REDUCE5[b]
        for r, g, b, _ in _iter_rgba(rgba)
    ])


def convert_rgba8888_to_l8(rgba: bytes, width: int, height: int) -> bytes:
    return bytes(luminance(r, g, b) for r, g, b, _ in _iter_rgba(rgba))


def convert_rgba8888_to_la88(rgba: bytes, width: int, height: int) -> bytes:
    out = bytearray(width * height * 2)
    for i, (r, g, b, a) in enumerate(_iter_rgba(rgba)):
        out[i * 2] = luminance(r, g, b)
        out[i * 2 + 1] = a
    return bytes(out)


Converter = Callable[[bytes, int, int], bytes]

_DECODERS: Dict[TexFormat, Converter] = {
    TexFormat.RGBA5551: convert_rgba5551_to_rgba8888,
    TexFormat.RGBA4444: convert_rgba4444_to_rgba8888,
    TexFormat.RGB565: convert_rgb565_to_rgba8888,
    TexFormat.RGBA8888: convert_rgba8888_to_rgba8888,
    TexFormat.L8: convert_l8_to_rgba8888,
    TexFormat.LA88: convert_la88_to_rgba8888,
}

_ENCODERS: Dict[TexFormat, Converter] = {
    TexFormat.RGBA5551: convert_rgba8888_to_rgba5551,
    TexFormat.RGBA4444: convert_rgba8888_to_rgba4444,
    TexFormat.RGB565: convert_rgba8888_to_rgb565,
    TexFormat.RGBA8888: convert_rgba8888_to_rgba8888,
    TexFormat.L8: convert_rgba8888_to_l8,
    TexFormat.LA88: convert_rgba8888_to_la88,
}

for _table in (_DECODERS, _ENCODERS, _BYTES_PER_TEXEL):
    _missing = set(TexFormat) - set(_table)
    if _missing:
        raise RuntimeError(f"Texture formats without a converter: {sorted(f.name for f in _missing)}")


def decode(tex_format: FormatLike, width: int, height: int, texel_bytes: bytes) -> bytes:
    """Decode raw texels to an RGBA8888 pixel buffer"""
    tex_format = parse_format(tex_format)
    expected = texel_size(tex_format, width, height)
    if len(texel_bytes) != expected:
        raise FormatError(
            f"{tex_format.name} data size mismatch: expected {expected}, got {len(texel_bytes)}")
    return _DECODERS[tex_format](texel_bytes, width, height)


def encode(tex_format: FormatLike, width: int, height: int, rgba_pixels: bytes) -> bytes:
    """Encode an RGBA8888 pixel buffer to raw texels of tex_format"""
    tex_format = parse_format(tex_format)
    expected = width * height * 4
    if len(rgba_pixels) != expected:
        raise FormatError(
            f"RGBA8888 data size mismatch: expected {expected}, got {len(rgba_pixels)}")
    return _ENCODERS[tex_format](rgba_pixels, width, height)


def convert(source_format: FormatLike, target_format: FormatLike,
            width: int, height: int, texel_bytes: bytes) -> bytes:
    """Re-encode texels from one format to another through RGBA8888"""
    source_format = parse_format(source_format)
    target_format = parse_format(target_format)
    if source_format == target_format:
        expected = texel_size(source_format, width, height)
        if len(texel_bytes) != expected:
            raise FormatError(
                f"{source_format.name} data size mismatch: expected {expected}, got {len(texel_bytes)}")
        return bytes(texel_bytes)
    rgba = decode(source_format, width, height, texel_bytes)
    return encode(target_format, width, height, rgba)

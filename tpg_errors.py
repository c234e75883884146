# -*- coding: utf-8 -*-
"""
TPG error types

Every error can carry the index and id hash of the record it concerns,
so a failure is always attributable to a specific texture.
"""
from typing import Optional


class TPGError(Exception):
    """Base class for all TPG toolkit errors"""

    def __init__(self, message: str, record_index: Optional[int] = None,
                 id_hash: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.record_index = record_index
        self.id_hash = id_hash

    def __reduce__(self):
        # keep record details when crossing process boundaries
        return self.__class__, (self.message, self.record_index, self.id_hash)

    def __str__(self) -> str:
        parts = []
        if self.record_index is not None:
            parts.append(f"record {self.record_index}")
        if self.id_hash is not None:
            parts.append(f"id {self.id_hash:08x}")
        if parts:
            return f"[{', '.join(parts)}] {self.message}"
        return self.message


class TruncatedInputError(TPGError):
    """Input ends before the data its header promises"""


class CorruptArchiveError(TPGError):
    """Header or index contents are inconsistent"""


class FormatError(TPGError):
    """Texel buffer does not match the size its format requires"""


class UnsupportedFormatError(TPGError):
    """Unknown pixel format tag or name"""


class InvalidRecordError(TPGError):
    """Record handed to the writer is internally inconsistent"""


class DecodeError(TPGError):
    """A record could not be decoded during extraction"""


class DimensionMismatchError(TPGError):
    """Image size disagrees with its sidecar"""


class MissingPairError(TPGError):
    """Image without sidecar, or sidecar without image"""

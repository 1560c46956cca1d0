"""Shared types for the QR codec: versions, levels, modes, segments, errors."""

import codecs
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================

class ErrorKind(Enum):
    USAGE = "usage"
    UNSUPPORTED_VERSION = "unsupported-version"
    UNSUPPORTED_EC_LEVEL = "unsupported-ec-level"
    DATA_TOO_LONG = "data-too-long"
    METADATA_CORRUPT = "metadata-corrupt"
    UNCORRECTABLE = "uncorrectable"
    DATA_CORRUPT = "data-corrupt"
    GEOMETRY = "geometry"
    IMAGE = "image"
    TEXT_DECODE = "text-decode"


USAGE_KINDS = (ErrorKind.USAGE, ErrorKind.UNSUPPORTED_VERSION, ErrorKind.UNSUPPORTED_EC_LEVEL)


class QRError(ValueError):
    """Codec failure tagged with a kind and a structured payload.

    `details` carries whatever locates the failure: block index, error count,
    BCH distance, offending version number and so on.
    """

    def __init__(self, kind, message, **details):
        super().__init__(message)
        self.kind = kind
        self.details = details

    @property
    def is_usage(self):
        return self.kind in USAGE_KINDS

    def __repr__(self):
        return f"QRError({self.kind.value}, {str(self)!r}, {self.details})"


# ============================================================================
# SYMBOL PARAMETERS
# ============================================================================

class EcLevel(IntEnum):
    L = 0
    M = 1
    Q = 2
    H = 3

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise QRError(ErrorKind.USAGE, f"illegal level: {value}", level=value) from None


class Mode(Enum):
    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"
    BYTE = "byte"
    KANJI = "kanji"


@dataclass(frozen=True, order=True)
class Version:
    """Normal(1..40) or Micro(1..4) symbol version."""
    number: int
    micro: bool = False

    def __post_init__(self):
        top = 4 if self.micro else 40
        if not isinstance(self.number, (int, np.integer)) or not 1 <= self.number <= top:
            raise QRError(ErrorKind.UNSUPPORTED_VERSION,
                          f"unsupported version: {'M' if self.micro else ''}{self.number}",
                          version=self.number, micro=self.micro)

    @property
    def width(self):
        return 2 * self.number + 9 if self.micro else 4 * self.number + 17

    def __str__(self):
        return f"M{self.number}" if self.micro else str(self.number)


# ============================================================================
# PIPELINE DATA
# ============================================================================

@dataclass
class Segment:
    """Mode-tagged span of the data stream."""
    mode: Mode
    data: bytes
    eci: Optional[int] = None

    def __len__(self):
        if self.mode is Mode.KANJI:
            return len(self.data) // 2
        return len(self.data)


@dataclass
class QRCode:
    """Finished symbol produced by the encoder."""
    version: Version
    ec_level: EcLevel
    mask: int
    matrix: np.ndarray
    segments: List[Segment] = field(default_factory=list)

    @property
    def width(self):
        return self.version.width


@dataclass
class DetectedGrid:
    """Sampled module grid for one symbol found in an image."""
    version: Version
    modules: np.ndarray
    corners: np.ndarray
    ec_level: Optional[EcLevel] = None
    mask: Optional[int] = None


@dataclass
class DecodeResult:
    grid: DetectedGrid
    data: Optional[bytes] = None
    segments: List[Segment] = field(default_factory=list)
    error: Optional[QRError] = None

    @property
    def ok(self):
        return self.error is None

    def text(self, encoding="utf-8", lossy=False):
        """Interpret the decoded bytes with a charset label.

        Strict by default; with `lossy` undecodable bytes become U+FFFD and a
        warning is logged instead of raising.
        """
        if self.error is not None:
            raise self.error
        try:
            codec = codecs.lookup(encoding)
        except LookupError:
            raise QRError(ErrorKind.USAGE, f"unsupported encoding: {encoding}", encoding=encoding) from None
        try:
            return codec.decode(self.data)[0]
        except UnicodeDecodeError as e:
            if not lossy:
                raise QRError(ErrorKind.TEXT_DECODE, f"failed to decode content as {codec.name}",
                              encoding=codec.name, position=e.start) from e
            logger.warning("failed to decode content as %s", codec.name)
            return codec.decode(self.data, "replace")[0]

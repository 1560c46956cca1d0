#!/usr/bin/env python3
"""
QR Code Decoder
Reads format/version info, removes the mask, de-interleaves, corrects and
parses every symbol found in an image.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import List

import cv2
import numpy as np

import qr_tables as T
from qr_detect import detect
from qr_types import DecodeResult, ErrorKind, Mode, QRError, Segment
from reed_solomon import ReedSolomon

logger = logging.getLogger(__name__)

# Global debug output directory (None = disabled)
DEBUG_DIR = os.environ.get("QR_DEBUG_DIR") or None


# ============================================================================
# METADATA
# ============================================================================

def _read_word(modules, positions):
    return sum(int(modules[r, c]) << i for i, (r, c) in enumerate(positions))


def read_format(modules, version):
    """EC level and mask (and Micro version) from the format copies."""
    words = [_read_word(modules, copy) for copy in T.format_positions(version)]
    info = T.decode_format(words, micro=version.micro)
    if version.micro and info.micro_version != version.number:
        raise QRError(ErrorKind.METADATA_CORRUPT,
                      f"format info names M{info.micro_version}, grid is {version}",
                      version=str(version), format_version=info.micro_version)
    return info


def read_version(modules, version):
    """Version number from the version blocks (versions 7+)."""
    if version.micro or version.number < 7:
        return version.number
    words = [_read_word(modules, copy) for copy in T.version_positions(version)]
    return T.decode_version(words)


def unmask(modules, version, mask):
    """Remove mask pattern from data modules."""
    return np.asarray(modules, dtype=bool) ^ T.mask_pattern(version, mask)


# ============================================================================
# CODEWORDS
# ============================================================================

def read_codewords(modules, version, level):
    """Codewords in transmission order; M1/M3 half codeword lands in the high nibble."""
    order = T.placement_order(version)
    bits = np.asarray(modules, dtype=bool)[order[:, 0], order[:, 1]].astype(int)
    structure = T.block_structure(version, level)
    n_data = sum(d for d, _ in structure)
    n_total = n_data + sum(e for _, e in structure)

    def byte_at(pos, n=8):
        return sum(int(b) << (7 - j) for j, b in enumerate(bits[pos:pos + n]))

    codewords, pos = [], 0
    for k in range(n_total):
        if T.has_half_codeword(version) and k == n_data - 1:
            codewords.append(byte_at(pos, 4))
            pos += 4
        else:
            codewords.append(byte_at(pos))
            pos += 8
    return codewords


def split_blocks(codewords, version, level):
    """Undo interleaving: list of full blocks (data + ecc)."""
    structure = T.block_structure(version, level)
    data = [[] for _ in structure]
    ecc = [[] for _ in structure]
    idx = 0
    for col in range(max(d for d, _ in structure)):
        for i, (d, _) in enumerate(structure):
            if col < d:
                data[i].append(codewords[idx])
                idx += 1
    for col in range(structure[0][1]):
        for i in range(len(structure)):
            ecc[i].append(codewords[idx])
            idx += 1
    return [d + e for d, e in zip(data, ecc)]


def decode_codewords(codewords, version, level):
    """RS-correct every block; return (data codewords, per-block info)."""
    data, rs_info = [], []
    for i, block in enumerate(split_blocks(codewords, version, level)):
        n_data, n_ecc = T.block_structure(version, level)[i]
        rs = ReedSolomon(n_ecc)
        if version.micro and version.number == 1:
            # detection only
            if not rs.check(block):
                raise QRError(ErrorKind.UNCORRECTABLE, "M1 symbol has errors",
                              block=i, ecc=n_ecc)
            corrected = block
        else:
            try:
                corrected = rs.correct(block)
            except QRError as e:
                raise QRError(ErrorKind.UNCORRECTABLE, f"block {i}: {e}", block=i, **e.details) from e
        errors = sum(a != b for a, b in zip(block, corrected))
        rs_info.append({'block': i, 'data_len': n_data, 'ec_len': n_ecc, 'errors': errors})
        data.extend(corrected[:n_data])
    return data, rs_info


# ============================================================================
# SEGMENTS
# ============================================================================

class _BitReader:
    def __init__(self, bits):
        self.bits, self.pos = bits, 0

    @property
    def remaining(self):
        return len(self.bits) - self.pos

    def peek(self, n):
        return self.bits[self.pos:self.pos + n]

    def read(self, n):
        if n > self.remaining:
            raise QRError(ErrorKind.DATA_CORRUPT, "bit stream truncated",
                          position=self.pos, wanted=n, remaining=self.remaining)
        val = 0
        for b in self.bits[self.pos:self.pos + n]:
            val = val << 1 | b
        self.pos += n
        return val


def _decode_kanji(val):
    assembled = (val // 0xC0) << 8 | val % 0xC0
    assembled += 0x8140 if assembled < 0x1F00 else 0xC140
    return bytes((assembled >> 8, assembled & 0xFF))


def _read_payload(reader, mode, count):
    if mode is Mode.NUMERIC:
        out = []
        for k in range(0, count, 3):
            n = min(3, count - k)
            val = reader.read([0, 4, 7, 10][n])
            if val >= 10 ** n:
                raise QRError(ErrorKind.DATA_CORRUPT, f"invalid numeric group {val}", position=reader.pos)
            out.append(f"{val:0{n}d}")
        return "".join(out).encode("ascii")
    if mode is Mode.ALPHANUMERIC:
        out = []
        for _ in range(count // 2):
            val = reader.read(11)
            if val >= 45 * 45:
                raise QRError(ErrorKind.DATA_CORRUPT, f"invalid alphanumeric pair {val}", position=reader.pos)
            out += [T.ALPHANUMERIC_CHARSET[val // 45], T.ALPHANUMERIC_CHARSET[val % 45]]
        if count % 2:
            val = reader.read(6)
            if val >= 45:
                raise QRError(ErrorKind.DATA_CORRUPT, f"invalid alphanumeric char {val}", position=reader.pos)
            out.append(T.ALPHANUMERIC_CHARSET[val])
        return "".join(out).encode("ascii")
    if mode is Mode.BYTE:
        return bytes(reader.read(8) for _ in range(count))
    return b"".join(_decode_kanji(reader.read(13)) for _ in range(count))


def _read_eci(reader):
    first = reader.read(8)
    if first & 0x80 == 0:
        return first
    if first & 0xC0 == 0x80:
        return (first & 0x3F) << 8 | reader.read(8)
    if first & 0xE0 == 0xC0:
        return (first & 0x1F) << 16 | reader.read(16)
    raise QRError(ErrorKind.DATA_CORRUPT, f"invalid ECI designator {first:#04x}", position=reader.pos)


def parse_segments(data, version, level) -> List[Segment]:
    """Split corrected data codewords into mode segments."""
    capacity = T.data_capacity_bits(version, level)
    bits = [(cw >> (7 - j)) & 1 for cw in data for j in range(8)][:capacity]
    reader = _BitReader(bits)
    micro_modes = {v: k for k, v in T.MICRO_MODE_INDICATORS.items()}
    normal_modes = {v: k for k, v in T.MODE_INDICATORS.items()}
    term = T.terminator_bits(version)
    segments, eci = [], None

    while reader.remaining:
        if not any(reader.peek(min(term, reader.remaining))):
            break
        indicator = reader.read(T.mode_indicator_bits(version))
        if version.micro:
            mode = micro_modes.get(indicator)
            if mode not in T.supported_modes(version):
                raise QRError(ErrorKind.DATA_CORRUPT, f"unknown mode {indicator} in {version}",
                              mode=indicator, position=reader.pos)
        else:
            if indicator == T.MODE_ECI:
                eci = _read_eci(reader)
                continue
            if indicator == T.MODE_STRUCTURED_APPEND:
                reader.read(16)
                continue
            if indicator == T.MODE_FNC1_FIRST:
                continue
            if indicator == T.MODE_FNC1_SECOND:
                reader.read(8)
                continue
            mode = normal_modes.get(indicator)
            if mode is None:
                raise QRError(ErrorKind.DATA_CORRUPT, f"unknown mode {indicator}",
                              mode=indicator, position=reader.pos)
        count = reader.read(T.char_count_bits(version, mode))
        segments.append(Segment(mode, _read_payload(reader, mode, count), eci))
    return segments


# ============================================================================
# MAIN
# ============================================================================

def decode_grid(grid) -> DecodeResult:
    """Decode one sampled grid; failures are returned as the result's error."""
    version = grid.version
    try:
        info = read_format(grid.modules, version)
        grid.ec_level, grid.mask = info.level, info.mask
        n = read_version(grid.modules, version)
        if n != version.number:
            raise QRError(ErrorKind.METADATA_CORRUPT,
                          f"version info says {n}, grid is {version}", version=version.number, read=n)
        unmasked = unmask(grid.modules, version, info.mask)
        codewords = read_codewords(unmasked, version, info.level)
        data, rs_info = decode_codewords(codewords, version, info.level)
        segments = parse_segments(data, version, info.level)
    except QRError as e:
        logger.info("grid %s failed: %s", version, e)
        return DecodeResult(grid, error=e)
    logger.debug("version %s, level %s, mask %d, corrected %s", version, info.level.name, info.mask,
                 [b['errors'] for b in rs_info])
    return DecodeResult(grid, b"".join(s.data for s in segments), segments)


def detect_and_decode(image, workers=None) -> List[DecodeResult]:
    """Detect and decode every symbol in a grayscale or BGR raster."""
    binary, patterns, grids = detect(image)
    if workers and workers > 1 and len(grids) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(decode_grid, grids))
    else:
        results = [decode_grid(g) for g in grids]
    if DEBUG_DIR:
        from qr_debug import save_debug_all
        save_debug_all(DEBUG_DIR, image, binary, patterns, results)
    return results


def decode_qr(image):
    """First successfully decoded symbol in `image`."""
    results = detect_and_decode(image)
    if not results:
        raise QRError(ErrorKind.GEOMETRY, "no QR code found")
    for r in results:
        if r.ok:
            return r
    raise results[0].error


def decode_file(path, workers=None) -> List[DecodeResult]:
    """Load an image with OpenCV and decode every symbol in it."""
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise QRError(ErrorKind.IMAGE, f"cannot load {path}", path=str(path))
    return detect_and_decode(image, workers)

"""
QR Code Encoder
Turns bytes into a QR / Micro QR module matrix (True = dark).
"""

import logging
from typing import List

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

import qr_tables as T
from qr_types import EcLevel, ErrorKind, Mode, QRCode, QRError, Segment, Version
from reed_solomon import ReedSolomon

logger = logging.getLogger(__name__)


# ============================================================================
# SEGMENTATION
# ============================================================================

# Per-character cost in sixths of a bit (kanji: per double-byte pair)
CHAR_COST = {Mode.NUMERIC: 20, Mode.ALPHANUMERIC: 33, Mode.BYTE: 48, Mode.KANJI: 78}

_DIGITS = frozenset(b"0123456789")
_ALNUM = frozenset(T.ALPHANUMERIC_CHARSET.encode("ascii"))


def is_kanji_pair(hi, lo):
    """Shift-JIS double-byte character inside the QR kanji ranges."""
    c = hi << 8 | lo
    if not (0x8140 <= c <= 0x9FFC or 0xE040 <= c <= 0xEBBF):
        return False
    return 0x40 <= lo <= 0xFC and lo != 0x7F


def _applies(mode, data, i):
    if mode is Mode.NUMERIC:
        return data[i] in _DIGITS
    if mode is Mode.ALPHANUMERIC:
        return data[i] in _ALNUM
    if mode is Mode.KANJI:
        return i + 1 < len(data) and is_kanji_pair(data[i], data[i + 1])
    return True


def _ceil6(x):
    return (x + 5) // 6 * 6


def segment_data(data, version, kanji=False) -> List[Segment]:
    """Cheapest mode segmentation of `data` for the header widths of `version`.

    Dynamic program over byte positions; a state is the mode of the open
    segment. Switching modes rounds the closed segment up to whole bits and
    pays the new segment's header.
    """
    data = bytes(data)
    n = len(data)
    if n == 0:
        return []
    modes = [m for m in T.supported_modes(version) if m is not Mode.KANJI or kanji]
    head = {m: (T.mode_indicator_bits(version) + T.char_count_bits(version, m)) * 6 for m in modes}

    cost = [dict() for _ in range(n + 1)]
    back = [dict() for _ in range(n + 1)]
    for i in range(n):
        if i == 0:
            closed, closed_mode = 0, None
        elif cost[i]:
            closed_mode = min(cost[i], key=lambda m: (_ceil6(cost[i][m]), modes.index(m)))
            closed = _ceil6(cost[i][closed_mode])
        else:
            continue
        for m in modes:
            if not _applies(m, data, i):
                continue
            j = i + (2 if m is Mode.KANJI else 1)
            best, link = closed + head[m] + CHAR_COST[m], (i, closed_mode, True)
            if m in cost[i] and cost[i][m] + CHAR_COST[m] <= best:
                best, link = cost[i][m] + CHAR_COST[m], (i, m, False)
            if best < cost[j].get(m, float("inf")):
                cost[j][m], back[j][m] = best, link

    if not cost[n]:
        raise QRError(ErrorKind.DATA_TOO_LONG, f"data not representable in version {version}",
                      version=str(version))

    mode = min(cost[n], key=lambda m: (_ceil6(cost[n][m]), modes.index(m)))
    steps, j = [], n
    while j > 0:
        i, prev, new = back[j][mode]
        steps.append((i, j, mode, new))
        j, mode = i, prev
    steps.reverse()

    segments = []
    for i, j, mode, new in steps:
        if new:
            segments.append(Segment(mode, data[i:j]))
        else:
            segments[-1].data += data[i:j]
    return _split_long(segments, version)


def _split_long(segments, version):
    """Split segments whose length overflows the character count field."""
    out = []
    for seg in segments:
        limit = (1 << T.char_count_bits(version, seg.mode)) - 1
        step = limit * (2 if seg.mode is Mode.KANJI else 1)
        if len(seg) <= limit:
            out.append(seg)
            continue
        for k in range(0, len(seg.data), step):
            out.append(Segment(seg.mode, seg.data[k:k + step], seg.eci))
    return out


# ============================================================================
# BIT STREAM
# ============================================================================

def _append(bits, value, n):
    bits.extend((value >> (n - 1 - i)) & 1 for i in range(n))


def _payload_bits(seg, bits):
    data = seg.data
    if seg.mode is Mode.NUMERIC:
        for k in range(0, len(data), 3):
            chunk = data[k:k + 3]
            _append(bits, int(chunk), [0, 4, 7, 10][len(chunk)])
    elif seg.mode is Mode.ALPHANUMERIC:
        idx = [T.ALPHANUMERIC_CHARSET.index(chr(b)) for b in data]
        for k in range(0, len(idx) - 1, 2):
            _append(bits, idx[k] * 45 + idx[k + 1], 11)
        if len(idx) % 2:
            _append(bits, idx[-1], 6)
    elif seg.mode is Mode.BYTE:
        for b in data:
            _append(bits, b, 8)
    else:
        for k in range(0, len(data), 2):
            c = data[k] << 8 | data[k + 1]
            c -= 0x8140 if c <= 0x9FFC else 0xC140
            _append(bits, (c >> 8) * 0xC0 + (c & 0xFF), 13)


def segment_bits(segments, version):
    """Header + payload bits for all segments."""
    bits = []
    for seg in segments:
        _append(bits, T.mode_indicator(version, seg.mode), T.mode_indicator_bits(version))
        _append(bits, len(seg), T.char_count_bits(version, seg.mode))
        _payload_bits(seg, bits)
    return bits


def build_data_codewords(segments, version, level):
    """Data codewords: segments, terminator, bit padding, 0xEC/0x11 pad codewords.

    For M1/M3 the last codeword holds 4 bits in its high nibble.
    """
    capacity = T.data_capacity_bits(version, level)
    bits = segment_bits(segments, version)
    if len(bits) > capacity:
        raise QRError(ErrorKind.DATA_TOO_LONG, f"data needs {len(bits)} bits, {version}-{level.name} holds {capacity}",
                      needed=len(bits), capacity=capacity, version=str(version))
    bits += [0] * min(T.terminator_bits(version), capacity - len(bits))
    bits += [0] * min(-len(bits) % 8, capacity - len(bits))
    pad = 0xEC
    while len(bits) + 8 <= capacity:
        _append(bits, pad, 8)
        pad ^= 0xEC ^ 0x11
    bits += [0] * (capacity - len(bits) + (-capacity % 8))
    return [int("".join(map(str, bits[i:i + 8])), 2) for i in range(0, len(bits), 8)]


# ============================================================================
# BLOCKS + RS
# ============================================================================

def interleave(blocks):
    """Round-robin codewords across blocks of unequal length."""
    out = []
    for k in range(max(len(b) for b in blocks)):
        out.extend(b[k] for b in blocks if k < len(b))
    return out


def add_ecc_and_interleave(data, version, level):
    """Split data into blocks, append RS parity, interleave; return the bit sequence."""
    structure = T.block_structure(version, level)
    data_blocks, ecc_blocks, k = [], [], 0
    for n_data, n_ecc in structure:
        block = list(data[k:k + n_data])
        k += n_data
        data_blocks.append(block)
        ecc_blocks.append(ReedSolomon(n_ecc).encode(block))

    bits = []
    if T.has_half_codeword(version):
        block = data_blocks[0]
        for cw in block[:-1]:
            _append(bits, cw, 8)
        _append(bits, block[-1] >> 4, 4)
    else:
        for cw in interleave(data_blocks):
            _append(bits, cw, 8)
    for cw in interleave(ecc_blocks):
        _append(bits, cw, 8)
    return bits


# ============================================================================
# MATRIX
# ============================================================================

def place_bits(bits, version):
    """Function patterns plus data bits along the zig-zag path (unmasked)."""
    modules, _ = T.function_patterns(version)
    matrix = modules.copy()
    order = T.placement_order(version)
    n = len(bits)
    matrix[order[:n, 0], order[:n, 1]] = np.asarray(bits, dtype=bool)
    return matrix


def draw_format(matrix, version, level, mask):
    word = T.format_bits(version, level, mask)
    for copy in T.format_positions(version):
        for i, (r, c) in enumerate(copy):
            matrix[r, c] = bool(word >> i & 1)
    if not version.micro and version.number >= 7:
        word = T.version_bits(version)
        for copy in T.version_positions(version):
            for i, (r, c) in enumerate(copy):
                matrix[r, c] = bool(word >> i & 1)


def _run_penalty(lines):
    score = 0
    for line in lines:
        edges = np.flatnonzero(np.diff(line.astype(np.int8))) + 1
        runs = np.diff(np.concatenate(([0], edges, [len(line)])))
        score += int(np.sum(runs[runs >= 5] - 2))
    return score


_N3_PATTERNS = np.array([[1, 0, 1, 1, 1, 0, 1, 0, 0, 0, 0],
                         [0, 0, 0, 0, 1, 0, 1, 1, 1, 0, 1]], dtype=bool)


def _finder_like(m):
    padded = np.pad(m, ((0, 0), (4, 4)), constant_values=False)
    windows = sliding_window_view(padded, 11, axis=1)
    hits = 0
    for pat in _N3_PATTERNS:
        hits += int(np.all(windows == pat, axis=-1).sum())
    return hits


def _balance_penalty(dark, total):
    """10 points for each started 5% step of dark share beyond the first, measured from half."""
    k = (abs(dark * 20 - total * 10) + total - 1) // total - 1
    return 10 * max(k, 0)


def penalty_score(matrix):
    """N1..N4 penalty of a normal symbol (lower is better)."""
    m = np.asarray(matrix, dtype=bool)
    n1 = _run_penalty(m) + _run_penalty(m.T)
    same = (m[:-1, :-1] == m[1:, :-1]) & (m[:-1, :-1] == m[:-1, 1:]) & (m[:-1, :-1] == m[1:, 1:])
    n2 = 3 * int(same.sum())
    n3 = 40 * (_finder_like(m) + _finder_like(m.T))
    n4 = _balance_penalty(int(m.sum()), m.size)
    return n1 + n2 + n3 + n4


def micro_mask_score(matrix):
    """Dark modules on the right and bottom edges (higher is better)."""
    m = np.asarray(matrix, dtype=bool)
    right, bottom = int(m[1:, -1].sum()), int(m[-1, 1:].sum())
    return min(right, bottom) * 16 + max(right, bottom)


def select_mask(matrix, version, level):
    """Return (mask, masked matrix) with format info drawn."""
    best, best_score, best_m = None, None, None
    for mask in range(T.num_masks(version)):
        m = matrix ^ T.mask_pattern(version, mask)
        draw_format(m, version, level, mask)
        if version.micro:
            score = -micro_mask_score(m)
        else:
            score = penalty_score(m)
        logger.debug("mask %d score %d", mask, abs(score))
        if best_score is None or score < best_score:
            best, best_score, best_m = mask, score, m
    return best, best_m


# ============================================================================
# MAIN
# ============================================================================

def _resolve_version(version, micro):
    if version is None:
        return None, micro
    if isinstance(version, Version):
        if micro and not version.micro:
            raise QRError(ErrorKind.UNSUPPORTED_VERSION, f"version {version} is not a micro version",
                          version=str(version))
        return version, version.micro
    return Version(version, micro), micro


def encode(data, version=None, level=EcLevel.L, micro=False, kanji=False, mask=None) -> QRCode:
    """Encode bytes (or str, as UTF-8) into a QR / Micro QR symbol.

    Without `version`, the smallest version whose optimal segmentation fits is
    chosen. An explicit `mask` skips mask evaluation.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    data = bytes(data)
    level = EcLevel.parse(level)
    version, micro = _resolve_version(version, micro)

    if version is not None:
        T.check_level(version, level)
        candidates = [version]
    else:
        candidates = [Version(n, True) for n in range(1, 5) if (n, level) in T.MICRO_BLOCKS] if micro \
            else [Version(n) for n in range(1, 41)]
        if not candidates:
            raise QRError(ErrorKind.UNSUPPORTED_EC_LEVEL, f"no micro version supports level {level.name}",
                          level=level.name)
    if mask is not None and not 0 <= mask < (4 if micro else 8):
        raise QRError(ErrorKind.USAGE, f"invalid mask: {mask}", mask=mask)

    chosen, segments, cache = None, None, {}
    for v in candidates:
        key = (v.micro, T.mode_indicator_bits(v), tuple(
            T.char_count_bits(v, m) for m in T.supported_modes(v)))
        if key not in cache:
            try:
                segs = segment_data(data, v, kanji)
                cache[key] = (segs, len(segment_bits(segs, v)))
            except QRError as e:
                if e.kind is not ErrorKind.DATA_TOO_LONG:
                    raise
                cache[key] = (None, None)
        segs, nbits = cache[key]
        if segs is not None and nbits <= T.data_capacity_bits(v, level):
            chosen, segments = v, segs
            break
    if chosen is None:
        raise QRError(ErrorKind.DATA_TOO_LONG, f"data too long ({len(data)} bytes) for "
                      f"{'version ' + str(version) if version else 'any version'} at level {level.name}",
                      length=len(data), level=level.name)

    codewords = build_data_codewords(segments, chosen, level)
    bits = add_ecc_and_interleave(codewords, chosen, level)
    matrix = place_bits(bits, chosen)
    if mask is None:
        mask, matrix = select_mask(matrix, chosen, level)
    else:
        matrix = matrix ^ T.mask_pattern(chosen, mask)
        draw_format(matrix, chosen, level, mask)
    logger.debug("encoded %d bytes: version %s, level %s, mask %d, segments %s",
                 len(data), chosen, level.name, mask, [s.mode.value for s in segments])
    return QRCode(chosen, level, mask, matrix, segments)

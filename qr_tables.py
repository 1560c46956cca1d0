"""QR / Micro QR symbol geometry and bit-stream tables.

Everything here is a pure function of (version, level, mask) and is cached;
returned arrays are read-only, copy before drawing on them.
"""

from collections import namedtuple
from functools import lru_cache

import numpy as np

from qr_types import EcLevel, ErrorKind, Mode, QRError, Version


# ============================================================================
# FUNCTION PATTERNS
# ============================================================================

# Alignment pattern center coordinates per version
ALIGNMENT_POSITIONS = {
    1:[],2:[6,18],3:[6,22],4:[6,26],5:[6,30],6:[6,34],7:[6,22,38],8:[6,24,42],9:[6,26,46],10:[6,28,50],
    11:[6,30,54],12:[6,32,58],13:[6,34,62],14:[6,26,46,66],15:[6,26,48,70],16:[6,26,50,74],
    17:[6,30,54,78],18:[6,30,56,82],19:[6,30,58,86],20:[6,34,62,90],21:[6,28,50,72,94],
    22:[6,26,50,74,98],23:[6,30,54,78,102],24:[6,28,54,80,106],25:[6,32,58,84,110],
    26:[6,30,58,86,114],27:[6,34,62,90,118],28:[6,26,50,74,98,122],29:[6,30,54,78,102,126],
    30:[6,26,52,78,104,130],31:[6,30,56,82,108,134],32:[6,34,60,86,112,138],
    33:[6,30,58,86,114,142],34:[6,34,62,90,118,146],35:[6,30,54,78,102,126,150],
    36:[6,24,50,76,102,128,154],37:[6,28,54,80,106,132,158],38:[6,32,58,84,110,136,162],
    39:[6,26,54,82,110,138,166],40:[6,30,58,86,114,142,170]
}

FINDER = np.array([[1,1,1,1,1,1,1],[1,0,0,0,0,0,1],[1,0,1,1,1,0,1],[1,0,1,1,1,0,1],
                   [1,0,1,1,1,0,1],[1,0,0,0,0,0,1],[1,1,1,1,1,1,1]], dtype=bool)
ALIGNMENT = np.array([[1,1,1,1,1],[1,0,0,0,1],[1,0,1,0,1],[1,0,0,0,1],[1,1,1,1,1]], dtype=bool)


def alignment_centers(version):
    """(row, col) centers of the alignment patterns that don't collide with finders."""
    if version.micro:
        return []
    pos = ALIGNMENT_POSITIONS[version.number]
    if not pos:
        return []
    first, last = pos[0], pos[-1]
    return [(r, c) for r in pos for c in pos
            if (r, c) not in ((first, first), (first, last), (last, first))]


def finder_origins(version):
    """Top-left corner of each 7x7 finder."""
    if version.micro:
        return [(0, 0)]
    size = version.width
    return [(0, 0), (0, size - 7), (size - 7, 0)]


def _readonly(a):
    a.setflags(write=False)
    return a


@lru_cache(maxsize=None)
def function_patterns(version):
    """Return (modules, is_function) with every function pattern drawn.

    Format and version areas are reserved in `is_function` but left light.
    """
    size = version.width
    modules = np.zeros((size, size), dtype=bool)
    func = np.zeros((size, size), dtype=bool)

    # Finders with their separators (clipped to the symbol)
    for top, left in finder_origins(version):
        r0, r1 = max(top - 1, 0), min(top + 8, size)
        c0, c1 = max(left - 1, 0), min(left + 8, size)
        func[r0:r1, c0:c1] = True
        modules[top:top + 7, left:left + 7] = FINDER

    # Timing
    t = 0 if version.micro else 6
    idx = np.arange(8, size if version.micro else size - 8)
    modules[t, idx] = modules[idx, t] = idx % 2 == 0
    func[t, idx] = func[idx, t] = True

    for r, c in alignment_centers(version):
        modules[r - 2:r + 3, c - 2:c + 3] = ALIGNMENT
        func[r - 2:r + 3, c - 2:c + 3] = True

    for copy in format_positions(version):
        for r, c in copy:
            func[r, c] = True
    if not version.micro:
        modules[size - 8, 8] = True
        func[size - 8, 8] = True
        if version.number >= 7:
            for copy in version_positions(version):
                for r, c in copy:
                    func[r, c] = True

    return _readonly(modules), _readonly(func)


def function_map(version):
    """Boolean map of reserved (non-data) modules."""
    return function_patterns(version)[1]


@lru_cache(maxsize=None)
def placement_order(version):
    """(row, col) of every data module in codeword bit order.

    Two-column strips from the right edge, alternating upward and downward,
    right module before left; normal symbols step over the timing column.
    """
    size = version.width
    func = function_map(version)
    order = []
    upward = True
    right = size - 1
    while right >= 1:
        if right == 6 and not version.micro:
            right = 5
        rows = range(size - 1, -1, -1) if upward else range(size)
        for r in rows:
            for c in (right, right - 1):
                if not func[r, c]:
                    order.append((r, c))
        upward = not upward
        right -= 2
    return _readonly(np.array(order, dtype=np.intp))


def num_data_modules(version):
    return len(placement_order(version))


# ============================================================================
# BLOCK STRUCTURE
# ============================================================================

# Total ECC codewords per version (L, M, Q, H)
ECC_CODEWORDS = (
    (7, 10, 13, 17), (10, 16, 22, 28), (15, 26, 36, 44), (20, 36, 52, 64),
    (26, 48, 72, 88), (36, 64, 96, 112), (40, 72, 108, 130), (48, 88, 132, 156),
    (60, 110, 160, 192), (72, 130, 192, 224), (80, 150, 224, 264), (96, 176, 260, 308),
    (104, 198, 288, 352), (120, 216, 320, 384), (132, 240, 360, 432), (144, 280, 408, 480),
    (168, 308, 448, 532), (180, 338, 504, 588), (196, 364, 546, 650), (224, 416, 600, 700),
    (224, 442, 644, 750), (252, 476, 690, 816), (270, 504, 750, 900), (300, 560, 810, 960),
    (312, 588, 870, 1050), (336, 644, 952, 1110), (360, 700, 1020, 1200), (390, 728, 1050, 1260),
    (420, 784, 1140, 1350), (450, 812, 1200, 1440), (480, 868, 1290, 1530), (510, 924, 1350, 1620),
    (540, 980, 1440, 1710), (570, 1036, 1530, 1800), (570, 1064, 1590, 1890), (600, 1120, 1680, 1980),
    (630, 1204, 1770, 2100), (660, 1260, 1860, 2220), (720, 1316, 1950, 2310), (750, 1372, 2040, 2430),
)

# Number of RS blocks per version (L, M, Q, H)
NUM_BLOCKS = (
    (1, 1, 1, 1), (1, 1, 1, 1), (1, 1, 2, 2), (1, 2, 2, 4), (1, 2, 4, 4),
    (2, 4, 4, 4), (2, 4, 6, 5), (2, 4, 6, 6), (2, 5, 8, 8), (4, 5, 8, 8),
    (4, 5, 8, 11), (4, 8, 10, 11), (4, 9, 12, 16), (4, 9, 16, 16), (6, 10, 12, 18),
    (6, 10, 17, 16), (6, 11, 16, 19), (6, 13, 18, 21), (7, 14, 21, 25), (8, 16, 20, 25),
    (8, 17, 23, 25), (9, 17, 23, 34), (9, 18, 25, 30), (10, 20, 27, 32), (12, 21, 29, 35),
    (12, 23, 34, 37), (12, 25, 34, 40), (13, 26, 35, 42), (14, 28, 38, 45), (15, 29, 40, 48),
    (16, 31, 43, 51), (17, 33, 45, 54), (18, 35, 48, 57), (19, 37, 51, 60), (19, 38, 53, 63),
    (20, 40, 56, 66), (21, 43, 59, 70), (22, 45, 62, 74), (24, 47, 65, 77), (25, 49, 68, 81),
)

# Micro symbols carry one block: (micro version, level) -> (data, ecc)
MICRO_BLOCKS = {
    (1, EcLevel.L): (3, 2),
    (2, EcLevel.L): (5, 5), (2, EcLevel.M): (4, 6),
    (3, EcLevel.L): (11, 6), (3, EcLevel.M): (9, 8),
    (4, EcLevel.L): (16, 8), (4, EcLevel.M): (14, 10), (4, EcLevel.Q): (10, 14),
}

# 3-bit symbol number carried in Micro format info
MICRO_SYMBOL_NUMBERS = {key: i for i, key in enumerate(MICRO_BLOCKS)}


def check_level(version, level):
    """Raise UNSUPPORTED_EC_LEVEL if `level` is illegal for `version`."""
    if version.micro and (version.number, level) not in MICRO_BLOCKS:
        raise QRError(ErrorKind.UNSUPPORTED_EC_LEVEL,
                      f"level {level.name} not available for {version}",
                      version=str(version), level=level.name)


def has_half_codeword(version):
    """M1 and M3 end their data with a 4-bit codeword."""
    return version.micro and version.number in (1, 3)


@lru_cache(maxsize=None)
def block_structure(version, level):
    """List of (data, ecc) codeword counts per block, short blocks first."""
    check_level(version, level)
    if version.micro:
        return [MICRO_BLOCKS[(version.number, level)]]
    total = num_data_modules(version) // 8
    total_ecc = ECC_CODEWORDS[version.number - 1][level]
    blocks = NUM_BLOCKS[version.number - 1][level]
    ecc = total_ecc // blocks
    num_long = total % blocks
    short_data = total // blocks - ecc
    return [(short_data, ecc)] * (blocks - num_long) + [(short_data + 1, ecc)] * num_long


def data_codeword_count(version, level):
    return sum(d for d, _ in block_structure(version, level))


def data_capacity_bits(version, level):
    bits = data_codeword_count(version, level) * 8
    return bits - 4 if has_half_codeword(version) else bits


# ============================================================================
# FORMAT / VERSION INFORMATION
# ============================================================================

FORMAT_GENERATOR = 0x537
FORMAT_MASK = 0x5412
MICRO_FORMAT_MASK = 0x4445
VERSION_GENERATOR = 0x1F25

# Two-bit level code in normal format info
FORMAT_LEVEL_BITS = {EcLevel.L: 1, EcLevel.M: 0, EcLevel.Q: 3, EcLevel.H: 2}
FORMAT_BITS_LEVEL = {v: k for k, v in FORMAT_LEVEL_BITS.items()}

FormatInfo = namedtuple("FormatInfo", "level mask micro_version distance")


def _bch(value, generator, length):
    """Append the BCH remainder of `value` for a generator of degree `length`."""
    rem = value << length
    top = generator.bit_length() - 1
    for i in range(rem.bit_length() - 1, top - 1, -1):
        if rem >> i & 1:
            rem ^= generator << (i - top)
    return value << length | rem


def format_bits(version, level, mask):
    """15-bit masked format word."""
    if version.micro:
        check_level(version, level)
        if not 0 <= mask < 4:
            raise QRError(ErrorKind.USAGE, f"invalid micro mask: {mask}", mask=mask)
        data = MICRO_SYMBOL_NUMBERS[(version.number, level)] << 2 | mask
        return _bch(data, FORMAT_GENERATOR, 10) ^ MICRO_FORMAT_MASK
    if not 0 <= mask < 8:
        raise QRError(ErrorKind.USAGE, f"invalid mask: {mask}", mask=mask)
    data = FORMAT_LEVEL_BITS[level] << 3 | mask
    return _bch(data, FORMAT_GENERATOR, 10) ^ FORMAT_MASK


def version_bits(version):
    """18-bit version word (versions 7+)."""
    if version.micro or version.number < 7:
        raise QRError(ErrorKind.USAGE, f"version {version} carries no version info")
    return _bch(version.number, VERSION_GENERATOR, 12)


@lru_cache(maxsize=None)
def format_positions(version):
    """Module coordinates of each format copy; entry i holds bit i (LSB first)."""
    size = version.width
    if version.micro:
        return ([(i + 1, 8) for i in range(8)] + [(8, 15 - i) for i in range(8, 15)],)
    first = ([(i, 8) for i in range(6)] + [(7, 8), (8, 8), (8, 7)] +
             [(8, 14 - i) for i in range(9, 15)])
    second = [(8, size - 1 - i) for i in range(8)] + [(size - 15 + i, 8) for i in range(8, 15)]
    return first, second


@lru_cache(maxsize=None)
def version_positions(version):
    """Module coordinates of both version copies; entry i holds bit i."""
    size = version.width
    top_right = [(i // 3, size - 11 + i % 3) for i in range(18)]
    bottom_left = [(c, r) for r, c in top_right]
    return top_right, bottom_left


def _hamming(a, b):
    return bin(a ^ b).count("1")


@lru_cache(maxsize=None)
def _format_codebook(micro):
    book = []
    if micro:
        for (n, level), _ in MICRO_BLOCKS.items():
            for mask in range(4):
                book.append((format_bits(Version(n, True), level, mask), FormatInfo(level, mask, n, 0)))
    else:
        for level in EcLevel:
            for mask in range(8):
                book.append((format_bits(Version(1), level, mask), FormatInfo(level, mask, None, 0)))
    return tuple(book)


def decode_format(words, micro=False):
    """Nearest valid format word to any of the read `words` (distance <= 3)."""
    best, best_d = None, 16
    for word in words:
        for code, info in _format_codebook(micro):
            d = _hamming(word, code)
            if d < best_d:
                best, best_d = info, d
    if best is None or best_d > 3:
        raise QRError(ErrorKind.METADATA_CORRUPT, "format information unreadable",
                      distance=best_d, words=[f"{w:015b}" for w in words])
    return best._replace(distance=best_d)


def decode_version(words):
    """Nearest valid version number (7..40) to any of the read 18-bit `words`."""
    best, best_d = None, 19
    for word in words:
        for n in range(7, 41):
            d = _hamming(word, _bch(n, VERSION_GENERATOR, 12))
            if d < best_d:
                best, best_d = n, d
    if best is None or best_d > 3:
        raise QRError(ErrorKind.METADATA_CORRUPT, "version information unreadable",
                      distance=best_d)
    return best


# ============================================================================
# MASKS
# ============================================================================

MASK_FUNCTIONS = [
    lambda r, c: (r + c) % 2 == 0,
    lambda r, c: r % 2 == 0,
    lambda r, c: c % 3 == 0,
    lambda r, c: (r + c) % 3 == 0,
    lambda r, c: (r // 2 + c // 3) % 2 == 0,
    lambda r, c: (r * c) % 2 + (r * c) % 3 == 0,
    lambda r, c: ((r * c) % 2 + (r * c) % 3) % 2 == 0,
    lambda r, c: ((r + c) % 2 + (r * c) % 3) % 2 == 0,
]

# Micro mask i uses normal pattern MICRO_MASKS[i]
MICRO_MASKS = [1, 4, 6, 7]


def num_masks(version):
    return 4 if version.micro else 8


@lru_cache(maxsize=None)
def mask_pattern(version, mask):
    """Boolean XOR pattern for `mask`, cleared on function modules."""
    if not 0 <= mask < num_masks(version):
        raise QRError(ErrorKind.USAGE, f"invalid mask {mask} for version {version}", mask=mask)
    fn = MASK_FUNCTIONS[MICRO_MASKS[mask] if version.micro else mask]
    r, c = np.indices((version.width, version.width))
    return _readonly(fn(r, c) & ~function_map(version))


# ============================================================================
# BIT-STREAM TABLES
# ============================================================================

ALPHANUMERIC_CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ $%*+-./:"

MODE_INDICATORS = {Mode.NUMERIC: 1, Mode.ALPHANUMERIC: 2, Mode.BYTE: 4, Mode.KANJI: 8}
MICRO_MODE_INDICATORS = {Mode.NUMERIC: 0, Mode.ALPHANUMERIC: 1, Mode.BYTE: 2, Mode.KANJI: 3}
MODE_ECI = 7
MODE_STRUCTURED_APPEND = 3
MODE_FNC1_FIRST = 5
MODE_FNC1_SECOND = 9

# Character count widths: normal versions 1-9 / 10-26 / 27-40
CHAR_COUNT_BITS = {
    Mode.NUMERIC: (10, 12, 14),
    Mode.ALPHANUMERIC: (9, 11, 13),
    Mode.BYTE: (8, 16, 16),
    Mode.KANJI: (8, 10, 12),
}

# Micro widths indexed by M1..M4 (None = mode unavailable)
MICRO_CHAR_COUNT_BITS = {
    Mode.NUMERIC: (3, 4, 5, 6),
    Mode.ALPHANUMERIC: (None, 3, 4, 5),
    Mode.BYTE: (None, None, 4, 5),
    Mode.KANJI: (None, None, 3, 4),
}


def supported_modes(version):
    if not version.micro:
        return list(Mode)
    return [m for m in Mode if MICRO_CHAR_COUNT_BITS[m][version.number - 1] is not None]


def mode_indicator_bits(version):
    return version.number - 1 if version.micro else 4


def mode_indicator(version, mode):
    return (MICRO_MODE_INDICATORS if version.micro else MODE_INDICATORS)[mode]


def char_count_bits(version, mode):
    if version.micro:
        bits = MICRO_CHAR_COUNT_BITS[mode][version.number - 1]
        if bits is None:
            raise QRError(ErrorKind.USAGE, f"{mode.value} mode not available in {version}",
                          mode=mode.value, version=str(version))
        return bits
    n = version.number
    return CHAR_COUNT_BITS[mode][0 if n <= 9 else 1 if n <= 26 else 2]


def terminator_bits(version):
    return 2 * version.number + 1 if version.micro else 4

import unittest

import numpy as np

import qr_encode
import qr_tables as T
from qr_encode import encode, segment_data
from qr_types import EcLevel, ErrorKind, Mode, QRError, Segment, Version

HELLO_WORLD_DATA = [32, 91, 11, 120, 209, 114, 220, 77, 67, 64, 236, 17, 236, 17, 236, 17]
HELLO_WORLD_ECC = [196, 35, 39, 119, 235, 215, 231, 226, 93, 23]


def to_bytes(bits):
    return [int("".join(map(str, bits[i:i + 8])), 2) for i in range(0, len(bits), 8)]


class SegmentationTests(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(segment_data(b"", Version(1)), [])

    def test_alphanumeric(self):
        segments = segment_data(b"HELLO WORLD", Version(1))
        self.assertEqual([(s.mode, s.data) for s in segments], [(Mode.ALPHANUMERIC, b"HELLO WORLD")])

    def test_digits_then_bytes(self):
        segments = segment_data(b"0123456789012345abcdefgh", Version(1))
        self.assertEqual([s.mode for s in segments], [Mode.NUMERIC, Mode.BYTE])
        self.assertEqual(segments[0].data, b"0123456789012345")

    def test_kanji_is_opt_in(self):
        data = "点茗".encode("shift_jis")
        self.assertEqual([s.mode for s in segment_data(data, Version(1), kanji=True)], [Mode.KANJI])
        self.assertEqual([s.mode for s in segment_data(data, Version(1))], [Mode.BYTE])

    def test_kanji_pair_ranges(self):
        self.assertTrue(qr_encode.is_kanji_pair(0x93, 0x5F))
        self.assertTrue(qr_encode.is_kanji_pair(0xE4, 0xAA))
        self.assertFalse(qr_encode.is_kanji_pair(0xA0, 0x40))
        self.assertFalse(qr_encode.is_kanji_pair(0x81, 0x7F))

    def test_micro_without_byte_mode(self):
        with self.assertRaises(QRError) as ctx:
            segment_data(b"a", Version(1, True))
        self.assertIs(ctx.exception.kind, ErrorKind.DATA_TOO_LONG)

    def test_long_segment_split(self):
        segments = qr_encode._split_long([Segment(Mode.NUMERIC, b"1234567890")], Version(1, True))
        self.assertEqual([s.data for s in segments], [b"1234567", b"890"])


class CodewordTests(unittest.TestCase):
    def test_hello_world_data_codewords(self):
        segments = segment_data(b"HELLO WORLD", Version(1))
        self.assertEqual(qr_encode.build_data_codewords(segments, Version(1), EcLevel.M), HELLO_WORLD_DATA)

    def test_hello_world_ecc(self):
        bits = qr_encode.add_ecc_and_interleave(HELLO_WORLD_DATA, Version(1), EcLevel.M)
        self.assertEqual(len(bits), 26 * 8)
        self.assertEqual(to_bytes(bits), HELLO_WORLD_DATA + HELLO_WORLD_ECC)

    def test_half_codeword_for_m1(self):
        segments = segment_data(b"12345", Version(1, True))
        codewords = qr_encode.build_data_codewords(segments, Version(1, True), EcLevel.L)
        self.assertEqual(len(codewords), 3)
        self.assertEqual(codewords[-1] & 0x0F, 0)
        bits = qr_encode.add_ecc_and_interleave(codewords, Version(1, True), EcLevel.L)
        self.assertEqual(len(bits), 20 + 16)

    def test_interleave_unequal_blocks(self):
        self.assertEqual(qr_encode.interleave([[1, 2], [3, 4, 5]]), [1, 3, 2, 4, 5])

    def test_too_many_bits(self):
        segments = segment_data(b"a" * 18, Version(1))
        with self.assertRaises(QRError) as ctx:
            qr_encode.build_data_codewords(segments, Version(1), EcLevel.L)
        self.assertIs(ctx.exception.kind, ErrorKind.DATA_TOO_LONG)


class MaskScoreTests(unittest.TestCase):
    def test_penalty_of_blank_symbol(self):
        self.assertEqual(qr_encode.penalty_score(np.zeros((21, 21), dtype=bool)), 2088)

    def test_balance_penalty_steps(self):
        self.assertEqual(qr_encode._balance_penalty(220, 400), 0)
        self.assertEqual(qr_encode._balance_penalty(221, 400), 10)
        self.assertEqual(qr_encode._balance_penalty(240, 400), 10)
        self.assertEqual(qr_encode._balance_penalty(241, 400), 20)
        self.assertEqual(qr_encode._balance_penalty(0, 441), 90)

    def test_micro_edge_score(self):
        m = np.zeros((11, 11), dtype=bool)
        m[:, -1] = True
        m[-1, :] = True
        self.assertEqual(qr_encode.micro_mask_score(m), 170)


class EncodeTests(unittest.TestCase):
    def test_smallest_version(self):
        code = encode("HELLO WORLD", level="M")
        self.assertEqual(code.version, Version(1))
        self.assertEqual(code.matrix.shape, (21, 21))
        self.assertEqual(code.matrix.dtype, bool)

    def test_capacity_boundary(self):
        self.assertEqual(encode(b"a" * 17).version, Version(1))
        self.assertEqual(encode(b"a" * 18).version, Version(2))

    def test_pinned_version_too_small(self):
        with self.assertRaises(QRError) as ctx:
            encode(b"a" * 18, version=1)
        self.assertIs(ctx.exception.kind, ErrorKind.DATA_TOO_LONG)

    def test_data_too_long_for_any_version(self):
        with self.assertRaises(QRError) as ctx:
            encode(b"\xff" * 3000, level="H")
        self.assertIs(ctx.exception.kind, ErrorKind.DATA_TOO_LONG)
        self.assertFalse(ctx.exception.is_usage)

    def test_micro_versions(self):
        self.assertEqual(encode("12345", micro=True).version, Version(1, True))
        self.assertEqual(encode("HELLO", micro=True).version, Version(2, True))
        self.assertEqual(encode("hello", micro=True).version, Version(3, True))

    def test_micro_level_unavailable(self):
        with self.assertRaises(QRError) as ctx:
            encode("1", micro=True, level="H")
        self.assertIs(ctx.exception.kind, ErrorKind.UNSUPPORTED_EC_LEVEL)
        with self.assertRaises(QRError) as ctx:
            encode("1", version=1, micro=True, level="M")
        self.assertIs(ctx.exception.kind, ErrorKind.UNSUPPORTED_EC_LEVEL)

    def test_normal_version_with_micro_flag(self):
        with self.assertRaises(QRError) as ctx:
            encode("1", version=Version(1), micro=True)
        self.assertIs(ctx.exception.kind, ErrorKind.UNSUPPORTED_VERSION)

    def test_invalid_mask(self):
        for kwargs in ({"mask": 8}, {"mask": 4, "micro": True}, {"mask": -1}):
            with self.assertRaises(QRError) as ctx:
                encode("A", **kwargs)
            self.assertIs(ctx.exception.kind, ErrorKind.USAGE)

    def test_explicit_mask(self):
        for mask in range(8):
            self.assertEqual(encode("HELLO", mask=mask).mask, mask)

    def test_deterministic(self):
        a, b = encode("determinism"), encode("determinism")
        self.assertEqual(a.mask, b.mask)
        self.assertTrue(np.array_equal(a.matrix, b.matrix))

    def test_function_patterns_survive_masking(self):
        code = encode("https://example.com", level="Q")
        modules, func = T.function_patterns(code.version)
        fixed = func.copy()
        for copy in T.format_positions(code.version):
            for r, c in copy:
                fixed[r, c] = False
        self.assertTrue(np.array_equal(code.matrix[fixed], modules[fixed]))

    def test_format_drawn(self):
        code = encode("HELLO WORLD", level="M", mask=0)
        word = sum(int(code.matrix[r, c]) << i for i, (r, c) in enumerate(T.format_positions(code.version)[0]))
        self.assertEqual(word, 0x5412)

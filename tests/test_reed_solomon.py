import unittest

import reed_solomon
from qr_types import ErrorKind, QRError
from reed_solomon import GF, ReedSolomon

HELLO_WORLD_DATA = [32, 91, 11, 120, 209, 114, 220, 77, 67, 64, 236, 17, 236, 17, 236, 17]
HELLO_WORLD_ECC = [196, 35, 39, 119, 235, 215, 231, 226, 93, 23]


class GaloisFieldTests(unittest.TestCase):
    def setUp(self):
        self.gf = GF()

    def test_multiply_without_reduction(self):
        self.assertEqual(self.gf.mul(3, 7), 9)

    def test_multiply_reduces_by_primitive_polynomial(self):
        self.assertEqual(self.gf.mul(0x80, 2), 0x1D)

    def test_zero_annihilates(self):
        self.assertEqual(self.gf.mul(0, 123), 0)
        self.assertEqual(self.gf.div(0, 45), 0)

    def test_divide_inverts_multiply(self):
        for a in (1, 2, 77, 200, 255):
            for b in (1, 3, 91, 254):
                self.assertEqual(self.gf.div(self.gf.mul(a, b), b), a)

    def test_inverse(self):
        for a in range(1, 256):
            self.assertEqual(self.gf.mul(a, self.gf.inv(a)), 1)

    def test_divide_by_zero_raises(self):
        with self.assertRaises(ZeroDivisionError):
            self.gf.div(5, 0)
        with self.assertRaises(ZeroDivisionError):
            self.gf.inv(0)


class ReedSolomonTests(unittest.TestCase):
    def block(self):
        return HELLO_WORLD_DATA + HELLO_WORLD_ECC

    def test_encode_known_vector(self):
        self.assertEqual(reed_solomon.encode(HELLO_WORLD_DATA, 10), HELLO_WORLD_ECC)

    def test_encode_returns_exact_parity_count(self):
        self.assertEqual(len(ReedSolomon(30).encode(list(range(100)))), 30)

    def test_check_valid_block(self):
        self.assertTrue(ReedSolomon(10).check(self.block()))
        bad = self.block()
        bad[0] ^= 1
        self.assertFalse(ReedSolomon(10).check(bad))

    def test_clean_block_unchanged(self):
        self.assertEqual(reed_solomon.correct(self.block(), 10), self.block())

    def test_corrects_up_to_half_parity(self):
        received = self.block()
        for pos, flip in [(0, 0xFF), (5, 0x01), (11, 0x80), (17, 0x3C), (25, 0x55)]:
            received[pos] ^= flip
        self.assertEqual(reed_solomon.correct(received, 10), self.block())

    def test_decode_returns_data_part(self):
        received = self.block()
        received[3] ^= 0x42
        self.assertEqual(ReedSolomon(10).decode(received), HELLO_WORLD_DATA)

    def test_too_many_errors_is_uncorrectable(self):
        received = self.block()
        for pos in (0, 3, 6, 9, 12, 15):
            received[pos] ^= 0xA5
        with self.assertRaises(QRError) as ctx:
            reed_solomon.correct(received, 10)
        self.assertIs(ctx.exception.kind, ErrorKind.UNCORRECTABLE)

    def test_erasures_up_to_parity_count(self):
        received = self.block()
        erasures = [1, 2, 4, 8, 13, 16, 19, 21, 24, 25]
        for pos in erasures:
            received[pos] = 0
        self.assertEqual(reed_solomon.correct(received, 10, erasures), self.block())

    def test_errors_and_erasures_combined(self):
        received = self.block()
        erasures = [2, 7, 20, 22]
        for pos in erasures:
            received[pos] = 0
        for pos in (0, 12, 25):
            received[pos] ^= 0x11
        self.assertEqual(reed_solomon.correct(received, 10, erasures), self.block())

    def test_too_many_erasures(self):
        with self.assertRaises(QRError) as ctx:
            reed_solomon.correct([1] + self.block()[1:], 10, list(range(11)))
        self.assertIs(ctx.exception.kind, ErrorKind.UNCORRECTABLE)

    def test_long_block(self):
        data = [(i * 37) % 256 for i in range(118)]
        block = data + reed_solomon.encode(data, 30)
        received = list(block)
        for pos in range(0, 148, 10):
            received[pos] ^= 0x5A
        self.assertEqual(reed_solomon.correct(received, 30), block)

    def test_invalid_parity_length(self):
        with self.assertRaises(ValueError):
            ReedSolomon(0)

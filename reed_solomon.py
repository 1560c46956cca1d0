"""Galois Field GF(2^8) and Reed-Solomon coding with erasure support."""

import logging

from qr_types import ErrorKind, QRError

logger = logging.getLogger(__name__)

PRIMITIVE_POLY = 0x11D


class GF:
    """Galois Field GF(2^8) for Reed-Solomon, generator 2 over 0x11D."""
    def __init__(self):
        self.exp, self.log = [0]*512, [0]*256
        x = 1
        for i in range(255):
            self.exp[i], self.log[x] = x, i
            x = (x << 1) ^ PRIMITIVE_POLY if x & 0x80 else x << 1
        for i in range(255, 512):
            self.exp[i] = self.exp[i - 255]

    def mul(self, a, b):
        return 0 if a == 0 or b == 0 else self.exp[self.log[a] + self.log[b]]

    def div(self, a, b):
        if b == 0:
            raise ZeroDivisionError("division by zero in GF(256)")
        return 0 if a == 0 else self.exp[(self.log[a] - self.log[b]) % 255]

    def inv(self, a):
        if a == 0:
            raise ZeroDivisionError("zero has no inverse in GF(256)")
        return self.exp[255 - self.log[a]]

    def pow(self, a, n):
        if a == 0:
            return 0
        return self.exp[(self.log[a] * n) % 255]


_GF = GF()


class ReedSolomon:
    """Reed-Solomon coder for blocks with `nsym` parity codewords.

    Polynomials are lists with the highest degree first, matching the order in
    which codewords sit in a block. The generator has roots a^0 .. a^(nsym-1).
    """
    _generators = {}

    def __init__(self, nsym):
        if not 0 < nsym < 255:
            raise ValueError(f"invalid parity length: {nsym}")
        self.nsym, self.gf = nsym, _GF

    def _poly_mul(self, p1, p2):
        r = [0] * (len(p1) + len(p2) - 1)
        for i, c1 in enumerate(p1):
            for j, c2 in enumerate(p2):
                r[i + j] ^= self.gf.mul(c1, c2)
        return r

    def _poly_eval(self, p, x):
        r = 0
        for c in p:
            r = self.gf.mul(r, x) ^ c
        return r

    @property
    def generator(self):
        gen = ReedSolomon._generators.get(self.nsym)
        if gen is None:
            gen = [1]
            for i in range(self.nsym):
                gen = self._poly_mul(gen, [1, self.gf.exp[i]])
            ReedSolomon._generators[self.nsym] = gen
        return gen

    def encode(self, data):
        """Return the `nsym` parity codewords for `data`."""
        gen = self.generator
        msg = list(data) + [0] * self.nsym
        for i in range(len(data)):
            coef = msg[i]
            if coef:
                for j in range(1, len(gen)):
                    msg[i + j] ^= self.gf.mul(gen[j], coef)
        return msg[len(data):]

    def _syndromes(self, msg):
        return [self._poly_eval(msg, self.gf.exp[i]) for i in range(self.nsym)]

    def check(self, msg):
        """True when `msg` is a valid codeword (all syndromes zero)."""
        return not any(self._syndromes(msg))

    def _berlekamp_massey(self, syndromes):
        """Error locator (lowest degree first) and its length L."""
        C, B = [1], [1]
        L, m, b = 0, 1, 1
        for n, s in enumerate(syndromes):
            d = s
            for i in range(1, L + 1):
                d ^= self.gf.mul(C[i], syndromes[n - i])
            if d == 0:
                m += 1
                continue
            coef = self.gf.div(d, b)
            T = list(C)
            if len(C) < len(B) + m:
                C += [0] * (len(B) + m - len(C))
            for i, bi in enumerate(B):
                C[i + m] ^= self.gf.mul(coef, bi)
            if 2 * L <= n:
                L, B, b, m = n + 1 - L, T, d, 1
            else:
                m += 1
            if len(C) < L + 1:
                C += [0] * (L + 1 - len(C))
        return C[:L + 1], L

    def _forney_syndromes(self, syndromes, erasure_pos, n):
        """Syndromes with the known erasure positions factored out."""
        fsynd = list(syndromes)
        for pos in erasure_pos:
            x = self.gf.exp[n - 1 - pos]
            for i in range(len(fsynd) - 1):
                fsynd[i] = self.gf.mul(fsynd[i], x) ^ fsynd[i + 1]
        return fsynd[:len(fsynd) - len(erasure_pos)]

    def _find_errors(self, err_loc, n):
        """Chien search: block positions whose locator X^-1 is a root."""
        positions = []
        for pos in range(n):
            x_inv = self.gf.exp[(255 - (n - 1 - pos)) % 255]
            r = 0
            for c in reversed(err_loc):
                r = self.gf.mul(r, x_inv) ^ c
            if r == 0:
                positions.append(pos)
        return positions

    def _magnitudes(self, synd, positions, n):
        """Solve sum_j Y_j * X_j^i = S_i for the error values by elimination."""
        k = len(positions)
        xs = [self.gf.exp[n - 1 - p] for p in positions]
        rows = [[self.gf.pow(x, i) for x in xs] + [synd[i]] for i in range(k)]
        for col in range(k):
            pivot = next((r for r in range(col, k) if rows[r][col]), None)
            if pivot is None:
                raise QRError(ErrorKind.UNCORRECTABLE, "singular error system")
            rows[col], rows[pivot] = rows[pivot], rows[col]
            inv = self.gf.inv(rows[col][col])
            rows[col] = [self.gf.mul(v, inv) for v in rows[col]]
            for r in range(k):
                f = rows[r][col]
                if r != col and f:
                    rows[r] = [a ^ self.gf.mul(f, c) for a, c in zip(rows[r], rows[col])]
        return [rows[i][k] for i in range(k)]

    def correct(self, msg, erasure_pos=None):
        """Return the corrected block (data + parity).

        With erasures: can correct 2*errors + erasures <= nsym
        Without erasures: can correct errors <= nsym/2
        """
        msg = list(msg)
        n = len(msg)
        if n > 255:
            raise ValueError(f"block too long: {n}")
        erasure_pos = sorted(set(erasure_pos or []))
        if any(not 0 <= p < n for p in erasure_pos):
            raise ValueError("erasure position outside block")
        synd = self._syndromes(msg)
        if max(synd) == 0:
            return msg
        if len(erasure_pos) > self.nsym:
            raise QRError(ErrorKind.UNCORRECTABLE, "too many erasures",
                          erasures=len(erasure_pos), ecc=self.nsym)

        fsynd = self._forney_syndromes(synd, erasure_pos, n)
        err_loc, num_errors = self._berlekamp_massey(fsynd) if fsynd else ([1], 0)
        if 2 * num_errors + len(erasure_pos) > self.nsym:
            raise QRError(ErrorKind.UNCORRECTABLE, "too many errors",
                          errors=num_errors, erasures=len(erasure_pos), ecc=self.nsym)
        err_pos = self._find_errors(err_loc, n) if num_errors else []
        if len(err_pos) != num_errors:
            raise QRError(ErrorKind.UNCORRECTABLE, "cannot locate errors",
                          errors=num_errors, located=len(err_pos), ecc=self.nsym)

        positions = sorted(set(erasure_pos) | set(err_pos))
        for p, y in zip(positions, self._magnitudes(synd, positions, n)):
            msg[p] ^= y
        if max(self._syndromes(msg)) != 0:
            raise QRError(ErrorKind.UNCORRECTABLE, "correction failed",
                          errors=num_errors, erasures=len(erasure_pos), ecc=self.nsym)
        logger.debug("RS corrected %d errors, %d erasures", num_errors, len(erasure_pos))
        return msg

    def decode(self, msg, erasure_pos=None):
        """Correct `msg` and return only its data codewords."""
        return self.correct(msg, erasure_pos)[:-self.nsym]


def encode(data, ecc_count):
    """Parity codewords for one block."""
    return ReedSolomon(ecc_count).encode(data)


def correct(received, ecc_count, erasures=None):
    """Corrected block (data + parity) or QRError(UNCORRECTABLE)."""
    return ReedSolomon(ecc_count).correct(received, erasures)

import unittest

import cv2
import numpy as np

import qr_detect
from qr_encode import encode
from qr_render import to_image
from qr_types import Version


class BinarizeTests(unittest.TestCase):
    def test_clean_raster(self):
        img = to_image(encode("binarize"))
        self.assertTrue(np.array_equal(qr_detect.binarize(img), img == 0))

    def test_uneven_lighting(self):
        img = to_image(encode("gradient")).astype(np.float32)
        ramp = np.linspace(0.6, 1.0, img.shape[1], dtype=np.float32)
        shaded = (img * ramp + 20).clip(0, 255).astype(np.uint8)
        binary = qr_detect.binarize(shaded)
        self.assertTrue(np.array_equal(binary, img == 0))


class FinderTests(unittest.TestCase):
    def setUp(self):
        self.binary = qr_detect.binarize(to_image(encode("HELLO WORLD", level="M")))

    def test_three_finders(self):
        patterns = qr_detect.find_finder_patterns(self.binary)
        by_center = {(round(p["center"][0]), round(p["center"][1])): p for p in patterns}
        for center in [(30, 30), (86, 30), (30, 86)]:
            self.assertIn(center, by_center)
            p = by_center[center]
            self.assertAlmostEqual(p['module'], 4, delta=0.5)
            self.assertGreaterEqual(p['count'], 2)

    def test_identify_corners(self):
        tl, tr, bl = ({'center': c} for c in [(10, 10), (50, 10), (10, 50)])
        got = qr_detect.identify_corners([bl, tl, tr])
        self.assertEqual([p['center'] for p in got], [(10, 10), (50, 10), (10, 50)])

    def test_grouping(self):
        groups = qr_detect.group_finder_patterns(qr_detect.find_finder_patterns(self.binary))
        quality, (tl, tr, bl), estimate = groups[0]
        self.assertEqual(estimate, 1)
        self.assertAlmostEqual(tl['center'][0], 30, delta=1)
        self.assertAlmostEqual(tr['center'][0], 86, delta=1)
        self.assertAlmostEqual(bl['center'][1], 86, delta=1)

    def test_cross_check_rejects_wrong_ratio(self):
        line = np.array([0, 1, 1, 0, 1, 1, 1, 0, 1, 0], dtype=bool)
        self.assertIsNone(qr_detect._cross_check(line, 5, 9))


class GridTests(unittest.TestCase):
    def test_normal_grid(self):
        code = encode("grid sampling", version=3)
        grids = qr_detect.detect_grids(to_image(code))
        self.assertEqual(len(grids), 1)
        self.assertEqual(grids[0].version, Version(3))
        self.assertTrue(np.array_equal(grids[0].modules, code.matrix))
        np.testing.assert_allclose(grids[0].corners, [[16, 16], [132, 16], [132, 132], [16, 132]], atol=1.5)

    def test_micro_grid(self):
        code = encode("HELLO", micro=True)
        grids = qr_detect.detect_grids(to_image(code))
        self.assertEqual(len(grids), 1)
        self.assertEqual(grids[0].version, Version(2, True))
        self.assertTrue(np.array_equal(grids[0].modules, code.matrix))

    def test_version_from_version_info(self):
        code = encode("seven", version=7)
        grids = qr_detect.detect_grids(to_image(code, scale=3))
        self.assertEqual(grids[0].version, Version(7))
        self.assertTrue(np.array_equal(grids[0].modules, code.matrix))

    def test_pattern_scores(self):
        code = encode("scores")
        self.assertEqual(qr_detect.pattern_scores(code.matrix, code.version), (1.0, 1.0))
        self.assertLess(qr_detect.pattern_scores(~code.matrix, code.version)[0], 0.8)

    def test_sample_grid_identity(self):
        matrix = encode("identity").matrix
        H = np.array([[1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=np.float64)
        self.assertTrue(np.array_equal(qr_detect.sample_grid(matrix, H, matrix.shape[0]), matrix))

    def test_perspective(self):
        code = encode("perspective", version=2)
        img = to_image(code, scale=6)
        h, w = img.shape
        src = np.float32([[0, 0], [w, 0], [w, h], [0, h]])
        dst = np.float32([[8, 4], [w + 2, 0], [w + 8, h + 6], [0, h + 2]])
        warped = cv2.warpPerspective(img, cv2.getPerspectiveTransform(src, dst), (w + 20, h + 20),
                                     flags=cv2.INTER_NEAREST, borderValue=255)
        grids = qr_detect.detect_grids(warped)
        self.assertEqual(len(grids), 1)
        self.assertTrue(np.array_equal(grids[0].modules, code.matrix))

    def assert_micro_found(self, image, code, msg=None):
        grids = qr_detect.detect_grids(image)
        self.assertEqual(len(grids), 1, msg)
        self.assertEqual(grids[0].version, code.version, msg)
        self.assertTrue(np.array_equal(grids[0].modules, code.matrix), msg)

    def test_micro_sheared(self):
        code = encode(b"Micro QR M4", micro=True)
        img = to_image(code, scale=8)
        h, w = img.shape
        for shear in (0.05, 0.1, 0.15, 0.2):
            M = np.float32([[1, shear, 0], [0, 1, 0]])
            sheared = cv2.warpAffine(img, M, (w + int(shear * h) + 1, h),
                                     flags=cv2.INTER_NEAREST, borderValue=255)
            self.assert_micro_found(sheared, code, shear)

    def test_micro_squeezed(self):
        for data in (b"Micro QR M4", "HELLO"):
            code = encode(data, micro=True)
            img = to_image(code, scale=8)
            h, w = img.shape
            for aspect in (0.8, 0.7):
                squeezed = cv2.resize(img, (int(w * aspect), h), interpolation=cv2.INTER_NEAREST)
                self.assert_micro_found(squeezed, code, (data, aspect))
                flattened = cv2.resize(img, (w, int(h * aspect)), interpolation=cv2.INTER_NEAREST)
                self.assert_micro_found(flattened, code, (data, aspect, "flat"))

    def test_micro_perspective(self):
        code = encode("HELLO", micro=True)
        img = to_image(code, scale=8)
        h, w = img.shape
        src = np.float32([[0, 0], [w, 0], [w, h], [0, h]])
        dst = np.float32([[6, 3], [w + 2, 0], [w + 6, h + 5], [0, h + 2]])
        warped = cv2.warpPerspective(img, cv2.getPerspectiveTransform(src, dst), (w + 12, h + 12),
                                     flags=cv2.INTER_NEAREST, borderValue=255)
        self.assert_micro_found(warped, code)

    def test_finder_quad(self):
        code = encode("HELLO", micro=True)
        binary = qr_detect.binarize(to_image(code))
        _, labels = cv2.connectedComponents(binary.astype(np.uint8), connectivity=4)
        pattern = {'center': (22, 22)}
        quad = qr_detect.finder_quad(qr_detect._ring_points(labels, binary, pattern))
        quad = np.roll(quad, -int(np.argmin(quad.sum(axis=1))), axis=0)
        np.testing.assert_allclose(quad, [[8, 8], [36, 8], [36, 36], [8, 36]], atol=0.1)

    def test_nothing_to_find(self):
        self.assertEqual(qr_detect.detect_grids(np.full((64, 64), 255, np.uint8)), [])

import unittest

import numpy as np

from qr_encode import encode
from qr_render import RenderConfig, default_quiet_zone, render, to_image


class RenderTests(unittest.TestCase):
    def test_half_blocks(self):
        matrix = np.array([[1, 0], [0, 1]], dtype=bool)
        self.assertEqual(list(render(matrix, RenderConfig(quiet_zone=0))), ["▀▄"])

    def test_inverted(self):
        matrix = np.array([[1, 0], [0, 1]], dtype=bool)
        config = RenderConfig(quiet_zone=0).inverted()
        self.assertEqual(list(render(matrix, config)), ["▄▀"])

    def test_odd_height_padded_light(self):
        matrix = np.array([[1, 1], [0, 1], [1, 0]], dtype=bool)
        self.assertEqual(list(render(matrix, RenderConfig(quiet_zone=0))), ["▀█", "▀ "])
        inverted = RenderConfig(quiet_zone=0).inverted()
        self.assertEqual(list(render(matrix, inverted)), ["▄ ", "▄█"])

    def test_quiet_zone_defaults(self):
        self.assertEqual(default_quiet_zone(21), 4)
        self.assertEqual(default_quiet_zone(11), 2)
        rows = list(render(encode("HELLO")))
        self.assertEqual(len(rows), 15)
        self.assertTrue(all(len(r) == 29 for r in rows))
        self.assertEqual(set(rows[0]), {" "})

    def test_micro_quiet_zone(self):
        rows = list(render(encode("12345", micro=True)))
        self.assertEqual(len(rows), 8)
        self.assertTrue(all(len(r) == 15 for r in rows))

    def test_explicit_quiet_zone(self):
        rows = list(render(encode("HELLO"), RenderConfig(quiet_zone=1)))
        self.assertEqual(len(rows), 12)
        self.assertEqual(rows[0][0], " ")
        self.assertEqual(rows[0][1], "▄")


class ImageTests(unittest.TestCase):
    def test_raster(self):
        img = to_image(encode("HELLO"), scale=4)
        self.assertEqual(img.shape, (116, 116))
        self.assertEqual(img.dtype, np.uint8)
        self.assertEqual(set(np.unique(img).tolist()), {0, 255})
        self.assertEqual(img[0, 0], 255)
        self.assertEqual(img[16, 16], 0)
        self.assertEqual(img[15, 16], 255)

    def test_scale_and_quiet_zone(self):
        img = to_image(encode("HELLO"), scale=1, quiet_zone=0)
        self.assertEqual(img.shape, (21, 21))
        self.assertEqual(img[0, 0], 0)

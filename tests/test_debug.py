import os
import tempfile
import unittest

import numpy as np

import qr_debug
import qr_decode
from qr_encode import encode
from qr_render import to_image
from qr_types import Version


class ModuleTypeMapTests(unittest.TestCase):
    def test_version_1(self):
        t = qr_debug.module_type_map(Version(1))
        self.assertEqual(int((t == 1).sum()), 3 * 49)
        self.assertEqual(int((t == 3).sum()), 10)
        self.assertEqual(int((t == 5).sum()), 30)
        self.assertEqual(int((t == 7).sum()), 1)
        self.assertEqual(int((t == 0).sum()), 208)

    def test_version_7_has_version_info(self):
        t = qr_debug.module_type_map(Version(7))
        self.assertEqual(int((t == 6).sum()), 36)
        self.assertEqual(int((t == 4).sum()), 6 * 25)

    def test_micro(self):
        t = qr_debug.module_type_map(Version(2, True))
        self.assertEqual(int((t == 1).sum()), 49)
        self.assertEqual(int((t == 5).sum()), 15)
        self.assertEqual(int((t == 0).sum()), 80)


class SaveDebugTests(unittest.TestCase):
    def tearDown(self):
        qr_decode.DEBUG_DIR = None

    def test_files_written(self):
        with tempfile.TemporaryDirectory() as tmp:
            qr_decode.DEBUG_DIR = os.path.join(tmp, "out")
            img = np.vstack([to_image(encode("one", version=1)), to_image(encode("two", version=1))])
            results = qr_decode.detect_and_decode(img)
            self.assertEqual(len(results), 2)
            names = set(os.listdir(qr_decode.DEBUG_DIR))
            for name in ("1_detected.png", "2_binary.png", "3_grid0_matrix.png", "3_grid1_matrix.png",
                         "3_grid0_info.txt", "3_grid1_info.txt", "4_summary.txt"):
                self.assertIn(name, names)
            with open(os.path.join(qr_decode.DEBUG_DIR, "4_summary.txt")) as f:
                summary = f.read()
            self.assertIn("Grids: 2", summary)
            self.assertIn("b'one'", summary)

    def test_failed_grid_info(self):
        with tempfile.TemporaryDirectory() as tmp:
            matrix = encode("broken", version=1).matrix.copy()
            matrix[9:21, 9:21] = True
            results = qr_decode.detect_and_decode(to_image(matrix))
            qr_debug.save_debug_all(tmp, to_image(matrix), np.zeros((4, 4), bool), [], results)
            with open(os.path.join(tmp, "3_grid0_info.txt")) as f:
                self.assertIn("Error: uncorrectable", f.read())

    def test_disabled(self):
        qr_debug.save_debug_all(None, None, None, [], [])

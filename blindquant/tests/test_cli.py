# blindquant/tests/test_cli.py
# Unit tests for __main__.py: argument parsing and a headless run

import logging
import os
import shutil
import sys
import tempfile
import unittest

import numpy as np
import tifffile

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from blindquant.__main__ import build_parser, config_from_args, main


class TestArguments(unittest.TestCase):

    def test_defaults_match_config(self):
        cfg = config_from_args(build_parser().parse_args([]))

        self.assertEqual(cfg["boundary"]["channel"], 3)
        self.assertIsNone(cfg["threshold"]["lower"])
        self.assertEqual(cfg["detection"]["minArea"], 4000)
        self.assertEqual(cfg["detection"]["maxArea"], 50000)
        self.assertTrue(cfg["detection"]["excludeBorder"])
        self.assertEqual(cfg["separation"]["method"], "watershed")

    def test_ranges_and_flags(self):
        args = build_parser().parse_args([
            "--threshold", "90,400", "--area", "100,inf", "--circularity", "0.5,1",
            "--keep-border", "--no-watershed", "--precision", "1", "--shuffle", "--seed", "5",
        ])
        cfg = config_from_args(args)

        self.assertEqual((cfg["threshold"]["lower"], cfg["threshold"]["upper"]), (90.0, 400.0))
        self.assertEqual(cfg["detection"]["minArea"], 100.0)
        self.assertIsNone(cfg["detection"]["maxArea"])
        self.assertEqual(cfg["detection"]["minCirc"], 0.5)
        self.assertFalse(cfg["detection"]["excludeBorder"])
        self.assertEqual(cfg["separation"]["method"], "none")
        self.assertEqual(cfg["measurement"]["precision"], 1)
        self.assertEqual((cfg["batch"]["shuffle"], cfg["batch"]["seed"]), (True, 5))

    def test_single_threshold(self):
        cfg = config_from_args(build_parser().parse_args(["--threshold", "120"]))
        self.assertEqual(cfg["threshold"]["lower"], 120.0)
        self.assertIsNone(cfg["threshold"]["upper"])


class TestHeadlessRun(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        stack = np.zeros((3, 160, 160), dtype=np.uint16)
        yy, xx = np.ogrid[:160, :160]
        stack[2][(xx - 80)**2 + (yy - 80)**2 <= 45**2] = 200
        stack[0] = 10
        tifffile.imwrite(os.path.join(self.tmpdir, "animal7.tif"), stack, imagej=True,
                         metadata={"axes": "CYX"})
        tifffile.imwrite(os.path.join(self.tmpdir, "gray.tif"), stack[0])
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)
        shutil.rmtree(self.tmpdir)

    def test_exit_code_reports_skipped_image(self):
        outDir = os.path.join(self.tmpdir, "out")
        code = main(["--input", self.tmpdir, "--output", outDir, "--headless",
                     "--threshold", "100", "--save-key"])

        self.assertEqual(code, 2)  # the single-channel image is skipped
        self.assertTrue(os.path.exists(os.path.join(outDir, "animal7.csv")))
        self.assertTrue(os.path.exists(os.path.join(outDir, "blinding_key.csv")))

    def test_clean_run(self):
        os.remove(os.path.join(self.tmpdir, "gray.tif"))
        self.assertEqual(main(["--input", self.tmpdir, "--headless"]), 0)
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "results", "animal7.csv")))


if __name__ == "__main__":
    unittest.main()

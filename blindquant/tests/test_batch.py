# blindquant/tests/test_batch.py
# Unit tests for core/batch.py - sequential blinded batch processing

import csv
import os
import random
import shutil
import sys
import tempfile
import unittest

import numpy as np
import tifffile

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.batch import KEY_FILENAME, process_single_image, run_batch, run_directory
from core.blinding import BlindingController
from core.errors import MissingBoundaryChannel, UserAbort
from core.interaction import HeadlessInteraction, Interaction
from core.preprocessing import ChannelImage
from core.processing import makeConfig


def _make_cells_stack(h=200, w=300, channels=3) -> np.ndarray:
    """
    Two r=45 cells, boundary marker (200) in channel 3 on a black background.
    Channel 1 is constant 50, channel 2 constant 80.
    """
    yy, xx = np.ogrid[:h, :w]
    cells = np.zeros((h, w), dtype=bool)
    for cx, cy in [(80, 100), (220, 100)]:
        cells |= (xx - cx)**2 + (yy - cy)**2 <= 45**2
    stack = np.zeros((3, h, w), dtype=np.uint16)
    stack[0] = 50
    stack[1] = 80
    stack[2][cells] = 200
    return stack[:channels]


def _config(**batch):
    return makeConfig({"threshold": {"lower": 100}, "batch": batch})


class FakeLoader:
    """In-memory loader: path -> channel count. Remembers every image it handed out."""

    def __init__(self, channelsByPath):
        self.channelsByPath = channelsByPath
        self.images = []

    def __call__(self, path):
        img = ChannelImage(_make_cells_stack(channels=self.channelsByPath[path]), identity=path)
        self.images.append(img)
        return img


class RecordingInteraction(HeadlessInteraction):
    """Headless answers; remembers which labels were shown, may abort on a given prompt."""

    def __init__(self, abortOn=None):
        super().__init__()
        self.labels = []
        self.abortOn = abortOn
        self.acknowledged = None

    def adjustThreshold(self, label, channel, suggested):
        self.labels.append(label)
        if self.abortOn is not None and len(self.labels) == self.abortOn:
            raise UserAbort("operator pressed abort")
        return super().adjustThreshold(label, channel, suggested)

    def acknowledge(self, report):
        self.acknowledged = report


class TestProcessSingleImage(unittest.TestCase):
    """Tests for process_single_image()."""

    def setUp(self):
        self.image = ChannelImage(_make_cells_stack(), identity="/data/x.tif", label="blind-00c0ffee")

    def test_two_cells_three_channels(self):
        records, meta = process_single_image(self.image, _config(), HeadlessInteraction())

        self.assertEqual(meta["regionCount"], 2)
        self.assertEqual(len(records), 6)
        self.assertEqual(meta["threshold"], 100.0)
        self.assertEqual(meta["history"], ["detected", "accepted", "frozen"])

    def test_measurement_channels_raw(self):
        records, _ = process_single_image(self.image, _config(), HeadlessInteraction())

        ch2 = [r for r in records if r.channel == 2]
        for rec in ch2:
            self.assertEqual(rec.mean, 80.0)
            self.assertEqual(rec.raw_int_den, 80.0 * rec.area)
            self.assertGreater(rec.area, 5500)
            self.assertLess(rec.area, 7000)

    def test_suggested_threshold_when_unset(self):
        _, meta = process_single_image(self.image, makeConfig(), HeadlessInteraction())
        self.assertEqual(meta["regionCount"], 2)
        self.assertGreater(meta["threshold"], 0)

    def test_operator_threshold_used(self):
        # everything in the boundary channel is below 250, so nothing is detected
        _, meta = process_single_image(self.image, _config(), HeadlessInteraction(threshold=250))
        self.assertEqual(meta["threshold"], 250)
        self.assertEqual(meta["regionCount"], 0)

    def test_missing_boundary_channel(self):
        image = ChannelImage(_make_cells_stack(channels=2), identity="/data/y.tif", label="blind-0000beef")
        with self.assertRaises(MissingBoundaryChannel):
            process_single_image(image, _config(), HeadlessInteraction())


class TestRunBatch(unittest.TestCase):
    """Tests for run_batch() isolation, release, naming and reporting."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.paths = ["/data/a_ctrl.tif", "/data/b_broken.tif", "/data/c_treated.tif"]
        self.loader = FakeLoader({self.paths[0]: 3, self.paths[1]: 2, self.paths[2]: 3})

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def _run(self, config=None, interaction=None, **kw):
        return run_batch(self.paths, self.tmpdir, config or _config(), interaction or HeadlessInteraction(),
                         BlindingController(random.Random(3)), loader=self.loader, **kw)

    def test_failure_isolated(self):
        report = self._run()

        self.assertEqual(report.total, 3)
        self.assertEqual(len(report.succeeded), 2)
        self.assertEqual(len(report.failed), 1)
        self.assertIn("MissingBoundaryChannel", report.failed[0].error)
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "a_ctrl.csv")))
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "b_broken.csv")))
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "c_treated.csv")))

    def test_every_image_released(self):
        self._run()
        self.assertEqual(len(self.loader.images), 3)
        for img in self.loader.images:
            self.assertTrue(img.released)

    def test_result_table(self):
        self._run()
        with open(os.path.join(self.tmpdir, "a_ctrl.csv"), newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], ["Channel", "Area", "Mean", "Min", "Max", "IntDen", "RawIntDen"])
        self.assertEqual(len(rows), 1 + 6)
        self.assertEqual(rows[3][2], "80.000")

    def test_operator_sees_labels_only(self):
        ui = RecordingInteraction()
        report = self._run(interaction=ui)

        self.assertEqual(len(ui.labels), 2)  # broken image fails before the prompt
        for label in ui.labels:
            self.assertTrue(label.startswith("blind-"))
            for path in self.paths:
                self.assertNotIn(os.path.splitext(os.path.basename(path))[0], label)
        self.assertIs(ui.acknowledged, report)

    def test_user_abort_propagates(self):
        ui = RecordingInteraction(abortOn=2)
        with self.assertRaises(UserAbort) as ctx:
            self._run(interaction=ui)

        report = ctx.exception.report
        self.assertEqual(len(report.outcomes), 3)
        self.assertEqual(report.outcomes[-1].error, "aborted")
        self.assertTrue(self.loader.images[-1].released)
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "a_ctrl.csv")))
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "c_treated.csv")))
        self.assertIsNone(ui.acknowledged)

    def test_empty_table_still_written(self):
        cfg = makeConfig({"threshold": {"lower": 100}, "detection": {"minArea": 50000, "maxArea": None}})
        report = self._run(config=cfg)

        self.assertEqual(report.succeeded[0].regionCount, 0)
        with open(os.path.join(self.tmpdir, "a_ctrl.csv"), newline="", encoding="utf-8") as f:
            self.assertEqual(len(list(csv.reader(f))), 1)

    def test_progress_callback(self):
        calls = []
        self._run(progress_callback=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(1, 3), (2, 3), (3, 3)])

    def test_shuffle_is_seeded(self):
        first = self._run(config=_config(shuffle=True, seed=11))
        order = [o.label for o in first.outcomes]
        self.loader.images = []
        second = self._run(config=_config(shuffle=True, seed=11))
        self.assertEqual([o.label for o in second.outcomes], order)
        self.assertEqual(sorted(self.loader.images[i].identity for i in range(3)), sorted(self.paths))

    def test_key_file(self):
        report = self._run(config=_config(saveKey=True))

        self.assertEqual(report.keyPath, os.path.join(self.tmpdir, KEY_FILENAME))
        with open(report.keyPath, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0][:2], ["Label", "File"])
        self.assertIn("threshold", rows[0])
        files = sorted(row[1] for row in rows[1:])
        self.assertEqual(files, ["a_ctrl.tif", "b_broken.tif", "c_treated.tif"])

    def test_no_key_by_default(self):
        report = self._run()
        self.assertIsNone(report.keyPath)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, KEY_FILENAME)))

    def test_failure_log_hides_identity(self):
        secret = "/data/secret_mouse7.png"

        def unreadable(path):
            raise FileNotFoundError(f"Could not read image: {path}")

        blinding = BlindingController(random.Random(5))
        with self.assertLogs("core.batch", level="INFO") as logs:
            report = run_batch([secret], self.tmpdir, _config(), HeadlessInteraction(), blinding,
                               loader=unreadable)

        label = report.failed[0].label
        self.assertIn("FileNotFoundError", report.failed[0].error)
        self.assertIn(label, report.failed[0].error)
        self.assertNotIn("secret_mouse7", report.failed[0].error)
        for line in logs.output:
            self.assertNotIn("secret_mouse7", line)
        self.assertTrue(any(label in line and "skipped" in line for line in logs.output))

    def test_unexpected_failure_log_hides_identity(self):
        def broken(path):
            raise RuntimeError(f"decoder crashed on {os.path.basename(path)}")

        with self.assertLogs("core.batch", level="INFO") as logs:
            report = run_batch(["/data/secret_mouse7.tif"], self.tmpdir, _config(), loader=broken)

        self.assertNotIn("secret_mouse7", report.failed[0].error)
        for line in logs.output:
            self.assertNotIn("secret_mouse7", line)

    def test_empty_input(self):
        report = run_batch([], self.tmpdir, _config())
        self.assertEqual(report.total, 0)
        self.assertEqual(report.outcomes, [])


class TestRunDirectory(unittest.TestCase):
    """End-to-end run over TIFF files on disk."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        for name in ("s1.tif", "s2.tif"):
            tifffile.imwrite(os.path.join(self.tmpdir, name), _make_cells_stack(),
                             imagej=True, metadata={"axes": "CYX"})
        with open(os.path.join(self.tmpdir, "readme.txt"), "w") as f:
            f.write("not an image")

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_default_output_directory(self):
        report = run_directory(self.tmpdir, config=_config())

        self.assertEqual(report.total, 2)
        self.assertEqual(len(report.failed), 0)
        outDir = os.path.join(self.tmpdir, "results")
        self.assertEqual(sorted(os.listdir(outDir)), ["s1.csv", "s2.csv"])

    def test_directory_from_interaction(self):
        outDir = os.path.join(self.tmpdir, "out")
        report = run_directory(None, outDir, _config(), HeadlessInteraction(directory=self.tmpdir))
        self.assertEqual(len(report.succeeded), 2)

    def test_no_directory_selected(self):
        class Cancelling(Interaction):
            pass

        with self.assertRaises(UserAbort):
            run_directory(None, config=_config(), interaction=Cancelling())


if __name__ == "__main__":
    unittest.main()

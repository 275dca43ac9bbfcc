# blindquant/tests/test_widgets.py
# Unit tests for gui/widgets.py: dtype helpers, preview rendering and debouncing

import os
import sys
import unittest

import numpy as np

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

try:
    from blindquant.gui.widgets import debounce, ensure_mask_uint8, np_to_pil, overlay_mask, to_display_gray
except ImportError:  # no tkinter / ImageTk on this interpreter
    ensure_mask_uint8 = None


@unittest.skipIf(ensure_mask_uint8 is None, "tkinter is not available")
class TestEnsureMaskUint8(unittest.TestCase):
    """Tests for ensure_mask_uint8() dtype normalization."""

    def test_bool_to_uint8(self):
        mask = np.array([[True, False], [False, True]], dtype=bool)
        result = ensure_mask_uint8(mask, (2, 2))

        self.assertEqual(result.dtype, np.uint8)
        self.assertEqual(result[0, 0], 255)
        self.assertEqual(result[0, 1], 0)

    def test_uint8_binary_scaled(self):
        mask = np.array([[1, 0], [0, 1]], dtype=np.uint8)
        result = ensure_mask_uint8(mask, (2, 2))

        self.assertEqual(result[0, 0], 255)
        self.assertEqual(result[0, 1], 0)

    def test_none_returns_zeros(self):
        result = ensure_mask_uint8(None, (5, 5))

        self.assertEqual(result.shape, (5, 5))
        self.assertEqual(result.sum(), 0)

    def test_none_without_shape(self):
        with self.assertRaises(ValueError):
            ensure_mask_uint8(None)

    def test_resizes_if_shape_mismatch(self):
        mask = np.ones((10, 10), dtype=np.uint8) * 255
        result = ensure_mask_uint8(mask, (20, 20))

        self.assertEqual(result.shape, (20, 20))

    def test_float_nonzero_to_255(self):
        mask = np.array([[0.0, 0.5], [1.0, 0.0]], dtype=np.float32)
        result = ensure_mask_uint8(mask, (2, 2))

        self.assertEqual(result[0, 0], 0)
        self.assertEqual(result[0, 1], 255)
        self.assertEqual(result[1, 0], 255)


@unittest.skipIf(ensure_mask_uint8 is None, "tkinter is not available")
class TestPreviewRendering(unittest.TestCase):
    """Tests for the display helpers behind the threshold and ROI previews."""

    def test_display_gray_stretches(self):
        ch = np.array([[1000, 2000], [3000, 4000]], dtype=np.uint16)
        gray = to_display_gray(ch)

        self.assertEqual(gray.dtype, np.uint8)
        self.assertEqual(int(gray.min()), 0)
        self.assertEqual(int(gray.max()), 255)

    def test_overlay_tints_foreground_only(self):
        gray = np.full((4, 4), 100, dtype=np.uint8)
        mask = np.zeros((4, 4), dtype=np.uint8)
        mask[0, 0] = 255

        out = overlay_mask(gray, mask)

        self.assertEqual(out.shape, (4, 4, 3))
        np.testing.assert_array_equal(out[3, 3], [100, 100, 100])
        self.assertGreater(int(out[0, 0, 2]), 100)  # red channel of BGR

    def test_np_to_pil_modes(self):
        self.assertEqual(np_to_pil(np.zeros((3, 3), np.uint8)).mode, "L")
        self.assertEqual(np_to_pil(np.zeros((3, 3, 3), np.uint8)).mode, "RGB")


class _FakeTimers:
    """Stands in for a Tk widget's after/after_cancel queue."""

    def __init__(self):
        self.pending = {}
        self.delays = []
        self._next = 0

    def after(self, delay_ms, callback):
        self._next += 1
        timer_id = f"after#{self._next}"
        self.pending[timer_id] = callback
        self.delays.append(delay_ms)
        return timer_id

    def after_cancel(self, timer_id):
        self.pending.pop(timer_id, None)

    def flush(self):
        callbacks = list(self.pending.values())
        self.pending.clear()
        for callback in callbacks:
            callback()


@unittest.skipIf(ensure_mask_uint8 is None, "tkinter is not available")
class TestDebounce(unittest.TestCase):
    """Tests for debounce(): rapid slider moves collapse into one preview."""

    def setUp(self):
        self.timers = _FakeTimers()
        self.calls = []

        @debounce(self.timers, delay_ms=80)
        def preview(value, mode="lower"):
            self.calls.append((value, mode))

        self.preview = preview

    def test_only_last_call_runs(self):
        self.preview(10)
        self.preview(20)
        self.preview(30, mode="upper")

        self.assertEqual(len(self.timers.pending), 1)
        self.assertEqual(self.timers.delays, [80, 80, 80])
        self.timers.flush()
        self.assertEqual(self.calls, [(30, "upper")])

    def test_calls_after_firing_schedule_again(self):
        self.preview(1)
        self.timers.flush()
        self.preview(2)
        self.timers.flush()

        self.assertEqual(self.calls, [(1, "lower"), (2, "lower")])

    def test_nothing_runs_before_delay(self):
        self.preview(5)
        self.assertEqual(self.calls, [])


if __name__ == "__main__":
    unittest.main()

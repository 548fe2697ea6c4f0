# Copyright Red Hat
#
# tests/test_progress.py - Progress indicator tests
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import MagicMock, patch
from io import StringIO

import snapdelta._snapdelta
from snapdelta.progress import (
    NullProgress,
    ProgressBase,
    ProgressFactory,
    SimpleProgress,
    _flush_with_broken_pipe_guard,
)


class TestFlushGuard(unittest.TestCase):
    def test_flush_guard_broken_pipe(self):
        mock_stream = MagicMock()
        mock_stream.flush.side_effect = BrokenPipeError()
        # Mock fileno to ensure os.dup2 path is taken
        mock_stream.fileno.return_value = 10

        with patch("snapdelta.progress.os") as mock_os:
            mock_os.open.return_value = 999
            mock_os.devnull = "/dev/null"
            mock_os.O_WRONLY = 1

            with self.assertRaises(SystemExit):
                _flush_with_broken_pipe_guard(mock_stream)

            mock_os.open.assert_called_with("/dev/null", 1)
            mock_os.dup2.assert_called_with(999, 10)
            mock_os.close.assert_called_with(999)

    def test_flush_guard_no_flush_attr(self):
        mock_stream = MagicMock()
        del mock_stream.flush
        # Should not raise
        _flush_with_broken_pipe_guard(mock_stream)

    def test_flush_guard_none(self):
        _flush_with_broken_pipe_guard(None)


class TestProgressBase(unittest.TestCase):
    def test_counts_items(self):
        p = ProgressBase(register=False)
        p.start(4)
        self.assertEqual((p.done, p.total), (0, 4))
        p.progress(3)
        self.assertEqual(p.done, 3)
        p.cancel()
        self.assertEqual((p.done, p.total), (3, 0))

    def test_restart_resets_count(self):
        p = ProgressBase(register=False)
        p.start(4)
        p.end()
        p.start(2)
        self.assertEqual((p.done, p.total), (0, 2))
        p.end()

    def test_registration(self):
        p = NullProgress(register=True)
        p.start(10)
        self.assertTrue(p.registered)
        self.assertIn(p, snapdelta._snapdelta._active_progress)
        p.end()
        self.assertFalse(p.registered)
        self.assertNotIn(p, snapdelta._snapdelta._active_progress)

    def test_no_registration(self):
        p = NullProgress(register=False)
        p.start(10)
        self.assertFalse(p.registered)
        p.end()

    def test_log_output_resets_position(self):
        sp = SimpleProgress("S", term_stream=StringIO())
        sp.start(10)
        sp.progress(1)
        self.assertFalse(sp.first_update)
        snapdelta._snapdelta.notify_log_output(snapdelta._snapdelta.sys.stderr)
        self.assertTrue(sp.first_update)
        sp.cancel("Stopped")


class TestSimpleProgress(unittest.TestCase):
    def test_flow(self):
        mock_stream = StringIO()
        sp = SimpleProgress("Simple", term_stream=mock_stream, width=50)

        sp.start(100)
        sp.progress(50, "working")

        output = mock_stream.getvalue()
        self.assertIn(
            "Simple:  50% [=========================-------------------------] (working)",
            output,
        )

        sp.end("Finished")
        self.assertIn("Simple: Finished", mock_stream.getvalue())
        self.assertIn("Simple: 100% [", mock_stream.getvalue())

    def test_throttled_output(self):
        mock_stream = StringIO()
        sp = SimpleProgress("T", term_stream=mock_stream, register=False)

        sp.start(1000)
        for i in range(10):
            sp.progress(i)
        # 0..9 of 1000 are all within the first whole percent
        self.assertEqual(len(mock_stream.getvalue().splitlines()), 1)
        sp.end()

    def test_minimum_width(self):
        sp = SimpleProgress("W", term_stream=StringIO(), width=1)
        self.assertEqual(sp.width, 10)

    def test_cancel(self):
        mock_stream = StringIO()
        sp = SimpleProgress("C", term_stream=mock_stream)
        sp.start(10)
        sp.progress(3)
        sp.cancel("Quit!")
        self.assertTrue(mock_stream.getvalue().endswith("C: Quit!\n"))
        self.assertEqual(sp.total, 0)

    def test_start_non_positive_raises(self):
        sp = SimpleProgress("S")

        with self.assertRaisesRegex(ValueError, "must be positive"):
            sp.start(0)

        with self.assertRaisesRegex(ValueError, "must be positive"):
            sp.start(-1)

    def test_progress_negative_raises(self):
        sp = SimpleProgress("S", term_stream=StringIO())

        sp.start(100)
        with self.assertRaises(ValueError):
            sp.progress(-1, "working")

    def test_end_before_start_raises(self):
        sp = SimpleProgress("S")

        with self.assertRaisesRegex(ValueError, "called before start"):
            sp.end("2BadMice!")

    def test_progress_after_end_raises(self):
        sp = SimpleProgress("S", term_stream=StringIO())

        sp.start(10)
        sp.progress(10, "Stuff")
        sp.end("Done!")

        with self.assertRaisesRegex(ValueError, "called before start"):
            sp.progress(1, "More Stuff!")

    def test_progress_before_start_raises(self):
        sp = SimpleProgress("S")
        with self.assertRaises(ValueError):
            sp.progress(1)  # Not started

    def test_done_greater_than_total_raises(self):
        sp = SimpleProgress("S", term_stream=StringIO())

        sp.start(10)
        with self.assertRaisesRegex(ValueError, "cannot be > total"):
            sp.progress(11)


class TestNullProgress(unittest.TestCase):
    def test_lifecycle(self):
        np = NullProgress()
        np.start(10)
        np.progress(5)  # Should produce no error and no output
        np.end()

    def test_start_non_positive_raises(self):
        p = NullProgress()

        with self.assertRaisesRegex(ValueError, "must be positive"):
            p.start(0)

    def test_end_before_start_raises(self):
        np = NullProgress()

        with self.assertRaisesRegex(ValueError, "called before start"):
            np.end("2BadMice!")

    def test_cancel_before_start_raises(self):
        np = NullProgress()

        with self.assertRaisesRegex(ValueError, "called before start"):
            np.cancel("2BadMice!")

    def test_done_greater_than_total_raises(self):
        np = NullProgress()

        np.start(10)
        with self.assertRaisesRegex(ValueError, "cannot be > total"):
            np.progress(11)


class TestProgressFactory(unittest.TestCase):
    def test_get_progress_quiet(self):
        p = ProgressFactory.get_progress("H", quiet=True)
        self.assertIsInstance(p, NullProgress)

    def test_get_progress_simple(self):
        mock_stream = StringIO()
        p = ProgressFactory.get_progress("H", term_stream=mock_stream, width=20)
        self.assertIsInstance(p, SimpleProgress)
        self.assertIs(p.stream, mock_stream)
        self.assertEqual(p.width, 20)
        self.assertEqual(p.header, "H")

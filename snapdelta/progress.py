# Copyright Red Hat
#
# snapdelta/progress.py - Snapshot delta progress indicator
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Textual progress indicators for long running snapshot operations.
"""
from typing import Optional, TextIO
import sys
import os

from snapdelta import register_progress, unregister_progress

#: Default width of a progress bar in characters.
DEFAULT_WIDTH = 40

#: Minimum width of a progress bar.
PROGRESS_MIN_WIDTH = 10


def _flush_with_broken_pipe_guard(stream: TextIO) -> None:
    """
    Flush ``stream``, exiting quietly if the reader has gone away.

    :param stream: The stream to flush.
    :type stream: TextIO
    """
    if stream is None or not hasattr(stream, "flush"):
        return
    try:
        stream.flush()
    except BrokenPipeError as err:
        # Point the descriptor at /dev/null so the interpreter's own
        # flush at exit does not fail again.
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            if hasattr(stream, "fileno"):
                os.dup2(devnull, stream.fileno())
        finally:
            os.close(devnull)
        raise SystemExit() from err


class ProgressBase:
    """
    Progress over a fixed number of items (files fingerprinted, bytes
    written). The base class tracks and validates the count and displays
    nothing: subclasses override ``_show()`` and ``_finish()``.
    """

    def __init__(self, register: bool = True):
        """
        :param register: Register for log output callbacks while running.
        :type register: ``bool``
        """
        self.register: bool = register
        self.registered: bool = False
        self.total: int = 0
        self.done: int = 0
        self.first_update: bool = True

    def reset_position(self):
        """Called when log output has been written below the last update."""
        self.first_update = True

    def _check(self, step: str, done: int):
        name = f"{self.__class__.__name__}.{step}()"
        if not self.total:
            raise ValueError(f"{name} called before start()")
        if done < 0:
            raise ValueError(f"{name} done cannot be negative.")
        if done > self.total:
            raise ValueError(f"{name} done cannot be > total.")

    def start(self, total: int):
        """
        Begin counting towards ``total`` items.

        :param total: The number of items expected.
        :type total: ``int``
        :raises: ``ValueError`` if ``total`` is not positive.
        """
        if total <= 0:
            raise ValueError("total must be positive.")
        self.total = total
        self.done = 0
        if self.register:
            register_progress(self)

    def progress(self, done: int, message: Optional[str] = None):
        """
        Record that ``done`` items are complete.

        :param done: The completed item count.
        :type done: ``int``
        :param message: An optional status message.
        :type message: ``Optional[str]``
        """
        self._check("progress", done)
        self.done = done
        self._show(message)

    def end(self, message: Optional[str] = None):
        """Complete the run, showing 100% and then ``message``."""
        self.progress(self.total, "")
        self._stop(message)

    def cancel(self, message: Optional[str] = None):
        """Abandon the run at the current count, showing ``message``."""
        self._check("cancel", self.done)
        self._stop(message)

    def _stop(self, message: Optional[str]):
        self._finish(message)
        self.total = 0
        if self.registered:
            unregister_progress(self)

    def _show(self, message: Optional[str]):
        return

    def _finish(self, message: Optional[str]):
        return


class NullProgress(ProgressBase):
    """
    A progress class that produces no output.
    """


class SimpleProgress(ProgressBase):
    """
    A line based progress bar that does not rely on terminal capabilities.

    One line is written per whole percentage step so that fingerprinting
    large trees does not flood the output stream.
    """

    BAR = "%s: %3d%% [%s%s] (%s)"  #: Progress bar format string
    DID = "="  #: Bar character for completed work.
    TODO = "-"  #: Bar character for uncompleted work.

    def __init__(
        self,
        header: str,
        register: bool = True,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
    ):
        super().__init__(register=register)
        self.header: str = header
        self.stream: TextIO = term_stream or sys.stderr
        self.width: int = max(PROGRESS_MIN_WIDTH, width or DEFAULT_WIDTH)
        self._last_percent: int = -1

    def start(self, total: int):
        super().start(total)
        self._last_percent = -1

    def _show(self, message: Optional[str]):
        percent = 100 * self.done // self.total
        if percent == self._last_percent and not self.first_update:
            return
        self._last_percent = percent
        self.first_update = False

        filled = self.width * self.done // self.total
        bar = (self.DID * filled, self.TODO * (self.width - filled))
        print(self.BAR % (self.header, percent, *bar, message or ""), file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)

    def _finish(self, message: Optional[str]):
        if message:
            print(f"{self.header}: {message}", file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)


class ProgressFactory:
    """
    A factory for constructing progress objects.
    """

    @staticmethod
    def get_progress(
        header: str,
        quiet: bool = False,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
        register: bool = True,
    ) -> ProgressBase:
        """
        Return a ``NullProgress`` if ``quiet`` is set, and a
        ``SimpleProgress`` writing to ``term_stream`` (default
        ``sys.stderr``) otherwise.

        :param header: The progress report header.
        :type header: ``str``
        :param quiet: Suppress all output.
        :type quiet: ``bool``
        :rtype: ``ProgressBase``
        """
        if quiet:
            return NullProgress(register=register)
        return SimpleProgress(
            header, register=register, term_stream=term_stream, width=width
        )


__all__ = [
    "NullProgress",
    "ProgressBase",
    "ProgressFactory",
    "SimpleProgress",
]

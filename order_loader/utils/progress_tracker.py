"""
Progress reporting for order loading runs.

Progress sinks are fire-and-forget: a failing sink is logged and ignored
so reporting can never change the outcome of a run.
"""

import logging
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


class NullProgressSink:
    """Discards every message"""

    def report(self, message: str) -> None:
        pass


class LoggingProgressSink:
    """Forwards progress messages to a logger"""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logging.getLogger("order_loader.progress")
        self.level = level

    def report(self, message: str) -> None:
        self.log.log(self.level, message)


class CallbackProgressSink:
    """Forwards progress messages to a callable"""

    def __init__(self, callback: Callable[[str], None]):
        self.callback = callback

    def report(self, message: str) -> None:
        self.callback(message)


class RecordingProgressSink:
    """Keeps every message in memory, newest last"""

    def __init__(self):
        self.messages: List[str] = []

    def report(self, message: str) -> None:
        self.messages.append(message)


class SafeProgressSink:
    """Wraps a sink so that reporting never raises"""

    def __init__(self, inner):
        self.inner = inner

    def report(self, message: str) -> None:
        try:
            self.inner.report(message)
        except Exception as e:
            logger.debug(f"Progress sink failed, message dropped: {e}")


ProgressLike = Union[None, Callable[[str], None], object]


def as_progress_sink(progress: ProgressLike) -> SafeProgressSink:
    """
    Normalize a sink, a plain callable, or None into a SafeProgressSink.

    Args:
        progress: Object with ``report(message)``, a callable, or None

    Returns:
        SafeProgressSink wrapping the given target
    """
    if isinstance(progress, SafeProgressSink):
        return progress
    if progress is None:
        return SafeProgressSink(NullProgressSink())
    if hasattr(progress, "report"):
        return SafeProgressSink(progress)
    if callable(progress):
        return SafeProgressSink(CallbackProgressSink(progress))
    raise TypeError(
        f"Progress target must have a report() method or be callable, "
        f"got {type(progress).__name__}"
    )

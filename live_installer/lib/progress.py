"""Progress and status streams for the package-installation worker.

The worker runs on its own thread and writes integer percentages and status
lines to two one-way channels. Each channel is closed exactly once by the
producer; two consumer threads drain them and forward to a reporter. The
caller blocks until the worker and both consumers are done.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(RuntimeError):
    pass


class Channel(Generic[T]):
    """Unbounded FIFO with a single close; iteration ends at close."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._q: "queue.Queue[Any]" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: T) -> None:
        with self._lock:
            if self._closed:
                raise ChannelClosed(f"send on closed channel {self.name}")
            self._q.put(item)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                raise ChannelClosed(f"channel {self.name} already closed")
            self._closed = True
            self._q.put(_CLOSED)

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self._q.get()
            if item is _CLOSED:
                return
            yield item


class ProgressReporter(Protocol):
    def on_progress(self, percent: int) -> None:
        ...

    def on_status(self, line: str) -> None:
        ...


class LoggingReporter:
    """Reporter for unattended runs: progress goes to the log."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger
        self.last_percent = -1

    def on_progress(self, percent: int) -> None:
        self.last_percent = percent
        self.log.info("Installation progress: %d%%", percent)

    def on_status(self, line: str) -> None:
        # Consumer thread, so this record is not forwarded back to the channel.
        self.log.debug("Status: %s", line)


@dataclass(frozen=True)
class WorkerResult:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


class _StatusLogHandler(logging.Handler):
    """Forwards log records emitted by the worker thread to the status channel."""

    def __init__(self, status: "Channel[str]", thread_id: int) -> None:
        super().__init__(level=logging.INFO)
        self.status = status
        self.thread_id = thread_id
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        # Only the worker thread closes the channel, after removing this handler.
        if record.thread != self.thread_id or self.status.closed:
            return
        self.status.put(self.format(record))


class Progress:
    """Producer-side handle given to the work function."""

    def __init__(self, progress: "Channel[int]", status: "Channel[str]") -> None:
        self.progress = progress
        self.status = status

    def report(self, percent: int, line: str) -> None:
        self.progress.put(max(0, min(100, int(percent))))
        if line:
            self.status.put(line)


def _drain(channel: "Channel[Any]", forward: Callable[[Any], None]) -> None:
    for item in channel:
        try:
            forward(item)
        except Exception:
            # A broken presentation layer must not stall the drain.
            logger.exception("Reporter failed on %s update", channel.name)


def run_with_progress(
    work: Callable[[Progress], Any],
    reporter: ProgressReporter,
    *,
    log_root: str = "live_installer",
) -> WorkerResult:
    """Run work on a worker thread while two consumers forward its updates."""

    progress: Channel[int] = Channel("progress")
    status: Channel[str] = Channel("status")
    box: dict = {}

    def producer() -> None:
        handler = _StatusLogHandler(status, threading.get_ident())
        source = logging.getLogger(log_root)
        source.addHandler(handler)
        try:
            box["result"] = WorkerResult(ok=True, value=work(Progress(progress, status)))
        except Exception as e:
            logger.debug("Installation worker failed", exc_info=True)
            box["result"] = WorkerResult(ok=False, error=e)
        finally:
            source.removeHandler(handler)
            status.close()
            progress.close()

    threads = [
        threading.Thread(target=producer, name="install-worker", daemon=True),
        threading.Thread(target=_drain, args=(progress, reporter.on_progress), name="progress-consumer", daemon=True),
        threading.Thread(target=_drain, args=(status, reporter.on_status), name="status-consumer", daemon=True),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # A BaseException (SystemExit, KeyboardInterrupt) ends the worker without a result.
    return box.get(
        "result",
        WorkerResult(ok=False, error=RuntimeError("installation worker exited without a result")),
    )

"""
Container log multiplexing for MySQLBox

The container is attached through the Docker SDK with demux=True, which
yields (stdout, stderr) chunk pairs. LogMultiplexer copies them into the two
configured sinks in a background thread. The stderr chunks are also passed
to ErrorLineScanner, a nested thread collecting the lines that start with
"ERROR" (the mysql client reports failing statements of the initial script
that way).
"""

import logging
import queue
import threading
from typing import IO, List, Optional

from .exceptions import LogStreamError

logger = logging.getLogger(__name__)

ERROR_MARKER = "ERROR"


class DiscardSink:
    """Binary sink that drops everything written to it."""

    def write(self, data: bytes) -> int:
        return len(data)

    def flush(self) -> None:
        pass


class ErrorLineScanner:
    """
    Collects error lines from the container stderr.

    Chunks are queued by the multiplexer and split into lines by a separate
    thread, so a slow consumer never holds up demultiplexing.
    """

    def __init__(self, logged_errors: Optional[List[str]] = None, name: str = "mysqlbox"):
        self.logged_errors = logged_errors
        self._queue: "queue.SimpleQueue[Optional[bytes]]" = queue.SimpleQueue()
        self._thread = threading.Thread(
            target=self._run, name=f"{name}-error-scanner", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def feed(self, chunk: bytes) -> None:
        self._queue.put(chunk)

    def close(self) -> None:
        """Signal the end of input. Pending chunks are still scanned."""
        self._queue.put(None)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        pending = b""
        while True:
            chunk = self._queue.get()
            if chunk is None:
                break

            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                self._scan_line(line)

        if pending:
            self._scan_line(pending)

    def _scan_line(self, raw: bytes) -> None:
        line = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        if not line.startswith(ERROR_MARKER):
            return

        logger.debug(f"Container error line: {line}")
        if self.logged_errors is not None:
            self.logged_errors.append(line)


class LogMultiplexer:
    """
    Drains a container log stream into stdout and stderr sinks.

    The thread ends at end of stream, which means the container exited,
    and fires the exited event once. It also ends when close() shuts the
    stream socket down during stop; read errors after close() are expected
    and are not reported. Any other read error is kept in error.
    """

    def __init__(
        self,
        stream,
        stdout: Optional[IO[bytes]] = None,
        stderr: Optional[IO[bytes]] = None,
        logged_errors: Optional[List[str]] = None,
        exited: Optional[threading.Event] = None,
        name: str = "mysqlbox",
    ):
        self.stream = stream
        self.stdout = stdout if stdout is not None else DiscardSink()
        self.stderr = stderr if stderr is not None else DiscardSink()
        self.exited = exited if exited is not None else threading.Event()
        self.error: Optional[LogStreamError] = None

        self._closing = threading.Event()
        self._exit_lock = threading.Lock()
        self._exit_fired = False
        self._scanner = ErrorLineScanner(logged_errors, name=name)
        self._thread = threading.Thread(
            target=self._run, name=f"{name}-logs", daemon=True
        )

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._scanner.start()
        self._thread.start()

    def close(self, timeout: float = 10.0) -> None:
        """Stop reading, close the stream once and wait for both threads."""
        if not self._closing.is_set():
            self._closing.set()
            try:
                self.stream.close()
            except Exception as e:
                logger.debug(f"Error closing log stream: {e}")

        if self._thread.is_alive():
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"Log reader {self._thread.name} still running after {timeout}s")
        self._scanner.join(timeout)

    def _run(self) -> None:
        try:
            self._copy()
        except Exception as e:
            if self._closing.is_set():
                logger.debug(f"Log stream closed: {e}")
            else:
                self.error = LogStreamError(
                    f"error reading container logs: {e}", operation="read_logs"
                )
                self.error.__cause__ = e
                logger.error(self.error.get_detailed_message())
        else:
            if not self._closing.is_set():
                self._fire_exited()
        finally:
            self._scanner.close()
            for sink in (self.stdout, self.stderr):
                flush = getattr(sink, "flush", None)
                if flush is not None:
                    try:
                        flush()
                    except Exception as e:
                        logger.debug(f"Error flushing log sink: {e}")

    def _fire_exited(self) -> None:
        with self._exit_lock:
            if self._exit_fired:
                return
            self._exit_fired = True
        logger.debug("Container log stream ended")
        self.exited.set()

    def _copy(self) -> None:
        for out, err in self.stream:
            if out:
                self.stdout.write(out)
            if err:
                self.stderr.write(err)
                self._scanner.feed(err)

"""
MySQL readiness polling

The server inside the container gives no readiness signal that can be seen
from the host, so the poller probes the resolved endpoint until a probe
succeeds, the deadline passes or the container exits. The exit check lets a
crashing initial script fail the start right away instead of after the
whole deadline.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .exceptions import ConnectTimeoutError, ContainerExitedError
from .models import ReadinessResult, ReadinessState

logger = logging.getLogger(__name__)

START_TIMEOUT = 30.0
POLL_INTERVAL = 0.5


class ReadinessPoller:
    """
    Polls a probe until MySQL is ready.

    States: POLLING -> READY | TIMED_OUT | EXITED_EARLY.
    """

    def __init__(
        self,
        probe: Callable[[], None],
        exited: threading.Event,
        timeout: float = START_TIMEOUT,
        interval: float = POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            probe: Raises when the database cannot be reached
            exited: Set when the container has exited
            timeout: Deadline in seconds since polling began
            interval: Pause between probes
        """
        self.probe = probe
        self.exited = exited
        self.timeout = timeout
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.state = ReadinessState.POLLING

    def wait(self) -> ReadinessResult:
        """
        Block until the database is ready.

        Returns:
            ReadinessResult in the READY state

        Raises:
            ContainerExitedError: the container exited first
            ConnectTimeoutError: the deadline passed
        """
        if self.state.terminal:
            raise RuntimeError(f"readiness poller already finished ({self.state.value})")

        start_time = self.clock()
        attempts = 0
        last_error: Optional[str] = None

        while True:
            attempts += 1
            try:
                self.probe()
            except Exception as e:
                last_error = str(e)
                logger.debug(f"Readiness probe {attempts} failed: {e}")
            else:
                return self._finish(ReadinessState.READY, attempts, start_time, None)

            if self.exited.is_set():
                result = self._finish(
                    ReadinessState.EXITED_EARLY, attempts, start_time, last_error
                )
                raise ContainerExitedError(
                    "container exited before mysql became ready",
                    operation="wait_for_db",
                    context={"attempts": attempts, "elapsed": f"{result.elapsed:.1f}s"},
                )

            if self.clock() - start_time > self.timeout:
                result = self._finish(
                    ReadinessState.TIMED_OUT, attempts, start_time, last_error
                )
                raise ConnectTimeoutError(
                    "could not connect to mysql",
                    operation="wait_for_db",
                    context={
                        "timeout": f"{self.timeout:g}s",
                        "attempts": attempts,
                        "last_error": last_error,
                    },
                )

            self.sleep(self.interval)

    def _finish(
        self,
        state: ReadinessState,
        attempts: int,
        start_time: float,
        last_error: Optional[str],
    ) -> ReadinessResult:
        self.state = state
        result = ReadinessResult(
            state=state,
            attempts=attempts,
            elapsed=self.clock() - start_time,
            last_error=last_error,
        )
        if state is ReadinessState.READY:
            logger.info(f"MySQL ready: {result.get_summary()}")
        else:
            logger.error(f"MySQL not ready: {result.get_summary()}")
        return result

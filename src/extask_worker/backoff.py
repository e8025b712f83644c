import logging
import threading
from typing import Optional

from extask_worker.reporting import isolated

logger = logging.getLogger(__name__)


class BackoffStrategy:
    """
    Policy deciding how long the acquisition loop idles after an empty
    fetch. suspend() runs on the worker thread; resume() may be called from
    any thread and must cut a running suspend() short.
    """
    def suspend(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class ExponentialBackoffStrategy(BackoffStrategy):
    def __init__(self, init_time: int = 500, factor: int = 2, max_time: int = 60000):
        if init_time <= 0 or max_time <= 0:
            raise ValueError("Backoff init_time and max_time must be greater than zero")
        # A factor below 1 never reaches max_time and keeps every wait near 0
        if factor < 1:
            raise ValueError("Backoff factor must be at least 1")
        self.init_time = init_time
        self.factor = factor
        self.max_time = max_time
        self.level = 0
        self._wakeup = threading.Event()

    def calculate_backoff_time(self) -> int:
        """Delay in ms for the current level: 0, init, init*factor, ... capped at max_time."""
        if self.level == 0:
            return 0
        backoff = self.init_time * (self.factor ** (self.level - 1))
        return min(backoff, self.max_time)

    def suspend(self):
        wait_ms = self.calculate_backoff_time()
        # Only grow while below the cap
        if wait_ms < self.max_time:
            self.level += 1
        if wait_ms > 0:
            self._wakeup.wait(wait_ms / 1000.0)
        self._wakeup.clear()

    def resume(self):
        self._wakeup.set()

    def reset(self):
        self.level = 0


class BackoffController:
    """
    Calls into the installed strategy with failures contained. With no
    strategy every call is a no-op.
    """
    def __init__(self, strategy: Optional[BackoffStrategy] = None):
        self.strategy = strategy

    @property
    def installed(self) -> bool:
        return self.strategy is not None

    def on_empty_result(self):
        self._run("suspend")

    def on_non_empty_result(self):
        self._run("reset")

    def resume_now(self):
        self._run("resume")

    def _run(self, method: str):
        strategy = self.strategy
        if strategy is None:
            return
        isolated(
            getattr(strategy, method),
            "backoff_strategy_failed",
            log=logger,
            method=method,
            strategy=type(strategy).__name__,
        )

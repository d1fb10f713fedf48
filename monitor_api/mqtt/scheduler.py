"""Tareas programadas cancelables.

Cada tarea corre en su propio hilo daemon y se cancela con un Event, así un
supervisor eliminado nunca deja timers colgando.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Tarea diferida (one-shot) o periódica."""

    def __init__(
        self,
        delay: float,
        func: Callable[[], None],
        repeat: bool = False,
        name: Optional[str] = None,
    ):
        self.delay = delay
        self.repeat = repeat
        self.name = name or getattr(func, "__name__", "task")
        self._func = func
        self._cancelled = threading.Event()
        self._finished = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "ScheduledTask":
        self._thread = threading.Thread(target=self._run, name=f"sched-{self.name}", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set() and not self._finished.is_set()

    def _run(self) -> None:
        try:
            while not self._cancelled.wait(self.delay):
                # cancel() puede llegar justo después de que venció la espera
                if self._cancelled.is_set():
                    break
                try:
                    self._func()
                except Exception:
                    logger.exception("[SCHED] Task %s failed", self.name)
                if not self.repeat:
                    break
        finally:
            self._finished.set()

    def __repr__(self) -> str:
        return f"ScheduledTask(name={self.name}, delay={self.delay}, repeat={self.repeat}, active={self.active})"


class ThreadScheduler:
    """Scheduler por defecto: un hilo por tarea."""

    def call_later(self, delay: float, func: Callable[[], None], name: Optional[str] = None) -> ScheduledTask:
        return ScheduledTask(delay, func, repeat=False, name=name).start()

    def call_every(self, interval: float, func: Callable[[], None], name: Optional[str] = None) -> ScheduledTask:
        return ScheduledTask(interval, func, repeat=True, name=name).start()

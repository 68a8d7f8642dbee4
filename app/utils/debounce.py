# app/utils/debounce.py
import threading
from typing import Any, Callable

from app.utils.logging import get_logger

logger = get_logger(__name__)


class Debouncer:
    """
    Opoznia wywolanie fn az minie `delay` sekund ciszy.
    Kazde kolejne call() anuluje poprzedni timer i planuje nowy,
    wiec seria szybkich wywolan konczy sie jednym fn(...) z ostatnimi argumentami.
    """

    def __init__(
        self,
        delay: float,
        fn: Callable[..., Any],
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.delay = delay
        self.fn = fn
        self.timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._pending: tuple | None = None
        self._generation = 0
        #ile wywolan fn wlasnie trwa, flush() czeka az spadnie do zera
        self._in_flight = 0
        self._idle = threading.Condition(self._lock)

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def call(self, *args, **kwargs) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            self._pending = (args, kwargs)
            self._timer = self.timer_factory(self.delay, lambda: self._fire(generation))
            #timer nie moze blokowac zamkniecia procesu
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = None
            self._pending = None

    def flush(self) -> None:
        """
        Uruchamia zaplanowane wywolanie od razu (np. przed zlozeniem zamowienia).
        Jesli timer juz odpalil i fn wlasnie trwa, czeka az sie skonczy.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            generation = self._generation
        self._fire(generation)
        with self._idle:
            while self._in_flight:
                self._idle.wait()

    def _fire(self, generation: int) -> None:
        with self._lock:
            #timer anulowany po tym jak juz wystartowal - ignorujemy
            if generation != self._generation or self._pending is None:
                return
            args, kwargs = self._pending
            self._pending = None
            self._timer = None
            self._in_flight += 1

        logger.debug(f"Debounced call {getattr(self.fn, '__name__', self.fn)} fired")
        try:
            self.fn(*args, **kwargs)
        finally:
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()

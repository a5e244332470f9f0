import logging
from threading import Event, Thread

from sqlalchemy.exc import SQLAlchemyError

from backend.scheduling.service import SchedulingService

logger = logging.getLogger(__name__)


class RetentionPurger:
    """Background thread that hard-deletes appointments past the retention age.

    Runs independently of booking traffic; a failed sweep is logged and
    retried on the next interval.
    """

    def __init__(self, service: SchedulingService, retention_days: int, interval_seconds: float):
        self._service = service
        self._retention_days = retention_days
        self._interval_seconds = interval_seconds
        self._stop = Event()
        self._thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        try:
            return self._service.purge_expired(self._retention_days)
        except SQLAlchemyError:
            logger.exception('Retention purge failed. Check DATABASE_URL and database availability.')
            return 0

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name='appointment-retention', daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

import threading
from typing import Callable
from sqlalchemy.orm import Session
from services.session_manager import SessionManager
from utils.logger import get_logger

logger = get_logger(__name__)


class TokenHousekeeper:
    """
    Periodically deletes refresh tokens that are revoked or expired.

    Runs on a daemon thread with its own database session per pass. Deleting
    dead rows never changes the outcome of any session operation, so it can
    interleave freely with request handling.
    """

    def __init__(self, session_factory: Callable[[], Session],
                 manager_factory: Callable[[Session], SessionManager],
                 interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.session_factory = session_factory
        self.manager_factory = manager_factory
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        """
        One cleanup pass. Returns the number of deleted rows (0 on failure).
        """
        db = self.session_factory()
        try:
            result = self.manager_factory(db).purge_expired()
        finally:
            db.close()

        if not result.ok:
            logger.error("Refresh token cleanup failed", extra={"error": result.error.value})
            return 0

        if result.value:
            logger.info("Refresh token cleanup finished", extra={"deleted_count": result.value})
        return result.value

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="token-housekeeper", daemon=True)
        self._thread.start()
        logger.info("Token housekeeper started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Token housekeeper stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                # Keep going; the next pass may find the database back
                logger.error(
                    f"Refresh token cleanup crashed: {type(e).__name__}",
                    extra={"error_type": type(e).__name__},
                    exc_info=True
                )

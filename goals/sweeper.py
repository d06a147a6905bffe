"""
Reading Goals - Expiration Sweeper
Background thread that flips overdue active goals to expired.

Queries already report overdue goals as expired, and the progress engine
never counts a completion after a deadline, so the sweeper only keeps the
stored status label fresh. Each tick is one short batched statement.
"""

import threading
from datetime import datetime
from typing import Optional, Callable, List

import config
from concurrency.db_retry import db_retry
from core.database import utc_now, ensure_utc
from core.logger import log_info, log_error
from goals.store import GoalStore


class ExpirationSweeper:
    """
    Periodically marks every active goal past its deadline as expired.

    Features:
    - Runs as daemon thread, sweeping every `interval` seconds
    - Holds no locks between ticks
    - Errors are logged and the next tick runs normally
    """

    def __init__(
        self,
        store: Optional[GoalStore] = None,
        interval: float = config.SWEEPER_INTERVAL,
        enabled: bool = True,
        on_expired: Optional[Callable[[List[int]], None]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the sweeper.

        Args:
            store: Goal store (defaults to the global database)
            interval: Seconds between sweeps
            enabled: Whether the sweeper thread may start
            on_expired: Callback receiving the ids expired by a sweep
            clock: Source of the current time
        """
        self._store = store or GoalStore()
        self.interval = interval
        self.enabled = enabled
        self._on_expired = on_expired
        self._clock = clock

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @db_retry()
    def sweep(self, now: Optional[datetime] = None) -> List[int]:
        """
        Expire every active goal whose deadline is before `now`.

        A busy store is retried with the configured backoff.

        Returns:
            Ids of the goals that were expired
        """
        now = ensure_utc(now) if now else self._clock()
        expired_ids = self._store.expire_overdue_goals(now)

        if expired_ids:
            log_info(f"Sweeper expired {len(expired_ids)} goal(s): {expired_ids}", prefix="⌛")

            if self._on_expired:
                try:
                    self._on_expired(expired_ids)
                except Exception as e:
                    log_error(f"Error in sweeper callback: {e}")

        return expired_ids

    def start(self) -> None:
        """Start the sweeper thread."""
        if not self.enabled:
            log_info("Expiration sweeper disabled", prefix="⌛")
            return

        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweeper_loop,
            daemon=True,
            name="ExpirationSweeper"
        )
        self._thread.start()
        log_info(f"Expiration sweeper started (every {self.interval}s)", prefix="⌛")

    def stop(self) -> None:
        """Stop the sweeper thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        log_info("Expiration sweeper stopped", prefix="⌛")

    def is_running(self) -> bool:
        """Check if the sweeper thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def _sweeper_loop(self) -> None:
        """Main loop - sweeps, then waits for the interval or a stop request."""
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                log_error(f"Expiration sweeper error: {e}")

            self._stop_event.wait(self.interval)


# Global sweeper instance
_sweeper: Optional[ExpirationSweeper] = None


def get_expiration_sweeper() -> ExpirationSweeper:
    """Get the global sweeper instance."""
    global _sweeper
    if _sweeper is None:
        _sweeper = ExpirationSweeper()
    return _sweeper


def init_expiration_sweeper(
    store: Optional[GoalStore] = None,
    interval: float = config.SWEEPER_INTERVAL,
    enabled: bool = True,
    on_expired: Optional[Callable[[List[int]], None]] = None
) -> ExpirationSweeper:
    """
    Initialize the global sweeper.

    Args:
        store: Goal store (defaults to the global database)
        interval: Seconds between sweeps
        enabled: Whether the sweeper is active
        on_expired: Callback when goals expire

    Returns:
        The initialized ExpirationSweeper instance
    """
    global _sweeper
    _sweeper = ExpirationSweeper(
        store=store,
        interval=interval,
        enabled=enabled,
        on_expired=on_expired
    )
    return _sweeper

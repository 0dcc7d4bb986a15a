"""Background tasks.

The overdue sweep runs on an APScheduler ``BackgroundScheduler``: once
when the scheduler starts and then every
``OVERDUE_SWEEP_INTERVAL_MINUTES``.  ``OverdueSweeper.run_once`` runs a
single pass synchronously, which is what the CLI command and the tests
use.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from library_circulation.errors import CirculationError
from library_circulation.models.transaction import Transaction
from library_circulation.models.transaction_status import TransactionStatus

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = 'overdue_sweep'


@dataclass
class SweepResult:
    """Outcome of one sweep pass."""
    marked_overdue: int = 0
    fines_updated: int = 0
    failed: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'marked_overdue': self.marked_overdue,
            'fines_updated': self.fines_updated,
            'failed': list(self.failed)
        }


class OverdueSweeper:
    """Marks past-due loans overdue and keeps overdue fines current."""

    def __init__(self, app: Flask, interval_minutes: Optional[int] = None) -> None:
        self.app = app
        self.interval_minutes = interval_minutes or app.config.get(
            'OVERDUE_SWEEP_INTERVAL_MINUTES', 60)
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            self.run_once,
            'interval',
            minutes=self.interval_minutes,
            id=SWEEP_JOB_ID,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info('Overdue sweeper started (every %s minutes)', self.interval_minutes)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info('Overdue sweeper stopped')

    def run_once(self, today: Optional[date] = None) -> SweepResult:
        """Run one sweep pass over borrowed and overdue transactions.

        Each record is updated in its own unit of work; a failure on one
        record is logged and the pass carries on with the rest.
        """
        today = today or date.today()
        result = SweepResult()

        with self.app.app_context():
            try:
                candidates = (
                    Transaction.ids_with_status(TransactionStatus.BORROWED, due_before=today)
                    + Transaction.ids_with_status(TransactionStatus.OVERDUE)
                )
            except CirculationError:
                logger.exception('Overdue sweep could not list transactions')
                return result

            for transaction_id in candidates:
                try:
                    outcome = Transaction.refresh_overdue(transaction_id, today)
                except CirculationError:
                    logger.exception('Overdue sweep failed for transaction %s', transaction_id)
                    result.failed.append(transaction_id)
                    continue
                if outcome == 'overdue':
                    result.marked_overdue += 1
                elif outcome == 'fine_updated':
                    result.fines_updated += 1

        logger.info('Overdue sweep for %s: %s marked overdue, %s fines updated, %s failed',
                    today.isoformat(), result.marked_overdue, result.fines_updated,
                    len(result.failed))
        return result


_sweeper: Optional[OverdueSweeper] = None


def start_scheduler(app: Flask) -> OverdueSweeper:
    """Start the process-wide sweeper for ``app`` (idempotent)."""
    global _sweeper
    if _sweeper is None:
        _sweeper = OverdueSweeper(app)
    _sweeper.start()
    return _sweeper


def shutdown_scheduler() -> None:
    global _sweeper
    if _sweeper is not None:
        _sweeper.stop()
        _sweeper = None

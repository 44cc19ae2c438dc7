"""
Transaction Aggregator
Time-ordered, deduplicated transaction log with a bounded window
"""

import asyncio
import itertools
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from tokensniper.core.errors import ValidationError
from tokensniper.core.interfaces import TransactionSource
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import MetricsCollector
from tokensniper.core.models import STATUS_TRANSITIONS, Transaction, TransactionStatus


logger = get_logger(__name__)


TransactionKey = Tuple[str, str, float]


class TransactionAggregator:
    """
    Sole writer of the transaction log

    Entries are keyed by (mint, status, timestamp); recording the same key
    twice is a no-op, which lets overlapping refreshes merge idempotently.
    Within one trade attempt, statuses only move forward
    (BUYING -> BOUGHT | ERROR, SELLING -> SUCCESS | ERROR).

    Usage:
        history = TransactionAggregator(metrics, limit=100)
        history.record(Transaction(mint, TransactionStatus.BUYING, "Buying 0.1 SOL", time.time()))
        await history.refresh()
        history.transactions  # newest first
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        limit: int = 100,
        source: Optional[TransactionSource] = None,
        clock: Callable[[], float] = time.time
    ):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")

        self.metrics = metrics
        self.limit = limit
        self.source = source
        self._clock = clock

        self._entries: Dict[TransactionKey, Tuple[int, Transaction]] = {}
        self._attempts: Dict[str, TransactionStatus] = {}
        self._sequence = itertools.count()
        self._refresh_task: Optional[asyncio.Task] = None

        self.last_updated: float = 0.0
        self.last_error: Optional[Exception] = None

    @property
    def transactions(self) -> List[Transaction]:
        """Log entries, newest first"""
        ordered = sorted(self._entries.values(), key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        return [tx for _, tx in ordered]

    def __len__(self) -> int:
        return len(self._entries)

    def for_mint(self, mint: str) -> List[Transaction]:
        return [tx for tx in self.transactions if tx.mint == mint]

    def attempt_status(self, attempt_id: str) -> Optional[TransactionStatus]:
        return self._attempts.get(attempt_id)

    def record(self, transaction: Transaction) -> bool:
        """
        Append an entry

        Returns:
            True if added, False if an entry with the same key already exists

        Raises:
            ValidationError: Status would move backwards within its attempt
        """
        if transaction.key in self._entries:
            return False

        if transaction.attempt_id:
            previous = self._attempts.get(transaction.attempt_id)
            if previous is not None and transaction.status not in STATUS_TRANSITIONS[previous]:
                raise ValidationError(
                    f"Invalid status transition {previous.value} -> {transaction.status.value} "
                    f"for attempt {transaction.attempt_id}"
                )
            self._attempts[transaction.attempt_id] = transaction.status

        self._entries[transaction.key] = (next(self._sequence), transaction)
        self._trim()

        self.metrics.increment_counter("transactions_recorded", labels={"status": transaction.status.value})
        logger.debug(
            "transaction_recorded",
            mint=transaction.mint,
            status=transaction.status.value,
            attempt_id=transaction.attempt_id
        )
        return True

    def merge(self, transactions: Iterable[Transaction]) -> int:
        """
        Merge entries from an external source

        Entries that would violate attempt ordering are skipped.

        Returns:
            Number of entries added
        """
        added = 0
        for transaction in transactions:
            try:
                if self.record(transaction):
                    added += 1
            except ValidationError as e:
                logger.warning("transaction_merge_skipped", mint=transaction.mint, error=str(e))
        return added

    async def refresh(self) -> List[Transaction]:
        """
        Pull history from the external source and merge it

        Overlapping calls join the refresh already in flight.

        Raises:
            Exception: Source failure (also kept in last_error)
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._do_refresh())
            self._refresh_task = task
        await asyncio.shield(task)
        return self.transactions

    async def _do_refresh(self) -> None:
        try:
            if self.source is not None:
                fetched = await self.source.fetch_transactions(self.limit)
                added = self.merge(fetched)
                logger.debug("transactions_refreshed", fetched=len(fetched), added=added)
        except Exception as e:
            self.last_error = e
            logger.error("transaction_refresh_failed", error=str(e))
            raise

        self.last_error = None
        self.last_updated = self._clock()

    def _trim(self) -> None:
        """Drop the oldest entries beyond the limit"""
        overflow = len(self._entries) - self.limit
        if overflow <= 0:
            return

        oldest = sorted(self._entries.items(), key=lambda item: (item[1][1].timestamp, item[1][0]))
        for key, _ in oldest[:overflow]:
            del self._entries[key]

        live_attempts = {tx.attempt_id for _, tx in self._entries.values() if tx.attempt_id}
        # Attempts still in flight keep their status even if their entries rolled off
        self._attempts = {
            attempt: status for attempt, status in self._attempts.items()
            if attempt in live_attempts or not status.is_terminal
        }

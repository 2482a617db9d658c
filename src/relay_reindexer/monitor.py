"""Monitoring state machine for one re-indexed transaction.

``start`` resolves the input, force-indexes the transaction, checks once and,
when no result is available yet, hands over to a polling loop that backs off
from the fast to the slow interval.  Each session carries the generation it was
created under; results are applied only while that generation is current, so a
response arriving after ``stop`` or a newer ``start`` is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from prometheus_client import Counter

from .chains import ChainDirectory
from .config import settings
from .errors import PollError, ResolutionError, describe_start_error
from .models import (
    MonitoringSession,
    MonitorPhase,
    MonitorSnapshot,
    StatusDetails,
    TrackingRequest,
)
from .repository import InMemorySessionRepository, SessionRepository
from .resolver import IdentifierResolver
from .scheduler import PollTimer, poll_interval


logger = logging.getLogger(__name__)

INDEX_SUBMISSION_COUNTER = Counter(
    "relay_index_submissions_total",
    "Force-index submissions by outcome",
    ["outcome"],
)
POLL_ATTEMPT_COUNTER = Counter(
    "relay_poll_attempts_total",
    "Status poll attempts by outcome",
    ["outcome"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def latest_request(requests: List[TrackingRequest]) -> TrackingRequest:
    """Return the most recently created request.

    Requests without ``created_at`` only win when none has one; ties keep the
    order the API returned them in.
    """
    dated = [r for r in requests if r.created_at is not None]
    if not dated:
        return requests[0]
    return max(dated, key=lambda r: r.created_at)


class TransactionMonitor:
    """Drive one transaction from user input to a Relay status."""

    def __init__(
        self,
        client,
        directory: Optional[ChainDirectory] = None,
        resolver: Optional[IdentifierResolver] = None,
        repository: Optional[SessionRepository] = None,
        *,
        fast_interval: Optional[float] = None,
        slow_interval: Optional[float] = None,
        max_fast_polls: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self.directory = directory or ChainDirectory(client)
        self.resolver = resolver or IdentifierResolver(self.directory)
        self._repository = repository or InMemorySessionRepository()
        self.fast_interval = fast_interval if fast_interval is not None else settings.fast_poll_interval
        self.slow_interval = slow_interval if slow_interval is not None else settings.slow_poll_interval
        self.max_fast_polls = max_fast_polls if max_fast_polls is not None else settings.max_fast_polls
        self._sleep = sleep
        self._clock = clock
        self._timer = PollTimer()
        self._generation = 0

        self.phase = MonitorPhase.IDLE
        self.is_loading = False
        self.error: Optional[str] = None

    # -- read side -----------------------------------------------------

    @property
    def session(self) -> Optional[MonitoringSession]:
        return self._repository.load()

    @property
    def poll_count(self) -> int:
        session = self.session
        return session.consecutive_polls if session else 0

    def snapshot(self) -> MonitorSnapshot:
        session = self.session
        return MonitorSnapshot(
            phase=self.phase,
            session=session.model_copy(deep=True) if session else None,
            poll_count=session.consecutive_polls if session else 0,
            is_loading=self.is_loading,
            error=self.error,
        )

    # -- helpers -------------------------------------------------------

    def _retire(self) -> int:
        """Invalidate the current session and its timer; return the new generation."""
        self._generation += 1
        self._timer.cancel()
        self._repository.clear()
        return self._generation

    def _current(self, generation: int) -> Optional[MonitoringSession]:
        if generation != self._generation:
            return None
        session = self._repository.load()
        if session is None or session.generation != generation:
            return None
        return session

    def _fail(self, generation: int, exc: Exception) -> None:
        if generation == self._generation:
            self._repository.clear()
            self.phase = MonitorPhase.FAILED
            self.error = describe_start_error(exc)

    async def _check_cycle(self, tx_hash: str) -> Optional[StatusDetails]:
        """Look up the latest request for ``tx_hash`` and fetch its status.

        Returns ``None`` while Relay has no usable request for the hash.
        """
        try:
            requests = await asyncio.to_thread(self._client.list_requests_by_hash, tx_hash)
            if not requests:
                logger.debug("no requests yet for tx=%s", tx_hash)
                return None
            latest = latest_request(requests)
            if not latest.id:
                logger.warning("latest request for tx=%s has no id: %r", tx_hash, latest)
                return None
            return await asyncio.to_thread(self._client.fetch_status, latest.id)
        except Exception as exc:
            raise PollError(f"status check failed for {tx_hash}: {exc}") from exc

    def _resolve_session(self, session: MonitoringSession, details: StatusDetails) -> None:
        session.fold_result(details, self._clock())
        self._repository.save(session)
        self.phase = MonitorPhase.RESOLVED
        logger.info(
            "tx=%s resolved request=%s status=%s",
            session.transaction_hash,
            details.request_id,
            details.status,
        )

    # -- entry points --------------------------------------------------

    async def start(self, raw_input: str) -> MonitorSnapshot:
        """Begin monitoring the transaction identified by ``raw_input``.

        Any previous session is discarded first.  Failures to resolve or index
        leave no session and set :attr:`error` to a user-facing message.
        """
        generation = self._retire()
        self.phase = MonitorPhase.SUBMITTING
        self.is_loading = True
        self.error = None
        try:
            await self._start(generation, raw_input)
        finally:
            if generation == self._generation:
                self.is_loading = False
        return self.snapshot()

    async def _start(self, generation: int, raw_input: str) -> None:
        try:
            resolved = await asyncio.to_thread(self.resolver.resolve, raw_input)
        except ResolutionError as exc:
            logger.info("could not resolve %r: %s", raw_input, exc)
            self._fail(generation, exc)
            return
        if generation != self._generation:
            return

        now = self._clock()
        session = MonitoringSession(
            transaction_hash=resolved.tx_hash,
            chain_id=resolved.chain_id,
            generation=generation,
            started_at=now,
            last_checked_at=now,
        )
        self._repository.save(session)
        logger.info("re-indexing tx=%s chain=%s", resolved.tx_hash, resolved.chain_id)

        try:
            await asyncio.to_thread(
                self._client.submit_for_indexing, resolved.tx_hash, resolved.chain_id
            )
        except Exception as exc:
            INDEX_SUBMISSION_COUNTER.labels(outcome="failed").inc()
            logger.warning("indexing failed for tx=%s", resolved.tx_hash, exc_info=True)
            self._fail(generation, exc)
            return
        INDEX_SUBMISSION_COUNTER.labels(outcome="success").inc()
        if generation != self._generation:
            return

        self.phase = MonitorPhase.CHECKING
        try:
            details = await self._check_cycle(resolved.tx_hash)
        except PollError:
            logger.warning("immediate check failed for tx=%s", resolved.tx_hash, exc_info=True)
            details = None

        session = self._current(generation)
        if session is None:
            return
        if details is not None:
            POLL_ATTEMPT_COUNTER.labels(outcome="result").inc()
            self._resolve_session(session, details)
        else:
            session.mark_checked(self._clock())
            self._repository.save(session)
            self.phase = MonitorPhase.POLLING
            self._timer.start(generation, self._poll_loop(generation))
            logger.info("no immediate result for tx=%s, polling", resolved.tx_hash)

    async def _poll_loop(self, generation: int) -> None:
        while True:
            session = self._current(generation)
            if session is None or not session.is_active:
                return
            delay = poll_interval(
                session.consecutive_polls,
                self.fast_interval,
                self.slow_interval,
                self.max_fast_polls,
            )
            await self._sleep(delay)

            session = self._current(generation)
            if session is None or not session.is_active:
                return
            attempt = session.consecutive_polls + 1
            self.phase = MonitorPhase.CHECKING
            logger.debug("poll attempt %d for tx=%s (wait %.1fs)", attempt, session.transaction_hash, delay)

            failed = False
            try:
                details = await self._check_cycle(session.transaction_hash)
            except PollError:
                logger.warning(
                    "poll attempt %d failed for tx=%s", attempt, session.transaction_hash, exc_info=True
                )
                details = None
                failed = True

            session = self._current(generation)
            if session is None or not session.is_active:
                return
            if details is not None:
                POLL_ATTEMPT_COUNTER.labels(outcome="result").inc()
                self._resolve_session(session, details)
                return

            POLL_ATTEMPT_COUNTER.labels(outcome="error" if failed else "empty").inc()
            if not failed:
                session.mark_checked(self._clock())
            session.record_missed_poll()
            self._repository.save(session)
            self.phase = MonitorPhase.POLLING

    async def manual_refresh(self) -> Optional[MonitorSnapshot]:
        """Run one check outside the timer.

        Returns ``None`` when there is no session.  The poll counter is left
        alone unless a result arrives.
        """
        session = self.session
        if session is None:
            return None
        generation = session.generation
        self.is_loading = True
        self.error = None
        try:
            details = await self._check_cycle(session.transaction_hash)
        except PollError:
            logger.warning("manual refresh failed for tx=%s", session.transaction_hash, exc_info=True)
        else:
            current = self._current(generation)
            if current is not None and details is not None:
                self._timer.cancel()
                self._resolve_session(current, details)
            elif current is not None:
                current.mark_checked(self._clock())
                self._repository.save(current)
        finally:
            if generation == self._generation:
                self.is_loading = False
        return self.snapshot()

    def stop(self) -> MonitorSnapshot:
        """Discard the session and cancel polling."""
        self._retire()
        self.phase = MonitorPhase.STOPPED
        self.is_loading = False
        self.error = None
        logger.info("monitoring stopped")
        return self.snapshot()

    async def wait(self) -> MonitorSnapshot:
        """Wait until the polling loop ends and return the final snapshot."""
        await self._timer.wait()
        return self.snapshot()

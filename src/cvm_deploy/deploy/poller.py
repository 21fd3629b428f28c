"""Deployment status polling state machine.

Provisioning is asynchronous and the status resource is only eventually
consistent, so :class:`StatusPoller` observes it with a bounded loop:

.. code-block:: text

    POLLING ──"running"────────────> SUCCEEDED
       |  \\
       |   ──"*error*" / "*fail*"──> FAILED
       |
       └──max_attempts reached─────> TIMED_OUT

Every iteration (success, business failure or query error) counts
toward ``max_attempts``.  Query errors never end the loop; they are
reported to the observer and retried sooner (half the interval).  After
``max_consecutive_errors`` failures in a row the poller takes one
extended pause of twice the interval and decrements the error count by
one, so a sustained outage settles into a steady slower cadence.

The wait between iterations is ``max(0, target - elapsed)`` so the
wall-clock cadence stays close to the configured interval no matter how
long each query took.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from cvm_deploy.core.config import MonitorOptions
from cvm_deploy.core.errors import InvalidIdentifier, ValidationError
from cvm_deploy.core.types import DeploymentStatusSnapshot, MonitorOutcome, normalize_app_id
from cvm_deploy.wire.client import CloudApiClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

SUCCESS_STATUS = "running"
FAILURE_MARKERS: tuple[str, ...] = ("error", "fail")


def classify_status(status: str) -> MonitorOutcome | None:
    """Map a raw status string to a terminal outcome, or ``None`` if in progress."""
    lowered = status.lower()
    if lowered == SUCCESS_STATUS:
        return MonitorOutcome.SUCCEEDED
    if any(marker in lowered for marker in FAILURE_MARKERS):
        return MonitorOutcome.FAILED
    return None


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------

class DeploymentObserver:
    """Receives notifications from :meth:`StatusPoller.monitor`.

    Every method is a no-op; subclass and override the events you care
    about.  Each terminal event fires at most once per ``monitor`` call,
    and ``on_status_change`` fires once per observed transition (the
    first status seen is the baseline and does not count as a change).
    """

    def on_status_change(self, status: str, snapshot: DeploymentStatusSnapshot) -> None:
        """The deployment moved to a new status."""

    def on_success(self, snapshot: DeploymentStatusSnapshot) -> None:
        """The deployment is running."""

    def on_failure(self, status: str, snapshot: DeploymentStatusSnapshot) -> None:
        """The deployment reported an error or failure status."""

    def on_timeout(self, snapshot: DeploymentStatusSnapshot | None) -> None:
        """``max_attempts`` was reached before a terminal status."""

    def on_error(self, error: Exception) -> None:
        """A single status query failed; polling continues."""


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

@dataclass
class PollingSession:
    """Mutable state of one ``monitor`` call.  Never shared between calls."""

    attempts: int = 0
    consecutive_errors: int = 0
    last_status: str | None = None
    last_snapshot: DeploymentStatusSnapshot | None = None


# ---------------------------------------------------------------------------
# StatusPoller
# ---------------------------------------------------------------------------

class StatusPoller:
    """Polls a deployment until it succeeds, fails or runs out of attempts.

    Parameters
    ----------
    api:
        Typed API bindings providing the status and network queries.
    clock:
        Monotonic clock in seconds (``time.monotonic`` by default).
    sleep:
        Coroutine used for every wait (``asyncio.sleep`` by default).
    logger:
        Logger for progress messages.
    """

    def __init__(
        self,
        api: CloudApiClient,
        *,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._api = api
        self._clock: Clock = clock or time.monotonic
        self._sleep: Sleep = sleep or asyncio.sleep
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def monitor(
        self,
        app_id: str,
        options: MonitorOptions | None = None,
        observer: DeploymentObserver | None = None,
    ) -> DeploymentStatusSnapshot | None:
        """Poll *app_id* until a terminal state.

        Returns
        -------
        DeploymentStatusSnapshot | None
            The final snapshot (enriched with ``app_url`` on success), or
            the last snapshot seen on timeout -- ``None`` if no query ever
            succeeded.

        Notes
        -----
        Query errors are reported through ``observer.on_error`` and never
        raised.  Exceptions raised by the observer itself, caller input
        errors (:class:`ValidationError`) and :class:`asyncio.CancelledError`
        propagate to the caller.

        Raises
        ------
        InvalidIdentifier
            If *app_id* is empty once its ``app_`` prefix is removed.
        """
        stripped = normalize_app_id(app_id)
        if not stripped:
            raise InvalidIdentifier(details={"identifier": app_id})
        app_id = stripped
        opts = options or MonitorOptions()
        sink = observer or DeploymentObserver()
        session = PollingSession()
        interval = opts.interval / 1000
        query_timeout = opts.query_timeout / 1000

        self._logger.debug(
            "Monitoring app_%s: interval=%dms max_attempts=%d query_timeout=%dms",
            app_id, opts.interval, opts.max_attempts, opts.query_timeout,
        )

        while session.attempts < opts.max_attempts:
            started = self._clock()
            had_error = False
            self._logger.debug(
                "Checking deployment status (attempt %d/%d)",
                session.attempts + 1, opts.max_attempts,
            )

            try:
                snapshot = await self._api.get_deployment(app_id, timeout=query_timeout)
            except ValidationError:
                raise
            except Exception as exc:  # noqa: BLE001 -- reported through on_error
                had_error = True
                session.attempts += 1
                session.consecutive_errors += 1
                self._logger.error(
                    "Error checking deployment status (%d/%d): %s",
                    session.consecutive_errors, opts.max_consecutive_errors, exc,
                )
                sink.on_error(exc)
                if (
                    session.consecutive_errors >= opts.max_consecutive_errors
                    and session.attempts < opts.max_attempts
                ):
                    self._logger.warning(
                        "Too many consecutive errors (%d), pausing for recovery",
                        session.consecutive_errors,
                    )
                    await self._sleep(interval * 2)
                    session.consecutive_errors -= 1
            else:
                session.attempts += 1
                session.consecutive_errors = 0
                session.last_snapshot = snapshot
                self._track_status(session, snapshot, sink)

                outcome = classify_status(snapshot.status)
                if outcome is MonitorOutcome.SUCCEEDED:
                    enriched = await self._enrich(app_id, snapshot)
                    session.last_snapshot = enriched
                    self._logger.info("Deployment app_%s is running", app_id)
                    sink.on_success(enriched)
                    return enriched
                if outcome is MonitorOutcome.FAILED:
                    self._logger.error("Deployment failed with status: %s", snapshot.status)
                    sink.on_failure(snapshot.status, snapshot)
                    return snapshot

            if session.attempts < opts.max_attempts:
                target = interval / 2 if had_error else interval
                remaining = max(0.0, target - (self._clock() - started))
                self._logger.debug("Waiting %.0fms before next check", remaining * 1000)
                await self._sleep(remaining)

        self._logger.warning(
            "Maximum attempts (%d) reached; deployment may still be in progress",
            opts.max_attempts,
        )
        sink.on_timeout(session.last_snapshot)
        return session.last_snapshot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _track_status(
        self,
        session: PollingSession,
        snapshot: DeploymentStatusSnapshot,
        sink: DeploymentObserver,
    ) -> None:
        previous = session.last_status
        session.last_status = snapshot.status
        if previous is None:
            self._logger.debug("Initial status: %s", snapshot.status)
        elif previous != snapshot.status:
            self._logger.debug("Status changed: %s -> %s", previous, snapshot.status)
            sink.on_status_change(snapshot.status, snapshot)

    async def _enrich(
        self,
        app_id: str,
        snapshot: DeploymentStatusSnapshot,
    ) -> DeploymentStatusSnapshot:
        """Attach the first public app URL; failures leave the snapshot as is."""
        try:
            network = await self._api.get_network(app_id)
        except Exception as exc:  # noqa: BLE001 -- enrichment is best-effort
            self._logger.warning("Failed to get network information: %s", exc)
            return snapshot
        if network.public_urls and network.public_urls[0].app:
            self._logger.debug("Application URL: %s", network.public_urls[0].app)
            return snapshot.with_app_url(network.public_urls[0].app)
        return snapshot

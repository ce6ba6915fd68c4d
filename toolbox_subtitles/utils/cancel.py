"""Cooperative cancellation utilities.

Each running job owns a ``threading.Event`` that the orchestrator and the
translation workers poll at their checkpoints. A process-wide event can be
wired to SIGINT/SIGTERM so the CLI cancels the running job gracefully.
"""

from __future__ import annotations

import logging
import signal
import threading

logger = logging.getLogger(__name__)

_cancel_event: threading.Event | None = None
_signal_handlers_installed: bool = False

# Poll interval of a job token that follows the process-wide event.
_PARENT_POLL_INTERVAL = 0.05


def get_cancel_event() -> threading.Event:
    """Get or create the global cancellation event.

    Returns:
        A threading.Event that will be set when cancellation is requested.
    """
    global _cancel_event
    if _cancel_event is None:
        _cancel_event = threading.Event()
    return _cancel_event


def install_signal_handlers(cancel_event: threading.Event | None = None) -> None:
    """Install signal handlers for SIGINT and SIGTERM to set the cancel event.

    Args:
        cancel_event: Optional event to set on signal. If None, uses the global event.
    """
    global _signal_handlers_installed

    if _signal_handlers_installed:
        logger.warning("Signal handlers already installed, skipping")
        return

    event = cancel_event if cancel_event is not None else get_cancel_event()

    def signal_handler(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, requesting graceful cancellation")
        event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    _signal_handlers_installed = True
    logger.debug("Signal handlers installed for SIGINT and SIGTERM")


def reset_cancel_event() -> None:
    """Reset the global cancel event to allow reuse.

    This is primarily useful for testing scenarios where multiple
    cancellation cycles need to be tested in the same process.
    """
    global _cancel_event
    if _cancel_event is not None:
        _cancel_event.clear()
        logger.debug("Cancel event reset")


def is_cancelled(cancel_event: threading.Event | None = None) -> bool:
    """Check if cancellation has been requested.

    Args:
        cancel_event: Optional event to check. If None, uses the global event.

    Returns:
        True if cancellation has been requested, False otherwise.
    """
    event = cancel_event if cancel_event is not None else get_cancel_event()
    return event.is_set()


class CancellationRegistry:
    """Per-job cancellation tokens.

    The orchestrator registers a token when a job starts running and
    discards it when the run ends; ``cancel`` only flips the flag, so work
    already handed to an external collaborator is allowed to finish. A token
    registered with a parent event (the process-wide SIGINT/SIGTERM event)
    is set as soon as the parent is, for as long as the job stays registered.
    """

    def __init__(self, parent_poll_interval: float = _PARENT_POLL_INTERVAL) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}
        self._parent_poll_interval = parent_poll_interval

    def register(self, job_id: str, parent: threading.Event | None = None) -> threading.Event:
        """Create (or return) the token for ``job_id``.

        Args:
            job_id: Job identifier.
            parent: Optional process-wide event. The token starts cancelled
                when it is already set and follows it while the job runs.

        Returns:
            The job's cancellation event.
        """
        with self._lock:
            event = self._events.setdefault(job_id, threading.Event())
        if parent is None:
            return event
        if parent.is_set():
            event.set()
        else:
            threading.Thread(
                target=self._follow_parent,
                args=(job_id, event, parent),
                name=f"cancel-{job_id[:8]}",
                daemon=True,
            ).start()
        return event

    def _follow_parent(self, job_id: str, event: threading.Event, parent: threading.Event) -> None:
        while not event.is_set():
            if parent.wait(self._parent_poll_interval):
                with self._lock:
                    registered = self._events.get(job_id) is event
                if registered:
                    event.set()
                    logger.info(f"Process cancellation propagated to job {job_id}")
                return
            with self._lock:
                if self._events.get(job_id) is not event:
                    return

    def get(self, job_id: str) -> threading.Event | None:
        with self._lock:
            return self._events.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Set the token for a running job.

        Returns:
            True if the job had a registered token, False otherwise.
        """
        with self._lock:
            event = self._events.get(job_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._events.pop(job_id, None)

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._events

# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the registry matching responses and acknowledgements to pending requests"""

import logging
import threading
import time
from . import exceptions
from . import handle_exceptions

logger = logging.getLogger(__name__)


class PendingCorrelation(object):
    """A request awaiting a response, acknowledgement, or timeout

    :ivar str correlation_id: Identifier the response will carry
    :ivar completion: Callable invoked as ``completion(error=None, response=None)``
    :ivar float deadline: time.monotonic() value after which the request times out (or None)
    """

    def __init__(self, correlation_id, completion, deadline):
        self.correlation_id = correlation_id
        self.completion = completion
        self.deadline = deadline

    def is_expired(self, now):
        return self.deadline is not None and now >= self.deadline


class CorrelationRegistry(object):
    """Tracks every pending correlation of a single connection.

    Each registered correlation is completed exactly once: by ``resolve()``, by cancellation,
    by failure of the whole connection, or by its deadline passing.  Completions are always
    invoked without the registry lock held.
    """

    def __init__(self, lock=None):
        """
        :param lock: Lock shared with the owner of the registry.  A new RLock is used if not
            provided.
        """
        self._lock = lock if lock is not None else threading.RLock()
        self._pending = {}
        self._sweeper = None

    def __len__(self):
        with self._lock:
            return len(self._pending)

    def __contains__(self, correlation_id):
        with self._lock:
            return correlation_id in self._pending

    def register(self, correlation_id, completion, deadline=None):
        """Register a pending correlation.

        :param str correlation_id: Identifier of the request
        :param completion: Callable invoked as ``completion(error=None, response=None)``
        :param float deadline: time.monotonic() value after which the request times out

        :raises: :class:`azure.iot.transport.exceptions.DuplicateCorrelationIdError` if the id is
            already pending
        """
        with self._lock:
            if correlation_id in self._pending:
                raise exceptions.DuplicateCorrelationIdError(
                    "Correlation id {} is already pending".format(correlation_id)
                )
            self._pending[correlation_id] = PendingCorrelation(correlation_id, completion, deadline)
        logger.debug("Registered correlation {}".format(correlation_id))

    def resolve(self, correlation_id, error=None, response=None):
        """Complete a pending correlation.

        Resolving an id that is not pending (a late or duplicate acknowledgement) does nothing.

        :returns: True if a pending correlation was completed
        """
        with self._lock:
            pending = self._pending.pop(correlation_id, None)
        if pending is None:
            logger.debug(
                "Ignoring resolution of unknown correlation {}. Possibly a late or duplicate acknowledgement".format(
                    correlation_id
                )
            )
            return False
        self._complete(pending, error=error, response=response)
        return True

    def cancel(self, correlation_id):
        """Complete a pending correlation with OperationCancelled"""
        return self.resolve(
            correlation_id,
            error=exceptions.OperationCancelled(
                "Operation {} was cancelled".format(correlation_id)
            ),
        )

    def pop_all(self):
        """Remove every pending correlation without completing it.

        :returns: The removed correlations, to be completed by cancel_all() or fail_all()
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        return pending

    def cancel_all(self, pending=None):
        """Complete every pending correlation with OperationCancelled

        :param list pending: Correlations already removed by pop_all(), completed instead
        """
        if pending is None:
            pending = self.pop_all()
        for p in pending:
            self._complete(
                p,
                error=exceptions.OperationCancelled(
                    "Operation {} was cancelled".format(p.correlation_id)
                ),
            )

    def fail_all(self, error, pending=None):
        """Complete every pending correlation with the given error

        :param list pending: Correlations already removed by pop_all(), completed instead
        """
        if pending is None:
            pending = self.pop_all()
        for p in pending:
            self._complete(p, error=error)

    def sweep(self, now=None):
        """Complete every correlation whose deadline has passed with OperationTimeout.

        :param float now: time.monotonic() value to compare deadlines against
        :returns: The ids of the correlations which timed out
        """
        if now is None:
            now = time.monotonic()
        with self._lock:
            expired = [p for p in self._pending.values() if p.is_expired(now)]
            for pending in expired:
                del self._pending[pending.correlation_id]
        for pending in expired:
            logger.info("Operation {} timed out".format(pending.correlation_id))
            self._complete(
                pending,
                error=exceptions.OperationTimeout(
                    "Operation {} did not complete before its deadline".format(
                        pending.correlation_id
                    )
                ),
            )
        return [p.correlation_id for p in expired]

    def start_sweeper(self, interval):
        """Start a background thread calling sweep() every interval seconds.

        :returns: The running :class:`DeadlineSweeper`
        """
        with self._lock:
            if self._sweeper is None:
                self._sweeper = DeadlineSweeper(self, interval)
                self._sweeper.start()
            return self._sweeper

    def stop_sweeper(self, wait=True):
        """Stop the running sweeper.  A later start_sweeper() starts a new one.

        :param bool wait: Wait for the sweeper thread to end.  Must be False while holding the
            registry lock.
        :returns: The stopped :class:`DeadlineSweeper`, or None if none was running
        """
        with self._lock:
            sweeper = self._sweeper
            self._sweeper = None
        if sweeper is not None:
            sweeper.cancel()
            if wait:
                sweeper.join_unless_current()
        return sweeper

    @staticmethod
    def _complete(pending, error=None, response=None):
        try:
            pending.completion(error=error, response=response)
        except Exception as e:
            handle_exceptions.handle_background_exception(e)


class DeadlineSweeper(threading.Thread):
    """Periodically time out expired correlations"""

    def __init__(self, registry, interval):
        super().__init__(name="deadline_sweeper", daemon=True)
        self.registry = registry
        self.interval = interval
        self.finished = threading.Event()

    def cancel(self):
        """Stop the sweeper if it hasn't finished yet."""
        self.finished.set()

    def join_unless_current(self):
        if self is not threading.current_thread():
            self.join()

    def run(self):
        while not self.finished.wait(self.interval):
            self.registry.sweep()

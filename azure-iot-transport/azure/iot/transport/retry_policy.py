# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the policy deciding whether, and when, a failed operation is retried"""

import collections
import enum
import logging
import random
from . import constant
from . import exceptions
from .auth.sastoken import SasTokenError

logger = logging.getLogger(__name__)

# Largest exponent used when computing a backoff interval. Anything above this is capped anyway.
_MAX_EXPONENT = 62

# Jitter above this fraction could make a later interval shorter than an earlier one
MAX_JITTER = 1.0 / 3


class ErrorKind(enum.Enum):
    NETWORK = "network"
    THROTTLED = "throttled"
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"


RetryDecision = collections.namedtuple("RetryDecision", ["retry_after", "terminal"])
RetryDecision.__doc__ = """The outcome of consulting a RetryPolicy

:ivar float retry_after: Seconds to wait before the next attempt (None when terminal)
:ivar bool terminal: True if the operation must not be attempted again
"""

_TERMINAL = RetryDecision(retry_after=None, terminal=True)

_throttling_status_codes = (429, 503)
_unauthorized_status_codes = (401, 403)

# Errors which are resolved by simply trying again
_network_errors = (
    exceptions.ConnectionFailedError,
    exceptions.ConnectionDroppedError,
    exceptions.NoConnectionError,
    exceptions.ProtocolProxyError,
    exceptions.OperationTimeout,
    exceptions.InternalServerError,
    exceptions.BadDeviceResponseError,
    exceptions.GatewayTimeoutError,
    exceptions.DeviceTimeoutError,
    # socket and OS level failures (reset, refused, timeout)
    ConnectionError,
    TimeoutError,
)

_unauthorized_errors = (
    exceptions.UnauthorizedError,
    exceptions.ForbiddenError,
    exceptions.TlsExchangeAuthError,
    SasTokenError,
)


def classify_error(error):
    """Map an exception onto the ErrorKind a RetryPolicy decides on.

    :param Exception error: The error raised by a transport or reported by the service
    :returns: The :class:`ErrorKind` of the error.  Unknown errors are MALFORMED.
    """
    if isinstance(error, _unauthorized_errors):
        return ErrorKind.UNAUTHORIZED
    if isinstance(error, (exceptions.ThrottlingError, exceptions.ServiceUnavailableError)):
        return ErrorKind.THROTTLED
    if isinstance(error, _network_errors):
        return ErrorKind.NETWORK
    if isinstance(error, exceptions.ServiceError) and error.status_code:
        if error.status_code in _throttling_status_codes:
            return ErrorKind.THROTTLED
        if error.status_code in _unauthorized_status_codes:
            return ErrorKind.UNAUTHORIZED
        if error.status_code >= 500:
            return ErrorKind.NETWORK
    return ErrorKind.MALFORMED


def is_transient(error):
    """Return True if the error is worth retrying under some policy"""
    return classify_error(error) in (ErrorKind.NETWORK, ErrorKind.THROTTLED)


class RetryPolicy(object):
    """Exponential backoff with jitter, bounded by a maximum cumulative duration.

    The policy holds no mutable state: the same inputs always give the same decision.  The
    jitter applied to each interval is derived from the policy's seed, the error kind and the
    attempt count, so it varies between attempts while keeping decisions reproducible.

    The interval for attempt ``n`` is ``min(base * 2**n * (1 + jitter * r), cap)`` with ``r``
    in ``[-1, 1]``.  With ``jitter <= 1/3`` intervals never decrease as ``n`` grows.
    A retry sequence becomes terminal once the sum of its nominal (unjittered) intervals would
    exceed ``max_duration``.
    """

    def __init__(
        self,
        base_interval=constant.DEFAULT_RETRY_BASE_INTERVAL,
        max_interval=constant.DEFAULT_RETRY_MAX_INTERVAL,
        max_duration=constant.DEFAULT_RETRY_MAX_DURATION,
        jitter=constant.DEFAULT_RETRY_JITTER,
        seed=0,
    ):
        """
        :param float base_interval: Interval in seconds before the first retry
        :param float max_interval: Cap on any single interval, in seconds
        :param float max_duration: Cap on the cumulative nominal intervals of a retry sequence
        :param float jitter: Fraction of each interval that may be added or removed
        :param seed: Seed from which the jitter is derived
        """
        if base_interval <= 0 or max_interval <= 0 or max_duration <= 0:
            raise ValueError("Retry intervals must be greater than 0")
        if not 0 <= jitter <= MAX_JITTER:
            raise ValueError("'jitter' must be between 0 and {:.3f}".format(MAX_JITTER))
        self.base_interval = base_interval
        self.max_interval = max_interval
        self.max_duration = max_duration
        self.jitter = jitter
        self.seed = seed

    @classmethod
    def from_config(cls, config):
        return cls(
            base_interval=config.retry_base_interval,
            max_interval=config.retry_max_interval,
            max_duration=config.retry_max_duration,
            jitter=config.retry_jitter,
        )

    def decide(self, error_kind, attempt_count, retry_after=None):
        """Decide whether to retry after a failure.

        :param error_kind: The kind of the failure
        :type error_kind: :class:`ErrorKind`
        :param int attempt_count: Number of retries already made in this sequence
        :param float retry_after: Wait requested by the service, honored for THROTTLED errors
        :returns: A :class:`RetryDecision`
        """
        if error_kind in (ErrorKind.UNAUTHORIZED, ErrorKind.MALFORMED):
            return _TERMINAL

        if error_kind is ErrorKind.THROTTLED and retry_after is not None:
            nominal = retry_after
            interval = retry_after
        else:
            nominal = self._nominal_interval(attempt_count)
            interval = self.backoff(error_kind, attempt_count)

        if self._elapsed(attempt_count) + nominal > self.max_duration:
            logger.debug(
                "Retry budget of {}s exhausted after {} attempts".format(
                    self.max_duration, attempt_count
                )
            )
            return _TERMINAL
        return RetryDecision(retry_after=interval, terminal=False)

    def decide_for_error(self, error, attempt_count):
        """Classify an error and decide on it, honoring any retry_after it carries"""
        return self.decide(
            classify_error(error), attempt_count, retry_after=getattr(error, "retry_after", None)
        )

    def backoff(self, error_kind, attempt_count):
        """The jittered interval, in seconds, to wait before retry number attempt_count"""
        exponent = min(attempt_count, _MAX_EXPONENT)
        r = random.Random("{}:{}:{}".format(self.seed, error_kind.value, attempt_count)).uniform(
            -1, 1
        )
        interval = self.base_interval * (2 ** exponent) * (1 + self.jitter * r)
        return min(interval, self.max_interval)

    def _nominal_interval(self, attempt_count):
        exponent = min(attempt_count, _MAX_EXPONENT)
        return min(self.base_interval * (2 ** exponent), self.max_interval)

    def _elapsed(self, attempt_count):
        elapsed = 0
        for attempt in range(attempt_count):
            elapsed += self._nominal_interval(attempt)
            if elapsed > self.max_duration:
                break
        return elapsed

# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the tracker responsible for at-least-once delivery of outbound messages"""

import collections
import functools
import logging
import time
import uuid
from concurrent.futures import Future
from . import constant
from . import exceptions
from .models.message import DeliveryState

logger = logging.getLogger(__name__)


class DeliveryTracker(object):
    """Tracks outbound messages from submission until acknowledgement or failure.

    Delivery is at-least-once.  A message which was sent but not acknowledged when the
    connection dropped is sent again once the connection is re-established, and a message whose
    acknowledgement does not arrive within ``ack_timeout`` is sent again on the same connection.
    In both cases the service may receive the message more than once.  Exactly-once delivery is
    not provided.

    Messages reach the transport in submission order: every send is dispatched, under the lock,
    onto a single dispatcher thread.  Replay after a reconnect preserves the original submission
    order of the messages still awaiting acknowledgement.
    """

    def __init__(
        self,
        registry,
        retry_policy,
        lock,
        ack_timeout=constant.DEFAULT_ACK_TIMEOUT,
        operation_timeout=constant.DEFAULT_OPERATION_TIMEOUT,
    ):
        """
        :param registry: Registry in which a correlation is held for every tracked message
        :type registry: :class:`azure.iot.transport.correlation.CorrelationRegistry`
        :param retry_policy: Policy deciding whether a failed send is attempted again
        :type retry_policy: :class:`azure.iot.transport.retry_policy.RetryPolicy`
        :param lock: Lock shared with the registry and the connection state machine
        :param float ack_timeout: Seconds to wait for an acknowledgement before sending again
        :param float operation_timeout: Seconds before an operation fails with OperationTimeout,
            unless a timeout is given at submission
        """
        self._registry = registry
        self._retry_policy = retry_policy
        self._lock = lock
        self.ack_timeout = ack_timeout
        self.operation_timeout = operation_timeout
        self._messages = collections.OrderedDict()
        self._transport = None
        self._dispatcher = None
        self._accepting = False

    @property
    def messages(self):
        """Snapshot of the tracked messages, in submission order"""
        with self._lock:
            return list(self._messages.values())

    @property
    def accepting(self):
        return self._accepting

    def enable(self):
        """Accept new submissions.  They are held PENDING until a transport is attached."""
        with self._lock:
            self._accepting = True

    def disable(self):
        """Refuse new submissions.  They complete immediately with OperationCancelled."""
        with self._lock:
            self._accepting = False

    def forget_all(self):
        """Stop tracking every message, marking each FAILED.

        Their correlations are left for the caller to complete. Nothing is replayed.
        """
        with self._lock:
            for message in self._messages.values():
                message.delivery_state = DeliveryState.FAILED
            self._messages.clear()

    def attach(self, transport, dispatcher):
        """Direct sends to a newly connected transport.

        :param transport: The connected transport
        :param dispatcher: The dispatcher on which every send and send completion runs
        :type dispatcher: :class:`azure.iot.transport.dispatch.SerialDispatcher`
        """
        with self._lock:
            self._transport = transport
            self._dispatcher = dispatcher

    def detach(self):
        """Stop directing sends to the transport.  Tracked messages keep their state."""
        with self._lock:
            self._transport = None

    def submit(self, message, timeout=None):
        """Submit a message for delivery.

        :param message: The message to deliver
        :type message: :class:`azure.iot.transport.models.OutboundMessage`
        :param float timeout: Seconds before the operation fails with OperationTimeout
        :returns: A Future completed with the service's response (None for kinds with no
            response body) or with the error which ended the delivery
        :rtype: :class:`concurrent.futures.Future`
        """
        future = Future()
        with self._lock:
            if not self._accepting:
                future.set_exception(
                    exceptions.OperationCancelled("Cannot submit a message while closed")
                )
                return future
            correlation_id = str(uuid.uuid4())
            now = time.monotonic()
            message.correlation_id = correlation_id
            message.delivery_state = DeliveryState.PENDING
            message.submit_time = now
            message.sent_time = None
            message.retry_count = 0
            if timeout is None:
                timeout = self.operation_timeout
            self._registry.register(
                correlation_id,
                functools.partial(self._on_complete, correlation_id, future),
                now + timeout,
            )
            self._messages[correlation_id] = message
            logger.debug("Submitted {!r}".format(message))
            if self._transport is not None:
                self._dispatch_send(message)
        future.add_done_callback(functools.partial(self._on_future_done, correlation_id))
        return future

    def cancel(self, correlation_id):
        """Cancel delivery of a message.  Its Future completes with OperationCancelled.

        :returns: True if the message was still being tracked
        """
        return self._registry.cancel(correlation_id)

    def replay(self):
        """Send again every message not yet acknowledged, in submission order"""
        with self._lock:
            if self._transport is None:
                return
            to_send = [
                m
                for m in self._messages.values()
                if m.delivery_state in (DeliveryState.PENDING, DeliveryState.SENT)
            ]
            if to_send:
                logger.info("Replaying {} unacknowledged message(s)".format(len(to_send)))
            for message in to_send:
                self._dispatch_send(message)

    def resend_overdue(self, now=None):
        """Send again every SENT message which has waited longer than ack_timeout"""
        if now is None:
            now = time.monotonic()
        with self._lock:
            if self._transport is None:
                return
            for message in self._messages.values():
                if (
                    message.delivery_state is DeliveryState.SENT
                    and message.sent_time is not None
                    and now - message.sent_time >= self.ack_timeout
                ):
                    logger.info(
                        "No acknowledgement for {!r} after {}s. Sending again".format(
                            message, self.ack_timeout
                        )
                    )
                    message.sent_time = now
                    self._dispatch_send(message)

    def _dispatch_send(self, message):
        # Caller holds the lock
        self._dispatcher.invoke_nowait(self._send, message.correlation_id, self._transport)

    def _send(self, correlation_id, transport):
        # Runs on the dispatcher thread
        with self._lock:
            message = self._messages.get(correlation_id)
            if message is None or transport is not self._transport:
                return
            if message.delivery_state is DeliveryState.SENT:
                message.retry_count += 1
            elif message.delivery_state is not DeliveryState.PENDING:
                return
            message.delivery_state = DeliveryState.SENT
            message.sent_time = time.monotonic()
        logger.debug("Sending {!r}".format(message))
        callback = functools.partial(self._on_transport_send_complete, correlation_id, transport)
        try:
            transport.send(message, callback)
        except Exception as e:
            self._on_send_complete(correlation_id, transport, error=e)

    def _on_transport_send_complete(self, correlation_id, transport, error=None, response=None):
        # May run on a protocol library thread
        dispatcher = self._dispatcher
        dispatcher.invoke_nowait(
            self._on_send_complete, correlation_id, transport, error=error, response=response
        )

    def _on_send_complete(self, correlation_id, transport, error=None, response=None):
        with self._lock:
            message = self._messages.get(correlation_id)
            if message is None:
                logger.debug(
                    "Completion for {} arrived after the operation finished".format(correlation_id)
                )
                return
            if error is None:
                message.delivery_state = DeliveryState.ACKNOWLEDGED
            elif transport is not self._transport:
                logger.debug(
                    "Ignoring error from a previous transport for {!r}: {}".format(message, error)
                )
                return
            else:
                decision = self._retry_policy.decide_for_error(error, message.retry_count)
                if not decision.terminal:
                    logger.info(
                        "Transient error sending {!r}. It will be sent again: {}".format(
                            message, error
                        )
                    )
                    return
                logger.warning("Permanent error sending {!r}: {}".format(message, error))
                message.delivery_state = DeliveryState.FAILED
        self._registry.resolve(correlation_id, error=error, response=response)

    def _on_complete(self, correlation_id, future, error=None, response=None):
        # Completion registered with the correlation registry.  Runs without the lock held.
        with self._lock:
            message = self._messages.pop(correlation_id, None)
            if message is not None and error is not None:
                message.delivery_state = DeliveryState.FAILED
        if future.done() or not future.set_running_or_notify_cancel():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(response)

    def _on_future_done(self, correlation_id, future):
        if future.cancelled():
            self._registry.cancel(correlation_id)

# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the state machine which opens, maintains, and closes a connection"""

import concurrent.futures
import enum
import functools
import logging
import threading
from concurrent.futures import Future
from . import exceptions
from . import handle_exceptions
from .auth.sastoken import SasTokenError
from .correlation import CorrelationRegistry
from .delivery import DeliveryTracker
from .dispatch import SerialDispatcher
from .events import ClientEvent
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CLOSED = "CLOSED"
    OPENING = "OPENING"
    OPEN = "OPEN"
    RECONNECTING = "RECONNECTING"


class Connection(object):
    """The single live connection of a ConnectionStateMachine

    :ivar str hostname: The hub being connected to
    :ivar str device_id: The device identity
    :ivar str module_id: The module identity (may be None)
    :ivar state: The current :class:`ConnectionState`
    :ivar transport: The transport in use (None until the first connect attempt)
    :ivar last_error: The most recent connect failure or disconnect cause
    :ivar int retry_attempt: Number of retries made in the current retry sequence
    :ivar sweeper: The DeadlineSweeper timing out operations of this connection
    """

    def __init__(self, hostname, device_id, module_id=None):
        self.hostname = hostname
        self.device_id = device_id
        self.module_id = module_id
        self.state = ConnectionState.CLOSED
        self.transport = None
        self.last_error = None
        self.retry_attempt = 0

        # Seconds to wait before the next connect attempt
        self.next_wait = None
        self.stop_event = threading.Event()
        self.dispatcher = SerialDispatcher("transport")
        self.callback_dispatcher = SerialDispatcher("callback")
        self.worker = None
        self.sweeper = None


class ConnectionStateMachine(object):
    """Opens a connection over a transport, keeps it open, and tracks deliveries over it.

    States move ``CLOSED -> OPENING -> OPEN -> RECONNECTING -> OPEN ...`` and back to ``CLOSED``
    on ``close()`` or on a failure the retry policy deems terminal.  Every transition is
    reported to the handler set on ``on_event`` as a CONNECTION_STATE_CHANGE event.

    One worker thread per connection makes every connect attempt (so at most one is ever in
    flight) and polls the transport for inbound notifications.
    """

    def __init__(self, config, transport_factory, retry_policy=None):
        """
        :param config: The configuration of the connection
        :type config: :class:`azure.iot.transport.config.ClientConfig`
        :param transport_factory: Callable creating a transport from a config
        :param retry_policy: Policy deciding on reconnection.  Created from config if not given.
        :type retry_policy: :class:`azure.iot.transport.retry_policy.RetryPolicy`
        """
        self._config = config
        self._transport_factory = transport_factory
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy.from_config(
            config
        )
        self._lock = threading.RLock()
        self.registry = CorrelationRegistry(lock=self._lock)
        self.tracker = DeliveryTracker(
            registry=self.registry,
            retry_policy=self.retry_policy,
            lock=self._lock,
            ack_timeout=config.ack_timeout,
            operation_timeout=config.operation_timeout,
        )
        self.connection = None
        self._state = ConnectionState.CLOSED
        self._open_future = None
        self._on_event = None

    @property
    def state(self):
        return self._state

    @property
    def on_event(self):
        """The handler receiving every ClientEvent of this state machine"""
        return self._on_event

    @on_event.setter
    def on_event(self, value):
        self._on_event = value

    def begin_open(self):
        """Begin opening the connection, without waiting.

        Calls made while an attempt is already in progress share that attempt.

        :returns: A Future completed when the connection is OPEN, or with the error that
            ended the attempt
        :rtype: :class:`concurrent.futures.Future`

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the
            configuration cannot be used to connect
        """
        self._config.validate()
        with self._lock:
            if self._state is ConnectionState.OPEN:
                future = Future()
                future.set_result(None)
                return future
            if self._open_future is not None and not self._open_future.done():
                logger.debug("Open already in progress")
                return self._open_future

            self._open_future = Future()
            if self._state is ConnectionState.RECONNECTING:
                # The worker already retries. The Future is completed when it succeeds.
                return self._open_future

            connection = Connection(
                hostname=self._config.hostname,
                device_id=self._config.device_id,
                module_id=self._config.module_id,
            )
            self.connection = connection
            self.tracker.enable()
            connection.sweeper = self.registry.start_sweeper(self._config.sweep_interval)
            self._transition(connection, ConnectionState.OPENING, reason="open requested")
            connection.worker = threading.Thread(
                target=self._run, args=(connection,), name="connection_worker", daemon=True
            )
            connection.worker.start()
            return self._open_future

    def open(self, timeout=None):
        """Open the connection, blocking until it is OPEN.

        :param float timeout: Seconds to wait before raising OperationTimeout

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the
            configuration cannot be used to connect
        :raises: :class:`azure.iot.transport.exceptions.ServiceError` or
            :class:`azure.iot.transport.exceptions.TransportError` if the attempt failed
            terminally
        :raises: :class:`azure.iot.transport.exceptions.OperationTimeout` if the timeout
            passed first.  The attempt continues in the background.
        """
        future = self.begin_open()
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            raise exceptions.OperationTimeout("Connection was not opened in time") from e

    def close(self):
        """Close the connection from any state.

        The transport is released without waiting for in-flight acknowledgements, and every
        pending operation completes with OperationCancelled.  Closing a closed connection does
        nothing.
        """
        with self._lock:
            connection = self.connection
            if connection is None:
                logger.debug("Connection already closed")
                return
            self.connection = None
            connection.stop_event.set()
            self.tracker.disable()
            self.registry.stop_sweeper(wait=False)
            pending = self.registry.pop_all()
            self.tracker.forget_all()
            self.tracker.detach()
            self._transition(connection, ConnectionState.CLOSED, reason="close requested")
            open_future = self._open_future
            self._open_future = None

        self._release(connection)
        self.registry.cancel_all(pending)
        if open_future is not None and not open_future.done():
            open_future.set_exception(
                exceptions.OperationCancelled("Connection was closed before it opened")
            )
        logger.info("Connection closed")

    def submit(self, message, timeout=None):
        """Submit a message for delivery.  See DeliveryTracker.submit"""
        return self.tracker.submit(message, timeout=timeout)

    def cancel(self, correlation_id):
        """Cancel a submitted message.  See DeliveryTracker.cancel"""
        return self.tracker.cancel(correlation_id)

    def acknowledge(self, notification, accept=True):
        """Settle an inbound notification with the service

        :raises: :class:`azure.iot.transport.exceptions.NoConnectionError` if not OPEN
        """
        with self._lock:
            connection = self.connection
            if connection is None or self._state is not ConnectionState.OPEN:
                raise exceptions.NoConnectionError("Cannot acknowledge while not connected")
            transport = connection.transport
        transport.acknowledge(notification, accept=accept)

    ###################
    # Worker thread #
    ###################

    def _run(self, connection):
        try:
            while not connection.stop_event.is_set():
                state = self._state
                if state in (ConnectionState.OPENING, ConnectionState.RECONNECTING):
                    self._attempt_connect(connection)
                elif state is ConnectionState.OPEN:
                    self._poll(connection)
                else:
                    break
        except Exception as e:
            handle_exceptions.handle_background_exception(e)
            self._fail(connection, e)
        logger.debug("Connection worker exiting")

    def _attempt_connect(self, connection):
        if connection.next_wait:
            logger.info("Waiting {:.2f}s before connecting".format(connection.next_wait))
            if connection.stop_event.wait(connection.next_wait):
                return
            connection.next_wait = None

        with self._lock:
            if connection.stop_event.is_set():
                return
            if connection.transport is None:
                connection.transport = self._transport_factory(self._config)
                connection.transport.on_transport_disconnected = functools.partial(
                    self._on_transport_disconnected, connection
                )
            transport = connection.transport

        logger.info("Connecting to {}".format(connection.hostname))
        try:
            transport.connect()
        except Exception as e:
            error = _surface_error(e)
            with self._lock:
                if connection.stop_event.is_set():
                    return
                connection.last_error = error
                decision = self.retry_policy.decide_for_error(error, connection.retry_attempt)
                if not decision.terminal:
                    connection.retry_attempt += 1
                    connection.next_wait = decision.retry_after
            if decision.terminal:
                logger.warning("Connect failed terminally: {}".format(error))
                self._fail(connection, error)
            else:
                logger.info(
                    "Connect attempt {} failed: {}".format(connection.retry_attempt, error)
                )
            return

        with self._lock:
            if connection.stop_event.is_set():
                return
            connection.retry_attempt = 0
            connection.last_error = None
            self.tracker.attach(transport, connection.dispatcher)
            self._transition(connection, ConnectionState.OPEN, reason="connected")
            self.tracker.replay()
            open_future = self._open_future
            self._open_future = None
        logger.info("Connected to {}".format(connection.hostname))
        if open_future is not None and not open_future.done():
            open_future.set_result(None)

    def _poll(self, connection):
        transport = connection.transport
        try:
            notification = transport.receive(timeout=self._config.receive_poll_interval)
        except Exception as e:
            self._handle_disconnect(connection, e)
            return
        if notification is not None:
            self._emit(connection, ClientEvent.notification_received(notification))
        self.tracker.resend_overdue()

    ##########################
    # Disconnect handling #
    ##########################

    def _on_transport_disconnected(self, connection, cause):
        # Called from a protocol library thread
        connection.dispatcher.invoke_nowait(self._handle_disconnect, connection, cause)

    def _handle_disconnect(self, connection, cause):
        with self._lock:
            if connection is not self.connection or self._state is not ConnectionState.OPEN:
                logger.debug("Ignoring disconnect while not OPEN: {}".format(cause))
                return
            logger.info("Connection dropped: {}".format(cause))
            connection.last_error = cause
            self.tracker.detach()
            terminal = True
            if self._config.connection_retry:
                decision = self.retry_policy.decide_for_error(cause, connection.retry_attempt)
                if not decision.terminal:
                    terminal = False
                    connection.retry_attempt += 1
                    connection.next_wait = decision.retry_after
                    self._transition(connection, ConnectionState.RECONNECTING, reason=cause)
        if terminal:
            self._fail(connection, cause)

    def _fail(self, connection, error):
        """Close the connection because of a terminal failure, failing all pending operations"""
        with self._lock:
            if connection is not self.connection:
                return
            previous_state = self._state
            self.connection = None
            connection.stop_event.set()
            self.tracker.disable()
            self.registry.stop_sweeper(wait=False)
            pending = self.registry.pop_all()
            self.tracker.forget_all()
            self.tracker.detach()
            self._transition(connection, ConnectionState.CLOSED, reason=error)
            open_future = self._open_future
            self._open_future = None

        if previous_state is not ConnectionState.OPENING:
            self._emit(connection, ClientEvent.background_exception(error))
        self._release(connection)
        self.registry.fail_all(error, pending)
        if open_future is not None and not open_future.done():
            open_future.set_exception(error)

    def _release(self, connection):
        if connection.sweeper is not None:
            connection.sweeper.join_unless_current()
        if connection.transport is not None:
            try:
                connection.transport.close()
            except Exception as e:
                handle_exceptions.swallow_unraised_exception(
                    e, log_msg="Error closing transport"
                )
        if connection.worker is not None and connection.worker is not threading.current_thread():
            connection.worker.join(timeout=self._config.receive_poll_interval + 1)
        connection.dispatcher.shutdown(wait=False)
        connection.callback_dispatcher.shutdown(wait=False)

    ############
    # Events #
    ############

    def _transition(self, connection, new_state, reason=None):
        # Caller holds the lock
        logger.debug("State changes {} -> {}".format(self._state.name, new_state.name))
        self._state = new_state
        connection.state = new_state
        self._emit(connection, ClientEvent.connection_state_change(new_state, reason))

    def _emit(self, connection, event):
        handler = self._on_event
        if handler is None:
            logger.debug("No handler set for {}. Dropping event".format(event.name))
            return
        connection.callback_dispatcher.invoke_nowait(handler, event)


def _surface_error(error):
    """Express credential failures raised while connecting as service authorization errors"""
    if isinstance(error, SasTokenError):
        new_err = exceptions.UnauthorizedError("Unable to authorize with the provided credential")
        new_err.__cause__ = error
        return new_err
    return error

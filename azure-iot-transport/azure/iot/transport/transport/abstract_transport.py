# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import abc


class AbstractTransport(abc.ABC):
    """
    All specific transports will follow implementations of this abstract class.

    A transport is driven by a single connection: ``connect()`` and ``receive()`` are called from
    the connection's worker thread, ``send()`` from its dispatcher thread, and ``close()`` from
    whichever thread closes the connection.
    """

    def __init__(self, config):
        """
        :param config: The configuration of the connection
        :type config: :class:`azure.iot.transport.config.ClientConfig`
        """
        self._config = config

        # Event Handlers - Will be set by the connection after instantiation of the transport
        self.on_transport_disconnected = None

    @abc.abstractmethod
    def connect(self):
        """
        Connect to the service, blocking until connected.

        :raises: :class:`azure.iot.transport.exceptions.TransportError` or
            :class:`azure.iot.transport.exceptions.ServiceError` if the connection fails
        """
        pass

    @abc.abstractmethod
    def send(self, message, callback):
        """
        Begin sending a message.

        :param message: The message to send
        :type message: :class:`azure.iot.transport.models.OutboundMessage`
        :param callback: Called exactly once per send as ``callback(error=None, response=None)``
            when the service acknowledges the message or the send fails.  May be called from any
            thread.
        """
        pass

    @abc.abstractmethod
    def receive(self, timeout):
        """
        Wait up to timeout seconds for the next inbound notification.

        :returns: An :class:`azure.iot.transport.models.InboundNotification`, or None
        """
        pass

    @abc.abstractmethod
    def acknowledge(self, notification, accept=True):
        """
        Settle a notification with the service.

        :param bool accept: True to complete the notification, False to abandon it so the service
            delivers it again
        """
        pass

    @abc.abstractmethod
    def close(self):
        """
        Release the transport.  Pending sends are not waited for.
        """
        pass

    def _notify_disconnected(self, cause):
        if self.on_transport_disconnected:
            self.on_transport_disconnected(cause)

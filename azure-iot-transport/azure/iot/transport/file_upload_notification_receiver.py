# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the service-side receiver of file upload notifications"""

import logging
import threading
import uamqp
from . import constant
from . import exceptions
from .config import create_authentication_provider
from .models.notification import NotificationKind
from .transport.amqp_transport import (
    create_auth,
    notification_from_amqp_message,
    translate_amqp_error,
    wait_until_ready,
)

logger = logging.getLogger(__name__)


class FileUploadNotificationReceiver(object):
    """Receives the notifications IoTHub raises when a device completes a file upload.

    Delivery is at-least-once: a notification which is neither completed nor abandoned is
    delivered again after the receiver is closed or its lock expires.  Only one receive is
    processed at a time.
    """

    def __init__(
        self,
        connection_string=None,
        hostname=None,
        sas_credential=None,
        token_credential=None,
        websockets=False,
        proxy_options=None,
        connect_timeout=constant.DEFAULT_CONNECT_TIMEOUT,
    ):
        """
        :param str connection_string: An IoTHub service (shared access policy) connection string
        :param str hostname: The IoTHub hostname. Required with sas_credential or token_credential.
        :param sas_credential: Credential providing a caller-managed SAS token
        :param token_credential: Credential providing bearer tokens
        :param bool websockets: Connect over websockets on port 443
        :param proxy_options: Details of proxy configuration
        :type proxy_options: :class:`azure.iot.transport.models.ProxyOptions`

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the hostname or
            credentials are missing, mixed or malformed
        """
        self._authentication_provider = create_authentication_provider(
            connection_string=connection_string,
            hostname=hostname,
            sas_credential=sas_credential,
            token_credential=token_credential,
        )
        if self._authentication_provider.device_id:
            raise exceptions.ConfigurationError(
                "A service connection string is required, not a device connection string"
            )
        self._hostname = self._authentication_provider.hostname
        self._websockets = websockets
        self._proxy_options = proxy_options
        self._connect_timeout = connect_timeout
        self._receive_client = None
        # delivery tag -> received uamqp Message awaiting settlement
        self._unsettled = {}
        self._lock = threading.Lock()

    @property
    def source(self):
        return "amqps://{}/messages/serviceBound/filenotifications".format(self._hostname)

    def open(self):
        """Open the receive link.  Opening an open receiver does nothing.

        :raises: :class:`azure.iot.transport.exceptions.ServiceError` or
            :class:`azure.iot.transport.exceptions.TransportError` if the link could not be opened
        """
        with self._lock:
            if self._receive_client is not None:
                logger.debug("File upload notification receiver already open")
                return
            logger.info("Opening file upload notification receiver")
            try:
                auth = create_auth(
                    self._authentication_provider,
                    websockets=self._websockets,
                    proxy_options=self._proxy_options,
                )
                receive_client = uamqp.ReceiveClient(
                    source=self.source,
                    auth=auth,
                    auto_complete=False,
                    receive_settle_mode=uamqp.constants.ReceiverSettleMode.PeekLock,
                )
                receive_client.open()
                try:
                    wait_until_ready(receive_client, self._connect_timeout)
                except Exception:
                    receive_client.close()
                    raise
            except Exception as e:
                raise translate_amqp_error(e)
            self._receive_client = receive_client
        logger.info("Opened file upload notification receiver")

    def close(self):
        """Close the receive link.  Unsettled notifications will be delivered again."""
        with self._lock:
            receive_client, self._receive_client = self._receive_client, None
            self._unsettled.clear()
        if receive_client is not None:
            logger.info("Closing file upload notification receiver")
            receive_client.close()
            logger.info("Closed file upload notification receiver")

    def receive(self, timeout=constant.DEFAULT_NOTIFICATION_RECEIVE_TIMEOUT):
        """Receive the next file upload notification.

        :param float timeout: Seconds to wait for a notification

        :returns: An InboundNotification of kind FILE_UPLOAD_NOTIFICATION, whose json() holds
            the deviceId, blobUri, blobName, lastUpdatedTime, blobSizeInBytes and
            enqueuedTimeUtc of the upload.  None if no notification arrived in time.

        :raises: :class:`azure.iot.transport.exceptions.NoConnectionError` if not open
        """
        receive_client = self._receive_client
        if receive_client is None:
            raise exceptions.NoConnectionError("File upload notification receiver is not open")
        try:
            batch = receive_client.receive_message_batch(
                max_batch_size=1, timeout=int(timeout * 1000)
            )
        except Exception as e:
            raise translate_amqp_error(e)
        if not batch:
            logger.debug("No file upload notification within {}s".format(timeout))
            return None
        amqp_message = batch[0]
        notification = notification_from_amqp_message(
            NotificationKind.FILE_UPLOAD_NOTIFICATION, amqp_message
        )
        with self._lock:
            self._unsettled[notification.delivery_tag] = amqp_message
        return notification

    def complete(self, notification):
        """Settle a notification so that it is not delivered again"""
        self._settle(notification).accept()

    def abandon(self, notification):
        """Release a notification so that it is delivered again"""
        self._settle(notification).release()

    def _settle(self, notification):
        with self._lock:
            amqp_message = self._unsettled.pop(notification.delivery_tag, None)
        if amqp_message is None:
            raise exceptions.ProtocolClientError(
                "No unsettled notification with delivery tag {!r}".format(notification.delivery_tag)
            )
        return amqp_message

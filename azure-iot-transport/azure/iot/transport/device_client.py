# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains a user-facing synchronous device client built on the connection core.
"""
import concurrent.futures
import logging
from typing import Any, Callable, Optional, Union
from . import constant
from . import events
from . import exceptions
from . import handle_exceptions
from .config import ClientConfig
from .connection import ConnectionStateMachine
from .inbox import SyncInbox, InboxEmpty
from .models.message import OutboundMessage, MessageKind
from .models.notification import InboundNotification
from .transport.http_transport import HTTPTransport
from .transport.mqtt_transport import MQTTTransport

logger = logging.getLogger(__name__)

PROTOCOLS = ("mqtt", "https", "amqp")


def get_transport_factory(protocol: str) -> Callable:
    """Return the transport class for a protocol name

    :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the protocol is unknown
    """
    if protocol == "mqtt":
        return MQTTTransport
    elif protocol == "https":
        return HTTPTransport
    elif protocol == "amqp":
        # uamqp is only installed with the "amqp" extra
        from .transport.amqp_transport import AMQPTransport

        return AMQPTransport
    else:
        raise exceptions.ConfigurationError(
            "Unsupported protocol '{}'. Must be one of {}".format(protocol, ", ".join(PROTOCOLS))
        )


def handle_result(future: concurrent.futures.Future, timeout: Optional[float]) -> Any:
    """Wait for an operation to complete and return its result.

    The operation is cancelled if it does not complete within timeout seconds.

    :raises: :class:`azure.iot.transport.exceptions.OperationTimeout` if the timeout passed
    :raises: The error which ended the operation
    """
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as e:
        future.cancel()
        raise exceptions.OperationTimeout("Could not complete operation before timeout") from e
    except concurrent.futures.CancelledError as e:
        raise exceptions.OperationCancelled("Operation was cancelled before completion") from e


class DeviceClient(object):
    """A synchronous device client connecting to IoTHub over MQTT, HTTPS or AMQP.

    Every send blocks until the service acknowledges the message, the operation fails, or the
    timeout passes.  Delivery is at-least-once.
    """

    def __init__(
        self,
        config: ClientConfig,
        protocol: str = "mqtt",
        transport_factory: Optional[Callable] = None,
        sync_timeout: float = constant.DEFAULT_SYNC_TIMEOUT,
    ) -> None:
        """Initializer for a DeviceClient.

        This initializer should not be called directly.
        Instead, use one of the 'create_from_' classmethods to instantiate

        :param config: The configuration of the client
        :type config: :class:`azure.iot.transport.config.ClientConfig`
        :param str protocol: One of "mqtt", "https" or "amqp"
        :param transport_factory: Callable creating a transport from the config. Overrides
            protocol.
        :param float sync_timeout: Default seconds a blocking call waits for completion
        """
        if transport_factory is None:
            transport_factory = get_transport_factory(protocol)
        self._config = config
        self._sync_timeout = sync_timeout
        self._state_machine = ConnectionStateMachine(config, transport_factory)
        self._state_machine.on_event = self._on_event
        self._inbox = SyncInbox()

        self._on_connection_state_change = None
        self._on_notification_received = None
        self._on_background_exception = None

    @classmethod
    def create_from_connection_string(
        cls, connection_string: str, protocol: str = "mqtt", **kwargs: Any
    ) -> "DeviceClient":
        """
        Instantiate the client from a IoTHub device or module connection string.

        :param str connection_string: The connection string for the IoTHub you wish to connect to.
        :param str protocol: One of "mqtt", "https" or "amqp". Default "mqtt".

        Any other keyword arguments are configuration options of
        :class:`azure.iot.transport.config.ClientConfig`.

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the connection
            string or the options are invalid
        """
        config = ClientConfig.from_connection_string(connection_string, **kwargs)
        return cls(config, protocol=protocol)

    @classmethod
    def create_from_sastoken(
        cls, sastoken: str, protocol: str = "mqtt", **kwargs: Any
    ) -> "DeviceClient":
        """Instantiate the client from a pre-created SAS Token string

        :param str sastoken: The SAS Token string
        :param str protocol: One of "mqtt", "https" or "amqp". Default "mqtt".

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the token is
            invalid or expired
        """
        config = ClientConfig.from_sastoken(sastoken, **kwargs)
        return cls(config, protocol=protocol)

    @classmethod
    def create_from_token_credential(
        cls,
        hostname: str,
        device_id: str,
        token_credential: Any,
        protocol: str = "mqtt",
        **kwargs: Any
    ) -> "DeviceClient":
        """Instantiate the client from a token credential

        :param str hostname: Host running the IotHub.
        :param str device_id: The ID used to uniquely identify a device in the IoTHub
        :param token_credential: Credential providing bearer tokens through get_token()
        :param str protocol: One of "mqtt", "https" or "amqp". Default "mqtt".
        """
        config = ClientConfig.from_token_credential(hostname, device_id, token_credential, **kwargs)
        return cls(config, protocol=protocol)

    @property
    def connection_state(self):
        """The current :class:`azure.iot.transport.connection.ConnectionState`"""
        return self._state_machine.state

    @property
    def on_connection_state_change(self) -> Optional[Callable]:
        """The handler function that will be called when the connection state changes.

        The function definition should take two positional arguments (the new state and the
        reason for the change)."""
        return self._on_connection_state_change

    @on_connection_state_change.setter
    def on_connection_state_change(self, value: Optional[Callable]) -> None:
        self._on_connection_state_change = value

    @property
    def on_notification_received(self) -> Optional[Callable]:
        """The handler function that will be called when a notification is received.

        While no handler is set, notifications are held for receive_notification().
        The function definition should take one positional argument (the
        :class:`azure.iot.transport.models.InboundNotification` object)"""
        return self._on_notification_received

    @on_notification_received.setter
    def on_notification_received(self, value: Optional[Callable]) -> None:
        self._on_notification_received = value

    @property
    def on_background_exception(self) -> Optional[Callable]:
        """The handler function that will be called when a background exception occurs,
        such as a terminal loss of connection.

        The function definition should take one positional argument (the exception)"""
        return self._on_background_exception

    @on_background_exception.setter
    def on_background_exception(self, value: Optional[Callable]) -> None:
        self._on_background_exception = value

    def connect(self, timeout: Optional[float] = None) -> None:
        """Connects the client to an Azure IoT Hub or Azure IoT Edge Hub instance.

        This is a synchronous call, meaning that this function will not return until the
        connection to the service has been completely established.

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the configuration
            cannot be used to connect
        :raises: :class:`azure.iot.transport.exceptions.ServiceError` if the service refused the
            connection
        :raises: :class:`azure.iot.transport.exceptions.TransportError` if the connection
            could not be established within the retry policy
        :raises: :class:`azure.iot.transport.exceptions.OperationTimeout` if the timeout passed
        """
        logger.info("Connecting to Hub...")
        self._state_machine.open(timeout=timeout)
        logger.info("Successfully connected to Hub")

    def shutdown(self) -> None:
        """Shut down the client for graceful exit.

        Operations which have not completed fail with OperationCancelled, and notifications
        which have not been received are discarded.
        """
        logger.info("Initiating client shutdown")
        self._state_machine.close()
        self._inbox.clear()
        logger.info("Client shutdown complete")

    def send_message(
        self, message: Union[OutboundMessage, str, bytes], timeout: Optional[float] = None
    ) -> None:
        """Sends a telemetry message to the default events endpoint on the Azure IoT Hub or Azure
        IoT Edge Hub instance.

        :param message: The actual message to send. Anything passed that is not an instance of
            OutboundMessage will be converted to a telemetry OutboundMessage.
        :param float timeout: Seconds to wait for the acknowledgement

        :raises: ValueError if the message is larger than the telemetry size limit
        """
        if not isinstance(message, OutboundMessage):
            message = OutboundMessage.telemetry(message)
        elif message.kind is not MessageKind.TELEMETRY:
            raise ValueError("Only telemetry messages can be sent with send_message()")

        if message.get_size() > constant.TELEMETRY_MESSAGE_SIZE_LIMIT:
            raise ValueError("Size of telemetry message can not exceed 256 KB.")

        logger.info("Sending message to Hub...")
        self._submit_and_wait(message, timeout)
        logger.info("Successfully sent message to Hub")

    def patch_twin_reported_properties(
        self, reported_properties_patch: dict, timeout: Optional[float] = None
    ) -> None:
        """Update reported properties with the Azure IoT Hub or Azure IoT Edge Hub service.

        :param reported_properties_patch: Twin Reported Properties patch as a JSON dict
        :param float timeout: Seconds to wait for the service's response
        """
        logger.info("Patching twin reported properties")
        self._submit_and_wait(OutboundMessage.twin_patch(reported_properties_patch), timeout)
        logger.info("Successfully patched twin")

    def send_method_response(
        self, request_id: str, status: int, payload: Any = None, timeout: Optional[float] = None
    ) -> None:
        """Send a response to a method request via the Azure IoT Hub or Azure IoT Edge Hub.

        :param str request_id: The request id of the METHOD_INVOCATION notification
        :param int status: The status of the method's execution
        :param payload: The JSON-serializable result of the method
        :param float timeout: Seconds to wait for the acknowledgement
        """
        logger.info("Sending method response to Hub...")
        message = OutboundMessage.command_response(request_id, status, payload)
        self._submit_and_wait(message, timeout)
        logger.info("Successfully sent method response to Hub")

    def get_storage_info_for_blob(self, blob_name: str, timeout: Optional[float] = None) -> dict:
        """Sends a POST request over HTTP to an IoTHub endpoint that will return information for
        uploading via the Azure Storage Account linked to the IoTHub your device is connected to.

        :param str blob_name: The name in string format of the blob that will be uploaded using
            the storage API. This name will be used to generate the proper credentials for
            Storage, and needs to match what will be used with the Azure Storage SDK to perform
            the blob upload.

        :returns: A JSON-like (dictionary) object from IoT Hub that will contain relevant
            information including: correlationId, hostName, containerName, blobName, sasToken.
        """
        message = OutboundMessage.file_upload_request(blob_name)
        storage_info = self._submit_and_wait(message, timeout)
        logger.info("Successfully retrieved storage_info")
        return storage_info

    def receive_notification(
        self, block: bool = True, timeout: Optional[float] = None
    ) -> Optional[InboundNotification]:
        """Receive a notification that has been sent from the Azure IoT Hub.

        :param bool block: Indicates if the operation should block until a notification is
            received.
        :param int timeout: Optionally provide a number of seconds until blocking times out.

        :returns: InboundNotification that was sent from the Azure IoT Hub, or None if
            no notification has been received by the end of the blocking period.
        """
        try:
            return self._inbox.get(block=block, timeout=timeout)
        except InboxEmpty:
            return None

    def acknowledge_notification(
        self, notification: InboundNotification, accept: bool = True
    ) -> None:
        """Complete (accept=True) or abandon (accept=False) a cloud to device message

        :raises: :class:`azure.iot.transport.exceptions.NoConnectionError` if not connected
        """
        self._state_machine.acknowledge(notification, accept=accept)

    def _submit_and_wait(self, message, timeout):
        if timeout is None:
            timeout = self._sync_timeout
        future = self._state_machine.submit(message, timeout=timeout)
        return handle_result(future, timeout)

    def _on_event(self, event):
        # Runs on the connection's callback thread
        if event.name == events.CONNECTION_STATE_CHANGE:
            handler = self._on_connection_state_change
            if handler is not None:
                handler(*event.values_for_user)
        elif event.name == events.NOTIFICATION_RECEIVED:
            handler = self._on_notification_received
            if handler is not None:
                handler(*event.values_for_user)
            else:
                self._inbox.put(event.values_for_user[0])
        elif event.name == events.BACKGROUND_EXCEPTION:
            handler = self._on_background_exception
            if handler is not None:
                handler(*event.values_for_user)
            else:
                handle_exceptions.handle_background_exception(event.values_for_user[0])
        else:
            logger.warning("Unknown event {}. Dropping".format(event.name))

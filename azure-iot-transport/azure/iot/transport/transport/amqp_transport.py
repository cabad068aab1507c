# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""The AMQP transport: telemetry over a send link and cloud-to-device messages over a receive link"""

import collections
import logging
import threading
import time
import uamqp
from .. import constant
from .. import exceptions
from ..auth.authentication_provider import IOTHUB_TOKEN_SCOPE
from ..auth.sastoken import NonRenewableSasToken, SasTokenError
from ..models.message import MessageKind
from ..models.notification import InboundNotification, NotificationKind
from .abstract_transport import AbstractTransport

logger = logging.getLogger(__name__)

# Shape of the object uamqp's JWTTokenAuth expects from its get_token callable
AccessToken = collections.namedtuple("AccessToken", "token expires_on")

SAS_TOKEN_TYPE = b"servicebus.windows.net:sastoken"
BEARER_TOKEN_TYPE = b"bearer"

# How often to poll a client while waiting for its links to open
CLIENT_READY_POLL_INTERVAL = 0.05


def create_auth(authentication_provider, websockets=False, proxy_options=None):
    """Create a uamqp JWTTokenAuth presenting the provider's authorization values

    :param authentication_provider: Provider of SAS or bearer authorization values
    :param bool websockets: Connect over websockets on port 443
    :param proxy_options: HTTP proxy to tunnel websockets through
    """
    authorization = authentication_provider.get_authorization()
    if authorization.startswith("Bearer "):
        audience = IOTHUB_TOKEN_SCOPE
        token_type = BEARER_TOKEN_TYPE
    else:
        audience = authentication_provider.resource_uri
        token_type = SAS_TOKEN_TYPE

    def get_token():
        value = authentication_provider.get_authorization()
        return AccessToken(value, _get_expiry(value))

    kwargs = {}
    if websockets:
        kwargs["transport_type"] = uamqp.constants.TransportType.AmqpOverWebsocket
        if proxy_options:
            kwargs["http_proxy"] = _format_http_proxy(proxy_options)
    elif proxy_options:
        logger.warning("Proxies are only supported for AMQP over websockets. Ignoring proxy.")

    auth = uamqp.authentication.JWTTokenAuth(
        audience=audience,
        uri="https://" + authentication_provider.resource_uri,
        get_token=get_token,
        token_type=token_type,
        **kwargs
    )
    auth.update_token()
    return auth


def translate_amqp_error(error):
    """Express a uamqp exception as an exception from the transport error hierarchy"""
    if isinstance(error, (uamqp.errors.AuthenticationException, SasTokenError)):
        new_err = exceptions.UnauthorizedError(str(error))
    elif isinstance(error, uamqp.errors.ClientTimeout):
        new_err = exceptions.ConnectionFailedError("AMQP operation timed out")
    elif isinstance(error, uamqp.errors.MessageSendFailed):
        new_err = exceptions.ConnectionDroppedError("AMQP message send failure")
    elif isinstance(error, uamqp.errors.AMQPConnectionError):
        new_err = exceptions.ConnectionDroppedError(str(error))
    elif isinstance(error, exceptions.ClientError):
        return error
    else:
        new_err = exceptions.ProtocolClientError("Unexpected AMQP failure")
    new_err.__cause__ = error
    return new_err


def wait_until_ready(client, timeout):
    """Pump a uamqp client until its links are open

    :raises: ConnectionFailedError if the links did not open in time
    """
    deadline = time.monotonic() + timeout
    while not client.client_ready():
        if time.monotonic() >= deadline:
            raise exceptions.ConnectionFailedError(
                "AMQP link was not opened within {} seconds".format(timeout)
            )
        time.sleep(CLIENT_READY_POLL_INTERVAL)


def notification_from_amqp_message(kind, amqp_message):
    """Build an InboundNotification from a received uamqp Message"""
    properties = {}
    amqp_properties = amqp_message.properties
    if amqp_properties is not None:
        for key, name in (
            ("$.mid", "message_id"),
            ("$.cid", "correlation_id"),
            ("$.ct", "content_type"),
            ("$.ce", "content_encoding"),
            ("$.to", "to"),
        ):
            value = getattr(amqp_properties, name, None)
            if value is not None:
                properties[key] = _decode(value)
    for key, value in (amqp_message.application_properties or {}).items():
        properties[_decode(key)] = _decode(value)
    return InboundNotification(
        kind=kind,
        payload=b"".join(amqp_message.get_data()),
        delivery_tag=amqp_message.delivery_tag,
        properties=properties,
    )


class AMQPTransport(AbstractTransport):
    """
    Transport over AMQP (optionally over websockets).

    A telemetry message is acknowledged when its send link reports it accepted.  Cloud to device
    messages are received in peek-lock mode, so each must be settled with acknowledge().  File
    upload requests are negotiated over HTTPS.  Twin patches and command responses are not
    supported.
    """

    def __init__(self, config, connect_timeout=constant.DEFAULT_CONNECT_TIMEOUT):
        super().__init__(config)
        self._device_id = config.device_id
        self._module_id = config.module_id
        self._hostname = config.gateway_hostname or config.hostname
        self._connect_timeout = connect_timeout
        self._send_client = None
        self._receive_client = None
        self._closed = threading.Event()
        # delivery tag -> received uamqp Message awaiting settlement
        self._unsettled = {}
        self._lock = threading.Lock()
        self._file_upload_transport = None
        if config.server_verification_cert:
            logger.warning("A server verification cert is not applied to AMQP connections")

    def _get_address(self, suffix):
        address = "amqps://{}/devices/{}".format(self._hostname, self._device_id)
        if self._module_id:
            address += "/modules/{}".format(self._module_id)
        return address + suffix

    def connect(self):
        logger.info("Opening AMQP links to {}".format(self._hostname))
        self._closed.clear()
        # Links left over from a dropped connection
        self._close_clients()
        try:
            auth = create_auth(
                self._config.authentication_provider,
                websockets=self._config.websockets,
                proxy_options=self._config.proxy_options,
            )
            self._send_client = uamqp.SendClient(
                target=self._get_address("/messages/events"),
                auth=auth,
                keep_alive_interval=self._config.keep_alive,
            )
            self._send_client.open()
            wait_until_ready(self._send_client, self._connect_timeout)
            if not self._module_id:
                self._receive_client = uamqp.ReceiveClient(
                    source=self._get_address("/messages/devicebound"),
                    auth=auth,
                    auto_complete=False,
                    receive_settle_mode=uamqp.constants.ReceiverSettleMode.PeekLock,
                )
                self._receive_client.open()
                wait_until_ready(self._receive_client, self._connect_timeout)
        except Exception as e:
            self._close_clients()
            raise translate_amqp_error(e)

    def close(self):
        logger.info("Closing AMQP transport")
        self._closed.set()
        try:
            self._close_clients()
        finally:
            if self._file_upload_transport is not None:
                self._file_upload_transport.close()

    def _close_clients(self):
        with self._lock:
            self._unsettled.clear()
        send_client, self._send_client = self._send_client, None
        receive_client, self._receive_client = self._receive_client, None
        if send_client is not None:
            send_client.close()
        if receive_client is not None:
            receive_client.close()

    def send(self, message, callback):
        if message.kind is MessageKind.FILE_UPLOAD_REQUEST:
            self._get_file_upload_transport().send(message, callback)
            return
        if message.kind is not MessageKind.TELEMETRY:
            callback(
                error=exceptions.ProtocolClientError(
                    "{} is not supported over AMQP".format(message.kind.name)
                )
            )
            return

        send_client = self._send_client
        if send_client is None:
            callback(error=exceptions.NoConnectionError("AMQP transport is not connected"))
            return

        msg_props = uamqp.message.MessageProperties()
        if message.message_id:
            msg_props.message_id = message.message_id
        if message.content_type:
            msg_props.content_type = message.content_type
        if message.content_encoding:
            msg_props.content_encoding = message.content_encoding
        amqp_message = uamqp.Message(
            message.payload,
            properties=msg_props,
            application_properties=dict(message.custom_properties),
        )

        try:
            send_client.queue_message(amqp_message)
            results = send_client.send_all_messages(close_on_done=False)
        except Exception as e:
            error = translate_amqp_error(e)
            callback(error=error)
            if isinstance(error, exceptions.ConnectionDroppedError):
                self._notify_disconnected(error)
            return
        if uamqp.constants.MessageState.SendFailed in results:
            callback(error=exceptions.ConnectionDroppedError("AMQP message send failure"))
        else:
            callback()

    def receive(self, timeout):
        receive_client = self._receive_client
        if receive_client is None:
            # Modules have no device bound link
            self._closed.wait(timeout)
            return None
        try:
            batch = receive_client.receive_message_batch(
                max_batch_size=1, timeout=int(timeout * 1000)
            )
        except Exception as e:
            if self._closed.is_set():
                return None
            raise translate_amqp_error(e)
        if not batch:
            return None
        amqp_message = batch[0]
        notification = notification_from_amqp_message(NotificationKind.C2D_MESSAGE, amqp_message)
        with self._lock:
            self._unsettled[notification.delivery_tag] = amqp_message
        return notification

    def acknowledge(self, notification, accept=True):
        with self._lock:
            amqp_message = self._unsettled.pop(notification.delivery_tag, None)
        if amqp_message is None:
            raise exceptions.ProtocolClientError(
                "No unsettled message with delivery tag {!r}".format(notification.delivery_tag)
            )
        try:
            if accept:
                amqp_message.accept()
            else:
                # Released messages are delivered again
                amqp_message.release()
        except Exception as e:
            raise translate_amqp_error(e)

    def _get_file_upload_transport(self):
        from .http_transport import HTTPTransport

        if self._file_upload_transport is None:
            self._file_upload_transport = HTTPTransport(self._config)
        return self._file_upload_transport


def _get_expiry(authorization):
    if authorization.startswith("SharedAccessSignature"):
        return NonRenewableSasToken(authorization).expiry_time
    # Bearer tokens carry no readable expiry. The provider renews them when asked.
    return int(time.time()) + constant.DEFAULT_SASTOKEN_TTL


def _format_http_proxy(proxy_options):
    http_proxy = {
        "proxy_hostname": proxy_options.proxy_address,
        "proxy_port": proxy_options.proxy_port,
    }
    if proxy_options.proxy_username:
        http_proxy["username"] = proxy_options.proxy_username
        http_proxy["password"] = proxy_options.proxy_password
    return http_proxy


def _decode(value):
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value

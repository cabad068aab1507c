# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""The MQTT transport: telemetry, twin patches and command responses over a persistent session"""

import functools
import logging
import threading
from .. import constant
from .. import exceptions
from ..inbox import SyncInbox, InboxEmpty
from ..models.message import MessageKind
from ..models.notification import InboundNotification, NotificationKind
from . import http_map_error
from . import mqtt_topic
from .abstract_transport import AbstractTransport
from .mqtt_client import MQTTClient

logger = logging.getLogger(__name__)


class MQTTTransport(AbstractTransport):
    """
    Transport over MQTT (optionally over websockets).

    Telemetry and command responses are acknowledged by their PUBACK.  A reported properties
    patch is acknowledged by the twin response carrying its request id.  File upload requests
    are negotiated over HTTPS, as IoTHub offers no MQTT equivalent.
    """

    def __init__(self, config, connect_timeout=constant.DEFAULT_CONNECT_TIMEOUT):
        super().__init__(config)
        self._device_id = config.device_id
        self._module_id = config.module_id
        self._connect_timeout = connect_timeout
        self._mqtt_client = MQTTClient(
            client_id=mqtt_topic.get_client_id(config.device_id, config.module_id),
            hostname=config.gateway_hostname or config.hostname,
            username=mqtt_topic.get_username(config.hostname, config.device_id, config.module_id),
            server_verification_cert=config.server_verification_cert,
            websockets=config.websockets,
            cipher=config.cipher,
            proxy_options=config.proxy_options,
            keep_alive=config.keep_alive,
        )
        self._mqtt_client.on_connected = self._on_connected
        self._mqtt_client.on_connection_failure = self._on_connection_failure
        self._mqtt_client.on_disconnected = self._on_disconnected
        self._mqtt_client.on_message_received = self._on_message_received

        self._inbox = SyncInbox()
        self._lock = threading.Lock()
        # request id -> callback for twin requests awaiting a response
        self._pending_twin_requests = {}
        self._connack_received = threading.Event()
        self._connect_error = None
        self._file_upload_transport = None

    def connect(self):
        password = self._config.authentication_provider.get_authorization()
        self._connack_received.clear()
        self._connect_error = None
        self._mqtt_client.connect(password=password)

        if not self._connack_received.wait(self._connect_timeout):
            self._mqtt_client.disconnect()
            raise exceptions.ConnectionFailedError(
                "No CONNACK within {} seconds".format(self._connect_timeout)
            )
        if self._connect_error is not None:
            self._mqtt_client.disconnect()
            raise self._connect_error

        for topic in self._get_subscription_topics():
            self._mqtt_client.subscribe(topic, qos=1)

    def close(self):
        logger.info("Closing MQTT transport")
        try:
            self._mqtt_client.disconnect()
        finally:
            self._cancel_twin_requests()
            if self._file_upload_transport is not None:
                self._file_upload_transport.close()

    def send(self, message, callback):
        if message.kind is MessageKind.TELEMETRY:
            topic = mqtt_topic.encode_message_properties_in_topic(
                message,
                mqtt_topic.get_telemetry_topic_for_publish(self._device_id, self._module_id),
            )
            self._mqtt_client.publish(
                topic, message.payload, qos=1, callback=functools.partial(_on_puback, callback)
            )
        elif message.kind is MessageKind.COMMAND_RESPONSE:
            topic = mqtt_topic.get_method_topic_for_publish(
                message.command_request_id, message.command_status
            )
            self._mqtt_client.publish(
                topic, message.payload, qos=1, callback=functools.partial(_on_puback, callback)
            )
        elif message.kind is MessageKind.TWIN_PATCH:
            request_id = message.correlation_id
            with self._lock:
                self._pending_twin_requests[request_id] = callback
            topic = mqtt_topic.get_reported_properties_topic_for_publish(request_id)
            try:
                self._mqtt_client.publish(
                    topic,
                    message.payload,
                    qos=1,
                    callback=functools.partial(self._on_twin_puback, request_id),
                )
            except Exception:
                with self._lock:
                    self._pending_twin_requests.pop(request_id, None)
                raise
        elif message.kind is MessageKind.FILE_UPLOAD_REQUEST:
            self._get_file_upload_transport().send(message, callback)
        else:
            raise exceptions.ProtocolClientError(
                "{} is not supported over MQTT".format(message.kind)
            )

    def receive(self, timeout):
        try:
            return self._inbox.get(block=True, timeout=timeout)
        except InboxEmpty:
            return None

    def acknowledge(self, notification, accept=True):
        # Paho acknowledges QoS 1 deliveries as soon as they arrive
        if not accept:
            logger.warning("MQTT cannot abandon a notification. It is treated as completed.")

    def _get_subscription_topics(self):
        topics = [
            mqtt_topic.get_method_topic_for_subscribe(),
            mqtt_topic.get_twin_response_topic_for_subscribe(),
            mqtt_topic.get_twin_patch_topic_for_subscribe(),
        ]
        if not self._module_id:
            topics.insert(0, mqtt_topic.get_c2d_topic_for_subscribe(self._device_id))
        return topics

    def _get_file_upload_transport(self):
        # Imported here so HTTPS support is only loaded when files are uploaded
        from .http_transport import HTTPTransport

        if self._file_upload_transport is None:
            self._file_upload_transport = HTTPTransport(self._config)
        return self._file_upload_transport

    def _cancel_twin_requests(self):
        with self._lock:
            pending = list(self._pending_twin_requests.items())
            self._pending_twin_requests.clear()
        for request_id, callback in pending:
            callback(
                error=exceptions.OperationCancelled(
                    "Twin request {} was cancelled".format(request_id)
                )
            )

    ###################
    # Paho handlers #
    ###################

    def _on_connected(self):
        logger.info("MQTT connection accepted")
        self._connack_received.set()

    def _on_connection_failure(self, error):
        logger.info("MQTT connection refused: {}".format(error))
        self._connect_error = error
        self._connack_received.set()

    def _on_disconnected(self, cause):
        if cause is None:
            logger.debug("MQTT disconnected on request")
            return
        logger.info("MQTT connection dropped: {}".format(cause))
        self._notify_disconnected(cause)

    def _on_twin_puback(self, request_id, error=None):
        # The PUBACK only completes the request if publishing failed. Otherwise the twin response
        # completes it.
        if error is None:
            return
        with self._lock:
            callback = self._pending_twin_requests.pop(request_id, None)
        if callback is not None:
            callback(error=error)

    def _on_message_received(self, topic, payload):
        if mqtt_topic.is_twin_response_topic(topic):
            self._on_twin_response(topic, payload)
        elif mqtt_topic.is_c2d_topic(topic, self._device_id):
            notification = InboundNotification(
                kind=NotificationKind.C2D_MESSAGE,
                payload=payload,
                properties=mqtt_topic.extract_properties_from_c2d_topic(topic),
            )
            self._inbox.put(notification)
        elif mqtt_topic.is_method_topic(topic):
            notification = InboundNotification(
                kind=NotificationKind.METHOD_INVOCATION,
                payload=payload,
                request_id=mqtt_topic.get_method_request_id_from_topic(topic),
                name=mqtt_topic.get_method_name_from_topic(topic),
            )
            self._inbox.put(notification)
        elif mqtt_topic.is_twin_desired_property_patch_topic(topic):
            notification = InboundNotification(
                kind=NotificationKind.DESIRED_PROPERTY_UPDATE, payload=payload
            )
            self._inbox.put(notification)
        else:
            logger.warning("Unexpected message on topic {}. Dropping".format(topic))

    def _on_twin_response(self, topic, payload):
        request_id = mqtt_topic.get_twin_request_id_from_topic(topic)
        status_code = mqtt_topic.get_twin_status_code_from_topic(topic)
        with self._lock:
            callback = self._pending_twin_requests.pop(request_id, None)
        if callback is None:
            logger.debug("Twin response for unknown request {}".format(request_id))
            return
        if status_code >= 300:
            callback(
                error=http_map_error.translate_error(
                    status_code, "Twin request {} was rejected".format(request_id)
                )
            )
        else:
            callback(response=payload or None)


def _on_puback(callback, error=None):
    callback(error=error)

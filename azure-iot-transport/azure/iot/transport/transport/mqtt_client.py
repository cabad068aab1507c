# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""A thin wrapper around the Paho MQTT client which translates Paho results into exceptions"""

import paho.mqtt.client as mqtt
import logging
import ssl
import threading
import traceback
import weakref
import socket
import socks
from .. import constant
from .. import exceptions

logger = logging.getLogger(__name__)

# Error classes for refused CONNACKs
_connack_errors = {
    mqtt.CONNACK_REFUSED_PROTOCOL_VERSION: exceptions.ProtocolClientError,
    mqtt.CONNACK_REFUSED_IDENTIFIER_REJECTED: exceptions.ProtocolClientError,
    mqtt.CONNACK_REFUSED_SERVER_UNAVAILABLE: exceptions.ConnectionFailedError,
    mqtt.CONNACK_REFUSED_BAD_USERNAME_PASSWORD: exceptions.UnauthorizedError,
    mqtt.CONNACK_REFUSED_NOT_AUTHORIZED: exceptions.UnauthorizedError,
}

# Error classes for failed Paho calls and unexpected disconnects.  Codes not listed here
# are ProtocolClientError.
_rc_errors = {
    # Paho uses rc 1 for "the connection is unusable"
    1: exceptions.ConnectionDroppedError,
    mqtt.MQTT_ERR_NO_CONN: exceptions.NoConnectionError,
    mqtt.MQTT_ERR_CONN_REFUSED: exceptions.ConnectionFailedError,
    mqtt.MQTT_ERR_NOT_FOUND: exceptions.ConnectionFailedError,
    mqtt.MQTT_ERR_CONN_LOST: exceptions.ConnectionDroppedError,
    mqtt.MQTT_ERR_KEEPALIVE: exceptions.ConnectionDroppedError,
    mqtt.MQTT_ERR_TLS: exceptions.UnauthorizedError,
    mqtt.MQTT_ERR_AUTH: exceptions.UnauthorizedError,
    mqtt.MQTT_ERR_ACL_DENIED: exceptions.UnauthorizedError,
}


def connack_error(rc):
    """Return the exception describing a refused CONNACK"""
    error_class = _connack_errors.get(rc, exceptions.ProtocolClientError)
    return error_class("CONNACK refused (rc={}): {}".format(rc, mqtt.connack_string(rc)))


def rc_error(rc):
    """Return the exception describing a failed Paho return code"""
    error_class = _rc_errors.get(rc, exceptions.ProtocolClientError)
    return error_class("Paho rc={}: {}".format(rc, mqtt.error_string(rc)))


def _connect_error(e):
    # Translate an exception raised by paho's connect() into a transport error
    if isinstance(e, ssl.SSLError) and "CERTIFICATE_VERIFY_FAILED" in (e.strerror or ""):
        return exceptions.TlsExchangeAuthError("Server certificate could not be verified")
    if isinstance(e, socks.SOCKS5AuthError):
        return exceptions.UnauthorizedError("Proxy refused the credentials")
    if isinstance(e, socks.ProxyError):
        return exceptions.ProtocolProxyError("Proxy failure: {}".format(e))
    if isinstance(e, socket.error):
        return exceptions.ConnectionFailedError("Could not open the socket: {}".format(e))
    return exceptions.ProtocolClientError("Unexpected Paho failure during connect")


class MQTTClient(object):
    """
    Wrapper around a Paho client.  Connect, publish and subscribe return without waiting for
    the broker, and the broker's answers are reported through the handlers below.

    :ivar on_connected: Called with no arguments when a CONNACK accepts the connection.
    :ivar on_connection_failure: Called with an error when a CONNACK refuses the connection.
    :ivar on_disconnected: Called with the cause (None if requested) when the connection ends.
    :ivar on_message_received: Called with (topic, payload) for each incoming message.
    """

    def __init__(
        self,
        client_id,
        hostname,
        username,
        server_verification_cert=None,
        websockets=False,
        cipher=None,
        proxy_options=None,
        keep_alive=constant.DEFAULT_KEEPALIVE,
    ):
        """
        :param str client_id: MQTT client id, which IoT Hub requires to be the device id.
        :param str hostname: The IoT Hub hostname.
        :param str username: The IoT Hub MQTT username.
        :param str server_verification_cert: PEM certificate trusted instead of the system store.
        :param bool websockets: Connect over websockets on port 443 instead of TCP on 8883.
        :param str cipher: OpenSSL cipher list.
        :param proxy_options: Proxy to connect through.
        :param int keep_alive: Seconds between pings while idle.
        """
        self._client_id = client_id
        self._hostname = hostname
        self._username = username
        self._server_verification_cert = server_verification_cert
        self._websockets = websockets
        self._cipher = cipher
        self._proxy_options = proxy_options
        self._keep_alive = keep_alive

        self.on_connected = None
        self.on_connection_failure = None
        self.on_disconnected = None
        self.on_message_received = None

        self._disconnect_requested = False
        self._inflight = InflightPublishes()
        self._mqtt_client = self._create_mqtt_client()

    def _create_mqtt_client(self):
        if self._websockets:
            logger.info("Creating Paho client for MQTT over websockets")
            mqtt_client = mqtt.Client(
                client_id=self._client_id,
                clean_session=False,
                protocol=mqtt.MQTTv311,
                transport="websockets",
            )
            mqtt_client.ws_set_options(path="/$iothub/websocket")
        else:
            logger.info("Creating Paho client for MQTT over TCP")
            mqtt_client = mqtt.Client(
                client_id=self._client_id, clean_session=False, protocol=mqtt.MQTTv311
            )

        proxy = self._proxy_options
        if proxy:
            logger.info("Routing MQTT through {} proxy".format(proxy.proxy_type))
            mqtt_client.proxy_set(
                proxy_type=proxy.proxy_type_socks,
                proxy_addr=proxy.proxy_address,
                proxy_port=proxy.proxy_port,
                proxy_username=proxy.proxy_username,
                proxy_password=proxy.proxy_password,
            )

        mqtt_client.enable_logger(logging.getLogger("paho"))
        mqtt_client.tls_set_context(context=self._create_ssl_context())

        # Paho holds these callbacks, and must not keep this object alive through them
        ref = weakref.ref(self)

        def on_connect(client, userdata, flags, rc):
            logger.info("CONNACK rc={}".format(rc))
            this = ref()
            if this is None:
                return
            if rc == mqtt.CONNACK_ACCEPTED:
                this._call_handler("on_connected")
            else:
                this._call_handler("on_connection_failure", connack_error(rc))

        def on_disconnect(client, userdata, rc):
            logger.info("Disconnected, rc={}".format(rc))
            this = ref()
            if this is None:
                client.loop_stop()
                return
            if rc == mqtt.MQTT_ERR_SUCCESS or this._disconnect_requested:
                cause = None
            else:
                cause = rc_error(rc)
                this._abandon_connection()
            this._call_handler("on_disconnected", cause)

        def on_publish(client, userdata, mid):
            logger.debug("PUBACK for MID {}".format(mid))
            this = ref()
            if this is not None:
                this._inflight.acknowledge(mid)

        def on_message(client, userdata, mqtt_message):
            logger.info("Message received on {}".format(mqtt_message.topic))
            this = ref()
            if this is not None:
                this._call_handler("on_message_received", mqtt_message.topic, mqtt_message.payload)

        mqtt_client.on_connect = on_connect
        mqtt_client.on_disconnect = on_disconnect
        mqtt_client.on_publish = on_publish
        mqtt_client.on_message = on_message

        # Paho always reconnects on its own.  Two hours is longer than any connection lives.
        mqtt_client.reconnect_delay_set(120 * 60)
        return mqtt_client

    def _call_handler(self, name, *args):
        handler = getattr(self, name)
        if handler is None:
            logger.debug("{} is not set".format(name))
            return
        try:
            handler(*args)
        except Exception:
            logger.warning("{} raised".format(name))
            logger.warning(traceback.format_exc())

    def _stop_loop(self):
        self._mqtt_client.loop_stop()
        # loop_stop() leaves _thread set when called from the Paho thread itself
        if threading.current_thread() == self._mqtt_client._thread:
            self._mqtt_client._thread = None

    def _abandon_connection(self):
        """Disconnect and stop the Paho loop after a failure, so Paho cannot reconnect"""
        logger.info("Stopping Paho after a connection failure")
        self._mqtt_client.disconnect()
        self._stop_loop()

    def _create_ssl_context(self):
        ssl_context = ssl.SSLContext(protocol=ssl.PROTOCOL_TLSv1_2)
        if self._server_verification_cert:
            logger.debug("Trusting the configured server verification cert")
            ssl_context.load_verify_locations(cadata=self._server_verification_cert)
        else:
            ssl_context.load_default_certs()
        if self._cipher:
            ssl_context.set_ciphers(self._cipher)
        ssl_context.verify_mode = ssl.CERT_REQUIRED
        ssl_context.check_hostname = True
        return ssl_context

    def connect(self, password=None):
        """
        Open the socket and send CONNECT.  The CONNACK is reported through on_connected or
        on_connection_failure.

        :param str password: The SAS token, or None when authenticating with X509.

        :raises: ConnectionFailedError if the socket could not be opened.
        :raises: UnauthorizedError if a SOCKS5 proxy refused the credentials.
        :raises: TlsExchangeAuthError if the server certificate could not be verified.
        :raises: ProtocolProxyError if the proxy failed.
        :raises: ProtocolClientError if Paho failed in any other way.
        """
        self._disconnect_requested = False
        self._mqtt_client.username_pw_set(username=self._username, password=password)
        port = constant.WEBSOCKETS_PORT if self._websockets else constant.MQTT_PORT
        logger.info("Connecting to {}:{}".format(self._hostname, port))
        try:
            rc = self._mqtt_client.connect(
                host=self._hostname, port=port, keepalive=self._keep_alive
            )
        except Exception as e:
            self._abandon_connection()
            raise _connect_error(e) from e
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise rc_error(rc)
        self._mqtt_client.loop_start()

    def disconnect(self):
        """
        Send DISCONNECT and stop the Paho loop.  Publishes still awaiting a PUBACK complete with
        OperationCancelled.

        :raises: ProtocolClientError if Paho fails unexpectedly.
        """
        logger.info("Disconnecting MQTT client")
        self._disconnect_requested = True
        try:
            self._mqtt_client.disconnect()
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during disconnect") from e
        finally:
            self._stop_loop()
            self._inflight.cancel_all()

    def subscribe(self, topic, qos=1):
        """
        Send SUBSCRIBE.  The SUBACK is not waited for.

        :returns: The MID of the SUBSCRIBE packet.
        :raises: NoConnectionError if the client isn't connected.
        :raises: ProtocolClientError if Paho failed in any other way.
        """
        logger.info("Subscribing to {} (qos {})".format(topic, qos))
        try:
            (rc, mid) = self._mqtt_client.subscribe(topic, qos=qos)
        except ValueError:
            raise
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during subscribe") from e
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise rc_error(rc)
        return mid

    def publish(self, topic, payload, callback, qos=1):
        """
        Send PUBLISH.

        :param callback: Called as callback(error=None) when the PUBACK arrives, or with
            OperationCancelled if the client disconnects first.

        :raises: ValueError or TypeError if Paho rejects the topic or payload.
        :raises: NoConnectionError if the client isn't connected.
        :raises: ProtocolClientError if Paho failed in any other way.
        """
        logger.info("Publishing on {}".format(topic))
        try:
            (rc, mid) = self._mqtt_client.publish(topic=topic, payload=payload, qos=qos)
        except (ValueError, TypeError):
            raise
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during publish") from e
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise rc_error(rc)
        self._inflight.add(mid, callback)


class InflightPublishes(object):
    """Publishes awaiting a PUBACK, by MID.

    Paho can deliver a PUBACK before publish() has returned the MID it belongs to.  Such an
    early PUBACK is held until the MID is added.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks = {}
        self._early_acks = set()

    def __len__(self):
        with self._lock:
            return len(self._callbacks)

    def add(self, mid, callback):
        with self._lock:
            acked = mid in self._early_acks
            if acked:
                self._early_acks.discard(mid)
            else:
                self._callbacks[mid] = callback
        if acked:
            logger.debug("PUBACK for MID {} arrived before the publish returned".format(mid))
            _invoke(mid, callback)

    def acknowledge(self, mid):
        with self._lock:
            callback = self._callbacks.pop(mid, None)
            if callback is None:
                self._early_acks.add(mid)
        if callback is not None:
            _invoke(mid, callback)

    def cancel_all(self):
        with self._lock:
            callbacks = list(self._callbacks.items())
            self._callbacks.clear()
            self._early_acks.clear()
        if callbacks:
            logger.debug("Cancelling {} unacknowledged publish(es)".format(len(callbacks)))
        for mid, callback in callbacks:
            _invoke(mid, callback, exceptions.OperationCancelled("MID {} was cancelled".format(mid)))


def _invoke(mid, callback, error=None):
    try:
        callback(error=error)
    except Exception:
        logger.warning("Completion for MID {} raised".format(mid))
        logger.warning(traceback.format_exc())

# --------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""The HTTPS transport: request/response delivery and polled cloud-to-device messages"""

import functools
import json
import logging
import threading
import time
import urllib.parse
from .. import constant
from .. import exceptions
from .. import retry_policy
from ..models.message import MessageKind
from ..models.notification import InboundNotification, NotificationKind
from . import http_map_error
from . import http_path
from .abstract_transport import AbstractTransport
from .http_client import HTTPClient

logger = logging.getLogger(__name__)

# Maps REST headers of a device bound message to the names of its system properties
_system_property_headers = {
    "iothub-messageid": "$.mid",
    "iothub-correlationid": "$.cid",
    "iothub-userid": "$.uid",
    "iothub-to": "$.to",
    "iothub-expiry": "$.exp",
    "iothub-contenttype": "$.ct",
    "iothub-contentencoding": "$.ce",
}
_app_property_prefix = "iothub-app-"


class HTTPTransport(AbstractTransport):
    """
    Transport over HTTPS.  There is no persistent connection: connect() only checks that the
    credential can authorize requests, and the transport never reports a disconnect.

    Twin patches and command responses cannot be sent over HTTPS.

    The device bound queue is polled once per ``http_poll_interval``, and immediately again
    after a message is received.
    """

    def __init__(self, config, http_client=None):
        super().__init__(config)
        self._device_id = config.device_id
        self._module_id = config.module_id
        self._hostname = config.gateway_hostname or config.hostname
        if http_client is None:
            http_client = HTTPClient(
                hostname=self._hostname,
                server_verification_cert=config.server_verification_cert,
                cipher=config.cipher,
                proxy_options=config.proxy_options,
            )
        self._http_client = http_client
        self._closed = threading.Event()
        self._retry_policy = retry_policy.RetryPolicy.from_config(config)
        self._poll_interval = config.http_poll_interval
        # Monotonic time before which the device bound queue is not polled
        self._next_poll = 0
        self._poll_failures = 0

    def connect(self):
        logger.info("Checking credentials for HTTPS transport")
        self._config.authentication_provider.get_authorization()
        self._closed.clear()
        self._next_poll = 0
        self._poll_failures = 0
        self._http_client.open()

    def close(self):
        logger.info("Closing HTTPS transport")
        self._closed.set()
        self._http_client.close()

    def send(self, message, callback):
        if message.kind is MessageKind.TELEMETRY:
            method = "POST"
            path = http_path.get_telemetry_path(self._device_id, self._module_id)
            body = message.payload
            headers = self._get_headers(message)
            parse_response = False
        elif message.kind is MessageKind.FILE_UPLOAD_REQUEST:
            if self._module_id:
                callback(
                    error=exceptions.ProtocolClientError("Modules cannot upload files")
                )
                return
            method = "POST"
            path = http_path.get_storage_info_for_blob_path(self._device_id)
            body = message.payload
            headers = self._get_headers()
            headers["Content-Type"] = "application/json; charset=utf-8"
            parse_response = True
        else:
            callback(
                error=exceptions.ProtocolClientError(
                    "{} is not supported over HTTPS".format(message.kind.name)
                )
            )
            return
        headers["Content-Length"] = str(len(body))

        self._http_client.request_nowait(
            method,
            path,
            callback=functools.partial(self._on_response, callback, parse_response),
            body=body,
            headers=headers,
            query_params=http_path.get_api_version_query(),
        )

    def receive(self, timeout):
        """Poll for a cloud to device message, at most once per poll interval.

        A poll rejected by the service is logged and polled again later. Only a failure to
        reach the hub or a refused credential is raised.

        :raises: :class:`azure.iot.transport.exceptions.TransportError` if the hub could not
            be reached
        :raises: :class:`azure.iot.transport.exceptions.UnauthorizedError` or
            :class:`azure.iot.transport.exceptions.ForbiddenError` if the credential was refused
        """
        if self._module_id:
            # Cloud to device messages are only delivered to devices
            self._closed.wait(timeout)
            return None

        remaining = self._next_poll - time.monotonic()
        if remaining > 0:
            self._closed.wait(min(timeout, remaining))
            return None

        response = self._http_client.request(
            "GET",
            http_path.get_device_bound_path(self._device_id),
            headers=self._get_headers(),
            query_params=http_path.get_api_version_query(),
        )
        status_code = response["status_code"]
        if status_code == 204:
            self._poll_failures = 0
            self._schedule_poll(self._poll_interval)
            return None
        if status_code >= 300:
            error = _error_from_response(response)
            if retry_policy.classify_error(error) is retry_policy.ErrorKind.UNAUTHORIZED:
                raise error
            self._schedule_poll(self._poll_delay(error))
            self._poll_failures += 1
            return None

        # More messages may be queued behind this one
        self._poll_failures = 0
        self._next_poll = 0
        headers = response["headers"]
        return InboundNotification(
            kind=NotificationKind.C2D_MESSAGE,
            payload=response["content"],
            delivery_tag=headers.get("ETag", "").strip('"'),
            properties=_extract_properties_from_headers(headers),
        )

    def acknowledge(self, notification, accept=True):
        if accept:
            method = "DELETE"
            path = http_path.get_complete_path(self._device_id, notification.delivery_tag)
        else:
            method = "POST"
            path = http_path.get_abandon_path(self._device_id, notification.delivery_tag)
        headers = self._get_headers()
        headers["If-Match"] = '"{}"'.format(notification.delivery_tag)
        response = self._http_client.request(
            method, path, headers=headers, query_params=http_path.get_api_version_query()
        )
        if response["status_code"] >= 300:
            raise _error_from_response(response)
        logger.debug(
            "{} message {}".format("Completed" if accept else "Abandoned", notification.delivery_tag)
        )

    def _poll_delay(self, error):
        decision = self._retry_policy.decide_for_error(error, self._poll_failures)
        if decision.terminal:
            delay = self._poll_interval
        else:
            delay = decision.retry_after
        logger.warning("C2D poll failed: {}. Polling again in {:.2f}s".format(error, delay))
        return delay

    def _schedule_poll(self, delay):
        self._next_poll = time.monotonic() + delay

    def _get_headers(self, message=None):
        headers = {
            "Host": self._hostname,
            "Authorization": self._config.authentication_provider.get_authorization(),
            "User-Agent": urllib.parse.quote_plus(constant.USER_AGENT),
        }
        if message is not None:
            if message.message_id:
                headers["iothub-messageid"] = message.message_id
            if message.content_type:
                headers["iothub-contenttype"] = message.content_type
            if message.content_encoding:
                headers["iothub-contentencoding"] = message.content_encoding
            for key, value in message.custom_properties.items():
                headers[_app_property_prefix + key] = str(value)
        return headers

    def _on_response(self, callback, parse_response, error=None, response=None):
        if error is not None:
            callback(error=error)
            return
        if response["status_code"] >= 300:
            callback(error=_error_from_response(response))
            return
        body = None
        if parse_response and response["resp"]:
            try:
                body = json.loads(response["resp"])
            except ValueError as e:
                new_err = exceptions.ProtocolClientError("Response body is not valid JSON")
                new_err.__cause__ = e
                callback(error=new_err)
                return
        callback(response=body)


def _error_from_response(response):
    return http_map_error.translate_error(
        response["status_code"], response["reason"], response["headers"].get("Retry-After")
    )


def _extract_properties_from_headers(headers):
    properties = {}
    for key, value in headers.items():
        lower_key = key.lower()
        if lower_key in _system_property_headers:
            properties[_system_property_headers[lower_key]] = value
        elif lower_key.startswith(_app_property_prefix):
            properties[key[len(_app_property_prefix) :]] = value
    return properties

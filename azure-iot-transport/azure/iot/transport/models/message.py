# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains a class representing messages that are sent to the service.
"""
import enum
import json
import sys


class MessageKind(enum.Enum):
    TELEMETRY = "telemetry"
    TWIN_PATCH = "twin_patch"
    COMMAND_RESPONSE = "command_response"
    FILE_UPLOAD_REQUEST = "file_upload_request"


class DeliveryState(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class OutboundMessage(object):
    """Represents a message to IoTHub

    :ivar data: The data that constitutes the payload
    :ivar kind: The :class:`MessageKind` of the message
    :ivar custom_properties: Dictionary of custom message properties
    :ivar message_id: A user-settable identifier for the message
    :ivar content_encoding: Content encoding of the message data. Can be 'utf-8', 'utf-16' or 'utf-32'
    :ivar content_type: Content type property used to route messages with the message-body. Can be 'application/json'
    :ivar correlation_id: Identifier assigned when the message is submitted for delivery
    :ivar delivery_state: The :class:`DeliveryState` of the message
    :ivar submit_time: Monotonic time at which the message was submitted
    :ivar sent_time: Monotonic time at which the message was last handed to a transport
    :ivar retry_count: Number of times the message was handed to a transport after the first
    """

    def __init__(
        self,
        data,
        kind=MessageKind.TELEMETRY,
        message_id=None,
        content_encoding=None,
        content_type=None,
        custom_properties=None,
    ):
        """
        Initializer for OutboundMessage

        :param data: The data that constitutes the payload
        :param kind: The kind of message
        :type kind: :class:`MessageKind`
        :param str message_id: A user-settable identifier for the message
        :param str content_encoding: Content encoding of the message data
        :param str content_type: Content type property used to route the message body
        :param dict custom_properties: Application properties of the message
        """
        self.data = data
        self.kind = kind
        self.message_id = message_id
        self.content_encoding = content_encoding
        self.content_type = content_type
        self.custom_properties = dict(custom_properties) if custom_properties else {}

        # Command responses
        self.command_request_id = None
        self.command_status = None

        # File upload requests
        self.blob_name = None

        # Delivery bookkeeping
        self.correlation_id = None
        self.delivery_state = DeliveryState.PENDING
        self.submit_time = None
        self.sent_time = None
        self.retry_count = 0

    @classmethod
    def telemetry(cls, data, **kwargs):
        return cls(data, kind=MessageKind.TELEMETRY, **kwargs)

    @classmethod
    def twin_patch(cls, reported_properties_patch):
        return cls(
            reported_properties_patch,
            kind=MessageKind.TWIN_PATCH,
            content_type="application/json",
            content_encoding="utf-8",
        )

    @classmethod
    def command_response(cls, request_id, status, payload=None):
        message = cls(
            payload,
            kind=MessageKind.COMMAND_RESPONSE,
            content_type="application/json",
            content_encoding="utf-8",
        )
        message.command_request_id = request_id
        message.command_status = status
        return message

    @classmethod
    def file_upload_request(cls, blob_name):
        message = cls(
            {"blobName": blob_name},
            kind=MessageKind.FILE_UPLOAD_REQUEST,
            content_type="application/json",
            content_encoding="utf-8",
        )
        message.blob_name = blob_name
        return message

    @property
    def payload(self):
        """The data of the message, encoded as bytes for the wire"""
        if isinstance(self.data, (bytes, bytearray)):
            return bytes(self.data)
        encoding = self.content_encoding or "utf-8"
        if isinstance(self.data, str):
            return self.data.encode(encoding)
        return json.dumps(self.data).encode(encoding)

    def __str__(self):
        return str(self.data)

    def __repr__(self):
        return "OutboundMessage(kind={}, correlation_id={}, delivery_state={})".format(
            self.kind.name, self.correlation_id, self.delivery_state.name
        )

    def get_size(self):
        total = len(self.payload)
        if self.custom_properties:
            total = total + sum(
                sys.getsizeof(v) for v in self.custom_properties.values() if v is not None
            )
        return total

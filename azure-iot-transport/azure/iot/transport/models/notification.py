# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains a class representing notifications received from the service.
"""
import enum
import json


class NotificationKind(enum.Enum):
    C2D_MESSAGE = "c2d_message"
    DESIRED_PROPERTY_UPDATE = "desired_property_update"
    METHOD_INVOCATION = "method_invocation"
    FILE_UPLOAD_NOTIFICATION = "file_upload_notification"


class InboundNotification(object):
    """Represents a notification pushed or polled from IoTHub

    :ivar kind: The :class:`NotificationKind` of the notification
    :ivar payload: The raw bytes of the notification body
    :ivar delivery_tag: Protocol specific tag used to settle the notification with the service
    :ivar properties: Dictionary of properties that arrived with the notification
    :ivar request_id: For method invocations, the id the response must carry
    :ivar name: For method invocations, the name of the method
    """

    def __init__(self, kind, payload, delivery_tag=None, properties=None, request_id=None, name=None):
        self.kind = kind
        self.payload = payload
        self.delivery_tag = delivery_tag
        self.properties = properties if properties is not None else {}
        self.request_id = request_id
        self.name = name

    def json(self):
        """Decode the payload as a JSON document"""
        return json.loads(self.payload)

    def __repr__(self):
        return "InboundNotification(kind={}, delivery_tag={!r})".format(
            self.kind.name, self.delivery_tag
        )

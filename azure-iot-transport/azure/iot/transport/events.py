# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

CONNECTION_STATE_CHANGE = "CONNECTION_STATE_CHANGE"
NOTIFICATION_RECEIVED = "NOTIFICATION_RECEIVED"
BACKGROUND_EXCEPTION = "BACKGROUND_EXCEPTION"


class ClientEvent(object):
    """An event delivered to the single handler subscribed to a connection.

    ``values_for_user`` holds the payload of the event, which depends on its name:

    * CONNECTION_STATE_CHANGE: ``(state, reason)``
    * NOTIFICATION_RECEIVED: ``(notification,)``
    * BACKGROUND_EXCEPTION: ``(exception,)``
    """

    def __init__(self, name, values_for_user=None):
        self.name = name
        self.values_for_user = tuple(values_for_user) if values_for_user else ()

    def __repr__(self):
        return "ClientEvent({}, {!r})".format(self.name, self.values_for_user)

    @classmethod
    def connection_state_change(cls, state, reason=None):
        return cls(CONNECTION_STATE_CHANGE, (state, reason))

    @classmethod
    def notification_received(cls, notification):
        return cls(NOTIFICATION_RECEIVED, (notification,))

    @classmethod
    def background_exception(cls, exception):
        return cls(BACKGROUND_EXCEPTION, (exception,))

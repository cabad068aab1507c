# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest
import logging
import socks
from azure.iot.transport import events
from azure.iot.transport.connection import ConnectionState
from azure.iot.transport.events import ClientEvent
from azure.iot.transport.inbox import SyncInbox, InboxEmpty
from azure.iot.transport.models import (
    OutboundMessage,
    MessageKind,
    DeliveryState,
    InboundNotification,
    NotificationKind,
    ProxyOptions,
)

logging.basicConfig(level=logging.DEBUG)


@pytest.mark.describe("OutboundMessage")
class TestOutboundMessage(object):
    @pytest.mark.it("Starts PENDING with no correlation id and no retries")
    def test_initial_state(self):
        message = OutboundMessage("data")
        assert message.kind is MessageKind.TELEMETRY
        assert message.delivery_state is DeliveryState.PENDING
        assert message.correlation_id is None
        assert message.retry_count == 0
        assert message.custom_properties == {}

    @pytest.mark.it("Copies the custom properties it is given")
    def test_custom_properties(self):
        props = {"a": "1"}
        message = OutboundMessage.telemetry("data", custom_properties=props)
        props["b"] = "2"
        assert message.custom_properties == {"a": "1"}

    @pytest.mark.it("Encodes its data as bytes for the wire")
    @pytest.mark.parametrize(
        "data, content_encoding, expected",
        [
            pytest.param(b"\x00\x01", None, b"\x00\x01", id="Bytes"),
            pytest.param(bytearray(b"ab"), None, b"ab", id="Bytearray"),
            pytest.param("héllo", None, "héllo".encode("utf-8"), id="String"),
            pytest.param("héllo", "utf-16", "héllo".encode("utf-16"), id="String with encoding"),
            pytest.param({"temp": 21}, None, b'{"temp": 21}', id="JSON"),
        ],
    )
    def test_payload(self, data, content_encoding, expected):
        message = OutboundMessage(data, content_encoding=content_encoding)
        assert message.payload == expected

    @pytest.mark.it("Builds a reported properties patch as JSON")
    def test_twin_patch(self):
        message = OutboundMessage.twin_patch({"firmware": "1.2"})
        assert message.kind is MessageKind.TWIN_PATCH
        assert message.content_type == "application/json"
        assert message.payload == b'{"firmware": "1.2"}'

    @pytest.mark.it("Builds a command response carrying the request id and status")
    def test_command_response(self):
        message = OutboundMessage.command_response("42", 200, {"result": True})
        assert message.kind is MessageKind.COMMAND_RESPONSE
        assert message.command_request_id == "42"
        assert message.command_status == 200
        assert message.payload == b'{"result": true}'

    @pytest.mark.it("Builds a file upload request naming the blob")
    def test_file_upload_request(self):
        message = OutboundMessage.file_upload_request("photos/cat.jpg")
        assert message.kind is MessageKind.FILE_UPLOAD_REQUEST
        assert message.blob_name == "photos/cat.jpg"
        assert message.payload == b'{"blobName": "photos/cat.jpg"}'

    @pytest.mark.it("Includes the payload and custom properties in its size")
    def test_size(self):
        plain = OutboundMessage("12345")
        with_props = OutboundMessage("12345", custom_properties={"key": "value"})
        assert plain.get_size() == 5
        assert with_props.get_size() > 5

    @pytest.mark.it("Uses the data as its string representation")
    def test_str(self):
        assert str(OutboundMessage("some data")) == "some data"
        assert "TELEMETRY" in repr(OutboundMessage("some data"))


@pytest.mark.describe("InboundNotification")
class TestInboundNotification(object):
    @pytest.mark.it("Stores the kind, payload, tag and properties")
    def test_attributes(self):
        notification = InboundNotification(
            NotificationKind.METHOD_INVOCATION,
            b'{"x": 1}',
            delivery_tag=7,
            properties={"$.mid": "id"},
            request_id="3",
            name="reboot",
        )
        assert notification.kind is NotificationKind.METHOD_INVOCATION
        assert notification.delivery_tag == 7
        assert notification.properties == {"$.mid": "id"}
        assert notification.request_id == "3"
        assert notification.name == "reboot"
        assert notification.json() == {"x": 1}

    @pytest.mark.it("Defaults to empty properties")
    def test_defaults(self):
        notification = InboundNotification(NotificationKind.C2D_MESSAGE, b"")
        assert notification.properties == {}
        assert notification.delivery_tag is None


@pytest.mark.describe("ProxyOptions")
class TestProxyOptions(object):
    @pytest.mark.it("Accepts the proxy type as a string or a PySocks constant")
    @pytest.mark.parametrize(
        "proxy_type, expected_string, expected_socks",
        [
            pytest.param("HTTP", "HTTP", socks.HTTP, id="HTTP string"),
            pytest.param(socks.SOCKS4, "SOCKS4", socks.SOCKS4, id="SOCKS4 constant"),
            pytest.param("SOCKS5", "SOCKS5", socks.SOCKS5, id="SOCKS5 string"),
        ],
    )
    def test_proxy_type(self, proxy_type, expected_string, expected_socks):
        options = ProxyOptions(proxy_type, "fake.proxy")
        assert options.proxy_type == expected_string
        assert options.proxy_type_socks == expected_socks

    @pytest.mark.it("Derives the default port from the proxy type")
    @pytest.mark.parametrize(
        "proxy_type, expected_port", [("HTTP", 8080), ("SOCKS4", 1080), ("SOCKS5", 1080)]
    )
    def test_default_port(self, proxy_type, expected_port):
        assert ProxyOptions(proxy_type, "fake.proxy").proxy_port == expected_port

    @pytest.mark.it("Converts an explicit port to an int")
    def test_port(self):
        assert ProxyOptions("HTTP", "fake.proxy", proxy_port="3128").proxy_port == 3128

    @pytest.mark.it("Raises ValueError for an unknown proxy type")
    def test_invalid_type(self):
        with pytest.raises(ValueError):
            ProxyOptions("FTP", "fake.proxy")


@pytest.mark.describe("ClientEvent")
class TestClientEvent(object):
    @pytest.mark.it("Carries the new state and reason of a connection state change")
    def test_state_change(self, arbitrary_exception):
        event = ClientEvent.connection_state_change(ConnectionState.OPEN, arbitrary_exception)
        assert event.name == events.CONNECTION_STATE_CHANGE
        assert event.values_for_user == (ConnectionState.OPEN, arbitrary_exception)

    @pytest.mark.it("Carries the notification of a notification event")
    def test_notification(self):
        notification = InboundNotification(NotificationKind.C2D_MESSAGE, b"")
        event = ClientEvent.notification_received(notification)
        assert event.name == events.NOTIFICATION_RECEIVED
        assert event.values_for_user == (notification,)

    @pytest.mark.it("Carries the exception of a background exception event")
    def test_background_exception(self, arbitrary_exception):
        event = ClientEvent.background_exception(arbitrary_exception)
        assert event.name == events.BACKGROUND_EXCEPTION
        assert event.values_for_user == (arbitrary_exception,)


@pytest.mark.describe("SyncInbox")
class TestSyncInbox(object):
    @pytest.mark.it("Returns items in the order they were put")
    def test_fifo(self):
        inbox = SyncInbox()
        for i in range(3):
            inbox.put(i)
        assert len(inbox) == 3
        assert 1 in inbox
        assert [inbox.get(block=False) for _ in range(3)] == [0, 1, 2]
        assert inbox.empty()

    @pytest.mark.it("Raises InboxEmpty when empty, immediately or after the timeout")
    def test_empty(self):
        inbox = SyncInbox()
        with pytest.raises(InboxEmpty):
            inbox.get(block=False)
        with pytest.raises(InboxEmpty):
            inbox.get(block=True, timeout=0.01)

    @pytest.mark.it("Discards every item on .clear()")
    def test_clear(self):
        inbox = SyncInbox()
        inbox.put("a")
        inbox.put("b")
        inbox.clear()
        assert inbox.empty()

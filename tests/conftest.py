# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import threading
import time
import pytest
from azure.iot.transport.config import ClientConfig
from azure.iot.transport.inbox import SyncInbox, InboxEmpty
from azure.iot.transport.transport.abstract_transport import AbstractTransport

"""
NOTE: ALL (yes, ALL) tests need some kind of non-specific, arbitrary exception should use
one of the following fixtures. This is to ensure the tests operate correctly - many tests used to
raise Exception or BaseException directly to test arbitrary exceptions, but the result was
that exception handling was hiding other errors (also caught by an "except: Exception" block).

The solution is to use a subclass of Exception or BaseException that is not defined anywhere else,
thus guaranteeing that it will be unexpected and unhandled except by broad all-encompassing
handling. Furthermore, because the exception in question is derived from either Exception or
BaseException, but is not itself an instance of either, tests checking that the exception in
question is raised will not spuriously pass due to different exceptions being raised.

For consistency, and to prevent confusion, please do this ONLY by using one of the following
fixtures.
"""

fake_hostname = "fake.azure-devices.net"
fake_device_id = "fake_device"
fake_shared_access_key = "Zm9vYmFy"
fake_device_connection_string = "HostName={};DeviceId={};SharedAccessKey={}".format(
    fake_hostname, fake_device_id, fake_shared_access_key
)


@pytest.fixture
def arbitrary_exception():
    class ArbitraryException(Exception):
        pass

    e = ArbitraryException("arbitrary description")
    return e


@pytest.fixture
def arbitrary_base_exception():
    class ArbitraryBaseException(BaseException):
        pass

    e = ArbitraryBaseException("arbitrary description")
    return e


class FakeTransport(AbstractTransport):
    """In-memory transport.  Sends are recorded and only completed when a test says so."""

    def __init__(self, config):
        super().__init__(config)
        self.connect_errors = []
        self.connect_count = 0
        self.auto_ack = False
        self.closed = False
        self.sent = []
        self.acknowledged = []
        self.inbox = SyncInbox()
        self._lock = threading.Lock()

    def connect(self):
        self.connect_count += 1
        self.closed = False
        if self.connect_errors:
            raise self.connect_errors.pop(0)

    def send(self, message, callback):
        with self._lock:
            self.sent.append((message, callback))
        if self.auto_ack:
            callback()

    def receive(self, timeout):
        try:
            return self.inbox.get(block=True, timeout=timeout)
        except InboxEmpty:
            return None

    def acknowledge(self, notification, accept=True):
        self.acknowledged.append((notification, accept))

    def close(self):
        self.closed = True

    @property
    def sent_messages(self):
        with self._lock:
            return [m for (m, _) in self.sent]

    def ack(self, index, **kwargs):
        """Complete the send at index in the record"""
        with self._lock:
            callback = self.sent[index][1]
        callback(**kwargs)

    def drop(self, cause):
        self._notify_disconnected(cause)


@pytest.fixture
def fast_config_kwargs():
    return {
        "receive_poll_interval": 0.01,
        "sweep_interval": 0.01,
        "retry_base_interval": 0.01,
        "retry_max_interval": 0.05,
        "retry_max_duration": 5,
    }


@pytest.fixture
def client_config(fast_config_kwargs):
    return ClientConfig(connection_string=fake_device_connection_string, **fast_config_kwargs)


@pytest.fixture
def fake_transport(client_config):
    return FakeTransport(client_config)


@pytest.fixture
def transport_factory(mocker, fake_transport):
    return mocker.MagicMock(return_value=fake_transport)


@pytest.fixture
def wait_for():
    """Return a function polling a predicate until it is true or the timeout passes"""

    def _wait_for(predicate, timeout=5):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() >= deadline:
                raise AssertionError("Condition was not met within {}s".format(timeout))
            time.sleep(0.005)

    return _wait_for

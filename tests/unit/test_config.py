# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest
import logging
import time
import urllib.parse
from azure.iot.transport import constant
from azure.iot.transport import exceptions
from azure.iot.transport.auth import authentication_provider as ap
from azure.iot.transport.config import ClientConfig, create_authentication_provider
from azure.iot.transport.models import ProxyOptions

logging.basicConfig(level=logging.DEBUG)

fake_hostname = "fake.azure-devices.net"
fake_device_id = "fake_device"
fake_module_id = "fake_module"
fake_gateway_hostname = "fake-gateway"
device_cs = "HostName={};DeviceId={};SharedAccessKey=Zm9vYmFy".format(
    fake_hostname, fake_device_id
)
policy_cs = "HostName={};SharedAccessKeyName=service;SharedAccessKey=Zm9vYmFy".format(
    fake_hostname
)


def sastoken_string(resource_uri, expiry=None):
    if expiry is None:
        expiry = int(time.time()) + 3600
    return "SharedAccessSignature sr={}&sig=c2lnbmF0dXJl&se={}".format(
        urllib.parse.quote(resource_uri, safe=""), expiry
    )


class FakeSasCredential(object):
    def __init__(self, signature):
        self.signature = signature


class FakeTokenCredential(object):
    def get_token(self, *scopes):
        pass


@pytest.mark.describe("ClientConfig - Instantiation")
class TestClientConfigInstantiation(object):
    @pytest.mark.it("Reads the identity from a device connection string")
    def test_device_connection_string(self):
        config = ClientConfig(connection_string=device_cs)
        assert config.hostname == fake_hostname
        assert config.device_id == fake_device_id
        assert config.module_id is None
        assert config.gateway_hostname is None
        assert isinstance(config.authentication_provider, ap.SasTokenAuthenticationProvider)

    @pytest.mark.it("Reads the module and gateway from a module connection string")
    def test_module_connection_string(self):
        config = ClientConfig(
            connection_string=device_cs
            + ";ModuleId={};GatewayHostName={}".format(fake_module_id, fake_gateway_hostname)
        )
        assert config.module_id == fake_module_id
        assert config.gateway_hostname == fake_gateway_hostname
        assert config.authentication_provider.resource_uri.endswith("/modules/" + fake_module_id)

    @pytest.mark.it("Uses a caller managed SAS credential for a connection string with a signature")
    def test_connection_string_signature(self):
        token = sastoken_string(fake_hostname + "/devices/" + fake_device_id)
        config = ClientConfig(
            connection_string="HostName={};DeviceId={};SharedAccessSignature={}".format(
                fake_hostname, fake_device_id, token
            )
        )
        assert isinstance(config.authentication_provider, ap.SasCredentialAuthenticationProvider)
        assert config.authentication_provider.get_authorization() == token

    @pytest.mark.it("Accepts a SAS credential")
    def test_sas_credential(self):
        credential = FakeSasCredential(sastoken_string(fake_hostname + "/devices/d"))
        config = ClientConfig(
            hostname=fake_hostname, device_id=fake_device_id, sas_credential=credential
        )
        assert isinstance(config.authentication_provider, ap.SasCredentialAuthenticationProvider)

    @pytest.mark.it("Accepts a token credential")
    def test_token_credential(self):
        config = ClientConfig(
            hostname=fake_hostname, device_id=fake_device_id, token_credential=FakeTokenCredential()
        )
        assert isinstance(
            config.authentication_provider, ap.TokenCredentialAuthenticationProvider
        )

    @pytest.mark.it("Raises ConfigurationError unless exactly one credential is provided")
    @pytest.mark.parametrize(
        "kwargs",
        [
            pytest.param({}, id="None"),
            pytest.param(
                {"connection_string": device_cs, "token_credential": FakeTokenCredential()},
                id="Connection string and token credential",
            ),
            pytest.param(
                {
                    "sas_credential": FakeSasCredential("x"),
                    "token_credential": FakeTokenCredential(),
                },
                id="SAS credential and token credential",
            ),
        ],
    )
    def test_credential_count(self, kwargs):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(hostname=fake_hostname, device_id=fake_device_id, **kwargs)

    @pytest.mark.it("Raises ConfigurationError for a malformed credential")
    @pytest.mark.parametrize(
        "kwargs",
        [
            pytest.param({"connection_string": "garbage"}, id="Bad connection string"),
            pytest.param(
                {"connection_string": "HostName=h;DeviceId=d;SharedAccessKey=not base64!"},
                id="Bad shared access key",
            ),
            pytest.param(
                {"connection_string": "HostName=h;DeviceId=d;SharedAccessSignature=garbage"},
                id="Bad signature",
            ),
            pytest.param({"sas_credential": object()}, id="SAS credential without signature"),
            pytest.param(
                {"token_credential": object()}, id="Token credential without get_token"
            ),
        ],
    )
    def test_malformed_credential(self, kwargs):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(hostname=fake_hostname, device_id=fake_device_id, **kwargs)

    @pytest.mark.it("Uses default delivery, polling and retry settings")
    def test_defaults(self):
        config = ClientConfig(connection_string=device_cs)
        assert config.ack_timeout == constant.DEFAULT_ACK_TIMEOUT
        assert config.operation_timeout == constant.DEFAULT_OPERATION_TIMEOUT
        assert config.receive_poll_interval == constant.DEFAULT_RECEIVE_POLL_INTERVAL
        assert config.http_poll_interval == constant.DEFAULT_HTTP_POLL_INTERVAL
        assert config.sweep_interval == constant.DEFAULT_SWEEP_INTERVAL
        assert config.connection_retry is True
        assert config.retry_base_interval == constant.DEFAULT_RETRY_BASE_INTERVAL
        assert config.retry_max_interval == constant.DEFAULT_RETRY_MAX_INTERVAL
        assert config.retry_max_duration == constant.DEFAULT_RETRY_MAX_DURATION
        assert config.retry_jitter == constant.DEFAULT_RETRY_JITTER
        assert config.keep_alive == constant.DEFAULT_KEEPALIVE
        assert config.websockets is False
        assert config.proxy_options is None

    @pytest.mark.it("Raises ConfigurationError if a timing option is not a positive number")
    @pytest.mark.parametrize(
        "option",
        [
            "ack_timeout",
            "operation_timeout",
            "receive_poll_interval",
            "http_poll_interval",
            "sweep_interval",
            "retry_base_interval",
            "retry_max_interval",
            "retry_max_duration",
        ],
    )
    @pytest.mark.parametrize("value", [0, -1, "5", True])
    def test_invalid_timing(self, option, value):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(connection_string=device_cs, **{option: value})

    @pytest.mark.it("Accepts a retry jitter between 0 and 1/3")
    @pytest.mark.parametrize("value", [0, 0.1, 1.0 / 3])
    def test_retry_jitter(self, value):
        config = ClientConfig(connection_string=device_cs, retry_jitter=value)
        assert config.retry_jitter == value

    @pytest.mark.it("Raises ConfigurationError if the retry jitter is not a number from 0 to 1/3")
    @pytest.mark.parametrize("value", [-0.1, 0.5, 1, "0.2", None, True])
    def test_invalid_retry_jitter(self, value):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(connection_string=device_cs, retry_jitter=value)

    @pytest.mark.it("Stores proxy options")
    def test_proxy(self):
        proxy = ProxyOptions("HTTP", "fake.proxy")
        config = ClientConfig(connection_string=device_cs, proxy_options=proxy)
        assert config.proxy_options is proxy


@pytest.mark.describe("ClientConfig - Cipher and keep alive")
class TestClientConfigProtocolOptions(object):
    @pytest.mark.it("Converts the cipher to OpenSSL list format")
    @pytest.mark.parametrize(
        "cipher, expected",
        [
            pytest.param("DHE-RSA-AES128-SHA", "DHE-RSA-AES128-SHA", id="String"),
            pytest.param("dhe_rsa_aes128_sha", "DHE-RSA-AES128-SHA", id="Lowercase underscores"),
            pytest.param(
                ["DHE-RSA-AES128-SHA", "ECDHE-ECDSA-AES128-GCM-SHA256"],
                "DHE-RSA-AES128-SHA:ECDHE-ECDSA-AES128-GCM-SHA256",
                id="List",
            ),
        ],
    )
    def test_cipher(self, cipher, expected):
        assert ClientConfig(connection_string=device_cs, cipher=cipher).cipher == expected

    @pytest.mark.it("Raises ConfigurationError for a cipher of an invalid type")
    def test_invalid_cipher(self):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(connection_string=device_cs, cipher=123)

    @pytest.mark.it("Replaces a non-positive keep alive with the default")
    @pytest.mark.parametrize("keep_alive", [0, -5])
    def test_keep_alive_default(self, keep_alive):
        config = ClientConfig(connection_string=device_cs, keep_alive=keep_alive)
        assert config.keep_alive == constant.DEFAULT_KEEPALIVE

    @pytest.mark.it("Caps the keep alive at the maximum")
    def test_keep_alive_max(self):
        config = ClientConfig(
            connection_string=device_cs, keep_alive=constant.MAX_KEEP_ALIVE_SECS + 100
        )
        assert config.keep_alive == constant.MAX_KEEP_ALIVE_SECS

    @pytest.mark.it("Raises ConfigurationError for a keep alive which is not a number")
    def test_keep_alive_type(self):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig(connection_string=device_cs, keep_alive="60")


@pytest.mark.describe("ClientConfig - Factories")
class TestClientConfigFactories(object):
    @pytest.mark.it("Creates a config from a connection string with extra options")
    def test_from_connection_string(self):
        config = ClientConfig.from_connection_string(device_cs, ack_timeout=7)
        assert config.device_id == fake_device_id
        assert config.ack_timeout == 7

    @pytest.mark.it("Creates a config from a SAS token, reading the identity from its resource")
    @pytest.mark.parametrize(
        "resource, module_id",
        [
            pytest.param(fake_hostname + "/devices/" + fake_device_id, None, id="Device"),
            pytest.param(
                fake_hostname + "/devices/" + fake_device_id + "/modules/" + fake_module_id,
                fake_module_id,
                id="Module",
            ),
        ],
    )
    def test_from_sastoken(self, resource, module_id):
        token = sastoken_string(resource)
        config = ClientConfig.from_sastoken(token)
        assert config.hostname == fake_hostname
        assert config.device_id == fake_device_id
        assert config.module_id == module_id
        assert config.authentication_provider.get_authorization() == token

    @pytest.mark.it("Raises ConfigurationError for an invalid or expired SAS token")
    @pytest.mark.parametrize(
        "token",
        [
            pytest.param("garbage", id="Not a token"),
            pytest.param(sastoken_string(fake_hostname), id="No device in resource"),
            pytest.param(
                sastoken_string(fake_hostname + "/devices/d/other/m"), id="Unknown resource"
            ),
            pytest.param(
                sastoken_string(fake_hostname + "/devices/d", expiry=1000), id="Expired"
            ),
        ],
    )
    def test_from_sastoken_invalid(self, token):
        with pytest.raises(exceptions.ConfigurationError):
            ClientConfig.from_sastoken(token)

    @pytest.mark.it("Creates a config from a token credential")
    def test_from_token_credential(self):
        credential = FakeTokenCredential()
        config = ClientConfig.from_token_credential(fake_hostname, fake_device_id, credential)
        assert config.hostname == fake_hostname
        assert config.device_id == fake_device_id


@pytest.mark.describe("ClientConfig - .validate()")
class TestClientConfigValidate(object):
    @pytest.mark.it("Passes for a config with a hostname, device and live credential")
    def test_valid(self):
        ClientConfig(connection_string=device_cs).validate()

    @pytest.mark.it("Raises ConfigurationError without a device id")
    def test_no_device(self):
        config = ClientConfig(hostname=fake_hostname, token_credential=FakeTokenCredential())
        with pytest.raises(exceptions.ConfigurationError):
            config.validate()

    @pytest.mark.it("Raises ConfigurationError once the SAS credential has expired")
    def test_expired(self):
        credential = FakeSasCredential(sastoken_string(fake_hostname + "/devices/d"))
        config = ClientConfig(
            hostname=fake_hostname, device_id=fake_device_id, sas_credential=credential
        )
        config.validate()
        credential.signature = sastoken_string(fake_hostname + "/devices/d", expiry=1000)
        with pytest.raises(exceptions.ConfigurationError):
            config.validate()


@pytest.mark.describe("create_authentication_provider()")
class TestCreateAuthenticationProvider(object):
    @pytest.mark.it("Creates a hub level provider from a shared access policy connection string")
    def test_policy(self):
        provider = create_authentication_provider(connection_string=policy_cs)
        assert provider.device_id is None
        assert provider.resource_uri == fake_hostname
        assert "skn=service" in provider.get_authorization()

    @pytest.mark.it("Creates a provider from a hostname and SAS credential")
    def test_sas_credential(self):
        credential = FakeSasCredential(sastoken_string(fake_hostname))
        provider = create_authentication_provider(
            hostname=fake_hostname, sas_credential=credential
        )
        assert provider.resource_uri == fake_hostname

    @pytest.mark.it("Creates a provider from a hostname and token credential")
    def test_token_credential(self):
        provider = create_authentication_provider(
            hostname=fake_hostname, token_credential=FakeTokenCredential()
        )
        assert isinstance(provider, ap.TokenCredentialAuthenticationProvider)

    @pytest.mark.it("Raises ConfigurationError for a credential without a hostname")
    def test_no_hostname(self):
        with pytest.raises(exceptions.ConfigurationError):
            create_authentication_provider(token_credential=FakeTokenCredential())

    @pytest.mark.it("Raises ConfigurationError unless exactly one credential is provided")
    def test_credential_count(self):
        with pytest.raises(exceptions.ConfigurationError):
            create_authentication_provider(hostname=fake_hostname)
        with pytest.raises(exceptions.ConfigurationError):
            create_authentication_provider(
                connection_string=policy_cs, token_credential=FakeTokenCredential()
            )

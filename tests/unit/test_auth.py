# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest
import logging
import time
import urllib.parse
from azure.iot.transport.auth import authentication_provider as ap
from azure.iot.transport.auth.sastoken import (
    RenewableSasToken,
    NonRenewableSasToken,
    SasTokenError,
)
from azure.iot.transport.auth.signing_mechanism import SymmetricKeySigningMechanism

logging.basicConfig(level=logging.DEBUG)

fake_hostname = "fake.azure-devices.net"
fake_device_id = "fake_device"
fake_module_id = "fake_module"
fake_key = "NMgJDvdKTxjLi+xBxxkDDEwDJxEvOE5u8BiT0mVgPeg="
fake_signed_data = "ajsc8nLKacIjGsYyB4iYDFCZaRMmmDrUuY5lncYDYPI="


def sastoken_string(resource_uri, expiry):
    return "SharedAccessSignature sr={}&sig={}&se={}".format(
        urllib.parse.quote(resource_uri, safe=""), urllib.parse.quote(fake_signed_data), expiry
    )


def token_fields(token_str):
    kv_string = token_str.split(" ", 1)[1]
    return dict(kv.split("=", 1) for kv in kv_string.split("&"))


@pytest.fixture
def signing_mechanism(mocker):
    mechanism = mocker.MagicMock()
    mechanism.sign.return_value = fake_signed_data
    return mechanism


@pytest.mark.describe("SymmetricKeySigningMechanism")
class TestSymmetricKeySigningMechanism(object):
    @pytest.mark.it("Accepts a base64 encoded key as a string or as bytes")
    @pytest.mark.parametrize("key", [fake_key, fake_key.encode("utf-8")])
    def test_key_types(self, key):
        assert SymmetricKeySigningMechanism(key).sign("data") == SymmetricKeySigningMechanism(
            fake_key
        ).sign("data")

    @pytest.mark.it("Raises ValueError if the key is not valid base64")
    @pytest.mark.parametrize("key", ["not a key", "YWJjx"])
    def test_invalid_key(self, key):
        with pytest.raises(ValueError):
            SymmetricKeySigningMechanism(key)

    @pytest.mark.it("Signs strings and bytes alike with HMAC-SHA256, base64 encoded")
    @pytest.mark.parametrize("data", ["sign this message", b"sign this message"])
    def test_sign(self, data):
        signature = SymmetricKeySigningMechanism(fake_key).sign(data)
        assert signature == "8NJRMT83CcplGrAGaUVIUM/md5914KpWVNngSVoF9/M="


@pytest.mark.describe("RenewableSasToken")
class TestRenewableSasToken(object):
    @pytest.mark.it("Builds a token for the url-encoded resource expiring after the TTL")
    def test_build(self, signing_mechanism):
        before = int(time.time())
        token = RenewableSasToken("host/devices/dev", signing_mechanism, ttl=100)
        fields = token_fields(str(token))
        assert fields["sr"] == "host%2Fdevices%2Fdev"
        assert urllib.parse.unquote(fields["sig"]) == fake_signed_data
        assert before + 100 <= token.expiry_time <= int(time.time()) + 100
        assert "skn" not in fields
        assert signing_mechanism.sign.call_args[0][0] == "host%2Fdevices%2Fdev\n{}".format(
            token.expiry_time
        )

    @pytest.mark.it("Includes the key name for a shared access policy token")
    def test_key_name(self, signing_mechanism):
        token = RenewableSasToken("host", signing_mechanism, key_name="service")
        assert token_fields(str(token))["skn"] == "service"

    @pytest.mark.it("Gives the token a new expiry when refreshed")
    def test_refresh(self, signing_mechanism, mocker):
        token = RenewableSasToken("host", signing_mechanism, ttl=100)
        later = token.expiry_time + 1000
        mocker.patch.object(time, "time", return_value=later)
        assert token.is_expired()
        token.refresh()
        assert token.expiry_time == later + 100
        assert not token.is_expired()
        assert signing_mechanism.sign.call_count == 2

    @pytest.mark.it("Raises SasTokenError if signing fails")
    def test_sign_fails(self, signing_mechanism, arbitrary_exception):
        signing_mechanism.sign.side_effect = arbitrary_exception
        with pytest.raises(SasTokenError) as e_info:
            RenewableSasToken("host", signing_mechanism)
        assert e_info.value.__cause__ is arbitrary_exception


@pytest.mark.describe("NonRenewableSasToken")
class TestNonRenewableSasToken(object):
    @pytest.mark.it("Exposes the decoded resource URI and expiry of a token string")
    def test_parse(self):
        token_str = sastoken_string("host/devices/dev", 12321312)
        token = NonRenewableSasToken(token_str)
        assert str(token) == token_str
        assert token.resource_uri == "host/devices/dev"
        assert token.expiry_time == 12321312
        assert token.is_expired()

    @pytest.mark.it("Raises SasTokenError for a string which is not a SAS token")
    @pytest.mark.parametrize(
        "token_str",
        [
            pytest.param(None, id="Not a string"),
            pytest.param("sr=a&sig=b&se=1", id="Missing prefix"),
            pytest.param("SharedAccessSignature sr=a&sig=b", id="Missing expiry"),
            pytest.param("SharedAccessSignature sr=a&sig=b&se=1&xyz=3", id="Unexpected field"),
            pytest.param("SharedAccessSignature sr=a&sig=b&se=soon", id="Expiry not a number"),
            pytest.param("SharedAccessSignature sr=a&sig", id="Incorrectly formatted"),
        ],
    )
    def test_invalid(self, token_str):
        with pytest.raises(SasTokenError):
            NonRenewableSasToken(token_str)


@pytest.mark.describe("SasTokenAuthenticationProvider")
class TestSasTokenAuthenticationProvider(object):
    @pytest.mark.it("Scopes the token to the device or module resource")
    @pytest.mark.parametrize(
        "module_id, expected_uri",
        [
            pytest.param(None, fake_hostname + "/devices/" + fake_device_id, id="Device"),
            pytest.param(
                fake_module_id,
                fake_hostname + "/devices/" + fake_device_id + "/modules/" + fake_module_id,
                id="Module",
            ),
        ],
    )
    def test_resource_uri(self, module_id, expected_uri):
        provider = ap.SasTokenAuthenticationProvider(
            fake_hostname, fake_key, device_id=fake_device_id, module_id=module_id
        )
        assert provider.resource_uri == expected_uri
        assert NonRenewableSasToken(provider.get_authorization()).resource_uri == expected_uri

    @pytest.mark.it("Scopes a shared access policy token to the hub")
    def test_policy(self):
        provider = ap.SasTokenAuthenticationProvider(
            fake_hostname, fake_key, shared_access_key_name="service"
        )
        fields = token_fields(provider.get_authorization())
        assert fields["sr"] == fake_hostname
        assert fields["skn"] == "service"

    @pytest.mark.it("Reuses the token until it comes within the renewal margin of expiry")
    def test_renewal(self, mocker):
        provider = ap.SasTokenAuthenticationProvider(
            fake_hostname, fake_key, device_id=fake_device_id, ttl=3600
        )
        first = provider.get_authorization()
        assert provider.get_authorization() == first

        expiry = NonRenewableSasToken(first).expiry_time
        mocker.patch.object(time, "time", return_value=expiry - 60)
        renewed = provider.get_authorization()
        assert renewed != first
        assert NonRenewableSasToken(renewed).expiry_time == expiry - 60 + 3600

    @pytest.mark.it("Never reports the credential as expired")
    def test_not_expired(self):
        provider = ap.SasTokenAuthenticationProvider(fake_hostname, fake_key, fake_device_id)
        assert not provider.is_expired()


@pytest.mark.describe("SasCredentialAuthenticationProvider")
class TestSasCredentialAuthenticationProvider(object):
    @pytest.mark.it("Reads the signature of the credential on every call")
    def test_reads_signature(self):
        expiry = int(time.time()) + 3600
        credential = ap.SasTokenCredential(sastoken_string("host/devices/a", expiry))
        provider = ap.SasCredentialAuthenticationProvider(fake_hostname, credential)
        assert provider.get_authorization() == credential.signature

        credential.update(sastoken_string("host/devices/b", expiry))
        assert provider.get_authorization() == credential.signature

    @pytest.mark.it("Raises SasTokenError from .get_authorization() when the token has expired")
    def test_expired(self):
        credential = ap.SasTokenCredential(sastoken_string("host/devices/a", 1000))
        provider = ap.SasCredentialAuthenticationProvider(fake_hostname, credential)
        assert provider.is_expired()
        with pytest.raises(SasTokenError):
            provider.get_authorization()

    @pytest.mark.it("Reports an unparseable signature as expired")
    def test_garbage(self):
        provider = ap.SasCredentialAuthenticationProvider(
            fake_hostname, ap.SasTokenCredential("garbage")
        )
        assert provider.is_expired()


@pytest.mark.describe("TokenCredentialAuthenticationProvider")
class TestTokenCredentialAuthenticationProvider(object):
    @pytest.fixture
    def token_credential(self, mocker):
        credential = mocker.MagicMock()
        credential.get_token.return_value.token = "fake-bearer-token"
        credential.get_token.return_value.expires_on = time.time() + 3600
        return credential

    @pytest.mark.it("Presents a bearer token acquired for the IoT Hub scope")
    def test_bearer(self, token_credential, mocker):
        provider = ap.TokenCredentialAuthenticationProvider(
            fake_hostname, token_credential, device_id=fake_device_id
        )
        assert provider.get_authorization() == "Bearer fake-bearer-token"
        assert token_credential.get_token.call_args == mocker.call(ap.IOTHUB_TOKEN_SCOPE)

    @pytest.mark.it("Caches the token until it comes within the renewal margin of expiry")
    def test_cache(self, token_credential):
        provider = ap.TokenCredentialAuthenticationProvider(fake_hostname, token_credential)
        provider.get_authorization()
        provider.get_authorization()
        assert token_credential.get_token.call_count == 1

        token_credential.get_token.return_value.expires_on = time.time() + 60
        provider._access_token = None
        provider.get_authorization()
        provider.get_authorization()
        assert token_credential.get_token.call_count == 3

    @pytest.mark.it("Raises SasTokenError if the credential fails to provide a token")
    def test_failure(self, token_credential, arbitrary_exception):
        token_credential.get_token.side_effect = arbitrary_exception
        provider = ap.TokenCredentialAuthenticationProvider(fake_hostname, token_credential)
        with pytest.raises(SasTokenError) as e_info:
            provider.get_authorization()
        assert e_info.value.__cause__ is arbitrary_exception

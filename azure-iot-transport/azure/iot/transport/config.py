# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the configuration shared by every transport and by the connection core"""

import logging
import time
from typing import Any, Dict, Optional
from . import constant
from . import connection_string as cs
from . import exceptions
from . import retry_policy
from .auth import sastoken as st
from .auth import authentication_provider as ap

logger = logging.getLogger(__name__)


class ClientConfig(object):
    """Class for storing all configurations/options shared across the transport core.

    Exactly one credential must be supplied: a connection string, a SAS credential (an object
    with a ``signature`` attribute) or a token credential (an object with a ``get_token()``
    method). The combination is checked when the config is constructed.
    """

    def __init__(
        self,
        hostname: Optional[str] = None,
        device_id: Optional[str] = None,
        module_id: Optional[str] = None,
        gateway_hostname: Optional[str] = None,
        connection_string: Optional[str] = None,
        sas_credential: Any = None,
        token_credential: Any = None,
        sastoken_ttl: int = constant.DEFAULT_SASTOKEN_TTL,
        server_verification_cert: Optional[str] = None,
        websockets: bool = False,
        cipher: Any = "",
        proxy_options: Any = None,
        keep_alive: int = constant.DEFAULT_KEEPALIVE,
        ack_timeout: float = constant.DEFAULT_ACK_TIMEOUT,
        operation_timeout: float = constant.DEFAULT_OPERATION_TIMEOUT,
        receive_poll_interval: float = constant.DEFAULT_RECEIVE_POLL_INTERVAL,
        http_poll_interval: float = constant.DEFAULT_HTTP_POLL_INTERVAL,
        sweep_interval: float = constant.DEFAULT_SWEEP_INTERVAL,
        connection_retry: bool = True,
        retry_base_interval: float = constant.DEFAULT_RETRY_BASE_INTERVAL,
        retry_max_interval: float = constant.DEFAULT_RETRY_MAX_INTERVAL,
        retry_max_duration: float = constant.DEFAULT_RETRY_MAX_DURATION,
        retry_jitter: float = constant.DEFAULT_RETRY_JITTER,
    ) -> None:
        """Initializer for ClientConfig

        :param str hostname: The hostname being connected to
        :param str device_id: The device identity
        :param str module_id: The module identity (optional)
        :param str gateway_hostname: The gateway hostname optionally being used
        :param str connection_string: Connection string containing a key or a SAS token
        :param sas_credential: Credential providing a caller-managed SAS token
        :param token_credential: Credential providing bearer tokens
        :param int sastoken_ttl: Lifetime of SAS tokens generated from a shared access key
        :param str server_verification_cert: The trusted certificate chain.
            Necessary when using connecting to an endpoint which has a non-standard root of trust,
            such as a protocol gateway.
        :param bool websockets: Enabling/disabling websockets in MQTT. This feature is relevant
            if a firewall blocks port 8883 from use.
        :param cipher: Optional cipher suite(s) for TLS/SSL, as a string in
            "OpenSSL cipher list format" or as a list of cipher suite strings.
        :type cipher: str or list(str)
        :param proxy_options: Details of proxy configuration
        :type proxy_options: :class:`azure.iot.transport.models.ProxyOptions`
        :param int keep_alive: Maximum period in seconds between communications with the broker.
        :param float ack_timeout: Seconds a sent message may wait for acknowledgement before
            it is sent again
        :param float operation_timeout: Default seconds before a submitted operation fails with
            OperationTimeout
        :param float receive_poll_interval: Seconds each receive call blocks for
        :param float http_poll_interval: Seconds between polls for cloud to device messages
            over HTTPS
        :param float sweep_interval: Seconds between scans for expired operations
        :param bool connection_retry: Attempt to re-establish a dropped connection
        :param float retry_base_interval: First backoff interval of the retry policy
        :param float retry_max_interval: Cap on any single backoff interval
        :param float retry_max_duration: Cap on the cumulative backoff of a retry sequence
        :param float retry_jitter: Jitter fraction applied to each backoff interval, between 0
            and 1/3

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the credentials or
            options are invalid
        """
        supplied = [c for c in (connection_string, sas_credential, token_credential) if c]
        if len(supplied) != 1:
            raise exceptions.ConfigurationError(
                "Exactly one of 'connection_string', 'sas_credential' or 'token_credential' must be provided"
            )

        if connection_string:
            try:
                cs_obj = cs.ConnectionString(connection_string)
            except (ValueError, TypeError) as e:
                raise exceptions.ConfigurationError("Invalid connection string") from e
            hostname = cs_obj[cs.HOST_NAME]
            device_id = cs_obj.get(cs.DEVICE_ID)
            module_id = cs_obj.get(cs.MODULE_ID)
            gateway_hostname = cs_obj.get(cs.GATEWAY_HOST_NAME, gateway_hostname)

        # Network
        self.hostname = hostname
        self.gateway_hostname = gateway_hostname
        self.device_id = device_id
        self.module_id = module_id

        # Auth
        if connection_string:
            self.authentication_provider = _provider_from_connection_string(
                cs_obj, sastoken_ttl
            )
        elif sas_credential:
            if not hasattr(sas_credential, "signature"):
                raise exceptions.ConfigurationError("'sas_credential' has no 'signature'")
            self.authentication_provider = ap.SasCredentialAuthenticationProvider(
                hostname=hostname,
                sas_credential=sas_credential,
                device_id=device_id,
                module_id=module_id,
            )
        else:
            if not callable(getattr(token_credential, "get_token", None)):
                raise exceptions.ConfigurationError("'token_credential' has no 'get_token()'")
            self.authentication_provider = ap.TokenCredentialAuthenticationProvider(
                hostname=hostname,
                token_credential=token_credential,
                device_id=device_id,
                module_id=module_id,
            )
        self.server_verification_cert = server_verification_cert

        # Protocol
        self.websockets = websockets
        try:
            self.cipher = self._sanitize_cipher(cipher)
        except TypeError as e:
            raise exceptions.ConfigurationError("Invalid cipher") from e
        self.proxy_options = proxy_options
        try:
            self.keep_alive = self._rectify_keep_alive(keep_alive)
        except TypeError as e:
            raise exceptions.ConfigurationError("Invalid keep alive") from e

        # Delivery
        self.ack_timeout = _positive_number("ack_timeout", ack_timeout)
        self.operation_timeout = _positive_number("operation_timeout", operation_timeout)
        self.receive_poll_interval = _positive_number(
            "receive_poll_interval", receive_poll_interval
        )
        self.http_poll_interval = _positive_number("http_poll_interval", http_poll_interval)
        self.sweep_interval = _positive_number("sweep_interval", sweep_interval)

        # Retry
        self.connection_retry = connection_retry
        self.retry_base_interval = _positive_number("retry_base_interval", retry_base_interval)
        self.retry_max_interval = _positive_number("retry_max_interval", retry_max_interval)
        self.retry_max_duration = _positive_number("retry_max_duration", retry_max_duration)
        self.retry_jitter = _jitter(retry_jitter)

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs: Any) -> "ClientConfig":
        """Create a config from a device or module connection string"""
        return cls(connection_string=connection_string, **kwargs)

    @classmethod
    def from_sastoken(cls, sastoken: str, **kwargs: Any) -> "ClientConfig":
        """Create a config from a pre-created SAS token string.

        The hostname, device id and module id are read from the token's resource URI. The token
        cannot be renewed; update it through the returned config's credential.
        """
        try:
            sastoken_o = st.NonRenewableSasToken(sastoken)
            vals = _extract_sas_uri_values(sastoken_o.resource_uri)
        except (st.SasTokenError, ValueError) as e:
            raise exceptions.ConfigurationError("Invalid SasToken provided") from e
        if sastoken_o.expiry_time < int(time.time()):
            raise exceptions.ConfigurationError("Provided SasToken has already expired")
        return cls(
            hostname=vals["hostname"],
            device_id=vals["device_id"],
            module_id=vals["module_id"],
            sas_credential=ap.SasTokenCredential(sastoken),
            **kwargs
        )

    @classmethod
    def from_token_credential(
        cls, hostname: str, device_id: str, token_credential: Any, **kwargs: Any
    ) -> "ClientConfig":
        """Create a config from a token credential"""
        return cls(
            hostname=hostname, device_id=device_id, token_credential=token_credential, **kwargs
        )

    def validate(self) -> None:
        """Check that this config can be used to open a device connection.

        :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the hostname or
            device id is missing, or if the credential has expired
        """
        if not self.hostname:
            raise exceptions.ConfigurationError("No hostname configured")
        if not self.device_id:
            raise exceptions.ConfigurationError("No device id configured")
        if self.authentication_provider.is_expired():
            raise exceptions.ConfigurationError("Credential has expired")

    @staticmethod
    def _sanitize_cipher(cipher):
        """Sanitize the cipher input and convert to a string in OpenSSL list format"""
        if isinstance(cipher, list):
            cipher = ":".join(cipher)

        if isinstance(cipher, str):
            cipher = cipher.upper()
            cipher = cipher.replace("_", "-")
        else:
            raise TypeError("Invalid type for 'cipher'")

        return cipher

    @staticmethod
    def _rectify_keep_alive(keep_alive):
        if keep_alive and not isinstance(keep_alive, (int, float)):
            raise TypeError("Invalid type for 'keep alive'. Permissible types are number.")

        if keep_alive is not None and keep_alive <= 0:
            # Not allowing a keep alive of 0 as this would mean frequent ping exchanges.
            logger.error(
                "'keep alive' can not be zero or negative. A default value of 'keep alive' will be used by the protocol."
            )
            keep_alive = constant.DEFAULT_KEEPALIVE
        elif keep_alive and keep_alive > constant.MAX_KEEP_ALIVE_SECS:
            logger.error(
                "'keep alive' can not be more than 29 minutes. 'keep alive' will be set to max value of 29 minutes to continue."
            )
            keep_alive = constant.MAX_KEEP_ALIVE_SECS

        return keep_alive


def create_authentication_provider(
    connection_string=None, hostname=None, sas_credential=None, token_credential=None
):
    """Create an authentication provider for a hub-level (shared access policy) identity.

    :raises: :class:`azure.iot.transport.exceptions.ConfigurationError` if the credentials are
        missing, mixed, or malformed
    """
    supplied = [c for c in (connection_string, sas_credential, token_credential) if c]
    if len(supplied) != 1:
        raise exceptions.ConfigurationError(
            "Exactly one of 'connection_string', 'sas_credential' or 'token_credential' must be provided"
        )
    if connection_string:
        try:
            cs_obj = cs.ConnectionString(connection_string)
        except (ValueError, TypeError) as e:
            raise exceptions.ConfigurationError("Invalid connection string") from e
        return _provider_from_connection_string(cs_obj, constant.DEFAULT_SASTOKEN_TTL)
    if not hostname:
        raise exceptions.ConfigurationError("No hostname provided")
    if sas_credential:
        if not hasattr(sas_credential, "signature"):
            raise exceptions.ConfigurationError("'sas_credential' has no 'signature'")
        return ap.SasCredentialAuthenticationProvider(
            hostname=hostname, sas_credential=sas_credential
        )
    if not callable(getattr(token_credential, "get_token", None)):
        raise exceptions.ConfigurationError("'token_credential' has no 'get_token()'")
    return ap.TokenCredentialAuthenticationProvider(
        hostname=hostname, token_credential=token_credential
    )


def _provider_from_connection_string(cs_obj, sastoken_ttl):
    hostname = cs_obj[cs.HOST_NAME]
    device_id = cs_obj.get(cs.DEVICE_ID)
    module_id = cs_obj.get(cs.MODULE_ID)
    if cs_obj.get(cs.SHARED_ACCESS_SIGNATURE):
        try:
            st.NonRenewableSasToken(cs_obj[cs.SHARED_ACCESS_SIGNATURE])
        except st.SasTokenError as e:
            raise exceptions.ConfigurationError("Invalid SasToken in connection string") from e
        return ap.SasCredentialAuthenticationProvider(
            hostname=hostname,
            sas_credential=ap.SasTokenCredential(cs_obj[cs.SHARED_ACCESS_SIGNATURE]),
            device_id=device_id,
            module_id=module_id,
        )
    try:
        return ap.SasTokenAuthenticationProvider(
            hostname=hostname,
            shared_access_key=cs_obj[cs.SHARED_ACCESS_KEY],
            device_id=device_id,
            module_id=module_id,
            shared_access_key_name=cs_obj.get(cs.SHARED_ACCESS_KEY_NAME),
            ttl=sastoken_ttl,
        )
    except (ValueError, st.SasTokenError) as e:
        raise exceptions.ConfigurationError("Unable to create SasToken from connection string") from e


def _extract_sas_uri_values(uri: str) -> Dict[str, Any]:
    d = {}
    items = uri.split("/")
    if len(items) != 3 and len(items) != 5:
        raise ValueError("Invalid SAS URI")
    if items[1] != "devices":
        raise ValueError("Cannot extract device id from SAS URI")
    if len(items) > 3 and items[3] != "modules":
        raise ValueError("Cannot extract module id from SAS URI")
    d["hostname"] = items[0]
    d["device_id"] = items[2]
    try:
        d["module_id"] = items[4]
    except IndexError:
        d["module_id"] = None
    return d


def _positive_number(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise exceptions.ConfigurationError("Invalid type for '{}'. Must be a number.".format(name))
    if value <= 0:
        raise exceptions.ConfigurationError("'{}' must be greater than 0".format(name))
    return value


def _jitter(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise exceptions.ConfigurationError("Invalid type for 'retry_jitter'. Must be a number.")
    if not 0 <= value <= retry_policy.MAX_JITTER:
        raise exceptions.ConfigurationError(
            "'retry_jitter' must be between 0 and {:.3f}".format(retry_policy.MAX_JITTER)
        )
    return value

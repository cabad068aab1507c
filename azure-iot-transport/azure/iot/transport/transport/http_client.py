# --------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""A wrapper around a requests Session which translates requests failures into exceptions"""

import logging
import ssl
import requests  # type: ignore
from .. import constant
from .. import exceptions
from ..dispatch import SerialDispatcher

logger = logging.getLogger(__name__)


class HTTPClient(object):
    """
    A wrapper class that provides an implementation-agnostic HTTP interface.
    """

    def __init__(
        self,
        hostname,
        server_verification_cert=None,
        cipher=None,
        proxy_options=None,
        timeout=constant.HTTP_TIMEOUT,
    ):
        """
        Constructor to instantiate an HTTP protocol wrapper.

        :param str hostname: Hostname or IP address of the remote host.
        :param str server_verification_cert: Certificate which can be used to validate a server-side TLS connection (optional).
        :param str cipher: Cipher string in OpenSSL cipher list format (optional)
        :param proxy_options: Options for sending traffic through proxy servers.
        :param float timeout: Seconds before a request is abandoned.
        """
        self._hostname = hostname
        self._server_verification_cert = server_verification_cert
        self._cipher = cipher
        self._proxies = format_proxies(proxy_options)
        self._timeout = timeout
        self._http_adapter = self._create_http_adapter()
        self._session = None
        self._dispatcher = None

    def _create_http_adapter(self):
        """
        This method creates a custom HTTPAdapter for use with a requests library session.
        It will allow for use of a custom configured SSL context.
        """
        ssl_context = self._create_ssl_context()

        class CustomSSLContextHTTPAdapter(requests.adapters.HTTPAdapter):
            def init_poolmanager(self, *args, **kwargs):
                kwargs["ssl_context"] = ssl_context
                return super().init_poolmanager(*args, **kwargs)

            def proxy_manager_for(self, *args, **kwargs):
                kwargs["ssl_context"] = ssl_context
                return super().proxy_manager_for(*args, **kwargs)

        return CustomSSLContextHTTPAdapter()

    def _create_ssl_context(self):
        """
        This method creates the SSLContext object used to authenticate the connection.
        """
        logger.debug("creating a SSL context")
        ssl_context = ssl.SSLContext(protocol=ssl.PROTOCOL_TLSv1_2)

        if self._server_verification_cert:
            ssl_context.load_verify_locations(cadata=self._server_verification_cert)
        else:
            ssl_context.load_default_certs()

        if self._cipher:
            ssl_context.set_ciphers(self._cipher)

        ssl_context.verify_mode = ssl.CERT_REQUIRED
        ssl_context.check_hostname = True

        return ssl_context

    def open(self):
        """Create the session and the thread on which asynchronous requests run"""
        if self._session is None:
            self._session = requests.Session()
            self._session.mount("https://", self._http_adapter)
        if self._dispatcher is None or self._dispatcher.is_shut_down:
            self._dispatcher = SerialDispatcher("azure_iot_http")

    def close(self):
        """Close the session.  Requests already dispatched still complete."""
        if self._dispatcher is not None:
            self._dispatcher.shutdown(wait=False)
        if self._session is not None:
            self._session.close()
            self._session = None

    def request_nowait(self, method, path, callback, body="", headers=None, query_params=""):
        """
        Send a request on the client's thread without waiting for it.

        :param callback: Called as callback(error=None, response=None) with the response
            dictionary (status_code, reason, resp, content, headers) or the error which prevented the
            request from completing.
        """
        self.open()

        def do_request():
            try:
                response = self.request(
                    method, path, body=body, headers=headers, query_params=query_params
                )
            except Exception as e:
                callback(error=e)
            else:
                callback(response=response)

        self._dispatcher.invoke_nowait(do_request)

    def request(self, method, path, body="", headers=None, query_params=""):
        """
        Send a request to the remote host and wait for the response.

        :param str method: The request method (e.g. "POST")
        :param str path: The path for the URL
        :param str body: The body of the HTTP request to be sent following the headers.
        :param dict headers: A dictionary that provides extra HTTP headers to be sent with the request.
        :param str query_params: The optional query parameters to be appended at the end of the URL.

        :returns: A dictionary containing the status_code, reason, resp (the body text), content
            (the body bytes) and headers of the response.  Status codes are not checked.

        :raises: ConnectionFailedError if the host could not be reached or did not answer in time.
        :raises: TlsExchangeAuthError if the server certificate could not be verified.
        :raises: ProtocolProxyError if there is a proxy-specific error.
        :raises: ProtocolClientError if there is some other client error.
        """
        self.open()
        logger.info("sending https {} request to {} .".format(method, path))

        url = "https://{hostname}/{path}{query_params}".format(
            hostname=self._hostname,
            path=path,
            query_params="?" + query_params if query_params else "",
        )
        if method not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            raise ValueError("Invalid method type: {}".format(method))

        try:
            # TLS options are set on the HTTPAdapter mounted on the session
            response = self._session.request(
                method,
                url,
                data=body,
                headers=headers or {},
                proxies=self._proxies,
                timeout=self._timeout,
            )
        except requests.exceptions.SSLError as e:
            if "CERTIFICATE_VERIFY_FAILED" in str(e):
                raise exceptions.TlsExchangeAuthError() from e
            raise exceptions.ConnectionFailedError("TLS failure during HTTPS request") from e
        except requests.exceptions.ProxyError as e:
            raise exceptions.ProtocolProxyError() from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise exceptions.ConnectionFailedError("HTTPS request could not be completed") from e
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected HTTPS failure during request") from e

        logger.debug("https {} request to {} returned {}".format(method, path, response.status_code))
        return {
            "status_code": response.status_code,
            "reason": response.reason,
            "resp": response.text,
            "content": response.content,
            "headers": response.headers,
        }


def format_proxies(proxy_options):
    """
    Format the data from the proxy_options object into a format for use with the requests library
    """
    proxies = {}
    if proxy_options:
        # Basic address/port formatting
        proxy = "{address}:{port}".format(
            address=proxy_options.proxy_address, port=proxy_options.proxy_port
        )
        # Add credentials if necessary
        if proxy_options.proxy_username and proxy_options.proxy_password:
            auth = "{username}:{password}".format(
                username=proxy_options.proxy_username, password=proxy_options.proxy_password
            )
            proxy = auth + "@" + proxy
        if proxy_options.proxy_type == "HTTP":
            scheme = "http://"
        elif proxy_options.proxy_type == "SOCKS4":
            scheme = "socks4://"
        elif proxy_options.proxy_type == "SOCKS5":
            scheme = "socks5://"
        else:
            # This should be unreachable due to validation on the ProxyOptions object
            raise ValueError("Invalid proxy type: {}".format(proxy_options.proxy_type))
        proxies["http"] = scheme + proxy
        proxies["https"] = scheme + proxy

    return proxies

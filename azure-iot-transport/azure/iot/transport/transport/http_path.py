# --------------------------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import logging
import urllib.parse
from .. import constant

logger = logging.getLogger(__name__)


def _get_device_base(device_id, module_id=None):
    path = "devices/{}".format(urllib.parse.quote_plus(device_id))
    if module_id:
        path += "/modules/{}".format(urllib.parse.quote_plus(module_id))
    return path


def get_api_version_query():
    return "api-version={}".format(constant.IOTHUB_API_VERSION)


def get_telemetry_path(device_id, module_id=None):
    """
    :return: The path for sending telemetry. It is of the format
    devices/uri_encode($device_id)/messages/events
    """
    return _get_device_base(device_id, module_id) + "/messages/events"


def get_storage_info_for_blob_path(device_id):
    """
    Only device identities may upload files.

    :return: The path for getting the storage sdk credential information from IoT Hub. It is of the format
    devices/uri_encode($device_id)/files
    """
    return "devices/{}/files".format(urllib.parse.quote_plus(device_id))


def get_device_bound_path(device_id):
    """
    :return: The path for polling cloud to device messages. It is of the format
    devices/uri_encode($device_id)/messages/deviceBound
    """
    return "devices/{}/messages/deviceBound".format(urllib.parse.quote_plus(device_id))


def get_complete_path(device_id, etag):
    """
    :return: The path for completing a cloud to device message. It is of the format
    devices/uri_encode($device_id)/messages/deviceBound/uri_encode($etag)
    """
    return "{}/{}".format(get_device_bound_path(device_id), urllib.parse.quote_plus(etag))


def get_abandon_path(device_id, etag):
    """
    :return: The path for abandoning a cloud to device message. It is of the format
    devices/uri_encode($device_id)/messages/deviceBound/uri_encode($etag)/abandon
    """
    return get_complete_path(device_id, etag) + "/abandon"

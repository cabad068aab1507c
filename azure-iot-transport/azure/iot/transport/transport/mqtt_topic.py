# --------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Formatting and parsing of the MQTT topics used by IoTHub"""

import logging
import urllib.parse
from .. import constant

logger = logging.getLogger(__name__)

# NOTE: Whenever using standard URL encoding via the urllib.parse.quote() API
# make sure to specify that there are NO safe values (e.g. safe=""). By default
# "/" is skipped in encoding, and that is not desirable.
#
# DO NOT use urllib.parse.quote_plus(), as it turns ' ' characters into '+',
# which is invalid for MQTT publishes.


def _get_topic_base(device_id, module_id=None):
    """
    return the string that is at the beginning of all topics for this
    device/module
    """
    topic = "devices/" + urllib.parse.quote(device_id, safe="")
    if module_id:
        topic = topic + "/modules/" + urllib.parse.quote(module_id, safe="")
    return topic


def get_client_id(device_id, module_id=None):
    if module_id:
        return device_id + "/" + module_id
    return device_id


def get_username(hostname, device_id, module_id=None):
    """
    :return: The username for connecting to IoTHub. It is of the format
    "<hostname>/<client id>/?api-version=<version>&DeviceClientType=<user agent>"
    """
    query = urllib.parse.urlencode(
        [("api-version", constant.IOTHUB_API_VERSION), ("DeviceClientType", constant.USER_AGENT)],
        quote_via=urllib.parse.quote,
    )
    return "{hostname}/{client_id}/?{query}".format(
        hostname=hostname, client_id=get_client_id(device_id, module_id), query=query
    )


def get_c2d_topic_for_subscribe(device_id):
    """
    :return: The topic for cloud to device messages. It is of the format
    "devices/<deviceid>/messages/devicebound/#"
    """
    return _get_topic_base(device_id) + "/messages/devicebound/#"


def get_method_topic_for_subscribe():
    return "$iothub/methods/POST/#"


def get_twin_response_topic_for_subscribe():
    return "$iothub/twin/res/#"


def get_twin_patch_topic_for_subscribe():
    return "$iothub/twin/PATCH/properties/desired/#"


def get_telemetry_topic_for_publish(device_id, module_id=None):
    """
    return the topic string used to publish telemetry
    """
    return _get_topic_base(device_id, module_id) + "/messages/events/"


def get_method_topic_for_publish(request_id, status):
    """
    :return: The topic for publishing method responses. It is of the format
    "$iothub/methods/res/<status>/?$rid=<requestId>"
    """
    return "$iothub/methods/res/{status}/?$rid={request_id}".format(
        status=urllib.parse.quote(str(status), safe=""),
        request_id=urllib.parse.quote(str(request_id), safe=""),
    )


def get_reported_properties_topic_for_publish(request_id):
    """
    :return: The topic for publishing a reported properties patch. It is of the format
    "$iothub/twin/PATCH/properties/reported/?$rid=<requestId>"
    """
    return "$iothub/twin/PATCH/properties/reported/?$rid={request_id}".format(
        request_id=urllib.parse.quote(request_id, safe="")
    )


def is_c2d_topic(topic, device_id):
    """
    Topics for c2d message are of the following format:
    devices/<deviceId>/messages/devicebound
    """
    return "devices/{}/messages/devicebound".format(urllib.parse.quote(device_id, safe="")) in topic


def is_method_topic(topic):
    """
    Topics for methods are of the following format:
    "$iothub/methods/POST/{method name}/?$rid={request id}"
    """
    return "$iothub/methods/POST" in topic


def is_twin_response_topic(topic):
    """Topics for twin responses are of the following format:
    $iothub/twin/res/{status}/?$rid={rid}
    """
    return topic.startswith("$iothub/twin/res/")


def is_twin_desired_property_patch_topic(topic):
    return topic.startswith("$iothub/twin/PATCH/properties/desired")


def get_method_name_from_topic(topic):
    parts = topic.split("/")
    if is_method_topic(topic) and len(parts) >= 4:
        return urllib.parse.unquote(parts[3])
    else:
        raise ValueError("topic has incorrect format")


def get_method_request_id_from_topic(topic):
    parts = topic.split("/")
    if is_method_topic(topic) and len(parts) >= 4:
        properties = _extract_properties(topic.split("?")[1])
        return properties["rid"]
    else:
        raise ValueError("topic has incorrect format")


def get_twin_request_id_from_topic(topic):
    parts = topic.split("/")
    if is_twin_response_topic(topic) and len(parts) >= 4:
        properties = _extract_properties(topic.split("?")[1])
        return properties["rid"]
    else:
        raise ValueError("topic has incorrect format")


def get_twin_status_code_from_topic(topic):
    """
    Extract the status code from the twin response topic.

    :raises: ValueError if the topic has incorrect format
    :returns: status code from topic string, as an int
    """
    parts = topic.split("/")
    if is_twin_response_topic(topic) and len(parts) >= 4:
        return int(parts[3])
    else:
        raise ValueError("topic has incorrect format")


def extract_properties_from_c2d_topic(topic):
    """
    Extract the key=value pairs carried on a C2D topic.

    System properties keep their "$." prefixed names.  Broker bookkeeping keys are dropped.
    """
    parts = topic.split("/")
    if len(parts) > 3 and parts[3] == "devicebound":
        properties = parts[4] if len(parts) > 4 else None
    else:
        raise ValueError("topic has incorrect format")

    ignored_extraction_values = ["iothub-ack", "$.to"]
    d = {}
    if properties:
        for entry in properties.split("&"):
            pair = entry.split("=")
            key = urllib.parse.unquote(pair[0])
            value = urllib.parse.unquote(pair[1]) if len(pair) > 1 else ""
            if key not in ignored_extraction_values:
                d[key] = value
    return d


def encode_message_properties_in_topic(message_to_send, topic):
    """
    uri-encode the system properties of a message as key-value pairs on the topic with defined
    keys, followed by its custom properties in sorted order:
    '<key>=<value>&<key2>=<value2>&<key3>=<value3>(...)'

    :param message_to_send: The message to send
    :param topic: The topic which has not been encoded yet
    :return: The topic which has been uri-encoded
    """
    system_properties = []
    if message_to_send.message_id:
        system_properties.append(("$.mid", message_to_send.message_id))
    if message_to_send.content_type:
        system_properties.append(("$.ct", message_to_send.content_type))
    if message_to_send.content_encoding:
        system_properties.append(("$.ce", message_to_send.content_encoding))

    topic += urllib.parse.urlencode(system_properties, quote_via=urllib.parse.quote)

    if message_to_send.custom_properties:
        if system_properties:
            topic += "&"
        # Sorted to keep the topic stable
        custom_prop_seq = sorted(message_to_send.custom_properties.items())
        topic += urllib.parse.urlencode(custom_prop_seq, quote_via=urllib.parse.quote)

    return topic


def _extract_properties(properties_str):
    """Return a dictionary of properties from a string in the format
    ${key1}={value1}&${key2}={value2}...&${keyn}={valuen}
    """
    d = {}
    for entry in properties_str.split("&"):
        pair = entry.split("=")
        key = urllib.parse.unquote(pair[0]).lstrip("$")
        value = urllib.parse.unquote(pair[1])
        d[key] = value
    return d

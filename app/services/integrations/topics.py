"""
MQTT topic scheme shared with devices.

    iot/v1/devices/{deviceId}/presence          (retained)
    iot/v1/devices/{deviceId}/desc              (retained)
    iot/v1/devices/{deviceId}/state/{property}
    iot/v1/devices/{deviceId}/event/{eventName}
    iot/v1/devices/{deviceId}/cmd/{actionName}
    iot/v1/devices/{deviceId}/resp/{requestId}
"""

from typing import NamedTuple, Optional

TOPIC_BASE = "iot/v1/devices"

PRESENCE = "presence"
DESC = "desc"
STATE = "state"
EVENT = "event"
CMD = "cmd"
RESP = "resp"

TOPIC_KINDS = {PRESENCE, DESC, STATE, EVENT, CMD, RESP}

# Topics the backend listens on
SUBSCRIPTIONS = [
    f"{TOPIC_BASE}/+/{PRESENCE}",
    f"{TOPIC_BASE}/+/{DESC}",
    f"{TOPIC_BASE}/+/{STATE}/#",
    f"{TOPIC_BASE}/+/{EVENT}/#",
    f"{TOPIC_BASE}/+/{RESP}/#",
]


class ParsedTopic(NamedTuple):
    kind: str
    device_id: str
    sub_path: Optional[str]


def presence_topic(device_id: str) -> str:
    return f"{TOPIC_BASE}/{device_id}/{PRESENCE}"


def event_topic(device_id: str, event_name: str) -> str:
    return f"{TOPIC_BASE}/{device_id}/{EVENT}/{event_name}"


def cmd_topic(device_id: str, action_name: str) -> str:
    return f"{TOPIC_BASE}/{device_id}/{CMD}/{action_name}"


def resp_topic(device_id: str, request_id: str) -> str:
    return f"{TOPIC_BASE}/{device_id}/{RESP}/{request_id}"


def parse_topic(topic: str) -> Optional[ParsedTopic]:
    """
    Split a device topic into its kind, device id and trailing path.

    Returns:
        ParsedTopic, or None for topics outside the device scheme
    """
    parts = topic.split("/")
    if len(parts) < 5 or "/".join(parts[:3]) != TOPIC_BASE:
        return None

    device_id, kind = parts[3], parts[4]
    if not device_id or kind not in TOPIC_KINDS:
        return None

    sub_path = "/".join(parts[5:]) or None
    return ParsedTopic(kind, device_id, sub_path)

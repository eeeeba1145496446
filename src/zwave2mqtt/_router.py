"""MQTT topic protocol: encoding registry state and decoding commands.

Topic convention (relative to the configured root prefix)::

    {prefix}/_CLIENTS/{clientId}/status                         bridge status
    {prefix}/_CLIENTS/{clientId}/$devices/{name}/status         node status
    {prefix}/{node}/{class}/{instance}/{index}                  value state
    {prefix}/{node}/{class}/{instance}/{index}/set              value write
    {prefix}/_CLIENTS/{clientId}/broadcast/{device}/{c}/{i}/{x}/set
                                                                template write
    {prefix}/_CLIENTS/{clientId}/api/{operation}/set            named operation

``{node}`` is the numeric node id, or ``{location}/{name}`` when node
names are enabled and that pair identifies the node alone.  Names
containing ``/`` and pairs shared by several nodes fall back to the id.
``{device}`` is the template identifier ``manufacturer-product-type``.

Inbound payloads carry no type information, so they are decoded with
one ordered policy (:func:`parse_payload`): numeric text becomes a
number, otherwise valid JSON becomes a structured value, otherwise the
raw string is kept.

Malformed action topics are dropped with a DEBUG log; unknown actions
are logged as warnings.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from zwave2mqtt._errors import InvalidTopicError, NodeNotFoundError
from zwave2mqtt._registry import DeviceRegistry, Node, Value, ValueKey, ValueRef

logger = logging.getLogger(__name__)

CLIENTS_PREFIX = "_CLIENTS"
DEVICES_PREFIX = "$devices"
NAME_PREFIX = "ZWAVE_GATEWAY-"
SET_SUFFIX = "set"

BROADCAST_ACTION = "broadcast"
API_ACTION = "api"
ACTIONS: tuple[str, ...] = (BROADCAST_ACTION, API_ACTION)

_MIN_ACTION_PARTS = 3

_WHITESPACE = re.compile(r"\s")
_RESERVED = re.compile(r"[+*#\\.'`!?^=(),\"%\[\]:;{}]+")
_INTEGER = re.compile(r"[+-]?\d+")
_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def sanitize_name(name: str) -> str:
    """Turn a free-text name into a safe topic segment.

    Whitespace becomes ``_``; MQTT wildcard/structural characters and
    quoting/JSON-unsafe characters are removed.

    >>> sanitize_name("Kitchen Light #1 (Main)")
    'Kitchen_Light_1_Main'
    """
    return _RESERVED.sub("", _WHITESPACE.sub("_", name))


def _named_path(node: Node) -> str | None:
    # A raw "/" would split the node segment into more than two levels.
    if not node.name or "/" in node.name or "/" in node.loc:
        return None
    name = sanitize_name(node.name)
    if not name:
        return None
    return f"{sanitize_name(node.loc)}/{name}"


# ---------------------------------------------------------------------------
# Payload codec
# ---------------------------------------------------------------------------


def _reject_constant(name: str) -> Any:
    msg = f"{name} is not a JSON value"
    raise ValueError(msg)


def parse_payload(text: str) -> Any:
    """Decode an inbound payload: number, else JSON, else raw string.

    Only decimal numeric text is a number.  Hex text such as ``"0x1A"``,
    digit separators (``"1_000"``), the empty payload, ``NaN``,
    ``Infinity`` and numbers that overflow a float are kept as the raw
    string.

    >>> parse_payload("42"), parse_payload("0x1A"), parse_payload('{"on": true}')
    (42, '0x1A', {'on': True})
    """
    stripped = text.strip()
    if _NUMBER.fullmatch(stripped):
        if _INTEGER.fullmatch(stripped):
            return int(stripped)
        number = float(stripped)
        return number if math.isfinite(number) else text
    try:
        return json.loads(stripped, parse_constant=_reject_constant)
    except ValueError:
        return text


def encode_payload(data: Any) -> str:
    """Encode an outbound payload as JSON."""
    return json.dumps(data, default=str)


def status_payload(connected: bool, time_ms: int) -> str:
    """Encode a ``{"value": bool, "time": epoch-ms}`` status payload."""
    return json.dumps({"value": connected, "time": time_ms})


# ---------------------------------------------------------------------------
# Decoded commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WriteRequest:
    """Write *value* to the value addressed by *ref*."""

    ref: ValueRef
    value: Any


@dataclass(frozen=True, slots=True)
class BroadcastRequest:
    """Write *value* to *key* on every node of template *device_id*.

    ``feedback_path`` is the received topic relative to the prefix
    with ``/set`` removed; the bridge echoes the payload there.
    """

    device_id: str
    key: ValueKey
    value: Any
    feedback_path: str


@dataclass(frozen=True, slots=True)
class ApiCall:
    """Invoke operation *name*; the result is published on ``path``."""

    path: str
    name: str
    payload: Any


Command = WriteRequest | BroadcastRequest | ApiCall


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class TopicRouter:
    """Maps registry state to topics and inbound topics to commands.

    Args:
        prefix: Root topic prefix.
        client_id: Sanitized bridge client id.
        registry: Registry used to resolve node paths.
        use_node_names: Render nodes as ``{location}/{name}``.
    """

    def __init__(
        self,
        *,
        prefix: str,
        client_id: str,
        registry: DeviceRegistry,
        use_node_names: bool = False,
    ) -> None:
        self._prefix = prefix
        self._client_id = client_id
        self._registry = registry
        self._use_node_names = use_node_names

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def client_id(self) -> str:
        return self._client_id

    # -- Encoding -----------------------------------------------------------

    def full_topic(self, path: str) -> str:
        """``{prefix}/{path}``."""
        return f"{self._prefix}/{path}"

    def clients_path(self, *parts: str) -> str:
        """``_CLIENTS/{clientId}/{parts...}`` relative to the prefix."""
        return "/".join([CLIENTS_PREFIX, self._client_id, *parts])

    def client_status_topic(self, *devices: str) -> str:
        """Status topic of the bridge, or of the devices reached through it."""
        sub = [part for name in devices for part in (DEVICES_PREFIX, sanitize_name(name))]
        return self.full_topic(self.clients_path(*sub, "status"))

    @property
    def action_subscriptions(self) -> list[str]:
        """Wildcard subscriptions for every action namespace."""
        return [self.full_topic(self.clients_path(action, "#")) for action in ACTIONS]

    def node_topic(self, node: Node) -> str:
        """Node segment of a value path.

        ``{location}/{name}`` is used only while it names *node* alone;
        otherwise the numeric id is used.
        """
        if self._use_node_names:
            path = _named_path(node)
            if path is not None and not any(
                other.node_id != node.node_id and _named_path(other) == path
                for other in self._registry.nodes
            ):
                return path
        return str(node.node_id)

    def value_topic(self, node: Node, value: Value) -> str:
        """Path of *value* relative to the prefix."""
        return f"{self.node_topic(node)}/{value.class_id}/{value.instance}/{value.index}"

    def write_topic(self, node: Node, value: Value) -> str:
        """Full topic on which writes to *value* are accepted."""
        return self.full_topic(f"{self.value_topic(node, value)}/{SET_SUFFIX}")

    def broadcast_topic(self, device_id: str, key: ValueKey) -> str:
        """Full topic writing *key* on every node of template *device_id*."""
        path = self.clients_path(
            BROADCAST_ACTION,
            device_id,
            str(key.class_id),
            str(key.instance),
            str(key.index),
            SET_SUFFIX,
        )
        return self.full_topic(path)

    # -- Decoding -----------------------------------------------------------

    def decode(self, topic: str, payload: str) -> Command | None:
        """Turn an inbound message into a command.

        Returns ``None`` for messages that are not write requests or
        are malformed action topics.

        Raises:
            InvalidTopicError: If a write topic has no parsable value path.
            NodeNotFoundError: If the addressed node is unknown.
            ValueNotFoundError: If the addressed value is unknown.
        """
        head = f"{self._prefix}/"
        if not topic.startswith(head):
            return None
        parts = topic[len(head) :].split("/")
        if len(parts) < 2 or parts.pop() != SET_SUFFIX:  # noqa: PLR2004
            return None

        value = parse_payload(payload)

        if parts[0] == CLIENTS_PREFIX:
            return self._decode_action(topic, parts, value)

        ref = self.resolve_path(parts, topic)
        return WriteRequest(ref=ref, value=value)

    def resolve_path(self, parts: list[str], topic: str = "") -> ValueRef:
        """Resolve ``[node..., class, instance, index]`` against the registry."""
        if len(parts) < 4:  # noqa: PLR2004
            raise InvalidTopicError(topic, "value path too short")
        key = self._parse_key(parts[-3:], topic)
        node = self._resolve_node(parts[:-3], topic)
        ref = ValueRef(node.node_id, key)
        self._registry.get_value(ref)
        return ref

    def _decode_action(self, topic: str, parts: list[str], value: Any) -> Command | None:
        if len(parts) < _MIN_ACTION_PARTS:
            logger.debug("Dropping malformed action topic %s", topic)
            return None

        path = "/".join(parts)
        action = parts[2]
        if action == BROADCAST_ACTION:
            if len(parts) != 7:  # noqa: PLR2004
                logger.debug("Dropping malformed broadcast topic %s", topic)
                return None
            try:
                key = self._parse_key(parts[4:7], topic)
            except InvalidTopicError:
                logger.debug("Dropping malformed broadcast topic %s", topic)
                return None
            return BroadcastRequest(
                device_id=parts[3],
                key=key,
                value=value,
                feedback_path=path,
            )
        if action == API_ACTION:
            if len(parts) < 4:  # noqa: PLR2004
                logger.debug("Dropping api topic without operation %s", topic)
                return None
            return ApiCall(path=path, name=parts[3], payload=value)

        logger.warning("Unknown action %r received on %s", action, topic)
        return None

    @staticmethod
    def _parse_key(parts: list[str], topic: str) -> ValueKey:
        try:
            class_id, instance, index = (int(p) for p in parts)
        except ValueError:
            raise InvalidTopicError(topic, "non-numeric value address") from None
        return ValueKey(class_id, instance, index)

    def _resolve_node(self, parts: list[str], topic: str) -> Node:
        if len(parts) == 1 and parts[0].isdigit():
            return self._registry.get_node(int(parts[0]))
        if len(parts) == 2:  # noqa: PLR2004
            path = "/".join(parts)
            matches = [node for node in self._registry.nodes if _named_path(node) == path]
            if len(matches) > 1:
                raise InvalidTopicError(topic, f"node name {path} is ambiguous")
            if not matches:
                raise NodeNotFoundError(path)
            return matches[0]
        raise InvalidTopicError(topic, "unrecognised node segment")

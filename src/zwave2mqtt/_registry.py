"""In-memory cache of mesh nodes, their values, and device templates.

The registry is the single source of truth for "does this node/value
currently exist".  It is a pure data structure: every mutation is
synchronous, performs no I/O, and emits no events — the
:class:`~zwave2mqtt._events.MeshEventAdapter` decides what to announce
after each mutation.

Identifiers::

    ValueKey   (class_id, instance, index)      unique within a node
    ValueRef   (node_id, ValueKey)              unique within the mesh
    value_id   "node-class-instance-index"      ValueRef.value_id
    device_id  "manufacturer-product-type"      Node.device_id

Device templates are deduplicated by ``device_id``: the first node of a
template that becomes ready materialises the :class:`Device`; later
nodes of the same template never modify it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import Any

from zwave2mqtt._errors import NodeNotFoundError, ValueNotFoundError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class NodeStatus(StrEnum):
    """Reachability of a node as reported by driver notifications.

    Every node starts ``DEAD``.  Any status other than ``DEAD`` makes
    the node ready again.
    """

    DEAD = "Dead"
    SLEEP = "Sleep"
    AWAKE = "Awake"
    ALIVE = "Alive"

    @classmethod
    def from_code(cls, code: int) -> NodeStatus | None:
        """Map a driver notification code to a status.

        Returns ``None`` for codes that do not describe reachability
        (message complete, timeout, nop, ...).
        """
        return _STATUS_CODES.get(code)


_STATUS_CODES: dict[int, NodeStatus] = {
    3: NodeStatus.AWAKE,
    4: NodeStatus.SLEEP,
    5: NodeStatus.DEAD,
    6: NodeStatus.ALIVE,
}

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class ValueKey:
    """Address of a value within its node."""

    class_id: int
    instance: int
    index: int

    @property
    def id(self) -> str:
        """``"class-instance-index"``."""
        return f"{self.class_id}-{self.instance}-{self.index}"


@dataclass(frozen=True, slots=True, order=True)
class ValueRef:
    """Address of a value within the mesh."""

    node_id: int
    key: ValueKey

    @property
    def value_id(self) -> str:
        """``"node-class-instance-index"``."""
        return f"{self.node_id}-{self.key.id}"

    @classmethod
    def of(cls, node_id: int, class_id: int, instance: int, index: int) -> ValueRef:
        """Build a reference from its four integer parts."""
        return cls(node_id, ValueKey(class_id, instance, index))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ValueRef:
        """Build a reference from a ``{node_id, class_id, instance, index}`` dict.

        Raises:
            ValueNotFoundError: If a field is missing or not an integer.
        """
        try:
            return cls.of(
                int(data["node_id"]),
                int(data["class_id"]),
                int(data["instance"]),
                int(data["index"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueNotFoundError(
                str(data.get("value_id", "")),
                "No valueId found in parameters",
            ) from exc


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Value:
    """A typed value exposed by a node (switch state, sensor reading, ...)."""

    node_id: int
    class_id: int
    instance: int
    index: int
    label: str = ""
    units: str = ""
    read_only: bool = False
    write_only: bool = False
    type: str = ""
    genre: str = ""
    help: str = ""
    value: Any = None
    values: list[Any] | None = None
    min: float | None = None
    max: float | None = None

    @property
    def key(self) -> ValueKey:
        return ValueKey(self.class_id, self.instance, self.index)

    @property
    def ref(self) -> ValueRef:
        return ValueRef(self.node_id, self.key)

    @property
    def value_id(self) -> str:
        return self.ref.value_id

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, node_id: int | None = None) -> Value:
        """Build a value from a driver value dictionary.

        Unknown keys (``value_id``, ``is_polled``, ...) are ignored.
        *node_id* overrides the dictionary's own ``node_id``.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if node_id is not None:
            kwargs["node_id"] = node_id
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dictionary including ``value_id``."""
        data = asdict(self)
        data["value_id"] = self.value_id
        return data


@dataclass(frozen=True, slots=True)
class NodeGroup:
    """Association group of a node."""

    text: str
    value: int


@dataclass
class Node:
    """A device on the mesh and its current values."""

    node_id: int
    device_id: str = ""
    manufacturer: str = ""
    manufacturerid: str = ""
    product: str = ""
    producttype: str = ""
    productid: str = ""
    type: str = ""
    name: str = ""
    loc: str = ""
    values: dict[ValueKey, Value] = field(default_factory=dict)
    groups: list[NodeGroup] = field(default_factory=list)
    ready: bool = False
    status: NodeStatus = NodeStatus.DEAD

    def to_dict(self) -> dict[str, Any]:
        """Serialise for API responses (values keyed by ``ValueKey.id``)."""
        return {
            "node_id": self.node_id,
            "device_id": self.device_id,
            "manufacturer": self.manufacturer,
            "manufacturerid": self.manufacturerid,
            "product": self.product,
            "producttype": self.producttype,
            "productid": self.productid,
            "type": self.type,
            "name": self.name,
            "loc": self.loc,
            "values": {k.id: v.to_dict() for k, v in self.values.items()},
            "groups": [asdict(g) for g in self.groups],
            "ready": self.ready,
            "status": str(self.status),
        }


_NODE_INFO_FIELDS: frozenset[str] = frozenset(
    {
        "manufacturer",
        "manufacturerid",
        "product",
        "producttype",
        "productid",
        "type",
        "name",
        "loc",
    },
)


@dataclass(frozen=True)
class Device:
    """Deduplicated template shared by all nodes of one product.

    ``values`` maps ``ValueKey.id`` to value metadata with the
    node-specific fields (``node_id``, current ``value``) removed.
    """

    device_id: str
    name: str
    values: dict[str, dict[str, Any]]


def _parse_id(raw: Any) -> int:
    """Parse a manufacturer/product identifier (``134``, ``"0x0086"``, ``"86"``)."""
    if isinstance(raw, int):
        return raw
    text = str(raw).strip().lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError:
        return 0


def device_id_for(node: Node) -> str:
    """Return the template identifier ``"manufacturer-product-type"`` of *node*."""
    return (
        f"{_parse_id(node.manufacturerid)}-"
        f"{_parse_id(node.productid)}-"
        f"{_parse_id(node.producttype)}"
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class DeviceRegistry:
    """Cache of nodes, values and device templates for one mesh session."""

    def __init__(self) -> None:
        self._nodes: dict[int, Node] = {}
        self._devices: dict[str, Device] = {}

    # -- Mutation -----------------------------------------------------------

    def add_node(self, node_id: int) -> Node:
        """Create a fresh ``DEAD`` node, replacing any node with that id."""
        node = Node(node_id=node_id)
        self._nodes[node_id] = node
        return node

    def add_value(self, node_id: int, value: Value) -> Value:
        """Insert or overwrite *value* on its node.

        Raises:
            NodeNotFoundError: If the node is unknown.
        """
        node = self.get_node(node_id)
        value.node_id = node_id
        node.values[value.key] = value
        return value

    def remove_value(self, node_id: int, key: ValueKey) -> Value:
        """Remove and return the value at *key*.

        Raises:
            NodeNotFoundError: If the node is unknown.
            ValueNotFoundError: If the node has no such value.
        """
        node = self.get_node(node_id)
        try:
            return node.values.pop(key)
        except KeyError:
            raise ValueNotFoundError(ValueRef(node_id, key).value_id) from None

    def mark_node_ready(self, node_id: int, info: Mapping[str, Any]) -> Node:
        """Merge *info* into the node, mark it ready and register its template.

        Raises:
            NodeNotFoundError: If the node is unknown.
        """
        node = self.get_node(node_id)
        for name, value in info.items():
            if name in _NODE_INFO_FIELDS:
                setattr(node, name, value)

        node.ready = True
        node.status = NodeStatus.ALIVE
        node.device_id = device_id_for(node)

        if node.device_id not in self._devices:
            self._devices[node.device_id] = self._build_device(node)
            logger.debug("New device template %s", node.device_id)
        return node

    def set_node_status(self, node_id: int, status: NodeStatus) -> Node:
        """Update reachability; only ``DEAD`` clears readiness.

        Raises:
            NodeNotFoundError: If the node is unknown.
        """
        node = self.get_node(node_id)
        node.status = status
        node.ready = status is not NodeStatus.DEAD
        return node

    def clear(self) -> None:
        """Forget every node and template (a new mesh session starts)."""
        self._nodes.clear()
        self._devices.clear()

    # -- Queries ------------------------------------------------------------

    def get_node(self, node_id: int) -> Node:
        """Return the node with *node_id*.

        Raises:
            NodeNotFoundError: If the node is unknown.
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def get_value(self, ref: ValueRef) -> Value:
        """Return the value addressed by *ref*.

        Raises:
            NodeNotFoundError: If the node is unknown.
            ValueNotFoundError: If the node has no such value.
        """
        node = self.get_node(ref.node_id)
        try:
            return node.values[ref.key]
        except KeyError:
            raise ValueNotFoundError(ref.value_id) from None

    @property
    def nodes(self) -> list[Node]:
        """All nodes, ordered by id."""
        return [self._nodes[i] for i in sorted(self._nodes)]

    @property
    def devices(self) -> dict[str, Device]:
        """Device templates keyed by ``device_id``."""
        return dict(self._devices)

    def nodes_for_device(self, device_id: str) -> list[Node]:
        """Nodes whose template is *device_id*, ordered by id."""
        return [n for n in self.nodes if n.device_id == device_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _build_device(node: Node) -> Device:
        values: dict[str, dict[str, Any]] = {}
        for key, value in node.values.items():
            template = asdict(value)
            del template["node_id"]
            del template["value"]
            template["value_id"] = key.id
            values[key.id] = template
        return Device(
            device_id=node.device_id,
            name=f"{node.product} ({node.manufacturer})",
            values=values,
        )

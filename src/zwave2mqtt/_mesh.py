"""Mesh driver port and adapters.

The radio driver (scanning, polling, the Z-Wave protocol itself) lives
outside this package.  The gateway talks to it only through
:class:`MeshDriverPort`; the driver talks back by calling the handlers
of :class:`~zwave2mqtt._events.MeshEventAdapter`.

Provides MeshDriverPort (Protocol) and two implementations:

- NullMeshDriver — silent no-op adapter (the default when no driver is
  configured, e.g. to run the bus side alone)
- MockMeshDriver — test double that records calls

A concrete driver is selected with ``ZWAVE2MQTT_ZWAVE__DRIVER`` as a
``module.path:ClassName`` string and constructed with the
:class:`~zwave2mqtt._settings.ZwaveSettings` instance.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from zwave2mqtt._errors import TransportError
from zwave2mqtt._registry import ValueRef
from zwave2mqtt._settings import ZwaveSettings

if TYPE_CHECKING:
    from zwave2mqtt._events import MeshEventAdapter

logger = logging.getLogger(__name__)

POLLED_CLASSES: frozenset[int] = frozenset({0x25, 0x26, 0x30, 0x31, 0x60})
"""Command classes polled as soon as their node is ready.

SWITCH_BINARY, SWITCH_MULTILEVEL, SENSOR_BINARY, SENSOR_MULTILEVEL,
MULTI_INSTANCE.
"""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MeshDriverPort(Protocol):
    """Port contract for the mesh radio driver."""

    def bind(self, events: MeshEventAdapter) -> None:
        """Receive the adapter whose handlers the driver must await."""
        ...

    async def connect(self) -> None:
        """Open the controller port.

        Raises:
            TransportError: If the controller cannot be reached.
        """
        ...

    async def close(self) -> None: ...

    async def set_value(self, ref: ValueRef, value: Any) -> None: ...

    def has_api(self, name: str) -> bool:
        """Whether the driver exposes a callable operation *name*."""
        ...

    async def call(self, name: str, *args: Any) -> Any: ...

    def is_polled(self, ref: ValueRef) -> bool: ...

    def enable_poll(self, ref: ValueRef, intensity: int = 1) -> None: ...

    def set_poll_interval(self, interval_ms: int) -> None: ...

    def get_num_groups(self, node_id: int) -> int: ...

    def get_group_label(self, node_id: int, group: int) -> str: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


class NullMeshDriver:
    """Silent no-op mesh driver.

    Accepts every command and reports no groups and no APIs.  Every
    write is logged at DEBUG level.
    """

    def __init__(self, settings: ZwaveSettings | None = None) -> None:
        self.settings = settings
        self.events: MeshEventAdapter | None = None

    def bind(self, events: MeshEventAdapter) -> None:
        self.events = events

    async def connect(self) -> None:
        logger.info("No mesh driver configured — running bus side only")

    async def close(self) -> None:
        """Nothing to release."""

    async def set_value(self, ref: ValueRef, value: Any) -> None:
        logger.debug("NullMeshDriver.set_value(%s, %r) — discarded", ref.value_id, value)

    def has_api(self, name: str) -> bool:  # noqa: ARG002
        return False

    async def call(self, name: str, *args: Any) -> Any:  # noqa: ARG002
        msg = f"Unknown API {name!r}"
        raise TransportError(msg)

    def is_polled(self, ref: ValueRef) -> bool:  # noqa: ARG002
        return False

    def enable_poll(self, ref: ValueRef, intensity: int = 1) -> None:
        """Polling is meaningless without a radio."""

    def set_poll_interval(self, interval_ms: int) -> None:
        """Polling is meaningless without a radio."""

    def get_num_groups(self, node_id: int) -> int:  # noqa: ARG002
        return 0

    def get_group_label(self, node_id: int, group: int) -> str:  # noqa: ARG002
        return ""


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMeshDriver:
    """In-memory test double that records mesh driver interactions.

    ``apis`` maps operation names to the value :meth:`call` returns (a
    callable is invoked with the call's arguments).  ``groups`` maps a
    node id to its association group labels.
    """

    apis: dict[str, Any] = field(default_factory=dict)
    groups: dict[int, list[str]] = field(default_factory=dict)
    fail_connect: int = 0
    writes: list[tuple[ValueRef, Any]] = field(default_factory=list)
    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    polled: set[ValueRef] = field(default_factory=set)
    poll_interval: int | None = None
    connect_attempts: int = 0
    connected: bool = False
    events: MeshEventAdapter | None = None

    def bind(self, events: MeshEventAdapter) -> None:
        self.events = events

    async def connect(self) -> None:
        """Fail the first ``fail_connect`` attempts, then succeed."""
        self.connect_attempts += 1
        if self.connect_attempts <= self.fail_connect:
            msg = "controller not responding"
            raise TransportError(msg)
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def set_value(self, ref: ValueRef, value: Any) -> None:
        """Record a write."""
        self.writes.append((ref, value))

    def has_api(self, name: str) -> bool:
        return name in self.apis

    async def call(self, name: str, *args: Any) -> Any:
        """Record a call and return the configured result."""
        self.calls.append((name, args))
        result = self.apis[name]
        return result(*args) if callable(result) else result

    def is_polled(self, ref: ValueRef) -> bool:
        return ref in self.polled

    def enable_poll(self, ref: ValueRef, intensity: int = 1) -> None:  # noqa: ARG002
        self.polled.add(ref)

    def set_poll_interval(self, interval_ms: int) -> None:
        self.poll_interval = interval_ms

    def get_num_groups(self, node_id: int) -> int:
        return len(self.groups.get(node_id, []))

    def get_group_label(self, node_id: int, group: int) -> str:
        return self.groups[node_id][group - 1]


# ---------------------------------------------------------------------------
# Driver resolution
# ---------------------------------------------------------------------------


def load_driver(settings: ZwaveSettings) -> MeshDriverPort:
    """Instantiate the driver named by ``settings.driver``.

    Args:
        settings: Z-Wave settings; ``driver`` must be a
            ``module.path:ClassName`` string.

    Raises:
        ValueError: If the path doesn't contain exactly one ``:``.
        ImportError: If the module cannot be found.
        AttributeError: If the class doesn't exist in the module.
    """
    parts = settings.driver.split(":")
    if len(parts) != 2:  # noqa: PLR2004
        msg = f"Expected 'module.path:ClassName', got {settings.driver!r}"
        raise ValueError(msg)

    module_path, class_name = parts
    module = importlib.import_module(module_path)
    driver_cls = getattr(module, class_name)
    return driver_cls(settings)

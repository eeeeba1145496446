"""Mesh driver notifications → registry mutations → domain events.

The mesh driver reports discovery and change notifications by awaiting
the handler methods of :class:`MeshEventAdapter` (``node_added``,
``value_changed``, ``notification``, ...).  Each handler updates the
:class:`~zwave2mqtt._registry.DeviceRegistry` and then notifies the
listeners registered for the matching domain event:

=================  ==============================  =====================
Domain event        Listener signature              Emitted by
=================  ==============================  =====================
value changed       ``(value, node)``               ``value_changed`` on a
                                                    ready node, and for
                                                    every value on
                                                    ``node_ready``
node status         ``(node)``                      ``node_ready``,
                                                    ``notification`` 3-6
scan complete       ``(node_count)``                ``scan_complete``
driver ready        ``(home_name)``                 ``driver_ready``
driver failed       ``()``                          ``driver_failed``
=================  ==============================  =====================

A listener that raises is logged and does not prevent the remaining
listeners from running.  Notifications about unknown nodes are logged
and otherwise ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from zwave2mqtt._errors import GatewayError
from zwave2mqtt._mesh import POLLED_CLASSES, MeshDriverPort
from zwave2mqtt._registry import DeviceRegistry, Node, NodeGroup, NodeStatus, Value, ValueKey

logger = logging.getLogger(__name__)

ValueChangedListener = Callable[[Value, Node], Awaitable[None]]
NodeStatusListener = Callable[[Node], Awaitable[None]]
ScanCompleteListener = Callable[[int], Awaitable[None]]
DriverReadyListener = Callable[[str], Awaitable[None]]
DriverFailedListener = Callable[[], Awaitable[None]]

_NOTIFICATION_MESSAGES: dict[int, str] = {
    0: "message complete",
    1: "timeout",
    2: "nop",
}


class MeshEventAdapter:
    """Translates mesh driver notifications into registry state and events.

    Args:
        registry: Registry mutated by the handlers.
        driver: Driver queried for polling and association groups.
        poll_interval: Poll interval in milliseconds, applied once the
            network scan completes.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        driver: MeshDriverPort,
        *,
        poll_interval: int = 60000,
    ) -> None:
        self.registry = registry
        self.driver = driver
        self.poll_interval = poll_interval
        self.home_id: int | None = None
        self.home_name = ""
        self.scan_completed = False
        self._value_changed: list[ValueChangedListener] = []
        self._node_status: list[NodeStatusListener] = []
        self._scan_complete: list[ScanCompleteListener] = []
        self._driver_ready: list[DriverReadyListener] = []
        self._driver_failed: list[DriverFailedListener] = []

    # -- Listener registration ---------------------------------------------

    def on_value_changed(self, listener: ValueChangedListener) -> None:
        self._value_changed.append(listener)

    def on_node_status(self, listener: NodeStatusListener) -> None:
        self._node_status.append(listener)

    def on_scan_complete(self, listener: ScanCompleteListener) -> None:
        self._scan_complete.append(listener)

    def on_driver_ready(self, listener: DriverReadyListener) -> None:
        self._driver_ready.append(listener)

    def on_driver_failed(self, listener: DriverFailedListener) -> None:
        self._driver_failed.append(listener)

    # -- Driver lifecycle ---------------------------------------------------

    async def driver_ready(self, home_id: int) -> None:
        """A new mesh session starts: forget the previous node table."""
        self.home_id = home_id
        self.home_name = f"0x{home_id:x}"
        self.scan_completed = False
        self.registry.clear()
        logger.info("Scanning network with home id %s", self.home_name)
        await self._emit(self._driver_ready, self.home_name)

    async def driver_failed(self) -> None:
        logger.error("Mesh driver failed (home id %s)", self.home_name or "unknown")
        await self._emit(self._driver_failed)

    async def scan_complete(self) -> None:
        """Apply the poll interval and load association groups of every node."""
        self.driver.set_poll_interval(self.poll_interval)
        for node in self.registry.nodes:
            count = self.driver.get_num_groups(node.node_id)
            node.groups = [
                NodeGroup(text=self.driver.get_group_label(node.node_id, group), value=group)
                for group in range(1, count + 1)
            ]
        self.scan_completed = True
        logger.info("Network scan complete, found %d nodes", len(self.registry))
        await self._emit(self._scan_complete, len(self.registry))

    async def controller_command(
        self,
        node_id: int,
        state: Any,
        errcode: Any,
        help: str = "",  # noqa: A002
    ) -> None:
        logger.info(
            "Controller command on node %d: state=%s errcode=%s %s",
            node_id,
            state,
            errcode,
            help,
            extra={"node_id": node_id},
        )

    # -- Nodes --------------------------------------------------------------

    async def node_added(self, node_id: int) -> None:
        self.registry.add_node(node_id)
        logger.info("Node %d added", node_id, extra={"node_id": node_id})

    async def node_ready(self, node_id: int, info: Mapping[str, Any]) -> None:
        """Merge node metadata, start polling and announce every value."""
        try:
            node = self.registry.mark_node_ready(node_id, info)
        except GatewayError:
            logger.error("node_ready: no such node %d", node_id, extra={"node_id": node_id})
            return

        for value in node.values.values():
            if value.class_id in POLLED_CLASSES and not self.driver.is_polled(value.ref):
                self.driver.enable_poll(value.ref)

        for value in list(node.values.values()):
            await self._emit(self._value_changed, value, node)
        await self._emit(self._node_status, node)
        logger.info(
            "Node %d ready: %s %s",
            node_id,
            node.manufacturer,
            node.product,
            extra={"node_id": node_id},
        )

    async def node_event(self, node_id: int, event: Any) -> None:
        logger.info("Node %d event %s", node_id, event, extra={"node_id": node_id})

    async def scene_event(self, node_id: int, scene: Any) -> None:
        logger.info("Node %d scene event %s", node_id, scene, extra={"node_id": node_id})

    async def notification(self, node_id: int, code: int, help: str = "") -> None:  # noqa: A002
        """Handle a driver notification; codes 3-6 change node reachability."""
        status = NodeStatus.from_code(code)
        if status is None:
            message = _NOTIFICATION_MESSAGES.get(code, f"unknown notification code {code}")
            logger.debug("Node %d: %s %s", node_id, message, help, extra={"node_id": node_id})
            return

        try:
            node = self.registry.set_node_status(node_id, status)
        except GatewayError:
            logger.error("notification: no such node %d", node_id, extra={"node_id": node_id})
            return
        logger.info("Node %d is %s", node_id, status, extra={"node_id": node_id})
        await self._emit(self._node_status, node)

    # -- Values -------------------------------------------------------------

    async def value_added(self, node_id: int, class_id: int, value: Mapping[str, Any] | Value) -> None:  # noqa: ARG002
        try:
            added = self.registry.add_value(node_id, _as_value(node_id, value))
        except GatewayError:
            logger.error("value_added: no such node %d", node_id, extra={"node_id": node_id})
            return
        logger.debug("Value %s added", added.value_id, extra={"node_id": node_id})

    async def value_changed(self, node_id: int, class_id: int, value: Mapping[str, Any] | Value) -> None:  # noqa: ARG002
        """Update the cache; announce the change once the node is ready."""
        try:
            node = self.registry.get_node(node_id)
        except GatewayError:
            logger.error("value_changed: no such node %d", node_id, extra={"node_id": node_id})
            return

        changed = self.registry.add_value(node_id, _as_value(node_id, value))
        if node.ready:
            logger.debug(
                "Node %d: %s changed to %r",
                node_id,
                changed.label or changed.value_id,
                changed.value,
                extra={"node_id": node_id},
            )
            await self._emit(self._value_changed, changed, node)

    async def value_removed(self, node_id: int, class_id: int, instance: int, index: int) -> None:
        try:
            removed = self.registry.remove_value(node_id, ValueKey(class_id, instance, index))
        except GatewayError as exc:
            logger.error("value_removed on node %d: %s", node_id, exc, extra={"node_id": node_id})
            return
        logger.debug("Value %s removed", removed.value_id, extra={"node_id": node_id})

    # -- Internal -----------------------------------------------------------

    @staticmethod
    async def _emit(listeners: list[Callable[..., Awaitable[None]]], *args: Any) -> None:
        for listener in listeners:
            try:
                await listener(*args)
            except Exception:
                logger.exception("Error in mesh event listener %r", listener)


def _as_value(node_id: int, value: Mapping[str, Any] | Value) -> Value:
    if isinstance(value, Value):
        return value
    return Value.from_dict(value, node_id=node_id)

"""Gateway composition root and operation surface.

:class:`Gateway` wires the components together::

    mesh driver ──▶ MeshEventAdapter ──▶ DeviceRegistry
                          │
                          ▼ value changed / node status
                     MqttBridge ──publish──▶ broker
                          ▲
    broker ──message──────┘ write / broadcast / api
                          │
                          ▼
          mesh driver writes, SceneStore, SceneScheduler

and exposes the operations a front-end may call directly: scene CRUD,
scene activation, single and broadcast writes, named API calls and the
connectivity status.

Named API calls
---------------

``call_api(name, *args)`` never raises for domain failures; it returns
an :class:`~zwave2mqtt._errors.ApiResult`.  Scene operations are served
locally under their wire names (``createScene``, ``addSceneValue``, ...);
any other name is forwarded to the mesh driver when the driver exposes
it.  Nothing is called while the mesh driver is disconnected.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
from collections.abc import Callable, Mapping
from typing import Any

from zwave2mqtt._bridge import MqttBridge
from zwave2mqtt._clock import ClockPort, SystemClock, epoch_ms
from zwave2mqtt._errors import ApiResult, TransportError, ValueNotFoundError, build_api_result
from zwave2mqtt._events import MeshEventAdapter
from zwave2mqtt._mesh import MeshDriverPort, load_driver
from zwave2mqtt._mqtt import TransportFactory, build_mqtt_client
from zwave2mqtt._registry import DeviceRegistry, Node, Value, ValueKey, ValueRef
from zwave2mqtt._router import ApiCall, BroadcastRequest, WriteRequest
from zwave2mqtt._scenes import Scene, SceneStore, SceneValue
from zwave2mqtt._scheduler import SceneScheduler, Sleeper
from zwave2mqtt._settings import MqttSettings, Settings
from zwave2mqtt._store import DocumentStorePort, JsonStore

logger = logging.getLogger(__name__)

NOT_CONNECTED_MESSAGE = "Zwave client not connected"
UNKNOWN_API_MESSAGE = "Unknown API"


def api_args(payload: Any) -> tuple[Any, ...]:
    """Turn an api payload into positional arguments.

    ``{"args": [...]}`` and lists are spread, ``None`` means no
    arguments, anything else is passed as the single argument.
    """
    if payload is None:
        return ()
    if isinstance(payload, Mapping) and "args" in payload:
        args = payload["args"]
        return tuple(args) if isinstance(args, list) else (args,)
    if isinstance(payload, list):
        return tuple(payload)
    return (payload,)


def device_name(node: Node) -> str:
    """Name of *node* in its device status topic."""
    return node.name or f"nodeID_{node.node_id}"


class Gateway:
    """Mesh ↔ bus gateway.

    Every collaborator can be injected; anything left out is built from
    *settings*.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        driver: MeshDriverPort | None = None,
        store: DocumentStorePort | None = None,
        clock: ClockPort | None = None,
        transport_factory: TransportFactory = build_mqtt_client,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.clock = clock if clock is not None else SystemClock()
        self.registry = DeviceRegistry()
        self.driver = driver if driver is not None else load_driver(settings.zwave)
        self.events = MeshEventAdapter(
            self.registry,
            self.driver,
            poll_interval=settings.zwave.poll_interval,
        )
        self.driver.bind(self.events)

        self.scenes = SceneStore(
            store if store is not None else JsonStore(settings.store.directory),
            self.registry,
            key=settings.store.scenes_file,
        )
        self.scheduler = SceneScheduler(self.scenes, self.write_value, sleep=sleep)
        self.bridge = MqttBridge(
            settings.mqtt,
            registry=self.registry,
            clock=self.clock,
            use_node_names=settings.gateway.use_node_names,
            transport_factory=transport_factory,
        )
        self.mesh_connected = False
        self._subscribed: set[str] = set()

        self.events.on_value_changed(self._on_value_changed)
        self.events.on_node_status(self._on_node_status)
        self.events.on_driver_failed(self._on_driver_failed)
        self.bridge.on_write_request(self._on_write_request)
        self.bridge.on_broadcast_request(self._on_broadcast_request)
        self.bridge.on_api_call(self._on_api_call)

        self._scene_apis: dict[str, Callable[..., Any]] = {
            "getScenes": self._api_get_scenes,
            "setScenes": self._api_set_scenes,
            "createScene": self._api_create_scene,
            "removeScene": self._api_remove_scene,
            "sceneGetValues": self._api_scene_get_values,
            "addSceneValue": self._api_add_scene_value,
            "removeSceneValue": self._api_remove_scene_value,
            "activateScene": self._api_activate_scene,
        }

    # --- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Load scenes, start the bridge and connect the mesh driver."""
        self.scenes.load()
        await self.bridge.start()
        await self._connect_driver()

    async def stop(self) -> None:
        """Publish offline status, cancel scene writes and close everything."""
        logger.info("Gateway shutting down")
        await self.scheduler.cancel_all()
        if self.bridge.connected:
            await self.bridge.update_client_status(False)
        await self.scenes.flush()
        if self.mesh_connected:
            self.mesh_connected = False
            await self.driver.close()
        await self.bridge.close()
        logger.info("Shutdown complete")

    async def run(self, *, shutdown_event: asyncio.Event | None = None) -> None:
        """Start, block until SIGTERM/SIGINT (or *shutdown_event*), stop."""
        shutdown_event = self._install_signal_handlers(shutdown_event)
        await self.start()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()

    async def update_mqtt(self, settings: MqttSettings) -> None:
        """Reconnect the bridge with new settings and restore write topics."""
        self.settings = self.settings.model_copy(update={"mqtt": settings})
        await self.bridge.update(settings)
        self._subscribed.clear()
        await self._subscribe_ready_nodes()

    def get_status(self) -> dict[str, Any]:
        """Bus connectivity: ``{"status", "error", "config"}``."""
        return self.bridge.get_status()

    @staticmethod
    def _install_signal_handlers(shutdown_event: asyncio.Event | None) -> asyncio.Event:
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    async def _connect_driver(self) -> bool:
        attempts = self.settings.zwave.driver_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.driver.connect()
            except TransportError as exc:
                logger.warning(
                    "Mesh driver connection attempt %d/%d failed: %s",
                    attempt,
                    attempts,
                    exc,
                )
                continue
            self.mesh_connected = True
            logger.info("Mesh driver connected on %s", self.settings.zwave.port)
            return True
        logger.error("Giving up on mesh driver after %d attempts", attempts)
        return False

    # --- Writes ------------------------------------------------------------

    async def write_value(self, ref: ValueRef, value: Any) -> None:
        """Write *value* to a single mesh value (no-op while disconnected)."""
        if not self.mesh_connected:
            logger.warning("Dropping write to %s: mesh driver not connected", ref.value_id)
            return
        await self.driver.set_value(ref, value)

    async def write_broadcast(self, device_id: str, key: ValueKey, value: Any) -> int:
        """Write *value* to *key* on every node of template *device_id*.

        Returns the number of nodes written.
        """
        if not self.mesh_connected:
            logger.warning("Dropping broadcast to %s: mesh driver not connected", device_id)
            return 0
        nodes = self.registry.nodes_for_device(device_id)
        for node in nodes:
            await self.driver.set_value(ValueRef(node.node_id, key), value)
        return len(nodes)

    # --- Scenes ------------------------------------------------------------

    def get_scenes(self) -> list[Scene]:
        return self.scenes.get_scenes()

    def set_scenes(self, raw: Any) -> list[Scene]:
        return self.scenes.set_scenes(raw)

    def create_scene(self, label: str) -> Scene:
        return self.scenes.create(label)

    def remove_scene(self, scene_id: int) -> Scene:
        return self.scenes.remove(scene_id)

    def get_scene_values(self, scene_id: int) -> list[SceneValue]:
        return self.scenes.get_values(scene_id)

    def add_scene_value(self, scene_id: int, ref: ValueRef, value: Any, timeout: float | None = 0) -> SceneValue:
        return self.scenes.upsert_value(scene_id, ref, value, timeout)

    def remove_scene_value(self, scene_id: int, ref: ValueRef) -> SceneValue:
        return self.scenes.remove_value(scene_id, ref)

    def activate_scene(self, scene_id: int) -> int:
        return self.scheduler.activate(scene_id)

    # --- Named API ---------------------------------------------------------

    async def call_api(self, name: str, *args: Any) -> ApiResult:
        """Invoke operation *name*; failures become a failed result."""
        if not self.mesh_connected:
            result = build_api_result(error=NOT_CONNECTED_MESSAGE)
        elif name in self._scene_apis:
            result = await self._invoke(name, self._scene_apis[name], args)
        elif self.driver.has_api(name):
            result = await self._invoke(name, self.driver.call, (name, *args))
        else:
            result = build_api_result(error=UNKNOWN_API_MESSAGE)
        logger.info("API %s: %s", name, result.message)
        return result

    @staticmethod
    async def _invoke(name: str, func: Callable[..., Any], args: tuple[Any, ...]) -> ApiResult:
        try:
            result = func(*args)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("API %s failed: %s", name, exc)
            return build_api_result(error=exc)
        return build_api_result(result)

    def _api_get_scenes(self) -> list[dict[str, Any]]:
        return self.scenes.to_document()

    def _api_set_scenes(self, scenes: Any) -> list[dict[str, Any]]:
        self.set_scenes(scenes)
        return self.scenes.to_document()

    def _api_create_scene(self, label: str) -> dict[str, Any]:
        return self.create_scene(label).model_dump(mode="json")

    def _api_remove_scene(self, scene_id: Any) -> bool:
        self.remove_scene(int(scene_id))
        return True

    def _api_scene_get_values(self, scene_id: Any) -> list[dict[str, Any]]:
        return [v.model_dump(mode="json") for v in self.get_scene_values(int(scene_id))]

    def _api_add_scene_value(self, scene_id: Any, *args: Any) -> bool:
        if len(args) >= 2 and isinstance(args[0], Mapping):  # noqa: PLR2004
            ref = ValueRef.from_mapping(args[0])
            value, timeout = args[1], _optional(args, 2)
        elif len(args) >= 5:  # noqa: PLR2004
            ref = ValueRef.of(*(int(a) for a in args[:4]))
            value, timeout = args[4], _optional(args, 5)
        else:
            raise ValueNotFoundError("", "No valueId found in parameters")
        self.add_scene_value(int(scene_id), ref, value, timeout)
        return True

    def _api_remove_scene_value(self, scene_id: Any, *args: Any) -> bool:
        if len(args) == 1 and isinstance(args[0], Mapping):
            ref = ValueRef.from_mapping(args[0])
        elif len(args) == 4:  # noqa: PLR2004
            ref = ValueRef.of(*(int(a) for a in args))
        else:
            raise ValueNotFoundError("", "No valueId found in parameters")
        self.remove_scene_value(int(scene_id), ref)
        return True

    def _api_activate_scene(self, scene_id: Any) -> bool:
        self.activate_scene(int(scene_id))
        return True

    # --- Bridge handlers ---------------------------------------------------

    async def _on_write_request(self, request: WriteRequest) -> None:
        await self.write_value(request.ref, request.value)

    async def _on_broadcast_request(self, request: BroadcastRequest) -> None:
        await self.write_broadcast(request.device_id, request.key, request.value)

    async def _on_api_call(self, call: ApiCall) -> ApiResult:
        return await self.call_api(call.name, *api_args(call.payload))

    # --- Mesh event listeners ---------------------------------------------

    async def _on_value_changed(self, value: Value, node: Node) -> None:
        path = self.bridge.router.value_topic(node, value)
        if self.settings.gateway.payload_type == "time_value":
            data: Any = {"value": value.value, "time": epoch_ms(self.clock)}
        else:
            data = value.value
        await self.bridge.publish(path, data)
        await self._subscribe_writable(node, value)

    async def _on_node_status(self, node: Node) -> None:
        await self.bridge.update_client_status(node.ready, device_name(node))
        if node.ready and self.settings.gateway.use_node_names:
            # A new name can move other nodes back to their numeric topic.
            await self._subscribe_ready_nodes()

    async def _on_driver_failed(self) -> None:
        self.mesh_connected = False

    async def _subscribe_ready_nodes(self) -> None:
        for node in self.registry.nodes:
            if not node.ready:
                continue
            for value in node.values.values():
                await self._subscribe_writable(node, value)

    async def _subscribe_writable(self, node: Node, value: Value) -> None:
        if value.read_only:
            return
        path = self.bridge.router.value_topic(node, value)
        if path in self._subscribed:
            return
        self._subscribed.add(path)
        await self.bridge.subscribe(path)


def _optional(args: tuple[Any, ...], position: int) -> Any:
    return args[position] if len(args) > position else None

"""Bus connection lifecycle and inbound message dispatch.

:class:`MqttBridge` owns one transport at a time and drives this state
machine::

    DISCONNECTED ──start()──▶ CONNECTING ──connect──▶ CONNECTED
                                                       │    ▲
                                              disconnect    connect
                                                       ▼    │
                                                    RECONNECTING
    (any) ──close()──▶ CLOSED ──update(settings)──▶ CONNECTING

On every transport connect the bridge:

1. replays the subscriptions requested while no connection existed, in
   submission order.  An entry leaves the queue once its subscribe
   succeeds; after a failure the rest waits for the next connect;
2. subscribes both action namespaces (``broadcast``, ``api``);
3. publishes its own status ``{"value": true, ...}`` retained at QoS 1.

The last-will ``{"value": false}`` on the same status topic is handed to
the transport at construction, so the broker announces an abnormal
disconnect on the bridge's behalf.

Inbound messages go through :meth:`TopicRouter.decode` and reach the
registered handlers as typed commands.  Callbacks from a previous
session's transport and messages arriving after
:meth:`MqttBridge.close` are ignored.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from functools import partial
from typing import Any

from zwave2mqtt._clock import ClockPort, SystemClock, epoch_ms
from zwave2mqtt._errors import ApiResult, GatewayError, InvalidTopicError
from zwave2mqtt._mqtt import (
    MqttTransport,
    TransportFactory,
    WillConfig,
    build_mqtt_client,
)
from zwave2mqtt._registry import DeviceRegistry
from zwave2mqtt._router import (
    NAME_PREFIX,
    ApiCall,
    BroadcastRequest,
    TopicRouter,
    WriteRequest,
    encode_payload,
    sanitize_name,
    status_payload,
)
from zwave2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

WriteHandler = Callable[[WriteRequest], Awaitable[None]]
BroadcastHandler = Callable[[BroadcastRequest], Awaitable[None]]
ApiHandler = Callable[[ApiCall], Awaitable[ApiResult]]


class BridgeState(StrEnum):
    """Connection state of the bridge."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class MqttBridge:
    """Connects the gateway to the bus and dispatches bus commands.

    Args:
        settings: Broker connection and topic settings.
        registry: Registry the router resolves write topics against.
        clock: Wall clock for status timestamps.
        use_node_names: Render nodes as ``{location}/{name}``.
        transport_factory: Builds the transport for each session.
    """

    def __init__(
        self,
        settings: MqttSettings,
        *,
        registry: DeviceRegistry,
        clock: ClockPort | None = None,
        use_node_names: bool = False,
        transport_factory: TransportFactory = build_mqtt_client,
    ) -> None:
        self._registry = registry
        self._clock = clock if clock is not None else SystemClock()
        self._use_node_names = use_node_names
        self._transport_factory = transport_factory
        self._write_handler: WriteHandler | None = None
        self._broadcast_handler: BroadcastHandler | None = None
        self._api_handler: ApiHandler | None = None
        self._init(settings)

    def _init(self, settings: MqttSettings) -> None:
        self.settings = settings
        self.client_id = sanitize_name(NAME_PREFIX + settings.name)
        self.router = TopicRouter(
            prefix=settings.prefix,
            client_id=self.client_id,
            registry=self._registry,
            use_node_names=self._use_node_names,
        )
        self.state = BridgeState.DISCONNECTED
        self.error: str | None = None
        self._closed = False
        self._queue: list[str] = []

        will = WillConfig(
            topic=self.router.client_status_topic(),
            payload=json.dumps({"value": False}),
            qos=1,
            retain=True,
        )
        transport = self._transport_factory(settings, will, self.client_id)
        transport.on_connect(partial(self._on_connect, transport))
        transport.on_disconnect(partial(self._on_disconnect, transport))
        transport.on_message(partial(self._on_message, transport))
        self.transport: MqttTransport = transport

    # -- Handler registration ----------------------------------------------

    def on_write_request(self, handler: WriteHandler) -> None:
        self._write_handler = handler

    def on_broadcast_request(self, handler: BroadcastHandler) -> None:
        self._broadcast_handler = handler

    def on_api_call(self, handler: ApiHandler) -> None:
        """Register the handler whose result is published on the api topic."""
        self._api_handler = handler

    # -- Properties ---------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.state is BridgeState.CONNECTED and self.transport.is_connected

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_subscriptions(self) -> list[str]:
        """Paths queued for subscription on the next connect."""
        return list(self._queue)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the transport; the connect sequence runs once it is up."""
        self.state = BridgeState.CONNECTING
        logger.info("Connecting to MQTT broker as %s", self.client_id)
        await self.transport.start()

    async def close(self) -> None:
        """Stop the transport and ignore every later inbound message.

        Idempotent.
        """
        self._closed = True
        self.state = BridgeState.CLOSED
        await self.transport.stop()
        logger.info("MQTT bridge closed")

    async def update(self, settings: MqttSettings) -> None:
        """Close the current session and start a new one with *settings*.

        Subscriptions still queued in the old session are discarded.
        """
        await self.close()
        logger.info("Restarting MQTT bridge after update")
        self._init(settings)
        await self.start()

    # -- Outbound -----------------------------------------------------------

    async def subscribe(self, path: str) -> None:
        """Accept writes on ``{prefix}/{path}/set``.

        While not connected the path is queued and subscribed on the
        next connect.
        """
        if not self.connected:
            self._queue.append(path)
            return
        await self.transport.subscribe(
            self.router.full_topic(f"{path}/set"),
            qos=self.settings.qos,
        )

    async def publish(self, path: str, data: Any) -> None:
        """Publish *data* as JSON on ``{prefix}/{path}``.

        Failures are logged and recorded in :meth:`get_status`.
        """
        topic = self.router.full_topic(path)
        try:
            await self.transport.publish(
                topic,
                encode_payload(data),
                retain=self.settings.retain,
                qos=self.settings.qos,
            )
        except Exception as exc:
            self.error = str(exc)
            logger.error("Failed to publish to %s: %s", topic, exc, extra={"topic": topic})

    async def update_client_status(self, connected: bool, *devices: str) -> None:
        """Publish the retained status of the bridge or of *devices*."""
        topic = self.router.client_status_topic(*devices)
        try:
            await self.transport.publish(
                topic,
                status_payload(connected, epoch_ms(self._clock)),
                retain=True,
                qos=1,
            )
        except Exception as exc:
            self.error = str(exc)
            logger.error("Failed to publish status to %s: %s", topic, exc, extra={"topic": topic})

    def get_status(self) -> dict[str, Any]:
        """Connectivity snapshot: ``{"status", "error", "config"}``."""
        return {
            "status": self.connected,
            "error": self.error or "Offline",
            "config": self.settings.model_dump(exclude={"password"}),
        }

    # -- Transport callbacks -----------------------------------------------

    def _stale(self, transport: MqttTransport) -> bool:
        return self._closed or transport is not self.transport

    async def _on_connect(self, transport: MqttTransport) -> None:
        if self._stale(transport):
            return
        self.state = BridgeState.CONNECTED
        self.error = None
        logger.info("MQTT bridge connected")

        await self._replay_queue()

        for topic in self.router.action_subscriptions:
            await self.transport.subscribe(topic, qos=1)

        await self.update_client_status(True)

    async def _replay_queue(self) -> None:
        # An entry leaves the queue only once its subscribe succeeded.
        while self._queue:
            path = self._queue[0]
            topic = self.router.full_topic(f"{path}/set")
            try:
                await self.transport.subscribe(topic, qos=self.settings.qos)
            except Exception as exc:
                self.error = str(exc)
                logger.warning(
                    "Failed to subscribe to %s, %d subscriptions kept for the next connect: %s",
                    topic,
                    len(self._queue),
                    exc,
                    extra={"topic": topic},
                )
                return
            del self._queue[0]

    async def _on_disconnect(self, transport: MqttTransport, error: str) -> None:
        if self._stale(transport):
            return
        self.error = error
        self.state = BridgeState.RECONNECTING
        logger.warning("MQTT bridge disconnected: %s", error)

    async def _on_message(self, transport: MqttTransport, topic: str, payload: str) -> None:
        if self._stale(transport):
            return
        logger.debug("Message received on %s", topic, extra={"topic": topic})

        try:
            command = self.router.decode(topic, payload)
        except InvalidTopicError as exc:
            logger.debug("Dropping message: %s", exc, extra={"topic": topic})
            return
        except GatewayError as exc:
            logger.warning("Cannot write %s: %s", topic, exc, extra={"topic": topic})
            return

        if isinstance(command, WriteRequest):
            if self._write_handler is not None:
                await self._write_handler(command)
        elif isinstance(command, BroadcastRequest):
            if self._broadcast_handler is not None:
                await self._broadcast_handler(command)
            await self.publish(command.feedback_path, command.value)
        elif isinstance(command, ApiCall) and self._api_handler is not None:
            result = await self._api_handler(command)
            await self.publish(command.path, result.to_dict())

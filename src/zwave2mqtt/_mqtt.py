"""MQTT transport port and adapters.

Provides the transport protocols and two implementations:

- MqttClient — real aiomqtt-based client with reconnection
- MockMqttClient — test double that records calls and simulates
  broker connect/disconnect and inbound messages

Design decisions:

- aiomqtt imported lazily inside MqttClient._connection_loop() so the
  mock works without aiomqtt installed
- The transport restores its own subscriptions after a reconnect, the
  way broker client libraries do; the bridge only replays what was
  requested while no connection existed yet
- Connection state changes are announced through ``on_connect`` /
  ``on_disconnect`` callbacks so the bridge can run its connect
  sequence without polling
- WillConfig abstracts LWT without leaking aiomqtt types
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from zwave2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

ConnectCallback = Callable[[], Awaitable[None]]
"""Async callback run each time a broker connection is established."""

DisconnectCallback = Callable[[str], Awaitable[None]]
"""Async callback receiving the error message when a connection drops."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WillConfig:
    """Last-Will-and-Testament configuration.

    Abstracts ``aiomqtt.Will`` so that callers never depend on the
    aiomqtt package directly.
    """

    topic: str
    payload: str
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports (Protocols)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str, *, qos: int = 1) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Transport that owns a connection loop."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    @property
    def is_connected(self) -> bool: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Transport that reports inbound messages and connection changes."""

    def on_message(self, callback: MessageCallback) -> None: ...

    def on_connect(self, callback: ConnectCallback) -> None: ...

    def on_disconnect(self, callback: DisconnectCallback) -> None: ...


@runtime_checkable
class MqttTransport(MqttPort, MqttLifecycle, MqttMessageHandler, Protocol):
    """Everything the bridge needs from a broker connection."""


TransportFactory = Callable[[MqttSettings, WillConfig, str], MqttTransport]
"""Builds a transport from settings, the LWT and the client id."""


@dataclass
class _Callbacks:
    message: list[MessageCallback] = field(default_factory=list)
    connect: list[ConnectCallback] = field(default_factory=list)
    disconnect: list[DisconnectCallback] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes and subscriptions for assertion.  The broker
    side is driven explicitly with :meth:`simulate_connect`,
    :meth:`simulate_disconnect` and :meth:`deliver`.
    """

    settings: MqttSettings | None = None
    will: WillConfig | None = None
    client_id: str = ""
    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    started: bool = False
    stopped: bool = False
    connected: bool = False
    _callbacks: _Callbacks = field(
        default_factory=_Callbacks,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call."""
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str, *, qos: int = 1) -> None:  # noqa: ARG002
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True
        self.connected = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    # -- Callback registration ---------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.message.append(callback)

    def on_connect(self, callback: ConnectCallback) -> None:
        self._callbacks.connect.append(callback)

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        self._callbacks.disconnect.append(callback)

    # -- Test helpers -------------------------------------------------------

    async def simulate_connect(self) -> None:
        """Mark the broker connection as up and run connect callbacks."""
        self.connected = True
        for cb in self._callbacks.connect:
            await cb()

    async def simulate_disconnect(self, error: str = "connection lost") -> None:
        """Mark the broker connection as down and run disconnect callbacks."""
        self.connected = False
        for cb in self._callbacks.disconnect:
            await cb(error)

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks.message:
            await cb(topic, payload)

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]

    def reset(self) -> None:
        """Clear recorded publishes and subscriptions."""
        self.published.clear()
        self.subscriptions.clear()


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    Uses a background task that maintains a persistent connection with
    automatic reconnection (exponential backoff with jitter, from
    ``settings.reconnect_interval`` up to
    ``settings.reconnect_max_interval``).  ``aiomqtt`` is imported
    lazily inside ``_connection_loop()``.
    """

    settings: MqttSettings
    will: WillConfig | None = None
    client_id: str = ""

    # internal state --------------------------------------------------------
    _callbacks: _Callbacks = field(
        default_factory=_Callbacks,
        init=False,
        repr=False,
    )
    _subscriptions: dict[str, int] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(
            topic,
            payload,
            retain=retain,
            qos=qos,
        )
        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            topic,
            qos,
            retain,
        )

    async def subscribe(self, topic: str, *, qos: int = 1) -> None:
        """Subscribe to *topic*.

        The subscription is tracked internally so it can be restored
        after a reconnection.
        """
        self._subscriptions[topic] = qos
        if self._client is not None:
            await self._client.subscribe(topic, qos=qos)

    # -- Callback registration ---------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.message.append(callback)

    def on_connect(self, callback: ConnectCallback) -> None:
        """Register a callback run after every successful connect."""
        self._callbacks.connect.append(callback)

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        """Register a callback run when an established or attempted connection fails."""
        self._callbacks.disconnect.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(
            self._connection_loop(),
        )

    async def stop(self) -> None:
        """Stop the connection loop and clean up.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    # -- Internal -----------------------------------------------------------

    def _next_delay(self, delay: float) -> float:
        """Double *delay* up to the configured maximum."""
        return min(delay * 2, self.settings.reconnect_max_interval)

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect."""
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        delay = self.settings.reconnect_interval
        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                will: aiomqtt.Will | None = None
                if self.will is not None:
                    will = aiomqtt.Will(
                        topic=self.will.topic,
                        payload=self.will.payload,
                        qos=self.will.qos,
                        retain=self.will.retain,
                    )

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.client_id or None,
                    clean_session=self.settings.clean,
                    will=will,
                ) as client:
                    self._client = client
                    try:
                        for topic, qos in list(self._subscriptions.items()):
                            await client.subscribe(topic, qos=qos)

                        self._connected.set()
                        delay = self.settings.reconnect_interval
                        logger.info(
                            "MQTT connected to %s:%d",
                            self.settings.host,
                            self.settings.port,
                        )
                        await self._notify_connect()

                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None

            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    delay,
                    exc_info=True,
                )
                await self._notify_disconnect(str(exc))
                await asyncio.sleep(delay + random.uniform(0, delay / 10))  # noqa: S311
                delay = self._next_delay(delay)

    async def _notify_connect(self) -> None:
        for cb in self._callbacks.connect:
            try:
                await cb()
            except Exception:
                logger.exception("Error in connect callback")

    async def _notify_disconnect(self, error: str) -> None:
        for cb in self._callbacks.disconnect:
            try:
                await cb(error)
            except Exception:
                logger.exception("Error in disconnect callback")

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan-out an inbound message to callbacks."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug(
                "Skipping message with None payload on %s",
                topic,
            )
            return

        if isinstance(message.payload, (bytes, bytearray)):
            try:
                payload = message.payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                logger.warning(
                    "Dropping message on %s: payload is not UTF-8 (%s)",
                    topic,
                    exc,
                    extra={"topic": topic},
                )
                return
        else:
            payload = str(message.payload)

        for cb in self._callbacks.message:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception(
                    "Error in message callback for %s",
                    topic,
                )


def build_mqtt_client(settings: MqttSettings, will: WillConfig, client_id: str) -> MqttClient:
    """Default transport factory used by the bridge."""
    return MqttClient(settings=settings, will=will, client_id=client_id)

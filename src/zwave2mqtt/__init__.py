"""zwave2mqtt.

Bridges a Z-Wave mesh network to an MQTT bus: device state is published
on topics, writes, broadcasts and API calls are accepted on topics, and
scenes (stored macros of delayed value writes) can be activated.
"""

from importlib.metadata import PackageNotFoundError, version

from zwave2mqtt._bridge import BridgeState, MqttBridge
from zwave2mqtt._clock import ClockPort, SystemClock
from zwave2mqtt._errors import (
    ApiResult,
    GatewayError,
    InvalidSceneValueError,
    InvalidTopicError,
    NodeNotFoundError,
    PersistenceError,
    SceneNotFoundError,
    TransportError,
    ValueNotFoundError,
    build_api_result,
)
from zwave2mqtt._events import MeshEventAdapter
from zwave2mqtt._gateway import Gateway
from zwave2mqtt._logging import JsonFormatter, configure_logging
from zwave2mqtt._mesh import MeshDriverPort, MockMeshDriver, NullMeshDriver
from zwave2mqtt._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    MqttTransport,
    WillConfig,
)
from zwave2mqtt._registry import (
    Device,
    DeviceRegistry,
    Node,
    NodeGroup,
    NodeStatus,
    Value,
    ValueKey,
    ValueRef,
)
from zwave2mqtt._router import (
    ApiCall,
    BroadcastRequest,
    TopicRouter,
    WriteRequest,
    parse_payload,
    sanitize_name,
)
from zwave2mqtt._scenes import Scene, SceneStore, SceneValue
from zwave2mqtt._scheduler import SceneScheduler
from zwave2mqtt._settings import (
    GatewaySettings,
    LoggingSettings,
    MqttSettings,
    Settings,
    StoreSettings,
    ZwaveSettings,
)
from zwave2mqtt._store import DocumentStorePort, JsonStore

try:
    __version__ = version("zwave2mqtt")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Gateway
    "Gateway",
    # Bridge
    "BridgeState",
    "MqttBridge",
    # Clock
    "ClockPort",
    "SystemClock",
    # Errors
    "ApiResult",
    "GatewayError",
    "InvalidSceneValueError",
    "InvalidTopicError",
    "NodeNotFoundError",
    "PersistenceError",
    "SceneNotFoundError",
    "TransportError",
    "ValueNotFoundError",
    "build_api_result",
    # Events
    "MeshEventAdapter",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # Mesh
    "MeshDriverPort",
    "MockMeshDriver",
    "NullMeshDriver",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "MqttTransport",
    "WillConfig",
    # Registry
    "Device",
    "DeviceRegistry",
    "Node",
    "NodeGroup",
    "NodeStatus",
    "Value",
    "ValueKey",
    "ValueRef",
    # Router
    "ApiCall",
    "BroadcastRequest",
    "TopicRouter",
    "WriteRequest",
    "parse_payload",
    "sanitize_name",
    # Scenes
    "Scene",
    "SceneScheduler",
    "SceneStore",
    "SceneValue",
    # Settings
    "GatewaySettings",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "StoreSettings",
    "ZwaveSettings",
    # Store
    "DocumentStorePort",
    "JsonStore",
]

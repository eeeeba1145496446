"""Public test-support utilities for zwave2mqtt.

Re-exports test doubles and factories so that test suites can import
everything from a single ``zwave2mqtt.testing`` namespace instead of
reaching into private modules.

Provided symbols:

- :class:`GatewayHarness` — Gateway wired to the doubles below.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`MockMeshDriver` — mesh driver double that records writes.
- :class:`FakeClock` — deterministic wall clock.
- :class:`MemoryStore` — in-memory document store.
- :func:`make_settings` — factory for ``Settings`` without ``.env`` files.
"""

from zwave2mqtt._mesh import MockMeshDriver
from zwave2mqtt._mqtt import MockMqttClient
from zwave2mqtt.testing._clock import FakeClock
from zwave2mqtt.testing._harness import GatewayHarness
from zwave2mqtt.testing._settings import make_settings
from zwave2mqtt.testing._store import MemoryStore

__all__ = [
    "FakeClock",
    "GatewayHarness",
    "MemoryStore",
    "MockMeshDriver",
    "MockMqttClient",
    "make_settings",
]

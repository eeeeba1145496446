"""Unit tests for zwave2mqtt._gateway — composition root and operations.

Test Techniques Used:
    - Integration via Harness: Gateway wired to in-memory doubles
    - Specification-based Testing: named API calls and their results
    - State Transition Testing: driver connect retries, shutdown, bus update
    - Decision Table: api payload to positional arguments
    - Error Guessing: disconnected driver, unknown APIs, bad arguments
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from zwave2mqtt._gateway import (
    NOT_CONNECTED_MESSAGE,
    UNKNOWN_API_MESSAGE,
    api_args,
    device_name,
)
from zwave2mqtt._registry import Node, ValueKey, ValueRef
from zwave2mqtt._settings import GatewaySettings, MqttSettings
from zwave2mqtt.testing import GatewayHarness

CLIENT = "zwave/_CLIENTS/ZWAVE_GATEWAY-zwave2mqtt"
SWITCH = {"class_id": 37, "instance": 1, "index": 0, "label": "Switch", "value": False}
METER = {"class_id": 50, "instance": 1, "index": 0, "label": "Power", "value": 12.5, "read_only": True}
PLUG = {"manufacturerid": "0x86", "productid": "0x60", "producttype": "0x3", "product": "Plug", "manufacturer": "Aeotec"}
SWITCH_REF = ValueRef.of(2, 37, 1, 0)
ONLINE = json.dumps({"value": True, "time": 1_700_000_000_000})
OFFLINE = json.dumps({"value": False, "time": 1_700_000_000_000})


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
async def started(harness: GatewayHarness) -> GatewayHarness:
    await harness.start()
    return harness


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestApiArgs:
    """Technique: Decision Table."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            (None, ()),
            ({"args": [1, "a"]}, (1, "a")),
            ({"args": 3}, (3,)),
            ([4, 5], (4, 5)),
            ("Evening", ("Evening",)),
            ({"sceneid": 1}, ({"sceneid": 1},)),
            (0, (0,)),
        ],
    )
    def test_payload_to_args(self, payload: Any, expected: tuple[Any, ...]) -> None:
        assert api_args(payload) == expected

    def test_device_name(self) -> None:
        assert device_name(Node(node_id=4)) == "nodeID_4"
        assert device_name(Node(node_id=4, name="Hall")) == "Hall"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Technique: State Transition Testing."""

    async def test_start_connects_everything(self, started: GatewayHarness) -> None:
        assert started.mqtt.started
        assert started.mesh.connected
        assert started.gateway.mesh_connected
        assert started.mesh.events is started.gateway.events
        assert started.mqtt.get_messages_for(f"{CLIENT}/status") == [(ONLINE, True, 1)]

    async def test_start_loads_scenes(self, harness: GatewayHarness) -> None:
        harness.store.documents["scenes.json"] = [{"sceneid": 3, "label": "Night", "values": []}]
        await harness.start()
        assert [s.sceneid for s in harness.gateway.get_scenes()] == [3]

    async def test_driver_connect_retries(self, harness: GatewayHarness) -> None:
        harness.mesh.fail_connect = 2
        await harness.start()

        assert harness.mesh.connect_attempts == 3
        assert harness.gateway.mesh_connected

    async def test_driver_gives_up(
        self,
        harness: GatewayHarness,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        harness.mesh.fail_connect = 3
        await harness.start()

        assert harness.mesh.connect_attempts == 3
        assert not harness.gateway.mesh_connected
        assert "Giving up on mesh driver after 3 attempts" in caplog.text

    async def test_stop_publishes_offline_and_closes(self, started: GatewayHarness) -> None:
        started.gateway.create_scene("Evening")
        await started.gateway.stop()

        assert started.mqtt.published[-1] == (f"{CLIENT}/status", OFFLINE, True, 1)
        assert started.mqtt.stopped
        assert not started.mesh.connected
        assert started.store.documents["scenes.json"][0]["label"] == "Evening"

    async def test_stop_without_bus_skips_status(self, harness: GatewayHarness) -> None:
        await harness.start(connect=False)
        await harness.gateway.stop()
        assert harness.mqtt.published == []

    async def test_run_until_shutdown_event(self, harness: GatewayHarness) -> None:
        shutdown = asyncio.Event()
        task = asyncio.create_task(harness.gateway.run(shutdown_event=shutdown))
        await _settle()
        assert harness.mqtt.started

        shutdown.set()
        await task
        assert harness.mqtt.stopped

    async def test_driver_failure_disconnects(self, started: GatewayHarness) -> None:
        await started.gateway.events.driver_failed()
        assert not started.gateway.mesh_connected
        result = await started.gateway.call_api("getScenes")
        assert result.message == NOT_CONNECTED_MESSAGE

    async def test_get_status(self, started: GatewayHarness) -> None:
        status = started.gateway.get_status()
        assert status["status"] is True
        assert status["config"]["prefix"] == "zwave"


# ---------------------------------------------------------------------------
# Values on the bus
# ---------------------------------------------------------------------------


class TestValuePublishing:
    """Technique: Integration via Harness."""

    async def test_ready_node_publishes_values_and_status(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH])

        assert started.mqtt.get_messages_for("zwave/2/37/1/0") == [("false", False, 1)]
        assert started.mqtt.get_messages_for(f"{CLIENT}/$devices/nodeID_2/status") == [(ONLINE, True, 1)]

    async def test_named_node_status_topic(self, started: GatewayHarness) -> None:
        await started.add_node(2, info={"name": "Kitchen Plug"})
        assert started.mqtt.get_messages_for(f"{CLIENT}/$devices/Kitchen_Plug/status")

    async def test_time_value_payload(self) -> None:
        harness = GatewayHarness.create(gateway=GatewaySettings(payload_type="time_value"))
        await harness.start()
        await harness.add_node(2, values=[SWITCH])

        [(payload, _, _)] = harness.mqtt.get_messages_for("zwave/2/37/1/0")
        assert json.loads(payload) == {"value": False, "time": 1_700_000_000_000}

    async def test_node_names_in_value_topics(self) -> None:
        harness = GatewayHarness.create(gateway=GatewaySettings(use_node_names=True))
        await harness.start()
        await harness.add_node(2, values=[SWITCH], info={"name": "Plug", "loc": "Living Room"})

        assert harness.mqtt.get_messages_for("zwave/Living_Room/Plug/37/1/0")
        assert "zwave/Living_Room/Plug/37/1/0/set" in harness.mqtt.subscriptions

    async def test_writable_values_subscribed_once(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH, METER])
        await started.gateway.events.value_changed(2, 37, {**SWITCH, "value": True})

        assert started.mqtt.subscriptions.count("zwave/2/37/1/0/set") == 1
        assert "zwave/2/50/1/0/set" not in started.mqtt.subscriptions
        assert len(started.mqtt.get_messages_for("zwave/2/37/1/0")) == 2

    async def test_subscriptions_wait_for_bus(self, harness: GatewayHarness) -> None:
        await harness.start(connect=False)
        await harness.add_node(2, values=[SWITCH])
        assert harness.mqtt.subscriptions == []

        await harness.mqtt.simulate_connect()

        assert harness.mqtt.subscriptions == [
            "zwave/2/37/1/0/set",
            f"{CLIENT}/broadcast/#",
            f"{CLIENT}/api/#",
        ]


# ---------------------------------------------------------------------------
# Writes from the bus
# ---------------------------------------------------------------------------


class TestWrites:
    """Technique: Integration via Harness + Error Guessing."""

    async def test_write_topic_reaches_driver(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH])
        await started.mqtt.deliver("zwave/2/37/1/0/set", "true")
        assert started.mesh.writes == [(SWITCH_REF, True)]

    async def test_unknown_value_is_dropped(
        self,
        started: GatewayHarness,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await started.add_node(2, values=[SWITCH])
        await started.mqtt.deliver("zwave/9/37/1/0/set", "1")
        assert started.mesh.writes == []
        assert "Cannot write" in caplog.text

    async def test_write_dropped_while_driver_down(self, harness: GatewayHarness) -> None:
        harness.mesh.fail_connect = 3
        await harness.start()
        await harness.gateway.write_value(SWITCH_REF, True)
        assert harness.mesh.writes == []

    async def test_broadcast_writes_every_node_of_template(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH], info=PLUG)
        await started.add_node(3, values=[SWITCH], info=PLUG)
        await started.add_node(4, values=[SWITCH], info={"manufacturerid": "0x10"})

        topic = f"{CLIENT}/broadcast/134-96-3/37/1/0"
        await started.mqtt.deliver(f"{topic}/set", "1")

        assert started.mesh.writes == [(SWITCH_REF, 1), (ValueRef.of(3, 37, 1, 0), 1)]
        assert started.mqtt.get_messages_for(topic) == [("1", False, 1)]

    async def test_broadcast_count(self, started: GatewayHarness) -> None:
        await started.add_node(2, info=PLUG)
        assert await started.gateway.write_broadcast("134-96-3", ValueKey(37, 1, 0), 0) == 1
        assert await started.gateway.write_broadcast("1-1-1", ValueKey(37, 1, 0), 0) == 0


# ---------------------------------------------------------------------------
# Named API
# ---------------------------------------------------------------------------


class TestCallApi:
    """Technique: Specification-based Testing + Error Guessing."""

    async def test_refused_while_driver_disconnected(self, harness: GatewayHarness) -> None:
        result = await harness.gateway.call_api("getScenes")
        assert result.to_dict() == {"success": False, "message": NOT_CONNECTED_MESSAGE}

    async def test_unknown_api(self, started: GatewayHarness) -> None:
        result = await started.gateway.call_api("frobnicate")
        assert result.to_dict() == {"success": False, "message": UNKNOWN_API_MESSAGE}

    async def test_driver_api(self, started: GatewayHarness) -> None:
        started.mesh.apis["healNetworkNode"] = lambda node_id: {"healed": node_id}
        result = await started.gateway.call_api("healNetworkNode", 5)

        assert result.success
        assert result.result == {"healed": 5}
        assert started.mesh.calls == [("healNetworkNode", (5,))]

    async def test_driver_api_failure(self, started: GatewayHarness) -> None:
        def boom() -> None:
            msg = "controller busy"
            raise RuntimeError(msg)

        started.mesh.apis["softReset"] = boom
        result = await started.gateway.call_api("softReset")
        assert result.to_dict() == {"success": False, "message": "controller busy"}

    async def test_scene_crud(self, started: GatewayHarness) -> None:
        gateway = started.gateway
        created = await gateway.call_api("createScene", "Evening")
        assert created.result == {"sceneid": 1, "label": "Evening", "values": []}

        replaced = await gateway.call_api("setScenes", [{"sceneid": 1, "label": "a"}, {"sceneid": 3, "label": "b"}])
        assert [s["sceneid"] for s in replaced.result] == [1, 3]
        assert (await gateway.call_api("createScene", "c")).result["sceneid"] == 4

        assert (await gateway.call_api("removeScene", 3)).result is True
        listed = await gateway.call_api("getScenes")
        assert [s["sceneid"] for s in listed.result] == [1, 4]

    async def test_set_scenes_invalid(self, started: GatewayHarness) -> None:
        result = await started.gateway.call_api("setScenes", "not scenes")
        assert not result.success

    async def test_unknown_scene(self, started: GatewayHarness) -> None:
        for name in ("removeScene", "sceneGetValues", "activateScene"):
            result = await started.gateway.call_api(name, 9)
            assert result.message == "No scene found with given sceneid"

    async def test_scene_values_both_argument_forms(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH, {**SWITCH, "class_id": 38, "label": "Level"}])
        gateway = started.gateway
        await gateway.call_api("createScene", "Evening")

        target = {"node_id": 2, "class_id": 37, "instance": 1, "index": 0}
        assert (await gateway.call_api("addSceneValue", 1, target, True, 5)).result is True
        assert (await gateway.call_api("addSceneValue", 1, 2, 38, 1, 0, 40)).result is True

        values = (await gateway.call_api("sceneGetValues", 1)).result
        assert [(v["value_id"], v["value"], v["timeout"]) for v in values] == [
            ("2-37-1-0", True, 5),
            ("2-38-1-0", 40, 0),
        ]

        assert (await gateway.call_api("removeSceneValue", 1, target)).result is True
        assert (await gateway.call_api("removeSceneValue", 1, 2, 38, 1, 0)).result is True
        assert (await gateway.call_api("sceneGetValues", 1)).result == []

    async def test_scene_value_argument_errors(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH])
        gateway = started.gateway
        await gateway.call_api("createScene", "Evening")

        bad_args = await gateway.call_api("addSceneValue", 1, "2-37-1-0")
        assert bad_args.message == "No valueId found in parameters"

        missing = await gateway.call_api("addSceneValue", 1, 2, 49, 1, 0, 1)
        assert missing.message == "No value found with given valueId"

        unknown_node = await gateway.call_api("addSceneValue", 1, 7, 37, 1, 0, 1)
        assert unknown_node.message == "Node not found"

        negative_delay = await gateway.call_api("addSceneValue", 1, 2, 37, 1, 0, True, -5)
        assert negative_delay.message == "Invalid scene value timeout -5: expected seconds >= 0"

        not_in_scene = await gateway.call_api("removeSceneValue", 1, 2, 37, 1, 0)
        assert not_in_scene.message == "No valueid match found in given scene"

    async def test_activate_scene(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH])
        gateway = started.gateway
        gateway.create_scene("Evening")
        gateway.add_scene_value(1, SWITCH_REF, True, 3)

        result = await gateway.call_api("activateScene", 1)
        assert result.result is True
        await _settle()

        assert started.sleeps == [3]
        assert started.mesh.writes == [(SWITCH_REF, True)]

    async def test_api_over_the_bus(self, started: GatewayHarness) -> None:
        await started.mqtt.deliver(f"{CLIENT}/api/createScene/set", json.dumps({"args": ["Evening"]}))

        [(payload, _, _)] = started.mqtt.get_messages_for(f"{CLIENT}/api/createScene")
        assert json.loads(payload) == {
            "success": True,
            "message": "Success zwave api call",
            "result": {"sceneid": 1, "label": "Evening", "values": []},
        }


# ---------------------------------------------------------------------------
# Bus reconfiguration
# ---------------------------------------------------------------------------


class TestUpdateMqtt:
    """Technique: State Transition Testing."""

    async def test_new_session_restores_write_topics(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH, METER])
        old = started.mqtt

        await started.gateway.update_mqtt(MqttSettings(prefix="home"))

        assert old.stopped
        assert len(started.transports) == 2
        assert started.gateway.settings.mqtt.prefix == "home"

        await started.mqtt.simulate_connect()
        assert started.mqtt.subscriptions == [
            "home/2/37/1/0/set",
            "home/_CLIENTS/ZWAVE_GATEWAY-zwave2mqtt/broadcast/#",
            "home/_CLIENTS/ZWAVE_GATEWAY-zwave2mqtt/api/#",
        ]

    async def test_old_session_is_ignored(self, started: GatewayHarness) -> None:
        await started.add_node(2, values=[SWITCH])
        old = started.mqtt
        await started.gateway.update_mqtt(MqttSettings())

        await old.deliver("zwave/2/37/1/0/set", "true")
        assert started.mesh.writes == []

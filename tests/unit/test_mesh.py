"""Unit tests for zwave2mqtt._mesh — mesh driver port and adapters.

Test Techniques Used:
    - Protocol Conformance: Null and Mock adapters satisfy MeshDriverPort
    - Specification-based Testing: MockMeshDriver recording
    - Error Guessing: driver import strings that cannot resolve
"""

from __future__ import annotations

import pytest

from zwave2mqtt._errors import TransportError
from zwave2mqtt._mesh import (
    POLLED_CLASSES,
    MeshDriverPort,
    MockMeshDriver,
    NullMeshDriver,
    load_driver,
)
from zwave2mqtt._registry import ValueRef
from zwave2mqtt._settings import ZwaveSettings

REF = ValueRef.of(2, 0x25, 1, 0)


class TestProtocol:
    """Technique: Protocol Conformance."""

    def test_null_driver(self) -> None:
        assert isinstance(NullMeshDriver(), MeshDriverPort)

    def test_mock_driver(self) -> None:
        assert isinstance(MockMeshDriver(), MeshDriverPort)

    def test_polled_classes(self) -> None:
        assert frozenset({0x25, 0x26, 0x30, 0x31, 0x60}) == POLLED_CLASSES


class TestNullMeshDriver:
    """Technique: Specification-based Testing."""

    async def test_accepts_commands_silently(self) -> None:
        driver = NullMeshDriver(ZwaveSettings())
        await driver.connect()
        await driver.set_value(REF, True)
        driver.enable_poll(REF)
        await driver.close()

        assert driver.is_polled(REF) is False
        assert driver.get_num_groups(2) == 0

    async def test_exposes_no_api(self) -> None:
        driver = NullMeshDriver()
        assert driver.has_api("healNetwork") is False
        with pytest.raises(TransportError):
            await driver.call("healNetwork")


class TestMockMeshDriver:
    """Technique: Specification-based Testing."""

    async def test_fails_configured_attempts(self) -> None:
        driver = MockMeshDriver(fail_connect=2)
        for _ in range(2):
            with pytest.raises(TransportError):
                await driver.connect()
        await driver.connect()

        assert driver.connected
        assert driver.connect_attempts == 3

    async def test_records_writes_and_calls(self) -> None:
        driver = MockMeshDriver(apis={"healNetwork": True, "getInfo": lambda n: {"node": n}})
        await driver.set_value(REF, 99)

        assert await driver.call("healNetwork") is True
        assert await driver.call("getInfo", 3) == {"node": 3}
        assert driver.writes == [(REF, 99)]
        assert driver.calls == [("healNetwork", ()), ("getInfo", (3,))]

    def test_groups_are_one_based(self) -> None:
        driver = MockMeshDriver(groups={2: ["Lifeline", "Basic"]})
        assert driver.get_num_groups(2) == 2
        assert driver.get_group_label(2, 1) == "Lifeline"
        assert driver.get_num_groups(3) == 0

    def test_polling(self) -> None:
        driver = MockMeshDriver()
        driver.enable_poll(REF)
        driver.set_poll_interval(30000)
        assert driver.is_polled(REF)
        assert driver.poll_interval == 30000


class TestLoadDriver:
    """Technique: Specification-based Testing + Error Guessing."""

    def test_default_is_null_driver(self) -> None:
        settings = ZwaveSettings()
        driver = load_driver(settings)
        assert isinstance(driver, NullMeshDriver)
        assert driver.settings is settings

    def test_missing_colon(self) -> None:
        with pytest.raises(ValueError, match="module.path:ClassName"):
            load_driver(ZwaveSettings(driver="zwave2mqtt._mesh.NullMeshDriver"))

    def test_unknown_module(self) -> None:
        with pytest.raises(ImportError):
            load_driver(ZwaveSettings(driver="zwave2mqtt_missing:Driver"))

    def test_unknown_class(self) -> None:
        with pytest.raises(AttributeError):
            load_driver(ZwaveSettings(driver="zwave2mqtt._mesh:NoSuchDriver"))

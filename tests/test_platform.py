"""Tests for platform queries."""


import unittest
import asyncio
from netconform.device.device import Device
from netconform.device.repo import InMemoryRepository
from netconform.lib.errors import InvalArgError, NotConvergedError
from netconform.lib.watcher import Converged, TimedOut
from netconform.system.platform import (
    ComponentType,
    OperStatus,
    RedundantRole,
    SoftwareComponentType,
    await_interfaces_up,
    component_path,
    fetch_oper_up_interfaces,
    find_components_by_type,
    find_standby_controller,
    oper_status_path,
    parse_component_type,
    parse_identity,
)


def component(name, **state):
    return {"name": name, "state": dict(name=name, **state)}


def platform_data():
    return {
        "components": {
            "component": {
                "Chassis": component("Chassis", type="openconfig-platform-types:CHASSIS"),
                "Supervisor1": component(
                    "Supervisor1",
                    type="openconfig-platform-types:CONTROLLER_CARD",
                    **{"redundant-role": "PRIMARY"},
                ),
                "Supervisor2": component(
                    "Supervisor2",
                    type="openconfig-platform-types:CONTROLLER_CARD",
                    **{"redundant-role": "SECONDARY"},
                ),
                "Linecard0": component("Linecard0", type="LINECARD", removable=False),
                "Linecard1": component("Linecard1", type="LINECARD", removable=True),
                "OS": component("OS", type="openconfig-platform-types:OPERATING_SYSTEM"),
                "Unknown": {"name": "Unknown", "state": {}},
            }
        },
        "interfaces": {
            "interface": {
                "Ethernet10": {"name": "Ethernet10", "state": {"oper-status": "UP"}},
                "Ethernet2": {"name": "Ethernet2", "state": {"oper-status": "UP"}},
                "Ethernet3": {"name": "Ethernet3", "state": {"oper-status": "DOWN"}},
            }
        },
    }


class TestParse(unittest.TestCase):
    def test_parse_identity(self):
        self.assertEqual(parse_identity(OperStatus, "UP"), OperStatus.UP)
        self.assertEqual(
            parse_identity(RedundantRole, "openconfig-platform-types:SECONDARY"),
            RedundantRole.SECONDARY,
        )
        self.assertEqual(parse_identity(OperStatus, OperStatus.DOWN), OperStatus.DOWN)
        with self.assertRaises(InvalArgError):
            parse_identity(OperStatus, "SIDEWAYS")
        with self.assertRaises(InvalArgError):
            parse_identity(OperStatus, 1)

    def test_parse_component_type(self):
        self.assertEqual(parse_component_type("oc-platform-types:LINECARD"), ComponentType.LINECARD)
        self.assertEqual(parse_component_type("BIOS"), SoftwareComponentType.BIOS)
        with self.assertRaises(InvalArgError):
            parse_component_type("TOASTER")

    def test_paths(self):
        self.assertEqual(
            component_path("Linecard0", "removable"),
            "/components/component[name='Linecard0']/state/removable",
        )
        self.assertEqual(
            oper_status_path("Ethernet1"),
            "/interfaces/interface[name='Ethernet1']/state/oper-status",
        )


class TestPlatform(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.dut = Device("dut", InMemoryRepository(platform_data()), interval=0.01)

    async def test_find_components_by_type(self):
        self.assertEqual(
            find_components_by_type(self.dut, ComponentType.LINECARD),
            ["Linecard0", "Linecard1"],
        )
        self.assertEqual(
            find_components_by_type(self.dut, ComponentType.CONTROLLER_CARD),
            ["Supervisor1", "Supervisor2"],
        )
        self.assertEqual(find_components_by_type(self.dut, ComponentType.FAN), [])

    async def test_find_components_no_components(self):
        dut = Device("dut", InMemoryRepository())
        self.assertEqual(find_components_by_type(dut, ComponentType.LINECARD), [])

    async def test_find_components_invalid_type(self):
        self.dut.replace(component_path("Linecard0", "type"), "TOASTER")
        with self.assertRaises(InvalArgError):
            find_components_by_type(self.dut, ComponentType.LINECARD)

    async def test_find_standby_controller(self):
        standby, active = await find_standby_controller(self.dut, ["Supervisor1", "Supervisor2"], 1)
        self.assertEqual((standby, active), ("Supervisor2", "Supervisor1"))

    async def test_find_standby_controller_late_role(self):
        role = component_path("Supervisor2", "redundant-role")
        self.dut.delete(role)
        asyncio.get_running_loop().call_later(0.05, self.dut.replace, role, "SECONDARY")
        standby, _ = await find_standby_controller(self.dut, ["Supervisor1", "Supervisor2"], 1)
        self.assertEqual(standby, "Supervisor2")

    async def test_find_standby_controller_no_role(self):
        self.dut.delete(component_path("Supervisor2", "redundant-role"))
        with self.assertRaises(NotConvergedError) as cm:
            await find_standby_controller(self.dut, ["Supervisor1", "Supervisor2"], 0.1)
        self.assertIn("redundant roles", str(cm.exception))

    async def test_find_standby_controller_inconsistent(self):
        self.dut.replace(component_path("Supervisor2", "redundant-role"), "PRIMARY")
        with self.assertRaises(InvalArgError):
            await find_standby_controller(self.dut, ["Supervisor1", "Supervisor2"], 1)

    async def test_fetch_oper_up_interfaces(self):
        self.assertEqual(fetch_oper_up_interfaces(self.dut), ["Ethernet2", "Ethernet10"])

    async def test_await_interfaces_up(self):
        self.dut.replace(oper_status_path("Ethernet2"), "DOWN")
        asyncio.get_running_loop().call_later(0.05, self.dut.replace, oper_status_path("Ethernet2"), "UP")
        verdict = await await_interfaces_up(self.dut, ["Ethernet2", "Ethernet10"], 1)
        self.assertIsInstance(verdict, Converged)

    async def test_await_interfaces_up_timed_out(self):
        verdict = await await_interfaces_up(self.dut, ["Ethernet2", "Ethernet3"], 0.1)
        self.assertIsInstance(verdict, TimedOut)
        self.assertEqual(verdict.last.value("Ethernet3"), "DOWN")


if __name__ == "__main__":
    unittest.main()

"""Tests for device handles and repositories."""


import unittest
import asyncio
from netconform.device.device import Device
from netconform.device.repo import InMemoryRepository
from netconform.lib.errors import InvalArgError, NotConvergedError, NotFoundError
from netconform.lib.watcher import NOT_OBSERVED, Converged, TimedOut, present


OPER_STATUS = "/interfaces/interface[name='Ethernet1']/state/oper-status"


def interfaces():
    return {
        "interfaces": {
            "interface": {
                "Ethernet1": {"name": "Ethernet1", "state": {"oper-status": "DOWN"}},
                "Ethernet2": {"name": "Ethernet2", "state": {"oper-status": "UP"}},
            }
        }
    }


class TestInMemoryRepository(unittest.TestCase):
    def test_get(self):
        repo = InMemoryRepository(interfaces())
        self.assertEqual(repo.get(OPER_STATUS), "DOWN")
        self.assertEqual(
            repo.get("/interfaces/interface[name='Ethernet2']/state"),
            {"oper-status": "UP"},
        )

    def test_get_copy(self):
        repo = InMemoryRepository(interfaces())
        state = repo.get("/interfaces/interface[name='Ethernet2']/state")
        state["oper-status"] = "DOWN"
        self.assertEqual(repo.get("/interfaces/interface[name='Ethernet2']/state/oper-status"), "UP")

    def test_get_not_found(self):
        repo = InMemoryRepository(interfaces())
        with self.assertRaises(NotFoundError):
            repo.get("/interfaces/interface[name='Ethernet3']/state/oper-status")
        with self.assertRaises(NotFoundError):
            repo.get(OPER_STATUS + "/value")

    def test_invalid(self):
        repo = InMemoryRepository()
        with self.assertRaises(InvalArgError):
            repo.get("interfaces")

    def test_replace(self):
        repo = InMemoryRepository()
        repo.replace(OPER_STATUS, "UP")
        self.assertEqual(repo.data["interfaces"]["interface"]["Ethernet1"]["state"]["oper-status"], "UP")
        repo.replace("/interfaces/interface[name='Ethernet1']/state", {"admin-status": "UP"})
        with self.assertRaises(NotFoundError):
            repo.get(OPER_STATUS)

    def test_update(self):
        repo = InMemoryRepository(interfaces())
        repo.update("/interfaces/interface[name='Ethernet1']/state", {"admin-status": "UP"})
        self.assertEqual(
            repo.get("/interfaces/interface[name='Ethernet1']/state"),
            {"oper-status": "DOWN", "admin-status": "UP"},
        )

    def test_multiple_keys(self):
        repo = InMemoryRepository()
        xpath = "/network-instances/network-instance[name='default']/protocols/protocol[identifier='STATIC'][name='static']"
        repo.replace(xpath + "/name", "static")
        self.assertEqual(
            repo.data["network-instances"]["network-instance"]["default"]["protocols"]["protocol"]["STATIC,static"],
            {"name": "static"},
        )

    def test_delete(self):
        repo = InMemoryRepository(interfaces())
        repo.delete(OPER_STATUS)
        with self.assertRaises(NotFoundError):
            repo.get(OPER_STATUS)
        with self.assertRaises(NotFoundError):
            repo.delete(OPER_STATUS)


class TestDevice(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.dut = Device("dut", InMemoryRepository(interfaces()), interval=0.01)

    async def test_lookup(self):
        self.assertEqual(self.dut.get(OPER_STATUS), "DOWN")
        self.assertEqual(self.dut.lookup(OPER_STATUS), "DOWN")
        self.assertIs(self.dut.lookup("/interfaces/interface[name='Ethernet3']/state/oper-status"), NOT_OBSERVED)

    async def test_await_value(self):
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, self.dut.replace, OPER_STATUS, "UP")
        verdict = await self.dut.await_value(OPER_STATUS, "UP", 1)
        self.assertIsInstance(verdict, Converged)
        self.assertEqual(verdict.name, f"dut:{OPER_STATUS}")
        self.assertGreaterEqual(verdict.elapsed, 0.04)

    async def test_await_value_timed_out(self):
        verdict = await self.dut.await_value(OPER_STATUS, "UP", 0.1)
        self.assertIsInstance(verdict, TimedOut)
        self.assertEqual(verdict.last.value, "DOWN")
        with self.assertRaises(NotConvergedError) as cm:
            verdict.check()
        self.assertIn("dut:", str(cm.exception))

    async def test_watch_deleted(self):
        xpath = "/interfaces/interface[name='Ethernet3']/state/oper-status"
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, self.dut.update, "/interfaces/interface[name='Ethernet3']", {"state": {"oper-status": "UP"}})
        verdict = await self.dut.watch(xpath, present(), 1)
        self.assertEqual(verdict.value, "UP")

    async def test_source(self):
        source = self.dut.source(OPER_STATUS, interval=0.5, suppress_redundant=True)
        self.assertEqual(source.interval, 0.5)
        self.assertTrue(source.suppress_redundant)
        self.assertEqual(self.dut.source(OPER_STATUS).interval, 0.01)


if __name__ == "__main__":
    unittest.main()

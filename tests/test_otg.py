"""Tests for the OTG client and traffic validation."""


import unittest
import argparse
from unittest import mock
from aiohttp import web
from aiohttp import test_utils
from netconform.ate.main import main, run
from netconform.ate.otg import FlowMetrics, OtgClient, OtgError, flow_source
from netconform.ate.traffic import (
    check_throughput,
    flow_loss,
    loss_pct,
    loss_table,
    run_traffic,
    verify_loss,
    verify_throughput,
    wait_flows_stopped,
)
from netconform.lib.errors import Error, NotConvergedError
from netconform.lib.watcher import Converged, TimedOut
from netconform.telemetry.source import DEFAULT_POLL_INTERVAL


class FakeOtg:
    """An OTG service with flows which stop a few metrics requests after the stop request.

    Attributes:
        flows (dict): Flow name to its metrics.
        requests (list): (path, body) of the received requests.
        stop_after (int): Metrics requests answered with "started" after a stop request.
    """

    def __init__(self, flows, stop_after=2):
        self.flows = {
            name: {"name": name, "transmit": "stopped", "frames_tx": tx, "frames_rx": rx}
            for name, (tx, rx) in flows.items()
        }
        self.requests = []
        self.stop_after = stop_after
        self.stopping = {}
        self.fail = False

    def app(self):
        app = web.Application()
        app.router.add_post("/config", self.config)
        app.router.add_post("/control/state", self.control)
        app.router.add_post("/monitor/metrics", self.metrics)
        return app

    async def config(self, request):
        self.requests.append(("/config", await request.json()))
        return web.json_response({"warnings": []})

    async def control(self, request):
        body = await request.json()
        self.requests.append(("/control/state", body))
        if body["choice"] == "traffic":
            transmit = body["traffic"]["flow_transmit"]
            names = transmit.get("flow_names", list(self.flows))
            for name in names:
                if transmit["state"] == "start":
                    self.flows[name]["transmit"] = "started"
                elif transmit["state"] == "stop":
                    self.stopping[name] = self.stop_after
        return web.json_response({})

    async def metrics(self, request):
        body = await request.json()
        self.requests.append(("/monitor/metrics", body))
        if self.fail:
            return web.Response(status=500, text="internal error")
        names = body["flow"].get("flow_names", list(self.flows))
        for name in names:
            if name in self.stopping:
                if self.stopping[name] == 0:
                    self.flows[name]["transmit"] = "stopped"
                    del self.stopping[name]
                else:
                    self.stopping[name] -= 1
        return web.json_response(
            {"flow_metrics": [self.flows[name] for name in names if name in self.flows]}
        )


class OtgTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.otg = FakeOtg({"f1": (1000, 1000), "f2": (1000, 900)})
        self.server = test_utils.TestServer(self.otg.app())
        await self.server.start_server()
        self.url = str(self.server.make_url("/"))
        self.client = OtgClient(self.url)

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()


class TestOtgClient(OtgTestCase):
    async def test_set_config(self):
        config = {"flows": [{"name": "f1"}]}
        await self.client.set_config(config)
        self.assertEqual(self.otg.requests, [("/config", config)])

    async def test_start_traffic(self):
        await self.client.start_traffic(["f1"])
        self.assertEqual(
            self.otg.requests,
            [
                (
                    "/control/state",
                    {
                        "choice": "traffic",
                        "traffic": {
                            "choice": "flow_transmit",
                            "flow_transmit": {"state": "start", "flow_names": ["f1"]},
                        },
                    },
                )
            ],
        )
        self.assertEqual(self.otg.flows["f1"]["transmit"], "started")
        self.assertEqual(self.otg.flows["f2"]["transmit"], "stopped")

    async def test_start_protocols(self):
        await self.client.start_protocols()
        self.assertEqual(self.otg.requests[0][1]["choice"], "protocol")

    async def test_get_flow_metrics(self):
        metrics = await self.client.get_flow_metrics()
        self.assertEqual(
            metrics,
            {
                "f1": FlowMetrics("f1", "stopped", 1000, 1000),
                "f2": FlowMetrics("f2", "stopped", 1000, 900),
            },
        )
        self.assertEqual(self.otg.requests[0][1], {"choice": "flow", "flow": {}})
        metrics = await self.client.get_flow_metrics(["f2"])
        self.assertEqual(list(metrics), ["f2"])

    async def test_error(self):
        self.otg.fail = True
        with self.assertRaises(OtgError) as cm:
            await self.client.get_flow_metrics()
        self.assertEqual(cm.exception.status, 500)

    async def test_unreachable(self):
        client = OtgClient("http://127.0.0.1:1")
        try:
            with self.assertRaises(OtgError):
                await client.get_flow_metrics()
        finally:
            await client.close()

    async def test_flow_source_missing(self):
        it = flow_source(self.client, "f3", 0.01).subscribe()
        try:
            sample = await it.__anext__()
        finally:
            await it.aclose()
        self.assertFalse(sample.present)
        self.assertEqual(sample.path, "flows/flow[name='f3']")


class TestTraffic(OtgTestCase):
    def test_loss(self):
        self.assertEqual(loss_pct(0, 0), 0.0)
        self.assertEqual(loss_pct(1000, 900), 10.0)
        self.assertEqual(flow_loss(FlowMetrics("f", "stopped", 200, 50)), 75.0)

    def test_check_throughput(self):
        self.assertTrue(check_throughput(0.0, 100, 1))
        self.assertTrue(check_throughput(50.5, 50, 1))
        self.assertFalse(check_throughput(10.0, 100, 1))

    def test_verify_loss(self):
        metrics = {
            "f1": FlowMetrics("f1", "stopped", 1000, 1000),
            "f2": FlowMetrics("f2", "stopped", 1000, 0),
        }
        verify_loss({"f1": metrics["f1"]}, False)
        verify_loss({"f2": metrics["f2"]}, True)
        with self.assertRaises(Error) as cm:
            verify_loss(metrics, True)
        self.assertIn("f1: got loss 0.00%", str(cm.exception))
        with self.assertRaises(Error):
            verify_loss(metrics, False)

    def test_verify_throughput(self):
        metrics = {
            "be": FlowMetrics("be", "stopped", 1000, 500),
            "af": FlowMetrics("af", "stopped", 1000, 1000),
        }
        verify_throughput(metrics, {"be": 50, "af": 100}, 1)
        verify_throughput(metrics, {"af": 99}, 2)
        with self.assertRaises(Error) as cm:
            verify_throughput(metrics, {"be": 100, "af": 100}, 2)
        self.assertIn("be: got 50.00%", str(cm.exception))
        self.assertNotIn("af:", str(cm.exception))

    def test_loss_table(self):
        table = loss_table({"f2": FlowMetrics("f2", "stopped", 1000, 900)})
        self.assertIn("f2", table)
        self.assertIn("10.00", table)

    async def test_run_traffic(self):
        metrics = await run_traffic(self.client, 0.05, ["f1", "f2"], timeout=2, interval=0.01)
        self.assertEqual(set(metrics), {"f1", "f2"})
        self.assertTrue(all(m.stopped for m in metrics.values()))
        self.assertEqual(flow_loss(metrics["f2"]), 10.0)

    async def test_run_traffic_all_flows(self):
        metrics = await run_traffic(self.client, 0.01, timeout=2, interval=0.01)
        self.assertEqual(set(metrics), {"f1", "f2"})

    async def test_not_stopped(self):
        self.otg.stop_after = 1000
        await self.client.start_traffic()
        await self.client.stop_traffic()
        verdict = await wait_flows_stopped(self.client, ["f1"], 0.1, 0.01)
        self.assertIsInstance(verdict, TimedOut)
        self.assertEqual(verdict.last.value("f1").transmit, "started")
        with self.assertRaises(NotConvergedError):
            verdict.check()

    async def test_stopped(self):
        verdict = await wait_flows_stopped(self.client, ["f1", "f2"], 1, 0.01)
        self.assertIsInstance(verdict, Converged)


class TestMain(OtgTestCase):
    def args(self, **kwargs):
        args = dict(
            url=self.url,
            timeout=1,
            interval=0.01,
            max_loss=0.0,
            expect_loss=False,
            throughput=None,
            tolerance=2.0,
            verify_ssl=False,
            flows=[],
        )
        args.update(kwargs)
        return argparse.Namespace(**args)

    async def test_loss(self):
        self.assertEqual(await run(self.args()), 1)

    async def test_no_loss(self):
        self.assertEqual(await run(self.args(flows=["f1"])), 0)

    async def test_max_loss(self):
        self.assertEqual(await run(self.args(max_loss=10.0)), 0)

    async def test_expect_loss(self):
        self.assertEqual(await run(self.args(expect_loss=True, flows=["f2"])), 0)
        self.assertEqual(await run(self.args(expect_loss=True)), 1)

    async def test_throughput(self):
        self.assertEqual(await run(self.args(throughput=90.0, tolerance=1.0, flows=["f2"])), 0)
        self.assertEqual(await run(self.args(throughput=90.0, tolerance=1.0)), 1)

    async def test_not_stopped(self):
        self.otg.flows["f1"]["transmit"] = "started"
        self.assertEqual(await run(self.args(flows=["f1"], timeout=0.1)), 1)


class TestArgs(unittest.TestCase):
    def test_main(self):
        argv = ["netconform-flows", "-u", "http://otg:8080", "-t", "5", "--max-loss", "1.5", "f1", "f2"]
        with mock.patch("sys.argv", argv), mock.patch("logging.basicConfig"), mock.patch(
            "netconform.ate.main.run", new_callable=mock.AsyncMock, return_value=1
        ) as run_mock:
            with self.assertRaises(SystemExit) as cm:
                main()
        self.assertEqual(cm.exception.code, 1)
        args = run_mock.call_args.args[0]
        self.assertEqual(args.url, "http://otg:8080")
        self.assertEqual(args.timeout, 5.0)
        self.assertEqual(args.max_loss, 1.5)
        self.assertEqual(args.flows, ["f1", "f2"])
        self.assertFalse(args.verify_ssl)
        self.assertEqual(args.interval, DEFAULT_POLL_INTERVAL)
        self.assertFalse(args.expect_loss)
        self.assertIsNone(args.throughput)

    def test_exclusive_checks(self):
        argv = ["netconform-flows", "--max-loss", "1", "--expect-loss"]
        with mock.patch("sys.argv", argv), mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as cm:
                main()
        self.assertEqual(cm.exception.code, 2)


if __name__ == "__main__":
    unittest.main()

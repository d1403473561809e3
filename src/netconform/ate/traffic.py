"""Traffic validation helpers."""


import asyncio
import logging
from tabulate import tabulate
from netconform.lib.errors import Error
from netconform.lib.watcher import watch_all
from netconform.telemetry.source import DEFAULT_POLL_INTERVAL
from .otg import flow_source


logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 30


def loss_pct(tx, rx):
    """Get the loss percentage of a flow. 0 when nothing was sent."""
    if tx <= 0:
        return 0.0
    return (tx - rx) * 100.0 / tx


def flow_loss(metrics):
    return loss_pct(metrics.frames_tx, metrics.frames_rx)


def check_throughput(loss, expected_pct, tolerance):
    """Check the received percentage is within expected_pct +/- tolerance."""
    got = 100.0 - loss
    return expected_pct - tolerance <= got <= expected_pct + tolerance


def verify_throughput(metrics, expected, tolerance):
    """Verify the received percentage of each flow.

    Args:
        metrics (dict): Flow name to FlowMetrics.
        expected (dict): Flow name to the expected received percentage. Flows not in it are not checked.
        tolerance (float): Acceptable deviation in percentage points.

    Raises:
        Error: A flow is out of the range.
    """
    failed = []
    for name, want in expected.items():
        loss = flow_loss(metrics[name])
        logger.info("%s: throughput %.2f%%, want %.2f%% +/- %.2f", name, 100.0 - loss, want, tolerance)
        if not check_throughput(loss, want, tolerance):
            failed.append(
                f"{name}: got {100.0 - loss:.2f}%, want within [{want - tolerance:.2f}%, {want + tolerance:.2f}%]"
            )
    if failed:
        raise Error(f"throughput out of range. {'; '.join(failed)}")


def verify_loss(metrics, want_loss):
    """Verify each flow lost traffic, or lost none, as wanted.

    Raises:
        Error: A flow does not match.
    """
    failed = []
    for name, m in metrics.items():
        loss = flow_loss(m)
        logger.info("%s: loss %.2f%%, want loss: %s", name, loss, want_loss)
        if (loss > 0) != want_loss:
            failed.append(f"{name}: got loss {loss:.2f}%")
    if failed:
        raise Error(f"want loss: {want_loss}. {'; '.join(failed)}")


def all_stopped(snapshot):
    for name in snapshot:
        metrics = snapshot.value(name)
        if metrics is None or not metrics.stopped:
            return False
    return True


def loss_table(metrics):
    rows = []
    for name, m in metrics.items():
        rows.append([name, m.frames_tx, m.frames_rx, f"{flow_loss(m):.2f}"])
    return tabulate(rows, headers=["flow", "frames tx", "frames rx", "loss %"])


def wait_flows_stopped(client, flows, timeout=DEFAULT_STOP_TIMEOUT, interval=DEFAULT_POLL_INTERVAL):
    """Watch the flows until every one of them stopped transmitting.

    Returns:
        Watch: Batch watch over the flow metrics.
    """
    sources = {name: flow_source(client, name, interval) for name in flows}
    return watch_all(sources, all_stopped, timeout, "flows stopped")


async def run_traffic(
    client,
    duration,
    flows=None,
    timeout=DEFAULT_STOP_TIMEOUT,
    interval=DEFAULT_POLL_INTERVAL,
):
    """Run traffic for a duration and collect the final flow metrics.

    Args:
        client (OtgClient): Traffic generator.
        duration (float): Seconds to transmit.
        flows (list of str): Flows to run. All configured flows if None.
        timeout (float): Seconds to wait for the flows to stop after the stop request.
        interval (float): Metrics poll interval.

    Returns:
        dict: Flow name to FlowMetrics.

    Raises:
        NotConvergedError: A flow did not stop in time.
    """
    await client.start_traffic(flows)
    await asyncio.sleep(duration)
    await client.stop_traffic(flows)
    if flows is None:
        flows = list((await client.get_flow_metrics()).keys())
    snapshot = (await wait_flows_stopped(client, flows, timeout, interval)).check()
    metrics = {name: snapshot.value(name) for name in flows}
    logger.info("flow metrics:\n%s", loss_table(metrics))
    return metrics

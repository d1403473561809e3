"""QoS egress queue counters."""


from collections import namedtuple
import logging
from tabulate import tabulate
from netconform.ate.traffic import DEFAULT_STOP_TIMEOUT, run_traffic, verify_throughput
from netconform.lib.watcher import watch_all


logger = logging.getLogger(__name__)

DEFAULT_COUNTERS_TIMEOUT = 30


class QueueCounters(namedtuple("QueueCounters", ["transmit_pkts", "dropped_pkts"])):
    """Egress packet counters of a queue."""

    def __sub__(self, other):
        return QueueCounters(
            self.transmit_pkts - other.transmit_pkts,
            self.dropped_pkts - other.dropped_pkts,
        )


def queue_path(interface, queue, leaf):
    return (
        f"/qos/interfaces/interface[interface-id='{interface}']"
        f"/output/queues/queue[name='{queue}']/state/{leaf}"
    )


def fetch_queue_counters(device, interface, queues):
    """Get the egress counters of queues.

    Counters are uint64, encoded as strings in JSON.

    Returns:
        dict: Queue name to QueueCounters.

    Raises:
        NotFoundError: A counter is not found.
    """
    counters = {}
    for queue in queues:
        counters[queue] = QueueCounters(
            int(device.get(queue_path(interface, queue, "transmit-pkts"))),
            int(device.get(queue_path(interface, queue, "dropped-pkts"))),
        )
    return counters


def counters_table(before, after):
    rows = []
    for queue, b in before.items():
        a = after[queue]
        rows.append([queue, b.transmit_pkts, a.transmit_pkts, b.dropped_pkts, a.dropped_pkts])
    return tabulate(rows, headers=["queue", "tx before", "tx after", "dropped before", "dropped after"])


def await_queue_counters(device, interface, before, want, timeout=DEFAULT_COUNTERS_TIMEOUT, interval=None):
    """Watch the transmit counters of queues until each one counted at least the wanted packets.

    The device may update its counters some time after the traffic stopped.

    Args:
        device (Device): The device under test.
        interface (str): Egress interface.
        before (dict): Queue name to QueueCounters before the traffic.
        want (dict): Queue name to the number of packets sent by the traffic generator.

    Returns:
        Watch: Batch watch over the transmit counters.
    """
    sources = {
        queue: device.source(queue_path(interface, queue, "transmit-pkts"), interval) for queue in want
    }

    def counted(snapshot):
        for queue, pkts in want.items():
            value = snapshot.value(queue)
            if value is None or int(value) - before[queue].transmit_pkts < pkts:
                return False
        return True

    return watch_all(sources, counted, timeout, f"{interface} egress queue counters")


async def run_queue_traffic(
    device,
    client,
    interface,
    flow_queues,
    duration,
    expected=None,
    tolerance=2.0,
    timeout=DEFAULT_STOP_TIMEOUT,
    counters_timeout=DEFAULT_COUNTERS_TIMEOUT,
    interval=None,
):
    """Run traffic through the egress queues of an interface and verify the queue counters.

    Args:
        device (Device): The device under test.
        client (OtgClient): Traffic generator.
        interface (str): Egress interface of every flow.
        flow_queues (dict): Flow name to the queue it is classified into.
        duration (float): Seconds to transmit.
        expected (dict): Flow name to the expected received percentage. Not checked if None.
        tolerance (float): Acceptable deviation of the received percentage.

    Returns:
        dict: Queue name to the QueueCounters increase during the traffic.

    Raises:
        Error: The throughput of a flow is out of range.
        NotConvergedError: A transmit counter increased less than the packets sent to its queue.
    """
    queues = sorted(set(flow_queues.values()))
    before = fetch_queue_counters(device, interface, queues)
    if interval is None:
        interval = device.interval
    metrics = await run_traffic(client, duration, list(flow_queues), timeout, interval)
    if expected:
        verify_throughput(metrics, expected, tolerance)

    want = {queue: 0 for queue in queues}
    for flow, queue in flow_queues.items():
        want[queue] += metrics[flow].frames_tx
    logger.info("packets sent per queue: %s", want)
    (await await_queue_counters(device, interface, before, want, counters_timeout, interval)).check()

    after = fetch_queue_counters(device, interface, queues)
    logger.info("%s egress queue counters:\n%s", interface, counters_table(before, after))
    return {queue: after[queue] - before[queue] for queue in queues}

"""Wait for traffic flows to stop and report their loss."""


import argparse
import asyncio
import logging
import sys
from netconform.lib.errors import Error, NotConvergedError, SubscriptionError
from netconform.telemetry.source import DEFAULT_POLL_INTERVAL
from .otg import DEFAULT_OTG_URL, OtgClient
from .traffic import flow_loss, loss_table, verify_loss, verify_throughput, wait_flows_stopped


logger = logging.getLogger(__name__)


async def run(args):
    async with OtgClient(args.url, verify_ssl=args.verify_ssl) as client:
        flows = args.flows
        if not flows:
            flows = list((await client.get_flow_metrics()).keys())
        if not flows:
            logger.error("no flow is configured")
            return 1
        try:
            w = wait_flows_stopped(client, flows, args.timeout, args.interval)
            snapshot = (await w).check()
        except (NotConvergedError, SubscriptionError) as e:
            logger.error("%s", e)
            return 1
    metrics = {name: snapshot.value(name) for name in flows}
    print(loss_table(metrics))
    try:
        if args.expect_loss:
            verify_loss(metrics, True)
        elif args.throughput is not None:
            verify_throughput(metrics, {name: args.throughput for name in flows}, args.tolerance)
        else:
            lossy = [name for name, m in metrics.items() if flow_loss(m) > args.max_loss]
            if lossy:
                raise Error(f"loss above {args.max_loss:.2f}%: {lossy}")
    except Error as e:
        logger.error("%s", e)
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("-u", "--url", default=DEFAULT_OTG_URL, help="OTG service URL")
    parser.add_argument("-t", "--timeout", type=float, default=60)
    parser.add_argument("-i", "--interval", type=float, default=DEFAULT_POLL_INTERVAL)
    check = parser.add_mutually_exclusive_group()
    check.add_argument(
        "--max-loss",
        type=float,
        default=0.0,
        help="maximum acceptable loss percentage of each flow",
    )
    check.add_argument(
        "--expect-loss",
        action="store_true",
        help="every flow must lose traffic, e.g. towards an unreachable destination",
    )
    check.add_argument(
        "--throughput",
        type=float,
        help="expected received percentage of each flow",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=2.0,
        help="acceptable deviation from --throughput in percentage points",
    )
    parser.add_argument("--verify-ssl", action="store_true")
    parser.add_argument("flows", nargs="*", help="flows to wait for. all flows if omitted")
    args = parser.parse_args()

    fmt = "%(levelname)s %(module)s %(funcName)s l.%(lineno)d | %(message)s"
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format=fmt)
    else:
        logging.basicConfig(level=logging.INFO, format=fmt)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

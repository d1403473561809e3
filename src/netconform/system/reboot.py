"""gNOI system reboot orchestration.

Reboot is fire-and-forget. Completion is observed by watching RebootStatus and the telemetry of the rebooted
components, the watcher replacing fixed sleep-and-recheck loops.
"""


from enum import Enum
import asyncio
import logging
import os
import grpc
from netconform.lib.errors import (
    Error,
    NotFoundError,
    OperationFailedError,
    UnimplementedError,
    UnsupportedError,
)
from netconform.lib.policy import ErrorPolicy
from netconform.lib.util import call, call_in_thread
from netconform.lib.watcher import present, watch
from netconform.telemetry.source import PollingSource
from .platform import (
    ComponentType,
    await_interfaces_up,
    component_path,
    fetch_oper_up_interfaces,
    find_components_by_type,
    find_standby_controller,
)


logger = logging.getLogger(__name__)

DEFAULT_BOOT_TIMEOUT = 10 * 60
DEFAULT_ROLE_TIMEOUT = 5 * 60
DEFAULT_INTERFACES_TIMEOUT = 5 * 60
DEFAULT_STATUS_INTERVAL = 10
DEFAULT_STATUS_MAX_ERRORS = int(os.getenv("NETCONFORM_REBOOT_STATUS_MAX_ERRORS", 60))


class RebootMethod(Enum):
    UNKNOWN = 0
    COLD = 1
    POWERDOWN = 2
    HALT = 3
    WARM = 4
    NSF = 5
    POWERUP = 7


class SystemClient:
    """gNOI system service interface.

    Concrete classes wrap a gNOI client. Methods may be coroutine functions. gRPC failures are raised as
    grpc.RpcError.
    """

    def reboot(self, method, subcomponents=(), delay=None, message=None):
        """Request a reboot.

        Args:
            method (RebootMethod): Reboot method.
            subcomponents (list of str): Names of the components to reboot. Empty for the whole chassis.
            delay (int): Delay in nanoseconds before the reboot.
            message (str): Informational reason for the reboot.
        """
        pass

    def reboot_status(self, subcomponents=()):
        """Get the reboot status.

        Returns:
            any: Object with an "active" attribute. True while a reboot is pending or in progress.
        """
        pass


def _code(e):
    return e.code() if callable(getattr(e, "code", None)) else None


def reboot_status_source(
    system, interval=DEFAULT_STATUS_INTERVAL, policy=None, subcomponents=(), delay=None
):
    """Get a source polling RebootStatus.

    UNIMPLEMENTED is never tolerated: the target is not compliant. Other errors are expected while the target
    reboots and are tolerated up to the policy.

    The first poll waits for delay seconds, the poll interval by default: right after the Reboot RPC the target may
    not report the reboot as active yet.

    Returns:
        PollingSource: Source of the "active" flag.
    """
    if policy is None:
        policy = ErrorPolicy.tolerant(DEFAULT_STATUS_MAX_ERRORS)

    async def fetch():
        try:
            status = await call_in_thread(system.reboot_status, subcomponents)
        except grpc.RpcError as e:
            if _code(e) == grpc.StatusCode.UNIMPLEMENTED:
                raise UnimplementedError(
                    "RebootStatus is unimplemented. The target does not support gNOI reboot status"
                ) from e
            raise
        return bool(status.active)

    if delay is None:
        delay = interval
    return PollingSource(
        "reboot-status/active", fetch, interval=interval, policy=policy, initial_delay=delay
    )


def wait_reboot_complete(
    system, timeout=DEFAULT_BOOT_TIMEOUT, interval=DEFAULT_STATUS_INTERVAL, policy=None, delay=None
):
    """Watch RebootStatus until no reboot is active.

    Returns:
        Watch: Resolves Converged once the status reports inactive.
    """

    def inactive(sample):
        return sample.present and sample.value is False

    source = reboot_status_source(system, interval, policy, delay=delay)
    return watch(source, inactive, timeout, "reboot status")


async def reboot_component(system, name, method=RebootMethod.COLD):
    """Reboot a subcomponent.

    Raises:
        UnimplementedError: The reboot method is not supported by the target.
        OperationFailedError: The Reboot RPC failed.
    """
    logger.info("rebooting %s with method %s", name, method.name)
    try:
        response = await call(system.reboot, method, [name])
    except grpc.RpcError as e:
        if _code(e) == grpc.StatusCode.UNIMPLEMENTED:
            raise UnimplementedError(f"reboot method {method.name} is not supported") from e
        raise OperationFailedError(f"failed to reboot {name}: {e}") from e
    logger.info("reboot response: %s", response)
    return response


async def reboot_standby_controller(device, system, timeout=DEFAULT_BOOT_TIMEOUT):
    """Reboot the standby controller card and wait for it to come back.

    Args:
        device (Device): The device under test.
        system (SystemClient): gNOI system service of the device.
        timeout (float): Boot time limit in seconds.

    Returns:
        tuple: (name of the standby controller, boot time in seconds)

    Raises:
        UnsupportedError: The device does not have two controller cards.
        NotConvergedError: The controller card did not come back in time.
    """
    supervisors = find_components_by_type(device, ComponentType.CONTROLLER_CARD)
    if len(supervisors) != 2:
        raise UnsupportedError(
            f"dual controller cards are required on {device.name}: got {len(supervisors)}, want 2"
        )
    standby, active = await find_standby_controller(device, supervisors, DEFAULT_ROLE_TIMEOUT)
    logger.info("standby: %s, active: %s", standby, active)

    loop = asyncio.get_running_loop()
    start = loop.time()
    await reboot_component(system, standby)
    role = component_path(standby, "redundant-role")
    (await device.watch(role, present(), timeout)).check()
    elapsed = loop.time() - start
    logger.info("standby controller boot time: %.2f seconds", elapsed)
    return standby, elapsed


def _find_removable(device, linecards):
    for lc in linecards:
        removable = device.lookup(component_path(lc, "removable"))
        if removable is True:
            logger.info("found removable line card: %s", lc)
            return lc
        logger.info("line card %s is not removable", lc)
    return None


async def reboot_linecard(
    device,
    system,
    timeout=DEFAULT_BOOT_TIMEOUT,
    interval=DEFAULT_STATUS_INTERVAL,
    interfaces_timeout=DEFAULT_INTERFACES_TIMEOUT,
):
    """Reboot a removable line card and wait for the device to recover.

    The device has recovered when RebootStatus is no longer active, the line card is removable again and every
    interface which was UP before the reboot is UP again.

    Returns:
        tuple: (name of the line card, names of the UP interfaces)

    Raises:
        NotFoundError: No removable line card.
        NotConvergedError: The device did not recover in time.
        Error: The set of UP interfaces changed.
    """
    linecards = find_components_by_type(device, ComponentType.LINECARD)
    if not linecards:
        raise NotFoundError(f"no line card on {device.name}")
    linecard = _find_removable(device, linecards)
    if linecard is None:
        raise NotFoundError(f"no removable line card on {device.name}")

    up_before = fetch_oper_up_interfaces(device)
    logger.info("oper-status UP interfaces before reboot: %s", up_before)
    await reboot_component(system, linecard)

    (await wait_reboot_complete(system, timeout, interval)).check()
    removable = component_path(linecard, "removable")
    (await device.await_value(removable, True, timeout)).check()
    if up_before:
        (await await_interfaces_up(device, up_before, interfaces_timeout)).check()

    up_after = fetch_oper_up_interfaces(device)
    logger.info("oper-status UP interfaces after reboot: %s", up_after)
    if up_after != up_before:
        missing = sorted(set(up_before) - set(up_after))
        extra = sorted(set(up_after) - set(up_before))
        raise Error(f"oper-status UP interfaces differed. missing: {missing}, extra: {extra}")
    return linecard, up_after

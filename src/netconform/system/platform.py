"""Platform component and interface queries."""


from enum import Enum
import logging
from natsort import natsorted
from netconform.lib.errors import InvalArgError, NotFoundError
from netconform.lib.watcher import NOT_OBSERVED, all_present, watch_all


logger = logging.getLogger(__name__)

COMPONENTS = "/components/component"
INTERFACES = "/interfaces/interface"


class ComponentType(Enum):
    """OPENCONFIG_HARDWARE_COMPONENT identities."""

    CHASSIS = "CHASSIS"
    BACKPLANE = "BACKPLANE"
    FABRIC = "FABRIC"
    POWER_SUPPLY = "POWER_SUPPLY"
    FAN = "FAN"
    SENSOR = "SENSOR"
    FRU = "FRU"
    LINECARD = "LINECARD"
    CONTROLLER_CARD = "CONTROLLER_CARD"
    PORT = "PORT"
    TRANSCEIVER = "TRANSCEIVER"
    CPU = "CPU"
    STORAGE = "STORAGE"
    INTEGRATED_CIRCUIT = "INTEGRATED_CIRCUIT"


class SoftwareComponentType(Enum):
    """OPENCONFIG_SOFTWARE_COMPONENT identities."""

    OPERATING_SYSTEM = "OPERATING_SYSTEM"
    OPERATING_SYSTEM_UPDATE = "OPERATING_SYSTEM_UPDATE"
    BIOS = "BIOS"
    BOOT_LOADER = "BOOT_LOADER"


class RedundantRole(Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class OperStatus(Enum):
    UP = "UP"
    DOWN = "DOWN"
    TESTING = "TESTING"
    UNKNOWN = "UNKNOWN"
    DORMANT = "DORMANT"
    NOT_PRESENT = "NOT_PRESENT"
    LOWER_LAYER_DOWN = "LOWER_LAYER_DOWN"


def parse_identity(enum, value):
    """Parse an identity or enumeration value.

    Args:
        enum (type): Enum class to parse into.
        value (str): "NAME" or "module:NAME".

    Returns:
        Enum: The member of enum.

    Raises:
        InvalArgError: value is not a member of enum.
    """
    if isinstance(value, enum):
        return value
    if not isinstance(value, str):
        raise InvalArgError(f"invalid {enum.__name__}: {value!r}")
    name = value.split(":")[-1]
    try:
        return enum(name)
    except ValueError as e:
        raise InvalArgError(f"invalid {enum.__name__}: {value!r}") from e


def parse_component_type(value):
    """Parse the type of a component.

    Returns:
        ComponentType or SoftwareComponentType: The type.

    Raises:
        InvalArgError: value is neither a hardware nor a software component type.
    """
    for enum in (ComponentType, SoftwareComponentType):
        try:
            return parse_identity(enum, value)
        except InvalArgError:
            continue
    raise InvalArgError(f"invalid component type: {value!r}")


def component_path(name, leaf):
    return f"{COMPONENTS}[name='{name}']/state/{leaf}"


def oper_status_path(name):
    return f"{INTERFACES}[name='{name}']/state/oper-status"


def _names(device, xpath):
    try:
        entries = device.get(xpath)
    except NotFoundError:
        return []
    if isinstance(entries, list):
        return [entry["name"] for entry in entries]
    return list(entries.keys())


def find_components_by_type(device, ctype):
    """Get names of the components of a hardware type.

    Args:
        device (Device): Device to look up.
        ctype (ComponentType): Type to find.

    Returns:
        list of str: Component names.
    """
    found = []
    for name in _names(device, COMPONENTS):
        value = device.lookup(component_path(name, "type"))
        if value is NOT_OBSERVED:
            logger.info("component %s type is not found", name)
            continue
        component_type = parse_component_type(value)
        if isinstance(component_type, ComponentType):
            if component_type == ctype:
                found.append(name)
        elif isinstance(component_type, SoftwareComponentType):
            logger.debug("component %s is a software component", name)
        else:
            raise InvalArgError(f"unexpected component type of {name}: {component_type}")
    logger.info("components of type %s: %s", ctype.value, found)
    return found


async def find_standby_controller(device, supervisors, timeout):
    """Find the standby and active controller cards.

    Args:
        device (Device): Device to look up.
        supervisors (list of str): Names of the controller cards.
        timeout (float): How long to wait for every controller card to report its redundant role.

    Returns:
        tuple of str: (standby, active)

    Raises:
        NotConvergedError: A controller card did not report its role in time.
        InvalArgError: The roles are not one primary and one secondary.
    """
    sources = {s: device.source(component_path(s, "redundant-role")) for s in supervisors}
    snapshot = (await watch_all(sources, all_present(), timeout, "redundant roles")).check()
    standby = None
    active = None
    for supervisor in supervisors:
        role = parse_identity(RedundantRole, snapshot.value(supervisor))
        logger.info("component %s redundant role: %s", supervisor, role.value)
        if role == RedundantRole.SECONDARY:
            standby = supervisor
        elif role == RedundantRole.PRIMARY:
            active = supervisor
    if standby is None or active is None:
        raise InvalArgError(
            f"expected one active and one standby controller, got active: {active}, standby: {standby}"
        )
    return standby, active


def fetch_oper_up_interfaces(device):
    """Get names of the interfaces whose oper-status is UP.

    Returns:
        list of str: Naturally sorted names. "Ethernet2" comes before "Ethernet10".
    """
    up = []
    for name in _names(device, INTERFACES):
        value = device.lookup(oper_status_path(name))
        if value is NOT_OBSERVED:
            continue
        if parse_identity(OperStatus, value) == OperStatus.UP:
            up.append(name)
    return natsorted(up)


def all_up(snapshot):
    for name in snapshot:
        value = snapshot.value(name)
        if value is None or parse_identity(OperStatus, value) != OperStatus.UP:
            return False
    return True


def await_interfaces_up(device, names, timeout, interval=None):
    """Watch the interfaces until all of them are oper-status UP.

    Returns:
        Watch: Batch watch over the oper-status of the interfaces.
    """
    sources = {name: device.source(oper_status_path(name), interval) for name in names}
    return watch_all(sources, all_up, timeout, f"{device.name} interfaces oper-status")

"""BGP neighbor configuration and session state."""


from enum import Enum
import logging
from netconform.lib.errors import InvalArgError
from netconform.system.platform import parse_identity


logger = logging.getLogger(__name__)

DEFAULT_NETWORK_INSTANCE = "default"
DEFAULT_PROTOCOL_NAME = "BGP"
DEFAULT_ESTABLISH_TIMEOUT = 60


class SessionState(Enum):
    IDLE = "IDLE"
    CONNECT = "CONNECT"
    ACTIVE = "ACTIVE"
    OPENSENT = "OPENSENT"
    OPENCONFIRM = "OPENCONFIRM"
    ESTABLISHED = "ESTABLISHED"


def bgp_path(instance=DEFAULT_NETWORK_INSTANCE, protocol=DEFAULT_PROTOCOL_NAME):
    return (
        f"/network-instances/network-instance[name='{instance}']"
        f"/protocols/protocol[identifier='BGP'][name='{protocol}']/bgp"
    )


def neighbor_path(address, leaf=None, instance=DEFAULT_NETWORK_INSTANCE, protocol=DEFAULT_PROTOCOL_NAME):
    xpath = f"{bgp_path(instance, protocol)}/neighbors/neighbor[neighbor-address='{address}']"
    if leaf is not None:
        xpath += f"/state/{leaf}"
    return xpath


def bgp_config(local_as, neighbor_address, peer_as, router_id=None):
    """Build the BGP config of a single neighbor session.

    Args:
        local_as (int): AS number of the device.
        neighbor_address (str): Address of the peer.
        peer_as (int): AS number of the peer.
        router_id (str): Router ID of the device. Not configured if None.

    Returns:
        dict: The "bgp" container.
    """
    if not 0 < local_as < 2**32 or not 0 < peer_as < 2**32:
        raise InvalArgError(f"invalid AS number: local {local_as}, peer {peer_as}")
    config = {"as": local_as}
    if router_id:
        config["router-id"] = router_id
    return {
        "global": {"config": config},
        "neighbors": {
            "neighbor": {
                neighbor_address: {
                    "neighbor-address": neighbor_address,
                    "config": {"neighbor-address": neighbor_address, "peer-as": peer_as},
                }
            }
        },
    }


def configure_bgp(
    device, local_as, neighbor_address, peer_as, router_id=None, instance=DEFAULT_NETWORK_INSTANCE
):
    """Replace the BGP config of the device with a single neighbor session."""
    logger.info(
        "%s: configuring BGP AS %d with neighbor %s AS %d",
        device.name,
        local_as,
        neighbor_address,
        peer_as,
    )
    device.replace(bgp_path(instance), bgp_config(local_as, neighbor_address, peer_as, router_id))


def session_state_is(state):
    def _session_state_is(sample):
        if not sample.present:
            return False
        try:
            return parse_identity(SessionState, sample.value) == state
        except InvalArgError:
            logger.warning("unknown session-state: %r", sample.value)
            return False

    return _session_state_is


def await_session_state(
    device,
    neighbor_address,
    state=SessionState.ESTABLISHED,
    timeout=DEFAULT_ESTABLISH_TIMEOUT,
    interval=None,
    instance=DEFAULT_NETWORK_INSTANCE,
):
    """Watch the session state of a BGP neighbor.

    Returns:
        Watch: Resolves Converged once the session reaches the state.
    """
    xpath = neighbor_path(neighbor_address, "session-state", instance)
    return device.watch(xpath, session_state_is(state), timeout, interval)


async def await_established(device, neighbor_address, timeout=DEFAULT_ESTABLISH_TIMEOUT, interval=None):
    """Wait until the BGP session with the neighbor is established.

    Raises:
        NotConvergedError: The session did not come up in time. The message carries the last session state.
    """
    verdict = await await_session_state(
        device, neighbor_address, SessionState.ESTABLISHED, timeout, interval
    )
    return verdict.check()

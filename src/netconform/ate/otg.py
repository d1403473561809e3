"""Open Traffic Generator client."""


import logging
import os
import aiohttp
from netconform.lib.errors import Error, NotFoundError, SubscriptionError
from netconform.telemetry.source import DEFAULT_POLL_INTERVAL, PollingSource


logger = logging.getLogger(__name__)

DEFAULT_OTG_URL = os.getenv("NETCONFORM_OTG_URL", "https://localhost:8443")


class OtgError(Error):
    __slots__ = ("status",)

    def __init__(self, msg: str, status=None):
        super().__init__(msg)
        self.status = status


class FlowMetrics:
    """Metrics of a traffic flow.

    Attributes:
        name (str): Flow name.
        transmit (str): "started", "stopped" or "paused".
        frames_tx (int): Transmitted frames.
        frames_rx (int): Received frames.
        bytes_tx (int): Transmitted bytes.
        bytes_rx (int): Received bytes.
    """

    def __init__(self, name, transmit, frames_tx=0, frames_rx=0, bytes_tx=0, bytes_rx=0):
        self.name = name
        self.transmit = transmit
        self.frames_tx = frames_tx
        self.frames_rx = frames_rx
        self.bytes_tx = bytes_tx
        self.bytes_rx = bytes_rx

    @classmethod
    def from_dict(cls, data):
        return cls(
            data["name"],
            data.get("transmit"),
            int(data.get("frames_tx", 0)),
            int(data.get("frames_rx", 0)),
            int(data.get("bytes_tx", 0)),
            int(data.get("bytes_rx", 0)),
        )

    @property
    def stopped(self):
        return self.transmit == "stopped"

    def __eq__(self, other):
        if not isinstance(other, FlowMetrics):
            return NotImplemented
        return vars(self) == vars(other)

    def __repr__(self):
        return (
            f"FlowMetrics({self.name!r}, transmit={self.transmit}, frames_tx={self.frames_tx}, "
            f"frames_rx={self.frames_rx})"
        )


class OtgClient:
    """Asynchronous client of the OTG HTTP API.

    Args:
        url (str): Base URL of the OTG service.
        session (aiohttp.ClientSession): Session to use. The client creates and owns one if None.
        verify_ssl (bool): Verify the server certificate. OTG services commonly use self-signed certificates.
    """

    def __init__(self, url=DEFAULT_OTG_URL, session=None, verify_ssl=False):
        self.url = url.rstrip("/")
        self._session = session
        self._own_session = session is None
        self._ssl = bool(verify_ssl)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _get_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _post(self, path, body):
        url = f"{self.url}{path}"
        logger.debug("POST %s: %s", url, body)
        try:
            async with self._get_session().post(url, json=body, ssl=self._ssl) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise OtgError(f"POST {path} failed with {resp.status}: {text}", resp.status)
                if resp.content_type == "application/json":
                    return await resp.json()
                return None
        except aiohttp.ClientError as e:
            raise OtgError(f"POST {path} failed. {type(e).__name__}: {e}") from e

    async def set_config(self, config):
        """Push a traffic generator configuration."""
        logger.info("pushing OTG config")
        return await self._post("/config", config)

    async def _control(self, choice, body):
        return await self._post("/control/state", {"choice": choice, choice: body})

    async def start_protocols(self):
        logger.info("starting protocols")
        return await self._control("protocol", {"choice": "all", "all": {"state": "start"}})

    async def _transmit(self, state, flows):
        flow_transmit = {"state": state}
        if flows:
            flow_transmit["flow_names"] = list(flows)
        logger.info("traffic %s: %s", state, flows if flows else "all flows")
        return await self._control(
            "traffic", {"choice": "flow_transmit", "flow_transmit": flow_transmit}
        )

    async def start_traffic(self, flows=None):
        return await self._transmit("start", flows)

    async def stop_traffic(self, flows=None):
        return await self._transmit("stop", flows)

    async def get_flow_metrics(self, names=None):
        """Get flow metrics.

        Args:
            names (list of str): Flows to get. All flows if None.

        Returns:
            dict: Flow name to FlowMetrics.
        """
        flow = {}
        if names:
            flow["flow_names"] = list(names)
        resp = await self._post("/monitor/metrics", {"choice": "flow", "flow": flow})
        metrics = {}
        for data in (resp or {}).get("flow_metrics", []):
            m = FlowMetrics.from_dict(data)
            metrics[m.name] = m
        return metrics


def flow_source(client, name, interval=DEFAULT_POLL_INTERVAL, policy=None):
    """Get a source polling the metrics of a flow.

    Returns:
        PollingSource: Source of FlowMetrics.
    """

    async def fetch():
        try:
            metrics = await client.get_flow_metrics([name])
        except OtgError as e:
            raise SubscriptionError(f"failed to get metrics of flow {name}: {e}") from e
        try:
            return metrics[name]
        except KeyError as e:
            raise NotFoundError(f"no metrics for flow {name}") from e

    return PollingSource(f"flows/flow[name='{name}']", fetch, interval=interval, policy=policy)

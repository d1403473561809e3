"""Device handles."""


import logging
from netconform.lib.errors import NotFoundError
from netconform.lib.watcher import NOT_OBSERVED, equals, watch
from netconform.telemetry.source import DEFAULT_POLL_INTERVAL, PollingSource


logger = logging.getLogger(__name__)


class Device:
    """Handle of a device under test or of a peer device.

    Test code receives its devices as arguments instead of looking them up from a global registry.

    Args:
        name (str): Name of the device in the testbed. e.g. "dut"
        repo (Repository): Config/state access of the device.
        interval (float): Default poll interval of the telemetry sources in seconds.
        policy (ErrorPolicy): Default poll error policy of the telemetry sources.
    """

    def __init__(self, name, repo, interval=DEFAULT_POLL_INTERVAL, policy=None):
        self.name = name
        self.repo = repo
        self.interval = interval
        self.policy = policy

    def __repr__(self):
        return f"Device({self.name!r})"

    def get(self, xpath):
        """Get the value at the xpath.

        Raises:
            NotFoundError: The value does not exist.
        """
        return self.repo.get(xpath)

    def lookup(self, xpath):
        """Get the value at the xpath, or NOT_OBSERVED if it does not exist."""
        try:
            return self.repo.get(xpath)
        except NotFoundError:
            return NOT_OBSERVED

    def replace(self, xpath, data):
        logger.info("%s: replace %s", self.name, xpath)
        self.repo.replace(xpath, data)

    def update(self, xpath, data):
        logger.info("%s: update %s", self.name, xpath)
        self.repo.update(xpath, data)

    def delete(self, xpath):
        logger.info("%s: delete %s", self.name, xpath)
        self.repo.delete(xpath)

    def source(self, xpath, interval=None, policy=None, suppress_redundant=False):
        """Get a telemetry source polling the xpath.

        Returns:
            PollingSource: Source of the value at the xpath.
        """
        return PollingSource(
            xpath,
            lambda: self.repo.get(xpath),
            interval=interval if interval is not None else self.interval,
            policy=policy if policy is not None else self.policy,
            suppress_redundant=suppress_redundant,
        )

    def watch(self, xpath, predicate, timeout, interval=None):
        return watch(self.source(xpath, interval), predicate, timeout, f"{self.name}:{xpath}")

    async def await_value(self, xpath, value, timeout, interval=None):
        """Wait until the value at the xpath equals to value.

        Returns:
            Verdict: Converged or TimedOut.
        """
        return await self.watch(xpath, equals(value), timeout, interval)

"""Repository interface."""


import copy
import logging
import threading
from netconform.lib.errors import NotFoundError
from netconform.telemetry.path import xpath_elems


logger = logging.getLogger(__name__)


class Repository:
    """Repository interface.

    Repository is an abstract class of the config/state access of a device (e.g. a gNMI Get/Set client). You should
    not use this directly. Concrete classes may have their own attributes.
    """

    def start(self):
        """Start a connection/session."""
        pass

    def stop(self):
        """Stop a connection/session.

        All reserved resources that the connection/session has will be released."""
        pass

    def get(self, xpath):
        """Get a data tree from the xpath.

        Args:
            xpath (str): XPath to get.

        Returns:
            any: The data tree under the xpath as JSON compatible python objects, or the value of a leaf.

        Raises:
            NotFoundError: Matched data is not found.
            InvalArgError: 'xpath' is invalid.
        """
        pass

    def replace(self, xpath, data):
        """Replace the data tree at the xpath with the data.

        Raises:
            InvalArgError: 'xpath' is invalid.
        """
        pass

    def update(self, xpath, data):
        """Merge the data into the data tree at the xpath.

        Raises:
            InvalArgError: 'xpath' is invalid.
        """
        pass

    def delete(self, xpath):
        """Delete a data tree from the xpath.

        Raises:
            NotFoundError: Matched data is not found.
            InvalArgError: 'xpath' is invalid.
        """
        pass


def _merge(dst, src):
    for key, value in src.items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            _merge(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)


class InMemoryRepository(Repository):
    """A repository implementation holding a JSON data tree in memory.

    Lists are stored as dictionaries keyed by their key value, "interface[name='eth0']" is data["interface"]["eth0"].
    Multiple keys are joined with ",". It is safe to use from worker threads.
    """

    def __init__(self, data=None):
        self.data = data if data is not None else {}
        self._lock = threading.Lock()

    def _steps(self, xpath):
        steps = []
        for _, name, keys in xpath_elems(xpath):
            steps.append(name)
            if keys:
                steps.append(",".join(v for _, v in keys))
        return steps

    def _walk(self, steps, create=False):
        node = self.data
        for step in steps:
            if not isinstance(node, dict):
                raise NotFoundError(f"{step} is not found")
            if step not in node:
                if not create:
                    raise NotFoundError(f"{step} is not found")
                node[step] = {}
            node = node[step]
        return node

    def get(self, xpath):
        steps = self._steps(xpath)
        try:
            with self._lock:
                return copy.deepcopy(self._walk(steps))
        except NotFoundError as e:
            raise NotFoundError(f"{xpath}: {e}") from e

    def replace(self, xpath, data):
        steps = self._steps(xpath)
        with self._lock:
            parent = self._walk(steps[:-1], create=True)
            parent[steps[-1]] = copy.deepcopy(data)
        logger.debug("replaced %s", xpath)

    def update(self, xpath, data):
        steps = self._steps(xpath)
        with self._lock:
            parent = self._walk(steps[:-1], create=True)
            current = parent.get(steps[-1])
            if isinstance(current, dict) and isinstance(data, dict):
                _merge(current, data)
            else:
                parent[steps[-1]] = copy.deepcopy(data)
        logger.debug("updated %s", xpath)

    def delete(self, xpath):
        steps = self._steps(xpath)
        try:
            with self._lock:
                parent = self._walk(steps[:-1])
                del parent[steps[-1]]
        except (NotFoundError, KeyError, TypeError) as e:
            raise NotFoundError(f"{xpath} is not found") from e
        logger.debug("deleted %s", xpath)

"""Datastore implementations."""


from abc import abstractmethod
from datetime import datetime
import logging


logger = logging.getLogger(__name__)


class SampleNotExistError(Exception):
    pass


class SampleStore:
    """Base class for sample datastore.

    It keeps the latest sample of each observable. Users should depend on this interface instead of subclass
    implementations.
    """

    @abstractmethod
    def set(self, name, sample):
        """Set the latest sample of an observable.

        If the entry does not exist, it creates an entry.

        Args:
            name (str): Identifier of the observable.
            sample (Sample): The sample to set.
        """
        pass

    @abstractmethod
    def get(self, name):
        """Get the latest sample of an observable.

        Args:
            name (str): Identifier of the observable.

        Returns:
            dict: The stored entry.
                "sample" (Sample): The latest sample.
                "update-time" (datetime): Last update time.

        Raises:
            SampleNotExistError: The sample is not found.
        """
        pass


class InMemorySampleStore(SampleStore):
    """A sample datastore implementation using volatile memory."""

    def __init__(self):
        self._data = {}

    def set(self, name, sample):
        self._data[name] = {
            "sample": sample,
            "update-time": datetime.now(),
        }

    def get(self, name):
        try:
            return self._data[name]
        except KeyError as e:
            raise SampleNotExistError() from e

"""Subscription sources.

A source yields the samples of one observable. Each call of subscribe() opens an independent subscription which is
an async iterator of Sample. Closing the iterator (aclose()) releases the subscription.
"""


from abc import abstractmethod
import asyncio
import logging
import os
from netconform.lib.errors import InvalArgError, NotFoundError
from netconform.lib.policy import ErrorPolicy
from netconform.lib.util import call, call_in_thread, to_ns
from netconform.lib.watcher import Sample


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = float(os.getenv("NETCONFORM_DEFAULT_POLL_INTERVAL", 1))


class Source:
    """Base class of subscription sources.

    Attributes:
        path (str): Identifier of the observable.
    """

    path = None

    @abstractmethod
    def subscribe(self):
        """Open a subscription.

        Returns:
            async iterator of Sample: Samples in arrival order. It raises an exception when the subscription fails.
        """
        pass


class _QueueSubscriber:
    _END = object()

    def __init__(self, source):
        self._source = source
        self._queue = asyncio.Queue()
        self._closed = False

    def put(self, item):
        self._queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._END:
            await self.aclose()
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            await self.aclose()
            raise item
        return item

    async def aclose(self):
        if not self._closed:
            self._closed = True
            self._source._unsubscribe(self)


class QueueSource(Source):
    """A source fed by its producer.

    New subscribers receive the latest sample first, if any, then every sample produced after they subscribed.

    Args:
        path (str): Identifier of the observable.
    """

    def __init__(self, path):
        self.path = path
        self._subscribers = []
        self._latest = None

    def subscribe(self):
        subscriber = _QueueSubscriber(self)
        if self._latest is not None:
            subscriber.put(self._latest)
        self._subscribers.append(subscriber)
        logger.debug("%s: subscribed. %d subscribers", self.path, len(self._subscribers))
        return subscriber

    def _unsubscribe(self, subscriber):
        try:
            self._subscribers.remove(subscriber)
        except ValueError:
            pass
        logger.debug("%s: unsubscribed. %d subscribers", self.path, len(self._subscribers))

    @property
    def subscribers(self):
        return len(self._subscribers)

    def _publish(self, item):
        for subscriber in list(self._subscribers):
            subscriber.put(item)

    def publish(self, sample):
        self._latest = sample
        self._publish(sample)

    def update(self, value, timestamp=None):
        self.publish(Sample(self.path, value, timestamp))

    def delete(self, timestamp=None):
        self.publish(Sample.absent(self.path, timestamp))

    def fail(self, e):
        """Fail the current subscriptions with an error."""
        self._publish(e)

    def close(self):
        """End the current subscriptions."""
        self._publish(_QueueSubscriber._END)


class PollingSource(Source):
    """A source polling a collaborator at a fixed interval.

    The first poll is issued when the subscription starts, or initial_delay seconds later. Plain functions are
    called in a worker thread so that a blocking fetch cannot hold the deadline of a watch. A NotFoundError from
    fetch is reported as an absent sample. Other errors go through the ErrorPolicy: tolerated errors are retried on
    the next interval, the others end the subscription.

    Args:
        path (str): Identifier of the observable.
        fetch (callable): Function or coroutine function returning the current value (or a Sample).
        interval (float): Poll interval in seconds.
        policy (ErrorPolicy): Poll error policy. Fails on the first error by default.
        suppress_redundant (bool): Do not emit a sample equal to the previous one.
        heartbeat (float): With suppress_redundant, emit an unchanged sample anyway once this many seconds have
            passed since the last emitted one.
        initial_delay (float): Seconds to wait before the first poll.
    """

    def __init__(
        self,
        path,
        fetch,
        interval=DEFAULT_POLL_INTERVAL,
        policy=None,
        suppress_redundant=False,
        heartbeat=None,
        initial_delay=0,
    ):
        if interval is None or interval <= 0:
            raise InvalArgError(f"poll interval must be positive: {interval}")
        if heartbeat is not None and heartbeat < interval:
            raise InvalArgError(
                f"heartbeat {heartbeat} is shorter than the poll interval {interval}"
            )
        if initial_delay < 0:
            raise InvalArgError(f"initial delay must not be negative: {initial_delay}")
        self.path = path
        self.fetch = fetch
        self.interval = interval
        self.policy = policy if policy is not None else ErrorPolicy()
        self.suppress_redundant = suppress_redundant
        self.heartbeat = heartbeat
        self.initial_delay = initial_delay

    def subscribe(self):
        return self._poll(self.policy.copy())

    def _should_emit(self, prev, sample):
        if not self.suppress_redundant or prev is None:
            return True
        if self.heartbeat is not None:
            if sample.timestamp - prev.timestamp >= to_ns(self.heartbeat):
                return True
        return (sample.present, sample.value) != (prev.present, prev.value)

    async def _poll(self, policy):
        prev = None
        if self.initial_delay > 0:
            await asyncio.sleep(self.initial_delay)
        while True:
            try:
                value = await call_in_thread(self.fetch)
            except NotFoundError:
                sample = Sample.absent(self.path)
            except Exception as e:
                policy.check(e)
                await asyncio.sleep(self.interval)
                continue
            else:
                sample = value if isinstance(value, Sample) else Sample(self.path, value)
            policy.reset()
            if self._should_emit(prev, sample):
                prev = sample
                yield sample
            else:
                logger.debug("%s: suppressed redundant sample %r", self.path, sample)
            await asyncio.sleep(self.interval)


class IterableSource(Source):
    """A source over a finite or endless sequence.

    Args:
        path (str): Identifier of the observable.
        factory (callable): Returns an iterable or an async iterable of values or Samples for each subscription.
            Plain iterables must not block.
    """

    def __init__(self, path, factory):
        self.path = path
        self.factory = factory

    def subscribe(self):
        return self._iterate()

    def _to_sample(self, item):
        if isinstance(item, Sample):
            return item
        return Sample(self.path, item)

    async def _iterate(self):
        iterable = await call(self.factory)
        if hasattr(iterable, "__aiter__"):
            async for item in iterable:
                yield self._to_sample(item)
        else:
            for item in iterable:
                yield self._to_sample(item)

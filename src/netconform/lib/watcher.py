"""State convergence watchers.

A watch consumes the samples of one observable (or of a batch of observables) and resolves as soon as a predicate
holds, or when its deadline elapses. It is the asyncio counterpart of the Watch/Await pattern used by conformance
tests to wait for a device to reach a target state:

    w = watch(device.source(path), equals("UP"), timeout=60)
    ... trigger the change ...
    verdict = await w
    verdict.check()

Timeouts are verdicts, not exceptions. Failures of the subscription source and of the predicate are raised from
the await as SubscriptionError and PredicateError.
"""


import asyncio
import logging
import time
from collections import namedtuple
from collections.abc import Mapping
from tabulate import tabulate
from .errors import InvalArgError, NotConvergedError, PredicateError, SubscriptionError
from netconform.telemetry.store import InMemorySampleStore, SampleNotExistError


logger = logging.getLogger(__name__)

# pending close tasks of released subscriptions
_closing = set()


class _NotObserved:
    """Marker of an observable that has not produced any sample."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_OBSERVED"


NOT_OBSERVED = _NotObserved()


class Sample(namedtuple("Sample", ["path", "value", "timestamp", "present"])):
    """A timestamped value of an observable.

    Args:
        path (str): Identifier of the observable.
        value (any): The observed value. Always None for an absent sample.
        timestamp (int): Nanoseconds since the Unix epoch. Defaults to now.
        present (bool): False when the value does not exist on the device.
    """

    __slots__ = ()

    def __new__(cls, path, value, timestamp=None, present=True):
        if timestamp is None:
            timestamp = time.time_ns()
        if not present:
            value = None
        return super().__new__(cls, path, value, timestamp, present)

    @classmethod
    def absent(cls, path, timestamp=None):
        return cls(path, None, timestamp, present=False)

    def __repr__(self):
        if not self.present:
            return f"Sample({self.path!r}, <absent>, {self.timestamp})"
        return f"Sample({self.path!r}, {self.value!r}, {self.timestamp})"


def present():
    """Predicate holding once the value exists."""

    def _present(sample):
        return sample.present

    return _present


def equals(value):
    def _equals(sample):
        return sample.present and sample.value == value

    return _equals


def one_of(*values):
    def _one_of(sample):
        return sample.present and sample.value in values

    return _one_of


def all_present():
    def _all_present(snapshot):
        return all(snapshot.observed(name) and snapshot[name].present for name in snapshot)

    return _all_present


def all_equal(value):
    def _all_equal(snapshot):
        return all(
            snapshot.observed(name) and snapshot[name].present and snapshot[name].value == value
            for name in snapshot
        )

    return _all_equal


class Snapshot(Mapping):
    """Latest known sample of every observable of a batch.

    Observables which have not reported yet map to NOT_OBSERVED.
    """

    def __init__(self, names, store):
        self._samples = {}
        for name in names:
            try:
                self._samples[name] = store.get(name)["sample"]
            except SampleNotExistError:
                self._samples[name] = NOT_OBSERVED

    def __getitem__(self, name):
        return self._samples[name]

    def __iter__(self):
        return iter(self._samples)

    def __len__(self):
        return len(self._samples)

    def observed(self, name):
        return self._samples[name] is not NOT_OBSERVED

    def value(self, name, default=None):
        sample = self._samples[name]
        if sample is NOT_OBSERVED or not sample.present:
            return default
        return sample.value

    def present_values(self):
        """Get values of the observables which currently have one.

        Returns:
            dict: Observable name to value.
        """
        return {
            name: sample.value
            for name, sample in self._samples.items()
            if sample is not NOT_OBSERVED and sample.present
        }

    def format(self):
        rows = []
        for name, sample in self._samples.items():
            if sample is NOT_OBSERVED:
                rows.append([name, "<not observed>", "-"])
            elif not sample.present:
                rows.append([name, "<absent>", sample.timestamp])
            else:
                rows.append([name, sample.value, sample.timestamp])
        return tabulate(rows, headers=["observable", "value", "timestamp"])

    def __repr__(self):
        return f"Snapshot({self._samples!r})"


def _describe(last):
    if last is NOT_OBSERVED:
        return "nothing observed"
    if isinstance(last, Snapshot):
        return "\n" + last.format()
    if not last.present:
        return "absent"
    return repr(last.value)


class Verdict:
    """Final result of a watch.

    Attributes:
        name (str): Name of the watched observable or batch.
        sample (Sample or Snapshot): Sample the verdict was reached on. For a TimedOut, the last one observed or
            NOT_OBSERVED.
        elapsed (float): Seconds from the start of the watch to the verdict.
    """

    ok = False

    def __init__(self, name, sample, elapsed):
        self.name = name
        self.sample = sample
        self.elapsed = elapsed

    def __bool__(self):
        return self.ok

    @property
    def value(self):
        if self.sample is NOT_OBSERVED or isinstance(self.sample, Snapshot):
            return None
        return self.sample.value

    def check(self):
        """Get the converged sample.

        Raises:
            NotConvergedError: The watch timed out.
        """
        return self.sample


class Converged(Verdict):
    ok = True

    def __repr__(self):
        return f"Converged({self.name!r}, {self.sample!r}, elapsed={self.elapsed:.3f})"


class TimedOut(Verdict):
    def __init__(self, name, last, elapsed, timeout):
        super().__init__(name, last, elapsed)
        self.timeout = timeout

    @property
    def last(self):
        return self.sample

    def check(self):
        msg = f"{self.name} did not reach target state within {self.timeout}s: got {_describe(self.sample)}"
        raise NotConvergedError(msg, self)

    def __repr__(self):
        return f"TimedOut({self.name!r}, {self.sample!r}, timeout={self.timeout})"


class Watch:
    """A running watch.

    The watch starts consuming its sources when it is created. Await it to get the Verdict. Cancelling the
    awaiting task, or calling cancel(), stops the consumption and releases the subscriptions.
    """

    def __init__(self, name, timeout, coro, subscriptions):
        self.name = name
        self.timeout = timeout
        self._subscriptions = subscriptions
        self._task = asyncio.create_task(coro)
        self._task.add_done_callback(self._release)

    def _release(self, task):
        # covers a watch cancelled before its first step. closing twice is harmless.
        if task.cancelled():
            loop = task.get_loop()
            if not loop.is_closed():
                for it in self._subscriptions:
                    closing = loop.create_task(_aclose(it))
                    _closing.add(closing)
                    closing.add_done_callback(_closed)

    def __await__(self):
        return self._task.__await__()

    async def wait(self):
        return await self._task

    def done(self):
        return self._task.done()

    def cancel(self):
        logger.info("watch for %s cancelled", self.name)
        return self._task.cancel()


def _validate_timeout(timeout):
    if timeout is None or timeout <= 0:
        raise InvalArgError(f"timeout must be a positive duration: {timeout}")


def _evaluate(predicate, sample, name):
    try:
        ok = predicate(sample)
    except Exception as e:
        raise PredicateError(
            f"predicate for {name} failed on {sample!r}. {type(e).__name__}: {e}",
            sample,
        ) from e
    logger.debug("%s: predicate is %s on %r", name, bool(ok), sample)
    return bool(ok)


async def _aclose(it):
    aclose = getattr(it, "aclose", None)
    if aclose is not None:
        await aclose()


def _closed(task):
    _closing.discard(task)
    if task.cancelled():
        return
    e = task.exception()
    if e is not None:
        logger.warning("failed to close a subscription. %s: %s", type(e).__name__, e)


async def _next(it, name, last):
    """Get the next sample from a subscription.

    Returns:
        Sample: The next sample. None at the end of the subscription.

    Raises:
        SubscriptionError: The subscription failed.
    """
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return None
    except SubscriptionError as e:
        if e.last is None:
            e.last = last
        raise
    except Exception as e:
        raise SubscriptionError(
            f"subscription for {name} failed. {type(e).__name__}: {e}", last
        ) from e


class _Progress:
    def __init__(self):
        self.last = NOT_OBSERVED


async def _consume(it, predicate, name, progress):
    try:
        while True:
            sample = await _next(it, name, progress.last)
            if sample is None:
                logger.info("subscription for %s ended", name)
                return None
            progress.last = sample
            if _evaluate(predicate, sample, name):
                return sample
    finally:
        await _aclose(it)


async def _watch(it, predicate, timeout, name):
    loop = asyncio.get_running_loop()
    start = loop.time()
    progress = _Progress()
    consumer = asyncio.create_task(_consume(it, predicate, name, progress))
    try:
        done, _ = await asyncio.wait({consumer}, timeout=timeout)
        if consumer in done:
            sample = consumer.result()
            if sample is not None:
                elapsed = loop.time() - start
                logger.info("%s converged in %.3fs: %r", name, elapsed, sample)
                return Converged(name, sample, elapsed)
            # no more samples can arrive
            await asyncio.sleep(max(0, start + timeout - loop.time()))
    finally:
        if not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
    elapsed = loop.time() - start
    logger.info("%s timed out after %.3fs: last %r", name, elapsed, progress.last)
    return TimedOut(name, progress.last, elapsed, timeout)


def watch(source, predicate, timeout, name=None):
    """Watch an observable until a predicate holds on one of its samples.

    Args:
        source (Source): Subscription source of the observable.
        predicate (callable): Function of a Sample returning True once the target state is reached. It must not
            block nor have side effects.
        timeout (float): Deadline in seconds.
        name (str): Name used in logs and failure messages. Defaults to the path of the source.

    Returns:
        Watch: Awaitable resolving to Converged or TimedOut.

    Raises:
        InvalArgError: timeout is not positive.
    """
    _validate_timeout(timeout)
    if name is None:
        name = source.path
    logger.info("watching %s for %ss", name, timeout)
    it = source.subscribe()
    return Watch(name, timeout, _watch(it, predicate, timeout, name), [it])


async def await_value(source, value, timeout, name=None):
    return await watch(source, equals(value), timeout, name)


async def _forward(name, it, queue):
    try:
        while True:
            try:
                sample = await _next(it, name, None)
            except SubscriptionError as e:
                await queue.put((name, None, e))
                return
            if sample is None:
                logger.info("subscription for %s ended", name)
                return
            await queue.put((name, sample, None))
    finally:
        await _aclose(it)


async def _watch_all(subscriptions, predicate, timeout, name):
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout
    names = list(subscriptions)
    store = InMemorySampleStore()
    queue = asyncio.Queue()
    consumers = [
        asyncio.create_task(_forward(n, it, queue)) for n, it in subscriptions.items()
    ]
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                item = await asyncio.wait_for(queue.get(), remaining)
            except asyncio.TimeoutError:
                break
            items = [item]
            # apply everything that arrived at the same tick before evaluating
            while not queue.empty():
                items.append(queue.get_nowait())
            for n, sample, e in items:
                if e is not None:
                    e.last = Snapshot(names, store)
                    raise e
                store.set(n, sample)
            snapshot = Snapshot(names, store)
            if _evaluate(predicate, snapshot, name):
                elapsed = loop.time() - start
                logger.info("%s converged in %.3fs", name, elapsed)
                return Converged(name, snapshot, elapsed)
    finally:
        for consumer in consumers:
            consumer.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)
    elapsed = loop.time() - start
    snapshot = Snapshot(names, store)
    logger.info("%s timed out after %.3fs:\n%s", name, elapsed, snapshot.format())
    return TimedOut(name, snapshot, elapsed, timeout)


def watch_all(sources, predicate, timeout, name=None):
    """Watch a batch of observables until a joint predicate holds.

    The predicate is evaluated on a Snapshot of the latest sample of every observable each time any of them
    updates.

    Args:
        sources (dict): Observable name to Source.
        predicate (callable): Function of a Snapshot returning True once the target state is reached.
        timeout (float): Deadline in seconds.
        name (str): Name used in logs and failure messages.

    Returns:
        Watch: Awaitable resolving to Converged or TimedOut, both carrying a Snapshot.

    Raises:
        InvalArgError: timeout is not positive or sources is empty.
    """
    _validate_timeout(timeout)
    if not sources:
        raise InvalArgError("no observables to watch")
    if name is None:
        name = "batch(" + ", ".join(str(n) for n in sources) + ")"
    logger.info("watching %s for %ss", name, timeout)
    subscriptions = {n: source.subscribe() for n, source in sources.items()}
    return Watch(
        name,
        timeout,
        _watch_all(subscriptions, predicate, timeout, name),
        list(subscriptions.values()),
    )

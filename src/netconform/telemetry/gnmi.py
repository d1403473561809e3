"""gNMI Subscribe adapter.

The gNMI client stack is a collaborator: GnmiSource receives a callable opening the Subscribe call (a grpc streaming
call, sync or grpc.aio) and turns the SubscribeResponse stream into samples of one observable.
"""


import asyncio
import json
import logging
import grpc
from netconform.lib.errors import InvalArgError, SubscriptionError
from netconform.lib.watcher import Sample
from .path import PathPattern, gnmi_path_to_xpath, leaves
from .source import Source


logger = logging.getLogger(__name__)

_SCALAR_VALUES = (
    "string_val",
    "int_val",
    "uint_val",
    "bool_val",
    "bytes_val",
    "float_val",
    "double_val",
    "ascii_val",
    "any_val",
    "proto_bytes",
)
_JSON_VALUES = ("json_val", "json_ietf_val")


def decode_typed_value(val):
    """Decode a gNMI TypedValue.

    Args:
        val (gnmi_pb2.TypedValue): Value to decode.

    Returns:
        any: Python value. JSON encoded values are decoded.

    Raises:
        InvalArgError: The value kind is not supported.
    """
    kind = val.WhichOneof("value")
    if kind is None:
        return None
    if kind in _JSON_VALUES:
        return json.loads(getattr(val, kind))
    if kind in _SCALAR_VALUES:
        return getattr(val, kind)
    if kind == "decimal_val":
        return val.decimal_val.digits / (10 ** val.decimal_val.precision)
    if kind == "leaflist_val":
        return [decode_typed_value(elem) for elem in val.leaflist_val.element]
    raise InvalArgError(f"unsupported TypedValue kind: {kind}")


def _status(e):
    code = e.code() if callable(getattr(e, "code", None)) else None
    details = e.details() if callable(getattr(e, "details", None)) else str(e)
    return code, details


def rpc_error(msg, e, last=None):
    """Build a SubscriptionError from a grpc.RpcError."""
    code, details = _status(e)
    return SubscriptionError(f"{msg}: {code}: {details}", last, code)


class GnmiSource(Source):
    """A source over a gNMI Subscribe stream.

    An update of an ancestor of the path with a JSON value is a subtree update: the leaves of the subtree which
    match the path become samples.

    Args:
        path (str): Xpath of the observable. List keys may be "*" to accept any entry.
        subscribe (callable): Opens the Subscribe call for path and returns its response iterator.
            e.g. lambda: stub.Subscribe(iter([request]), metadata=metadata)
    """

    _END = object()

    def __init__(self, path, subscribe):
        self.path = path
        self._pattern = PathPattern(path)
        self._subscribe = subscribe

    def subscribe(self):
        return self._stream()

    def samples(self, response):
        """Extract the samples of the observable from a SubscribeResponse.

        Returns:
            list of Sample: Updates and deletes matching the path, in notification order.
        """
        kind = response.WhichOneof("response")
        if kind == "sync_response":
            logger.debug("%s: sync response", self.path)
            return []
        if kind == "error":
            raise SubscriptionError(
                f"gNMI subscription for {self.path} failed: {response.error.message}"
            )
        if kind != "update":
            return []
        notification = response.update
        timestamp = notification.timestamp or None
        samples = []
        for update in notification.update:
            xpath = gnmi_path_to_xpath(update.path, notification.prefix)
            if self._pattern.match(xpath) is not None:
                samples.append(Sample(xpath, decode_typed_value(update.val), timestamp))
            elif update.val.WhichOneof("value") in _JSON_VALUES:
                samples.extend(self._subtree_samples(xpath, decode_typed_value(update.val), timestamp))
        for delete in notification.delete:
            xpath = gnmi_path_to_xpath(delete, notification.prefix)
            if self._pattern.match(xpath) is None:
                continue
            samples.append(Sample.absent(xpath, timestamp))
        return samples

    def _subtree_samples(self, xpath, data, timestamp):
        try:
            flattened = leaves(data, xpath, self._pattern.list_keys)
        except InvalArgError as e:
            raise SubscriptionError(f"gNMI subscription for {self.path} got an invalid subtree: {e}") from e
        samples = []
        for leaf, value in flattened.items():
            if self._pattern.match(leaf) is not None:
                samples.append(Sample(leaf, value, timestamp))
        return samples

    async def _responses(self, call):
        if hasattr(call, "__aiter__"):
            async for response in call:
                yield response
            return
        it = iter(call)
        while True:
            # a blocking grpc iterator. cancel() on the call wakes the thread up.
            response = await asyncio.to_thread(next, it, self._END)
            if response is self._END:
                return
            yield response

    async def _stream(self):
        try:
            call = self._subscribe()
        except grpc.RpcError as e:
            raise rpc_error(f"failed to subscribe {self.path}", e) from e
        logger.info("%s: subscribed", self.path)
        responses = self._responses(call)
        try:
            async for response in responses:
                for sample in self.samples(response):
                    yield sample
        except grpc.RpcError as e:
            raise rpc_error(f"gNMI subscription for {self.path} failed", e) from e
        finally:
            await responses.aclose()
            cancel = getattr(call, "cancel", None)
            if cancel is not None:
                cancel()
            logger.info("%s: unsubscribed", self.path)

class Error(Exception):
    __slots__ = ("msg",)

    def __init__(self, msg: str):
        super().__init__()
        self.msg = msg

    def __str__(self):
        return self.msg

    def __repr__(self):
        return "%s(%r)" % (type(self).__name__, self.msg)


class InvalArgError(Error):
    pass


class NotFoundError(Error):
    pass


class UnimplementedError(Error):
    pass


class SubscriptionError(Error):
    """The subscription source failed.

    Args:
        msg (str): Description of the failure.
        last (Sample): The most recent sample observed before the failure, or NOT_OBSERVED.
        code (grpc.StatusCode): Status code when the failure came from a gRPC call.
    """

    __slots__ = ("last", "code")

    def __init__(self, msg: str, last=None, code=None):
        super().__init__(msg)
        self.last = last
        self.code = code


class PredicateError(Error):
    __slots__ = ("sample",)

    def __init__(self, msg: str, sample=None):
        super().__init__(msg)
        self.sample = sample


class NotConvergedError(Error):
    __slots__ = ("verdict",)

    def __init__(self, msg: str, verdict=None):
        super().__init__(msg)
        self.verdict = verdict


class PacketMismatchError(Error):
    pass


class UnsupportedError(Error):
    pass


class OperationFailedError(Error):
    pass

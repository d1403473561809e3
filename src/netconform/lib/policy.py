"""Error handling policies for polled collaborators."""


import logging
import os
from .errors import InvalArgError, UnimplementedError


logger = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = int(os.getenv("NETCONFORM_DEFAULT_MAX_ERRORS", 0))


class ErrorPolicy:
    """Decides whether a failed poll is retried on the next interval or surfaced.

    Some collaborators answer with transient errors while the device is converging (e.g. RebootStatus while the
    control plane restarts), others fail for good. The policy makes that choice explicit per source.

    Args:
        max_errors (int): Number of consecutive errors to tolerate. 0 surfaces the first error.
        fatal (tuple of type): Exception types that are never tolerated.
        tolerate (tuple of type): Exception types that may be tolerated.
        is_fatal (callable): Optional extra check. Returns True when an exception must be surfaced.
    """

    def __init__(
        self,
        max_errors=DEFAULT_MAX_ERRORS,
        fatal=(),
        tolerate=(Exception,),
        is_fatal=None,
    ):
        if max_errors < 0:
            raise InvalArgError(f"max_errors must not be negative: {max_errors}")
        self.max_errors = max_errors
        self._fatal = tuple(fatal)
        self.fatal = self._fatal + (UnimplementedError,)
        self.tolerate = tuple(tolerate)
        self.is_fatal = is_fatal
        self.errors = 0

    @classmethod
    def fail_fast(cls):
        return cls(max_errors=0)

    @classmethod
    def tolerant(cls, max_errors, **kwargs):
        return cls(max_errors=max_errors, **kwargs)

    def copy(self):
        """Get a policy with the same settings and a fresh error count."""
        return type(self)(
            max_errors=self.max_errors,
            fatal=self._fatal,
            tolerate=self.tolerate,
            is_fatal=self.is_fatal,
        )

    def check(self, e):
        """Record a poll error.

        Args:
            e (Exception): The error raised by the poll.

        Raises:
            Exception: e itself when it must be surfaced.
        """
        if isinstance(e, self.fatal) or not isinstance(e, self.tolerate):
            raise e
        if self.is_fatal is not None and self.is_fatal(e):
            raise e
        self.errors += 1
        if self.errors > self.max_errors:
            raise e
        logger.warning(
            "tolerating poll error %d/%d. %s: %s",
            self.errors,
            self.max_errors,
            type(e).__name__,
            e,
        )

    def reset(self):
        self.errors = 0

"""Error taxonomy for the routing layer and the event processor."""


class PipeError(Exception):
    """Base class for all eventpipes errors."""


class SourceUnavailable(PipeError):
    """Transient failure while polling or acknowledging against a source.

    Retried by the router with backoff and never surfaced to the processor.
    """


class TransformError(PipeError):
    """Payload could not be wrapped into an invocation envelope."""


class InvocationTimeout(PipeError):
    """The processor did not finish within the invocation deadline."""

    def __init__(self, timeout_s: float):
        super().__init__(f"invocation exceeded {timeout_s}s deadline")
        self.timeout_s = timeout_s


class ProcessorError(PipeError):
    """Explicit failure signalled by the processor; triggers redelivery."""


class CacheUnavailable(PipeError):
    """The cache endpoint could not be reached or rejected an operation.

    Only ever seen inside the processor, which maps it to a ProcessorError
    or a degraded success according to its cache failure policy.
    """

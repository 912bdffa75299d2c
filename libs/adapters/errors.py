# libs/adapters/errors.py
from __future__ import annotations


class AdapterError(Exception):
    """Base for everything raised by store/broker adapters."""


class ConnectError(AdapterError):
    """Subsystem unreachable at startup. Fatal to readiness, never retried here."""

    def __init__(self, service: str, reason: object = None):
        self.service = service
        self.reason = reason
        msg = f"{service} unreachable" if reason is None else f"{service} unreachable: {reason}"
        super().__init__(msg)


class TransportError(AdapterError):
    """Submit/clear could not be served by the broker."""


class QueueUnavailable(TransportError):
    pass


class InvalidMessage(AdapterError):
    pass


class ConsumerAlreadyRegistered(AdapterError):
    def __init__(self, queue: str):
        self.queue = queue
        super().__init__(f"queue {queue!r} already has a consumer")


class NotFound(AdapterError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"not found: {key}")


class ProcessingError(AdapterError):
    """A domain operation failed while handling a dequeued job."""


class StoreUnavailable(AdapterError):
    pass

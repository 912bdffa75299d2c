# libs/connections/base.py
from __future__ import annotations
from typing import Protocol, runtime_checkable


class LinkListener(Protocol):
    """Receives lifecycle notifications from a subsystem link."""

    def connected(self, service: str) -> None: ...

    def disconnected(self, service: str) -> None: ...

    def error(self, service: str, exc: BaseException) -> None: ...


@runtime_checkable
class SubsystemLink(Protocol):
    """
    One connection to an external subsystem (article store, queue broker).

    - `service`: short name used in logs and readiness reports ("store", "broker").
    - `open(listener)`: establish the connection; call `listener.connected(service)`
      once it is usable. Raise `ConnectError` when unreachable at startup.
      Later degradation is reported through `listener.disconnected(service)`,
      transient problems through `listener.error(service, exc)`.
    - `close()`: release the connection; idempotent, must not notify.
    """

    service: str

    async def open(self, listener: LinkListener) -> None: ...

    async def close(self) -> None: ...

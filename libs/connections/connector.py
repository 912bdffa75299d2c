# libs/connections/connector.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, List, Optional, Set

import structlog

from libs.adapters.errors import ConnectError
from libs.connections.base import SubsystemLink

LostCallback = Callable[[], None]


class ConnectorState(StrEnum):
    INITIALIZING = "initializing"
    READY = "ready"
    LOST = "lost"


@dataclass
class ReadinessState:
    signals_received: int = 0
    total: int = 2
    lost: bool = False


class Connector:
    """
    Aggregates the store link and the broker link into one readiness signal
    and one loss signal.

      INITIALIZING --(both links connected, any order)--> READY
      INITIALIZING | READY --(any disconnect)--> LOST   (terminal)

    Readiness resolves exactly once. A link that reconnects does not count
    twice and never re-fires readiness. Each disconnect notification is
    delivered to every loss subscriber; it never resets the counter.
    Errors reported by a link are logged only.
    """

    def __init__(self, store: SubsystemLink, broker: SubsystemLink, logger=None):
        self.store = store
        self.broker = broker
        self.log = logger or structlog.get_logger()
        self.readiness = ReadinessState(total=2)

        self._signalled: Set[str] = set()
        self._ready = asyncio.Event()
        self._failure: Optional[ConnectError] = None
        self._lost = asyncio.Event()
        self._lost_subscribers: List[LostCallback] = []
        self._open_tasks: List[asyncio.Task] = []
        self._started = False

    # ---- state ----
    @property
    def state(self) -> ConnectorState:
        if self.readiness.lost:
            return ConnectorState.LOST
        if self._ready.is_set() and self._failure is None:
            return ConnectorState.READY
        return ConnectorState.INITIALIZING

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set() and self._failure is None

    @property
    def is_lost(self) -> bool:
        return self.readiness.lost

    @property
    def failure(self) -> Optional[ConnectError]:
        return self._failure

    def service_status(self) -> dict:
        """{service: bool} for each link, False once lost."""
        up = not self.readiness.lost
        return {
            self.store.service: up and self.store.service in self._signalled,
            self.broker.service: up and self.broker.service in self._signalled,
        }

    # ---- lifecycle ----
    def start(self) -> None:
        """Open both links concurrently; returns without waiting."""
        if self._started:
            return
        self._started = True
        for link in (self.store, self.broker):
            self._open_tasks.append(asyncio.create_task(self._open_link(link)))

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Block until both links are up. Raises ConnectError if a link failed to open."""
        if timeout is None:
            await self._ready.wait()
        else:
            await asyncio.wait_for(self._ready.wait(), timeout)
        if self._failure is not None:
            raise self._failure

    async def wait_lost(self) -> None:
        await self._lost.wait()

    def on_lost(self, callback: LostCallback) -> Callable[[], None]:
        """Subscribe to loss notifications. Returns an unsubscribe function."""
        self._lost_subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._lost_subscribers:
                self._lost_subscribers.remove(callback)

        return _unsubscribe

    async def close(self) -> None:
        for task in self._open_tasks:
            if not task.done():
                task.cancel()
        if self._open_tasks:
            await asyncio.gather(*self._open_tasks, return_exceptions=True)
        self._open_tasks.clear()
        await self.store.close()
        await self.broker.close()
        self.log.info("connector.closed")

    # ---- LinkListener ----
    def connected(self, service: str) -> None:
        self.log.info("connector.connected", service=service)
        if service in self._signalled:
            return
        self._signalled.add(service)
        self.readiness.signals_received += 1
        if self.readiness.signals_received == self.readiness.total and not self._ready.is_set():
            self.log.info("connector.ready")
            self._ready.set()

    def disconnected(self, service: str) -> None:
        self.log.error("connector.disconnected", service=service)
        self.readiness.lost = True
        self._lost.set()
        if not self._ready.is_set():
            # no READY after LOST
            self._failure = ConnectError(service, "disconnected before ready")
            self._ready.set()
        for callback in list(self._lost_subscribers):
            callback()

    def error(self, service: str, exc: BaseException) -> None:
        self.log.error("connector.error", service=service, error=str(exc))

    # ---- internals ----
    async def _open_link(self, link: SubsystemLink) -> None:
        try:
            await link.open(self)
        except asyncio.CancelledError:
            raise
        except ConnectError as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(ConnectError(link.service, exc))

    def _fail(self, exc: ConnectError) -> None:
        self.log.error("connector.connect_failed", service=exc.service, error=str(exc))
        if self._ready.is_set():
            return
        self._failure = exc
        self._ready.set()

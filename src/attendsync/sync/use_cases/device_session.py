"""Device Session - one terminal connection's lifecycle.

The session wraps the driver port with per-call timeouts and typed
failures, and tracks an explicit state machine:

    IDLE -> CONNECTING -> CONNECTED -> FETCHING -> CLEARING_PENDING
         -> DISCONNECTING -> CLOSED

FAILED is reachable from every non-terminal state. close() is valid from
any state and always ends in CLOSED.

Example:
    async with DeviceSession(driver, device) as session:
        await session.open()
        info = await session.fetch_device_info()
        records = await session.fetch_punch_records()
        ...
        session.mark_clear_pending()
        await session.confirm_clear(persisted_keys)
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ...common.exceptions import (
    ClearSkipped,
    ConnectError,
    DeviceError,
    ProtocolError,
    SessionStateError,
)
from ..domain.entities import DedupKey, Device, DeviceInfo, RawPunchRecord, RawUser
from ..domain.ports import IDeviceDriver

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FETCHING = "fetching"
    CLEARING_PENDING = "clearing_pending"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({
        SessionState.CONNECTING, SessionState.FAILED, SessionState.DISCONNECTING,
    }),
    SessionState.CONNECTING: frozenset({
        SessionState.CONNECTED, SessionState.FAILED, SessionState.DISCONNECTING,
    }),
    SessionState.CONNECTED: frozenset({
        SessionState.FETCHING, SessionState.FAILED, SessionState.DISCONNECTING,
    }),
    SessionState.FETCHING: frozenset({
        SessionState.FETCHING, SessionState.CLEARING_PENDING,
        SessionState.FAILED, SessionState.DISCONNECTING,
    }),
    SessionState.CLEARING_PENDING: frozenset({
        SessionState.FAILED, SessionState.DISCONNECTING,
    }),
    SessionState.DISCONNECTING: frozenset({SessionState.CLOSED}),
    SessionState.FAILED: frozenset({SessionState.DISCONNECTING}),
    SessionState.CLOSED: frozenset(),
}


class DeviceSession:
    """One sync attempt's connection to a terminal.

    Not reusable: a retry opens a new session.
    """

    def __init__(
        self,
        driver: IDeviceDriver,
        device: Device,
        timeout: Optional[float] = None,
    ):
        self.driver = driver
        self.device = device
        self.timeout = timeout if timeout is not None else device.timeout

        self._state = SessionState.IDLE
        self._handle: Any = None
        self._keypad_disabled = False
        self._cleared = False
        self.opened_at: Optional[datetime] = None
        self.failure: Optional[Exception] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == SessionState.CLOSED

    async def __aenter__(self) -> "DeviceSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ----------------------------------------
    # State machine
    # ----------------------------------------

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise SessionStateError(
                f"transition to {target.value}",
                self._state.value,
                device_id=self.device.id,
            )
        self._state = target

    def _require(self, operation: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            raise SessionStateError(operation, self._state.value, device_id=self.device.id)

    def _fail(self, error: Exception) -> None:
        self.failure = error
        if SessionState.FAILED in _TRANSITIONS[self._state]:
            self._state = SessionState.FAILED

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args,
    ) -> T:
        """Run one driver call under the session timeout with typed failures."""
        try:
            return await asyncio.wait_for(func(*args), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ConnectError(
                f"{operation} timed out on {self.device.display_name}",
                address=f"{self.device.address}:{self.device.port}",
                timeout_seconds=self.timeout,
                device_id=self.device.id,
            )
        except DeviceError:
            raise
        except Exception as e:
            raise ProtocolError(
                f"{operation} failed on {self.device.display_name}: {e}",
                operation=operation,
                device_id=self.device.id,
                cause=e,
            )

    # ----------------------------------------
    # Operations
    # ----------------------------------------

    async def open(self) -> None:
        """Connect and lock the keypad.

        Raises:
            ConnectError: If the terminal is unreachable within the timeout
            ProtocolError: If the terminal refuses the session
        """
        self._require("open", SessionState.IDLE)
        self._transition(SessionState.CONNECTING)

        try:
            self._handle = await self._call(
                "connect", self.driver.connect, self.device, self.timeout
            )
            self.opened_at = datetime.now(timezone.utc)
            await self._call("disable", self.driver.disable, self._handle)
            self._keypad_disabled = True
        except DeviceError as e:
            self._fail(e)
            raise

        self._transition(SessionState.CONNECTED)
        logger.debug(f"Session opened to {self.device.display_name}")

    async def fetch_device_info(self) -> DeviceInfo:
        """Read terminal metadata. Valid only right after open()."""
        self._require("fetch device info", SessionState.CONNECTED)
        try:
            info = await self._call("get_info", self.driver.get_info, self._handle)
        except DeviceError as e:
            self._fail(e)
            raise
        if not isinstance(info, DeviceInfo):
            error = ProtocolError(
                f"Malformed device info from {self.device.display_name}",
                operation="get_info",
                device_id=self.device.id,
            )
            self._fail(error)
            raise error
        return info

    async def fetch_users(self) -> list[RawUser]:
        """Read the terminal's user roster. An empty roster is valid."""
        return await self._fetch("get_users", self.driver.get_users)

    async def fetch_punch_records(self) -> list[RawPunchRecord]:
        """Read every resident punch record. Zero records is success."""
        return await self._fetch("get_punch_records", self.driver.get_punch_records)

    async def _fetch(self, operation: str, func: Callable[[Any], Awaitable[list]]) -> list:
        self._require(operation, SessionState.CONNECTED, SessionState.FETCHING)
        self._transition(SessionState.FETCHING)
        try:
            rows = await self._call(operation, func, self._handle)
        except DeviceError as e:
            self._fail(e)
            raise
        if rows is None:
            return []
        if not isinstance(rows, list):
            error = ProtocolError(
                f"{operation} returned {type(rows).__name__}, expected list",
                operation=operation,
                device_id=self.device.id,
            )
            self._fail(error)
            raise error
        return rows

    def mark_clear_pending(self) -> None:
        """Record that the ledger durably accepted this session's data."""
        self._require("mark clear pending", SessionState.FETCHING)
        self._transition(SessionState.CLEARING_PENDING)

    async def confirm_clear(self, keys: set[DedupKey]) -> int:
        """Purge only the given persisted records from the terminal.

        Raises:
            ClearSkipped: If the driver cannot purge exactly these records

        Returns:
            Number of records purged
        """
        self._require("confirm clear", SessionState.CLEARING_PENDING)
        if self._cleared:
            raise SessionStateError("clear twice", self._state.value, device_id=self.device.id)
        if not keys:
            return 0

        self._cleared = True
        try:
            return await self._call(
                "clear_punch_records",
                self.driver.clear_punch_records,
                self._handle,
                set(keys),
            )
        except ClearSkipped:
            raise
        except DeviceError as e:
            self._fail(e)
            raise

    async def close(self) -> None:
        """Release the terminal. Idempotent, valid from every state, never raises."""
        if self._state in (SessionState.CLOSED, SessionState.DISCONNECTING):
            return

        self._transition(SessionState.DISCONNECTING)
        handle = self._handle
        self._handle = None

        if handle is not None:
            if self._keypad_disabled:
                try:
                    await self._call("enable", self.driver.enable, handle)
                except DeviceError as e:
                    logger.warning(
                        f"Could not re-enable {self.device.display_name}: {e}"
                    )
                self._keypad_disabled = False

            try:
                await asyncio.wait_for(self.driver.disconnect(handle), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Disconnect from {self.device.display_name} timed out")
            except Exception as e:
                logger.warning(f"Disconnect from {self.device.display_name} failed: {e}")

        self._state = SessionState.CLOSED
        logger.debug(f"Session to {self.device.display_name} closed")

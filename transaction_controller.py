"""Request/response sequencing for the config block.

One session per open device handle:

    DISCONNECTED -> VERSION_QUERIED -> CONFIG_PRIMED -> CONFIG_LOADED
    CONFIG_LOADED -> MUTATED -> (commit) -> CONFIG_LOADED
    CONFIG_LOADED -> LISTENING

Every transaction is a blocking request/response pair; only one is ever
outstanding. Any TransportError moves the session to FAILED, after which only
close() is allowed. There is no retry and no reconnect.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Iterator, Optional

import glorious_protocol as gp
from staging_manager import StagingManager


log = logging.getLogger(__name__)


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    VERSION_QUERIED = "version queried"
    CONFIG_PRIMED = "config primed"
    CONFIG_LOADED = "config loaded"
    MUTATED = "mutated"
    LISTENING = "listening"
    FAILED = "failed"


class TransactionController:
    """Drives the config transactions on a GloriousDevice.

    The device is opened on enter and closed on exit, also when a transaction
    fails.
    """

    def __init__(self, device):
        self.device = device
        self.state = SessionState.DISCONNECTED
        self.firmware_version: Optional[str] = None
        self.config: Optional[gp.DeviceConfig] = None

    def __enter__(self) -> "TransactionController":
        self.device.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        self.device.close()

    def _expect(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise RuntimeError(f"invalid in state '{self.state.value}' (expected {allowed})")

    def _set_state(self, state: SessionState) -> None:
        log.debug("Session state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, message: str) -> gp.TransportError:
        self._set_state(SessionState.FAILED)
        return gp.TransportError(message)

    def _send(self, frame: bytes, operation: str) -> None:
        log.debug("%s: send %s", operation, frame.hex(" "))
        try:
            res = self.device.send_feature_report(frame)
        except gp.TransportError as exc:
            raise self._fail(f"{operation}: {exc}") from exc
        if res != len(frame):
            raise self._fail(f"{operation}: sent {res} of {len(frame)} bytes")

    def _get(self, report_id: int, size: int, operation: str) -> bytes:
        try:
            resp = self.device.get_feature_report(report_id, size)
        except gp.TransportError as exc:
            raise self._fail(f"{operation}: {exc}") from exc
        log.debug("%s: received %d bytes", operation, len(resp))
        return resp

    def query_version(self) -> str:
        """Ask for the firmware version (4 ASCII characters)."""
        self._expect(SessionState.DISCONNECTED)
        frame = gp.build_command(gp.CMD_FIRMWARE_VERSION)
        self._send(frame, "get firmware version command")
        resp = self._get(gp.RID_COMMAND, len(frame), "read firmware version")
        if len(resp) != len(frame):
            raise self._fail(f"read firmware version: got {len(resp)} of {len(frame)} bytes")
        self.firmware_version = gp.parse_firmware_version(resp)
        log.info("Firmware version: %s", self.firmware_version)
        self._set_state(SessionState.VERSION_QUERIED)
        return self.firmware_version

    def prime_config(self) -> None:
        """Tell the firmware the next feature report read is the config block."""
        self._expect(SessionState.VERSION_QUERIED)
        self._send(gp.build_command(gp.CMD_PREPARE_CONFIG), "get config command")
        self._set_state(SessionState.CONFIG_PRIMED)

    def read_config(self) -> gp.DeviceConfig:
        self._expect(SessionState.CONFIG_PRIMED)
        resp = self._get(gp.RID_CONFIG, gp.CONFIG_LEN, "read config")
        try:
            self.config = gp.decode_config(resp)
        except gp.MalformedConfig:
            self._set_state(SessionState.FAILED)
            raise
        self._set_state(SessionState.CONFIG_LOADED)
        return self.config

    def load(self) -> gp.DeviceConfig:
        """Version query, priming and config read in one go."""
        self.query_version()
        self.prime_config()
        return self.read_config()

    def apply_edits(self, staging: Optional[StagingManager] = None) -> gp.DeviceConfig:
        """Apply staged edits to the loaded config and mark it for writing.

        In-memory only; nothing is sent until commit().
        """
        self._expect(SessionState.CONFIG_LOADED, SessionState.MUTATED)
        if staging is not None:
            staging.apply_to(self.config)
        self.config.mark_for_write()
        self._set_state(SessionState.MUTATED)
        return self.config

    def commit(self) -> int:
        """Write the full config block back. Returns the byte count sent."""
        self._expect(SessionState.MUTATED)
        frame = gp.encode_config(self.config)
        self._send(frame, "write config")
        self._set_state(SessionState.CONFIG_LOADED)
        return len(frame)

    def listen(self) -> Iterator[gp.ChangeReport]:
        """Yield change notifications forever.

        Each read blocks without timeout. Ends only with a TransportError or
        when the caller closes the generator.
        """
        self._expect(SessionState.CONFIG_LOADED)
        return self._listen()

    def _listen(self) -> Iterator[gp.ChangeReport]:
        self._expect(SessionState.CONFIG_LOADED)
        self._set_state(SessionState.LISTENING)
        try:
            while True:
                try:
                    data = self.device.read_input(gp.CHANGE_REPORT_LEN, -1)
                except gp.TransportError as exc:
                    raise self._fail(f"read input report: {exc}") from exc
                if len(data) != gp.CHANGE_REPORT_LEN:
                    raise self._fail(
                        f"read input report: got {len(data)} of {gp.CHANGE_REPORT_LEN} bytes")
                log.debug("input report: %s", data.hex(" "))
                yield gp.decode_change_report(data)
        finally:
            if self.state is SessionState.LISTENING:
                self._set_state(SessionState.CONFIG_LOADED)

"""USB Type-C port service: role switching, status reporting and uevent handling."""

from __future__ import annotations

import logging
import os
import re
import selectors
import socket
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .usb_roles import (
    PortRole,
    PortStatus,
    RoleTag,
    Status,
    UsbSysfs,
    apply_moisture_detection,
    extract_role,
    port_statuses,
    role_node,
    role_to_string,
)

log = logging.getLogger(__name__)

UEVENT_MSG_LEN = 2048
UEVENT_MAX_EVENTS = 64
# The type-c stack waits 4.5 - 5.5 s before declaring a port non-PD; the
# partner directory only appears afterwards, so allow a few seconds margin.
PORT_TYPE_TIMEOUT = 8
NETLINK_KOBJECT_UEVENT = 15

_PARTNER_ADDED = re.compile(r"(add)(.*)(-partner)")
_PORT_EVENT_PREFIXES = ("DEVTYPE=typec_", "CCIC=WATER", "CCIC=DRY")


class UsbCallback(Protocol):
    """Receiver of the results the USB service reports."""

    def notify_port_status_change(self, statuses: list[PortStatus], status: Status) -> object: ...

    def notify_role_switch_status(self, port_name: str, role: PortRole, status: Status,
                                  transaction_id: int) -> object: ...

    def notify_enable_usb_data_status(self, port_name: str, enable: bool, status: Status,
                                      transaction_id: int) -> object: ...

    def notify_enable_usb_data_while_docked_status(self, port_name: str, status: Status,
                                                   transaction_id: int) -> object: ...

    def notify_reset_usb_port_status(self, port_name: str, status: Status,
                                     transaction_id: int) -> object: ...

    def notify_limit_power_transfer_status(self, port_name: str, limit: bool, status: Status,
                                           transaction_id: int) -> object: ...

    def notify_contaminant_enabled_status(self, port_name: str, enable: bool, status: Status,
                                          transaction_id: int) -> object: ...

    def notify_query_port_status(self, port_name: str, status: Status,
                                 transaction_id: int) -> object: ...


def _open_uevent_socket() -> socket.socket:
    family = getattr(socket, "AF_NETLINK", None)
    if family is None:
        raise OSError("netlink sockets are not available on this platform")
    sock = socket.socket(family, socket.SOCK_DGRAM, NETLINK_KOBJECT_UEVENT)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, UEVENT_MAX_EVENTS * UEVENT_MSG_LEN)
        sock.bind((0, 0xFFFFFFFF))
    except OSError:
        sock.close()
        raise
    return sock


def switch_to_drp(sysfs: UsbSysfs, port_name: str) -> bool:
    """Put a port back into dual-role mode; returns whether the node was written."""
    filename = role_node(sysfs, port_name, RoleTag.MODE)
    try:
        with open(filename, "w") as node:
            node.write("dual")
    except OSError as exc:
        log.error("Fatal: Cannot switch %s back to drp: %s", port_name, exc)
        return False
    return True


@dataclass
class _Listener:
    thread: threading.Thread
    wake: socket.socket
    stop_event: threading.Event

    def halt(self) -> None:
        self.stop_event.set()
        try:
            self.wake.send(b"\0")
        except OSError:
            pass
        self.wake.close()
        if self.thread is not threading.current_thread():
            self.thread.join()
        log.info("uevent listener stopped")


class Usb:
    """USB service over the Type-C sysfs class of one device."""

    def __init__(self, sysfs: UsbSysfs | None = None,
                 properties: Mapping[str, str] | None = None,
                 port_type_timeout: float = PORT_TYPE_TIMEOUT,
                 uevent_socket: Callable[[], socket.socket] | None = None) -> None:
        self.sysfs = sysfs or UsbSysfs()
        self.properties = properties if properties is not None else {}
        self.port_type_timeout = port_type_timeout
        self._open_socket = uevent_socket or _open_uevent_socket
        self._callback: UsbCallback | None = None
        self._lock = threading.Lock()
        self._role_switch_lock = threading.Lock()
        self._partner_cv = threading.Condition()
        self._partner_up = False
        self._listener: _Listener | None = None

    def __enter__(self) -> Usb:
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    @property
    def callback(self) -> UsbCallback | None:
        return self._callback

    @property
    def listening(self) -> bool:
        """Whether the uevent listener thread is running."""
        listener = self._listener
        return listener is not None and listener.thread.is_alive()

    def _notify(self, method: str, *args) -> None:
        if self._callback is None:
            log.error("Not notifying the userspace. Callback is not set")
            return
        try:
            getattr(self._callback, method)(*args)
        except Exception:
            log.exception("%s error", method)

    def _query_ports(self) -> list[PortStatus]:
        with self._lock:
            statuses, status = port_statuses(self.sysfs)
            apply_moisture_detection(self.sysfs, statuses, self.properties)
            if self._callback is None:
                log.info("Notifying userspace skipped. Callback is None")
            else:
                self._notify("notify_port_status_change", statuses, status)
        return statuses

    # Listener thread

    def _start_listener(self) -> None:
        stop_event = threading.Event()
        reader, writer = socket.socketpair()
        thread = threading.Thread(target=self._work, args=(reader, stop_event),
                                  name="usb-uevent", daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            log.error("thread creation failed: %s", exc)
            reader.close()
            writer.close()
            self._callback = None
            return
        self._listener = _Listener(thread, writer, stop_event)

    def _take_listener(self) -> _Listener | None:
        listener, self._listener = self._listener, None
        return listener

    def _work(self, wake_reader: socket.socket, stop_event: threading.Event) -> None:
        try:
            sock = self._open_socket()
        except OSError as exc:
            log.error("uevent_init: uevent_open_socket failed: %s", exc)
            wake_reader.close()
            return
        try:
            sock.setblocking(False)
            with selectors.DefaultSelector() as selector:
                selector.register(sock, selectors.EVENT_READ)
                selector.register(wake_reader, selectors.EVENT_READ)
                while not stop_event.is_set():
                    for key, _ in selector.select():
                        if key.fileobj is sock and not stop_event.is_set():
                            self._receive(sock, stop_event)
        finally:
            sock.close()
            wake_reader.close()
        log.info("exiting worker thread")

    def _receive(self, sock: socket.socket, stop_event: threading.Event) -> None:
        try:
            data, address = sock.recvfrom(UEVENT_MSG_LEN)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as exc:
            log.error("usb uevent receive failed: %s", exc)
            stop_event.set()
            return
        if isinstance(address, tuple) and address and address[0] != 0:
            return  # not sent by the kernel
        if not data or len(data) >= UEVENT_MSG_LEN:
            return
        try:
            self.handle_uevent(data)
        except Exception:
            log.exception("failed to handle uevent")

    # Service operations

    def set_callback(self, callback: UsbCallback | None) -> None:
        """Register the result receiver; uevents are watched while one is set."""
        with self._lock:
            previous, self._callback = self._callback, callback
            if (previous is None) == (callback is None):
                return
            log.info("registering callback")
            if callback is not None:
                self._start_listener()
                return
            listener = self._take_listener()
        if listener is not None:
            listener.halt()

    def stop(self) -> None:
        """Drop the callback and stop watching uevents."""
        with self._lock:
            self._callback = None
            listener = self._take_listener()
        if listener is not None:
            listener.halt()

    def query_port_status(self, transaction_id: int) -> list[PortStatus]:
        statuses = self._query_ports()
        with self._lock:
            self._notify("notify_query_port_status", "all", Status.SUCCESS, transaction_id)
        return statuses

    def _switch_mode(self, port_name: str, role: PortRole) -> bool:
        filename = role_node(self.sysfs, port_name, role.tag)
        switched = False
        try:
            node = open(filename, "w")
        except OSError as exc:
            log.error("cannot open %s: %s", filename, exc)
            node = None
        if node is not None:
            # Hold the lock while writing so the partner-added uevent that
            # may follow at once is not lost.
            with self._partner_cv:
                self._partner_up = False
                try:
                    with node:
                        node.write(role_to_string(role))
                except OSError:
                    log.info("Role switch failed while writing to file")
                else:
                    switched = self._partner_cv.wait_for(
                        lambda: self._partner_up, self.port_type_timeout)
                    if not switched:
                        log.info("uevents wait timedout")
        if not switched:
            switch_to_drp(self.sysfs, port_name)
        return switched

    def _write_role(self, filename: str, role: PortRole) -> bool:
        wanted = role_to_string(role)
        try:
            with open(filename, "w") as node:
                node.write(wanted)
            written = extract_role(Path(filename).read_text().strip())
        except OSError as exc:
            log.error("failed to update the new role: %s", exc)
            return False
        log.info("written: %s", written)
        if written != wanted:
            log.error("Role switch failed")
            return False
        return True

    def switch_role(self, port_name: str, role: PortRole, transaction_id: int) -> bool:
        """Change a port role and report the outcome; returns whether it took effect."""
        filename = role_node(self.sysfs, port_name, role.tag)
        with self._role_switch_lock:
            log.info("filename write: %s role:%s", filename, role_to_string(role))
            if role.tag == RoleTag.MODE:
                switched = self._switch_mode(port_name, role)
            else:
                switched = self._write_role(filename, role)
            with self._lock:
                self._notify("notify_role_switch_status", port_name, role,
                             Status.SUCCESS if switched else Status.ERROR, transaction_id)
        return switched

    def enable_usb_data(self, port_name: str, enable: bool, transaction_id: int) -> bool:
        with self._lock:
            try:
                Path(self.sysfs.usb_data_path).write_text("1" if enable else "0")
                ok = True
            except OSError:
                log.error("Not able to turn %s usb connection notification",
                          "on" if enable else "off")
                ok = False
            self._notify("notify_enable_usb_data_status", port_name, enable,
                         Status.SUCCESS if ok else Status.ERROR, transaction_id)
        self._query_ports()
        return ok

    def enable_usb_data_while_docked(self, port_name: str, transaction_id: int) -> None:
        with self._lock:
            self._notify("notify_enable_usb_data_while_docked_status", port_name,
                         Status.NOT_SUPPORTED, transaction_id)

    def reset_usb_port(self, port_name: str, transaction_id: int) -> None:
        with self._lock:
            self._notify("notify_reset_usb_port_status", port_name,
                         Status.NOT_SUPPORTED, transaction_id)

    def limit_power_transfer(self, port_name: str, limit: bool, transaction_id: int) -> None:
        with self._lock:
            if self._callback is not None and transaction_id >= 0:
                self._notify("notify_limit_power_transfer_status", port_name, False,
                             Status.NOT_SUPPORTED, transaction_id)
            else:
                log.error("Not notifying the userspace. Callback is not set")

    def enable_contaminant_presence_detection(self, port_name: str, enable: bool,
                                              transaction_id: int) -> None:
        with self._lock:
            self._notify("notify_contaminant_enabled_status", port_name, True,
                         Status.SUCCESS, transaction_id)
        self._query_ports()

    def handle_uevent(self, message: bytes | str) -> None:
        """React to one NUL-separated uevent message."""
        if isinstance(message, (bytes, bytearray)):
            text = bytes(message).decode("utf-8", errors="replace")
        else:
            text = message
        entries: Sequence[str] = text.split("\0")
        for entry in entries:
            if not entry:
                break
            if _PARTNER_ADDED.fullmatch(entry):
                log.info("partner added")
                with self._partner_cv:
                    self._partner_up = True
                    self._partner_cv.notify()
            elif entry.startswith(_PORT_EVENT_PREFIXES):
                statuses = self._query_ports()
                # Only reset disconnected ports when no role switch is running.
                if self._role_switch_lock.acquire(blocking=False):
                    try:
                        for status in statuses:
                            partner = os.path.join(self.sysfs.typec_path,
                                                   status.port_name + "-partner")
                            if not os.path.isdir(partner):
                                switch_to_drp(self.sysfs, status.port_name)
                    finally:
                        self._role_switch_lock.release()
                break
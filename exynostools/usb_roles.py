"""USB Type-C port roles and status read from the typec sysfs class."""

from __future__ import annotations

import enum
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

TYPEC_PATH = "/sys/class/typec/"
DATA_ROLE_NODE = "/data_role"
POWER_ROLE_NODE = "/power_role"
PORT_TYPE_NODE = "/port_type"
USB_DATA_PATH = "/sys/devices/virtual/usb_notify/usb_control/usb_data_enabled"
CONTAMINANT_DETECTION_PATH = "/sys/devices/virtual/sec/ccic/water"
DISABLE_CONTAMINANT_DETECTION = "vendor.usb.contaminantdisable"


class Status(enum.IntEnum):
    """Result reported to the USB client for an operation."""

    SUCCESS = 0
    ERROR = 1
    INVALID_ARGUMENT = 2
    UNRECOGNIZED_ROLE = 3
    NOT_SUPPORTED = 4


class RoleTag(enum.IntEnum):
    """Which kind of role a PortRole holds."""

    MODE = 0
    POWER_ROLE = 1
    DATA_ROLE = 2


class PortPowerRole(enum.IntEnum):
    NONE = 0
    SOURCE = 1
    SINK = 2


class PortDataRole(enum.IntEnum):
    NONE = 0
    HOST = 1
    DEVICE = 2


class PortMode(enum.IntEnum):
    NONE = 0
    UFP = 1
    DFP = 2
    DRP = 3
    AUDIO_ACCESSORY = 4
    DEBUG_ACCESSORY = 5


class ContaminantProtectionMode(enum.IntEnum):
    NONE = 0
    FORCE_SINK = 1
    FORCE_SOURCE = 2
    FORCE_DISABLE = 3


class ContaminantProtectionStatus(enum.IntEnum):
    NONE = 0
    FORCE_SINK = 1
    FORCE_SOURCE = 2
    FORCE_DISABLE = 3
    DISABLED = 4


class ContaminantDetectionStatus(enum.IntEnum):
    NOT_SUPPORTED = 0
    DISABLED = 1
    NOT_DETECTED = 2
    DETECTED = 3


class UsbDataStatus(enum.IntEnum):
    UNKNOWN = 0
    ENABLED = 1
    DISABLED_OVERHEAT = 2
    DISABLED_CONTAMINANT = 3
    DISABLED_DOCK = 4
    DISABLED_FORCE = 5
    DISABLED_DEBUG = 6


_ROLE_TYPES = {
    RoleTag.MODE: PortMode,
    RoleTag.POWER_ROLE: PortPowerRole,
    RoleTag.DATA_ROLE: PortDataRole,
}


@dataclass(frozen=True)
class PortRole:
    """A role of one kind: power role, data role or port mode."""

    tag: RoleTag
    value: enum.IntEnum

    def __post_init__(self) -> None:
        tag = RoleTag(self.tag)
        kind = _ROLE_TYPES[tag]
        object.__setattr__(self, "tag", tag)
        try:
            object.__setattr__(self, "value", kind(self.value))
        except ValueError:
            raise ValueError(f"{self.value!r} is not a valid {kind.__name__}") from None

    @classmethod
    def _none(cls, tag: RoleTag) -> PortRole:
        return cls(tag, _ROLE_TYPES[RoleTag(tag)].NONE)


@dataclass
class PortStatus:
    """Everything reported about one Type-C port."""

    port_name: str = ""
    current_data_role: PortDataRole = PortDataRole.NONE
    current_power_role: PortPowerRole = PortPowerRole.NONE
    current_mode: PortMode = PortMode.NONE
    can_change_mode: bool = False
    can_change_data_role: bool = False
    can_change_power_role: bool = False
    supported_modes: list[PortMode] = field(default_factory=list)
    supported_contaminant_protection_modes: list[ContaminantProtectionMode] = field(
        default_factory=list)
    supports_enable_contaminant_presence_protection: bool = False
    contaminant_protection_status: ContaminantProtectionStatus = ContaminantProtectionStatus.NONE
    supports_enable_contaminant_presence_detection: bool = False
    contaminant_detection_status: ContaminantDetectionStatus = (
        ContaminantDetectionStatus.NOT_SUPPORTED)
    usb_data_status: list[UsbDataStatus] = field(default_factory=list)


@dataclass(frozen=True)
class UsbSysfs:
    """Locations of the sysfs nodes describing the USB ports."""

    typec_path: str = TYPEC_PATH
    usb_data_path: str = USB_DATA_PATH
    contaminant_detection_path: str = CONTAMINANT_DETECTION_PATH


def _port_path(sysfs: UsbSysfs, name: str) -> str:
    return os.path.join(sysfs.typec_path, name)


def _read_trimmed(path: str) -> str:
    return Path(path).read_text().strip()


def read_first_line(path) -> str:
    """First line of a file without its newline; raises OSError if unreadable."""
    with open(path) as handle:
        return handle.readline().split("\n", 1)[0]


def role_node(sysfs: UsbSysfs, port_name: str, tag) -> str:
    """Path of the sysfs node that sets a role of the given kind."""
    suffix = {
        RoleTag.DATA_ROLE: DATA_ROLE_NODE,
        RoleTag.POWER_ROLE: POWER_ROLE_NODE,
        RoleTag.MODE: PORT_TYPE_NODE,
    }.get(tag)
    if suffix is None:
        raise ValueError(f"invalid role tag {tag!r}")
    return _port_path(sysfs, port_name + suffix)


def role_to_string(role: PortRole) -> str:
    """The word the kernel uses for a role."""
    names = {
        (RoleTag.POWER_ROLE, PortPowerRole.SOURCE): "source",
        (RoleTag.POWER_ROLE, PortPowerRole.SINK): "sink",
        (RoleTag.DATA_ROLE, PortDataRole.HOST): "host",
        (RoleTag.DATA_ROLE, PortDataRole.DEVICE): "device",
        (RoleTag.MODE, PortMode.UFP): "sink",
        (RoleTag.MODE, PortMode.DFP): "source",
    }
    return names.get((role.tag, role.value), "none")


def extract_role(role_name: str) -> str:
    """The bracketed, currently selected entry of a sysfs role list."""
    first = role_name.find("[")
    last = role_name.find("]")
    if first < 0 or last < 0:
        return role_name
    if last < first:
        return role_name[first + 1:]
    return role_name[first + 1:last]


def accessory_connected(sysfs: UsbSysfs, port_name: str) -> str:
    """Accessory mode reported by the port's partner; raises OSError if unreadable."""
    filename = _port_path(sysfs, port_name + "-partner/accessory_mode")
    try:
        return _read_trimmed(filename)
    except OSError:
        log.error("getAccessoryConnected: Failed to open filesystem node: %s", filename)
        raise


def current_role(sysfs: UsbSysfs, port_name: str, connected: bool, tag) -> PortRole:
    """Read the current role of the requested kind.

    Raises OSError when a node cannot be read and ValueError when the
    kernel reports a role that is not recognised.
    """
    tag = RoleTag(tag)
    node = POWER_ROLE_NODE if tag == RoleTag.POWER_ROLE else DATA_ROLE_NODE
    filename = _port_path(sysfs, port_name + node)
    default = PortRole._none(tag)

    if not connected:
        return default

    if tag == RoleTag.MODE:
        accessory = accessory_connected(sysfs, port_name)
        if accessory == "analog_audio":
            return PortRole(RoleTag.MODE, PortMode.AUDIO_ACCESSORY)
        if accessory == "debug":
            return PortRole(RoleTag.MODE, PortMode.DEBUG_ACCESSORY)

    try:
        role_name = extract_role(_read_trimmed(filename))
    except OSError:
        log.error("getCurrentRole: Failed to open filesystem node: %s", filename)
        raise

    if role_name == "source":
        return PortRole(RoleTag.POWER_ROLE, PortPowerRole.SOURCE)
    if role_name == "sink":
        return PortRole(RoleTag.POWER_ROLE, PortPowerRole.SINK)
    if role_name == "host":
        if tag == RoleTag.DATA_ROLE:
            return PortRole(RoleTag.DATA_ROLE, PortDataRole.HOST)
        return PortRole(RoleTag.MODE, PortMode.DFP)
    if role_name == "device":
        if tag == RoleTag.DATA_ROLE:
            return PortRole(RoleTag.DATA_ROLE, PortDataRole.DEVICE)
        return PortRole(RoleTag.MODE, PortMode.UFP)
    if role_name == "none":
        return default
    raise ValueError(f"unrecognized role {role_name!r} for port {port_name}")


def typec_port_names(sysfs: UsbSysfs) -> dict[str, bool]:
    """Map each Type-C port name to whether a partner is connected."""
    names: dict[str, bool] = {}
    try:
        entries = sorted(
            (e.name for e in os.scandir(sysfs.typec_path) if e.is_symlink()))
    except OSError:
        log.error("Failed to open %s", sysfs.typec_path)
        raise
    for name in entries:
        if "-partner" not in name:
            names.setdefault(name, False)
        else:
            tokens = [token for token in name.split("-") if token]
            names[tokens[0]] = True
    return dict(sorted(names.items()))


def can_switch_role(sysfs: UsbSysfs, port_name: str) -> bool:
    """Whether the connected partner supports USB power delivery."""
    filename = _port_path(sysfs, port_name + "-partner/supports_usb_power_delivery")
    try:
        return _read_trimmed(filename) == "yes"
    except OSError:
        return False


def _usb_data_enabled(sysfs: UsbSysfs) -> bool:
    try:
        return int(_read_trimmed(sysfs.usb_data_path)) != 0
    except (OSError, ValueError):
        return True


def _role_value(sysfs: UsbSysfs, name: str, connected: bool, tag: RoleTag):
    role = current_role(sysfs, name, connected, tag)
    if role.tag != tag:
        raise ValueError(f"port {name} reported a {role.tag.name} where {tag.name} was read")
    return role.value


def port_statuses(sysfs: UsbSysfs) -> tuple[list[PortStatus], Status]:
    """Status of every Type-C port, with SUCCESS or ERROR for the whole query."""
    try:
        names = typec_port_names(sysfs)
    except OSError:
        return [], Status.ERROR

    statuses = [PortStatus() for _ in names]
    for index, ((name, connected), status) in enumerate(zip(names.items(), statuses)):
        log.info("%s", name)
        status.port_name = name
        try:
            status.current_power_role = _role_value(sysfs, name, connected, RoleTag.POWER_ROLE)
            status.current_data_role = _role_value(sysfs, name, connected, RoleTag.DATA_ROLE)
            status.current_mode = _role_value(sysfs, name, connected, RoleTag.MODE)
        except (OSError, ValueError) as exc:
            log.error("Error while retrieving port roles: %s", exc)
            return statuses, Status.ERROR

        status.can_change_mode = True
        status.can_change_data_role = connected and can_switch_role(sysfs, name)
        status.can_change_power_role = connected and can_switch_role(sysfs, name)
        status.supported_modes.append(PortMode.DRP)

        data_enabled = _usb_data_enabled(sysfs)
        status.usb_data_status.append(
            UsbDataStatus.ENABLED if data_enabled else UsbDataStatus.DISABLED_FORCE)

        log.info(
            "%d:%s connected:%d canChangeMode:%d canChagedata:%d canChangePower:%d "
            "usbDataEnabled:%d",
            index, name, connected, status.can_change_mode, status.can_change_data_role,
            status.can_change_power_role, data_enabled,
        )
    return statuses, Status.SUCCESS


def apply_moisture_detection(sysfs: UsbSysfs, statuses: list[PortStatus],
                             properties: Mapping[str, str] | None = None) -> Status:
    """Fill in contaminant detection fields of each status in place."""
    properties = properties or {}
    for index, status in enumerate(statuses):
        status.supported_contaminant_protection_modes.append(ContaminantProtectionMode.NONE)
        status.contaminant_protection_status = ContaminantProtectionStatus.NONE
        status.contaminant_detection_status = ContaminantDetectionStatus.DISABLED
        status.supports_enable_contaminant_presence_detection = True
        status.supports_enable_contaminant_presence_protection = False

        if properties.get(DISABLE_CONTAMINANT_DETECTION, "") != "true":
            try:
                water = read_first_line(sysfs.contaminant_detection_path)
            except OSError:
                log.error("Failed to open %s", sysfs.contaminant_detection_path)
                return Status.ERROR
            if water == "1":
                status.contaminant_detection_status = ContaminantDetectionStatus.DETECTED
                status.contaminant_protection_status = ContaminantProtectionStatus.FORCE_SINK
            else:
                status.contaminant_detection_status = ContaminantDetectionStatus.NOT_DETECTED

        log.info(
            "ContaminantDetectionStatus[%d]:%d ContaminantProtectionStatus[%d]:%d",
            index, status.contaminant_detection_status,
            index, status.contaminant_protection_status,
        )
    return Status.SUCCESS
"""Vibrator service driving a timed-output sysfs vibrator."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import NoReturn

log = logging.getLogger(__name__)

INTENSITY_MIN = 1000
INTENSITY_MAX = 10000
INTENSITY_DEFAULT = INTENSITY_MAX

AMPLITUDE_LIGHT = 0.25
AMPLITUDE_MEDIUM = 0.5
AMPLITUDE_STRONG = 1.0

VIBRATOR_TIMEOUT_PATH = "/sys/class/timed_output/vibrator/enable"
VIBRATOR_INTENSITY_PATH = "/sys/class/timed_output/vibrator/intensity"
VIBRATOR_CP_TRIGGER_PATH = "/sys/class/timed_output/vibrator/cp_trigger_index"

CLICK_DURATION_PROPERTY = "ro.vendor.vibrator_hal.click_duration"
TICK_DURATION_PROPERTY = "ro.vendor.vibrator_hal.tick_duration"

DEFAULT_CLICK_DURATION = 10
DEFAULT_TICK_DURATION = 5
CP_TRIGGER_DURATION_MS = 1000

_U32 = 0xFFFFFFFF


class Effect(enum.IntEnum):
    """Predefined vibration effects."""

    CLICK = 0
    DOUBLE_CLICK = 1
    TICK = 2
    THUD = 3
    POP = 4
    HEAVY_CLICK = 5
    TEXTURE_TICK = 21


class EffectStrength(enum.IntEnum):
    """Strength at which an effect is played."""

    LIGHT = 0
    MEDIUM = 1
    STRONG = 2


class Capability(enum.IntFlag):
    """Capabilities a vibrator can advertise."""

    ON_CALLBACK = 1
    PERFORM_CALLBACK = 2
    AMPLITUDE_CONTROL = 4
    EXTERNAL_CONTROL = 8
    EXTERNAL_AMPLITUDE_CONTROL = 16
    COMPOSE_EFFECTS = 32
    ALWAYS_ON_CONTROL = 64


class VibratorError(Exception):
    """Raised when the vibrator hardware node cannot be driven."""


class UnsupportedOperation(VibratorError):
    """Raised for operations this vibrator does not support."""


class IllegalArgument(VibratorError, ValueError):
    """Raised when an argument is outside its allowed range."""


# Effects played by the hardware itself through the trigger index node,
# ordered by effect value.
CP_TRIGGER_EFFECTS: dict[Effect, int] = {
    Effect.CLICK: 10,
    Effect.DOUBLE_CLICK: 14,
    Effect.TICK: 50,
    Effect.HEAVY_CLICK: 23,
    Effect.TEXTURE_TICK: 50,
}


@dataclass(frozen=True)
class VibratorPaths:
    """Locations of the sysfs nodes controlling the vibrator."""

    timeout: str = VIBRATOR_TIMEOUT_PATH
    intensity: str = VIBRATOR_INTENSITY_PATH
    cp_trigger: str = VIBRATOR_CP_TRIGGER_PATH


def _write_node(path: str, value: object) -> None:
    log.debug("writeNode node: %s value: %s", path, value)
    try:
        with open(path, "w") as node:
            node.write(f"{value}\n")
    except OSError as exc:
        raise VibratorError(f"failed to write {value} to {path}: {exc.strerror or exc}") from exc


def _node_exists(path: str) -> bool:
    try:
        with open(path, "a"):
            return True
    except OSError:
        return False


def _int_property(properties: Mapping[str, str], name: str, default: int) -> int:
    value = properties.get(name)
    if value is None:
        return default
    try:
        return int(str(value).strip(), 0)
    except ValueError:
        return default


def strength_to_amplitude(strength) -> float:
    """Amplitude used for an effect strength."""
    try:
        strength = EffectStrength(strength)
    except ValueError:
        raise UnsupportedOperation(f"unsupported effect strength {strength!r}") from None
    return {
        EffectStrength.LIGHT: AMPLITUDE_LIGHT,
        EffectStrength.MEDIUM: AMPLITUDE_MEDIUM,
        EffectStrength.STRONG: AMPLITUDE_STRONG,
    }[strength]


def _notify_later(delay_ms: int, callback: Callable[[], object], what: str) -> threading.Thread:
    def run() -> None:
        log.debug("Starting %s on another thread", what)
        time.sleep(max(delay_ms, 0) / 1000)
        log.debug("Notifying %s complete", what)
        try:
            callback()
        except Exception:
            log.exception("Failed to call onComplete")

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


class Vibrator:
    """A vibrator backed by timed-output sysfs nodes."""

    def __init__(self, paths: VibratorPaths | None = None,
                 properties: Mapping[str, str] | None = None) -> None:
        self.paths = paths or VibratorPaths()
        properties = properties or {}
        self._lock = threading.Lock()
        self._enabled = False
        self.external_control = False

        self.is_timed_out_vibrator = _node_exists(self.paths.timeout)
        self.has_intensity = _node_exists(self.paths.intensity)
        self.has_cp_trigger = _node_exists(self.paths.cp_trigger)

        self.click_duration = _int_property(
            properties, CLICK_DURATION_PROPERTY, DEFAULT_CLICK_DURATION)
        self.tick_duration = _int_property(
            properties, TICK_DURATION_PROPERTY, DEFAULT_TICK_DURATION)

    def _activate(self, timeout_ms: int) -> None:
        with self._lock:
            if not self.is_timed_out_vibrator:
                raise UnsupportedOperation("vibrator has no timed-output node")
            _write_node(self.paths.timeout, int(timeout_ms) & _U32)

    def _clear_trigger(self) -> None:
        try:
            _write_node(self.paths.cp_trigger, 0)
        except VibratorError as exc:
            log.error("%s", exc)

    def _effect_to_ms(self, effect) -> int:
        if effect == Effect.CLICK:
            return self.click_duration
        if effect == Effect.TICK:
            return self.tick_duration
        raise UnsupportedOperation(f"unsupported effect {effect!r}")

    def _unsupported(self, operation: str, **details: object) -> NoReturn:
        """Log a request for a feature this vibrator lacks and reject it."""
        described = ", ".join(f"{key}={value!r}" for key, value in details.items())
        log.debug("rejecting %s request (%s)", operation, described)
        raise UnsupportedOperation(f"{operation} is not supported")

    def capabilities(self) -> Capability:
        caps = Capability.ON_CALLBACK | Capability.PERFORM_CALLBACK | Capability.EXTERNAL_CONTROL
        if self.has_intensity:
            caps |= Capability.AMPLITUDE_CONTROL | Capability.EXTERNAL_AMPLITUDE_CONTROL
        return caps

    def off(self) -> None:
        self._activate(0)

    def on(self, timeout_ms: int, callback: Callable[[], object] | None = None) -> None:
        """Vibrate for ``timeout_ms``; ``callback`` runs once the time has passed."""
        if self.has_cp_trigger:
            self._clear_trigger()

        failure: VibratorError | None = None
        try:
            self._activate(timeout_ms)
        except VibratorError as exc:
            failure = exc

        if callback is not None:
            _notify_later(timeout_ms, callback, "on")
        if failure is not None:
            raise failure

    def perform(self, effect, strength, callback: Callable[[], object] | None = None) -> int:
        """Play ``effect`` at ``strength`` and return its duration in milliseconds."""
        amplitude = strength_to_amplitude(strength)

        for step in (lambda: self._activate(0), lambda: self.set_amplitude(amplitude)):
            try:
                step()
            except VibratorError as exc:
                log.debug("ignored while preparing effect: %s", exc)

        ms = CP_TRIGGER_DURATION_MS
        trigger = None
        try:
            trigger = CP_TRIGGER_EFFECTS.get(Effect(effect))
        except ValueError:
            pass
        if self.has_cp_trigger and trigger is not None:
            try:
                _write_node(self.paths.cp_trigger, trigger)
            except VibratorError as exc:
                log.error("%s", exc)
        else:
            if self.has_cp_trigger:
                self._clear_trigger()
            ms = self._effect_to_ms(effect)

        failure: VibratorError | None = None
        try:
            self._activate(ms)
        except VibratorError as exc:
            failure = exc

        if callback is not None:
            _notify_later(ms, callback, "perform")
        if failure is not None:
            raise failure
        return ms

    def supported_effects(self) -> list[Effect]:
        effects = [Effect.CLICK, Effect.TICK]
        if self.has_cp_trigger:
            effects.extend(CP_TRIGGER_EFFECTS)
        return effects

    def set_amplitude(self, amplitude: float) -> None:
        if amplitude <= 0.0 or amplitude > 1.0:
            raise IllegalArgument(f"amplitude {amplitude} outside (0, 1]")
        log.debug("Setting amplitude: %s", amplitude)
        intensity = int(amplitude * INTENSITY_MAX)
        log.debug("Setting intensity: %s", intensity)
        if self.has_intensity:
            _write_node(self.paths.intensity, intensity)

    def set_external_control(self, enabled: bool) -> None:
        if self._enabled:
            raise UnsupportedOperation(
                "Setting external control while the vibrator is enabled is unsupported"
            )
        log.info("ExternalControl: %s -> %s", self.external_control, enabled)
        self.external_control = bool(enabled)

    def compose(self, composite, callback=None) -> NoReturn:
        """Reject composed effects; this vibrator cannot play them."""
        self._unsupported("composition", composite=composite,
                          has_callback=callback is not None)

    def always_on_enable(self, effect_id, effect, strength) -> NoReturn:
        """Reject always-on effects; this vibrator cannot play them."""
        self._unsupported("always-on effects", id=effect_id, effect=effect,
                          strength=strength)

    def always_on_disable(self, effect_id) -> NoReturn:
        """Reject always-on effects; this vibrator cannot play them."""
        self._unsupported("always-on effects", id=effect_id)

    def resonant_frequency(self) -> NoReturn:
        """Reject the query; the resonant frequency is not known."""
        self._unsupported("resonant frequency")

    def q_factor(self) -> NoReturn:
        """Reject the query; the Q factor is not known."""
        self._unsupported("Q factor")
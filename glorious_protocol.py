"""Glorious Model D / Model O (Sinowealth) USB HID configuration protocol.

Reverse-engineered from USB captures of the Glorious Windows software. These
mice are built on a Sinowealth reference design; many similarly specced mice
share the VID 0x258A and the same register block.

All settings live in a single 520-byte register block on HID interface 1:

  1. send feature report  05 01 00 00 00 00   -> firmware version request
  2. get feature report   05 xx [4 ASCII bytes]
  3. send feature report  05 11 00 00 00 00   -> prepare config read
  4. get feature report   04 ... (520 bytes)  -> full config block
  5. send feature report  04 ... (520 bytes)  with byte 3 = 0x7B to persist

Only the fields listed in the offset table below are understood. Every other
byte must be written back exactly as it was read, otherwise live firmware state
gets corrupted.

The device also pushes an 8-byte input report (report ID 0x07) whenever the
active DPI slot is changed with the button on the mouse.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Iterable, Optional, Sequence, Union

import hid


log = logging.getLogger(__name__)


# -- Device Constants --
VENDOR_ID = 0x258A
CONFIG_INTERFACE = 1  # Vendor config interface (interface 0 is the mouse itself)

# Report IDs
RID_COMMAND = 0x05  # 6-byte command/response frames
RID_CONFIG = 0x04   # 520-byte config block
RID_CHANGE = 0x07   # 8-byte change notification (input report)

# Commands (byte 1 after report ID)
CMD_FIRMWARE_VERSION = 0x01
CMD_PREPARE_CONFIG = 0x11

# Frame sizes
COMMAND_LEN = 6
CONFIG_LEN = 520
CHANGE_REPORT_LEN = 8

# Firmware version: 4 ASCII characters at offset 2 of the version response
VERSION_OFFSET = 2
VERSION_LEN = 4

# Byte 3 of the config block is 0x00 when read and must be 0x7B to write.
# Empirical value, nothing else is known about it.
CONFIG_WRITE_SENTINEL = 0x7B

# -- Config Block Offsets --
OFF_REPORT_ID = 0x00
OFF_COMMAND_ID = 0x01
OFF_CONFIG_WRITE = 0x03
OFF_CONFIG1 = 0x0A         # bit 0x80: XY DPI independent, other bits unknown
OFF_ACTIVE_DPI = 0x0B      # high nibble: active slot, low nibble unknown
OFF_DPI_ENABLED = 0x0C     # bit set = slot DISABLED
OFF_DPI = 0x0D             # 16 raw sensor values
OFF_DPI_COLOR = 0x1D       # 8 x RGB
OFF_RGB_EFFECT = 0x35
OFF_GLORIOUS = 0x36        # mode, direction
OFF_SINGLE = 0x38          # RGB
OFF_BREATHING = 0x3B       # mode, color count, 7 x RGB
OFF_TAIL = 0x52            # mode
OFF_RAVE = 0x53            # mode, 2 x RGB
OFF_WAVE = 0x5A            # mode
OFF_BREATHING1 = 0x5B      # mode, RGB
OFF_LIFT_OFF_DISTANCE = 0x60

XY_INDEPENDENT = 0x80

# The block has room for eight DPI slots, the Glorious software exposes six
DPI_SLOT_COUNT = 8
USER_DPI_SLOTS = 6
DPI_VALUE_COUNT = 16

# DPI is encoded the way the PMW3360 sensor accepts it: raw = DPI / 100 - 1
DPI_STEP = 100
DPI_MIN = 100
DPI_MAX = 25600

# Lift-off distance codes
LIFT_OFF_DISTANCES = {
    2: 0x01,  # 2 mm
    3: 0x02,  # 3 mm
}

# Effect mode bytes: brightness in the high nibble (1-4), speed in the low (1-3)
SPEED_MIN = 1
SPEED_MAX = 3
BRIGHTNESS_MIN = 1
BRIGHTNESS_MAX = 4
BRIGHTNESS_CONSTANT = 0x40


class GloriousError(Exception):
    """Base class for all protocol errors."""


class TransportError(GloriousError, RuntimeError):
    """A transaction returned an unexpected byte count or a transport error.

    Always fatal to the current session.
    """


class MalformedReport(GloriousError, ValueError):
    """A report buffer does not have the fixed length of its structure."""


class MalformedConfig(MalformedReport):
    """The config block does not have the expected length.

    Usually means a firmware mismatch or a desynchronized protocol.
    """


class InvalidArgument(GloriousError, ValueError):
    """Caller supplied an out-of-range edit. Nothing was changed."""


class RGBEffect(IntEnum):
    OFF = 0x00
    GLORIOUS = 0x01     # unicorn mode
    SINGLE = 0x02       # single constant color
    BREATHING7 = 0x03   # breathing with seven colors
    TAIL = 0x04
    BREATHING = 0x05    # RGB breathing
    RAVE = 0x07
    WAVE = 0x09
    BREATHING1 = 0x0A   # single color breathing


EFFECT_NAMES = {
    RGBEffect.OFF: "Off",
    RGBEffect.GLORIOUS: "Glorious mode",
    RGBEffect.SINGLE: "Single color",
    RGBEffect.BREATHING: "RGB breathing",
    RGBEffect.BREATHING7: "Multi-color breathing",
    RGBEffect.BREATHING1: "Single color breathing",
    RGBEffect.TAIL: "Tail effect",
    RGBEffect.RAVE: "Rave",
    RGBEffect.WAVE: "Wave effect",
}

# Command line keywords
EFFECT_KEYWORDS = {
    "off": RGBEffect.OFF,
    "glorious": RGBEffect.GLORIOUS,
    "single": RGBEffect.SINGLE,
    "breathing": RGBEffect.BREATHING,
    "breathing7": RGBEffect.BREATHING7,
    "breathing1": RGBEffect.BREATHING1,
    "tail": RGBEffect.TAIL,
    "rave": RGBEffect.RAVE,
    "wave": RGBEffect.WAVE,
}


def effect_name(tag: int) -> str:
    try:
        return EFFECT_NAMES[RGBEffect(tag)]
    except ValueError:
        return f"Unknown (0x{tag:02X})"


# -- Numeric Codecs --

def raw_to_dpi(raw: int) -> int:
    """Convert a raw sensor value to DPI."""
    return (raw + 1) * DPI_STEP


def dpi_to_raw(dpi: int) -> int:
    """Convert DPI to a raw sensor value.

    Lossy: DPI that is not a multiple of 100 is truncated.
    """
    return dpi // DPI_STEP - 1


@dataclass(frozen=True)
class RGB8:
    r: int
    g: int
    b: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "RGB8":
        return cls(data[0], data[1], data[2])

    def __bytes__(self) -> bytes:
        return bytes([self.r, self.g, self.b])

    def hex(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"


def int_to_rgb(value: int) -> RGB8:
    """Map the low 24 bits of an integer (0xRRGGBB) to a color."""
    return RGB8((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)


def parse_color(text: str) -> RGB8:
    """Parse 'RRGGBB' or '#RRGGBB' (shorter hex strings are zero-extended)."""
    value = text.strip().removeprefix("#")
    if not 1 <= len(value) <= 6:
        raise InvalidArgument(f"Invalid color '{text}', expected RRGGBB")
    try:
        return int_to_rgb(int(value, 16))
    except ValueError:
        raise InvalidArgument(f"Invalid color '{text}', expected RRGGBB") from None


def _read_colors(data: bytes, count: int) -> list[RGB8]:
    return [RGB8.from_bytes(data[i * 3:i * 3 + 3]) for i in range(count)]


def _write_colors(colors: Sequence[RGB8], name: str = "color") -> bytes:
    return bytes(_byte(c, name) for color in colors for c in (color.r, color.g, color.b))


# -- Effect Blocks --
#
# All seven parameter blocks always exist in the config block and are always
# transmitted, the active_effect tag decides which one the firmware uses.

class _EffectBlock:
    TAG: ClassVar[RGBEffect]
    OFFSET: ClassVar[int]
    SIZE: ClassVar[int]
    HAS_SPEED: ClassVar[bool] = True
    HAS_BRIGHTNESS: ClassVar[bool] = False
    MAX_COLORS: ClassVar[int] = 0

    mode: int

    @property
    def speed(self) -> int:
        return self.mode & 0x0F

    @property
    def brightness(self) -> int:
        return self.mode >> 4

    def _set_mode(self, speed: Optional[int], brightness: Optional[int]) -> None:
        if speed is None and brightness is None:
            return
        speed = self.speed if speed is None else speed
        if self.HAS_BRIGHTNESS:
            brightness = self.brightness if brightness is None else brightness
            self.mode = (brightness << 4) | speed
        else:
            self.mode = BRIGHTNESS_CONSTANT | speed

    def _set_colors(self, colors: Sequence[RGB8]) -> None:
        pass

    def configure(self, speed: Optional[int] = None, brightness: Optional[int] = None,
                  colors: Sequence[RGB8] = ()) -> None:
        """Update parameters. Expects values already checked by validate_effect()."""
        if self.HAS_SPEED:
            self._set_mode(speed, brightness)
        if colors:
            self._set_colors(colors)


@dataclass
class GloriousEffect(_EffectBlock):
    """Unicorn mode. Brightness is fixed at 0x40, speed 1-3."""
    TAG = RGBEffect.GLORIOUS
    OFFSET = OFF_GLORIOUS
    SIZE = 2

    mode: int = 0
    direction: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "GloriousEffect":
        return cls(mode=data[0], direction=data[1])

    def to_bytes(self) -> bytes:
        return bytes([_byte(self.mode, "glorious mode"), _byte(self.direction, "glorious direction")])


@dataclass
class SingleColorEffect(_EffectBlock):
    TAG = RGBEffect.SINGLE
    OFFSET = OFF_SINGLE
    SIZE = 3
    HAS_SPEED = False
    MAX_COLORS = 1

    color: RGB8 = RGB8(0, 0, 0)

    @property
    def mode(self) -> int:
        return 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "SingleColorEffect":
        return cls(color=RGB8.from_bytes(data))

    def to_bytes(self) -> bytes:
        return _write_colors([self.color], "single color")

    def _set_colors(self, colors: Sequence[RGB8]) -> None:
        self.color = colors[0]


@dataclass
class BreathingEffect(_EffectBlock):
    """Multi-color breathing. Color count is always 7 on known firmware."""
    TAG = RGBEffect.BREATHING7
    OFFSET = OFF_BREATHING
    SIZE = 2 + 7 * 3
    MAX_COLORS = 7

    mode: int = 0
    color_count: int = 0
    colors: list[RGB8] = field(default_factory=lambda: [RGB8(0, 0, 0)] * 7)

    @classmethod
    def from_bytes(cls, data: bytes) -> "BreathingEffect":
        return cls(mode=data[0], color_count=data[1], colors=_read_colors(data[2:], 7))

    def to_bytes(self) -> bytes:
        return (bytes([_byte(self.mode, "breathing mode"), _byte(self.color_count, "breathing color count")])
                + _write_colors(self.colors, "breathing color"))

    def _set_colors(self, colors: Sequence[RGB8]) -> None:
        for i, color in enumerate(colors):
            self.colors[i] = color


@dataclass
class TailEffect(_EffectBlock):
    TAG = RGBEffect.TAIL
    OFFSET = OFF_TAIL
    SIZE = 1
    HAS_BRIGHTNESS = True

    mode: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "TailEffect":
        return cls(mode=data[0])

    def to_bytes(self) -> bytes:
        return bytes([_byte(self.mode, "tail mode")])


@dataclass
class RaveEffect(_EffectBlock):
    TAG = RGBEffect.RAVE
    OFFSET = OFF_RAVE
    SIZE = 1 + 2 * 3
    HAS_BRIGHTNESS = True
    MAX_COLORS = 2

    mode: int = 0
    colors: list[RGB8] = field(default_factory=lambda: [RGB8(0, 0, 0)] * 2)

    @classmethod
    def from_bytes(cls, data: bytes) -> "RaveEffect":
        return cls(mode=data[0], colors=_read_colors(data[1:], 2))

    def to_bytes(self) -> bytes:
        return bytes([_byte(self.mode, "rave mode")]) + _write_colors(self.colors, "rave color")

    def _set_colors(self, colors: Sequence[RGB8]) -> None:
        for i, color in enumerate(colors):
            self.colors[i] = color


@dataclass
class WaveEffect(_EffectBlock):
    TAG = RGBEffect.WAVE
    OFFSET = OFF_WAVE
    SIZE = 1
    HAS_BRIGHTNESS = True

    mode: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "WaveEffect":
        return cls(mode=data[0])

    def to_bytes(self) -> bytes:
        return bytes([_byte(self.mode, "wave mode")])


@dataclass
class SingleBreathingEffect(_EffectBlock):
    """Single color breathing. Mode byte holds the speed only."""
    TAG = RGBEffect.BREATHING1
    OFFSET = OFF_BREATHING1
    SIZE = 4
    MAX_COLORS = 1

    mode: int = 0
    color: RGB8 = RGB8(0, 0, 0)

    @property
    def brightness(self) -> int:
        return 0

    def _set_mode(self, speed: Optional[int], brightness: Optional[int]) -> None:
        if speed is not None:
            self.mode = speed

    @classmethod
    def from_bytes(cls, data: bytes) -> "SingleBreathingEffect":
        return cls(mode=data[0], color=RGB8.from_bytes(data[1:4]))

    def to_bytes(self) -> bytes:
        return bytes([_byte(self.mode, "breathing1 mode")]) + _write_colors([self.color], "breathing1 color")

    def _set_colors(self, colors: Sequence[RGB8]) -> None:
        self.color = colors[0]


EFFECT_BLOCK_TYPES = {
    cls.TAG: cls
    for cls in (GloriousEffect, SingleColorEffect, BreathingEffect, TailEffect,
                RaveEffect, WaveEffect, SingleBreathingEffect)
}


@dataclass
class EffectBlocks:
    glorious: GloriousEffect
    single: SingleColorEffect
    breathing: BreathingEffect
    tail: TailEffect
    rave: RaveEffect
    wave: WaveEffect
    single_breathing: SingleBreathingEffect

    def blocks(self) -> list[_EffectBlock]:
        return [self.glorious, self.single, self.breathing, self.tail,
                self.rave, self.wave, self.single_breathing]

    def block_for(self, tag: int) -> Optional[_EffectBlock]:
        """Return the parameter block of an effect, None for OFF/RGB breathing."""
        for block in self.blocks():
            if block.TAG == tag:
                return block
        return None

    @classmethod
    def from_bytes(cls, data: bytes) -> "EffectBlocks":
        def read(block_cls):
            return block_cls.from_bytes(data[block_cls.OFFSET:block_cls.OFFSET + block_cls.SIZE])

        return cls(
            glorious=read(GloriousEffect),
            single=read(SingleColorEffect),
            breathing=read(BreathingEffect),
            tail=read(TailEffect),
            rave=read(RaveEffect),
            wave=read(WaveEffect),
            single_breathing=read(SingleBreathingEffect),
        )

    def write_into(self, buf: bytearray) -> None:
        for block in self.blocks():
            data = block.to_bytes()
            if len(data) != block.SIZE:
                raise InvalidArgument(f"{type(block).__name__} must encode to {block.SIZE} bytes, got {len(data)}")
            buf[block.OFFSET:block.OFFSET + block.SIZE] = data


@dataclass(frozen=True)
class EffectSelection:
    """An effect to activate, with the parameters to change on its block."""
    effect: RGBEffect
    speed: Optional[int] = None
    brightness: Optional[int] = None
    colors: tuple[RGB8, ...] = ()


# -- Validation --
#
# Used both by the DeviceConfig setters and by StagingManager, so bad input is
# rejected before a device is even opened.

DpiValue = Union[int, tuple[int, int]]


def _check_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer, got {value!r}")
    return value


def _check_dpi(value) -> int:
    _check_int(value, "DPI")
    if value <= 0:
        raise InvalidArgument(f"DPI must be positive, got {value}")
    # Truncated to a multiple of 100, so 25650 is stored as 25600
    if not 0 <= dpi_to_raw(value) <= 0xFF:
        raise InvalidArgument(f"DPI {value} out of range ({DPI_MIN}-{DPI_MAX})")
    return value


def validate_dpi_values(dpis: Iterable[DpiValue]) -> list[tuple[int, int]]:
    """Check 1-6 DPI values and return them as (x, y) pairs."""
    values = list(dpis)
    if not 1 <= len(values) <= USER_DPI_SLOTS:
        raise InvalidArgument(f"Between 1 and {USER_DPI_SLOTS} DPI values required, got {len(values)}")
    pairs = []
    for value in values:
        if isinstance(value, tuple):
            if len(value) != 2:
                raise InvalidArgument(f"DPI pair must be (x, y), got {value!r}")
            pairs.append((_check_dpi(value[0]), _check_dpi(value[1])))
        else:
            dpi = _check_dpi(value)
            pairs.append((dpi, dpi))
    return pairs


def validate_colors(colors: Iterable[Union[RGB8, int]], limit: int = USER_DPI_SLOTS) -> list[RGB8]:
    result = []
    for color in colors:
        if isinstance(color, RGB8):
            channels = (color.r, color.g, color.b)
            if not all(isinstance(c, int) and 0 <= c <= 0xFF for c in channels):
                raise InvalidArgument(f"Color channels must be 0-255, got {color!r}")
            result.append(color)
        elif isinstance(color, int) and not isinstance(color, bool) and color >= 0:
            result.append(int_to_rgb(color))
        else:
            raise InvalidArgument(f"Invalid color {color!r}")
    if not 1 <= len(result) <= limit:
        raise InvalidArgument(f"Between 1 and {limit} colors required, got {len(result)}")
    return result


def validate_effect(selection: EffectSelection) -> EffectSelection:
    """Check an effect selection against what the effect's block can hold."""
    try:
        effect = RGBEffect(selection.effect)
    except ValueError:
        raise InvalidArgument(f"Unknown RGB effect {selection.effect!r}") from None

    block_cls = EFFECT_BLOCK_TYPES.get(effect)
    has_speed = block_cls is not None and block_cls.HAS_SPEED
    has_brightness = block_cls is not None and block_cls.HAS_BRIGHTNESS
    max_colors = block_cls.MAX_COLORS if block_cls is not None else 0

    if selection.speed is not None:
        _check_int(selection.speed, "Speed")
        if not has_speed:
            raise InvalidArgument(f"{EFFECT_NAMES[effect]} has no speed setting")
        if not SPEED_MIN <= selection.speed <= SPEED_MAX:
            raise InvalidArgument(f"Speed must be {SPEED_MIN}-{SPEED_MAX}, got {selection.speed}")
    if selection.brightness is not None:
        _check_int(selection.brightness, "Brightness")
        if not has_brightness:
            raise InvalidArgument(f"{EFFECT_NAMES[effect]} has no brightness setting")
        if not BRIGHTNESS_MIN <= selection.brightness <= BRIGHTNESS_MAX:
            raise InvalidArgument(
                f"Brightness must be {BRIGHTNESS_MIN}-{BRIGHTNESS_MAX}, got {selection.brightness}")
    colors: tuple[RGB8, ...] = ()
    if selection.colors:
        if max_colors == 0:
            raise InvalidArgument(f"{EFFECT_NAMES[effect]} takes no colors")
        colors = tuple(validate_colors(selection.colors, limit=max_colors))
    return EffectSelection(effect, selection.speed, selection.brightness, colors)


def _byte(value: int, name: str) -> int:
    if not 0 <= value <= 0xFF:
        raise InvalidArgument(f"{name} must fit in a byte, got {value}")
    return value


# -- Config Block --

@dataclass
class DeviceConfig:
    """Decoded config block.

    `raw` is the buffer this config was decoded from. encode_config() starts
    from it, so every byte not represented by a field survives unchanged.
    """
    report_id: int
    command_id: int
    write_marker: int
    xy_independent: bool
    active_slot: int
    slot_enabled_mask: int
    slot_dpi: list[int]
    slot_color: list[RGB8]
    active_effect: int
    effects: EffectBlocks
    lift_off_distance: int
    raw: bytes = field(repr=False, default=bytes(CONFIG_LEN))

    @property
    def effect(self) -> Optional[RGBEffect]:
        try:
            return RGBEffect(self.active_effect)
        except ValueError:
            return None

    def copy(self) -> "DeviceConfig":
        return copy.deepcopy(self)

    def slot_enabled(self, slot: int) -> bool:
        return not self.slot_enabled_mask & (1 << slot)

    def enabled_slots(self) -> list[int]:
        return [slot for slot in range(DPI_SLOT_COUNT) if self.slot_enabled(slot)]

    def slot_raw_values(self, slot: int) -> tuple[int, int]:
        if self.xy_independent:
            return self.slot_dpi[slot * 2], self.slot_dpi[slot * 2 + 1]
        return self.slot_dpi[slot], self.slot_dpi[slot]

    def slot_dpi_values(self, slot: int) -> tuple[int, int]:
        """Return (x, y) DPI of a slot."""
        x, y = self.slot_raw_values(slot)
        return raw_to_dpi(x), raw_to_dpi(y)

    def _warn_inactive_slot(self) -> None:
        if not self.slot_enabled(self.active_slot):
            log.warning("Active DPI slot %d is disabled", self.active_slot)

    def set_dpi_slots(self, dpis: Iterable[DpiValue]) -> None:
        """Enable exactly len(dpis) slots and store their DPI.

        In XY independent mode a plain value is used for both axes, an (x, y)
        pair sets them separately.
        """
        pairs = validate_dpi_values(dpis)
        if not self.xy_independent and any(x != y for x, y in pairs):
            raise InvalidArgument("Separate X/Y DPI requires XY independent mode")

        for slot, (x, y) in enumerate(pairs):
            if self.xy_independent:
                self.slot_dpi[slot * 2] = dpi_to_raw(x)
                self.slot_dpi[slot * 2 + 1] = dpi_to_raw(y)
            else:
                self.slot_dpi[slot] = dpi_to_raw(x)

        mask = 0xFF
        for slot in range(len(pairs)):
            mask &= ~(1 << slot)
        self.slot_enabled_mask = mask
        self._warn_inactive_slot()

    def set_dpi_colors(self, colors: Iterable[Union[RGB8, int]]) -> None:
        """Assign colors to slots 0..N-1, other slots keep theirs."""
        for slot, color in enumerate(validate_colors(colors)):
            self.slot_color[slot] = color

    def set_active_effect(self, effect: RGBEffect, speed: Optional[int] = None,
                          brightness: Optional[int] = None,
                          colors: Sequence[Union[RGB8, int]] = ()) -> None:
        self.apply_effect(EffectSelection(effect, speed, brightness, tuple(colors)))

    def apply_effect(self, selection: EffectSelection) -> None:
        selection = validate_effect(selection)
        block = self.effects.block_for(selection.effect)
        if block is not None:
            block.configure(selection.speed, selection.brightness, selection.colors)
        self.active_effect = int(selection.effect)

    def set_active_slot(self, slot: int) -> None:
        if not 0 <= slot < USER_DPI_SLOTS:
            raise InvalidArgument(f"Active slot must be 0-{USER_DPI_SLOTS - 1}, got {slot}")
        self.active_slot = slot
        self._warn_inactive_slot()

    def set_lift_off_distance(self, mm: int) -> None:
        code = LIFT_OFF_DISTANCES.get(mm)
        if code is None:
            raise InvalidArgument(f"Unsupported lift-off distance: {mm} mm")
        self.lift_off_distance = code

    def mark_for_write(self) -> None:
        self.write_marker = CONFIG_WRITE_SENTINEL


def decode_config(data: bytes) -> DeviceConfig:
    """Decode a 520-byte config block. Purely structural."""
    data = bytes(data)
    if len(data) != CONFIG_LEN:
        raise MalformedConfig(f"Config block must be {CONFIG_LEN} bytes, got {len(data)}")

    return DeviceConfig(
        report_id=data[OFF_REPORT_ID],
        command_id=data[OFF_COMMAND_ID],
        write_marker=data[OFF_CONFIG_WRITE],
        xy_independent=bool(data[OFF_CONFIG1] & XY_INDEPENDENT),
        active_slot=data[OFF_ACTIVE_DPI] >> 4,
        slot_enabled_mask=data[OFF_DPI_ENABLED],
        slot_dpi=list(data[OFF_DPI:OFF_DPI + DPI_VALUE_COUNT]),
        slot_color=_read_colors(data[OFF_DPI_COLOR:], DPI_SLOT_COUNT),
        active_effect=data[OFF_RGB_EFFECT],
        effects=EffectBlocks.from_bytes(data),
        lift_off_distance=data[OFF_LIFT_OFF_DISTANCE],
        raw=data,
    )


def encode_config(config: DeviceConfig) -> bytes:
    """Encode a config block, keeping all uninterpreted bytes from config.raw."""
    buf = bytearray(config.raw)
    if len(buf) != CONFIG_LEN:
        raise MalformedConfig(f"Config block must be {CONFIG_LEN} bytes, got {len(buf)}")
    if len(config.slot_dpi) != DPI_VALUE_COUNT:
        raise InvalidArgument(f"slot_dpi must hold {DPI_VALUE_COUNT} values")
    if len(config.slot_color) != DPI_SLOT_COUNT:
        raise InvalidArgument(f"slot_color must hold {DPI_SLOT_COUNT} colors")
    if not 0 <= config.active_slot <= 0x0F:
        raise InvalidArgument(f"active_slot must fit in 4 bits, got {config.active_slot}")

    buf[OFF_REPORT_ID] = _byte(config.report_id, "report_id")
    buf[OFF_COMMAND_ID] = _byte(config.command_id, "command_id")
    buf[OFF_CONFIG_WRITE] = _byte(config.write_marker, "write_marker")

    config1 = buf[OFF_CONFIG1] & ~XY_INDEPENDENT & 0xFF
    buf[OFF_CONFIG1] = config1 | (XY_INDEPENDENT if config.xy_independent else 0)
    buf[OFF_ACTIVE_DPI] = (config.active_slot << 4) | (buf[OFF_ACTIVE_DPI] & 0x0F)
    buf[OFF_DPI_ENABLED] = _byte(config.slot_enabled_mask, "slot_enabled_mask")

    for i, raw in enumerate(config.slot_dpi):
        buf[OFF_DPI + i] = _byte(raw, f"slot_dpi[{i}]")
    buf[OFF_DPI_COLOR:OFF_DPI_COLOR + DPI_SLOT_COUNT * 3] = _write_colors(config.slot_color, "slot color")

    buf[OFF_RGB_EFFECT] = _byte(config.active_effect, "active_effect")
    config.effects.write_into(buf)
    buf[OFF_LIFT_OFF_DISTANCE] = _byte(config.lift_off_distance, "lift_off_distance")
    return bytes(buf)


# -- Change Notification --

@dataclass(frozen=True)
class ChangeReport:
    """Input report pushed when the DPI slot is changed on the mouse."""
    report_id: int
    flags: int            # always 1
    active_slot: int
    reserved_nibble: int  # always 6
    dpi_x_raw: int
    dpi_y_raw: int
    reserved: bytes       # always zero

    @property
    def dpi_x(self) -> int:
        return raw_to_dpi(self.dpi_x_raw)

    @property
    def dpi_y(self) -> int:
        return raw_to_dpi(self.dpi_y_raw)


def decode_change_report(data: bytes) -> ChangeReport:
    data = bytes(data)
    if len(data) != CHANGE_REPORT_LEN:
        raise MalformedReport(f"Change report must be {CHANGE_REPORT_LEN} bytes, got {len(data)}")
    return ChangeReport(
        report_id=data[0],
        flags=data[1],
        active_slot=data[2] & 0x0F,
        reserved_nibble=data[2] >> 4,
        dpi_x_raw=data[3],
        dpi_y_raw=data[4],
        reserved=data[5:8],
    )


# -- Command Frames --

def build_command(command: int) -> bytes:
    frame = bytearray(COMMAND_LEN)
    frame[0] = RID_COMMAND
    frame[1] = command
    return bytes(frame)


def parse_firmware_version(response: bytes) -> str:
    raw = bytes(response[VERSION_OFFSET:VERSION_OFFSET + VERSION_LEN])
    return raw.decode("ascii", errors="replace")


# -- Transport --

class GloriousDevice:
    """Device wrapper for the config interface.

    Uses HID feature reports for the config block and blocking interrupt reads
    for change notifications. Opened in blocking mode.
    """

    def __init__(self, path: Union[str, bytes]):
        self._path = path
        self._dev: Optional[hid.device] = None

    @property
    def path(self) -> Union[str, bytes]:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._dev is not None

    def open(self) -> None:
        if self._dev is not None:
            return
        dev = hid.device()
        try:
            dev.open_path(self._path.encode() if isinstance(self._path, str) else self._path)
        except OSError as exc:
            raise TransportError(f"Failed to open HID device {self._path!r}: {exc}. Try sudo.") from exc
        self._dev = dev
        log.debug("Opened %r", self._path)

    def close(self) -> None:
        if self._dev is None:
            return
        self._dev.close()
        self._dev = None
        log.debug("Closed %r", self._path)

    def __enter__(self) -> "GloriousDevice":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _require_open(self) -> hid.device:
        if self._dev is None:
            raise RuntimeError("device not open")
        return self._dev

    def error(self) -> str:
        """Last error string reported by hidapi."""
        dev = self._require_open()
        return dev.error() or "Unknown error"

    def send_feature_report(self, data: bytes) -> int:
        """Send a feature report (report ID first). Returns the byte count."""
        dev = self._require_open()
        try:
            res = dev.send_feature_report(bytes(data))
        except OSError as exc:
            raise TransportError(f"send feature report: {exc}") from exc
        if res < 0:
            raise TransportError(f"send feature report: {self.error()}")
        return res

    def get_feature_report(self, report_id: int, size: int) -> bytes:
        """Get a feature report, report ID included in the result."""
        dev = self._require_open()
        try:
            resp = dev.get_feature_report(report_id, size)
        except OSError as exc:
            raise TransportError(f"get feature report 0x{report_id:02X}: {exc}") from exc
        return bytes(resp)

    def read_input(self, size: int, timeout_ms: int = -1) -> bytes:
        """Read an input report. A negative timeout blocks indefinitely."""
        dev = self._require_open()
        try:
            resp = dev.read(size, timeout_ms)
        except OSError as exc:
            raise TransportError(f"read input report: {exc}") from exc
        return bytes(resp)

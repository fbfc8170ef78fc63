#!/usr/bin/env python3
"""
gloriousctl - adjust the settings of Glorious Model O/D mice on Linux.

Usage:
  gloriousctl --info                          # show the current configuration
  gloriousctl --set-dpi 400,800,1600          # up to six DPI slots
  gloriousctl --set-dpi 800/400,1600          # X/Y DPI (XY independent mode)
  gloriousctl --set-dpi-color FF0000,00FF00   # color per DPI slot
  gloriousctl --set-effect wave --effect-speed 3 --effect-brightness 4
  gloriousctl --listen                        # print DPI changes made on the mouse

Requires read/write access to the hidraw node (udev rule or sudo).
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

import device_driver as dd
import glorious_protocol as gp
from staging_manager import StagingManager
from transaction_controller import TransactionController


log = logging.getLogger("gloriousctl")


def hex_dump(desc: Optional[str], data: bytes) -> str:
    """Render bytes as offset, hex and printable ASCII, 16 bytes per line."""
    lines = []
    if desc is not None:
        lines.append(f"{desc}:")
    if not data:
        lines.append("  ZERO LENGTH")
        return "\n".join(lines)

    for start in range(0, len(data), 16):
        chunk = bytes(data[start:start + 16])
        hex_part = "".join(f" {b:02x}" for b in chunk).ljust(16 * 3)
        ascii_part = "".join(chr(b) if 0x20 <= b <= 0x7E else "." for b in chunk)
        lines.append(f"  {start:04x} {hex_part}  {ascii_part}")
    return "\n".join(lines)


def _color(color: gp.RGB8, ansi: bool) -> str:
    if not ansi:
        return color.hex()
    return f"\x1b[38;2;{color.r};{color.g};{color.b}m{color.hex()}\x1b[39m"


def format_config(config: gp.DeviceConfig, ansi: bool = True) -> str:
    lines = [f"XY DPI independent: {'yes' if config.xy_independent else 'no'}"]
    for slot in range(gp.USER_DPI_SLOTS):
        if not config.slot_enabled(slot):
            marker = "[ ]"
        elif slot == config.active_slot and ansi:
            marker = "\x1b[1m[x]\x1b[0m"
        elif slot == config.active_slot:
            marker = "[*]"
        else:
            marker = "[x]"
        x, y = config.slot_dpi_values(slot)
        dpi = f"{x}/{y} DPI" if config.xy_independent else f"{x} DPI"
        lines.append(f"{marker} DPI setting {slot + 1}: {dpi}\t{_color(config.slot_color[slot], ansi)}")

    lines.append("")
    lines.append(f"RGB mode: {gp.effect_name(config.active_effect)}")
    lod = {code: mm for mm, code in gp.LIFT_OFF_DISTANCES.items()}.get(config.lift_off_distance)
    if lod is None:
        lines.append(f"Lift-off distance: unknown (0x{config.lift_off_distance:02X})")
    else:
        lines.append(f"Lift-off distance: {lod} mm")
    return "\n".join(lines)


def _argument_type(func):
    def parse(text):
        try:
            return func(text)
        except gp.InvalidArgument as exc:
            raise argparse.ArgumentTypeError(str(exc)) from None
    parse.__name__ = func.__name__
    return parse


def _parse_dpi(text: str) -> gp.DpiValue:
    try:
        if "/" in text:
            x, y = text.split("/", 1)
            return int(x), int(y)
        return int(text)
    except ValueError:
        raise gp.InvalidArgument(f"Invalid DPI '{text}'") from None


def parse_dpi_list(text: str) -> list[gp.DpiValue]:
    """Parse 'DPI1,DPI2,...' where each entry is DPI or X/Y."""
    return [_parse_dpi(part.strip()) for part in text.split(",") if part.strip()]


def parse_color_list(text: str) -> list[gp.RGB8]:
    return [gp.parse_color(part) for part in text.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    supported = "\n".join(
        f" - {dev.name} (VID {dev.vendor_id:04x} PID {dev.product_id:04x})"
        for dev in dd.SUPPORTED_DEVICES
    )
    parser = argparse.ArgumentParser(
        prog="gloriousctl",
        description="A utility to adjust the settings of Model O/D mice",
        epilog=f"Supported mice:\n{supported}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--info", action="store_true",
                        help="show the current configuration of the mouse")
    parser.add_argument("--listen", action="store_true",
                        help="print DPI changes made with the button on the mouse")
    parser.add_argument("--list-devices", action="store_true",
                        help="list connected supported mice")
    parser.add_argument("--set-dpi", type=_argument_type(parse_dpi_list), metavar="DPI1,...",
                        help="up to six DPIs; X/Y pairs in XY independent mode")
    parser.add_argument("--set-dpi-color", type=_argument_type(parse_color_list),
                        metavar="RRGGBB,...", help="RGB color for each DPI slot")
    parser.add_argument("--set-effect", choices=sorted(gp.EFFECT_KEYWORDS), help="RGB effect")
    parser.add_argument("--effect-speed", type=int, metavar="1-3")
    parser.add_argument("--effect-brightness", type=int, metavar="1-4")
    parser.add_argument("--effect-colors", type=_argument_type(parse_color_list),
                        metavar="RRGGBB,...")
    parser.add_argument("--set-active-slot", type=int, metavar="1-6",
                        help="DPI slot to activate")
    parser.add_argument("--set-lift-off", type=int, choices=sorted(gp.LIFT_OFF_DISTANCES),
                        metavar="MM", help="lift-off distance (2 or 3 mm)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="debug output with hex dumps")
    return parser


def build_staging(args: argparse.Namespace) -> StagingManager:
    """Collect the requested edits. Raises InvalidArgument on bad values."""
    staging = StagingManager()
    if args.set_dpi is not None:
        staging.stage_change("dpi", args.set_dpi)
    if args.set_dpi_color is not None:
        staging.stage_change("dpi_colors", args.set_dpi_color)
    if args.set_effect is not None:
        staging.stage_change("effect", gp.EffectSelection(
            gp.EFFECT_KEYWORDS[args.set_effect],
            speed=args.effect_speed,
            brightness=args.effect_brightness,
            colors=tuple(args.effect_colors or ()),
        ))
    elif args.effect_speed is not None or args.effect_brightness is not None or args.effect_colors:
        raise gp.InvalidArgument("--effect-* options require --set-effect")
    if args.set_active_slot is not None:
        if not 1 <= args.set_active_slot <= gp.USER_DPI_SLOTS:
            raise gp.InvalidArgument(
                f"--set-active-slot must be 1-{gp.USER_DPI_SLOTS}, got {args.set_active_slot}")
        staging.stage_change("active_slot", args.set_active_slot - 1)
    if args.set_lift_off is not None:
        staging.stage_change("lift_off_distance", args.set_lift_off)
    return staging


def run_session(controller: TransactionController, args: argparse.Namespace,
                staging: StagingManager) -> int:
    version = controller.query_version()
    print(f"Firmware version: {version}")
    controller.prime_config()
    config = controller.read_config()
    log.debug("%s", hex_dump("config", config.raw))

    ansi = sys.stdout.isatty()
    if staging.has_changes():
        staging.load_base_state(config)
        controller.apply_edits(staging)
        print(format_config(config, ansi=ansi))
        log.debug("%s", hex_dump("write", gp.encode_config(config)))
        sent = controller.commit()
        log.info("Wrote %d bytes", sent)
    elif args.info:
        print(format_config(config, ansi=ansi))

    if args.listen:
        # There is no cancel message in the protocol, Ctrl-C ends the loop
        reports = controller.listen()
        try:
            for report in reports:
                print(f"Active profile: {report.active_slot}, "
                      f"X DPI: {report.dpi_x}, Y DPI: {report.dpi_y}", flush=True)
        except KeyboardInterrupt:
            log.info("Stopped listening")
        finally:
            reports.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help(sys.stderr)
        return 0
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )

    try:
        staging = build_staging(args)
    except gp.InvalidArgument as exc:
        log.error("%s", exc)
        return 2

    if args.list_devices:
        for info in dd.list_devices():
            print(f"{info.name}: {info.path} ({info.manufacturer} {info.product})")
        return 0

    if not (args.info or args.listen or staging.has_changes()):
        parser.print_help(sys.stderr)
        return 0

    info = dd.detect_device()
    if info is None:
        log.error("No supported device found.")
        return 1
    log.info("Opening device %s", info.path)

    try:
        with TransactionController(dd.create_device(info)) as controller:
            return run_session(controller, args, staging)
    except gp.GloriousError as exc:
        log.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())

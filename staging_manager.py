from __future__ import annotations

import glorious_protocol as gp


# Edits are applied in this order regardless of staging order, so a new
# active slot is checked against the new DPI slot mask.
STAGE_KEYS = ("dpi", "dpi_colors", "effect", "active_slot", "lift_off_distance")


def _validate(key: str, value):
    if key == "dpi":
        return gp.validate_dpi_values(value)
    if key == "dpi_colors":
        return gp.validate_colors(value)
    if key == "effect":
        if not isinstance(value, gp.EffectSelection):
            value = gp.EffectSelection(value)
        return gp.validate_effect(value)
    if key == "active_slot":
        if not 0 <= value < gp.USER_DPI_SLOTS:
            raise gp.InvalidArgument(f"Active slot must be 0-{gp.USER_DPI_SLOTS - 1}, got {value}")
        return value
    if key == "lift_off_distance":
        if value not in gp.LIFT_OFF_DISTANCES:
            raise gp.InvalidArgument(f"Unsupported lift-off distance: {value} mm")
        return value
    raise KeyError(key)


def _apply(config: gp.DeviceConfig, key: str, value) -> None:
    if key == "dpi":
        config.set_dpi_slots(value)
    elif key == "dpi_colors":
        config.set_dpi_colors(value)
    elif key == "effect":
        config.apply_effect(value)
    elif key == "active_slot":
        config.set_active_slot(value)
    elif key == "lift_off_distance":
        config.set_lift_off_distance(value)


class StagingManager:
    """
    Manages the staging of config edits.
    Separates the config read from the device from the edits requested by
    the caller. Edits are validated when staged, so bad input never reaches
    the device.
    """

    def __init__(self):
        self.base_config: gp.DeviceConfig | None = None
        self.staged_state = {}

    def _check_against_base(self, key: str, value) -> None:
        if self.base_config is None or key != "dpi":
            return
        if not self.base_config.xy_independent and any(x != y for x, y in value):
            raise gp.InvalidArgument("Separate X/Y DPI requires XY independent mode")

    def load_base_state(self, config: gp.DeviceConfig):
        """
        Load the authoritative config read from the device.
        Edits already staged are kept and re-checked against it; raises
        InvalidArgument (and loads nothing) if one does not fit.
        """
        previous = self.base_config
        self.base_config = config.copy()
        try:
            for key, value in self.staged_state.items():
                self._check_against_base(key, value)
        except gp.InvalidArgument:
            self.base_config = previous
            raise

    def stage_change(self, key: str, value):
        """
        Stage an edit. Raises InvalidArgument (and stages nothing) on bad input.
        """
        if key not in STAGE_KEYS:
            raise KeyError(f"Unknown config edit '{key}'")
        value = _validate(key, value)
        self._check_against_base(key, value)
        self.staged_state[key] = value

    def apply_to(self, config: gp.DeviceConfig) -> None:
        """Apply staged edits to a config in place."""
        for key in STAGE_KEYS:
            if key in self.staged_state:
                _apply(config, key, self.staged_state[key])

    def get_staged_changes(self) -> dict:
        """Return dictionary of only the staged items."""
        return self.staged_state

    def has_changes(self) -> bool:
        return len(self.staged_state) > 0

#!/usr/bin/env python3
"""
Muon identification.

An event is a muon candidate when it passes the LED (time) cut and the
energy cut. Candidates are then typed by which planes of the veto array
saw a hit above software threshold.
"""
import numpy as np

import veto_config as config
from veto_event import Plane, panel_map

SIDE_PAIRS = (
    (Plane.INNER_NORTH, Plane.OUTER_NORTH),
    (Plane.INNER_SOUTH, Plane.OUTER_SOUTH),
    (Plane.INNER_WEST, Plane.OUTER_WEST),
    (Plane.INNER_EAST, Plane.OUTER_EAST),
)


def multiplicity_threshold(highest_multiplicity, margin=None):
    """Multiplicity at or above which an event is treated as an LED flash."""
    if margin is None:
        margin = config.LED_MULTIP_MARGIN
    return max(highest_multiplicity - margin, 0)


def coincidence_type(plane_true):
    """
    Coincidence type code for a plane hit pattern.

    Returns (code, conditions) where conditions are the vertical,
    side+bottom and top+sides tests. The code is 1, 2 or 3 when exactly one
    of them holds, 4 (compound) when two or more hold, 0 otherwise.
    """
    def hit(plane):
        return bool(plane_true[plane])

    bottoms = hit(Plane.LOWER_BOTTOM) and hit(Plane.UPPER_BOTTOM)
    tops = hit(Plane.INNER_TOP) and hit(Plane.OUTER_TOP)
    sides = any(hit(inner) and hit(outer) for inner, outer in SIDE_PAIRS)

    conditions = (bottoms and tops, bottoms and sides, tops and sides)
    n_true = sum(conditions)
    if n_true >= 2:
        code = 4
    elif n_true == 1:
        code = conditions.index(True) + 1
    else:
        code = 0
    return code, conditions


class MuonResult:
    """Per-event muon finder output."""

    def __init__(self):
        self.time_cut = False
        self.energy_cut = False
        self.is_led = False
        self.first_led = False
        self.coin_type = -1
        self.coin_flags = np.zeros(config.N_CHANNELS, dtype=bool)
        self.plane_hits = np.zeros(config.N_PLANES, dtype=np.int64)
        self.plane_true = np.zeros(config.N_PLANES, dtype=bool)
        self.plane_hit_count = 0
        self.x_delta_t = 0.0
        self.x_led_delta_t = 0.0

    @property
    def is_muon(self):
        return self.time_cut and self.energy_cut

    @property
    def type_name(self):
        return config.COIN_TYPE_NAMES[self.coin_type]


class MuonFinder:
    """Applies the LED, energy and hit-pattern cuts to good events of one run."""

    def __init__(self, run, multip_threshold, led_off):
        self.multip_threshold = multip_threshold
        self.led_off = led_off
        self.plane_of = panel_map(run)
        self.prev_led_time = 0.0
        self.prev_simple_led_time = 0.0
        self.found_first_led = False

    def time_cut(self, event):
        return self.led_off or event.multiplicity < self.multip_threshold

    @staticmethod
    def energy_cut(event):
        return np.count_nonzero(event.qdc > config.ENERGY_THRESHOLD) >= config.ENERGY_MIN_PANELS

    def plane_pattern(self, event):
        """Hits per plane from channels above software threshold."""
        plane_hits = np.zeros(config.N_PLANES, dtype=np.int64)
        for channel in np.flatnonzero(event.hits()):
            plane = self.plane_of.get(int(channel))
            if plane is not None:
                plane_hits[plane] += 1
        return plane_hits

    def classify(self, event, x_time):
        result = MuonResult()
        result.time_cut = self.time_cut(event)
        result.energy_cut = self.energy_cut(event)
        result.is_led = not self.led_off and event.multiplicity >= self.multip_threshold
        if result.is_led and not self.found_first_led:
            result.first_led = True
            self.found_first_led = True

        result.x_delta_t = x_time - self.prev_led_time
        result.x_led_delta_t = x_time - self.prev_simple_led_time

        result.plane_hits = self.plane_pattern(event)
        result.plane_true = result.plane_hits > 0
        result.plane_hit_count = int(np.count_nonzero(result.plane_true))

        if result.is_muon:
            result.coin_type, conditions = coincidence_type(result.plane_true)
            result.coin_flags[0] = True
            result.coin_flags[1:4] = conditions

        if result.is_led:
            self.prev_led_time = x_time
        if event.multiplicity > self.multip_threshold:
            self.prev_simple_led_time = x_time
        return result

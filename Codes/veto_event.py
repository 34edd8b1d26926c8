#!/usr/bin/env python3
"""
Veto event data model.

EventRecord is the normalized view of one raw veto readout. It is rebuilt
from the raw source fields for every entry of every pass, so nothing here
holds state across events. ThresholdTable carries the 32 per-channel
software thresholds, and the plane map ties channels to detector planes.
"""
from enum import IntEnum

import numpy as np

import veto_config as config


class Plane(IntEnum):
    """Logical planes of the veto array."""
    LOWER_BOTTOM = 0
    UPPER_BOTTOM = 1
    INNER_TOP = 2
    OUTER_TOP = 3
    INNER_NORTH = 4
    OUTER_NORTH = 5
    INNER_SOUTH = 6
    OUTER_SOUTH = 7
    INNER_WEST = 8
    OUTER_WEST = 9
    INNER_EAST = 10
    OUTER_EAST = 11


_FULL_PANEL_MAP = {
    0: Plane.LOWER_BOTTOM, 1: Plane.LOWER_BOTTOM, 2: Plane.LOWER_BOTTOM,
    3: Plane.LOWER_BOTTOM, 4: Plane.LOWER_BOTTOM, 5: Plane.LOWER_BOTTOM,
    6: Plane.UPPER_BOTTOM, 7: Plane.UPPER_BOTTOM, 8: Plane.UPPER_BOTTOM,
    9: Plane.UPPER_BOTTOM, 10: Plane.UPPER_BOTTOM, 11: Plane.UPPER_BOTTOM,
    12: Plane.INNER_WEST, 13: Plane.INNER_WEST,
    14: Plane.OUTER_WEST, 22: Plane.OUTER_WEST,
    15: Plane.OUTER_NORTH, 16: Plane.OUTER_NORTH,
    19: Plane.INNER_NORTH, 23: Plane.INNER_NORTH,
    17: Plane.OUTER_TOP, 18: Plane.OUTER_TOP,
    20: Plane.INNER_TOP, 21: Plane.INNER_TOP,
    24: Plane.INNER_SOUTH, 26: Plane.INNER_SOUTH,
    25: Plane.OUTER_SOUTH, 27: Plane.OUTER_SOUTH,
    28: Plane.INNER_EAST, 30: Plane.INNER_EAST,
    29: Plane.OUTER_EAST, 31: Plane.OUTER_EAST,
}

# channel -> plane, per run configuration epoch
PANEL_MAPS = {
    'early': _FULL_PANEL_MAP,
    'late': {ch: plane for ch, plane in _FULL_PANEL_MAP.items()
             if ch <= config.LATE_CONFIG_MAX_CHANNEL},
}


def run_epoch(run):
    """Name of the hardware configuration epoch a run belongs to."""
    return 'late' if run > config.LATE_CONFIG_RUN else 'early'


def panel_map(run):
    return PANEL_MAPS[run_epoch(run)]


def card_numbers(run):
    """Return the (QDC 1, QDC 2) card slots used in this run."""
    return config.CARD_SLOTS[run_epoch(run)]


def sbc_usable(run, time_sbc):
    """True when the SBC reading can stand in for the scaler clock."""
    return run > config.SBC_CUTOFF_RUN and time_sbc < config.SBC_SENTINEL


class ThresholdTable:
    """Immutable per-channel QDC software thresholds."""

    def __init__(self, values):
        values = np.array(values, dtype=np.int64)
        if values.shape != (config.N_CHANNELS,):
            raise ValueError(f"Threshold table needs {config.N_CHANNELS} entries, got shape {values.shape}")
        values.setflags(write=False)
        self._values = values

    @classmethod
    def permissive(cls):
        return cls(np.full(config.N_CHANNELS, config.PERMISSIVE_THRESHOLD))

    @classmethod
    def from_pairs(cls, pairs):
        """Build from (channel, threshold) pairs covering every channel."""
        values = np.full(config.N_CHANNELS, -1, dtype=np.int64)
        for channel, threshold in pairs:
            channel = int(channel)
            if not 0 <= channel < config.N_CHANNELS:
                raise ValueError(f"Channel {channel} out of range")
            values[channel] = int(threshold)
        missing = np.where(values < 0)[0]
        if missing.size > 0:
            raise ValueError(f"No threshold given for channels {missing.tolist()}")
        return cls(values)

    def to_pairs(self):
        return [(ch, int(th)) for ch, th in enumerate(self._values)]

    @property
    def values(self):
        return self._values

    def __getitem__(self, channel):
        return int(self._values[channel])

    def __len__(self):
        return len(self._values)

    def __eq__(self, other):
        return isinstance(other, ThresholdTable) and np.array_equal(self._values, other._values)

    def __repr__(self):
        return f"ThresholdTable({self._values.tolist()})"


class EventRecord:
    """Normalized view of one veto event."""

    NO_ENTRY = -1

    def __init__(self, entry, run, qdc, scaler_count, qdc1_count, qdc2_count,
                 scaler_index, qdc1_index, qdc2_index, scaler_ticks, time_sbc,
                 flags=None, thresholds=None):
        self.entry = int(entry)
        self.run = int(run)
        self.qdc = np.asarray(qdc, dtype=np.int64)
        self.scaler_count = int(scaler_count)
        self.qdc1_count = int(qdc1_count)
        self.qdc2_count = int(qdc2_count)
        self.scaler_index = int(scaler_index)
        self.qdc1_index = int(qdc1_index)
        self.qdc2_index = int(qdc2_index)
        self.scaler_ticks = int(scaler_ticks)
        self.bad_scaler = self.scaler_ticks == config.BAD_SCALER_TICKS
        self.time_scaler = self.scaler_ticks / config.SCALER_CLOCK_HZ
        self.time_sbc = float(time_sbc)
        if flags is None:
            flags = np.zeros(config.N_STRUCTURAL_FLAGS, dtype=bool)
        self.flags = np.asarray(flags, dtype=bool)
        self.thresholds = thresholds
        if thresholds is None:
            self.multiplicity = 0
        else:
            self.multiplicity = int(np.count_nonzero(self.qdc > thresholds.values))

    @classmethod
    def blank(cls):
        """The 'no event' record used before a previous/first event exists."""
        return cls(cls.NO_ENTRY, 0, np.zeros(config.N_CHANNELS), 0, 0, 0, 0, 0, 0, 0, 0.0)

    @property
    def is_blank(self):
        return self.entry == self.NO_ENTRY

    @property
    def sbc_valid(self):
        return sbc_usable(self.run, self.time_sbc)

    def flag(self, slot):
        return bool(self.flags[slot])

    def hits(self):
        """Boolean mask of channels above their software threshold."""
        if self.thresholds is None:
            return np.zeros(config.N_CHANNELS, dtype=bool)
        return self.qdc > self.thresholds.values

    @property
    def total_qdc(self):
        return int(self.qdc.sum())

    def __repr__(self):
        return (f"EventRecord(entry={self.entry}, run={self.run}, multiplicity={self.multiplicity}, "
                f"time_scaler={self.time_scaler}, time_sbc={self.time_sbc})")


class EventNormalizer:
    """Turns raw source fields into EventRecords and fills the structural flags."""

    @staticmethod
    def structural_flags(entry, raw, run):
        """Flags 0-17 derivable from the raw fields, OR-ed with any flags the source supplies."""
        flags = np.zeros(config.N_STRUCTURAL_FLAGS, dtype=bool)
        supplied = raw.get('errorFlags')
        if supplied is not None:
            supplied = np.asarray(supplied, dtype=bool)[:config.N_STRUCTURAL_FLAGS]
            flags[:supplied.size] |= supplied

        n_channels = raw.get('nChannels')
        if n_channels is not None:
            flags[1] |= n_channels < config.N_CHANNELS
            flags[2] |= n_channels > config.N_CHANNELS

        flags[4] |= int(raw['scalerTicks']) == config.BAD_SCALER_TICKS

        scaler_index = int(raw['scalerIndex'])
        qdc_offsets = (int(raw['qdc1Index']) - scaler_index, int(raw['qdc2Index']) - scaler_index)
        flags[5] |= any(off not in config.QDC_INDEX_OFFSETS for off in qdc_offsets)
        flags[13] |= abs(qdc_offsets[0]) > config.INDEX_SKEW_TOLERANCE
        flags[14] |= abs(qdc_offsets[1]) > config.INDEX_SKEW_TOLERANCE
        flags[15] |= any(off < 0 for off in qdc_offsets)
        flags[16] |= any(off == 0 for off in qdc_offsets)

        event_run = raw.get('run')
        if event_run is not None:
            flags[8] |= int(event_run) != run

        sec = int(raw['scalerEventCount'])
        qec1 = int(raw['qdc1EventCount'])
        qec2 = int(raw['qdc2EventCount'])
        flags[10] |= sec != entry
        flags[11] |= sec != qec1
        flags[12] |= qec1 != qec2
        return flags

    @staticmethod
    def normalize(entry, raw, thresholds, run):
        """Build the EventRecord for one raw entry."""
        return EventRecord(
            entry=entry,
            run=run,
            qdc=raw['qdc'],
            scaler_count=raw['scalerEventCount'],
            qdc1_count=raw['qdc1EventCount'],
            qdc2_count=raw['qdc2EventCount'],
            scaler_index=raw['scalerIndex'],
            qdc1_index=raw['qdc1Index'],
            qdc2_index=raw['qdc2Index'],
            scaler_ticks=raw['scalerTicks'],
            time_sbc=raw['timeSBC'],
            flags=EventNormalizer.structural_flags(entry, raw, run),
            thresholds=thresholds,
        )

#!/usr/bin/env python3
"""
Scaler / SBC time reconciliation.

The scaler clock is the primary event clock. When its register reads the
all-ones sentinel the offset-corrected SBC clock takes over, and when that
is not usable either the time is interpolated from neighbouring entries
with a good scaler. Once a scaler/SBC desynch (error 18) shows up, the
synchronizer forces scaler times onto the SBC clock until the two agree
again.
"""
import veto_config as config


class TimeInterpolationError(ValueError):
    """Raised when an entry's time cannot be interpolated from the history."""


class TimeHistory:
    """Parallel per-entry records of event time, entry number and bad-scaler flag."""

    def __init__(self, times=None, entries=None, bad_scaler=None):
        self.times = list(times) if times is not None else []
        self.entries = list(entries) if entries is not None else []
        self.bad_scaler = list(bad_scaler) if bad_scaler is not None else []

    def append(self, entry, time, bad_scaler):
        self.entries.append(entry)
        self.times.append(time)
        self.bad_scaler.append(bool(bad_scaler))

    def update(self, entry, time):
        """Replace an entry's time with a better estimate."""
        if 0 <= entry < len(self.times):
            self.times[entry] = time

    def __len__(self):
        return len(self.times)

    def interpolate(self, entry):
        """
        Best time estimate for an entry.

        Entries with a good scaler return their own time. Otherwise the mean
        of the nearest good-scaler times at or before and at or after the
        entry is returned; if only one side has a good scaler its time is used.
        """
        n = len(self.times)
        if n != len(self.entries) or n != len(self.bad_scaler):
            raise TimeInterpolationError(
                f"History vectors are different sizes: times {n}, entries {len(self.entries)}, "
                f"bad scaler {len(self.bad_scaler)}")
        if not 0 <= entry < n:
            raise TimeInterpolationError(f"Entry {entry} is outside the history of {n} entries")

        if not self.bad_scaler[entry]:
            return self.times[entry]

        upper = next((self.times[i] for i in range(entry, n) if not self.bad_scaler[i]), None)
        lower = next((self.times[j] for j in range(entry, -1, -1) if not self.bad_scaler[j]), None)
        if upper is None and lower is None:
            raise TimeInterpolationError(f"No entry with a good scaler around entry {entry}")
        if upper is None:
            return lower
        if lower is None:
            return upper
        return (upper + lower) / 2.0


class SyncedTime:
    """Timestamp of one event plus how it was obtained."""

    __slots__ = ('time', 'time_sbc', 'approximate', 'source')

    def __init__(self, time, time_sbc, approximate, source):
        self.time = time
        self.time_sbc = time_sbc
        self.approximate = approximate
        self.source = source

    def __repr__(self):
        return (f"SyncedTime(time={self.time}, time_sbc={self.time_sbc}, "
                f"approximate={self.approximate}, source={self.source!r})")


class TimeSynchronizer:
    """Produces corrected timestamps for one pass over a run."""

    def __init__(self, sbc_offset, history):
        self.sbc_offset = sbc_offset
        self.history = history
        self.forced_sync = False
        self.sync_delta = 0.0   # last observed scaler - SBC delta

    @staticmethod
    def sbc_offset_from(first_good):
        return first_good.time_sbc - first_good.time_scaler

    def corrected_sbc(self, event):
        """Offset-corrected SBC time, or None when the SBC reading is not usable."""
        if not event.sbc_valid:
            return None
        return event.time_sbc - self.sbc_offset

    def event_time(self, event):
        """
        Best uncorrected time: scaler, then SBC, then interpolation.

        Raises TimeInterpolationError when interpolation is needed and fails.
        """
        time_sbc = self.corrected_sbc(event)
        if not event.bad_scaler:
            return SyncedTime(event.time_scaler, time_sbc, False, 'scaler')
        if time_sbc is not None:
            return SyncedTime(time_sbc, time_sbc, False, 'sbc')
        return SyncedTime(self.history.interpolate(event.entry), None, True, 'interpolated')

    def synchronize(self, event, desync):
        """
        Event time including the desynch correction.

        desync is error 18 for this event. It latches forced sync mode, which
        pulls scaler times onto the SBC clock by the last observed
        scaler - SBC delta until that delta drops below RESYNC_TOLERANCE_S.
        """
        synced = self.event_time(event)
        if synced.source == 'scaler' and synced.time_sbc is not None:
            self.sync_delta = event.time_scaler - synced.time_sbc
        if desync:
            self.forced_sync = True
        if self.forced_sync and abs(self.sync_delta) < config.RESYNC_TOLERANCE_S:
            self.forced_sync = False
        if self.forced_sync and synced.source == 'scaler':
            synced.time = synced.time - self.sync_delta
            synced.approximate = True
        return synced

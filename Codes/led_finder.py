#!/usr/bin/env python3
"""
LED period measurement.

The calibration LED flashes all panels periodically. Its period is measured
from the time between consecutive high-multiplicity events,
histogrammed at 1 ms/bin. Short runs with only a few flashes fall back to a
simple count over the run duration.
"""
import numpy as np

import veto_config as config


class LEDResult:
    """Outcome of the LED period measurement for one run."""

    def __init__(self, frequency, period, rms, count, bad_frequency, short_run=False):
        self.frequency = frequency
        self.period = period
        self.rms = rms
        self.count = count
        self.bad_frequency = bad_frequency
        self.short_run = short_run

    @property
    def led_off(self):
        """True when the LED rate is unusable, which disables the LED time cut."""
        return (self.bad_frequency or self.period <= 0
                or self.period > config.LED_MAX_PERIOD_S)

    def __repr__(self):
        return (f"LEDResult(frequency={self.frequency}, period={self.period}, rms={self.rms}, "
                f"count={self.count}, bad_frequency={self.bad_frequency}, led_off={self.led_off})")


class LEDFinder:
    """Accumulates LED candidate delta-t values during the first pass."""

    def __init__(self, simple_threshold=None):
        self.simple_threshold = (config.LED_SIMPLE_THRESHOLD if simple_threshold is None
                                 else simple_threshold)
        self.delta_t = []
        self.count = 0
        self._last_time = None

    def add_event(self, event):
        """Record a good event if its multiplicity makes it an LED candidate."""
        if event.multiplicity <= self.simple_threshold:
            return False
        self.count += 1
        if event.bad_scaler:
            self._last_time = None
            return True
        if self._last_time is not None:
            self.delta_t.append(event.time_scaler - self._last_time)
        self._last_time = event.time_scaler
        return True

    def histogram(self):
        hist = config.LED_DELTA_T_HIST
        counts, edges = np.histogram(np.asarray(self.delta_t, dtype=float),
                                     bins=hist['bins'], range=hist['range'])
        return counts, edges

    @staticmethod
    def windowed_stats(counts, edges, window_s=None):
        """Mean and RMS of the histogram restricted to +/- window_s around its maximum bin."""
        if window_s is None:
            window_s = config.LED_WINDOW_S
        width = edges[1] - edges[0]
        half = int(round(window_s / width))
        peak = int(np.argmax(counts))
        lo = max(peak - half, 0)
        hi = min(peak + half + 1, len(counts))
        window = counts[lo:hi].astype(float)
        centers = 0.5 * (edges[lo:hi] + edges[lo + 1:hi + 1])
        mean = np.average(centers, weights=window)
        rms = np.sqrt(np.average((centers - mean) ** 2, weights=window))
        return float(mean), float(rms)

    def measure(self, duration, n_entries):
        """
        Derive the LED frequency, period and RMS.

        duration is the run duration in seconds and n_entries the number of
        entries in the run; both drive the short-run fallback.
        """
        counts, edges = self.histogram()
        bad = False
        if counts.sum() > 0:
            mean, rms = self.windowed_stats(counts, edges)
            frequency = 1.0 / mean
            period = mean
        else:
            frequency = rms = period = config.LED_SENTINEL
            bad = True

        short_run = period > config.LED_SHORT_RUN_PERIOD_S or n_entries < config.LED_MIN_RUN_EVENTS
        if short_run:
            if self.count >= config.LED_MIN_SIMPLE_COUNT and duration > 0:
                period = duration / self.count
                frequency = self.count / duration
            else:
                period = config.LED_SENTINEL
                bad = True

        return LEDResult(frequency, period, rms, self.count, bad, short_run)

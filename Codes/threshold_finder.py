#!/usr/bin/env python3
"""
Software threshold finder.

Finds the QDC pedestal of every veto channel and sets the software
threshold a fixed margin above it. The first scan accepts every channel as
hit (threshold 1); an optional second scan with the found thresholds fills
the hit multiplicity histogram.
"""
import numpy as np

import veto_config as config
from veto_event import ThresholdTable


class CalibrationResult:
    """Thresholds and the histograms they were derived from."""

    def __init__(self, thresholds, pedestals, low_hists, full_hists, failed_channels,
                 skipped_events, n_entries, run):
        self.thresholds = thresholds
        self.pedestals = pedestals
        self.low_hists = low_hists
        self.full_hists = full_hists
        self.failed_channels = failed_channels
        self.skipped_events = skipped_events
        self.n_entries = n_entries
        self.run = run
        self.multiplicity_hist = None
        self.silent_channels = []


class ThresholdFinder:
    """Handles pedestal location and threshold assignment."""

    @staticmethod
    def qdc_histograms(qdc_rows, hist_config):
        """One histogram per channel from an (events, channels) QDC array."""
        edges = np.linspace(*hist_config['range'], hist_config['bins'] + 1)
        counts = np.zeros((config.N_CHANNELS, hist_config['bins']), dtype=np.int64)
        if qdc_rows.size > 0:
            for ch in range(config.N_CHANNELS):
                counts[ch], _ = np.histogram(qdc_rows[:, ch], bins=edges)
        return counts, edges

    @staticmethod
    def find_pedestal(counts, edges):
        """
        Pedestal centre of one channel's low-range QDC histogram.

        The search starts at the first bin with more than PEDESTAL_MIN_COUNT
        entries and looks for the maximum bin within PEDESTAL_WINDOW of it.
        Returns None when no bin is populated enough.
        """
        above = np.flatnonzero(counts > config.PEDESTAL_MIN_COUNT)
        if above.size == 0:
            return None
        onset = int(above[0])
        lo = max(onset + config.PEDESTAL_WINDOW[0], 0)
        hi = min(onset + config.PEDESTAL_WINDOW[1] + 1, len(counts))
        peak = lo + int(np.argmax(counts[lo:hi]))
        return 0.5 * (edges[peak] + edges[peak + 1])

    @staticmethod
    def channel_disabled(channel, run):
        return run > config.LATE_CONFIG_RUN and channel > config.LATE_CONFIG_MAX_CHANNEL

    @classmethod
    def find_panel_threshold(cls, counts, edges, channel, run, margin=None):
        """Return (threshold, pedestal) for one channel; pedestal is None when not found."""
        if margin is None:
            margin = config.THRESHOLD_MARGIN
        if cls.channel_disabled(channel, run):
            return config.THRESHOLD_SENTINEL, None
        pedestal = cls.find_pedestal(counts, edges)
        if pedestal is None:
            return config.THRESHOLD_SENTINEL, None
        return int(pedestal + margin), pedestal

    @classmethod
    def thresholds_from_qdc(cls, qdc_rows, run, margin=None):
        """Derive the threshold table from the QDC values of good events."""
        low_hists, low_edges = cls.qdc_histograms(qdc_rows, config.LOW_QDC_HIST)
        thresholds = np.full(config.N_CHANNELS, config.THRESHOLD_SENTINEL, dtype=np.int64)
        pedestals = np.full(config.N_CHANNELS, np.nan)
        failed = []
        for ch in range(config.N_CHANNELS):
            thresholds[ch], pedestal = cls.find_panel_threshold(low_hists[ch], low_edges, ch, run, margin)
            if pedestal is not None:
                pedestals[ch] = pedestal
            elif not cls.channel_disabled(ch, run):
                failed.append(ch)
        return ThresholdTable(thresholds), pedestals, (low_hists, low_edges), failed

    @staticmethod
    def multiplicity_histogram(multiplicities):
        hist = config.MULTIPLICITY_HIST
        edges = np.linspace(*hist['range'], hist['bins'] + 1)
        counts, _ = np.histogram(np.asarray(multiplicities), bins=edges)
        return counts, edges

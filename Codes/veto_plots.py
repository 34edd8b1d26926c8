#!/usr/bin/env python3
"""
Visual QA plots for veto processing: per-channel QDC spectra, the found
software thresholds, the hit multiplicity and the LED delta-t distribution.
"""
from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

import veto_config as config
from veto_io import FileHandler


class Plotter:
    """Handles all plotting operations."""

    def __init__(self, output_dir: Path, run, logscale=None):
        self.output_dir = Path(output_dir)
        self.run = run
        self.logscale = config.LOGSCALE_QDC if logscale is None else logscale
        FileHandler.ensure_dir(self.output_dir)

    def _channel_grid(self, title):
        fig, axes = plt.subplots(4, 8, figsize=(32, 16), sharex=True)
        fig.suptitle(f'{title} - Run {self.run}', fontsize=16)
        return fig, axes.flatten()

    def _save(self, fig, name):
        img_path = self.output_dir / f'veto-{self.run}-{name}.pdf'
        fig.tight_layout()
        fig.savefig(img_path)
        plt.close(fig)
        print(f"Plot saved to {img_path}")
        return img_path

    def plot_qdc(self, hists):
        """Full-range QDC spectrum of every channel."""
        counts, edges = hists
        fig, axes = self._channel_grid('Full QDC')
        for ch, ax in enumerate(axes):
            ax.step(edges[:-1], counts[ch], where='post', linewidth=1)
            ax.set_title(f'Channel {ch}', fontsize=9)
            if self.logscale and counts[ch].any():
                ax.set_yscale('log')
        return self._save(fig, 'qdc')

    def plot_thresholds(self, hists, thresholds):
        """Low-range QDC spectra with the software threshold marked."""
        counts, edges = hists
        fig, axes = self._channel_grid('QDC Thresholds')
        for ch, ax in enumerate(axes):
            ax.step(edges[:-1], counts[ch], where='post', linewidth=1)
            if thresholds[ch] != config.THRESHOLD_SENTINEL:
                ax.axvline(thresholds[ch], color='red', linewidth=2)
            ax.set_title(f'Channel {ch}  thresh {thresholds[ch]}', fontsize=9)
            ax.set_xlim(*config.LOW_QDC_HIST['range'])
            if self.logscale and counts[ch].any():
                ax.set_yscale('log')
        return self._save(fig, 'qdcThresh')

    def plot_multiplicity(self, hist):
        counts, edges = hist
        fig = plt.figure(figsize=(8, 6))
        centers = 0.5 * (edges[:-1] + edges[1:])
        plt.errorbar(centers, counts, yerr=np.sqrt(counts), fmt='o', markersize=4, capsize=3)
        plt.xlabel('Multiplicity')
        plt.ylabel('Events')
        plt.title(f'Run {self.run} Hit Multiplicity')
        if self.logscale and counts.any():
            plt.yscale('log')
        plt.grid(True)
        return self._save(fig, 'multip')

    def plot_led_delta_t(self, delta_t, led):
        """Delta-t of LED candidates around the measured period."""
        fig = plt.figure(figsize=(8, 6))
        delta_t = np.asarray(delta_t, dtype=float)
        if delta_t.size > 0:
            lo = max(np.min(delta_t), 0.0)
            hi = min(np.max(delta_t), config.LED_DELTA_T_HIST['range'][1])
            if hi <= lo:
                hi = lo + 1.0
            plt.hist(delta_t, bins=200, range=(lo, hi), histtype='step', linewidth=1.5)
            if not led.led_off:
                plt.axvline(led.period, color='red', linestyle='--',
                            label=f'Period = {led.period:.4f} s (rms {led.rms:.4f})')
                plt.legend()
        else:
            plt.text(0.5, 0.5, 'No LED candidates', ha='center', va='center',
                     transform=plt.gca().transAxes)
        plt.xlabel('Δt to previous LED candidate (s)')
        plt.ylabel('Events')
        plt.title(f'Run {self.run} LED Δt (multiplicity > {config.LED_SIMPLE_THRESHOLD})')
        plt.grid(True)
        return self._save(fig, 'ledDeltaT')

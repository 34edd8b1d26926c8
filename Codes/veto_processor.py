#!/usr/bin/env python3
"""
Veto run processing.

The run is scanned several times by one generic driver, scan_events(),
which normalizes every raw entry, runs the event error checks against the
current cursor and hands the event to the active pass:

  calibration   find the QDC pedestals with a permissive threshold table
  multiplicity  re-scan with the found thresholds (optional)
  first         first good event, SBC offset, highest multiplicity, LED rate
  error         error accounting, refined event times, serious error printout
  muon          time correction, muon / LED tagging, output rows

Skipped events never become the cursor's previous event. Each pass returns
the cursor it would hand to the next event.
"""
from collections import namedtuple

import numpy as np

import veto_config as config
from error_check import check_event_errors, describe_serious_errors
from led_finder import LEDFinder
from muon_finder import MuonFinder, multiplicity_threshold
from threshold_finder import CalibrationResult, ThresholdFinder
from time_sync import TimeHistory, TimeInterpolationError, TimeSynchronizer
from veto_event import EventNormalizer, EventRecord, ThresholdTable, card_numbers

ScanCursor = namedtuple('ScanCursor', ['previous', 'previous_good_entry', 'first_good'])

_SERIOUS = np.array(config.SERIOUS_ERRORS)


def start_cursor(first_good=None):
    if first_good is None:
        first_good = EventRecord.blank()
    return ScanCursor(previous=EventRecord.blank(), previous_good_entry=0, first_good=first_good)


def advance(cursor, event):
    """Cursor after a good event."""
    return cursor._replace(previous=event, previous_good_entry=event.entry)


def scan_events(source, thresholds, run, stage, first_good=None):
    """Drive one pass over the source; returns the final cursor."""
    cursor = start_cursor(first_good)
    for entry, raw in enumerate(source):
        event = EventNormalizer.normalize(entry, raw, thresholds, run)
        errors, skip = check_event_errors(event, cursor.previous, cursor.first_good,
                                          cursor.previous_good_entry)
        cursor = stage(event, errors, skip, cursor)
    return cursor


class SilentDiagnostics:
    """Diagnostics sink that discards everything."""

    def info(self, message):
        pass

    def warning(self, message):
        pass

    def event_errors(self, entry, lines):
        pass

    def muon_hit(self, event, result, synced, led_off):
        pass

    def report(self, text):
        pass


class ConsoleDiagnostics(SilentDiagnostics):
    """Prints progress, warnings and error reports to stdout."""

    def info(self, message):
        print(message)

    def warning(self, message):
        print(f"Warning: {message}")

    def event_errors(self, entry, lines):
        print(f"\nSerious errors found in entry {entry}:")
        for line in lines:
            print(line)

    def muon_hit(self, event, result, synced, led_off):
        print(f"Hit: {result.type_name:<12} Entry {event.entry:<4} Time {synced.time:<6.2f}  "
              f"QDC {event.total_qdc:<5}  Mult {event.multiplicity}  "
              f"LEDoff {int(led_off)}  ApxT {int(synced.approximate)}")

    def report(self, text):
        print(text)


class RunContext:
    """Run-level state shared by the processing passes of one run."""

    def __init__(self, run_info, thresholds):
        self.run = run_info.run
        self.start = run_info.start
        self.stop = run_info.stop
        self.n_entries = run_info.n_entries
        self.thresholds = thresholds
        self.duration = float(self.stop - self.start)
        self.corrupted_duration = False
        self.livetime = 0.0
        self.first_good = EventRecord.blank()
        self.first_good_scaler = 0.0
        self.last_good_time = 0.0
        self.sbc_offset = 0.0
        self.highest_multiplicity = 0
        self.multiplicity_threshold = 0
        self.led = None
        self.history = TimeHistory()
        self.channel_hits = np.zeros(config.N_CHANNELS, dtype=np.int64)
        self.event_error_counts = np.zeros(config.N_ERRORS, dtype=np.int64)
        self.run_error_counts = np.zeros(config.N_ERRORS, dtype=np.int64)
        self.failed_channels = []
        self.skipped = {'first': 0, 'error': 0, 'muon': 0}
        self.muon_count = 0

    @property
    def led_off(self):
        return self.led is None or self.led.led_off

    @property
    def error_counts(self):
        return self.event_error_counts + self.run_error_counts

    @property
    def silent_channels(self):
        enabled = self.thresholds.values != config.THRESHOLD_SENTINEL
        return [int(ch) for ch in np.flatnonzero(enabled & (self.channel_hits == 0))]

    @property
    def total_error_count(self):
        counts = self.error_counts
        return int(sum(counts[i] for i in range(1, config.N_ERRORS) if i not in config.IGNORED_IN_TOTAL))

    @property
    def serious_error_count(self):
        counts = self.error_counts
        return int(counts[_SERIOUS].sum() + counts[config.BAD_LED_ERROR])

    def summary(self):
        """Run-level summary as plain Python types."""
        led = self.led
        return {
            'run': self.run,
            'nEntries': self.n_entries,
            'start': self.start,
            'stop': self.stop,
            'duration': float(self.duration),
            'corruptedDuration': bool(self.corrupted_duration),
            'livetime': float(self.livetime),
            'firstGoodEntry': self.first_good.entry,
            'SBCOffset': float(self.sbc_offset),
            'LEDfreq': float(led.frequency) if led else float(config.LED_SENTINEL),
            'LEDperiod': float(led.period) if led else float(config.LED_SENTINEL),
            'LEDrms': float(led.rms) if led else float(config.LED_SENTINEL),
            'LEDcount': int(led.count) if led else 0,
            'badLEDFreq': bool(led.bad_frequency) if led else True,
            'LEDoff': bool(self.led_off),
            'multipThreshold': int(self.multiplicity_threshold),
            'highestMultip': int(self.highest_multiplicity),
            'LEDWindow': config.LED_WINDOW_S,
            'LEDMultipThreshold': config.LED_MULTIP_MARGIN,
            'LEDSimpleThreshold': config.LED_SIMPLE_THRESHOLD,
            'swThresh': [int(v) for v in self.thresholds.values],
            'ErrorCount': [int(v) for v in self.error_counts],
            'SeriousErrorCount': self.serious_error_count,
            'TotalErrorCount': self.total_error_count,
            'failedChannels': list(self.failed_channels),
            'silentChannels': self.silent_channels,
            'skippedEvents': dict(self.skipped),
            'muonCount': self.muon_count,
        }


def error_report(ctx):
    """Human-readable veto error report for a run."""
    counts = ctx.error_counts
    lines = ["=================== Veto Error Report ===================",
             f"Serious errors found :: {ctx.serious_error_count}"]
    if ctx.serious_error_count > 0:
        lines.append(f"Total Errors : {ctx.total_error_count}")
        if ctx.duration != ctx.livetime:
            lines.append(f"Run duration ({ctx.duration} sec) doesn't match live time: {ctx.livetime}")
        n_entries = max(ctx.n_entries, 1)
        for i in range(1, config.N_ERRORS):
            if counts[i] == 0:
                continue
            if i == config.BAD_LED_ERROR and ctx.run_error_counts[i] > 0:
                lines.append(f"  EventError[25]: Bad LED rate: {ctx.led.frequency}  Period: {ctx.led.period}")
                if ctx.led.period > 0.1 and abs(ctx.duration / ctx.led.period) - ctx.led.count > 5:
                    lines.append(f"   Simple LED count: {ctx.led.count}"
                                 f"  Expected: {int(ctx.duration / ctx.led.period)}")
                if ctx.event_error_counts[i] > 0:
                    lines.append(f"  Error[25]: {ctx.event_error_counts[i]} events without a usable clock")
            else:
                lines.append(f"  Error[{i}]: {counts[i]} events ({100 * counts[i] / n_entries:.3f} %)")
        lines.append("For reference, \"serious\" error types are: "
                     + " ".join(str(i) for i in config.SERIOUS_ERRORS))
        lines.append("Please report these to the veto group.")
    return "\n".join(lines)


class CalibrationPass:
    """Collects the QDC values of good events for the pedestal search."""

    def __init__(self):
        self.qdc_rows = []
        self.skipped = 0

    def __call__(self, event, errors, skip, cursor):
        if skip:
            self.skipped += 1
            return cursor
        self.qdc_rows.append(event.qdc)
        return advance(cursor, event)


class MultiplicityPass:
    """Collects hit multiplicities with the final thresholds."""

    def __init__(self):
        self.multiplicities = []
        self.skipped = 0

    def __call__(self, event, errors, skip, cursor):
        if skip:
            self.skipped += 1
            return cursor
        self.multiplicities.append(event.multiplicity)
        return advance(cursor, event)


class FirstPass:
    """Finds the first good event, highest multiplicity and LED candidates."""

    def __init__(self, ctx):
        self.ctx = ctx
        self.led_finder = LEDFinder()
        self.found_first = False
        self.found_first_scaler = False

    def __call__(self, event, errors, skip, cursor):
        ctx = self.ctx
        if not event.bad_scaler:
            x_time = event.time_scaler
        else:
            # provisional, refined by the error pass
            x_time = event.entry / max(ctx.n_entries, 1) * ctx.duration
        ctx.history.append(event.entry, x_time, event.bad_scaler)

        if self.found_first and event.flag(1):
            self.found_first = False
        if not self.found_first_scaler and not event.flag(4):
            self.found_first_scaler = True
            ctx.first_good_scaler = event.time_scaler

        if skip:
            ctx.skipped['first'] += 1
            return cursor

        if (not self.found_first and 0 < event.time_sbc < config.SBC_SENTINEL and event.time_scaler > 0
                and not event.flag(4)):
            cursor = cursor._replace(first_good=event)
            self.found_first = True

        ctx.highest_multiplicity = max(ctx.highest_multiplicity, event.multiplicity)
        ctx.channel_hits += event.hits()
        self.led_finder.add_event(event)
        ctx.last_good_time = x_time
        return advance(cursor, event)


class ErrorPass:
    """Counts errors, refines event times and reports serious errors."""

    def __init__(self, ctx, diagnostics):
        self.ctx = ctx
        self.diagnostics = diagnostics
        self.sync = TimeSynchronizer(ctx.sbc_offset, ctx.history)

    def __call__(self, event, errors, skip, cursor):
        ctx = self.ctx
        try:
            synced = self.sync.event_time(event)
        except TimeInterpolationError as e:
            self.diagnostics.warning(f"Entry {event.entry}: {e}")
            synced = None
            errors[config.TIME_UNAVAILABLE_ERROR] = True
        ctx.event_error_counts += errors
        if synced is not None:
            ctx.history.update(event.entry, synced.time)

        if errors[_SERIOUS].any():
            x_time = synced.time if synced is not None else float('nan')
            time_sbc = synced.time_sbc if synced is not None and synced.time_sbc is not None else 0.0
            self.diagnostics.event_errors(
                event.entry,
                describe_serious_errors(event, cursor.previous, errors, x_time, time_sbc,
                                        self.sync.sync_delta))

        if synced is not None and synced.source == 'scaler' and synced.time_sbc is not None:
            self.sync.sync_delta = event.time_scaler - synced.time_sbc

        if skip:
            ctx.skipped['error'] += 1
            return cursor
        return advance(cursor, event)


class MuonPass:
    """Final pass: corrected times, muon / LED tagging and output rows."""

    def __init__(self, ctx, sink, diagnostics):
        self.ctx = ctx
        self.sink = sink
        self.diagnostics = diagnostics
        self.sync = TimeSynchronizer(ctx.sbc_offset, ctx.history)
        self.muon_finder = MuonFinder(ctx.run, ctx.multiplicity_threshold, ctx.led_off)

    def __call__(self, event, errors, skip, cursor):
        ctx = self.ctx
        try:
            synced = self.sync.synchronize(event, bool(errors[18]))
        except TimeInterpolationError as e:
            self.diagnostics.warning(f"Entry {event.entry}: {e}")
            synced = None
            errors[config.TIME_UNAVAILABLE_ERROR] = True

        bad_event = skip or synced is None
        result = None
        if bad_event:
            ctx.skipped['muon'] += 1
        else:
            result = self.muon_finder.classify(event, synced.time)
            if result.is_muon:
                ctx.muon_count += 1
                self.diagnostics.muon_hit(event, result, synced, ctx.led_off)

        if self.sink is not None:
            self.sink.fill(self.output_row(event, errors, bad_event, synced, result))

        if skip:
            return cursor
        return advance(cursor, event)

    def output_row(self, event, errors, bad_event, synced, result):
        ctx = self.ctx
        approx = synced.approximate if synced is not None else True
        cut_type = np.zeros(config.N_CUT_TYPES, dtype=bool)
        cut_type[0] = ctx.led_off
        cut_type[2] = approx
        cut_type[6] = ctx.led.bad_frequency if ctx.led is not None else True
        if result is not None:
            cut_type[1] = result.energy_cut
            cut_type[3] = result.time_cut
            cut_type[4] = result.is_led
            cut_type[5] = result.first_led
        time_sbc = synced.time_sbc if synced is not None else None
        return {
            'run': ctx.run,
            'entry': event.entry,
            'qdc': event.qdc.copy(),
            'multiplicity': event.multiplicity,
            'scalerEventCount': event.scaler_count,
            'qdc1EventCount': event.qdc1_count,
            'qdc2EventCount': event.qdc2_count,
            'scalerIndex': event.scaler_index,
            'qdc1Index': event.qdc1_index,
            'qdc2Index': event.qdc2_index,
            'timeScaler': event.time_scaler,
            'timeSBCRaw': event.time_sbc,
            'badScaler': event.bad_scaler,
            'xTime': synced.time if synced is not None else float('nan'),
            'timeSBC': time_sbc if time_sbc is not None else 0.0,
            'x_deltaT': result.x_delta_t if result is not None else 0.0,
            'x_LEDDeltaT': result.x_led_delta_t if result is not None else 0.0,
            'badEvent': bad_event,
            'EventErrors': errors.copy(),
            'CoinType': result.coin_flags.copy() if result is not None else np.zeros(config.N_CHANNELS, dtype=bool),
            'CutType': cut_type,
            'PlaneHits': result.plane_hits.copy() if result is not None else np.zeros(config.N_PLANES, dtype=np.int64),
            'PlaneTrue': result.plane_true.copy() if result is not None else np.zeros(config.N_PLANES, dtype=bool),
            'PlaneHitCount': result.plane_hit_count if result is not None else 0,
            'muonType': result.coin_type if result is not None else -1,
        }


def find_thresholds(source, diagnostics=None, rescan=True, margin=None):
    """
    Derive the software thresholds of a run.

    Scans the run with every channel accepted as hit, locates each channel's
    pedestal and sets the threshold a margin above it. With rescan the run
    is scanned again to fill the multiplicity histogram.
    """
    diagnostics = diagnostics or SilentDiagnostics()
    info = source.run_info()
    card1, card2 = card_numbers(info.run)
    diagnostics.info(f"QDC 1 in slot {card1}, QDC 2 in slot {card2}")

    calibration = CalibrationPass()
    scan_events(source, ThresholdTable.permissive(), info.run, calibration)
    if calibration.skipped > 0:
        diagnostics.info(f"ThresholdFinder skipped {calibration.skipped} of {info.n_entries} entries.")

    qdc_rows = np.array(calibration.qdc_rows, dtype=np.int64).reshape(-1, config.N_CHANNELS)
    table, pedestals, low_hists, failed = ThresholdFinder.thresholds_from_qdc(qdc_rows, info.run, margin)
    full_hists = ThresholdFinder.qdc_histograms(qdc_rows, config.FULL_QDC_HIST)
    for ch in failed:
        diagnostics.warning(f"QDC threshold not found for channel {ch}, "
                            f"using {config.THRESHOLD_SENTINEL}")

    result = CalibrationResult(table, pedestals, low_hists, full_hists, failed,
                               calibration.skipped, info.n_entries, info.run)
    if rescan:
        multiplicity = MultiplicityPass()
        scan_events(source, table, info.run, multiplicity)
        result.multiplicity_hist = ThresholdFinder.multiplicity_histogram(multiplicity.multiplicities)
    return result


class VetoProcessor:
    """Main class for processing the veto data of one run."""

    def __init__(self, source, thresholds, diagnostics=None, calibration=None):
        self.source = source
        self.thresholds = thresholds
        self.diagnostics = diagnostics or SilentDiagnostics()
        self.calibration = calibration
        self.led_finder = None
        self.led_delta_t = None

    def process(self, sink=None, error_check_only=False):
        """Run the first, error and (unless error_check_only) muon passes; returns the RunContext."""
        info = self.source.run_info()
        ctx = RunContext(info, self.thresholds)
        if self.calibration is not None:
            ctx.failed_channels = list(self.calibration.failed_channels)

        self.first_pass(ctx)
        self.run_level_checks(ctx)
        self.error_pass(ctx)
        self.diagnostics.report(error_report(ctx))

        if not error_check_only:
            self.muon_pass(ctx, sink)
        if sink is not None:
            sink.set_summary(ctx.summary())
        return ctx

    def first_pass(self, ctx):
        stage = FirstPass(ctx)
        cursor = scan_events(self.source, self.thresholds, ctx.run, stage)
        ctx.first_good = cursor.first_good
        self.led_finder = stage.led_finder
        self.led_delta_t = list(stage.led_finder.delta_t)
        return ctx

    def run_level_checks(self, ctx):
        """Run-level quantities from the first pass: SBC offset, duration, livetime, LED rate."""
        diag = self.diagnostics
        ctx.sbc_offset = TimeSynchronizer.sbc_offset_from(ctx.first_good)

        if ctx.duration <= 0:
            diag.info("Corrupted duration.  Did we get a stop packet?")
            diag.info(f"   Raw duration is {ctx.duration}  start: {ctx.start} stop: {ctx.stop}")
            ctx.duration = ctx.last_good_time - ctx.first_good_scaler
            ctx.corrupted_duration = True
            ctx.run_error_counts[config.CORRUPT_DURATION_ERROR] = 1
            diag.info(f"   Set duration to {ctx.duration}")

        if ctx.first_good.is_blank:
            diag.warning("No good event found in run.")
            ctx.livetime = 0.0
        else:
            ctx.livetime = ctx.duration - (ctx.first_good.time_scaler - ctx.first_good_scaler)
        diag.info(f"Veto livetime: {ctx.livetime} seconds")

        ctx.multiplicity_threshold = multiplicity_threshold(ctx.highest_multiplicity)

        ctx.led = self.led_finder.measure(ctx.duration, ctx.n_entries)
        if ctx.led.count == 0:
            diag.warning(f"No multiplicity > {config.LED_SIMPLE_THRESHOLD} events.  LED may be off.")
        elif ctx.led.short_run:
            diag.warning(f"Short run.  Using approximate LED period: {ctx.led.period}")
        if ctx.led.led_off:
            ctx.run_error_counts[config.BAD_LED_ERROR] = 1

        ctx.run_error_counts[config.THRESHOLD_NOT_FOUND_ERROR] = len(ctx.failed_channels)
        ctx.run_error_counts[config.NO_HITS_ERROR] = len(ctx.silent_channels)
        return ctx

    def error_pass(self, ctx):
        scan_events(self.source, self.thresholds, ctx.run, ErrorPass(ctx, self.diagnostics),
                    first_good=ctx.first_good)
        return ctx

    def muon_pass(self, ctx, sink):
        self.diagnostics.info("================= Scanning for muons ... ================")
        self.diagnostics.info(f"Highest multiplicity found: {ctx.highest_multiplicity}.  "
                              f"Using LED threshold: {ctx.multiplicity_threshold}")
        scan_events(self.source, self.thresholds, ctx.run, MuonPass(ctx, sink, self.diagnostics),
                    first_good=ctx.first_good)
        if ctx.skipped['muon'] > 0:
            self.diagnostics.info(f"VetoProcessor skipped {ctx.skipped['muon']} of {ctx.n_entries} entries.")
        return ctx

#!/usr/bin/env python3
"""
Runs during production, creates ROOT files of veto data.

For one run: finds the QDC software thresholds, checks every event for data
quality errors, reconciles the scaler and SBC clocks, tags muon and LED
events and writes the output tree plus a JSON run summary.

Usage: python auto_veto.py <input_file> [output_dir] [-d] [-e] [-t thresholds.csv]
    -d  draw QDC, threshold, multiplicity and LED plots
    -e  error check only (no muon scan, no output tree)
    -t  use thresholds from a channel,threshold CSV instead of finding them
"""
import sys
import traceback
from pathlib import Path

import veto_config as config
from veto_io import FileHandler, OutputTable, RootVetoSource, ThresholdFile
from veto_plots import Plotter
from veto_processor import ConsoleDiagnostics, VetoProcessor, find_thresholds

USAGE = "Usage: python auto_veto.py <input_file> [output_dir] [-d] [-e] [-t thresholds.csv]"


def parse_args(argv):
    """Parse the command line; returns a dict of options or raises ValueError."""
    args = list(argv)
    options = {
        'make_plots': config.MAKE_PLOTS,
        'error_check_only': config.ERROR_CHECK_ONLY,
        'threshold_file': None,
    }
    positional = []
    while args:
        arg = args.pop(0)
        if arg == '-d':
            options['make_plots'] = True
        elif arg == '-e':
            options['error_check_only'] = True
        elif arg == '-t':
            if not args:
                raise ValueError("-t needs a threshold file")
            options['threshold_file'] = Path(args.pop(0))
        elif arg.startswith('-'):
            raise ValueError(f"Unknown option {arg}")
        else:
            positional.append(arg)
    if not 1 <= len(positional) <= 2:
        raise ValueError("Expected an input file and an optional output directory")
    options['input_file'] = Path(positional[0])
    options['output_dir'] = Path(positional[1] if len(positional) == 2 else config.OUTPUT_DIR)
    return options


def process_run(input_file, output_dir, make_plots=False, error_check_only=False, threshold_file=None):
    """Process one run file; returns the RunContext."""
    diagnostics = ConsoleDiagnostics()
    source = RootVetoSource(input_file)
    info = source.run_info()
    FileHandler.ensure_dir(output_dir)

    print(f"\n========= Processing run {info.run} ... {info.n_entries} entries. =========")
    print(f"Path: {input_file}")

    calibration = None
    if threshold_file is not None:
        thresholds = ThresholdFile.load(threshold_file)
        print(f"Using thresholds from {threshold_file}")
    else:
        calibration = find_thresholds(source, diagnostics, rescan=make_plots)
        thresholds = calibration.thresholds
    ThresholdFile.save(thresholds, output_dir / f"veto_run{info.run}_thresholds.csv")

    processor = VetoProcessor(source, thresholds, diagnostics, calibration)
    table = OutputTable()
    ctx = processor.process(sink=table, error_check_only=error_check_only)

    if not error_check_only:
        out_path = table.write_root(output_dir / f"veto_run{info.run}.root")
        if out_path is not None:
            print(f"Wrote ROOT file: {out_path}")
    summary_path = output_dir / f"veto_run{info.run}_summary.json"
    FileHandler.save_json(ctx.summary(), summary_path)
    print(f"Run summary saved to {summary_path}")

    if make_plots:
        plotter = Plotter(output_dir, info.run)
        if calibration is not None:
            plotter.plot_qdc(calibration.full_hists)
            plotter.plot_thresholds(calibration.low_hists, thresholds.values)
            if calibration.multiplicity_hist is not None:
                plotter.plot_multiplicity(calibration.multiplicity_hist)
        plotter.plot_led_delta_t(processor.led_delta_t, ctx.led)

    print("=================== Done processing. ====================\n")
    return ctx


def main():
    try:
        options = parse_args(sys.argv[1:])
    except ValueError as e:
        print(f"Error: {e}")
        print(USAGE)
        sys.exit(1)

    print("=== Configuration ===")
    print(f"Input file: {options['input_file']}")
    print(f"Output Directory: {options['output_dir']}")
    print(f"Draw plots: {options['make_plots']}")
    print(f"Error check only: {options['error_check_only']}")
    print(f"Threshold margin: {config.THRESHOLD_MARGIN} QDC")
    print("======================")

    try:
        process_run(options['input_file'], options['output_dir'], options['make_plots'],
                    options['error_check_only'], options['threshold_file'])
    except Exception as e:
        print(f"Error processing {options['input_file']}: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()

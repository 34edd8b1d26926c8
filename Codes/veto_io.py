#!/usr/bin/env python3
"""
Input/output adapters for veto processing.

Event sources are replayable: every pass iterates them again from the first
entry. RootVetoSource reads a flat veto tree with uproot, FrameSource serves
events from a pandas DataFrame. OutputTable collects one row per event and
writes the ROOT output tree and the JSON run summary.
"""
import json
from pathlib import Path

import awkward as ak
import numpy as np
import pandas as pd
import uproot

import veto_config as config
from veto_event import ThresholdTable

EVENT_BRANCHES = [
    'run', 'qdc',
    'scalerEventCount', 'qdc1EventCount', 'qdc2EventCount',
    'scalerIndex', 'qdc1Index', 'qdc2Index',
    'scalerTicks', 'timeSBC',
]
OPTIONAL_BRANCHES = ['errorFlags', 'nChannels']

# Run-level summary fields copied onto every output row
ROW_SUMMARY_FIELDS = [
    'LEDfreq', 'LEDperiod', 'LEDrms', 'multipThreshold', 'highestMultip',
    'LEDWindow', 'LEDMultipThreshold', 'LEDSimpleThreshold',
    'start', 'stop', 'duration', 'livetime', 'swThresh', 'ErrorCount',
]


class FileHandler:
    """Handles file I/O operations."""

    @staticmethod
    def ensure_dir(path: Path):
        """Ensure that a directory exists; create it and any parent directories if necessary."""
        path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def save_json(data: dict, path: Path):
        with path.open('w') as f:
            json.dump(data, f, indent=4)


class RunInfo:
    """Run metadata needed by the processing passes."""

    def __init__(self, run, start, stop, n_entries):
        self.run = int(run)
        self.start = int(start)
        self.stop = int(stop)
        self.n_entries = int(n_entries)

    def __repr__(self):
        return f"RunInfo(run={self.run}, start={self.start}, stop={self.stop}, n_entries={self.n_entries})"


class FrameSource:
    """Veto events held in a pandas DataFrame, one row per entry."""

    def __init__(self, df, run=None, start=0, stop=0):
        missing = [col for col in EVENT_BRANCHES if col not in df.columns and col != 'run']
        if missing:
            raise ValueError(f"Event frame is missing columns {missing}")
        self.df = df.reset_index(drop=True)
        if run is None:
            run = int(self.df['run'].iloc[0]) if 'run' in self.df.columns and not self.df.empty else 0
        self.info = RunInfo(run, start, stop, len(self.df))

    def run_info(self):
        return self.info

    def __len__(self):
        return len(self.df)

    def __iter__(self):
        for record in self.df.to_dict('records'):
            yield record


class RootVetoSource:
    """Veto events read chunk by chunk from a ROOT file with uproot."""

    def __init__(self, path, tree_name=None, step_size=None):
        self.path = Path(path)
        self.tree_name = tree_name or config.INPUT_TREE
        self.step_size = step_size or config.STEP_SIZE
        self._info = None
        if not self.path.exists():
            raise FileNotFoundError(f"Missing file: {self.path}")

    @staticmethod
    def _read_parameter(f, name):
        """Read a TParameter (e.g. starttime) stored alongside the tree."""
        try:
            if name in f:
                return f[name].member("fVal")
        except Exception as e:
            print(f"Warning: Could not read {name} from file. Error: {e}")
        return None

    def run_info(self):
        if self._info is None:
            with uproot.open(self.path) as f:
                tree = f[self.tree_name]
                n_entries = tree.num_entries
                run = 0
                if n_entries > 0:
                    run = int(tree['run'].array(library='np', entry_stop=1)[0])
                start = self._read_parameter(f, 'starttime')
                stop = self._read_parameter(f, 'stoptime')
                if start is None or stop is None:
                    print("Warning: run start/stop time not found, run duration will be reconstructed.")
                    start, stop = 0, 0
            self._info = RunInfo(run, start, stop, n_entries)
        return self._info

    def __iter__(self):
        with uproot.open(self.path) as f:
            tree = f[self.tree_name]
            branches = EVENT_BRANCHES + [b for b in OPTIONAL_BRANCHES if b in tree.keys()]
            for chunk in tree.iterate(branches, library='ak', step_size=self.step_size):
                columns = {name: ak.to_numpy(chunk[name]) for name in branches}
                for i in range(len(chunk)):
                    yield {name: columns[name][i] for name in branches}


class ThresholdFile:
    """Flat (channel, threshold) persistence for software thresholds."""

    @staticmethod
    def save(table, path: Path):
        df = pd.DataFrame(table.to_pairs(), columns=['channel', 'threshold'])
        df.to_csv(path, index=False)

    @staticmethod
    def load(path: Path):
        df = pd.read_csv(path)
        if list(df.columns) != ['channel', 'threshold']:
            raise ValueError(f"{path} must have columns 'channel,threshold'")
        return ThresholdTable.from_pairs(df.itertuples(index=False, name=None))


class OutputTable:
    """Collects output rows in entry order plus the run-level summary."""

    def __init__(self):
        self.rows = []
        self.summary = {}

    def fill(self, row):
        self.rows.append(row)

    def set_summary(self, summary):
        self.summary = summary

    def __len__(self):
        return len(self.rows)

    def to_dataframe(self):
        """One row per event with the run-level summary fields duplicated on each row."""
        df = pd.DataFrame(self.rows)
        for field in ROW_SUMMARY_FIELDS:
            if field in self.summary:
                value = self.summary[field]
                df[field] = [value] * len(df) if isinstance(value, (list, tuple)) else value
        return df

    @staticmethod
    def _column_array(values):
        first = values.iloc[0]
        if isinstance(first, (list, tuple, np.ndarray)):
            return np.stack([np.asarray(v) for v in values])
        return values.to_numpy()

    def write_root(self, path: Path, tree_name=None):
        df = self.to_dataframe()
        if df.empty:
            print(f"No output rows, {path} not written.")
            return None
        branches = {col: self._column_array(df[col]) for col in df.columns}
        with uproot.recreate(path) as fout:
            fout[tree_name or config.OUTPUT_TREE] = branches
        return path

    def write_summary(self, path: Path):
        FileHandler.save_json(self.summary, path)
        return path

#!/usr/bin/env python3
"""
Configuration Parameters for Veto Data Processing

This file serves as the single source of truth for all veto processing
parameters. The threshold finder, error checks, time synchronization,
LED finder, muon finder and the auto_veto driver all import their
settings from here (as ``import veto_config as config``).
"""

# --- Detector Geometry ---
N_CHANNELS = 32                 # QDC channels read out per veto event
N_PLANES = 12                   # Logical detector planes
N_STRUCTURAL_FLAGS = 18         # Flags filled during record normalization
N_ERRORS = 29                   # Length of the per-event error vector
N_CUT_TYPES = 7                 # Length of the CutType output vector

# --- Run Epochs ---
SBC_CUTOFF_RUN = 8557           # SBC clock is usable only for runs above this
LATE_CONFIG_RUN = 45000000      # Runs above this use the reduced panel layout
LATE_CONFIG_MAX_CHANNEL = 23    # Channels above this are not connected in that layout
CARD_SLOTS = {                  # QDC card slots (QDC 1, QDC 2) per epoch
    'early': (13, 18),
    'late': (11, 18),
}

# --- Software Threshold Finder ---
THRESHOLD_MARGIN = 35           # QDC counts above the pedestal for the threshold
PERMISSIVE_THRESHOLD = 1        # Used during calibration, every channel counts as hit
THRESHOLD_SENTINEL = 9999       # Disabled channel / threshold not found
LOW_QDC_HIST = {'bins': 500, 'range': (0, 500)}
FULL_QDC_HIST = {'bins': 4200, 'range': (0, 4200)}
PEDESTAL_MIN_COUNT = 1          # Onset bin must have more entries than this
PEDESTAL_WINDOW = (-10, 50)     # Search window (bins) around the onset bin
MULTIPLICITY_HIST = {'bins': 32, 'range': (0, 32)}

# --- Clocks ---
SCALER_CLOCK_HZ = 1e8                   # Scaler ticks per second
BAD_SCALER_TICKS = 0xFFFFFFFFFFFFFFFF   # Raw scaler register sentinel
SBC_SENTINEL = 2000000000               # SBC readings at or above this are invalid
DESYNC_TOLERANCE_S = 2.0                # Scaler vs SBC delta disagreement (error 18)
RESYNC_TOLERANCE_S = 0.001              # SBC is accurate to microseconds
INDEX_SKEW_TOLERANCE = 2                # Max |QDC index - scaler index|
QDC_INDEX_OFFSETS = (1, 2)              # Expected QDC index - scaler index

# --- LED ---
LED_SIMPLE_THRESHOLD = 10       # Multiplicity above which an event may be an LED flash
LED_MULTIP_MARGIN = 5           # multipThreshold = highestMultip - LED_MULTIP_MARGIN
LED_WINDOW_S = 0.1              # Half-width of the LED delta-t window
LED_DELTA_T_HIST = {'bins': 100000, 'range': (0, 100)}   # 0.001 s/bin
LED_SENTINEL = 9999
LED_SHORT_RUN_PERIOD_S = 9      # Longer periods trigger the count-based estimate
LED_MIN_RUN_EVENTS = 100        # Shorter runs trigger the count-based estimate
LED_MIN_SIMPLE_COUNT = 4        # LED candidates needed for the count-based estimate
LED_MAX_PERIOD_S = 20

# --- Muon Identification ---
ENERGY_THRESHOLD = 500          # Measured muon QDC threshold
ENERGY_MIN_PANELS = 2           # Panels above ENERGY_THRESHOLD for the energy cut
COIN_TYPE_NAMES = {
    -1: 'none',
    0: '2+ panels',
    1: 'vertical',
    2: 'side+bottom',
    3: 'top+sides',
    4: 'compound',
}

# --- Error Slots ---
SKIP_ERRORS = (1, 2, 3, 5, 6, 9, 13, 14, 18, 19, 20, 21, 22, 23, 24)
SERIOUS_ERRORS = (1, 13, 14, 18, 19, 20, 21, 22, 23, 24)
IGNORED_IN_TOTAL = (10, 11)     # Always present unless counters reset at run start
TIME_UNAVAILABLE_ERROR = 0
NO_CLOCK_ERROR = 25
BAD_LED_ERROR = 25              # Run level
CORRUPT_DURATION_ERROR = 26     # Run level
THRESHOLD_NOT_FOUND_ERROR = 27  # Run level
NO_HITS_ERROR = 28              # Run level

# --- Output ---
OUTPUT_DIR = "./output"
OUTPUT_TREE = "vetoTree"
INPUT_TREE = "VetoTree"
STEP_SIZE = "100 MB"
MAKE_PLOTS = False
ERROR_CHECK_ONLY = False
LOGSCALE_QDC = True

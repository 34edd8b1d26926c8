#!/usr/bin/env python3
"""
Event-level data quality checks.

check_event_errors() compares the current event with the previous good
event and the first good event of the run and returns the 29-slot error
vector together with the skip verdict. It holds no state of its own:
everything it needs is passed in.

Event-level error slots ('s' marks slots that make the event skipped):
    s 1. Missing channels (< 32 veto datas in event)
    s 2. Extra channels (> 32 veto datas in event)
    s 3. Scaler only (no QDC data)
      4. Bad timestamp: FFFF FFFF FFFF FFFF
    s 5. QDC index - scaler index != 1 or 2
    s 6. Duplicate channels
      7. HW count mismatch
      8. Event run number doesn't match the processed run
    s 9. Veto data cast failed (missing QDC data)
      10. Scaler event count doesn't match entry
      11. Scaler event count doesn't match QDC1 event count
      12. QDC1 event count doesn't match QDC2 event count
    s 13. Indexes of QDC1 and scaler differ by more than 2
    s 14. Indexes of QDC2 and scaler differ by more than 2
      15. Index of QDC1 or QDC2 precedes the scaler index
      16. Index of QDC1 or QDC2 equals the scaler index
      17. Unknown card is present
    s 18. Scaler & SBC timestamp desynch
    s 19. Scaler event count reset
    s 20. Scaler event count jump
    s 21. QDC1 event count reset
    s 22. QDC1 event count jump
    s 23. QDC2 event count reset
    s 24. QDC2 event count jump
      25. No usable clock, time must be interpolated

Run-level slots (set by the processor, not here):
    25. LED frequency very low/high, corrupted, or LEDs off
    26. Corrupted run duration
    27. QDC threshold not found
    28. No events above QDC threshold
"""
import numpy as np

import veto_config as config

_SKIP_MASK = np.zeros(config.N_ERRORS, dtype=bool)
_SKIP_MASK[list(config.SKIP_ERRORS)] = True


def new_error_vector():
    return np.zeros(config.N_ERRORS, dtype=bool)


def is_skip_worthy(errors):
    return bool(np.any(errors & _SKIP_MASK))


def _counter_errors(count, prev_count, entry, prev_good_entry, first_entry, missing_packet,
                    check_missing_packet):
    """Reset and jump checks for one hardware event counter."""
    past_first = entry > first_entry
    reset = count == 0 and entry != 0 and past_first
    if check_missing_packet:
        reset = reset and not missing_packet
    jump = abs(count - prev_count) > entry - prev_good_entry and past_first and count != 0
    return reset, jump


def check_event_errors(current, previous, first_good, prev_good_entry):
    """
    Classify one event.

    Returns (errors, skip): the 29-slot boolean error vector and whether
    the event must be left out of statistics and of the previous-event
    bookkeeping.
    """
    errors = new_error_vector()
    errors[:config.N_STRUCTURAL_FLAGS] = current.flags[:config.N_STRUCTURAL_FLAGS]

    if current.bad_scaler and not current.sbc_valid:
        errors[config.NO_CLOCK_ERROR] = True

    # Sequential checks need a reference event.
    if first_good.is_blank:
        return errors, is_skip_worthy(errors)

    entry = current.entry
    first_entry = first_good.entry
    missing_packet = current.flag(1)

    sbc_offset = first_good.time_sbc - first_good.time_scaler
    time_sbc = current.time_sbc - sbc_offset
    prev_time_sbc = previous.time_sbc - sbc_offset

    clocks_valid = (not current.bad_scaler and not previous.bad_scaler
                    and current.sbc_valid and previous.sbc_valid
                    and current.time_scaler > 0 and time_sbc > 0 and prev_time_sbc > 0)
    if (clocks_valid and sbc_offset != 0 and not missing_packet and entry > first_entry
            and abs((current.time_scaler - previous.time_scaler) - (time_sbc - prev_time_sbc))
            > config.DESYNC_TOLERANCE_S):
        errors[18] = True

    errors[19], errors[20] = _counter_errors(current.scaler_count, previous.scaler_count, entry,
                                             prev_good_entry, first_entry, missing_packet, False)
    errors[21], errors[22] = _counter_errors(current.qdc1_count, previous.qdc1_count, entry,
                                             prev_good_entry, first_entry, missing_packet, True)
    errors[23], errors[24] = _counter_errors(current.qdc2_count, previous.qdc2_count, entry,
                                             prev_good_entry, first_entry, missing_packet, True)

    return errors, is_skip_worthy(errors)


def describe_serious_errors(current, previous, errors, x_time, time_sbc, sync_delta):
    """Human-readable lines for the serious error slots set on this event."""
    lines = []
    if errors[1]:
        lines.append(f"EventError[1] Missing Packet.  Scaler index {current.scaler_index}"
                     f"  Scaler Time {current.time_scaler}  SBC Time {current.time_sbc}")
    if errors[13]:
        lines.append("EventError[13] ORCA packet indexes of QDC1 and Scaler differ by more than 2."
                     f"\n    Scaler Index {current.scaler_index}  QDC1 Index {current.qdc1_index}"
                     f"\n    Previous scaler Index {previous.scaler_index}"
                     f"  Previous QDC1 Index {previous.qdc1_index}")
    if errors[14]:
        lines.append("EventError[14] ORCA packet indexes of QDC2 and Scaler differ by more than 2."
                     f"\n    Scaler Index {current.scaler_index}  QDC2 Index {current.qdc2_index}"
                     f"\n    Previous scaler Index {previous.scaler_index}"
                     f"  Previous QDC2 Index {previous.qdc2_index}")
    if errors[18]:
        delta_t = current.time_scaler - time_sbc
        lines.append("EventError[18] Scaler/SBC Desynch."
                     f"\n    DeltaT (adjusted) {delta_t - sync_delta}  DeltaT {delta_t}"
                     f"\n    Prev TSdifference {sync_delta}"
                     f"  Scaler DeltaT {current.time_scaler - previous.time_scaler}"
                     f"\n    Scaler Index {current.scaler_index}  Previous Scaler Index {previous.scaler_index}"
                     f"\n    Scaler Time {current.time_scaler}  SBC Time {time_sbc}")
    counters = (
        (19, 20, 'Scaler', 'SEC', current.scaler_count, previous.scaler_count, current.scaler_index),
        (21, 22, 'QDC1', 'QEC1', current.qdc1_count, previous.qdc1_count, current.qdc1_index),
        (23, 24, 'QDC2', 'QEC2', current.qdc2_count, previous.qdc2_count, current.qdc2_index),
    )
    for reset_slot, jump_slot, name, short, count, prev_count, index in counters:
        if errors[reset_slot]:
            lines.append(f"EventError[{reset_slot}] {name} Event Count Reset."
                         f"  Scaler Index {current.scaler_index}  {short} {count}  Previous {short} {prev_count}")
        if errors[jump_slot]:
            lines.append(f"EventError[{jump_slot}] {name} Event Count Jump."
                         f"  xTime {x_time}  {name} Index {index}"
                         f"\n    {short} {count}  Previous {short} {prev_count}")
    return lines

"""
Tests for the veto event model: threshold tables, record normalization,
structural flags and the channel-to-plane map.
"""
import numpy as np
import pytest

import veto_config as config
from event_builders import RUN, hit_qdc, make_event, raw_event, uniform_thresholds
from veto_event import (EventNormalizer, EventRecord, Plane, ThresholdTable, card_numbers,
                        panel_map, run_epoch, sbc_usable)


class TestThresholdTable:

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            ThresholdTable([75] * 31)

    def test_values_are_read_only(self):
        table = uniform_thresholds()
        with pytest.raises(ValueError):
            table.values[0] = 1

    def test_permissive_accepts_everything_above_one(self):
        table = ThresholdTable.permissive()
        assert len(table) == config.N_CHANNELS
        assert all(table[ch] == config.PERMISSIVE_THRESHOLD for ch in range(config.N_CHANNELS))

    def test_from_pairs_in_any_order(self):
        pairs = [(ch, 100 + ch) for ch in reversed(range(config.N_CHANNELS))]
        table = ThresholdTable.from_pairs(pairs)
        assert table[0] == 100
        assert table[31] == 131
        assert table.to_pairs()[5] == (5, 105)

    def test_from_pairs_missing_channel(self):
        pairs = [(ch, 75) for ch in range(config.N_CHANNELS) if ch != 12]
        with pytest.raises(ValueError, match="12"):
            ThresholdTable.from_pairs(pairs)

    def test_from_pairs_channel_out_of_range(self):
        pairs = [(ch, 75) for ch in range(config.N_CHANNELS)] + [(32, 75)]
        with pytest.raises(ValueError):
            ThresholdTable.from_pairs(pairs)

    def test_equality(self):
        assert uniform_thresholds(75) == uniform_thresholds(75)
        assert uniform_thresholds(75) != uniform_thresholds(76)


class TestEventRecord:

    def test_clean_event_has_no_flags(self):
        event = make_event(4)
        assert not event.flags.any()
        assert not event.bad_scaler
        assert event.time_scaler == pytest.approx(5.0)
        assert event.sbc_valid

    def test_multiplicity_counts_strictly_above_threshold(self, thresholds):
        qdc = hit_qdc([0, 1, 2], value=900)
        qdc[3] = 75   # equal to the threshold, not a hit
        qdc[4] = 76
        event = make_event(0, thresholds=thresholds, qdc=qdc)
        assert event.multiplicity == 4
        np.testing.assert_array_equal(np.flatnonzero(event.hits()), [0, 1, 2, 4])

    def test_no_thresholds_means_no_hits(self):
        raw = raw_event(0, qdc=hit_qdc([0, 1]))
        event = EventNormalizer.normalize(0, raw, None, RUN)
        assert event.multiplicity == 0
        assert not event.hits().any()

    def test_bad_scaler_sentinel(self):
        event = make_event(2, bad_scaler=True)
        assert event.bad_scaler
        assert event.flag(4)

    def test_blank_record(self):
        blank = EventRecord.blank()
        assert blank.is_blank
        assert blank.entry == EventRecord.NO_ENTRY
        assert not make_event(0).is_blank

    def test_total_qdc(self):
        event = make_event(0, qdc=hit_qdc([0], value=1000, base=0))
        assert event.total_qdc == 1000


class TestStructuralFlags:

    def test_qdc_index_not_one_or_two(self):
        event = make_event(3, qdc1_offset=5)
        assert event.flag(5)
        assert event.flag(13)
        assert not event.flag(14)

    def test_qdc_index_before_scaler(self):
        event = make_event(3, qdc2_offset=-1)
        assert event.flag(5)
        assert event.flag(15)
        assert not event.flag(14)

    def test_qdc_index_equal_to_scaler(self):
        event = make_event(3, qdc1_offset=0)
        assert event.flag(16)

    def test_counter_mismatches(self):
        event = make_event(3, scaler_count=7, qdc1_count=7, qdc2_count=8)
        assert event.flag(10)
        assert not event.flag(11)
        assert event.flag(12)

    def test_run_number_mismatch(self):
        raw = raw_event(0, run=RUN + 1)
        event = EventNormalizer.normalize(0, raw, uniform_thresholds(), RUN)
        assert event.flag(8)

    def test_channel_count(self):
        assert make_event(0, n_channels=31).flag(1)
        assert make_event(0, n_channels=33).flag(2)
        assert not make_event(0, n_channels=32).flags.any()

    def test_source_flags_are_kept(self):
        event = make_event(0, error_flags=[3, 6, 17])
        np.testing.assert_array_equal(np.flatnonzero(event.flags), [3, 6, 17])


class TestRunEpochs:

    def test_sbc_usable_only_after_cutoff(self):
        assert not sbc_usable(config.SBC_CUTOFF_RUN, 10.0)
        assert sbc_usable(config.SBC_CUTOFF_RUN + 1, 10.0)
        assert not sbc_usable(RUN, config.SBC_SENTINEL)

    def test_early_map_covers_every_channel(self):
        mapping = panel_map(RUN)
        assert run_epoch(RUN) == 'early'
        assert sorted(mapping) == list(range(config.N_CHANNELS))
        assert mapping[0] == Plane.LOWER_BOTTOM
        assert mapping[20] == Plane.INNER_TOP

    def test_late_map_drops_disconnected_channels(self):
        run = config.LATE_CONFIG_RUN + 1
        mapping = panel_map(run)
        assert run_epoch(run) == 'late'
        assert max(mapping) == config.LATE_CONFIG_MAX_CHANNEL
        assert 24 not in mapping

    def test_card_numbers(self):
        assert card_numbers(RUN) == (13, 18)
        assert card_numbers(config.LATE_CONFIG_RUN + 1) == (11, 18)

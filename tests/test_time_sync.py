"""
Tests for scaler / SBC time reconciliation and interpolation.
"""
import pytest

import veto_config as config
from event_builders import SBC_OFFSET, make_event
from time_sync import TimeHistory, TimeInterpolationError, TimeSynchronizer

BAD_SBC = config.SBC_SENTINEL + 1.0


class TestTimeHistory:

    def test_good_scaler_returns_own_time(self):
        history = TimeHistory([0.0, 1.0, 2.0], [0, 1, 2], [False, False, False])
        assert history.interpolate(1) == 1.0

    def test_midpoint_of_neighbours(self):
        history = TimeHistory([1.0, 0.0, 0.0, 4.0], [0, 1, 2, 3], [False, True, True, False])
        assert history.interpolate(1) == pytest.approx(2.5)
        assert history.interpolate(2) == pytest.approx(2.5)

    def test_one_sided_uses_nearest_good_time(self):
        history = TimeHistory([1.0, 2.0, 0.0], [0, 1, 2], [False, False, True])
        assert history.interpolate(2) == 2.0
        history = TimeHistory([0.0, 3.0], [0, 1], [True, False])
        assert history.interpolate(0) == 3.0

    def test_mismatched_lengths_raise(self):
        history = TimeHistory([0.0, 1.0], [0, 1], [False])
        with pytest.raises(TimeInterpolationError, match="different sizes"):
            history.interpolate(0)

    def test_entry_out_of_range(self):
        history = TimeHistory([0.0], [0], [False])
        with pytest.raises(TimeInterpolationError):
            history.interpolate(3)

    def test_no_good_scaler_anywhere(self):
        history = TimeHistory([0.0, 0.0], [0, 1], [True, True])
        with pytest.raises(TimeInterpolationError):
            history.interpolate(1)

    def test_error_is_a_value_error(self):
        assert issubclass(TimeInterpolationError, ValueError)

    def test_append_and_update(self):
        history = TimeHistory()
        history.append(0, 1.0, False)
        history.append(1, 0.0, True)
        history.update(1, 1.5)
        history.update(7, 99.0)
        assert len(history) == 2
        assert history.times == [1.0, 1.5]


class TestEventTime:

    def test_clock_priority(self):
        history = TimeHistory([1.0, 0.0, 3.0], [0, 1, 2], [False, True, False])
        sync = TimeSynchronizer(SBC_OFFSET, history)

        synced = sync.event_time(make_event(0, time=1.0))
        assert (synced.source, synced.time, synced.approximate) == ('scaler', 1.0, False)

        synced = sync.event_time(make_event(1, time=2.0, bad_scaler=True))
        assert synced.source == 'sbc'
        assert synced.time == pytest.approx(2.0)
        assert not synced.approximate

        synced = sync.event_time(make_event(1, bad_scaler=True, sbc=BAD_SBC))
        assert synced.source == 'interpolated'
        assert synced.time == pytest.approx(2.0)
        assert synced.approximate
        assert synced.time_sbc is None

    def test_sbc_offset_from_first_good(self):
        assert TimeSynchronizer.sbc_offset_from(make_event(0, time=0.5, sbc=250.5)) == pytest.approx(250.0)

    def test_sentinel_sbc_interpolates_between_neighbours(self):
        # scaler [1, 2, bad, 4], SBC [101, 102, sentinel, 104]
        events = [make_event(0), make_event(1),
                  make_event(2, bad_scaler=True, sbc=BAD_SBC), make_event(3)]
        history = TimeHistory()
        for event in events:
            history.append(event.entry, event.time_scaler, event.bad_scaler)
        sync = TimeSynchronizer(SBC_OFFSET, history)

        times = [sync.synchronize(event, False) for event in events]
        assert times[2].time == pytest.approx(3.0)
        assert times[2].approximate
        assert [t.time for t in times[:2]] == [1.0, 2.0]


class TestSynchronize:

    def clean_run(self, n=10):
        return [make_event(entry, time=0.5 * entry + 0.25, sbc=0.5 * entry + 0.25 + SBC_OFFSET)
                for entry in range(n)]

    def test_clean_data_is_unchanged(self):
        events = self.clean_run()
        sync = TimeSynchronizer(SBC_OFFSET, TimeHistory())
        for event in events:
            synced = sync.synchronize(event, False)
            assert synced.time == event.time_scaler
            assert not synced.approximate
        assert not sync.forced_sync

    def test_desync_forces_sbc_clock_and_releases(self):
        sync = TimeSynchronizer(SBC_OFFSET, TimeHistory())
        sync.synchronize(make_event(0, time=1.0), False)

        # scaler jumps 5 s ahead of the SBC
        synced = sync.synchronize(make_event(1, time=7.0, sbc=102.0), True)
        assert sync.forced_sync
        assert synced.time == pytest.approx(2.0)
        assert synced.approximate

        synced = sync.synchronize(make_event(2, time=8.0, sbc=103.0), False)
        assert sync.forced_sync
        assert synced.time == pytest.approx(3.0)

        # clocks agree again
        synced = sync.synchronize(make_event(3, time=4.0, sbc=104.0), False)
        assert not sync.forced_sync
        assert synced.time == 4.0
        assert not synced.approximate

    def test_forced_sync_keeps_last_delta_for_sbc_less_events(self):
        sync = TimeSynchronizer(SBC_OFFSET, TimeHistory())
        sync.synchronize(make_event(0, time=6.0, sbc=101.0), True)
        synced = sync.synchronize(make_event(1, time=7.0, sbc=BAD_SBC), False)
        assert sync.sync_delta == pytest.approx(5.0)
        assert synced.time == pytest.approx(2.0)
        assert synced.approximate

"""
Tests for muon / LED classification and coincidence typing.
"""
import numpy as np
import pytest

import veto_config as config
from event_builders import RUN, hit_qdc, led_qdc, make_event
from muon_finder import MuonFinder, coincidence_type, multiplicity_threshold
from veto_event import Plane


def planes(*hit):
    plane_true = np.zeros(config.N_PLANES, dtype=bool)
    plane_true[list(hit)] = True
    return plane_true


BOTTOMS = (Plane.LOWER_BOTTOM, Plane.UPPER_BOTTOM)
TOPS = (Plane.INNER_TOP, Plane.OUTER_TOP)
NORTH = (Plane.INNER_NORTH, Plane.OUTER_NORTH)
WEST = (Plane.INNER_WEST, Plane.OUTER_WEST)


class TestMultiplicityThreshold:

    def test_margin_below_highest(self):
        assert multiplicity_threshold(28) == 23

    def test_never_negative(self):
        assert multiplicity_threshold(3) == 0


class TestCoincidenceType:

    @pytest.mark.parametrize("hit,code", [
        (BOTTOMS + TOPS, 1),
        (BOTTOMS + NORTH, 2),
        (TOPS + WEST, 3),
        (BOTTOMS + TOPS + NORTH, 4),
        (BOTTOMS, 0),
        (BOTTOMS + (Plane.INNER_NORTH, Plane.OUTER_SOUTH), 0),
        ((Plane.LOWER_BOTTOM,) + TOPS, 0),
    ])
    def test_codes(self, hit, code):
        assert coincidence_type(planes(*hit))[0] == code

    def test_two_conditions_are_compound(self):
        code, conditions = coincidence_type(planes(*(BOTTOMS + TOPS + WEST)))
        assert code == 4
        assert conditions == (True, True, True)


class TestCuts:

    def test_time_cut(self):
        finder = MuonFinder(RUN, multip_threshold=23, led_off=False)
        assert finder.time_cut(make_event(0, qdc=hit_qdc(range(10))))
        assert not finder.time_cut(make_event(0, qdc=hit_qdc(range(25))))

    def test_led_off_bypasses_time_cut(self):
        finder = MuonFinder(RUN, multip_threshold=23, led_off=True)
        assert finder.time_cut(make_event(0, qdc=led_qdc()))

    def test_energy_cut(self):
        assert MuonFinder.energy_cut(make_event(0, qdc=hit_qdc([3, 9], value=501)))
        assert not MuonFinder.energy_cut(make_event(0, qdc=hit_qdc([3], value=900)))
        assert not MuonFinder.energy_cut(make_event(0, qdc=hit_qdc([3, 9], value=500)))


class TestClassify:

    def test_vertical_muon(self):
        finder = MuonFinder(RUN, multip_threshold=27, led_off=False)
        result = finder.classify(make_event(0, qdc=hit_qdc([0, 6, 17, 20])), 1.0)
        assert result.is_muon
        assert result.coin_type == 1
        assert result.type_name == 'vertical'
        assert result.plane_hit_count == 4
        assert result.plane_hits[Plane.LOWER_BOTTOM] == 1
        np.testing.assert_array_equal(result.coin_flags[:4], [True, True, False, False])
        assert not result.coin_flags[4:].any()

    def test_led_event_is_not_a_muon(self):
        finder = MuonFinder(RUN, multip_threshold=27, led_off=False)
        result = finder.classify(make_event(0, qdc=led_qdc()), 1.0)
        assert result.energy_cut
        assert not result.time_cut
        assert result.is_led
        assert result.coin_type == -1
        assert not result.coin_flags.any()

    def test_first_led_marked_once(self):
        finder = MuonFinder(RUN, multip_threshold=27, led_off=False)
        first = finder.classify(make_event(0, qdc=led_qdc()), 1.0)
        second = finder.classify(make_event(1, qdc=led_qdc()), 2.0)
        assert first.first_led
        assert not second.first_led

    def test_no_led_tags_when_led_off(self):
        finder = MuonFinder(RUN, multip_threshold=27, led_off=True)
        result = finder.classify(make_event(0, qdc=led_qdc()), 1.0)
        assert not result.is_led
        assert result.is_muon
        assert result.coin_type == 4

    def test_delta_t_since_last_led(self):
        finder = MuonFinder(RUN, multip_threshold=27, led_off=False)
        finder.classify(make_event(0, qdc=led_qdc()), 10.0)
        result = finder.classify(make_event(1, qdc=hit_qdc([0, 6])), 10.75)
        assert result.x_delta_t == pytest.approx(0.75)
        assert result.x_led_delta_t == pytest.approx(0.75)

    def test_late_epoch_ignores_disconnected_channels(self):
        finder = MuonFinder(config.LATE_CONFIG_RUN + 1, multip_threshold=27, led_off=False)
        event = make_event(0, run=config.LATE_CONFIG_RUN + 1, qdc=hit_qdc([0, 24, 25]))
        result = finder.classify(event, 1.0)
        assert result.plane_hit_count == 1
        assert not result.plane_true[Plane.INNER_SOUTH]

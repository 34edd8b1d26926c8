import pytest

from event_builders import RUN, events_frame, led_run_events, uniform_thresholds
from veto_io import FrameSource


@pytest.fixture
def thresholds():
    return uniform_thresholds()


@pytest.fixture
def led_run_raws():
    return led_run_events()


@pytest.fixture
def led_run_source(led_run_raws):
    return FrameSource(events_frame(led_run_raws), run=RUN, start=1000, stop=1030)

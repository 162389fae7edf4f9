import math

import pytest

from fpsr.core.generators.base import DomainError
from fpsr.core.generators.quantised_switching import qs, qs_components, resolve_durations
from fpsr.core.hashing import portable_rand

SAMPLE = dict(
    base_wave_freq=0.012,
    stream2_freq_mult=3.1,
    quant_levels=(12, 22),
    streams_offset=(0, 76),
    stream_switch_dur=24,
    stream1_quant_dur=16,
    stream2_quant_dur=20,
)


def test_reference_sample_frame_103():
    state = qs_components(103, **SAMPLE)
    assert state.level1 == 12
    assert state.level2 == 14  # floor(12 * 1.24)
    assert state.selected_stream == 1
    assert state.stream1 == pytest.approx(11 / 12)
    assert state.value == pytest.approx(0.87218168212712044, abs=1e-9)
    # 102 sits on the same stream-1 step
    assert qs(102, **SAMPLE) == state.value


def test_reference_sample_switches_to_stream2():
    state = qs_components(108, **SAMPLE)
    assert state.selected_stream == 2
    assert state.stream2 == 0.5
    assert state.value == pytest.approx(0.99470209462560888, abs=1e-9)


def test_stream1_level_toggles_on_its_own_clock():
    assert qs_components(103, **SAMPLE).level1 == 12
    assert qs_components(104, **SAMPLE).level1 == 22
    assert qs_components(104, **SAMPLE).value == pytest.approx(0.34383696013173903, abs=1e-9)


def test_selector_depends_only_on_switch_clock():
    for switch_dur in (1, 2, 5, 24):
        for quant1, quant2 in ((3, 7), (16, 20), (None, None)):
            params = {**SAMPLE, "stream_switch_dur": switch_dur, "stream1_quant_dur": quant1, "stream2_quant_dur": quant2}
            for frame in range(-60, 120):
                expected = 1 if frame % switch_dur < switch_dur // 2 else 2
                assert qs_components(frame, **params).selected_stream == expected


def test_output_changes_only_on_switch_or_step():
    previous = qs_components(-1, **SAMPLE)
    for frame in range(0, 400):
        state = qs_components(frame, **SAMPLE)
        assert 0.0 <= state.value < 1.0
        if state.value != previous.value:
            selected_now = state.stream1 if state.selected_stream == 1 else state.stream2
            selected_before = previous.stream1 if previous.selected_stream == 1 else previous.stream2
            assert state.selected_stream != previous.selected_stream or selected_now != selected_before
        previous = state


def test_default_durations_follow_frequency():
    # (1 / 0.012) * 1.2 is 99.99999999999999, so the floor is 99
    assert resolve_durations(0.012) == (63, 99, 75)
    assert resolve_durations(0.1) == (7, 12, 9)
    assert resolve_durations(2.0) == (1, 1, 1)
    assert resolve_durations(0.012, 24, None, 20) == (24, 99, 20)


def test_sentinel_durations_equal_unset():
    unset = {**SAMPLE, "stream_switch_dur": None, "stream1_quant_dur": None, "stream2_quant_dur": None}
    legacy = {**SAMPLE, "stream_switch_dur": 0, "stream1_quant_dur": -1, "stream2_quant_dur": 0}
    for frame in range(-20, 200, 3):
        assert qs(frame, **unset) == qs(frame, **legacy)


def test_negative_stream2_mult_uses_default():
    explicit = {**SAMPLE, "stream2_freq_mult": 3.7}
    for mult in (None, -1.0):
        params = {**SAMPLE, "stream2_freq_mult": mult}
        for frame in range(100, 140):
            assert qs(frame, **params) == qs(frame, **explicit)


def test_quant_levels_clamped_to_one():
    state = qs_components(5, **{**SAMPLE, "quant_levels": (0, -3)})
    assert state.level1 == 1
    assert state.level2 == 1


@pytest.mark.parametrize("freq", [0, 0.0, -0.5, float("nan"), float("inf")])
def test_non_positive_frequency_is_domain_error(freq):
    with pytest.raises(DomainError) as excinfo:
        qs(0, freq, None, (12, 22), (0, 76))
    assert excinfo.value.field == "base_wave_freq"
    assert excinfo.value.value == freq or math.isnan(excinfo.value.value)


def test_domain_error_even_with_explicit_durations():
    with pytest.raises(DomainError):
        qs(0, 0.0, 3.1, (12, 22), (0, 76), 24, 16, 20)


def test_origin_hashes_to_zero():
    # sin(0) == 0 on the selected stream, and hash(0) == 0
    assert qs(0, 0.012, None, (12, 22), (0, 76)) == 0.0


@pytest.mark.parametrize("frame", [10**400, -(10**400)])
def test_coordinate_beyond_float_range_gives_nan(frame):
    assert math.isnan(qs(frame, 0.012, None, (12, 22), (0, 76)))
    state = qs_components(frame, 0.012, None, (12, 22), (0, 76), precision="single")
    assert math.isnan(state.stream1)
    assert math.isnan(state.stream2)
    assert math.isnan(state.value)


def test_single_precision_changes_only_the_hash():
    double = qs_components(103, **SAMPLE)
    single = qs_components(103, **SAMPLE, precision="single")
    assert single.stream1 == double.stream1
    assert single.stream2 == double.stream2
    assert single.selected_stream == double.selected_stream == 1
    assert single.value == portable_rand(int(double.stream1 * 100000.0), "single")

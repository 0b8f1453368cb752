import pytest

from e03_elite_ensemble import Engine_E03_EliteEnsemble as E03
from engine_core import (
    Confidence, CurveTools, Engine_E01_AthleteProfile, IntensityUnit, ThresholdMethod,
)


def test_ensemble_agreement_returns_log_log(elite_stages):
    profile = Engine_E01_AthleteProfile.run(elite_stages)
    th = E03.run(elite_stages, profile)
    assert th.method is ThresholdMethod.ELITE_LOG_LOG
    assert th.confidence is Confidence.HIGH
    assert th.value in (16.0, 17.0)
    assert "agree" in th.diagnostics.note


def test_ensemble_skips_standard_profile(standard_stages):
    profile = Engine_E01_AthleteProfile.run(standard_stages)
    assert E03.run(standard_stages, profile) is None


def test_ensemble_needs_five_points(elite_stages):
    short = elite_stages[:4]
    profile = Engine_E01_AthleteProfile.run(elite_stages)
    assert E03.run(short, profile) is None


def test_startle_filter_replaces_first_reading(make_stages):
    stages = make_stages([10, 11, 12, 13, 14], [2.0, 0.9, 0.9, 1.2, 2.5], [130, 140, 150, 160, 170])
    clean, filtered = E03._startle_filter(stages)
    assert filtered
    assert clean[0].lactate == pytest.approx(0.9)
    assert stages[0].lactate == pytest.approx(2.0)

    untouched, filtered = E03._startle_filter(stages[1:])
    assert not filtered


def test_baseline_plus_returns_stage_before_sustained_rise(elite_stages):
    th = E03._method_baseline_plus(elite_stages, elite=True)
    # limit 0.8 + 0.3 = 1.1; sustained from 17 km/h (1.3, 2.0) -> previous stage
    assert th.method is ThresholdMethod.ELITE_BASELINE_PLUS
    assert th.value == pytest.approx(16.0)
    assert th.confidence is Confidence.MEDIUM


def test_log_log_requires_rising_second_segment(make_stages):
    stages = make_stages([10, 11, 12, 13, 14, 15], [1.0] * 6, [130, 140, 150, 160, 170, 180])
    assert E03._method_log_log(stages) is None


def test_divergent_members_take_lower_intensity(monkeypatch, elite_stages):
    fast = CurveTools.make_threshold(172, 18.0, IntensityUnit.KMH, 2.0,
                                     ThresholdMethod.ELITE_LOG_LOG, Confidence.HIGH)
    slow = CurveTools.make_threshold(151, 15.0, IntensityUnit.KMH, 0.9,
                                     ThresholdMethod.ELITE_BASELINE_PLUS, Confidence.MEDIUM)
    monkeypatch.setattr(E03, "_method_log_log", classmethod(lambda cls, stages: fast))
    monkeypatch.setattr(E03, "_method_baseline_plus", classmethod(lambda cls, stages, elite=True: slow))

    profile = Engine_E01_AthleteProfile.run(elite_stages)
    th = E03.run(elite_stages, profile)
    assert th.value == pytest.approx(15.0)
    assert th.confidence is Confidence.MEDIUM
    assert "diverged" in th.diagnostics.note


def test_single_member_is_returned(monkeypatch, elite_stages):
    monkeypatch.setattr(E03, "_method_log_log", classmethod(lambda cls, stages: None))
    profile = Engine_E01_AthleteProfile.run(elite_stages)
    th = E03.run(elite_stages, profile)
    assert th.method is ThresholdMethod.ELITE_BASELINE_PLUS

import pytest

from engine_core import (
    Confidence, CurveTools, Engine_E02_ThresholdDetectors, IntensityUnit,
    ThresholdDetectionError, ThresholdKind, ThresholdMethod,
)
from e03_elite_ensemble import Engine_E03_EliteEnsemble
from orchestrator import ThresholdOrchestrator


def _fake(value, lactate, hr=170, method=ThresholdMethod.DMAX, conf=Confidence.HIGH):
    th = CurveTools.make_threshold(hr, value, IntensityUnit.KMH, lactate, method, conf)
    return staticmethod(lambda stages: th)


def test_standard_curve_thresholds(standard_stages):
    orch = ThresholdOrchestrator(standard_stages)
    lt1, lt2 = orch.run()
    assert lt1.method in (ThresholdMethod.DMAX, ThresholdMethod.LINEAR_2_0)
    assert 1.5 <= lt1.lactate <= 2.5
    assert lt2.method is ThresholdMethod.DMAX
    assert lt1.value < lt2.value
    assert orch.warnings == []
    assert orch.trail["LT1"][0] == ("MANUAL_LT1", "SKIPPED", "not applicable")
    assert orch.trail["LT2"][-1][1] == "ACCEPTED"


def test_elite_curve_uses_ensemble_and_mod_dmax(elite_stages):
    lt1, lt2 = ThresholdOrchestrator(elite_stages).run()
    assert lt1.method is ThresholdMethod.ELITE_LOG_LOG
    assert lt2.method is ThresholdMethod.MOD_DMAX
    assert lt1.value < lt2.value


def test_empty_stage_list_raises():
    with pytest.raises(ThresholdDetectionError):
        ThresholdOrchestrator([]).run()


def test_detection_error_is_a_value_error():
    assert issubclass(ThresholdDetectionError, ValueError)


def test_manual_lt1_override(standard_stages):
    orch = ThresholdOrchestrator(standard_stages, lt1_override={"lactate": 2.1, "intensity": 11.5})
    lt1, lt2 = orch.run()
    assert lt1.method is ThresholdMethod.MANUAL_LT1
    assert lt1.confidence is Confidence.HIGH
    assert lt1.value == pytest.approx(11.5)
    assert lt1.lactate == pytest.approx(2.1)
    # HR interpolated between 11 km/h (156) and 12 km/h (164)
    assert lt1.heart_rate == 160
    assert lt2.method is ThresholdMethod.DMAX


def test_manual_lt2_override_outside_tested_range(standard_stages):
    orch = ThresholdOrchestrator(standard_stages, lt2_override={"lactate": 12.0, "intensity": 16.0})
    _, lt2 = orch.run()
    assert lt2.method is ThresholdMethod.MANUAL_LT2
    assert lt2.value == pytest.approx(16.0)
    assert lt2.lactate == pytest.approx(12.0)
    # closest stage (15 km/h) HR
    assert lt2.heart_rate == 184


def test_manual_threshold_is_not_recomputed(standard_stages):
    orch = ThresholdOrchestrator(standard_stages, lt1_override={"lactate": 2.0, "intensity": 14.5})
    lt1, lt2 = orch.run()
    assert lt1.method is ThresholdMethod.MANUAL_LT1
    assert lt1.value > lt2.value
    assert any("manual threshold kept" in w for w in orch.warnings)


def test_inverted_thresholds_recompute_lt1(monkeypatch, standard_stages):
    # D-max at 14 km/h / 2.0 mmol/L: valid as LT1, too close to baseline for LT2
    monkeypatch.setattr(Engine_E02_ThresholdDetectors, "dmax", _fake(14.0, 2.0))
    orch = ThresholdOrchestrator(standard_stages)
    lt1, lt2 = orch.run()
    assert lt2.method is ThresholdMethod.DICKHUTH
    assert lt1.method is ThresholdMethod.LINEAR_2_0
    assert lt1.value == pytest.approx(11.1)
    assert lt1.value < lt2.value
    assert len(orch.warnings) == 1
    assert ("SANITY_CHECK", "RECOMPUTED", "LT1 >= LT2") in orch.trail["LT1"]


def test_steep_curve_rejects_low_dmax(monkeypatch, steep_stages):
    monkeypatch.setattr(Engine_E02_ThresholdDetectors, "dmax", _fake(11.8, 2.8))
    orch = ThresholdOrchestrator(steep_stages)
    lt1, lt2 = orch.run()

    outcomes = {name: (outcome, reason) for name, outcome, reason in orch.trail["LT2"]}
    assert outcomes["DMAX"][0] == "REJECTED"
    assert "steep" in outcomes["DMAX"][1]
    # Dickhuth lands at 2.5 mmol/L, also implausible for a peak of 12
    assert outcomes["DICKHUTH"][0] == "REJECTED"
    assert lt2.method is ThresholdMethod.FIXED_4_0
    assert lt2.lactate == 4.0
    assert lt1.value < lt2.value


def test_steep_curve_never_accepts_low_dmax(steep_stages):
    _, lt2 = ThresholdOrchestrator(steep_stages).run()
    assert not (lt2.method is ThresholdMethod.DMAX and lt2.lactate < 3.0)


def test_low_confidence_steps_fall_through(monkeypatch, standard_stages):
    monkeypatch.setattr(Engine_E02_ThresholdDetectors, "dmax",
                        _fake(12.5, 3.0, conf=Confidence.LOW))
    orch = ThresholdOrchestrator(standard_stages)
    _, lt2 = orch.run()
    assert ("DMAX", "REJECTED", "low confidence") in orch.trail["LT2"]
    assert lt2.method is ThresholdMethod.DICKHUTH


def test_lt1_terminal_nearest_stage(make_stages):
    # never crosses 2.0, baseline too high for the elite path
    stages = make_stages([8, 9, 10, 11], [1.6, 1.7, 1.8, 1.9], [130, 140, 150, 160])
    orch = ThresholdOrchestrator(stages)
    lt1 = orch._run_chain(ThresholdKind.LT1, orch.lt1_chain())
    assert lt1.method is ThresholdMethod.NEAREST_STAGE
    assert lt1.confidence is Confidence.LOW


def test_low_flat_curve_keeps_lt1_below_lt2(make_stages):
    # never reaches 2.0: both chains and the 2.0 recompute land on the last stage
    stages = make_stages([8, 9, 10, 11, 12], [0.8, 0.9, 1.0, 1.1, 1.2], [130, 140, 150, 160, 170])
    orch = ThresholdOrchestrator(stages)
    lt1, lt2 = orch.run()
    assert lt2.value == pytest.approx(12.0)
    assert lt1.value < lt2.value
    assert lt1.value == pytest.approx(11.0)
    assert lt1.heart_rate == 160
    assert lt1.method is ThresholdMethod.NEAREST_STAGE
    assert lt1.confidence is Confidence.LOW
    assert orch.trail["LT1"][-2] == ("SANITY_CHECK", "RECOMPUTED", "LT1 >= LT2")
    assert orch.trail["LT1"][-1][:2] == ("SANITY_CHECK", "STEPPED_DOWN")
    assert any("moved to the last stage below LT2" in w for w in orch.warnings)


@pytest.mark.parametrize("lactates", [
    [0.8, 0.9, 1.0, 1.1],
    [1.0, 1.0, 1.1, 1.2, 1.3, 1.4],
    [1.5, 1.6, 1.7, 1.8, 1.9],
    [0.6, 0.6, 0.7, 0.7, 0.8, 0.9, 1.0],
])
def test_non_decreasing_curves_order_thresholds(make_stages, lactates):
    n = len(lactates)
    stages = make_stages(list(range(8, 8 + n)), lactates, [130 + 8 * i for i in range(n)])
    lt1, lt2 = ThresholdOrchestrator(stages).run()
    assert lt1.value < lt2.value


def test_pace_flat_curve_steps_down_to_slower_stage(make_stages):
    stages = make_stages([6.0, 5.5, 5.0, 4.6, 4.3], [0.8, 0.9, 1.0, 1.1, 1.2],
                         [130, 140, 150, 160, 170], unit=IntensityUnit.MIN_KM)
    lt1, lt2 = ThresholdOrchestrator(stages).run()
    assert lt2.is_harder_than(lt1)
    assert lt1.value > lt2.value


def test_chain_thresholds_have_zero_percent_until_max_hr_known(standard_stages):
    lt1, lt2 = ThresholdOrchestrator(standard_stages).run()
    assert lt1.percent_of_max == 0 and lt2.percent_of_max == 0
    assert isinstance(lt1.to_dict()["percent_of_max"], int)
    assert lt2.with_percent_of_max(200).percent_of_max == round(lt2.heart_rate / 200 * 100)
    assert lt2.with_percent_of_max(None).percent_of_max == 0


def test_elite_curve_below_2mmol_uses_baseline_plus(monkeypatch, make_stages):
    monkeypatch.setattr(Engine_E03_EliteEnsemble, "run", staticmethod(lambda stages, profile: None))
    stages = make_stages([12, 13, 14, 15, 16, 17], [0.7, 0.7, 0.72, 0.85, 1.05, 1.6],
                         [130, 138, 146, 154, 162, 170])
    orch = ThresholdOrchestrator(stages)
    assert orch.profile.is_elite
    lt1 = orch._run_chain(ThresholdKind.LT1, orch.lt1_chain())
    assert lt1.method is ThresholdMethod.BASELINE_PLUS_0_3
    assert lt1.confidence is Confidence.MEDIUM
    # baseline 0.7 + 0.3 -> nearest stage 1.05 mmol/L @ 16 km/h
    assert lt1.value == pytest.approx(16.0)


def test_pace_thresholds_ordered_by_effort(pace_stages):
    orch = ThresholdOrchestrator(pace_stages)
    lt1, lt2 = orch.run()
    assert lt1.unit is IntensityUnit.MIN_KM
    # slower pace (bigger number) at LT1
    assert lt1.value > lt2.value
    assert lt2.is_harder_than(lt1)
    assert orch.warnings == []


def test_candidates_and_concordance(standard_stages):
    orch = ThresholdOrchestrator(standard_stages)
    cands = orch.candidates()
    assert set(cands) == {"linear_2.0", "elite_ensemble", "dmax", "mod_dmax",
                          "dickhuth", "fixed_4.0", "exponential_rise"}
    assert cands["elite_ensemble"] is None
    conc = ThresholdOrchestrator.concordance(cands)
    assert conc["lt1_consensus"]["n_methods"] == 1
    assert conc["lt2_consensus"]["n_methods"] == 5
    assert conc["lt2_consensus"]["unit"] == "km/h"
    assert conc["lt2_consensus"]["confidence"] in ("HIGH", "MODERATE", "LOW")


def test_concordance_without_candidates():
    conc = ThresholdOrchestrator.concordance({})
    assert conc["lt1_consensus"]["consensus_value"] is None
    assert conc["lt2_consensus"]["n_methods"] == 0

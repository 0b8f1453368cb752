import pytest

from e06_fitness_estimation import Engine_E06_FitnessEstimation as E06
from engine_core import Confidence, ZoneMethod


@pytest.mark.parametrize("vo2, level", [
    (30.0, "UNTRAINED"),
    (34.9, "UNTRAINED"),
    (35.0, "BEGINNER"),
    (45.0, "RECREATIONAL"),
    (52.0, "TRAINED"),
    (60.0, "WELL_TRAINED"),
    (65.0, "ELITE"),
    (80.0, "ELITE"),
])
def test_level_from_vo2max(vo2, level):
    assert E06.level_from_vo2max(vo2) == level


def test_vdot_has_priority():
    est = E06.run(vdot=60, watch_vo2max=30, experience="BEGINNER")
    assert est.source == "VDOT"
    assert est.estimated_vo2max == pytest.approx(57.0)
    assert est.level == "WELL_TRAINED"
    assert est.confidence is Confidence.HIGH
    assert (est.lt1_pct_hrmax, est.lt2_pct_hrmax) == (76.0, 90.0)


def test_watch_estimate():
    est = E06.run(watch_vo2max=42)
    assert est.source == "WATCH_ESTIMATE"
    assert est.level == "RECREATIONAL"


def test_race_time_estimate():
    # 10K in 40 min
    est = E06.run(race=("10K", 40.0))
    assert est.source == "RACE_TIME"
    assert est.confidence is Confidence.HIGH
    assert est.estimated_vo2max > 45


def test_ftp_per_kg_estimate():
    est = E06.run(ftp_w=300, body_mass_kg=75)
    assert est.source == "FTP"
    assert est.estimated_vo2max == pytest.approx((4.0 * 10.8 + 7) / 0.75, abs=0.1)
    assert est.level == "ELITE"


def test_ftp_without_mass_is_ignored():
    assert E06.run(ftp_w=300).source == "DEFAULT"


def test_experience_adjusted_by_hours():
    est = E06.run(experience="beginner", weekly_hours=7)
    assert est.source == "COMBINED"
    assert est.estimated_vo2max == pytest.approx(40.0)
    assert est.level == "RECREATIONAL"
    assert est.confidence is Confidence.MEDIUM


def test_resting_hr_estimate():
    est = E06.run(resting_hr=50, age=40, sex="male")
    # 15.3 * 180 / 50
    assert est.estimated_vo2max == pytest.approx(55.1, abs=0.05)
    assert est.level == "WELL_TRAINED"
    assert est.confidence is Confidence.LOW
    assert E06.run(resting_hr=50, max_hr=190).confidence is Confidence.MEDIUM


def test_default_is_recreational_low():
    est = E06.run()
    assert est.level == "RECREATIONAL"
    assert est.confidence is Confidence.LOW
    assert est.estimated_vo2max is None
    assert est.to_dict()["confidence"] == "LOW"


def test_from_level_with_overrides():
    est = E06.from_level("trained")
    assert (est.lt1_pct_hrmax, est.lt2_pct_hrmax) == (72.0, 87.0)
    est = E06.from_level("TRAINED", lt1_pct=70, lt2_pct=88)
    assert (est.lt1_pct_hrmax, est.lt2_pct_hrmax) == (70.0, 88.0)
    with pytest.raises(ValueError):
        E06.from_level("SUPERHUMAN")


def test_novice_warnings():
    assert len(E06.novice_warnings(E06.from_level("UNTRAINED"))) == 1
    assert len(E06.novice_warnings(E06.from_level("BEGINNER", confidence=Confidence.LOW))) == 2
    assert E06.novice_warnings(E06.from_level("ELITE")) == []


def test_estimated_zones_for_athlete_without_test():
    zones, est, warns = E06.estimated_zones(age=40, sex="male", experience="ELITE")
    assert est.level == "WELL_TRAINED"
    assert zones.method is ZoneMethod.ESTIMATED
    assert zones.zone(5).hr_max == 180
    assert zones.zone(2).hr_max == round(180 * 0.76) + 5
    assert warns == []

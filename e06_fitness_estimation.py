"""
E06 — Fitness Level Estimation
===============================
Standalone module. Szacuje poziom wytrenowania gdy nie ma testu laktatowego,
żeby strefy Tier B (% HRmax) uwzględniały "accordion effect":

| Level        | VO2max  | LT1 %HRmax | LT2 %HRmax |
|--------------|---------|------------|------------|
| UNTRAINED    | < 35    | 58         | 78         |
| BEGINNER     | 35-40   | 63         | 80         |
| RECREATIONAL | 40-50   | 68         | 84         |
| TRAINED      | 50-55   | 72         | 87         |
| WELL_TRAINED | 55-65   | 76         | 90         |
| ELITE        | >= 65   | 78         | 93         |

Priorytet źródeł:
  VDOT -> watch VO2max -> wynik zawodów -> FTP/kg -> CSS
  -> doświadczenie (+ godziny/tydz.) -> HR spoczynkowe (Uth 2004) -> default.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from engine_core import Confidence, ZoneCalculationResult
from e05_zones import Engine_E05_Zones


FITNESS_LEVEL_THRESHOLDS = {
    "UNTRAINED":    {"vo2max_max": 35, "lt1_pct": 58, "lt2_pct": 78},
    "BEGINNER":     {"vo2max_max": 40, "lt1_pct": 63, "lt2_pct": 80},
    "RECREATIONAL": {"vo2max_max": 50, "lt1_pct": 68, "lt2_pct": 84},
    "TRAINED":      {"vo2max_max": 55, "lt1_pct": 72, "lt2_pct": 87},
    "WELL_TRAINED": {"vo2max_max": 65, "lt1_pct": 76, "lt2_pct": 90},
    "ELITE":        {"vo2max_max": None, "lt1_pct": 78, "lt2_pct": 93},
}

EXPERIENCE_TO_VO2MAX = {"BEGINNER": 38, "INTERMEDIATE": 45, "ADVANCED": 52, "ELITE": 60}
EXPERIENCE_BASE_HOURS = {"BEGINNER": 3, "INTERMEDIATE": 5, "ADVANCED": 8, "ELITE": 12}

RACE_DISTANCE_M = {
    "1500M": 1500.0,
    "1_MILE": 1609.34,
    "3K": 3000.0,
    "5K": 5000.0,
    "10K": 10000.0,
    "HALF_MARATHON": 21097.5,
    "MARATHON": 42195.0,
}


@dataclass(frozen=True)
class FitnessEstimate:
    level: str
    estimated_vo2max: Optional[float]
    confidence: Confidence
    source: str
    lt1_pct_hrmax: float
    lt2_pct_hrmax: float

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["confidence"] = self.confidence.value
        return d


class Engine_E06_FitnessEstimation:

    @staticmethod
    def level_from_vo2max(vo2max: float) -> str:
        for level, row in FITNESS_LEVEL_THRESHOLDS.items():
            if row["vo2max_max"] is not None and vo2max < row["vo2max_max"]:
                return level
        return "ELITE"

    @staticmethod
    def threshold_percents(level: str) -> Tuple[float, float]:
        row = FITNESS_LEVEL_THRESHOLDS.get(str(level).upper())
        if row is None:
            raise ValueError(f"Unknown fitness level: {level!r}")
        return float(row["lt1_pct"]), float(row["lt2_pct"])

    @classmethod
    def from_level(cls, level: str, confidence: Confidence = Confidence.MEDIUM,
                   lt1_pct: Optional[float] = None, lt2_pct: Optional[float] = None) -> FitnessEstimate:
        """Estimate from a declared level, optionally with explicit %HRmax overrides."""
        p1, p2 = cls.threshold_percents(level)
        return FitnessEstimate(
            level=str(level).upper(),
            estimated_vo2max=None,
            confidence=confidence,
            source="DECLARED",
            lt1_pct_hrmax=float(lt1_pct) if lt1_pct else p1,
            lt2_pct_hrmax=float(lt2_pct) if lt2_pct else p2,
        )

    # ─── VO2max z różnych źródeł ───

    @staticmethod
    def vo2max_from_vdot(vdot: float) -> float:
        return vdot * 0.95

    @staticmethod
    def vdot_from_race(distance: str, time_min: float) -> float:
        """Uproszczona aproksymacja tablic Danielsa."""
        meters = RACE_DISTANCE_M[distance]
        velocity = meters / time_min  # m/min
        if time_min <= 10:
            pct = 98
        elif time_min <= 20:
            pct = 95
        elif time_min <= 40:
            pct = 90
        elif time_min <= 60:
            pct = 85
        elif time_min <= 120:
            pct = 80
        elif time_min <= 180:
            pct = 75
        else:
            pct = 70
        vo2 = velocity * 0.2 + 3.5
        return vo2 / pct * 100

    @staticmethod
    def vo2max_from_ftp(ftp_w: float, mass_kg: float) -> float:
        # VO2 @ FTP ≈ FTP/kg × 10.8 + 7, FTP ≈ 75% VO2max
        return (ftp_w / mass_kg * 10.8 + 7) / 0.75

    @staticmethod
    def vo2max_from_css(css_s_per_100m: float) -> float:
        velocity = 100.0 / css_s_per_100m * 60
        return (velocity * 0.5 + 10) / 0.86

    # ─── GŁÓWNA FUNKCJA ───

    @classmethod
    def run(cls, vdot: Optional[float] = None,
            watch_vo2max: Optional[float] = None,
            race: Optional[Tuple[str, float]] = None,
            ftp_w: Optional[float] = None,
            body_mass_kg: Optional[float] = None,
            css_s_per_100m: Optional[float] = None,
            experience: Optional[str] = None,
            weekly_hours: Optional[float] = None,
            resting_hr: Optional[float] = None,
            max_hr: Optional[float] = None,
            age: Optional[int] = None,
            sex: str = "") -> FitnessEstimate:
        """
        Parameters
        ----------
        race       : (distance key from RACE_DISTANCE_M, time in minutes)
        experience : BEGINNER | INTERMEDIATE | ADVANCED | ELITE
        """
        vo2, conf, source = None, Confidence.LOW, "DEFAULT"

        if vdot and vdot > 0:
            vo2, conf, source = cls.vo2max_from_vdot(vdot), Confidence.HIGH, "VDOT"
        elif watch_vo2max and watch_vo2max > 0:
            vo2, conf, source = float(watch_vo2max), Confidence.HIGH, "WATCH_ESTIMATE"
        elif race:
            distance, time_min = race
            vo2 = cls.vo2max_from_vdot(cls.vdot_from_race(distance, time_min))
            conf, source = Confidence.HIGH, "RACE_TIME"
        elif ftp_w and ftp_w > 0 and body_mass_kg and body_mass_kg > 0:
            vo2, conf, source = cls.vo2max_from_ftp(ftp_w, body_mass_kg), Confidence.HIGH, "FTP"
        elif css_s_per_100m and css_s_per_100m > 0:
            vo2, conf, source = cls.vo2max_from_css(css_s_per_100m), Confidence.HIGH, "CSS"
        elif experience:
            key = experience.upper()
            vo2 = float(EXPERIENCE_TO_VO2MAX[key])
            source = "EXPERIENCE"
            if weekly_hours:
                diff = weekly_hours - EXPERIENCE_BASE_HOURS[key]
                vo2 += min(5.0, max(-5.0, diff * 0.5))
                source = "COMBINED"
            conf = Confidence.MEDIUM
        elif resting_hr and resting_hr > 0:
            hr_max = max_hr or (Engine_E05_Zones.estimate_max_hr(age, sex) if age else None)
            if hr_max:
                vo2 = 15.3 * (hr_max / resting_hr)
                conf = Confidence.MEDIUM if max_hr else Confidence.LOW
                source = "RESTING_HR"

        level = cls.level_from_vo2max(vo2) if vo2 is not None else "RECREATIONAL"
        p1, p2 = cls.threshold_percents(level)
        return FitnessEstimate(
            level=level,
            estimated_vo2max=round(vo2, 1) if vo2 is not None else None,
            confidence=conf,
            source=source,
            lt1_pct_hrmax=p1,
            lt2_pct_hrmax=p2,
        )

    @staticmethod
    def novice_warnings(estimate: FitnessEstimate) -> List[str]:
        warns = []
        if estimate.level == "UNTRAINED":
            warns.append("Zone 2 is very narrow. Walk/run intervals (e.g. 2 min run, 1 min walk) "
                         "help to stay at the right intensity.")
        elif estimate.level == "BEGINNER":
            warns.append("Zone 2 is fairly narrow. Consider walk/run intervals to stay in the easy zone.")
        if estimate.confidence is Confidence.LOW:
            warns.append("Zones are estimated with low confidence. A field test or a lactate test "
                         "gives more accurate zones.")
        return warns

    @classmethod
    def estimated_zones(cls, age: Optional[int], sex: str = "",
                        max_hr: Optional[float] = None,
                        **fitness_inputs) -> Tuple[ZoneCalculationResult, FitnessEstimate, List[str]]:
        """Zones for an athlete without any test data: fitness estimate + Tier B."""
        estimate = cls.run(age=age, sex=sex, max_hr=max_hr, **fitness_inputs)
        zones = Engine_E05_Zones.run(max_hr=max_hr, age=age, sex=sex, fitness=estimate)
        return zones, estimate, cls.novice_warnings(estimate)

# ==========================================
# ENGINE CORE — LACTATE THRESHOLDS (LT1 / LT2)
# ==========================================
#
# RESEARCH BASIS:
# ───────────────────────────────────────────
# LT1 (Aerobic Threshold):
#   1. Linear interpolation @ 2.0 mmol/L     (Kindermann 1979)
#   2. Dmax, gated to 1.5-2.5 mmol/L          (Cheng 1992)
#   3. Log-Log breakpoint (elite)             (Beaver 1985) -> e03_elite_ensemble
#   4. Baseline + 0.3 mmol/L (elite)          (Berg 1990, adapted)
#
# LT2 (Anaerobic Threshold):
#   5. Modified Dmax (elite)                  (Bishop 1998)
#   6. Dmax                                   (Cheng 1992)
#   7. Min Lactate Eq + 1.5                   (Dickhuth 1999)
#   8. OBLA 4.0 mmol/L                        (Mader 1976, Heck 1985)
#   9. Exponential rise (diagnostic)          (first delta > 0.5 mmol/L)
#
# References:
#   - Cheng et al. 1992: 3rd order polynomial, max perpendicular distance
#   - Bishop et al. 1998: ModDmax start = point before first +0.4 rise
#   - Fabre et al. 2010: ModDmax r=0.99 vs VT2 in elite skiers
# ───────────────────────────────────────────

import numpy as np
import warnings
from dataclasses import dataclass, replace, asdict
from enum import Enum
from typing import Dict, Tuple, Optional, Any, Sequence

from scipy.stats import linregress


# ─── SEKCJA 0: TYPY I REKORDY ───

class IntensityUnit(str, Enum):
    KMH = "km/h"
    WATT = "watt"
    MIN_KM = "min/km"

    @property
    def inverted(self) -> bool:
        """Pace: lower number = harder effort."""
        return self is IntensityUnit.MIN_KM

    @property
    def decimals(self) -> int:
        return 2 if self is IntensityUnit.MIN_KM else 1


class ProfileType(str, Enum):
    ELITE_FLAT = "ELITE_FLAT"
    STANDARD = "STANDARD"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ThresholdKind(str, Enum):
    LT1 = "LT1"
    LT2 = "LT2"


class ThresholdMethod(str, Enum):
    MANUAL_LT1 = "MANUAL_LT1"
    MANUAL_LT2 = "MANUAL_LT2"
    ELITE_LOG_LOG = "ELITE_LOG_LOG"
    ELITE_BASELINE_PLUS = "ELITE_BASELINE_PLUS"
    BASELINE_PLUS_0_3 = "BASELINE_PLUS_0.3"
    DMAX = "DMAX"
    MOD_DMAX = "BISHOP_MOD_DMAX"
    LINEAR_2_0 = "LINEAR_2.0"
    FIXED_4_0 = "FIXED_4.0"
    LINEAR = "LINEAR"
    DICKHUTH = "DICKHUTH"
    DICKHUTH_ESTIMATED = "DICKHUTH_ESTIMATED"
    EXPONENTIAL_RISE = "EXPONENTIAL_RISE"
    NEAREST_STAGE = "ESTIMATED"


class ZoneMethod(str, Enum):
    LACTATE_TEST = "LACTATE_TEST"
    FIELD_TEST = "FIELD_TEST"
    ESTIMATED = "ESTIMATED"


class ThresholdDetectionError(ValueError):
    """No step of a threshold chain could produce an estimate."""


@dataclass(frozen=True)
class StageDatapoint:
    """
    Jeden stopień testu laktatowego.
    intensity jest w jednostce `unit` (km/h, W albo min/km).
    """
    sequence: int
    heart_rate: float
    lactate: float
    intensity: float
    unit: IntensityUnit = IntensityUnit.KMH

    @property
    def speed(self) -> Optional[float]:
        return self.intensity if self.unit is IntensityUnit.KMH else None

    @property
    def power(self) -> Optional[float]:
        return self.intensity if self.unit is IntensityUnit.WATT else None

    @property
    def pace(self) -> Optional[float]:
        return self.intensity if self.unit is IntensityUnit.MIN_KM else None

    @property
    def effort(self) -> float:
        """Intensity that grows with effort (pace min/km -> km/h)."""
        if self.unit is IntensityUnit.MIN_KM:
            return 60.0 / self.intensity if self.intensity > 0 else 0.0
        return self.intensity


@dataclass(frozen=True)
class AthleteProfile:
    profile_type: ProfileType
    baseline_avg: float
    baseline_slope: float
    max_lactate: float
    lactate_range: float
    n_points: int = 0

    @property
    def is_elite(self) -> bool:
        return self.profile_type is ProfileType.ELITE_FLAT


@dataclass(frozen=True)
class ThresholdDiagnostics:
    r2: Optional[float] = None
    coefficients: Tuple[float, ...] = ()
    dmax_distance: Optional[float] = None
    note: str = ""


@dataclass(frozen=True)
class Threshold:
    heart_rate: int
    value: float
    unit: IntensityUnit
    lactate: float
    method: ThresholdMethod
    confidence: Confidence
    percent_of_max: int = 0               # uzupełniane przez with_percent_of_max
    diagnostics: Optional[ThresholdDiagnostics] = None

    def with_percent_of_max(self, max_hr: Optional[float]) -> "Threshold":
        if not max_hr or max_hr <= 0:
            return self
        pct = int(round(self.heart_rate / float(max_hr) * 100))
        return replace(self, percent_of_max=max(0, min(100, pct)))

    def is_harder_than(self, other: "Threshold") -> bool:
        """Effort ordering that respects inverted pace units."""
        if self.unit.inverted:
            return self.value < other.value
        return self.value > other.value

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


@dataclass(frozen=True)
class TrainingZone:
    zone: int
    name: str
    intensity: str
    hr_min: int
    hr_max: int
    percent_min: int
    percent_max: int
    effect: str
    speed_min: Optional[float] = None
    speed_max: Optional[float] = None
    power_min: Optional[float] = None
    power_max: Optional[float] = None
    pace_min: Optional[float] = None
    pace_max: Optional[float] = None


@dataclass(frozen=True)
class ZoneCalculationResult:
    zones: Tuple[TrainingZone, ...]
    confidence: Confidence
    method: ZoneMethod
    warning: Optional[str] = None

    def zone(self, number: int) -> TrainingZone:
        return self.zones[number - 1]

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


def record_to_dict(rec) -> Dict[str, Any]:
    """dataclass -> plain dict, enums flattened to their tag strings."""
    def _conv(v):
        if isinstance(v, Enum):
            return v.value
        if isinstance(v, dict):
            return {k: _conv(x) for k, x in v.items()}
        if isinstance(v, (list, tuple)):
            return [_conv(x) for x in v]
        return v
    return _conv(asdict(rec))


# ─── SEKCJA 1: NARZĘDZIA KRZYWEJ ───

class CurveTools:
    """Shared numeric helpers for the detectors (polyfit, R², chord distance, brackets)."""

    BASELINE_FRACTION = 0.4

    @staticmethod
    def arrays(stages: Sequence[StageDatapoint]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        x = np.array([s.intensity for s in stages], dtype=float)
        y = np.array([s.lactate for s in stages], dtype=float)
        hr = np.array([s.heart_rate for s in stages], dtype=float)
        return x, y, hr

    @staticmethod
    def fit_polynomial(x: np.ndarray, y: np.ndarray, degree: int = 3) -> Optional[np.ndarray]:
        """Fit polynomial of given degree, return coefficients or None."""
        if len(x) < degree + 1:
            return None
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                coeffs = np.polyfit(x, y, degree)
        except (np.linalg.LinAlgError, ValueError):
            return None
        if not np.all(np.isfinite(coeffs)):
            return None
        return coeffs

    @staticmethod
    def calc_r2(x: np.ndarray, y: np.ndarray, coeffs: np.ndarray) -> float:
        y_pred = np.polyval(coeffs, x)
        ss_res = float(np.sum((y - y_pred) ** 2))
        ss_tot = float(np.sum((y - np.mean(y)) ** 2))
        if ss_tot == 0:
            return 0.0
        return 1.0 - ss_res / ss_tot

    @staticmethod
    def perpendicular_distance(px, py, x1, y1, x2, y2):
        """
        Odległość prostopadła punktu (px, py) od linii (x1,y1)-(x2,y2).
        Działa także na tablicach numpy.
        """
        num = np.abs((y2 - y1) * px - (x2 - x1) * py + x2 * y1 - y2 * x1)
        den = np.sqrt((y2 - y1) ** 2 + (x2 - x1) ** 2)
        if den == 0:
            return np.zeros_like(np.asarray(px, dtype=float))
        return num / den

    @staticmethod
    def interp_hr(stages: Sequence[StageDatapoint], intensity: float) -> float:
        x, _, hr = CurveTools.arrays(stages)
        order = np.argsort(x)
        return float(np.interp(intensity, x[order], hr[order]))

    @staticmethod
    def bracket(stages: Sequence[StageDatapoint], target: float
                ) -> Tuple[Optional[StageDatapoint], Optional[StageDatapoint]]:
        """Last stage <= target before the first stage > target, and that stage."""
        below, above = None, None
        for s in stages:
            if s.lactate <= target:
                below = s
            else:
                above = s
                break
        return below, above

    @staticmethod
    def interpolate_pair(below: StageDatapoint, above: StageDatapoint,
                         target: float) -> Tuple[float, float]:
        """(heart_rate, intensity) at `target` lactate between two stages."""
        span = above.lactate - below.lactate
        factor = (target - below.lactate) / span if span != 0 else 0.0
        hr = below.heart_rate + factor * (above.heart_rate - below.heart_rate)
        intensity = below.intensity + factor * (above.intensity - below.intensity)
        return hr, intensity

    @staticmethod
    def closest_by_lactate(stages: Sequence[StageDatapoint], target: float) -> Optional[StageDatapoint]:
        if not stages:
            return None
        return min(stages, key=lambda s: abs(s.lactate - target))

    @staticmethod
    def trimmed_baseline(lactates: Sequence[float]) -> float:
        """Mean of the first 40% of readings (min 2) with the highest one dropped."""
        n_base = max(2, int(np.floor(len(lactates) * CurveTools.BASELINE_FRACTION)))
        head = sorted(lactates[:n_base])
        if len(head) >= 2:
            head = head[:-1]
        return float(np.mean(head)) if head else 0.0

    @staticmethod
    def make_threshold(heart_rate: float, intensity: float, unit: IntensityUnit,
                       lactate: float, method: ThresholdMethod, confidence: Confidence,
                       diagnostics: Optional[ThresholdDiagnostics] = None) -> Threshold:
        return Threshold(
            heart_rate=int(round(heart_rate)),
            value=round(float(intensity), unit.decimals),
            unit=unit,
            lactate=round(float(lactate), 2),
            method=method,
            confidence=confidence,
            diagnostics=diagnostics,
        )


# ==========================================
# ENGINE E01 — ATHLETE PROFILE CLASSIFIER
# ==========================================

class Engine_E01_AthleteProfile:
    """
    E01: klasyfikacja profilu krzywej laktatowej.

    ELITE_FLAT: niski i płaski baseline (< 1.5 mmol/L, |slope| < 0.05 / jedn.)
    STANDARD:   wszystko inne (w tym < 4 punkty).
    """

    MIN_POINTS = 4
    ELITE_BASELINE_MAX = 1.5
    ELITE_SLOPE_MAX = 0.05

    @classmethod
    def run(cls, stages: Sequence[StageDatapoint]) -> AthleteProfile:
        stages = [s for s in stages if s.intensity > 0]
        lactates = [s.lactate for s in stages]
        max_la = max(lactates) if lactates else 0.0

        if len(stages) < cls.MIN_POINTS:
            baseline_avg = lactates[0] if lactates else 1.5
            return AthleteProfile(
                profile_type=ProfileType.STANDARD,
                baseline_avg=baseline_avg,
                baseline_slope=0.0,
                max_lactate=max_la,
                lactate_range=(max_la - baseline_avg) if lactates else 0.0,
                n_points=len(stages),
            )

        baseline_avg = CurveTools.trimmed_baseline(lactates)
        slope = cls._baseline_slope(stages)

        is_elite = baseline_avg < cls.ELITE_BASELINE_MAX and abs(slope) < cls.ELITE_SLOPE_MAX
        return AthleteProfile(
            profile_type=ProfileType.ELITE_FLAT if is_elite else ProfileType.STANDARD,
            baseline_avg=round(baseline_avg, 3),
            baseline_slope=round(slope, 4),
            max_lactate=max_la,
            lactate_range=round(max_la - baseline_avg, 3),  # szczyt ponad baseline
            n_points=len(stages),
        )

    @staticmethod
    def _baseline_slope(stages: Sequence[StageDatapoint]) -> float:
        n_base = max(2, int(np.floor(len(stages) * CurveTools.BASELINE_FRACTION)))
        head = stages[:n_base]
        x = np.array([s.effort for s in head], dtype=float)
        y = np.array([s.lactate for s in head], dtype=float)
        if np.ptp(x) == 0:
            return 0.0
        return float(linregress(x, y).slope)


# ==========================================
# ENGINE E02 — THRESHOLD DETECTORS
# ==========================================

class Engine_E02_ThresholdDetectors:
    """
    E02: niezależne detektory progów.

    Każdy detektor: (stages, ...) -> Threshold | None.
    None = metoda nie może ocenić danych. Walidacja fizjologiczna
    (zakresy mmol/L, odrzucanie LOW) należy do orchestratora.
    """

    MIN_CURVE_POINTS = 4
    MIN_SIMPLE_POINTS = 3
    DMAX_SAMPLES = 1001
    DMAX_EDGE_MARGIN = 0.05
    R2_MIN = 0.90
    R2_HIGH = 0.95
    REL_DIST_LOW = 0.05
    REL_DIST_HIGH = 0.10
    BISHOP_RISE = 0.4
    OBLA_MMOL = 4.0

    # ─── SEKCJA 2: INTERPOLACJA LINIOWA / NAJBLIŻSZY STOPIEŃ ───

    @staticmethod
    def nearest_stage(stages: Sequence[StageDatapoint], target: float,
                      method: ThresholdMethod = ThresholdMethod.NEAREST_STAGE) -> Optional[Threshold]:
        """Stage with lactate closest to target, always LOW confidence."""
        s = CurveTools.closest_by_lactate(stages, target)
        if s is None:
            return None
        return CurveTools.make_threshold(
            s.heart_rate, s.intensity, s.unit, s.lactate, method, Confidence.LOW,
            ThresholdDiagnostics(note=f"nearest stage to {target:.1f} mmol/L (seq {s.sequence})"),
        )

    @staticmethod
    def linear_interpolation(stages: Sequence[StageDatapoint], target: float,
                             method: ThresholdMethod = ThresholdMethod.LINEAR,
                             allow_estimate: bool = True) -> Optional[Threshold]:
        """
        Interpolacja liniowa HR i intensywności w punkcie La = target.
        Brak przejścia przez target -> najbliższy stopień (allow_estimate)
        albo None.
        """
        if not stages:
            return None
        below, above = CurveTools.bracket(stages, target)
        if below is None or above is None:
            if not allow_estimate:
                return None
            return Engine_E02_ThresholdDetectors.nearest_stage(stages, target)
        hr, intensity = CurveTools.interpolate_pair(below, above, target)
        return CurveTools.make_threshold(hr, intensity, below.unit, target, method, Confidence.MEDIUM)

    # ─── SEKCJA 3: DMAX / MODIFIED DMAX ───

    @classmethod
    def _confidence(cls, r2: float, distance: float, la_range: float) -> Confidence:
        if r2 < cls.R2_MIN or la_range <= 0:
            return Confidence.LOW
        rel = distance / la_range
        if rel < cls.REL_DIST_LOW:
            return Confidence.LOW
        if r2 >= cls.R2_HIGH and rel >= cls.REL_DIST_HIGH:
            return Confidence.HIGH
        return Confidence.MEDIUM

    @classmethod
    def _dmax_from(cls, stages: Sequence[StageDatapoint], start_idx: int,
                   method: ThresholdMethod, note: str = "") -> Optional[Threshold]:
        x, y, _ = CurveTools.arrays(stages)
        if len(x) - start_idx < 2 or x[start_idx] == x[-1]:
            return None

        # Polynomial na PEŁNYCH danych, cięciwa od start_idx do ostatniego punktu
        coeffs = CurveTools.fit_polynomial(x, y, degree=3)
        if coeffs is None:
            return None
        r2 = CurveTools.calc_r2(x, y, coeffs)

        x1, y1 = x[start_idx], y[start_idx]
        x2, y2 = x[-1], y[-1]
        x_fine = np.linspace(x1, x2, cls.DMAX_SAMPLES)
        y_fine = np.polyval(coeffs, x_fine)
        distances = CurveTools.perpendicular_distance(x_fine, y_fine, x1, y1, x2, y2)

        # Ignorujemy pierwszy i ostatni 5% żeby uniknąć artefaktów edge
        margin = max(int(len(distances) * cls.DMAX_EDGE_MARGIN), 1)
        dmax_idx = margin + int(np.argmax(distances[margin:len(distances) - margin]))

        x_dmax = float(x_fine[dmax_idx])
        la_dmax = float(y_fine[dmax_idx])
        d = float(distances[dmax_idx])
        conf = cls._confidence(r2, d, float(np.max(y) - np.min(y)))
        if r2 < cls.R2_MIN:
            note = (note + "; " if note else "") + f"poor cubic fit (R2={r2:.3f})"

        return CurveTools.make_threshold(
            CurveTools.interp_hr(stages, x_dmax), x_dmax, stages[0].unit, la_dmax, method, conf,
            ThresholdDiagnostics(
                r2=round(r2, 4),
                coefficients=tuple(float(c) for c in coeffs),
                dmax_distance=round(d, 4),
                note=note,
            ),
        )

    @classmethod
    def dmax(cls, stages: Sequence[StageDatapoint]) -> Optional[Threshold]:
        """
        Dmax (Cheng 1992).
        1) Fit 3rd order polynomial to La vs intensity
        2) Linia prosta od pierwszego do ostatniego punktu pomiarowego
        3) Punkt max. odległości prostopadłej krzywej od linii
        """
        if len(stages) < cls.MIN_CURVE_POINTS:
            return None
        return cls._dmax_from(stages, 0, ThresholdMethod.DMAX)

    @classmethod
    def mod_dmax(cls, stages: Sequence[StageDatapoint]) -> Optional[Threshold]:
        """
        Modified Dmax (Bishop 1998).
        Linia startuje w punkcie POPRZEDZAJĄCYM pierwszy wzrost
        La >= baseline + 0.4 mmol/L. Brak wzrostu -> środek testu.
        """
        if len(stages) < cls.MIN_CURVE_POINTS:
            return None
        lactates = [s.lactate for s in stages]
        baseline = CurveTools.trimmed_baseline(lactates)

        rise_idx = next((i for i, la in enumerate(lactates) if la >= baseline + cls.BISHOP_RISE), None)
        if rise_idx is None:
            start_idx = len(stages) // 2
        else:
            start_idx = max(0, rise_idx - 1)

        return cls._dmax_from(stages, start_idx, ThresholdMethod.MOD_DMAX,
                              note=f"chord start seq {stages[start_idx].sequence}, baseline {baseline:.2f}")

    # ─── SEKCJA 4: POZOSTAŁE DETEKTORY ───

    @classmethod
    def exponential_rise(cls, stages: Sequence[StageDatapoint],
                         delta: float = 0.5) -> Optional[Threshold]:
        """Midpoint between the last stable stage and the first jump > delta."""
        if len(stages) < cls.MIN_SIMPLE_POINTS:
            return None
        for prev, cur in zip(stages, stages[1:]):
            if cur.lactate - prev.lactate > delta:
                return CurveTools.make_threshold(
                    (prev.heart_rate + cur.heart_rate) / 2.0,
                    (prev.intensity + cur.intensity) / 2.0,
                    cur.unit,
                    (prev.lactate + cur.lactate) / 2.0,
                    ThresholdMethod.EXPONENTIAL_RISE,
                    Confidence.MEDIUM,
                    ThresholdDiagnostics(note=f"rise {cur.lactate - prev.lactate:.2f} mmol/L at seq {cur.sequence}"),
                )
        return None

    @classmethod
    def dickhuth(cls, stages: Sequence[StageDatapoint], offset: float = 1.5) -> Optional[Threshold]:
        """
        Minimum lactate equivalent + 1.5 mmol/L (Dickhuth 1999).
        Ekwiwalent = La / intensywność (pace -> km/h).
        """
        if len(stages) < cls.MIN_SIMPLE_POINTS:
            return None
        equivalents = [(s.lactate / s.effort, s) for s in stages if s.effort > 0 and s.lactate > 0]
        if len(equivalents) < cls.MIN_SIMPLE_POINTS:
            return None

        min_eq, min_stage = min(equivalents, key=lambda t: t[0])
        target = min_stage.lactate + offset
        note = f"min equivalent {min_eq:.4f} at seq {min_stage.sequence}, target {target:.2f}"

        below, above = CurveTools.bracket(stages, target)
        if below is not None and above is not None:
            hr, intensity = CurveTools.interpolate_pair(below, above, target)
            return CurveTools.make_threshold(hr, intensity, below.unit, target,
                                             ThresholdMethod.DICKHUTH, Confidence.MEDIUM,
                                             ThresholdDiagnostics(note=note))

        s = CurveTools.closest_by_lactate(stages, target)
        return CurveTools.make_threshold(s.heart_rate, s.intensity, s.unit, s.lactate,
                                         ThresholdMethod.DICKHUTH_ESTIMATED, Confidence.LOW,
                                         ThresholdDiagnostics(note=note))

    @classmethod
    def fixed_4mmol(cls, stages: Sequence[StageDatapoint]) -> Optional[Threshold]:
        """
        OBLA 4.0 mmol/L (Mader 1976).
        Jeśli krzywa spada pod 4.0 i przecina ją ponownie, bierzemy DRUGIE
        przejście (pierwsze traktujemy jako artefakt).
        """
        target = cls.OBLA_MMOL
        first = next((i for i, s in enumerate(stages) if s.lactate >= target), None)
        if first is None:
            return None

        below, above, note = None, None, ""
        for i in range(first + 2, len(stages)):
            if stages[i].lactate >= target and stages[i - 1].lactate < target:
                below, above = stages[i - 1], stages[i]
                note = f"second crossing at seq {stages[i].sequence}"
                break
        if below is None:
            below, above = CurveTools.bracket(stages, target)
            if below is None or above is None:
                return None

        hr, intensity = CurveTools.interpolate_pair(below, above, target)
        return CurveTools.make_threshold(hr, intensity, below.unit, target,
                                         ThresholdMethod.FIXED_4_0, Confidence.MEDIUM,
                                         ThresholdDiagnostics(note=note))


# ==========================================
# ENGINE E04 — MANUAL THRESHOLD OVERRIDE
# ==========================================

class Engine_E04_ManualOverride:
    """E04: ręczny próg (La + intensywność) -> Threshold HIGH. Zawsze się udaje."""

    @staticmethod
    def run(stages: Sequence[StageDatapoint], kind: ThresholdKind,
            lactate: float, intensity: float,
            unit: Optional[IntensityUnit] = None) -> Threshold:
        method = ThresholdMethod.MANUAL_LT1 if kind is ThresholdKind.LT1 else ThresholdMethod.MANUAL_LT2
        if unit is None:
            unit = stages[0].unit if stages else IntensityUnit.KMH

        hr = 0.0
        if stages:
            hr = min(stages, key=lambda s: abs(s.intensity - intensity)).heart_rate
            for a, b in zip(stages, stages[1:]):
                lo, hi = sorted((a.intensity, b.intensity))
                if lo <= intensity <= hi and a.intensity != b.intensity:
                    f = (intensity - a.intensity) / (b.intensity - a.intensity)
                    hr = a.heart_rate + f * (b.heart_rate - a.heart_rate)
                    break

        return CurveTools.make_threshold(hr, intensity, unit, lactate, method, Confidence.HIGH,
                                         ThresholdDiagnostics(note="manual override"))

"""
E03 — Elite Ensemble LT1 Detector
==================================
Standalone module. Aerobic threshold for ELITE_FLAT curves, where the
2.0 mmol/L convention lands far too late.

Two members:
  1. Log-Log segmented regression (Beaver 1985) on ln(La) vs ln(intensity)
  2. Baseline + delta (0.3 elite / 0.5 standard), first SUSTAINED rise

Zgoda metod (różnica <= tolerancja jednostki) -> Log-Log.
Rozbieżność -> ostrożniejszy (niższa intensywność) z confidence MEDIUM.

Preprocessing: "startle" filter. Pierwszy pomiar wyższy od drugiego o
> 0.2 mmol/L (stres startowy, źle wytarty palec) zastępujemy drugim.
"""

import numpy as np
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from scipy.stats import linregress

from engine_core import (
    AthleteProfile, Confidence, CurveTools, IntensityUnit, StageDatapoint,
    Threshold, ThresholdDiagnostics, ThresholdMethod,
)


class Engine_E03_EliteEnsemble:

    MIN_POINTS = 5
    STARTLE_DELTA = 0.2
    DELTA_ELITE = 0.3
    DELTA_STANDARD = 0.5
    LOGLOG_HIGH_RATIO = 2.0
    LOGLOG_MEDIUM_RATIO = 1.3

    # Max rozbieżność Log-Log vs Baseline+ uznawana za zgodność
    AGREEMENT_TOLERANCE = {
        IntensityUnit.KMH: 1.5,
        IntensityUnit.WATT: 20.0,
        IntensityUnit.MIN_KM: 0.25,
    }

    @classmethod
    def run(cls, stages: Sequence[StageDatapoint],
            profile: AthleteProfile) -> Optional[Threshold]:
        if not profile.is_elite or len(stages) < cls.MIN_POINTS:
            return None

        clean, filtered = cls._startle_filter(stages)
        loglog = cls._method_log_log(clean)
        base_plus = cls._method_baseline_plus(clean, elite=True)
        startle_note = "startle filter applied; " if filtered else ""

        if loglog is not None and base_plus is not None:
            divergence = abs(loglog.value - base_plus.value)
            tol = cls.AGREEMENT_TOLERANCE[loglog.unit]
            if divergence <= tol:
                return cls._annotate(loglog, f"{startle_note}log-log and baseline+ agree "
                                             f"(diff {divergence:.2f} {loglog.unit.value})")
            conservative = base_plus if loglog.is_harder_than(base_plus) else loglog
            return cls._annotate(
                replace(conservative, confidence=Confidence.MEDIUM),
                f"{startle_note}methods diverged by {divergence:.2f} {loglog.unit.value}, "
                f"kept the lower intensity",
            )

        single = loglog if loglog is not None else base_plus
        if single is None:
            return None
        return cls._annotate(single, f"{startle_note}single ensemble member")

    # ─── PREPROCESSING ───

    @classmethod
    def _startle_filter(cls, stages: Sequence[StageDatapoint]) -> Tuple[List[StageDatapoint], bool]:
        stages = list(stages)
        if len(stages) >= 2 and stages[0].lactate > stages[1].lactate + cls.STARTLE_DELTA:
            stages[0] = replace(stages[0], lactate=stages[1].lactate)
            return stages, True
        return stages, False

    @staticmethod
    def _annotate(th: Threshold, note: str) -> Threshold:
        old = th.diagnostics or ThresholdDiagnostics()
        merged = f"{old.note}; {note}" if old.note else note
        return replace(th, diagnostics=replace(old, note=merged))

    # ─── METODY ───

    @classmethod
    def _method_log_log(cls, stages: Sequence[StageDatapoint]) -> Optional[Threshold]:
        """
        Log-Log (Beaver 1985).
        Segmented regression na log(La) vs log(intensywność), min 3 punkty w segmencie.
        Breakpoint ważny tylko gdy slope2 > slope1.
        """
        valid = [s for s in stages if s.effort > 0 and s.lactate > 0]
        n = len(valid)
        if n < cls.MIN_POINTS:
            return None

        log_x = np.log([s.effort for s in valid])
        log_y = np.log([s.lactate for s in valid])

        best_sse = np.inf
        best = None
        for bp_idx in range(2, n - 2):
            x1, y1 = log_x[:bp_idx + 1], log_y[:bp_idx + 1]
            x2, y2 = log_x[bp_idx:], log_y[bp_idx:]
            if np.ptp(x1) == 0 or np.ptp(x2) == 0:
                continue
            s1 = linregress(x1, y1)
            s2 = linregress(x2, y2)
            sse1 = np.sum((y1 - (s1.slope * x1 + s1.intercept)) ** 2)
            sse2 = np.sum((y2 - (s2.slope * x2 + s2.intercept)) ** 2)
            if sse1 + sse2 < best_sse:
                best_sse = sse1 + sse2
                best = (bp_idx, s1.slope, s2.slope)

        if best is None:
            return None
        bp_idx, slope1, slope2 = best
        if slope2 <= slope1:
            return None

        ratio = slope2 / max(0.01, abs(slope1))
        if ratio > cls.LOGLOG_HIGH_RATIO:
            conf = Confidence.HIGH
        elif ratio > cls.LOGLOG_MEDIUM_RATIO:
            conf = Confidence.MEDIUM
        else:
            conf = Confidence.LOW

        s = valid[bp_idx]
        return CurveTools.make_threshold(
            s.heart_rate, s.intensity, s.unit, s.lactate, ThresholdMethod.ELITE_LOG_LOG, conf,
            ThresholdDiagnostics(note=f"log-log slopes {slope1:.2f} -> {slope2:.2f} (ratio {ratio:.1f})"),
        )

    @classmethod
    def _method_baseline_plus(cls, stages: Sequence[StageDatapoint],
                              elite: bool = True) -> Optional[Threshold]:
        """
        Baseline + delta. Próg = ostatni stopień przed pierwszym
        TRWAŁYM przekroczeniem (dwa kolejne punkty > baseline + delta).
        """
        if not stages:
            return None
        delta = cls.DELTA_ELITE if elite else cls.DELTA_STANDARD
        baseline = CurveTools.trimmed_baseline([s.lactate for s in stages])
        limit = baseline + delta

        for i in range(len(stages) - 1):
            if stages[i].lactate > limit and stages[i + 1].lactate > limit:
                s = stages[max(0, i - 1)]
                return CurveTools.make_threshold(
                    s.heart_rate, s.intensity, s.unit, s.lactate,
                    ThresholdMethod.ELITE_BASELINE_PLUS, Confidence.MEDIUM,
                    ThresholdDiagnostics(note=f"baseline {baseline:.2f} + {delta}"),
                )

        s = CurveTools.closest_by_lactate(stages, limit)
        return CurveTools.make_threshold(
            s.heart_rate, s.intensity, s.unit, s.lactate,
            ThresholdMethod.ELITE_BASELINE_PLUS, Confidence.LOW,
            ThresholdDiagnostics(note=f"no sustained rise above {limit:.2f}, nearest stage"),
        )

# ==========================================
# 5. ORCHESTRATOR (LT1 / LT2 CHAINS + PIPELINE)
# ==========================================
import numpy as np
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import AnalysisConfig
from data_tools import DataTools
from engine_core import (
    AthleteProfile, Confidence, CurveTools, IntensityUnit, StageDatapoint, Threshold,
    ThresholdDetectionError, ThresholdDiagnostics,
    ThresholdKind, ThresholdMethod, ZoneCalculationResult, record_to_dict,
    Engine_E01_AthleteProfile, Engine_E02_ThresholdDetectors, Engine_E04_ManualOverride,
)
from e03_elite_ensemble import Engine_E03_EliteEnsemble
from e05_zones import Engine_E05_Zones
from e06_fitness_estimation import Engine_E06_FitnessEstimation


@dataclass(frozen=True)
class ThresholdStep:
    """One step of a detection chain. `validate` returns a rejection reason or None."""
    name: str
    detect: Callable[[], Optional[Threshold]]
    when: Optional[Callable[[], bool]] = None
    validate: Optional[Callable[[Threshold], Optional[str]]] = None
    terminal: bool = False


class ThresholdOrchestrator:
    """
    Ordered strategy chains for LT1 and LT2.

    Pierwszy krok, który zwróci wynik MEDIUM/HIGH i przejdzie walidację,
    wygrywa. Krok terminalny (najbliższy stopień) akceptuje LOW.
    """

    LT1_LACTATE = 2.0
    LT2_LACTATE = 4.0
    LT1_DMAX_RANGE = (1.5, 2.5)
    HIGH_PEAK_LACTATE = 8.0
    LT2_DMAX_MIN_STEEP = 3.0
    LT2_DMAX_ABOVE_BASELINE = 1.0
    LT2_DICKHUTH_MIN_STEEP = 3.5
    ELITE_BASELINE_DELTA = 0.3
    ELITE_MIN_POINTS = 5

    # Rozrzut kandydatów (max - min) dla oceny zgodności metod
    CONCORDANCE_SPREAD = {
        IntensityUnit.KMH: (1.0, 2.0),
        IntensityUnit.WATT: (15.0, 30.0),
        IntensityUnit.MIN_KM: (0.15, 0.30),
    }

    def __init__(self, stages: Sequence[StageDatapoint],
                 profile: Optional[AthleteProfile] = None,
                 lt1_override: Optional[Dict[str, float]] = None,
                 lt2_override: Optional[Dict[str, float]] = None,
                 dickhuth_offset: float = 1.5):
        self.stages = tuple(stages)
        self.profile = profile or Engine_E01_AthleteProfile.run(self.stages)
        self.overrides = {ThresholdKind.LT1: lt1_override, ThresholdKind.LT2: lt2_override}
        self.dickhuth_offset = dickhuth_offset
        self.warnings: List[str] = []
        self.trail: Dict[str, List[Tuple[str, str, str]]] = {"LT1": [], "LT2": []}

    # ---------- helpers ----------
    def _warn(self, msg: str):
        self.warnings.append(msg)
        print(f"  ⚠️ {msg}")

    def _manual_step(self, kind: ThresholdKind) -> ThresholdStep:
        def _detect():
            ov = self.overrides[kind]
            return Engine_E04_ManualOverride.run(self.stages, kind, ov["lactate"], ov["intensity"])
        return ThresholdStep(f"MANUAL_{kind.value}", _detect,
                             when=lambda: self.overrides[kind] is not None)

    def _peak_lactate(self) -> float:
        return max((s.lactate for s in self.stages), default=0.0)

    # ---------- chains ----------
    def lt1_chain(self) -> List[ThresholdStep]:
        D = Engine_E02_ThresholdDetectors
        return [
            self._manual_step(ThresholdKind.LT1),
            ThresholdStep("ELITE_ENSEMBLE",
                          lambda: Engine_E03_EliteEnsemble.run(self.stages, self.profile),
                          when=lambda: self.profile.is_elite and len(self.stages) >= self.ELITE_MIN_POINTS),
            ThresholdStep("DMAX", lambda: D.dmax(self.stages), validate=self._validate_lt1_dmax),
            ThresholdStep("LINEAR_2.0",
                          lambda: D.linear_interpolation(self.stages, self.LT1_LACTATE,
                                                         ThresholdMethod.LINEAR_2_0, allow_estimate=False)),
            ThresholdStep("BASELINE_PLUS_0.3", self._detect_elite_baseline_plus,
                          when=lambda: self.profile.is_elite and self._peak_lactate() <= self.LT1_LACTATE),
            ThresholdStep("NEAREST_STAGE", lambda: D.nearest_stage(self.stages, self.LT1_LACTATE),
                          terminal=True),
        ]

    def lt2_chain(self) -> List[ThresholdStep]:
        D = Engine_E02_ThresholdDetectors
        return [
            self._manual_step(ThresholdKind.LT2),
            ThresholdStep("MOD_DMAX", lambda: D.mod_dmax(self.stages),
                          when=lambda: self.profile.is_elite),
            ThresholdStep("DMAX", lambda: D.dmax(self.stages), validate=self._validate_lt2_dmax),
            ThresholdStep("DICKHUTH", lambda: D.dickhuth(self.stages, self.dickhuth_offset),
                          validate=self._validate_lt2_dickhuth),
            ThresholdStep("FIXED_4.0", lambda: D.fixed_4mmol(self.stages)),
            ThresholdStep("NEAREST_STAGE", lambda: D.nearest_stage(self.stages, self.LT2_LACTATE),
                          terminal=True),
        ]

    def _detect_elite_baseline_plus(self) -> Optional[Threshold]:
        target = self.profile.baseline_avg + self.ELITE_BASELINE_DELTA
        th = Engine_E02_ThresholdDetectors.nearest_stage(self.stages, target,
                                                         method=ThresholdMethod.BASELINE_PLUS_0_3)
        return replace(th, confidence=Confidence.MEDIUM) if th is not None else None

    # ---------- validation ----------
    def _validate_lt1_dmax(self, th: Threshold) -> Optional[str]:
        lo, hi = self.LT1_DMAX_RANGE
        if not (lo <= th.lactate <= hi):
            return f"lactate {th.lactate:.2f} outside {lo}-{hi} mmol/L"
        return None

    def _validate_lt2_dmax(self, th: Threshold) -> Optional[str]:
        peak = self._peak_lactate()
        if th.lactate < self.LT2_DMAX_MIN_STEEP and peak > self.HIGH_PEAK_LACTATE:
            return f"lactate {th.lactate:.2f} < {self.LT2_DMAX_MIN_STEEP} on a steep curve (peak {peak:.1f})"
        floor = self.profile.baseline_avg + self.LT2_DMAX_ABOVE_BASELINE
        if th.lactate < floor:
            return f"lactate {th.lactate:.2f} too close to baseline (< {floor:.2f})"
        return None

    def _validate_lt2_dickhuth(self, th: Threshold) -> Optional[str]:
        peak = self._peak_lactate()
        if th.lactate < self.LT2_DICKHUTH_MIN_STEEP and peak > self.HIGH_PEAK_LACTATE:
            return f"lactate {th.lactate:.2f} < {self.LT2_DICKHUTH_MIN_STEEP} on a steep curve (peak {peak:.1f})"
        return None

    # ---------- execution ----------
    def _run_chain(self, kind: ThresholdKind, chain: List[ThresholdStep]) -> Threshold:
        trail = self.trail[kind.value]
        for step in chain:
            if step.when is not None and not step.when():
                trail.append((step.name, "SKIPPED", "not applicable"))
                continue
            th = step.detect()
            if th is None:
                trail.append((step.name, "NO_RESULT", ""))
                continue
            if th.confidence is Confidence.LOW and not step.terminal:
                trail.append((step.name, "REJECTED", "low confidence"))
                continue
            reason = step.validate(th) if step.validate is not None else None
            if reason:
                trail.append((step.name, "REJECTED", reason))
                continue
            trail.append((step.name, "ACCEPTED", th.method.value))
            return th
        raise ThresholdDetectionError(
            f"{kind.value}: no method could produce a threshold from {len(self.stages)} stage(s)")

    def _is_manual(self, th: Threshold) -> bool:
        return th.method in (ThresholdMethod.MANUAL_LT1, ThresholdMethod.MANUAL_LT2)

    def _sanity_check(self, lt1: Threshold, lt2: Threshold) -> Threshold:
        """LT1 must sit below LT2; otherwise LT1 is recomputed at 2.0 mmol/L."""
        if lt2.is_harder_than(lt1):
            return lt1
        if self._is_manual(lt1) or self._is_manual(lt2):
            self._warn(f"LT1 ({lt1.value} {lt1.unit.value}) is not below LT2 ({lt2.value} {lt2.unit.value}); "
                       f"manual threshold kept")
            return lt1

        redo = Engine_E02_ThresholdDetectors.linear_interpolation(
            self.stages, self.LT1_LACTATE, ThresholdMethod.LINEAR_2_0, allow_estimate=True)
        self._warn(f"LT1 {lt1.method.value} ({lt1.value} {lt1.unit.value}) >= LT2 {lt2.method.value} "
                   f"({lt2.value} {lt2.unit.value}); LT1 recomputed by linear interpolation at 2.0 mmol/L")
        self.trail["LT1"].append(("SANITY_CHECK", "RECOMPUTED", "LT1 >= LT2"))
        if redo is None:
            redo = lt1
        if lt2.is_harder_than(redo):
            return redo

        # Płaska / niska krzywa: 2.0 ląduje na tym samym stopniu co LT2
        easier = self._stage_below(lt2)
        if easier is None:
            self._warn(f"Recomputed LT1 ({redo.value} {redo.unit.value}) is still not below LT2; "
                       f"no easier stage available")
            return redo
        self._warn(f"Recomputed LT1 ({redo.value} {redo.unit.value}) is still not below LT2; "
                   f"LT1 moved to the last stage below LT2 ({easier.value} {easier.unit.value})")
        self.trail["LT1"].append(("SANITY_CHECK", "STEPPED_DOWN", easier.diagnostics.note))
        return easier

    def _stage_below(self, lt2: Threshold) -> Optional[Threshold]:
        """Hardest stage that is still strictly easier than LT2."""
        dec = lt2.unit.decimals
        below = [s for s in self.stages
                 if (round(s.intensity, dec) > lt2.value if lt2.unit.inverted
                     else round(s.intensity, dec) < lt2.value)]
        if not below:
            return None
        s = max(below, key=lambda st: st.effort)
        return CurveTools.make_threshold(
            s.heart_rate, s.intensity, s.unit, s.lactate, ThresholdMethod.NEAREST_STAGE, Confidence.LOW,
            ThresholdDiagnostics(note=f"stage below LT2 (seq {s.sequence})"),
        )

    def run(self) -> Tuple[Threshold, Threshold]:
        lt1 = self._run_chain(ThresholdKind.LT1, self.lt1_chain())
        lt2 = self._run_chain(ThresholdKind.LT2, self.lt2_chain())
        return self._sanity_check(lt1, lt2), lt2

    # ---------- diagnostics ----------
    def candidates(self, rise_delta: float = 0.5) -> Dict[str, Optional[Threshold]]:
        """Every detector run independently (no gating) for comparison/plots."""
        D = Engine_E02_ThresholdDetectors
        s = self.stages
        return {
            "linear_2.0": D.linear_interpolation(s, self.LT1_LACTATE, ThresholdMethod.LINEAR_2_0,
                                                 allow_estimate=False),
            "elite_ensemble": Engine_E03_EliteEnsemble.run(s, self.profile),
            "dmax": D.dmax(s),
            "mod_dmax": D.mod_dmax(s),
            "dickhuth": D.dickhuth(s, self.dickhuth_offset),
            "fixed_4.0": D.fixed_4mmol(s),
            "exponential_rise": D.exponential_rise(s, rise_delta),
        }

    @classmethod
    def concordance(cls, candidates: Dict[str, Optional[Threshold]]) -> Dict[str, Dict[str, Any]]:
        """Analiza zgodności metod: mediana i rozrzut kandydatów LT1 / LT2."""
        lt1_methods = ["linear_2.0", "elite_ensemble"]
        lt2_methods = ["dmax", "mod_dmax", "dickhuth", "fixed_4.0", "exponential_rise"]

        def _consensus(names, label):
            found = {n: candidates[n] for n in names if candidates.get(n) is not None}
            if not found:
                return {"consensus_value": None, "n_methods": 0, "spread": None, "label": label}
            vals = [th.value for th in found.values()]
            unit = next(iter(found.values())).unit
            spread = float(np.max(vals) - np.min(vals))
            tight, loose = cls.CONCORDANCE_SPREAD[unit]
            return {
                "consensus_value": round(float(np.median(vals)), unit.decimals),
                "n_methods": len(vals),
                "spread": round(spread, unit.decimals),
                "unit": unit.value,
                "methods_used": list(found.keys()),
                "label": label,
                "confidence": "HIGH" if spread < tight else "MODERATE" if spread < loose else "LOW",
            }

        return {
            "lt1_consensus": _consensus(lt1_methods, "LT1 (Aerobic Threshold)"),
            "lt2_consensus": _consensus(lt2_methods, "LT2 (Anaerobic Threshold)"),
        }


@dataclass(frozen=True)
class AnalysisResult:
    lt1: Threshold
    lt2: Threshold
    profile: AthleteProfile
    zones: ZoneCalculationResult
    max_hr: Optional[float]
    warnings: Tuple[str, ...] = ()
    flags: Tuple[str, ...] = ()
    decision_trail: Dict[str, Tuple[Tuple[str, str, str], ...]] = field(default_factory=dict)
    candidates: Dict[str, Optional[Threshold]] = field(default_factory=dict)
    concordance: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


class LactateTest_Orchestrator:
    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.cfg = config or AnalysisConfig()
        self.stages: List[StageDatapoint] = []
        self.results: Dict[str, Any] = {}
        self._qc_log = {"engines_executed_ok": [], "engine_errors": []}

    # ---------- helpers ----------
    def _safe_run(self, engine_id: str, fn, *args, **kwargs):
        """Non-critical engines: errors go to the QC log instead of aborting the run."""
        import traceback as _tb
        try:
            out = fn(*args, **kwargs)
            self._qc_log["engines_executed_ok"].append(engine_id)
            return out
        except Exception as e:
            err_msg = f"{type(e).__name__}: {e}"
            self._qc_log["engine_errors"].append({
                "engine": engine_id, "error": err_msg, "traceback": _tb.format_exc()
            })
            print(f"  ⚠️ {engine_id} ERROR: {err_msg}")
            return None

    def _fitness(self):
        cfg = self.cfg
        if not cfg.fitness_level:
            return None
        return Engine_E06_FitnessEstimation.from_level(
            cfg.fitness_level, lt1_pct=cfg.lt1_pct_hrmax, lt2_pct=cfg.lt2_pct_hrmax)

    # ---------- pipeline ----------
    def run(self, stage_source) -> AnalysisResult:
        cfg = self.cfg
        self.stages = DataTools.load_stages(stage_source)
        flags = DataTools.quality_flags(self.stages)
        profile = Engine_E01_AthleteProfile.run(self.stages)

        lt1_ov, lt2_ov = cfg.lt1_override, cfg.lt2_override
        if lt1_ov:
            print(f"  ✅ LT1 MANUAL override: {lt1_ov['intensity']} @ {lt1_ov['lactate']} mmol/L")
        if lt2_ov:
            print(f"  ✅ LT2 MANUAL override: {lt2_ov['intensity']} @ {lt2_ov['lactate']} mmol/L")

        chains = ThresholdOrchestrator(self.stages, profile, lt1_ov, lt2_ov,
                                       dickhuth_offset=cfg.dickhuth_offset_mmol)
        lt1, lt2 = chains.run()

        max_hr = cfg.max_hr
        if not max_hr and self.stages:
            max_hr = max(s.heart_rate for s in self.stages)
        if max_hr:
            max_hr = int(round(max_hr))
        lt1 = lt1.with_percent_of_max(max_hr)
        lt2 = lt2.with_percent_of_max(max_hr)

        zones = Engine_E05_Zones.run(max_hr=max_hr, lt1=lt1, lt2=lt2,
                                     age=cfg.age_y, sex=cfg.sex, fitness=self._fitness())

        candidates = self._safe_run("CANDIDATES", chains.candidates, rise_delta=cfg.rise_delta_mmol) or {}
        concordance = self._safe_run("CONCORDANCE", chains.concordance, candidates) or {}

        warnings = list(chains.warnings)
        if zones.warning:
            warnings.append(zones.warning)

        result = AnalysisResult(
            lt1=lt1,
            lt2=lt2,
            profile=profile,
            zones=zones,
            max_hr=max_hr,
            warnings=tuple(warnings),
            flags=tuple(flags),
            decision_trail={k: tuple(v) for k, v in chains.trail.items()},
            candidates=candidates,
            concordance=concordance,
        )
        self.results = {"analysis": result, "qc_log": self._qc_log}
        return result

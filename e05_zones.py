"""
E05 — Training Zones (5-zone model)
====================================
Standalone module.

Tier A (LACTATE_TEST, HIGH):  LT1 + LT2 + HRmax znane.
    Z2|Z3 granica przy LT1, Z4 obejmuje LT2. Przesunięcia ±5 bpm,
    a ±2 bpm gdy progi są bliżej niż 15 bpm.
    Intensywność (speed / power / pace) ekstrapolowana od LT1 i LT2.

Tier B (ESTIMATED, LOW): brak progów.
    HRmax zadane lub z wieku (Tanaka 2001; Gulati 2010 dla kobiet),
    LT1/LT2 jako % HRmax z poziomu wytrenowania (domyślnie 77% / 87%).
"""

from dataclasses import replace
from typing import List, Optional, Tuple

from engine_core import (
    Confidence, IntensityUnit, Threshold, TrainingZone, ZoneCalculationResult, ZoneMethod,
)


class Engine_E05_Zones:

    ZONE_INFO = {
        1: {'name': 'Very easy', 'intensity': 'Recovery',
            'effect': 'Recovery, warm-up, fat oxidation'},
        2: {'name': 'Easy', 'intensity': 'Aerobic base (LT1)',
            'effect': 'Aerobic base training, high volume at this intensity'},
        3: {'name': 'Moderate', 'intensity': 'Tempo',
            'effect': 'Tempo, aerobic capacity, longer intervals'},
        4: {'name': 'Hard', 'intensity': 'Threshold (LT2)',
            'effect': 'Anaerobic threshold, lactate clearance, race pace'},
        5: {'name': 'Maximal', 'intensity': 'VO2max',
            'effect': 'VO2max, short intervals, maximal oxygen uptake'},
    }

    NARROW_GAP_BPM = 15
    OFFSET_WIDE = 5
    OFFSET_NARROW = 2
    ZONE1_LT1_MARGIN = 6
    ZONE3_MIN_GAP_BPM = 10
    ZONE3_WIDEN_BPM = 3

    DEFAULT_LT1_PCT = 77.0
    DEFAULT_LT2_PCT = 87.0
    DEFAULT_AGE = 35

    @classmethod
    def run(cls, max_hr: Optional[float] = None,
            lt1: Optional[Threshold] = None,
            lt2: Optional[Threshold] = None,
            age: Optional[int] = None,
            sex: str = "",
            fitness=None) -> ZoneCalculationResult:
        """
        Parameters
        ----------
        max_hr  : HRmax [bpm]; None -> estimate from age/sex (Tier B only)
        lt1/lt2 : final thresholds; both required for Tier A
        fitness : object with level / lt1_pct_hrmax / lt2_pct_hrmax (Tier B)
        """
        # Jedno zaokrąglenie: zone5.hr_max == użyte HRmax
        max_hr = int(round(max_hr)) if max_hr else None
        if max_hr and lt1 is not None and lt2 is not None:
            return cls._lactate_zones(float(max_hr), lt1, lt2)
        return cls._estimated_zones(max_hr, age, sex, fitness)

    @staticmethod
    def estimate_max_hr(age: Optional[int], sex: str = "") -> int:
        """Gulati (206 - 0.88·age) for women, Tanaka (208 - 0.7·age) otherwise."""
        if str(sex).lower() in ("female", "f", "k", "kobieta"):
            return int(round(206 - 0.88 * age))
        return int(round(208 - 0.7 * age))

    # ─── TIER A ───

    @classmethod
    def _lactate_zones(cls, max_hr: float, lt1: Threshold, lt2: Threshold) -> ZoneCalculationResult:
        lt1_hr, lt2_hr = int(round(lt1.heart_rate)), int(round(lt2.heart_rate))
        bands, narrow = cls._hr_bands(max_hr, lt1_hr, lt2_hr)

        warning = None
        if narrow:
            warning = (f"LT1 and LT2 are only {lt2_hr - lt1_hr} bpm apart; "
                       f"zone boundaries around the thresholds use ±{cls.OFFSET_NARROW} bpm.")

        zones = []
        for number, (lo, hi) in enumerate(bands, start=1):
            zone = cls._make_zone(number, lo, hi, max_hr)
            if lt1.unit is lt2.unit:
                zone = cls._add_intensity_range(zone, lt1, lt2)
            zones.append(zone)

        return ZoneCalculationResult(
            zones=tuple(zones),
            confidence=Confidence.HIGH,
            method=ZoneMethod.LACTATE_TEST,
            warning=warning,
        )

    @classmethod
    def _hr_bands(cls, max_hr: float, lt1_hr: int, lt2_hr: int) -> Tuple[List[Tuple[int, int]], bool]:
        gap = lt2_hr - lt1_hr
        narrow = gap < cls.NARROW_GAP_BPM
        off = cls.OFFSET_NARROW if narrow else cls.OFFSET_WIDE
        top = int(round(max_hr))
        z1_min = int(round(max_hr * 0.5))

        uppers = [
            min(lt1_hr - cls.ZONE1_LT1_MARGIN, int(round(max_hr * 0.65))),
            lt1_hr + off,
            lt2_hr - off,
            lt2_hr + off,
            top,
        ]
        if gap < cls.ZONE3_MIN_GAP_BPM:
            uppers[2] = max(uppers[2], uppers[1]) + cls.ZONE3_WIDEN_BPM

        # Granice ściśle rosnące, nie powyżej HRmax
        uppers[0] = max(uppers[0], z1_min)
        for i in range(1, 5):
            uppers[i] = max(uppers[i], uppers[i - 1] + 1)
        uppers[4] = top
        for i in range(3, -1, -1):
            uppers[i] = min(uppers[i], uppers[i + 1] - 1)

        bands = []
        lo = z1_min
        for up in uppers:
            bands.append((lo, up))
            lo = up + 1
        return bands, narrow

    @classmethod
    def _make_zone(cls, number: int, hr_min: int, hr_max: int, max_hr: float) -> TrainingZone:
        info = cls.ZONE_INFO[number]
        return TrainingZone(
            zone=number,
            name=info['name'],
            intensity=info['intensity'],
            hr_min=int(hr_min),
            hr_max=int(hr_max),
            percent_min=int(round(hr_min / max_hr * 100)),
            percent_max=100 if number == 5 else int(round(hr_max / max_hr * 100)),
            effect=info['effect'],
        )

    @staticmethod
    def _intensity_at(hr: float, lt1: Threshold, lt2: Threshold) -> Optional[float]:
        """HR -> intensity: interpolation between LT1 and LT2, proportional scaling outside."""
        h1, h2 = lt1.heart_rate, lt2.heart_rate
        if h1 < hr < h2:
            f = (hr - h1) / (h2 - h1)
            return lt1.value + f * (lt2.value - lt1.value)
        anchor = lt1 if hr <= h1 else lt2
        if anchor.heart_rate <= 0:
            return None
        ratio = hr / anchor.heart_rate
        if anchor.unit.inverted:
            return anchor.value / ratio
        return anchor.value * ratio

    @classmethod
    def _add_intensity_range(cls, zone: TrainingZone, lt1: Threshold, lt2: Threshold) -> TrainingZone:
        lo = cls._intensity_at(zone.hr_min, lt1, lt2)
        hi = cls._intensity_at(zone.hr_max, lt1, lt2)
        if lo is None or hi is None:
            return zone
        unit = lt1.unit
        if unit is IntensityUnit.KMH:
            return replace(zone, speed_min=round(lo, 1), speed_max=round(hi, 1))
        if unit is IntensityUnit.WATT:
            return replace(zone, power_min=float(round(lo)), power_max=float(round(hi)))
        # pace: szybsze tempo (mniejsza liczba) na górnej granicy HR
        return replace(zone, pace_min=round(hi, 2), pace_max=round(lo, 2))

    # ─── TIER B ───

    @classmethod
    def _estimated_zones(cls, max_hr: Optional[float], age: Optional[int], sex: str,
                         fitness) -> ZoneCalculationResult:
        basis = []
        if max_hr:
            max_hr = float(max_hr)
            basis.append(f"max HR {int(round(max_hr))} bpm")
        else:
            if age is None:
                age = cls.DEFAULT_AGE
                basis.append(f"age unknown (assumed {age} y)")
            else:
                basis.append(f"age {age} y")
            formula = "Gulati" if str(sex).lower() in ("female", "f", "k", "kobieta") else "Tanaka"
            max_hr = float(cls.estimate_max_hr(age, sex))
            basis.append(f"estimated max HR {int(max_hr)} bpm ({formula})")

        if fitness is not None:
            lt1_pct, lt2_pct = float(fitness.lt1_pct_hrmax), float(fitness.lt2_pct_hrmax)
            basis.append(f"fitness level {fitness.level}")
        else:
            lt1_pct, lt2_pct = cls.DEFAULT_LT1_PCT, cls.DEFAULT_LT2_PCT

        lt1_hr = int(round(max_hr * lt1_pct / 100))
        lt2_hr = int(round(max_hr * lt2_pct / 100))
        bands, _ = cls._hr_bands(max_hr, lt1_hr, lt2_hr)
        zones = tuple(cls._make_zone(n, lo, hi, max_hr) for n, (lo, hi) in enumerate(bands, start=1))

        warning = (f"Zones estimated from {', '.join(basis)}; LT1 ≈ {lt1_pct:.0f}% and "
                   f"LT2 ≈ {lt2_pct:.0f}% of max HR. A lactate test gives individual zones.")
        return ZoneCalculationResult(
            zones=zones,
            confidence=Confidence.LOW,
            method=ZoneMethod.ESTIMATED,
            warning=warning,
        )

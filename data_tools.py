# ==========================================
# 2. DATA TOOLS (STAGE NORMALIZER)
# ==========================================
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from config import parse_pace_str
from engine_core import IntensityUnit, StageDatapoint


# kolumna canonical -> jednostka intensywności (kolejność = priorytet)
INTENSITY_COLUMNS = [
    ("Speed_kmh", IntensityUnit.KMH),
    ("Power_W", IntensityUnit.WATT),
    ("Pace_minkm", IntensityUnit.MIN_KM),
]


class DataTools:

    @staticmethod
    def _parse_num(val) -> float:
        """Liczba, '4,5' albo 'm:ss' -> float; reszta -> NaN."""
        v = parse_pace_str(val)
        return np.nan if v is None else float(v)

    @staticmethod
    def to_frame(source: Union[pd.DataFrame, Sequence[Dict[str, Any]], str, Path]) -> pd.DataFrame:
        """Lista dictów / DataFrame / ścieżka CSV -> surowy DataFrame."""
        if isinstance(source, pd.DataFrame):
            return source.copy()
        if isinstance(source, (str, Path)):
            path = Path(source)
            sep = ";" if path.suffix.lower() in (".txt", ".tsv") else None
            return pd.read_csv(path, sep=sep, engine="python")
        return pd.DataFrame(list(source))

    @staticmethod
    def canonicalize(df: pd.DataFrame) -> pd.DataFrame:
        """
        Standaryzuje nazwy kolumn do formatów canonical używanych przez silniki:
        Stage, HR_bpm, Lactate_mmol, Speed_kmh, Power_W, Pace_minkm.
        """
        df_new = df.copy()
        lower = {str(c).strip().lower(): c for c in df_new.columns}

        aliases = {
            "Stage": ["Stage", "sequence", "stage", "step", "seq", "etap", "stopien"],
            "HR_bpm": ["HR_bpm", "HR", "hr", "heart_rate", "heartRate", "Pulse", "tetno"],
            "Lactate_mmol": ["Lactate_mmol", "Lactate_mmolL", "lactate", "La", "la", "lac", "bla"],
            "Speed_kmh": ["Speed_kmh", "speed_kmh", "Speed", "speed", "v", "predkosc"],
            "Power_W": ["Power_W", "power_w", "Power", "power", "watts", "Watt", "moc"],
            "Pace_minkm": ["Pace_minkm", "pace_minkm", "Pace", "pace", "tempo"],
        }

        # przepisanie pierwszego pasującego aliasu (dokładnie, potem bez wielkości liter)
        for target, candidates in aliases.items():
            for c in candidates:
                src = c if c in df_new.columns else lower.get(c.lower())
                if src is not None:
                    df_new[target] = df_new[src]
                    break

        for col in ["Stage", "HR_bpm", "Lactate_mmol", "Speed_kmh", "Power_W", "Pace_minkm"]:
            if col in df_new.columns:
                df_new[col] = df_new[col].apply(DataTools._parse_num)
        return df_new

    @staticmethod
    def detect_unit(df: pd.DataFrame) -> IntensityUnit:
        """Jednostka z pierwszego stopnia (speed > power > pace)."""
        present = [(c, u) for c, u in INTENSITY_COLUMNS if c in df.columns]
        if not present:
            raise ValueError("No intensity column (speed / power / pace) in stage data")
        first = df.iloc[0] if len(df) else None
        if first is not None:
            for col, unit in present:
                if pd.notna(first[col]) and first[col] > 0:
                    return unit
        # fallback: kolumna z największą liczbą wartości
        _, unit = max(present, key=lambda cu: df[cu[0]].notna().sum())
        return unit

    @staticmethod
    def load_stages(source) -> List[StageDatapoint]:
        """
        Wejście: lista dictów / DataFrame / CSV.
        Wyjście: StageDatapoint posortowane po sequence; wiersze bez HR,
        La albo intensywności są pomijane.
        """
        df = DataTools.canonicalize(DataTools.to_frame(source))
        if df.empty:
            return []
        if "Lactate_mmol" not in df.columns:
            raise ValueError("No lactate column in stage data")
        if "HR_bpm" not in df.columns:
            raise ValueError("No heart-rate column in stage data")

        unit = DataTools.detect_unit(df)
        int_col = next(c for c, u in INTENSITY_COLUMNS if u is unit)

        if "Stage" not in df.columns or df["Stage"].isna().all():
            df["Stage"] = np.arange(1, len(df) + 1)
        df["Stage"] = df["Stage"].fillna(pd.Series(np.arange(1, len(df) + 1), index=df.index))

        mask = (df["HR_bpm"].notna() & df["Lactate_mmol"].notna() & df[int_col].notna()
                & (df[int_col] > 0) & (df["Lactate_mmol"] >= 0))
        df = df.loc[mask].sort_values("Stage", kind="mergesort")

        return [
            StageDatapoint(
                sequence=int(row["Stage"]),
                heart_rate=float(row["HR_bpm"]),
                lactate=float(row["Lactate_mmol"]),
                intensity=float(row[int_col]),
                unit=unit,
            )
            for _, row in df.iterrows()
        ]

    @staticmethod
    def quality_flags(stages: Sequence[StageDatapoint]) -> List[str]:
        """Data-quality flags for a normalized stage list."""
        flags = []
        if len(stages) < 4:
            flags.append("FEW_POINTS")
        if not stages:
            return flags

        seqs = [s.sequence for s in stages]
        if len(set(seqs)) != len(seqs):
            flags.append("DUPLICATE_SEQUENCE")

        drops = sum(1 for a, b in zip(stages, stages[1:]) if b.lactate < a.lactate - 0.2)
        if drops > 1:
            flags.append("LACTATE_NON_MONOTONIC")

        efforts = [s.effort for s in stages]
        if any(b < a for a, b in zip(efforts, efforts[1:])):
            flags.append("INTENSITY_NON_MONOTONIC")

        if max(s.lactate for s in stages) < 4.0:
            flags.append("PEAK_LACTATE_BELOW_4")
        return flags

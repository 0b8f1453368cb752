# ==========================================
# 1. IMPORTS & CONFIGURATION
# ==========================================
import numpy as np
from dataclasses import dataclass
from typing import Optional, Union, Dict


@dataclass
class AnalysisConfig:
    # --- DANE ZAWODNIKA (KANON META) ---
    athlete_name: str = "Nieznany Zawodnik"
    athlete_id: str = "ID_000"
    test_date: str = "2024-01-01"
    sex: str = ""                          # "male" | "female" | ""
    age_y: Optional[int] = None
    max_hr: Optional[float] = None         # zewnętrzne HRmax; None -> szczyt HR z testu

    # --- MANUAL LT OVERRIDE ---
    # {"lactate": 2.1, "intensity": 12.5} lub {"lactate": 3.8, "intensity": "4:35"} (pace)
    lt1_manual: Optional[Dict[str, Union[str, float]]] = None
    lt2_manual: Optional[Dict[str, Union[str, float]]] = None

    # --- FITNESS (Tier B zones) ---
    fitness_level: Optional[str] = None    # UNTRAINED ... ELITE
    lt1_pct_hrmax: Optional[float] = None
    lt2_pct_hrmax: Optional[float] = None

    # --- USTAWIENIA DETEKCJI ---
    rise_delta_mmol: float = 0.5           # exponential-rise detector
    dickhuth_offset_mmol: float = 1.5      # min lactate equivalent + offset

    # --- KONTEKST ---
    notes: str = ""

    @property
    def lt1_override(self) -> Optional[Dict[str, float]]:
        return parse_manual_pair(self.lt1_manual)

    @property
    def lt2_override(self) -> Optional[Dict[str, float]]:
        return parse_manual_pair(self.lt2_manual)


# --- HELPERY TEMPA / LICZB ---
def parse_pace_str(x):
    """'4:30' -> 4.5 (min/km). Numbers pass through; unreadable input -> None."""
    if x is None:
        return None
    if isinstance(x, (int, float, np.integer, np.floating)):
        v = float(x)
        return None if np.isnan(v) else v
    s = str(x).strip().replace(",", ".")
    if s == "" or s.lower() in ("nan", "none", "null"):
        return None
    parts = s.split(":")
    try:
        if len(parts) == 2:   # mm:ss
            return int(parts[0]) + float(parts[1]) / 60.0
        if len(parts) == 3:   # hh:mm:ss
            return int(parts[0]) * 60 + int(parts[1]) + float(parts[2]) / 60.0
        return float(s)
    except ValueError:
        return None


def parse_manual_pair(pair):
    """
    Normalizuje ręczny próg do {"lactate": float, "intensity": float}.
    Zwraca None jeśli brak danych lub któraś wartość <= 0.
    """
    if not pair:
        return None
    lactate = parse_pace_str(pair.get("lactate", pair.get("la")))
    intensity = parse_pace_str(pair.get("intensity",
                                        pair.get("speed", pair.get("power", pair.get("pace")))))
    if lactate is None or intensity is None:
        return None
    if lactate <= 0 or intensity <= 0:
        return None
    return {"lactate": lactate, "intensity": intensity}

import pytest

from engine_core import IntensityUnit, StageDatapoint


def _build(intensities, lactates, hrs, unit=IntensityUnit.KMH):
    return [
        StageDatapoint(sequence=i + 1, heart_rate=float(h), lactate=float(la),
                       intensity=float(v), unit=unit)
        for i, (v, la, h) in enumerate(zip(intensities, lactates, hrs))
    ]


@pytest.fixture
def make_stages():
    return _build


@pytest.fixture
def standard_stages():
    # recreational runner, treadmill 8-15 km/h
    return _build(
        [8, 9, 10, 11, 12, 13, 14, 15],
        [1.2, 1.3, 1.5, 1.9, 2.6, 3.6, 5.2, 7.8],
        [130, 140, 148, 156, 164, 171, 178, 184],
    )


@pytest.fixture
def elite_stages():
    # low flat baseline, late sharp rise
    return _build(
        [12, 13, 14, 15, 16, 17, 18, 19],
        [0.8, 0.8, 0.85, 0.9, 1.0, 1.3, 2.0, 3.6],
        [130, 137, 144, 151, 158, 165, 172, 179],
    )


@pytest.fixture
def steep_stages():
    # baseline ~1.0, peak 12 mmol/L
    return _build(
        [8, 9, 10, 11, 12, 13, 14, 15],
        [1.0, 1.2, 1.6, 2.2, 3.2, 5.0, 8.0, 12.0],
        [128, 137, 146, 155, 164, 172, 180, 187],
    )


@pytest.fixture
def pace_stages():
    return _build(
        [6.0, 5.5, 5.0, 4.6, 4.3, 4.0, 3.75],
        [1.1, 1.2, 1.5, 2.0, 2.8, 4.1, 6.5],
        [130, 140, 150, 158, 166, 174, 182],
        unit=IntensityUnit.MIN_KM,
    )

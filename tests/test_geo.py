"""Distance and nearest-resource ranking."""

from __future__ import annotations

import math

from geo import find_nearest, find_nearest_ambulances, first_available, haversine_km
from schemas import Ambulance, Coordinate

KM_PER_DEGREE = 6371 * math.pi / 180

REFERENCE = Coordinate(lat=37.7, lng=-122.4)


def _north_of(ref: Coordinate, km: float) -> dict:
    return {"latitude": ref.lat + km / KM_PER_DEGREE, "longitude": ref.lng}


def _ambulance(ident: str, km: float, available: bool = True) -> Ambulance:
    point = _north_of(REFERENCE, km)
    return Ambulance(id=ident, type="basic", vehicle_number=f"V-{ident}", driver_name="D", driver_phone="1",
                     available=available, **point)


def test_distance_is_symmetric_and_zero_on_same_point() -> None:
    a = (37.7, -122.4)
    b = (40.7128, -74.006)
    assert haversine_km(a, b) == haversine_km(b, a)
    assert haversine_km(a, a) == 0
    assert 4100 < haversine_km(a, b) < 4200


def test_distance_rounds_to_one_decimal() -> None:
    assert haversine_km(REFERENCE, _north_of(REFERENCE, 3.04)) == 3.0
    assert haversine_km(REFERENCE, _north_of(REFERENCE, 3.06)) == 3.1
    assert haversine_km(REFERENCE, _north_of(REFERENCE, 2.96)) == 3.0


def test_accepts_models_dicts_and_tuples() -> None:
    point = _north_of(REFERENCE, 1.2)
    as_lat_lng = {"lat": point["latitude"], "lng": point["longitude"]}
    assert haversine_km(REFERENCE, point) == 1.2
    assert haversine_km(REFERENCE, as_lat_lng) == 1.2
    assert haversine_km((REFERENCE.lat, REFERENCE.lng), point) == 1.2


def test_find_nearest_returns_closest_in_order() -> None:
    ambulances = [_ambulance("a", 1.2), _ambulance("b", 3.7), _ambulance("c", 0.4)]

    nearest = find_nearest_ambulances(REFERENCE, ambulances, limit=2)

    assert [a.id for a in nearest] == ["c", "a"]
    assert [a.distance for a in nearest] == [0.4, 1.2]


def test_find_nearest_does_not_mutate_input() -> None:
    ambulances = [_ambulance("a", 1.2), _ambulance("b", 3.7)]
    raw = [{"id": "x", **_north_of(REFERENCE, 2.0)}]

    find_nearest(REFERENCE, ambulances)
    ranked = find_nearest(REFERENCE, raw)

    assert all(a.distance is None for a in ambulances)
    assert "distance" not in raw[0]
    assert ranked[0]["distance"] == 2.0


def test_result_size_and_order() -> None:
    candidates = [_ambulance(str(i), km) for i, km in enumerate([5.0, 0.5, 2.5, 9.1, 0.1])]
    for limit in (0, 1, 3, 5, 10):
        ranked = find_nearest(REFERENCE, candidates, limit=limit)
        assert len(ranked) == min(limit, len(candidates))
        distances = [c.distance for c in ranked]
        assert distances == sorted(distances)
        assert {c.id for c in ranked} <= {c.id for c in candidates}


def test_ties_keep_input_order() -> None:
    candidates = [_ambulance("first", 1.0), _ambulance("second", 1.0), _ambulance("third", 0.2)]

    ranked = find_nearest(REFERENCE, candidates)

    assert [c.id for c in ranked] == ["third", "first", "second"]


def test_available_filtering() -> None:
    candidates = [_ambulance("busy", 0.1, available=False), _ambulance("free", 4.0)]

    assert [c.id for c in find_nearest(REFERENCE, candidates, available_only=True)] == ["free"]
    assert first_available(find_nearest(REFERENCE, candidates)).id == "free"
    assert first_available([]) is None

from __future__ import annotations

import asyncio

import pytest

from database import MemoryStorage
from schemas import BookingCreate, Location, User
from store import BookingStore


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage) -> BookingStore:
    return BookingStore(storage)


@pytest.fixture
def patient() -> User:
    return User(id="patient-1", name="Ada Patient", email="ada@example.com", phone="555-0001", role="patient")


@pytest.fixture
def other_patient() -> User:
    return User(id="patient-2", name="Bo Patient", email="bo@example.com", phone="555-0002", role="patient")


@pytest.fixture
def driver() -> User:
    return User(id="driver-1", name="Dee Driver", email="dee@example.com", phone="555-0101",
                role="driver", vehicle_number="CA-AMB-1001")


@pytest.fixture
def second_driver() -> User:
    return User(id="driver-2", name="Eli Driver", email="eli@example.com", phone="555-0102",
                role="driver", vehicle_number="CA-AMB-2002")


def make_draft(user_id: str = "patient-1", **overrides) -> BookingCreate:
    fields = dict(
        user_id=user_id,
        ambulance_id="amb-1",
        hospital_id="hosp-1",
        pickup_location=Location(address="Current Location", latitude=37.7, longitude=-122.4),
        hospital_location=Location(address="1001 Potrero Ave", latitude=37.8, longitude=-122.5),
        ambulance_type="basic",
        patient_name="Ada Patient",
        patient_age=42,
        patient_condition="Chest pain",
        is_emergency=False,
        estimated_arrival="15-20 minutes",
    )
    fields.update(overrides)
    return BookingCreate(**fields)


@pytest.fixture
def draft() -> BookingCreate:
    return make_draft()

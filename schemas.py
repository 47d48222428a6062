"""
Database Schemas for the Ambulance Booking service

Each Pydantic model mirrors one persisted record. Field names are snake_case
in Python and camelCase on the wire and in storage (e.g. ``patient_age`` ->
``patientAge``), so stored collections stay readable by the mobile client.
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, AliasChoices
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class BookingStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    on_the_way = "on-the-way"
    arrived = "arrived"
    in_transit = "in-transit"
    completed = "completed"
    cancelled = "cancelled"


AmbulanceType = Literal['basic', 'advanced', 'air']
UserRole = Literal['patient', 'driver']
HospitalCategory = Literal[
    'emergency', 'cardiology', 'neurology', 'orthopedics', 'gynecology',
    'pediatrics', 'oncology', 'multispecialist', 'gastroenterology',
]

# Shared types
class Coordinate(ApiModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

class Location(ApiModel):
    address: str = Field(..., min_length=1, description="Human readable address")
    latitude: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("longitude", "lng"))


class EmergencyContact(ApiModel):
    id: str
    name: str
    phone: str
    relation: str

class ContactCreate(ApiModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    relation: str = ""

class User(ApiModel):
    id: str
    name: str
    email: str
    phone: str
    role: UserRole
    blood_group: Optional[str] = None
    emergency_contacts: List[EmergencyContact] = Field(default_factory=list)
    vehicle_number: Optional[str] = None
    license_number: Optional[str] = None

class UserRegister(ApiModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(..., min_length=1)
    password: str
    role: UserRole
    vehicle_number: Optional[str] = None
    license_number: Optional[str] = None

class LoginRequest(ApiModel):
    email: str
    password: str
    role: UserRole

class ProfileUpdate(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    blood_group: Optional[str] = None
    vehicle_number: Optional[str] = None
    license_number: Optional[str] = None


class Ambulance(ApiModel):
    id: str
    type: AmbulanceType
    vehicle_number: str
    driver_name: str
    driver_phone: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    available: bool = True
    rating: float = 4.8
    equipments: List[str] = Field(default_factory=list)
    distance: Optional[float] = None

class Hospital(ApiModel):
    id: str
    name: str
    address: str
    phone: str = '+1-XXX-XXX-XXXX'
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    specialties: List[str] = Field(default_factory=list)
    category: List[HospitalCategory] = Field(default_factory=list)
    rating: float = 4.0
    available: bool = True
    distance: Optional[float] = None


class BookingCreate(ApiModel):
    user_id: str = Field(..., min_length=1)
    ambulance_id: str = Field(..., min_length=1)
    hospital_id: str = Field(..., min_length=1)
    pickup_location: Location
    hospital_location: Location
    ambulance_type: AmbulanceType
    patient_name: str = Field(..., min_length=1)
    patient_age: int = Field(..., gt=0)
    patient_condition: str = Field(..., min_length=1)
    is_emergency: bool = False
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    vehicle_number: Optional[str] = None
    estimated_arrival: Optional[str] = None

class Booking(BookingCreate):
    id: str
    status: BookingStatus = BookingStatus.pending
    booking_time: datetime = Field(default_factory=utcnow)
    driver_id: Optional[str] = None

class StatusUpdate(ApiModel):
    status: BookingStatus
    driver_id: Optional[str] = None
    actor_id: Optional[str] = None

class EventRequest(ApiModel):
    actor_id: str

class SosRequest(ApiModel):
    user_id: str
    location: Coordinate
    address: str = "Current Location"
    patient_age: int = Field(30, gt=0)
    patient_condition: str = "Emergency"

"""Nearby hospital lookup.

``search_nearby`` is the only call the booking service makes; the Google
Places client below is one implementation of it.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from geo import haversine_km
from schemas import Coordinate, Hospital

logger = logging.getLogger(__name__)

NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

SPECIALTY_MAP = {
    "hospital": "General",
    "emergency_room": "Emergency",
    "doctor": "General Practice",
    "health": "Healthcare",
}

# name keywords -> category
CATEGORY_KEYWORDS = [
    (("cardio", "heart"), "cardiology"),
    (("neuro", "brain"), "neurology"),
    (("ortho", "bone"), "orthopedics"),
    (("gynec", "women", "maternity"), "gynecology"),
    (("child", "pediatric", "paediatric"), "pediatrics"),
    (("cancer", "oncology"), "oncology"),
    (("gastro", "digestive"), "gastroenterology"),
]


def extract_specialties(types: List[str]) -> List[str]:
    specialties = [SPECIALTY_MAP[t] for t in types if t in SPECIALTY_MAP]
    return specialties or ["General"]


def extract_categories(name: str, types: List[str]) -> List[str]:
    lowered = name.lower()
    categories = [cat for words, cat in CATEGORY_KEYWORDS if any(w in lowered for w in words)]
    if "emergency_room" in types or "emergency" in lowered:
        categories.append("emergency")
    if not categories or len(categories) > 2:
        categories.append("multispecialist")
    return categories


class PlaceSource(ABC):
    @abstractmethod
    def search_nearby(self, coordinate: Coordinate, radius_meters: int = 5000) -> List[Hospital]:
        raise NotImplementedError


class StaticPlaceSource(PlaceSource):
    """Serves a fixed hospital list, nearest first."""

    def __init__(self, hospitals: List[Hospital]):
        self.hospitals = hospitals

    def search_nearby(self, coordinate, radius_meters=5000):
        found = []
        for hospital in self.hospitals:
            distance = haversine_km(coordinate, hospital)
            if distance * 1000 <= radius_meters:
                found.append(hospital.model_copy(update={"distance": distance}))
        return sorted(found, key=lambda h: h.distance)


class GooglePlacesSource(PlaceSource):
    def __init__(self, api_key: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def search_nearby(self, coordinate, radius_meters=5000):
        params = {
            "location": f"{coordinate.lat},{coordinate.lng}",
            "radius": radius_meters,
            "type": "hospital",
            "key": self.api_key,
        }
        try:
            response = self.session.get(NEARBY_SEARCH_URL, params=params, timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Error fetching hospitals from Google Places: %s", e)
            return []

        if data.get("status") != "OK":
            logger.warning("Google Places API error: %s", data.get("status"))
            return []

        hospitals = []
        for place in data.get("results", []):
            location = place["geometry"]["location"]
            types = place.get("types", [])
            hospital = Hospital(
                id=place["place_id"],
                name=place["name"],
                address=place.get("formatted_address") or place.get("vicinity", ""),
                latitude=location["lat"],
                longitude=location["lng"],
                specialties=extract_specialties(types),
                category=extract_categories(place["name"], types),
                rating=place.get("rating") or 4.0,
                available=True,
                **({"phone": place["formatted_phone_number"]} if place.get("formatted_phone_number") else {}),
            )
            hospitals.append(hospital.model_copy(update={"distance": haversine_km(coordinate, hospital)}))
        return sorted(hospitals, key=lambda h: h.distance)

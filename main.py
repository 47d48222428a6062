import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings
from database import Storage, build_storage
from errors import BookingError, Forbidden, NotFound, ValidationError
from geo import find_nearest_ambulances, find_nearest_hospitals, first_available
from lifecycle import BookingEvent
from notifier import Notifier, build_notifier
from places import GooglePlacesSource, PlaceSource, StaticPlaceSource
from schemas import (
    Ambulance,
    Booking,
    BookingCreate,
    ContactCreate,
    Coordinate,
    EventRequest,
    Hospital,
    Location,
    LoginRequest,
    ProfileUpdate,
    SosRequest,
    StatusUpdate,
    User,
    UserRegister,
)
from store import BookingStore, ReferenceCatalog
from sync import BookingView, scope_view
from users import UserDirectory

logger = logging.getLogger(__name__)


class Services:
    """Everything a request handler needs, built once per app."""

    def __init__(self, settings: Settings, storage: Optional[Storage] = None,
                 notifier: Optional[Notifier] = None, places: Optional[PlaceSource] = None):
        self.settings = settings
        self.storage = storage or build_storage(settings)
        self.bookings = BookingStore(self.storage)
        self.catalog = ReferenceCatalog(self.storage)
        self.users = UserDirectory(self.storage)
        self.notifier = notifier or build_notifier(settings)
        if places is None and settings.places_api_key:
            places = GooglePlacesSource(settings.places_api_key)
        self.places = places

    async def start(self):
        await self.bookings.start()
        await self.catalog.start()
        await self.users.start()

    async def stop(self):
        await self.bookings.stop()
        await self.catalog.stop()
        await self.users.stop()


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


@router.get("/")
def read_root():
    return {"message": "Ambulance Booking Backend Running"}


@router.get("/test")
async def test_database(services: Services = Depends(get_services)):
    """Quick storage check"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "storage": services.storage.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        info = await services.storage.ping()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = info.get("collections") or info.get("keys") or []
    except BookingError as e:
        response["database"] = f"⚠️  {str(e)[:80]}"
    return response


# Reference data

SAMPLE_AMBULANCES = [
    Ambulance(id="amb-1", type="basic", vehicle_number="CA-AMB-1001", driver_name="Marcus Reed",
              driver_phone="+1-415-555-0101", latitude=37.7849, longitude=-122.4094,
              equipments=["Oxygen", "First Aid", "Stretcher"]),
    Ambulance(id="amb-2", type="advanced", vehicle_number="CA-AMB-2002", driver_name="Priya Nair",
              driver_phone="+1-415-555-0102", latitude=37.7694, longitude=-122.4862, rating=4.9,
              equipments=["Defibrillator", "Ventilator", "Cardiac Monitor"]),
    Ambulance(id="amb-3", type="basic", vehicle_number="CA-AMB-1003", driver_name="Luis Ortega",
              driver_phone="+1-415-555-0103", latitude=37.7599, longitude=-122.4148, available=False),
    Ambulance(id="amb-4", type="air", vehicle_number="CA-HEL-0004", driver_name="Dana Cho",
              driver_phone="+1-415-555-0104", latitude=37.6213, longitude=-122.3790, rating=5.0,
              equipments=["Helicopter", "Critical Care Kit"]),
]

SAMPLE_HOSPITALS = [
    Hospital(id="hosp-1", name="San Francisco General Hospital", address="1001 Potrero Ave, San Francisco, CA",
             phone="+1-628-206-8000", latitude=37.7557, longitude=-122.4048,
             specialties=["Trauma", "Emergency"], category=["emergency", "multispecialist"], rating=4.3),
    Hospital(id="hosp-2", name="UCSF Heart and Vascular Center", address="505 Parnassus Ave, San Francisco, CA",
             phone="+1-415-476-1000", latitude=37.7631, longitude=-122.4576,
             specialties=["Cardiology"], category=["cardiology"], rating=4.7),
    Hospital(id="hosp-3", name="Benioff Children's Hospital", address="1975 4th St, San Francisco, CA",
             phone="+1-415-476-1000", latitude=37.7676, longitude=-122.3893,
             specialties=["Pediatrics"], category=["pediatrics"], rating=4.8),
]


@router.post("/api/seed")
async def seed_data(services: Services = Depends(get_services)):
    """Seed a few ambulances and hospitals if none exist"""
    return {"seeded": await services.catalog.seed(SAMPLE_AMBULANCES, SAMPLE_HOSPITALS)}


@router.get("/api/ambulances", response_model=List[Ambulance])
async def list_ambulances(services: Services = Depends(get_services)):
    return await services.catalog.ambulances()


@router.get("/api/ambulances/nearest", response_model=List[Ambulance])
async def nearest_ambulances(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                             limit: int = Query(5, ge=1), available: bool = False,
                             services: Services = Depends(get_services)):
    return find_nearest_ambulances(Coordinate(lat=lat, lng=lng), await services.catalog.ambulances(), limit, available)


@router.get("/api/hospitals", response_model=List[Hospital])
async def list_hospitals(services: Services = Depends(get_services)):
    return await services.catalog.hospitals()


@router.get("/api/hospitals/nearest", response_model=List[Hospital])
async def nearest_hospitals(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                            limit: int = Query(5, ge=1), available: bool = False,
                            services: Services = Depends(get_services)):
    return find_nearest_hospitals(Coordinate(lat=lat, lng=lng), await services.catalog.hospitals(), limit, available)


async def _place_source(services: Services) -> PlaceSource:
    if services.places is not None:
        return services.places
    return StaticPlaceSource(await services.catalog.hospitals())


@router.get("/api/hospitals/nearby", response_model=List[Hospital])
async def search_hospitals(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                           radius: int = Query(5000, gt=0), services: Services = Depends(get_services)):
    source = await _place_source(services)
    return await asyncio.to_thread(source.search_nearby, Coordinate(lat=lat, lng=lng), radius)


@router.post("/api/hospitals/import")
async def import_hospitals(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                           radius: int = Query(5000, gt=0), services: Services = Depends(get_services)):
    """Replace the stored hospital list with the place source's results"""
    if services.places is None:
        raise NotFound("No place source configured")
    found = await asyncio.to_thread(services.places.search_nearby, Coordinate(lat=lat, lng=lng), radius)
    if not found:
        return {"imported": 0}
    return {"imported": await services.catalog.replace_hospitals(found)}


# Users

@router.post("/api/users/register", response_model=User)
async def register(req: UserRegister, services: Services = Depends(get_services)):
    return await services.users.register(req)


@router.post("/api/users/login", response_model=User)
async def login(req: LoginRequest, services: Services = Depends(get_services)):
    return await services.users.login(req.email, req.role)


@router.post("/api/users/logout")
async def logout(services: Services = Depends(get_services)):
    await services.users.logout()
    return {"ok": True}


@router.get("/api/users/me", response_model=Optional[User])
async def current_user(services: Services = Depends(get_services)):
    return await services.users.current_user()


@router.get("/api/users/{user_id}", response_model=User)
async def get_user(user_id: str, services: Services = Depends(get_services)):
    return await services.users.get(user_id)


@router.patch("/api/users/{user_id}", response_model=User)
async def update_profile(user_id: str, req: ProfileUpdate, services: Services = Depends(get_services)):
    return await services.users.update_profile(user_id, req)


@router.post("/api/users/{user_id}/contacts", response_model=User)
async def add_contact(user_id: str, req: ContactCreate, services: Services = Depends(get_services)):
    return await services.users.add_emergency_contact(user_id, req)


@router.delete("/api/users/{user_id}/contacts/{contact_id}", response_model=User)
async def remove_contact(user_id: str, contact_id: str, services: Services = Depends(get_services)):
    return await services.users.remove_emergency_contact(user_id, contact_id)


# Bookings

def _require_patient(user: User) -> None:
    if user.role != "patient":
        raise Forbidden(f"User {user.id} is not a patient")


async def _alert_contacts(services: Services, background: BackgroundTasks, user: User, booking: Booking) -> None:
    if not user.emergency_contacts:
        return
    try:
        hospital = await services.catalog.get_hospital(booking.hospital_id)
        hospital_name, hospital_address = hospital.name, hospital.address
    except NotFound:
        hospital_name = hospital_address = booking.hospital_location.address
    background.add_task(
        services.notifier.notify,
        user.emergency_contacts,
        {
            "patient_name": booking.patient_name,
            "hospital_name": hospital_name,
            "hospital_address": hospital_address,
        },
    )


@router.post("/api/bookings", response_model=Booking)
async def create_booking(req: BookingCreate, background: BackgroundTasks,
                         services: Services = Depends(get_services)):
    user = await services.users.get(req.user_id)
    _require_patient(user)
    booking = await services.bookings.create(req)
    await _alert_contacts(services, background, user, booking)
    return booking


@router.get("/api/bookings", response_model=List[Booking])
async def list_bookings(services: Services = Depends(get_services)):
    return await services.bookings.list_all()


@router.get("/api/bookings/view", response_model=BookingView)
async def booking_view(user_id: str, services: Services = Depends(get_services)):
    """Role-scoped view: drivers see every booking, patients only their own"""
    user = await services.users.get(user_id)
    return scope_view(user, await services.bookings.list_all())


@router.get("/api/bookings/active", response_model=Optional[Booking])
async def get_active_booking(user_id: str, services: Services = Depends(get_services)):
    user = await services.users.get(user_id)
    return scope_view(user, await services.bookings.list_all()).active


@router.get("/api/users/{user_id}/bookings", response_model=List[Booking])
async def user_bookings(user_id: str, services: Services = Depends(get_services)):
    return await services.bookings.list_for_user(user_id)


@router.get("/api/bookings/{booking_id}", response_model=Booking)
async def get_booking(booking_id: str, services: Services = Depends(get_services)):
    return await services.bookings.get(booking_id)


@router.post("/api/bookings/{booking_id}/status", response_model=Booking)
async def update_booking_status(booking_id: str, req: StatusUpdate, services: Services = Depends(get_services)):
    actor_id = req.actor_id or req.driver_id
    if not actor_id:
        raise ValidationError("actorId or driverId required")
    actor = await services.users.get(actor_id)
    driver = await services.users.get(req.driver_id) if req.driver_id else None
    return await services.bookings.update_status(booking_id, req.status, actor, driver)


@router.post("/api/bookings/{booking_id}/events/{event}", response_model=Booking)
async def fire_event(booking_id: str, event: BookingEvent, req: EventRequest,
                     services: Services = Depends(get_services)):
    actor = await services.users.get(req.actor_id)
    return await services.bookings.transition(booking_id, event, actor=actor)


@router.post("/api/sos", response_model=Booking)
async def emergency_sos(req: SosRequest, background: BackgroundTasks, services: Services = Depends(get_services)):
    """Book the nearest available ambulance to the nearest available hospital"""
    user = await services.users.get(req.user_id)
    _require_patient(user)
    ambulance = first_available(find_nearest_ambulances(req.location, await services.catalog.ambulances()))
    hospital = first_available(find_nearest_hospitals(req.location, await services.catalog.hospitals()))
    if ambulance is None or hospital is None:
        raise NotFound("No available ambulances or hospitals nearby")

    draft = BookingCreate(
        user_id=user.id,
        ambulance_id=ambulance.id,
        hospital_id=hospital.id,
        pickup_location=Location(address=req.address, latitude=req.location.lat, longitude=req.location.lng),
        hospital_location=Location(address=hospital.address, latitude=hospital.latitude, longitude=hospital.longitude),
        ambulance_type=ambulance.type,
        patient_name=user.name,
        patient_age=req.patient_age,
        patient_condition=req.patient_condition,
        is_emergency=True,
        driver_name=ambulance.driver_name,
        driver_phone=ambulance.driver_phone,
        vehicle_number=ambulance.vehicle_number,
        estimated_arrival="5-10 minutes",
    )
    booking = await services.bookings.create(draft)
    await _alert_contacts(services, background, user, booking)
    return booking


async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None,
               notifier: Optional[Notifier] = None, places: Optional[PlaceSource] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = Services(settings, storage, notifier, places)
        await services.start()
        app.state.services = services
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(title="Ambulance Booking API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BookingError, booking_error_handler)
    app.include_router(router)
    return app


app = create_app()

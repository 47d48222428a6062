"""Registered users and the signed-in session.

Credential storage is out of scope: passwords are accepted on register and
login but never persisted or checked.
"""
import logging
import uuid
from typing import List, Optional

from database import Storage
from errors import DuplicateRegistration, NotFound
from schemas import ContactCreate, EmergencyContact, ProfileUpdate, User, UserRegister, UserRole
from store import CollectionOwner

logger = logging.getLogger(__name__)

USERS_KEY = '@ambulance_all_users'
SESSION_KEY = '@ambulance_user'


def _load(value) -> List[User]:
    return [User.model_validate(record) for record in value or []]


class UserDirectory:
    def __init__(self, storage: Storage):
        self._users = CollectionOwner(storage, USERS_KEY)
        self._session = CollectionOwner(storage, SESSION_KEY)

    async def start(self) -> None:
        await self._users.start()
        await self._session.start()

    async def stop(self) -> None:
        await self._users.stop()
        await self._session.stop()

    async def register(self, data: UserRegister) -> User:
        def fn(value):
            users = _load(value)
            if any(u.email.lower() == data.email.lower() for u in users):
                raise DuplicateRegistration("Email already registered")
            if any(u.phone == data.phone for u in users):
                raise DuplicateRegistration("Phone number already registered")
            user = User(
                id=uuid.uuid4().hex,
                name=data.name,
                email=data.email,
                phone=data.phone,
                role=data.role,
                vehicle_number=data.vehicle_number,
                license_number=data.license_number,
            )
            return list(value or []) + [user.to_record()], user

        user = await self._users.mutate(fn)
        await self._set_session(user)
        logger.info("Registered %s %s", user.role, user.id)
        return user

    async def login(self, email: str, role: UserRole) -> User:
        for user in await self.list_all():
            if user.email.lower() == email.lower() and user.role == role:
                await self._set_session(user)
                return user
        raise NotFound("Invalid credentials or wrong account type")

    async def logout(self) -> None:
        await self._session.mutate(lambda value: (None, None))

    async def current_user(self) -> Optional[User]:
        value = await self._session.read()
        return User.model_validate(value) if value else None

    async def list_all(self) -> List[User]:
        return _load(await self._users.read())

    async def get(self, user_id: str) -> User:
        for user in await self.list_all():
            if user.id == user_id:
                return user
        raise NotFound(f"User {user_id} not found")

    async def _set_session(self, user: User) -> None:
        record = user.to_record()
        await self._session.mutate(lambda value: (record, None))

    async def _replace(self, user_id: str, change) -> User:
        def fn(value):
            users = _load(value)
            for index, user in enumerate(users):
                if user.id == user_id:
                    updated = change(user)
                    records = list(value)
                    records[index] = updated.to_record()
                    return records, updated
            raise NotFound(f"User {user_id} not found")

        updated = await self._users.mutate(fn)
        current = await self.current_user()
        if current is not None and current.id == user_id:
            await self._set_session(updated)
        return updated

    async def update_profile(self, user_id: str, updates: ProfileUpdate) -> User:
        changes = updates.model_dump(exclude_none=True)
        return await self._replace(user_id, lambda user: user.model_copy(update=changes))

    async def add_emergency_contact(self, user_id: str, contact: ContactCreate) -> User:
        new_contact = EmergencyContact(id=uuid.uuid4().hex, **contact.model_dump())
        return await self._replace(
            user_id,
            lambda user: user.model_copy(update={"emergency_contacts": user.emergency_contacts + [new_contact]}),
        )

    async def remove_emergency_contact(self, user_id: str, contact_id: str) -> User:
        def change(user):
            remaining = [c for c in user.emergency_contacts if c.id != contact_id]
            if len(remaining) == len(user.emergency_contacts):
                raise NotFound(f"Contact {contact_id} not found")
            return user.model_copy(update={"emergency_contacts": remaining})
        return await self._replace(user_id, change)

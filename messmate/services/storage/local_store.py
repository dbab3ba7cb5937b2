"""
Local Store

Durable per-entity CRUD against the local key-value medium. This is the
sole source of truth whenever the remote service is unavailable.

DESIGN DECISION: Each entity type is one flat, ordered collection stored
under a fixed key. A mutation loads the whole collection, changes it in
memory and writes the whole collection back. Reads filter the full
collection by foreign key (messId, monthId, userId); at household volumes
no index is needed.

CONCURRENCY: load/modify/write spans await points, so two overlapping
mutations of the same collection could each write back a copy that lacks
the other's change. With `serialize_writes=True` (the default) every
mutation of a collection runs under that collection's lock. With
`serialize_writes=False` the race is left open; it is kept only to
demonstrate the lost-update behavior.
"""

import asyncio
import hashlib
import hmac
import secrets
import string
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable, Optional, TypeVar

from pydantic import ValidationError

from messmate.models.entities import (
    BazarDate,
    Credential,
    Deposit,
    JoinRequest,
    JoinRequestStatus,
    Meal,
    MealCost,
    Mess,
    MessRecord,
    Month,
    Note,
    Notice,
    Notification,
    NotificationType,
    OtherCost,
    User,
    UserRole,
    generate_id,
    utc_now,
)
from messmate.services.storage.interface import (
    CorruptCollectionError,
    RejectedError,
    StorageMedium,
)


R = TypeVar("R", bound=MessRecord)

MESS_CODE_ALPHABET = string.ascii_uppercase + string.digits
MESS_CODE_LENGTH = 6
PBKDF2_ITERATIONS = 200_000


class Collection(str, Enum):
    """Fixed storage keys, one per entity type."""
    USERS = "mess_manager_users"
    MESSES = "mess_manager_messes"
    MONTHS = "mess_manager_months"
    MEALS = "mess_manager_meals"
    DEPOSITS = "mess_manager_deposits"
    MEAL_COSTS = "mess_manager_meal_costs"
    OTHER_COSTS = "mess_manager_other_costs"
    JOIN_REQUESTS = "mess_manager_join_requests"
    NOTICES = "mess_manager_notices"
    NOTES = "mess_manager_notes"
    BAZAR_DATES = "mess_manager_bazar_dates"
    NOTIFICATIONS = "mess_manager_notifications"
    CREDENTIALS = "mess_manager_credentials"


CURRENT_USER_KEY = "mess_manager_current_user"

COLLECTION_MODELS: dict[Collection, type[MessRecord]] = {
    Collection.USERS: User,
    Collection.MESSES: Mess,
    Collection.MONTHS: Month,
    Collection.MEALS: Meal,
    Collection.DEPOSITS: Deposit,
    Collection.MEAL_COSTS: MealCost,
    Collection.OTHER_COSTS: OtherCost,
    Collection.JOIN_REQUESTS: JoinRequest,
    Collection.NOTICES: Notice,
    Collection.NOTES: Note,
    Collection.BAZAR_DATES: BazarDate,
    Collection.NOTIFICATIONS: Notification,
    Collection.CREDENTIALS: Credential,
}


def _hash_password(password: str, salt_hex: str) -> str:
    dk = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        bytes.fromhex(salt_hex),
        PBKDF2_ITERATIONS,
    )
    return dk.hex()


class LocalStore:
    """
    Collection-per-entity store over a `StorageMedium`.

    Unknown ids never raise: updates return None and deletes return False.
    Business rejections raise `RejectedError`.
    """

    def __init__(self, medium: StorageMedium, serialize_writes: bool = True):
        self._medium = medium
        self._serialize_writes = serialize_writes
        self._locks: dict[Collection, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def serialize_writes(self) -> bool:
        return self._serialize_writes

    @staticmethod
    def generate_id() -> str:
        return generate_id()

    # =========================================================================
    # COLLECTION PRIMITIVES
    # =========================================================================

    async def _load(self, collection: Collection) -> list:
        model = COLLECTION_MODELS[collection]
        raw = await self._medium.read(collection.value)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CorruptCollectionError(f"{collection.value} is not a list")
        try:
            return [model.model_validate(item) for item in raw]
        except ValidationError as e:
            raise CorruptCollectionError(f"Invalid record in {collection.value}: {e}")

    async def _save(self, collection: Collection, records: list) -> None:
        await self._medium.write(collection.value, [r.to_record() for r in records])

    @asynccontextmanager
    async def _writing(self, collection: Collection):
        if self._serialize_writes:
            async with self._locks[collection]:
                yield
        else:
            yield

    async def _mutate(
        self,
        collection: Collection,
        mutator: Callable[[list], tuple[Any, bool]],
    ) -> Any:
        """
        Load, apply `mutator` in memory, write back if it reports a change.

        `mutator(records)` returns `(result, changed)`.
        """
        async with self._writing(collection):
            records = await self._load(collection)
            result, changed = mutator(records)
            if changed:
                await self._save(collection, records)
            return result

    async def _all(self, collection: Collection) -> list:
        return await self._load(collection)

    async def _filter(self, collection: Collection, predicate: Callable[[Any], bool]) -> list:
        return [r for r in await self._load(collection) if predicate(r)]

    async def _find(self, collection: Collection, predicate: Callable[[Any], bool]):
        for record in await self._load(collection):
            if predicate(record):
                return record
        return None

    async def _get(self, collection: Collection, record_id: str):
        return await self._find(collection, lambda r: r.id == record_id)

    async def _insert(self, collection: Collection, record: R) -> R:
        stamped = record.model_copy(update={"id": generate_id(), "created_at": utc_now()})

        def mutator(records):
            records.append(stamped)
            return stamped, True

        return await self._mutate(collection, mutator)

    async def _insert_many(self, collection: Collection, new_records: Iterable[R]) -> list[R]:
        stamped = [
            r.model_copy(update={"id": generate_id(), "created_at": utc_now()})
            for r in new_records
        ]

        def mutator(records):
            records.extend(stamped)
            return stamped, bool(stamped)

        return await self._mutate(collection, mutator)

    async def _update(
        self,
        collection: Collection,
        record_id: str,
        changes: dict[str, Any],
    ):
        def mutator(records):
            for index, record in enumerate(records):
                if record.id == record_id:
                    records[index] = record.apply_changes(changes)
                    return records[index], True
            return None, False

        return await self._mutate(collection, mutator)

    async def _update_where(
        self,
        collection: Collection,
        predicate: Callable[[Any], bool],
        changes: dict[str, Any],
    ) -> int:
        def mutator(records):
            count = 0
            for index, record in enumerate(records):
                if predicate(record):
                    records[index] = record.apply_changes(changes)
                    count += 1
            return count, count > 0

        return await self._mutate(collection, mutator)

    async def _delete(self, collection: Collection, record_id: str) -> bool:
        return await self._delete_where(collection, lambda r: r.id == record_id) > 0

    async def _delete_where(self, collection: Collection, predicate: Callable[[Any], bool]) -> int:
        def mutator(records):
            kept = [r for r in records if not predicate(r)]
            removed = len(records) - len(kept)
            records[:] = kept
            return removed, removed > 0

        return await self._mutate(collection, mutator)

    # =========================================================================
    # SESSION
    # =========================================================================

    async def get_current_user(self) -> Optional[User]:
        raw = await self._medium.read(CURRENT_USER_KEY)
        if raw is None:
            return None
        try:
            return User.model_validate(raw)
        except ValidationError as e:
            raise CorruptCollectionError(f"Invalid session user: {e}")

    async def set_current_user(self, user: Optional[User]) -> None:
        if user is None:
            await self._medium.delete(CURRENT_USER_KEY)
        else:
            await self._medium.write(CURRENT_USER_KEY, user.to_record())

    # =========================================================================
    # USERS & AUTH
    # =========================================================================

    async def get_users(self) -> list[User]:
        return await self._all(Collection.USERS)

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        return await self._get(Collection.USERS, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        return await self._find(Collection.USERS, lambda u: u.email.lower() == wanted)

    async def create_user(self, user: User) -> User:
        return await self._insert(Collection.USERS, user)

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        return await self._update(Collection.USERS, user_id, changes)

    async def delete_user(self, user_id: str) -> bool:
        return await self._delete(Collection.USERS, user_id)

    async def get_mess_members(self, mess_id: str) -> list[User]:
        """Approved, active users of a mess."""
        return await self._filter(
            Collection.USERS,
            lambda u: u.mess_id == mess_id and u.is_approved and u.is_active,
        )

    async def remove_member(self, user_id: str) -> bool:
        """Detach a member from their mess. Their records stay."""
        updated = await self.update_user(user_id, {"mess_id": None, "is_approved": False})
        return updated is not None

    async def _set_password(self, user_id: str, password: str) -> None:
        salt = secrets.token_hex(16)
        credential = Credential(
            user_id=user_id,
            salt=salt,
            password_hash=_hash_password(password, salt),
        )
        await self._delete_where(Collection.CREDENTIALS, lambda c: c.user_id == user_id)
        await self._insert(Collection.CREDENTIALS, credential)

    async def _register(self, user: User, password: str) -> User:
        if not password:
            raise RejectedError("Password is required")
        email = user.email.strip().lower()

        def mutator(records):
            if any(u.email.lower() == email for u in records):
                raise RejectedError("Email already registered")
            created = user.model_copy(
                update={"id": generate_id(), "created_at": utc_now(), "email": email}
            )
            records.append(created)
            return created, True

        created = await self._mutate(Collection.USERS, mutator)
        await self._set_password(created.id, password)
        return created

    async def register_manager(
        self,
        full_name: str,
        mess_name: str,
        phone: str,
        email: str,
        password: str,
    ) -> tuple[User, Mess]:
        """Create a manager account together with their new mess."""
        user = await self._register(
            User(
                email=email,
                full_name=full_name,
                phone=phone,
                role=UserRole.MANAGER,
                is_approved=True,
                is_active=True,
            ),
            password,
        )
        mess = await self.create_mess(Mess(name=mess_name, manager_id=user.id))
        user = await self.update_user(user.id, {"mess_id": mess.id})
        return user, mess

    async def register_member(
        self,
        full_name: str,
        phone: str,
        email: str,
        password: str,
    ) -> User:
        """Create a member account. Membership starts with an approved join request."""
        return await self._register(
            User(
                email=email,
                full_name=full_name,
                phone=phone,
                role=UserRole.MEMBER,
                mess_id=None,
                is_approved=False,
                is_active=True,
            ),
            password,
        )

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.get_user_by_email(email)
        if user is None:
            raise RejectedError("Invalid email or password")
        credential = await self._find(Collection.CREDENTIALS, lambda c: c.user_id == user.id)
        if credential is None:
            raise RejectedError("Invalid email or password")
        attempt = _hash_password(password, credential.salt)
        if not hmac.compare_digest(attempt, credential.password_hash):
            raise RejectedError("Invalid email or password")
        return user

    # =========================================================================
    # MESSES
    # =========================================================================

    async def get_messes(self) -> list[Mess]:
        return await self._all(Collection.MESSES)

    async def get_mess_by_id(self, mess_id: str) -> Optional[Mess]:
        return await self._get(Collection.MESSES, mess_id)

    async def get_mess_by_code(self, code: str) -> Optional[Mess]:
        wanted = code.strip().upper()
        return await self._find(Collection.MESSES, lambda m: m.code.upper() == wanted)

    @staticmethod
    def _new_code() -> str:
        return "".join(secrets.choice(MESS_CODE_ALPHABET) for _ in range(MESS_CODE_LENGTH))

    async def generate_unique_mess_code(self) -> str:
        taken = {m.code.upper() for m in await self.get_messes()}
        code = self._new_code()
        while code in taken:
            code = self._new_code()
        return code

    async def is_mess_code_unique(self, code: str, exclude_mess_id: Optional[str] = None) -> bool:
        wanted = code.strip().upper()
        for mess in await self.get_messes():
            if mess.code.upper() == wanted and mess.id != exclude_mess_id:
                return False
        return True

    async def create_mess(self, mess: Mess) -> Mess:
        """Insert a mess, assigning a unique join code if it has none."""
        def mutator(records):
            taken = {m.code.upper() for m in records}
            code = mess.code.strip().upper()
            if code and code in taken:
                raise RejectedError("Mess code already in use")
            while not code or code in taken:
                code = self._new_code()
            created = mess.model_copy(
                update={"id": generate_id(), "created_at": utc_now(), "code": code}
            )
            records.append(created)
            return created, True

        return await self._mutate(Collection.MESSES, mutator)

    async def update_mess(self, mess_id: str, changes: dict[str, Any]) -> Optional[Mess]:
        """Apply `changes`; a new code is checked against the other messes under the write lock."""
        if "code" in changes:
            changes = {**changes, "code": str(changes["code"]).strip().upper()}

        def mutator(records):
            index = next((i for i, r in enumerate(records) if r.id == mess_id), None)
            if index is None:
                return None, False
            code = changes.get("code")
            if code and any(r.code.upper() == code and r.id != mess_id for r in records):
                raise RejectedError("Mess code already in use")
            records[index] = records[index].apply_changes(changes)
            return records[index], True

        return await self._mutate(Collection.MESSES, mutator)

    async def delete_mess(self, mess_id: str) -> bool:
        """Delete the mess record only; months and activity records are kept."""
        return await self._delete(Collection.MESSES, mess_id)

    # =========================================================================
    # MONTHS
    # =========================================================================

    async def get_month_by_id(self, month_id: str) -> Optional[Month]:
        return await self._get(Collection.MONTHS, month_id)

    async def get_months_by_mess_id(self, mess_id: str) -> list[Month]:
        return await self._filter(Collection.MONTHS, lambda m: m.mess_id == mess_id)

    async def get_active_month(self, mess_id: str) -> Optional[Month]:
        return await self._find(
            Collection.MONTHS, lambda m: m.mess_id == mess_id and m.is_active
        )

    @staticmethod
    def _deactivate_siblings(records: list, mess_id: str, keep_id: Optional[str]) -> None:
        today = date.today()
        for index, month in enumerate(records):
            if month.mess_id == mess_id and month.is_active and month.id != keep_id:
                records[index] = month.apply_changes(
                    {"is_active": False, "end_date": month.end_date or today}
                )

    async def create_month(self, month: Month) -> Month:
        """
        Insert a month. An active month first deactivates every other
        active month of the same mess, in the same write.
        """
        created = month.model_copy(update={"id": generate_id(), "created_at": utc_now()})

        def mutator(records):
            if created.is_active:
                self._deactivate_siblings(records, created.mess_id, keep_id=None)
            records.append(created)
            return created, True

        return await self._mutate(Collection.MONTHS, mutator)

    async def update_month(self, month_id: str, changes: dict[str, Any]) -> Optional[Month]:
        """Partial update. Activating a month deactivates its siblings."""
        def mutator(records):
            for index, record in enumerate(records):
                if record.id == month_id:
                    updated = record.apply_changes(changes)
                    if updated.is_active and not record.is_active:
                        self._deactivate_siblings(records, updated.mess_id, keep_id=month_id)
                    records[index] = updated
                    return updated, True
            return None, False

        return await self._mutate(Collection.MONTHS, mutator)

    # =========================================================================
    # MEALS
    # =========================================================================

    async def get_meals_by_month_id(self, month_id: str) -> list[Meal]:
        return await self._filter(Collection.MEALS, lambda m: m.month_id == month_id)

    async def get_meals_by_user_and_month(self, user_id: str, month_id: str) -> list[Meal]:
        return await self._filter(
            Collection.MEALS, lambda m: m.user_id == user_id and m.month_id == month_id
        )

    async def create_meal(self, meal: Meal) -> Meal:
        return await self._insert(Collection.MEALS, meal)

    async def update_meal(self, meal_id: str, changes: dict[str, Any]) -> Optional[Meal]:
        return await self._update(Collection.MEALS, meal_id, changes)

    async def delete_meal(self, meal_id: str) -> bool:
        return await self._delete(Collection.MEALS, meal_id)

    # =========================================================================
    # DEPOSITS
    # =========================================================================

    async def get_deposits_by_month_id(self, month_id: str) -> list[Deposit]:
        return await self._filter(Collection.DEPOSITS, lambda d: d.month_id == month_id)

    async def get_deposits_by_user_and_month(self, user_id: str, month_id: str) -> list[Deposit]:
        return await self._filter(
            Collection.DEPOSITS, lambda d: d.user_id == user_id and d.month_id == month_id
        )

    async def create_deposit(self, deposit: Deposit) -> Deposit:
        return await self._insert(Collection.DEPOSITS, deposit)

    async def update_deposit(self, deposit_id: str, changes: dict[str, Any]) -> Optional[Deposit]:
        return await self._update(Collection.DEPOSITS, deposit_id, changes)

    async def delete_deposit(self, deposit_id: str) -> bool:
        return await self._delete(Collection.DEPOSITS, deposit_id)

    # =========================================================================
    # MEAL COSTS
    # =========================================================================

    async def get_meal_costs_by_month_id(self, month_id: str) -> list[MealCost]:
        return await self._filter(Collection.MEAL_COSTS, lambda c: c.month_id == month_id)

    async def create_meal_cost(self, cost: MealCost) -> MealCost:
        return await self._insert(Collection.MEAL_COSTS, cost)

    async def update_meal_cost(self, cost_id: str, changes: dict[str, Any]) -> Optional[MealCost]:
        return await self._update(Collection.MEAL_COSTS, cost_id, changes)

    async def delete_meal_cost(self, cost_id: str) -> bool:
        return await self._delete(Collection.MEAL_COSTS, cost_id)

    # =========================================================================
    # OTHER COSTS
    # =========================================================================

    async def get_other_costs_by_month_id(self, month_id: str) -> list[OtherCost]:
        return await self._filter(Collection.OTHER_COSTS, lambda c: c.month_id == month_id)

    async def create_other_cost(self, cost: OtherCost) -> OtherCost:
        return await self._insert(Collection.OTHER_COSTS, cost)

    async def update_other_cost(self, cost_id: str, changes: dict[str, Any]) -> Optional[OtherCost]:
        return await self._update(Collection.OTHER_COSTS, cost_id, changes)

    async def delete_other_cost(self, cost_id: str) -> bool:
        return await self._delete(Collection.OTHER_COSTS, cost_id)

    # =========================================================================
    # JOIN REQUESTS
    # =========================================================================

    async def get_join_requests(self) -> list[JoinRequest]:
        return await self._all(Collection.JOIN_REQUESTS)

    async def get_join_requests_by_mess_id(self, mess_id: str) -> list[JoinRequest]:
        return await self._filter(Collection.JOIN_REQUESTS, lambda r: r.mess_id == mess_id)

    async def get_join_requests_by_user_id(self, user_id: str) -> list[JoinRequest]:
        return await self._filter(Collection.JOIN_REQUESTS, lambda r: r.user_id == user_id)

    async def create_join_request(self, user_id: str, mess_code: str) -> JoinRequest:
        """
        Ask to join the mess owning `mess_code`.

        Raises:
            RejectedError: Unknown code, or a pending request already exists
        """
        mess = await self.get_mess_by_code(mess_code)
        if mess is None:
            raise RejectedError("Invalid mess code")

        def mutator(records):
            for r in records:
                if (
                    r.user_id == user_id
                    and r.mess_id == mess.id
                    and r.status == JoinRequestStatus.PENDING
                ):
                    raise RejectedError("Request already pending")
            created = JoinRequest(
                mess_id=mess.id,
                user_id=user_id,
                mess_code=mess.code,
                status=JoinRequestStatus.PENDING,
            )
            records.append(created)
            return created, True

        request = await self._mutate(Collection.JOIN_REQUESTS, mutator)

        requester = await self.get_user_by_id(user_id)
        name = requester.full_name if requester else "A user"
        await self.notify_manager(
            mess.id,
            NotificationType.JOIN_REQUEST,
            "New Join Request",
            f"{name} has requested to join your mess",
        )
        return request

    async def delete_join_request(self, request_id: str) -> bool:
        return await self._delete(Collection.JOIN_REQUESTS, request_id)

    async def _decide_join_request(
        self,
        request_id: str,
        status: JoinRequestStatus,
    ) -> Optional[JoinRequest]:
        """Move a pending request to `status`. Decided requests are rejected."""
        def mutator(records):
            for index, record in enumerate(records):
                if record.id == request_id:
                    if record.status != JoinRequestStatus.PENDING:
                        raise RejectedError(f"Request already {record.status.value}")
                    records[index] = record.apply_changes({"status": status})
                    return records[index], True
            return None, False

        return await self._mutate(Collection.JOIN_REQUESTS, mutator)

    async def approve_join_request(self, request_id: str) -> Optional[JoinRequest]:
        """Approve a pending request and attach the user to the mess."""
        request = await self._decide_join_request(request_id, JoinRequestStatus.APPROVED)
        if request is None:
            return None
        await self.update_user(
            request.user_id,
            {"mess_id": request.mess_id, "is_approved": True, "is_active": True},
        )
        await self.cleanup_pending_join_requests(request.user_id, except_mess_id=request.mess_id)
        await self.create_notification(Notification(
            user_id=request.user_id,
            mess_id=request.mess_id,
            type=NotificationType.JOIN_APPROVED,
            title="Join Request Approved",
            message="Your request to join the mess has been approved",
        ))
        return request

    async def reject_join_request(self, request_id: str) -> Optional[JoinRequest]:
        request = await self._decide_join_request(request_id, JoinRequestStatus.REJECTED)
        if request is None:
            return None
        await self.create_notification(Notification(
            user_id=request.user_id,
            mess_id=request.mess_id,
            type=NotificationType.JOIN_REJECTED,
            title="Join Request Rejected",
            message="Your request to join the mess has been rejected",
        ))
        return request

    async def cleanup_pending_join_requests(
        self,
        user_id: str,
        except_mess_id: Optional[str] = None,
    ) -> int:
        """Drop a user's other pending requests once they belong to a mess."""
        return await self._delete_where(
            Collection.JOIN_REQUESTS,
            lambda r: (
                r.user_id == user_id
                and r.status == JoinRequestStatus.PENDING
                and r.mess_id != except_mess_id
            ),
        )

    # =========================================================================
    # NOTICES
    # =========================================================================

    async def get_notices_by_mess_id(self, mess_id: str) -> list[Notice]:
        notices = await self._filter(Collection.NOTICES, lambda n: n.mess_id == mess_id)
        return sorted(notices, key=lambda n: n.created_at, reverse=True)

    async def get_active_notice(self, mess_id: str) -> Optional[Notice]:
        """The active notice, else the most recent one."""
        notices = await self.get_notices_by_mess_id(mess_id)
        for notice in notices:
            if notice.is_active:
                return notice
        return notices[0] if notices else None

    async def create_notice(self, notice: Notice) -> Notice:
        """Insert a notice as the only active notice of its mess."""
        created = notice.model_copy(
            update={"id": generate_id(), "created_at": utc_now(), "updated_at": utc_now(),
                    "is_active": True}
        )

        def mutator(records):
            for index, existing in enumerate(records):
                if existing.mess_id == created.mess_id and existing.is_active:
                    records[index] = existing.apply_changes({"is_active": False})
            records.append(created)
            return created, True

        created = await self._mutate(Collection.NOTICES, mutator)
        await self.notify_mess_members(
            created.mess_id,
            created.created_by,
            NotificationType.NOTICE_ADD,
            "New Notice",
            f"New notice: {created.title}",
        )
        return created

    async def update_notice(self, notice_id: str, changes: dict[str, Any]) -> Optional[Notice]:
        return await self._update(
            Collection.NOTICES, notice_id, {**changes, "updated_at": utc_now()}
        )

    async def delete_notice(self, notice_id: str) -> bool:
        return await self._delete(Collection.NOTICES, notice_id)

    # =========================================================================
    # NOTES
    # =========================================================================

    async def get_notes_by_mess_id(self, mess_id: str) -> list[Note]:
        notes = await self._filter(Collection.NOTES, lambda n: n.mess_id == mess_id)
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    async def create_note(self, note: Note) -> Note:
        created = await self._insert(Collection.NOTES, note)
        await self.notify_mess_members(
            created.mess_id,
            created.created_by,
            NotificationType.NOTE_ADD,
            "New Note Added",
            f"New note: {created.title}",
        )
        return created

    async def update_note(self, note_id: str, changes: dict[str, Any]) -> Optional[Note]:
        return await self._update(Collection.NOTES, note_id, {**changes, "updated_at": utc_now()})

    async def delete_note(self, note_id: str) -> bool:
        return await self._delete(Collection.NOTES, note_id)

    # =========================================================================
    # BAZAR DATES
    # =========================================================================

    async def get_bazar_dates_by_mess_id(self, mess_id: str) -> list[BazarDate]:
        dates = await self._filter(Collection.BAZAR_DATES, lambda d: d.mess_id == mess_id)
        return sorted(dates, key=lambda d: d.date)

    async def create_bazar_dates(
        self,
        mess_id: str,
        user_id: str,
        user_name: str,
        dates: list[date],
    ) -> list[BazarDate]:
        """
        Assign bazar duty days. A day already assigned in this mess rejects
        the whole batch.
        """
        wanted = sorted(set(dates))

        def mutator(records):
            taken = {r.date for r in records if r.mess_id == mess_id}
            conflicts = [d for d in wanted if d in taken]
            if conflicts:
                listed = ", ".join(d.isoformat() for d in conflicts)
                raise RejectedError(f"These dates are already assigned: {listed}")
            created = [
                BazarDate(mess_id=mess_id, user_id=user_id, user_name=user_name, date=d)
                for d in wanted
            ]
            records.extend(created)
            return created, bool(created)

        created = await self._mutate(Collection.BAZAR_DATES, mutator)
        if created:
            await self.create_notification(Notification(
                user_id=user_id,
                mess_id=mess_id,
                type=NotificationType.BAZAR_DATE,
                title="Bazar Dates Assigned",
                message="You have been assigned bazar duty for: "
                        + ", ".join(d.isoformat() for d in wanted),
            ))
        return created

    async def delete_bazar_date(self, bazar_id: str) -> bool:
        return await self._delete(Collection.BAZAR_DATES, bazar_id)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def get_notifications_by_user_id(self, user_id: str) -> list[Notification]:
        items = await self._filter(Collection.NOTIFICATIONS, lambda n: n.user_id == user_id)
        return sorted(items, key=lambda n: n.created_at, reverse=True)

    async def get_unseen_notifications_count(self, user_id: str) -> int:
        return len(await self._filter(
            Collection.NOTIFICATIONS, lambda n: n.user_id == user_id and not n.seen
        ))

    async def create_notification(self, notification: Notification) -> Notification:
        return await self._insert(Collection.NOTIFICATIONS, notification.model_copy(
            update={"seen": False}
        ))

    async def mark_notification_as_seen(self, notification_id: str) -> bool:
        updated = await self._update(Collection.NOTIFICATIONS, notification_id, {"seen": True})
        return updated is not None

    async def mark_all_notifications_as_seen(self, user_id: str) -> int:
        return await self._update_where(
            Collection.NOTIFICATIONS,
            lambda n: n.user_id == user_id and not n.seen,
            {"seen": True},
        )

    async def delete_notification(self, notification_id: str) -> bool:
        return await self._delete(Collection.NOTIFICATIONS, notification_id)

    async def delete_all_notifications(self, user_id: str) -> int:
        return await self._delete_where(Collection.NOTIFICATIONS, lambda n: n.user_id == user_id)

    async def notify_mess_members(
        self,
        mess_id: str,
        exclude_user_id: Optional[str],
        type: NotificationType,
        title: str,
        message: str,
    ) -> list[Notification]:
        """Notify every member of a mess except `exclude_user_id`."""
        members = await self.get_mess_members(mess_id)
        return await self._insert_many(Collection.NOTIFICATIONS, [
            Notification(user_id=m.id, mess_id=mess_id, type=type, title=title, message=message)
            for m in members
            if m.id != exclude_user_id
        ])

    async def notify_manager(
        self,
        mess_id: str,
        type: NotificationType,
        title: str,
        message: str,
    ) -> Optional[Notification]:
        mess = await self.get_mess_by_id(mess_id)
        if mess is None or not mess.manager_id:
            return None
        return await self.create_notification(Notification(
            user_id=mess.manager_id, mess_id=mess_id, type=type, title=title, message=message
        ))

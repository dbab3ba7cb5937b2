"""
Data Service for MessMate

This module ties together the connectivity monitor, the remote client, the
response cache and the local store, and defines one flow shared by every
logical operation:

1. Health check (only when the last one is stale; concurrent callers share it)
2. Remote call, through the response cache for idempotent reads
3. Connectivity failure -> mark the remote down, signal, retry locally
4. Application failure  -> return it as-is, local state untouched
5. Successful write     -> invalidate every cache key it can affect

DESIGN DECISION: The public boundary never raises.
Every operation resolves to `Served(source, value, fell_back)` or
`Failed(kind, message)`. Writes go to exactly one backend; nothing is
mirrored and nothing is reconciled later.
"""

import asyncio
import datetime as dt
from typing import Any, Awaitable, Callable, Optional

import structlog

from messmate.allocation import all_members_summary, member_summary, month_summary
from messmate.audit import SyncEventLogger, configure_logging
from messmate.cache import CacheKeys, CacheTTL, ResponseCache
from messmate.config import Settings, get_settings
from messmate.connectivity import ConnectivityMonitor, ConnectivityState
from messmate.models.entities import (
    BazarDate,
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
    OtherCost,
    User,
)
from messmate.models.results import DataSource, ErrorKind, Failed, Outcome, Served
from messmate.models.summary import MemberSummary, MonthLedger, MonthSummary
from messmate.services.remote import (
    AuthTokenStore,
    RemoteClient,
    RemoteRequest,
    RemoteResult,
    ResponseShapeError,
    decode_ack,
    decode_list,
    decode_one,
    decode_optional,
    decode_value,
)
from messmate.services.storage import (
    Collection,
    JsonFileMedium,
    LocalStore,
    RejectedError,
    StorageError,
    StorageMedium,
)


logger = structlog.get_logger("messmate.data_service")

FallbackCallback = Callable[[str, str], None]
Decoder = Callable[[Optional[dict]], Any]
Invalidator = Callable[[Any], list[str]]

_STORE_ASSIGNED = ("id", "createdAt")


class RemoteCallError(Exception):
    """A remote call did not succeed. Raised inside fetchers so failures are never cached."""

    def __init__(self, result: RemoteResult):
        super().__init__(result.error or "Remote call failed")
        self.result = result


def _body(record: MessRecord) -> dict[str, Any]:
    """Create-request body: the record without store-assigned fields."""
    return {k: v for k, v in record.to_record().items() if k not in _STORE_ASSIGNED}


class DataService:
    """
    Remote-first, local-fallback data access.

    One instance owns its own monitor and cache; nothing here is process-wide.

    Usage:
        service = create_data_service()
        outcome = await service.get_meals(month_id)
        if outcome.ok:
            render(outcome.value, offline=outcome.from_local)
    """

    def __init__(
        self,
        local: LocalStore,
        remote: Optional[RemoteClient] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        cache: Optional[ResponseCache] = None,
        events: Optional[SyncEventLogger] = None,
        auto_health_check: bool = True,
        on_fallback: Optional[FallbackCallback] = None,
    ):
        self._local = local
        self._remote = remote
        self._monitor = monitor or ConnectivityMonitor(remote_configured=remote is not None)
        self._cache = cache or ResponseCache()
        self._events = events or SyncEventLogger()
        self._auto_health_check = auto_health_check
        self._on_fallback = on_fallback

        self._health_lock = asyncio.Lock()
        self._in_local_mode = False

    @property
    def monitor(self) -> ConnectivityMonitor:
        return self._monitor

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def events(self) -> SyncEventLogger:
        return self._events

    @property
    def local(self) -> LocalStore:
        return self._local

    @property
    def connectivity(self) -> ConnectivityState:
        return self._monitor.snapshot()

    async def aclose(self) -> None:
        if self._remote is not None:
            await self._remote.aclose()

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    @property
    def _remote_usable(self) -> bool:
        return self._remote is not None and self._monitor.remote_configured

    async def _ensure_health(self, force: bool) -> None:
        if not self._remote_usable:
            return
        if not force and self._monitor.is_check_valid():
            return

        async with self._health_lock:
            # Another caller may have finished a probe while we waited.
            if not force and self._monitor.is_check_valid():
                return
            health = await self._remote.check_health()
            self._monitor.record_health(
                data_store_connected=health.data_store_connected,
                backend_available=health.backend_available,
            )
            self._events.log_health_check(health.backend_available, health.data_store_connected)

            if self._in_local_mode and self._monitor.should_use_remote():
                self._in_local_mode = False
                self._events.log_remote_restored()

    async def check_health(self, force: bool = False) -> Outcome:
        """Probe the remote (unless the last check is still valid) and report the state."""
        try:
            await self._ensure_health(force)
        except Exception as e:
            logger.exception("health_check_failed", error=str(e))
            return Failed(kind=ErrorKind.CONNECTIVITY, message=str(e))
        state = self._monitor.snapshot()
        source = DataSource.REMOTE if state.use_remote else DataSource.LOCAL
        return Served(source=source, value=state)

    def _signal_fallback(self, operation: str, reason: str) -> None:
        self._monitor.mark_down()
        self._events.log_fallback(operation, reason)
        if self._in_local_mode:
            return
        self._in_local_mode = True
        if self._on_fallback is not None:
            try:
                self._on_fallback(operation, reason)
            except Exception as e:
                logger.warning("fallback_callback_failed", operation=operation, error=str(e))

    # =========================================================================
    # CORE FLOW
    # =========================================================================

    async def _run(
        self,
        operation: str,
        request: RemoteRequest,
        decode: Decoder,
        local: Callable[[], Awaitable[Any]],
        cache_key: Optional[str] = None,
        ttl: CacheTTL = CacheTTL.DEFAULT,
        invalidate: Optional[Invalidator] = None,
        collection: Optional[Collection] = None,
    ) -> Outcome:
        """
        Run one logical operation through the remote-first flow.

        `invalidate` is called with the written value after a successful
        write and returns the cache keys it dropped.
        """
        try:
            if self._auto_health_check:
                await self._ensure_health(force=False)

            fell_back = False
            if self._remote_usable and self._monitor.should_use_remote():
                outcome = await self._call_remote(operation, request, decode, cache_key, ttl)
                if outcome is not None:
                    if outcome.ok and invalidate is not None:
                        self._invalidate(operation, invalidate(outcome.value))
                    return outcome
                fell_back = True

            outcome = await self._call_local(operation, local, fell_back)
            if outcome.ok:
                if collection is not None:
                    self._events.log_local_write(operation, collection.value)
                if invalidate is not None:
                    self._invalidate(operation, invalidate(outcome.value))
            return outcome

        except Exception as e:
            logger.exception("unexpected_error", operation=operation, error=str(e))
            return Failed(kind=ErrorKind.STORAGE, message=f"Unexpected error: {e}")

    async def _call_remote(
        self,
        operation: str,
        request: RemoteRequest,
        decode: Decoder,
        cache_key: Optional[str],
        ttl: CacheTTL,
    ) -> Optional[Outcome]:
        """Remote attempt. Returns None when the caller should fall back."""

        async def fetch():
            result = await self._remote.request(request)
            if not result.success:
                raise RemoteCallError(result)
            if result.store_connected:
                self._monitor.record_health(data_store_connected=True, backend_available=True)
            return decode(result.data)

        try:
            if cache_key is not None:
                value = await self._cache.dedupe_request(cache_key, fetch, ttl)
            else:
                value = await fetch()
        except RemoteCallError as e:
            result = e.result
            if result.is_connectivity_failure:
                self._signal_fallback(operation, result.error or "Remote unavailable")
                return None
            message = result.error or "Request failed"
            self._events.log_remote_rejected(operation, message, result.status_code)
            return Failed(
                kind=ErrorKind.APPLICATION,
                message=message,
                status_code=result.status_code,
            )
        except ResponseShapeError as e:
            self._events.log_protocol_error(operation, str(e))
            return Failed(kind=ErrorKind.PROTOCOL, message=str(e))

        return Served(source=DataSource.REMOTE, value=value)

    async def _call_local(
        self,
        operation: str,
        local: Callable[[], Awaitable[Any]],
        fell_back: bool = False,
    ) -> Outcome:
        try:
            value = await local()
        except RejectedError as e:
            return Failed(kind=ErrorKind.APPLICATION, message=str(e))
        except StorageError as e:
            self._events.log_storage_error(operation, str(e))
            return Failed(kind=ErrorKind.STORAGE, message=str(e))
        except ValueError as e:
            # Invalid field names or values in a partial update.
            return Failed(kind=ErrorKind.APPLICATION, message=str(e))
        return Served(source=DataSource.LOCAL, value=value, fell_back=fell_back)

    def _invalidate(self, operation: str, keys: list[str]) -> None:
        if keys:
            self._events.log_cache_invalidated(operation, keys)

    def _drop(self, *prefixes: str) -> list[str]:
        dropped = []
        for prefix in prefixes:
            dropped += self._cache.invalidate_prefix(prefix)
        return dropped

    @staticmethod
    def _map(outcome: Outcome, fn: Callable[[Any], Any]) -> Outcome:
        if not outcome.ok:
            return outcome
        return Served(source=outcome.source, value=fn(outcome.value), fell_back=outcome.fell_back)

    async def _update(
        self,
        operation: str,
        model: type[MessRecord],
        path: str,
        key: str,
        changes: dict[str, Any],
        local: Callable[[], Awaitable[Any]],
        invalidate: Invalidator,
        collection: Collection,
    ) -> Outcome:
        """Shared flow for partial updates (PUT with a camelCase body)."""
        try:
            body = model.wire_changes(changes)
        except ValueError as e:
            return Failed(kind=ErrorKind.APPLICATION, message=str(e))
        return await self._run(
            operation,
            RemoteRequest(method="PUT", path=path, body=body),
            lambda data: decode_optional(data, key, model),
            local,
            invalidate=invalidate,
            collection=collection,
        )

    async def _delete(
        self,
        operation: str,
        path: str,
        local: Callable[[], Awaitable[Any]],
        invalidate: Invalidator,
        collection: Collection,
        params: Optional[dict[str, Any]] = None,
    ) -> Outcome:
        return await self._run(
            operation,
            RemoteRequest(method="DELETE", path=path, params=params),
            decode_ack,
            local,
            invalidate=invalidate,
            collection=collection,
        )

    # =========================================================================
    # AUTH & SESSION
    # =========================================================================

    def _remember_token(self, data: Optional[dict]) -> None:
        token = decode_value(data, "token", str)
        self._remote.tokens.set_token(token)

    async def _remember_session(self, operation: str, outcome: Outcome, user_of) -> Outcome:
        if not outcome.ok:
            return outcome
        stored = await self._call_local(
            operation, lambda: self._local.set_current_user(user_of(outcome.value))
        )
        return outcome if stored.ok else stored

    async def login(self, email: str, password: str) -> Outcome:
        def decode(data):
            user = decode_one(data, "user", User)
            self._remember_token(data)
            return user

        outcome = await self._run(
            "login",
            RemoteRequest(
                method="POST",
                path="/auth/login",
                body={"email": email, "password": password},
                auth_required=False,
            ),
            decode,
            lambda: self._local.authenticate(email, password),
        )
        return await self._remember_session("login", outcome, lambda user: user)

    async def register_manager(
        self,
        full_name: str,
        mess_name: str,
        phone: str,
        email: str,
        password: str,
    ) -> Outcome:
        """Create a manager and their mess. Value is `(user, mess)`."""
        def decode(data):
            user = decode_one(data, "user", User)
            mess = decode_one(data, "mess", Mess)
            self._remember_token(data)
            return user, mess

        outcome = await self._run(
            "register_manager",
            RemoteRequest(
                method="POST",
                path="/auth/register-manager",
                body={
                    "name": full_name,
                    "messName": mess_name,
                    "phone": phone,
                    "email": email,
                    "password": password,
                },
                auth_required=False,
            ),
            decode,
            lambda: self._local.register_manager(full_name, mess_name, phone, email, password),
            collection=Collection.USERS,
        )
        return await self._remember_session("register_manager", outcome, lambda pair: pair[0])

    async def register_member(
        self,
        full_name: str,
        phone: str,
        email: str,
        password: str,
    ) -> Outcome:
        def decode(data):
            user = decode_one(data, "user", User)
            self._remember_token(data)
            return user

        outcome = await self._run(
            "register_member",
            RemoteRequest(
                method="POST",
                path="/auth/register-member",
                body={"name": full_name, "phone": phone, "email": email, "password": password},
                auth_required=False,
            ),
            decode,
            lambda: self._local.register_member(full_name, phone, email, password),
            collection=Collection.USERS,
        )
        return await self._remember_session("register_member", outcome, lambda user: user)

    async def logout(self) -> Outcome:
        """Forget the token, the session user and every cached response."""
        if self._remote is not None:
            self._remote.tokens.clear()
        self._cache.clear()

        async def forget():
            await self._local.set_current_user(None)
            return True

        return await self._call_local("logout", forget)

    async def get_current_user(self) -> Outcome:
        return await self._call_local("get_current_user", self._local.get_current_user)

    async def set_current_user(self, user: Optional[User]) -> Outcome:
        async def store():
            await self._local.set_current_user(user)
            return user

        return await self._call_local("set_current_user", store)

    # =========================================================================
    # USERS
    # =========================================================================

    async def get_user(self, user_id: str) -> Outcome:
        return await self._run(
            "get_user",
            RemoteRequest(path=f"/users/{user_id}"),
            lambda data: decode_optional(data, "user", User),
            lambda: self._local.get_user_by_id(user_id),
            cache_key=CacheKeys.user(user_id),
            ttl=CacheTTL.LONG,
        )

    async def get_user_by_email(self, email: str) -> Outcome:
        """Local lookup only; the remote has no email search."""
        return await self._call_local(
            "get_user_by_email",
            lambda: self._local.get_user_by_email(email),
        )

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_user",
            User,
            f"/users/{user_id}",
            "user",
            changes,
            lambda: self._local.update_user(user_id, changes),
            lambda _: self._drop(CacheKeys.user(user_id), "mess:", "summary:"),
            Collection.USERS,
        )

    async def delete_user(self, user_id: str) -> Outcome:
        return await self._delete(
            "delete_user",
            f"/users/{user_id}",
            lambda: self._local.delete_user(user_id),
            lambda _: self._drop(CacheKeys.user(user_id), "mess:", "summary:"),
            Collection.USERS,
        )

    async def get_mess_members(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_mess_members",
            RemoteRequest(path=f"/mess/{mess_id}/members"),
            lambda data: decode_list(data, "members", User),
            lambda: self._local.get_mess_members(mess_id),
            cache_key=CacheKeys.mess_members(mess_id),
            ttl=CacheTTL.LONG,
        )

    async def remove_member(self, user_id: str) -> Outcome:
        """Detach a member from their mess. Their activity records stay."""
        return await self._delete(
            "remove_member",
            f"/members/{user_id}",
            lambda: self._local.remove_member(user_id),
            lambda _: self._drop(CacheKeys.user(user_id), "mess:", "summary:"),
            Collection.USERS,
        )

    # =========================================================================
    # MESS
    # =========================================================================

    async def get_mess(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_mess",
            RemoteRequest(path=f"/mess/{mess_id}"),
            lambda data: decode_optional(data, "mess", Mess),
            lambda: self._local.get_mess_by_id(mess_id),
            cache_key=CacheKeys.mess(mess_id),
            ttl=CacheTTL.LONG,
        )

    async def get_mess_by_code(self, code: str) -> Outcome:
        return await self._run(
            "get_mess_by_code",
            RemoteRequest(path=f"/mess/code/{code.strip().upper()}"),
            lambda data: decode_optional(data, "mess", Mess),
            lambda: self._local.get_mess_by_code(code),
            cache_key=CacheKeys.mess_by_code(code.strip()),
            ttl=CacheTTL.LONG,
        )

    async def update_mess(self, mess_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_mess",
            Mess,
            f"/mess/{mess_id}",
            "mess",
            changes,
            lambda: self._local.update_mess(mess_id, changes),
            lambda _: self._cache.invalidate_mess_data(mess_id),
            Collection.MESSES,
        )

    async def delete_mess(self, mess_id: str) -> Outcome:
        """Deletes the mess record only; its months and records are kept."""
        return await self._delete(
            "delete_mess",
            f"/mess/{mess_id}",
            lambda: self._local.delete_mess(mess_id),
            lambda _: self._cache.invalidate_mess_data(mess_id),
            Collection.MESSES,
        )

    async def generate_unique_mess_code(self) -> Outcome:
        return await self._run(
            "generate_unique_mess_code",
            RemoteRequest(path="/mess/generate-code"),
            lambda data: decode_value(data, "code", str),
            self._local.generate_unique_mess_code,
        )

    async def is_mess_code_unique(self, code: str, exclude_mess_id: Optional[str] = None) -> Outcome:
        params = {"excludeMessId": exclude_mess_id} if exclude_mess_id else None
        return await self._run(
            "is_mess_code_unique",
            RemoteRequest(path=f"/mess/check-code/{code.strip().upper()}", params=params),
            lambda data: decode_value(data, "isUnique", bool),
            lambda: self._local.is_mess_code_unique(code, exclude_mess_id),
        )

    # =========================================================================
    # MONTHS
    # =========================================================================

    async def get_months(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_months",
            RemoteRequest(path="/months", params={"messId": mess_id}),
            lambda data: decode_list(data, "months", Month),
            lambda: self._local.get_months_by_mess_id(mess_id),
            cache_key=CacheKeys.months(mess_id),
        )

    async def get_active_month(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_active_month",
            RemoteRequest(path="/months/active", params={"messId": mess_id}),
            lambda data: decode_optional(data, "month", Month),
            lambda: self._local.get_active_month(mess_id),
            cache_key=CacheKeys.active_month(mess_id),
        )

    async def create_month(self, month: Month) -> Outcome:
        """Create a month. An active month closes the mess's previous active month."""
        return await self._run(
            "create_month",
            RemoteRequest(method="POST", path="/months", body=_body(month)),
            lambda data: decode_one(data, "month", Month),
            lambda: self._local.create_month(month),
            invalidate=lambda _: self._drop(
                CacheKeys.months(month.mess_id),
                CacheKeys.active_month(month.mess_id),
                "summary:",
            ),
            collection=Collection.MONTHS,
        )

    async def update_month(self, month_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_month",
            Month,
            f"/months/{month_id}",
            "month",
            changes,
            lambda: self._local.update_month(month_id, changes),
            lambda _: self._drop("months:", "month:", "summary:"),
            Collection.MONTHS,
        )

    # =========================================================================
    # ACTIVITY RECORDS
    # =========================================================================

    def _drop_activity(self, key_for: Callable[[str], str], value: Any) -> list[str]:
        """A month's activity list (every month's, if unknown) plus all summaries."""
        month_id = getattr(value, "month_id", None)
        return self._drop(key_for(month_id or ""), "summary:")

    def _drop_updated(self, key_for: Callable[[str], str], changes: dict[str, Any]) -> Invalidator:
        """Invalidator for a partial update. Moving a record between months drops every month's list."""
        if "month_id" in changes:
            return lambda _: self._drop_activity(key_for, None)
        return lambda value: self._drop_activity(key_for, value)

    async def _list_for_month(
        self,
        operation: str,
        path: str,
        key: str,
        model: type[MessRecord],
        cache_key: str,
        local: Callable[[], Awaitable[Any]],
        params: dict[str, Any],
    ) -> Outcome:
        return await self._run(
            operation,
            RemoteRequest(path=path, params=params),
            lambda data: decode_list(data, key, model),
            local,
            cache_key=cache_key,
            ttl=CacheTTL.SHORT,
        )

    async def _create_activity(
        self,
        operation: str,
        path: str,
        key: str,
        record: MessRecord,
        local: Callable[[], Awaitable[Any]],
        key_for: Callable[[str], str],
        collection: Collection,
    ) -> Outcome:
        model = type(record)
        return await self._run(
            operation,
            RemoteRequest(method="POST", path=path, body=_body(record)),
            lambda data: decode_one(data, key, model),
            local,
            invalidate=lambda value: self._drop_activity(key_for, value),
            collection=collection,
        )

    # Meals

    async def get_meals(self, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_meals", "/meals", "meals", Meal, CacheKeys.meals(month_id),
            lambda: self._local.get_meals_by_month_id(month_id),
            {"monthId": month_id},
        )

    async def get_user_meals(self, user_id: str, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_user_meals", "/meals", "meals", Meal, CacheKeys.user_meals(user_id, month_id),
            lambda: self._local.get_meals_by_user_and_month(user_id, month_id),
            {"monthId": month_id, "userId": user_id},
        )

    async def create_meal(self, meal: Meal) -> Outcome:
        return await self._create_activity(
            "create_meal", "/meals", "meal", meal,
            lambda: self._local.create_meal(meal),
            CacheKeys.meals, Collection.MEALS,
        )

    async def update_meal(self, meal_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_meal", Meal, f"/meals/{meal_id}", "meal", changes,
            lambda: self._local.update_meal(meal_id, changes),
            self._drop_updated(CacheKeys.meals, changes),
            Collection.MEALS,
        )

    async def delete_meal(self, meal_id: str) -> Outcome:
        return await self._delete(
            "delete_meal", f"/meals/{meal_id}",
            lambda: self._local.delete_meal(meal_id),
            lambda _: self._drop_activity(CacheKeys.meals, None),
            Collection.MEALS,
        )

    # Deposits

    async def get_deposits(self, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_deposits", "/deposits", "deposits", Deposit, CacheKeys.deposits(month_id),
            lambda: self._local.get_deposits_by_month_id(month_id),
            {"monthId": month_id},
        )

    async def get_user_deposits(self, user_id: str, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_user_deposits", "/deposits", "deposits", Deposit,
            CacheKeys.user_deposits(user_id, month_id),
            lambda: self._local.get_deposits_by_user_and_month(user_id, month_id),
            {"monthId": month_id, "userId": user_id},
        )

    async def create_deposit(self, deposit: Deposit) -> Outcome:
        return await self._create_activity(
            "create_deposit", "/deposits", "deposit", deposit,
            lambda: self._local.create_deposit(deposit),
            CacheKeys.deposits, Collection.DEPOSITS,
        )

    async def update_deposit(self, deposit_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_deposit", Deposit, f"/deposits/{deposit_id}", "deposit", changes,
            lambda: self._local.update_deposit(deposit_id, changes),
            self._drop_updated(CacheKeys.deposits, changes),
            Collection.DEPOSITS,
        )

    async def delete_deposit(self, deposit_id: str) -> Outcome:
        return await self._delete(
            "delete_deposit", f"/deposits/{deposit_id}",
            lambda: self._local.delete_deposit(deposit_id),
            lambda _: self._drop_activity(CacheKeys.deposits, None),
            Collection.DEPOSITS,
        )

    # Meal costs

    async def get_meal_costs(self, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_meal_costs", "/meal-costs", "costs", MealCost, CacheKeys.meal_costs(month_id),
            lambda: self._local.get_meal_costs_by_month_id(month_id),
            {"monthId": month_id},
        )

    async def create_meal_cost(self, cost: MealCost) -> Outcome:
        return await self._create_activity(
            "create_meal_cost", "/meal-costs", "cost", cost,
            lambda: self._local.create_meal_cost(cost),
            CacheKeys.meal_costs, Collection.MEAL_COSTS,
        )

    async def update_meal_cost(self, cost_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_meal_cost", MealCost, f"/meal-costs/{cost_id}", "cost", changes,
            lambda: self._local.update_meal_cost(cost_id, changes),
            self._drop_updated(CacheKeys.meal_costs, changes),
            Collection.MEAL_COSTS,
        )

    async def delete_meal_cost(self, cost_id: str) -> Outcome:
        return await self._delete(
            "delete_meal_cost", f"/meal-costs/{cost_id}",
            lambda: self._local.delete_meal_cost(cost_id),
            lambda _: self._drop_activity(CacheKeys.meal_costs, None),
            Collection.MEAL_COSTS,
        )

    # Other costs

    async def get_other_costs(self, month_id: str) -> Outcome:
        return await self._list_for_month(
            "get_other_costs", "/other-costs", "costs", OtherCost, CacheKeys.other_costs(month_id),
            lambda: self._local.get_other_costs_by_month_id(month_id),
            {"monthId": month_id},
        )

    async def create_other_cost(self, cost: OtherCost) -> Outcome:
        return await self._create_activity(
            "create_other_cost", "/other-costs", "cost", cost,
            lambda: self._local.create_other_cost(cost),
            CacheKeys.other_costs, Collection.OTHER_COSTS,
        )

    async def update_other_cost(self, cost_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_other_cost", OtherCost, f"/other-costs/{cost_id}", "cost", changes,
            lambda: self._local.update_other_cost(cost_id, changes),
            self._drop_updated(CacheKeys.other_costs, changes),
            Collection.OTHER_COSTS,
        )

    async def delete_other_cost(self, cost_id: str) -> Outcome:
        return await self._delete(
            "delete_other_cost", f"/other-costs/{cost_id}",
            lambda: self._local.delete_other_cost(cost_id),
            lambda _: self._drop_activity(CacheKeys.other_costs, None),
            Collection.OTHER_COSTS,
        )

    # =========================================================================
    # JOIN REQUESTS
    # =========================================================================

    def _drop_membership(self, _value: Any = None) -> list[str]:
        return self._drop("joinRequests:", "mess:", "user:", "notifications:", "summary:")

    async def get_join_requests(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_join_requests",
            RemoteRequest(path="/join-requests", params={"messId": mess_id}),
            lambda data: decode_list(data, "requests", JoinRequest),
            lambda: self._local.get_join_requests_by_mess_id(mess_id),
            cache_key=CacheKeys.join_requests(mess_id),
            ttl=CacheTTL.SHORT,
        )

    async def get_pending_join_requests(self, mess_id: str) -> Outcome:
        outcome = await self.get_join_requests(mess_id)
        return self._map(
            outcome,
            lambda requests: [r for r in requests if r.status == JoinRequestStatus.PENDING],
        )

    async def get_user_join_requests(self, user_id: str) -> Outcome:
        return await self._run(
            "get_user_join_requests",
            RemoteRequest(path="/join-requests", params={"userId": user_id}),
            lambda data: decode_list(data, "requests", JoinRequest),
            lambda: self._local.get_join_requests_by_user_id(user_id),
            cache_key=CacheKeys.user_join_requests(user_id),
            ttl=CacheTTL.SHORT,
        )

    async def create_join_request(self, user_id: str, mess_code: str) -> Outcome:
        return await self._run(
            "create_join_request",
            RemoteRequest(
                method="POST",
                path="/join-requests",
                body={"userId": user_id, "messCode": mess_code.strip().upper()},
            ),
            lambda data: decode_one(data, "request", JoinRequest),
            lambda: self._local.create_join_request(user_id, mess_code),
            invalidate=lambda _: self._drop("joinRequests:", "notifications:"),
            collection=Collection.JOIN_REQUESTS,
        )

    async def approve_join_request(self, request_id: str) -> Outcome:
        """Approve a request; the requester becomes a member of the mess."""
        return await self._run(
            "approve_join_request",
            RemoteRequest(method="PUT", path=f"/join-requests/{request_id}/approve"),
            lambda data: decode_optional(data, "request", JoinRequest),
            lambda: self._local.approve_join_request(request_id),
            invalidate=self._drop_membership,
            collection=Collection.JOIN_REQUESTS,
        )

    async def reject_join_request(self, request_id: str) -> Outcome:
        return await self._run(
            "reject_join_request",
            RemoteRequest(method="PUT", path=f"/join-requests/{request_id}/reject"),
            lambda data: decode_optional(data, "request", JoinRequest),
            lambda: self._local.reject_join_request(request_id),
            invalidate=self._drop_membership,
            collection=Collection.JOIN_REQUESTS,
        )

    async def delete_join_request(self, request_id: str) -> Outcome:
        return await self._delete(
            "delete_join_request",
            f"/join-requests/{request_id}",
            lambda: self._local.delete_join_request(request_id),
            lambda _: self._drop("joinRequests:"),
            Collection.JOIN_REQUESTS,
        )

    # =========================================================================
    # NOTICES
    # =========================================================================

    def _drop_notices(self, _value: Any = None) -> list[str]:
        return self._drop("notices:", "notifications:")

    async def get_notices(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_notices",
            RemoteRequest(path="/notices", params={"messId": mess_id}),
            lambda data: decode_list(data, "notices", Notice),
            lambda: self._local.get_notices_by_mess_id(mess_id),
            cache_key=CacheKeys.notices(mess_id),
        )

    async def get_active_notice(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_active_notice",
            RemoteRequest(path="/notices/active", params={"messId": mess_id}),
            lambda data: decode_optional(data, "notice", Notice),
            lambda: self._local.get_active_notice(mess_id),
            cache_key=CacheKeys.active_notice(mess_id),
        )

    async def create_notice(self, notice: Notice) -> Outcome:
        """Post a notice; it replaces the mess's active notice."""
        return await self._run(
            "create_notice",
            RemoteRequest(method="POST", path="/notices", body=_body(notice)),
            lambda data: decode_one(data, "notice", Notice),
            lambda: self._local.create_notice(notice),
            invalidate=self._drop_notices,
            collection=Collection.NOTICES,
        )

    async def update_notice(self, notice_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_notice", Notice, f"/notices/{notice_id}", "notice", changes,
            lambda: self._local.update_notice(notice_id, changes),
            self._drop_notices,
            Collection.NOTICES,
        )

    async def delete_notice(self, notice_id: str) -> Outcome:
        return await self._delete(
            "delete_notice", f"/notices/{notice_id}",
            lambda: self._local.delete_notice(notice_id),
            self._drop_notices,
            Collection.NOTICES,
        )

    # =========================================================================
    # NOTES
    # =========================================================================

    def _drop_notes(self, _value: Any = None) -> list[str]:
        return self._drop("notes:", "notifications:")

    async def get_notes(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_notes",
            RemoteRequest(path="/notes", params={"messId": mess_id}),
            lambda data: decode_list(data, "notes", Note),
            lambda: self._local.get_notes_by_mess_id(mess_id),
            cache_key=CacheKeys.notes(mess_id),
        )

    async def create_note(self, note: Note) -> Outcome:
        return await self._run(
            "create_note",
            RemoteRequest(method="POST", path="/notes", body=_body(note)),
            lambda data: decode_one(data, "note", Note),
            lambda: self._local.create_note(note),
            invalidate=self._drop_notes,
            collection=Collection.NOTES,
        )

    async def update_note(self, note_id: str, changes: dict[str, Any]) -> Outcome:
        return await self._update(
            "update_note", Note, f"/notes/{note_id}", "note", changes,
            lambda: self._local.update_note(note_id, changes),
            self._drop_notes,
            Collection.NOTES,
        )

    async def delete_note(self, note_id: str) -> Outcome:
        return await self._delete(
            "delete_note", f"/notes/{note_id}",
            lambda: self._local.delete_note(note_id),
            self._drop_notes,
            Collection.NOTES,
        )

    # =========================================================================
    # BAZAR DATES
    # =========================================================================

    def _drop_bazar(self, _value: Any = None) -> list[str]:
        return self._drop("bazarDates:", "notifications:")

    async def get_bazar_dates(self, mess_id: str) -> Outcome:
        return await self._run(
            "get_bazar_dates",
            RemoteRequest(path="/bazar-dates", params={"messId": mess_id}),
            lambda data: decode_list(data, "dates", BazarDate),
            lambda: self._local.get_bazar_dates_by_mess_id(mess_id),
            cache_key=CacheKeys.bazar_dates(mess_id),
        )

    async def create_bazar_dates(
        self,
        mess_id: str,
        user_id: str,
        user_name: str,
        dates: list[dt.date],
    ) -> Outcome:
        """Assign duty days to one member. Any already-assigned day rejects the batch."""
        return await self._run(
            "create_bazar_dates",
            RemoteRequest(
                method="POST",
                path="/bazar-dates",
                body={
                    "messId": mess_id,
                    "userId": user_id,
                    "userName": user_name,
                    "dates": [d.isoformat() for d in dates],
                },
            ),
            lambda data: decode_list(data, "dates", BazarDate),
            lambda: self._local.create_bazar_dates(mess_id, user_id, user_name, dates),
            invalidate=self._drop_bazar,
            collection=Collection.BAZAR_DATES,
        )

    async def delete_bazar_date(self, bazar_id: str) -> Outcome:
        return await self._delete(
            "delete_bazar_date", f"/bazar-dates/{bazar_id}",
            lambda: self._local.delete_bazar_date(bazar_id),
            self._drop_bazar,
            Collection.BAZAR_DATES,
        )

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _drop_notifications(self, _value: Any = None) -> list[str]:
        return self._drop("notifications:")

    async def get_notifications(self, user_id: str) -> Outcome:
        return await self._run(
            "get_notifications",
            RemoteRequest(path="/notifications", params={"userId": user_id}),
            lambda data: decode_list(data, "notifications", Notification),
            lambda: self._local.get_notifications_by_user_id(user_id),
            cache_key=CacheKeys.notifications(user_id),
            ttl=CacheTTL.SHORT,
        )

    async def get_unseen_notifications_count(self, user_id: str) -> Outcome:
        outcome = await self.get_notifications(user_id)
        return self._map(outcome, lambda items: sum(1 for n in items if not n.seen))

    async def create_notification(self, notification: Notification) -> Outcome:
        return await self._run(
            "create_notification",
            RemoteRequest(method="POST", path="/notifications", body=_body(notification)),
            lambda data: decode_one(data, "notification", Notification),
            lambda: self._local.create_notification(notification),
            invalidate=self._drop_notifications,
            collection=Collection.NOTIFICATIONS,
        )

    async def mark_notification_seen(self, notification_id: str) -> Outcome:
        return await self._run(
            "mark_notification_seen",
            RemoteRequest(method="PUT", path=f"/notifications/{notification_id}/read"),
            decode_ack,
            lambda: self._local.mark_notification_as_seen(notification_id),
            invalidate=self._drop_notifications,
            collection=Collection.NOTIFICATIONS,
        )

    async def mark_all_notifications_seen(self, user_id: str) -> Outcome:
        async def local():
            await self._local.mark_all_notifications_as_seen(user_id)
            return True

        return await self._run(
            "mark_all_notifications_seen",
            RemoteRequest(method="PUT", path="/notifications/read-all", params={"userId": user_id}),
            decode_ack,
            local,
            invalidate=self._drop_notifications,
            collection=Collection.NOTIFICATIONS,
        )

    async def delete_notification(self, notification_id: str) -> Outcome:
        return await self._delete(
            "delete_notification", f"/notifications/{notification_id}",
            lambda: self._local.delete_notification(notification_id),
            self._drop_notifications,
            Collection.NOTIFICATIONS,
        )

    async def delete_all_notifications(self, user_id: str) -> Outcome:
        async def local():
            await self._local.delete_all_notifications(user_id)
            return True

        return await self._delete(
            "delete_all_notifications", "/notifications",
            local,
            self._drop_notifications,
            Collection.NOTIFICATIONS,
            params={"userId": user_id},
        )

    # =========================================================================
    # SUMMARIES
    # =========================================================================

    async def _local_ledger(self, month_id: str) -> MonthLedger:
        """Everything the allocation engine needs, read from the local store."""
        month = await self._local.get_month_by_id(month_id)
        members = await self._local.get_mess_members(month.mess_id) if month else []
        return MonthLedger(
            month_id=month_id,
            month_name=month.name if month else "Current Month",
            meals=await self._local.get_meals_by_month_id(month_id),
            deposits=await self._local.get_deposits_by_month_id(month_id),
            meal_costs=await self._local.get_meal_costs_by_month_id(month_id),
            other_costs=await self._local.get_other_costs_by_month_id(month_id),
            members=members,
        )

    async def _local_month_summary(self, month_id: str) -> MonthSummary:
        return month_summary(await self._local_ledger(month_id))

    async def _local_member_summary(self, user_id: str, month_id: str) -> MemberSummary:
        summary = member_summary(await self._local_ledger(month_id), user_id)
        if summary.user_name == "Unknown":
            # Former members keep their name on the summary.
            user = await self._local.get_user_by_id(user_id)
            if user is not None and user.full_name:
                summary = summary.model_copy(update={"user_name": user.full_name})
        return summary

    async def _local_all_members_summary(self, month_id: str) -> list[MemberSummary]:
        return all_members_summary(await self._local_ledger(month_id))

    async def get_month_summary(self, month_id: str) -> Outcome:
        return await self._run(
            "get_month_summary",
            RemoteRequest(path=f"/summary/month/{month_id}"),
            lambda data: decode_one(data, "summary", MonthSummary),
            lambda: self._local_month_summary(month_id),
            cache_key=CacheKeys.month_summary(month_id),
            ttl=CacheTTL.SHORT,
        )

    async def get_member_summary(self, user_id: str, month_id: str) -> Outcome:
        return await self._run(
            "get_member_summary",
            RemoteRequest(path=f"/summary/member/{user_id}", params={"monthId": month_id}),
            lambda data: decode_one(data, "summary", MemberSummary),
            lambda: self._local_member_summary(user_id, month_id),
            cache_key=CacheKeys.member_summary(user_id, month_id),
            ttl=CacheTTL.SHORT,
        )

    async def get_all_members_summary(self, month_id: str) -> Outcome:
        return await self._run(
            "get_all_members_summary",
            RemoteRequest(path="/summary/members", params={"monthId": month_id}),
            lambda data: decode_list(data, "summaries", MemberSummary),
            lambda: self._local_all_members_summary(month_id),
            cache_key=CacheKeys.all_members_summary(month_id),
            ttl=CacheTTL.SHORT,
        )


def create_data_service(
    settings: Optional[Settings] = None,
    medium: Optional[StorageMedium] = None,
    token_store: Optional[AuthTokenStore] = None,
    on_fallback: Optional[FallbackCallback] = None,
) -> DataService:
    """
    Factory function to create a fully wired DataService.

    Args:
        settings: Settings to use (defaults to `get_settings()`)
        medium: Local storage medium (defaults to JSON files in the
                configured data directory)
        token_store: Where the bearer token lives between calls
        on_fallback: Called once each time the service starts serving
                     locally because the remote became unreachable
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)
    remote_settings = settings.remote
    connectivity = settings.connectivity
    cache_settings = settings.cache
    local_settings = settings.local_store

    remote = None
    if remote_settings.use_backend:
        remote = RemoteClient(
            base_url=remote_settings.base_url,
            timeout_seconds=remote_settings.timeout_seconds,
            token_store=token_store,
        )

    local = LocalStore(
        medium or JsonFileMedium(local_settings.data_dir),
        serialize_writes=local_settings.serialize_writes,
    )

    return DataService(
        local=local,
        remote=remote,
        monitor=ConnectivityMonitor(
            remote_configured=remote is not None,
            check_interval_seconds=connectivity.health_check_interval_seconds,
        ),
        cache=ResponseCache(
            short_ttl=cache_settings.short_ttl_seconds,
            default_ttl=cache_settings.default_ttl_seconds,
            long_ttl=cache_settings.long_ttl_seconds,
        ),
        auto_health_check=connectivity.auto_health_check,
        on_fallback=on_fallback,
    )

"""Tests for the local store and its storage media."""

import asyncio
from datetime import date

import pytest

from messmate.models import (
    JoinRequestStatus,
    Meal,
    Mess,
    Month,
    Notice,
    NotificationType,
    OtherCost,
    User,
    UserRole,
)
from messmate.services.storage import (
    Collection,
    CorruptCollectionError,
    InMemoryMedium,
    JsonFileMedium,
    LocalStore,
    RejectedError,
    StorageError,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    return LocalStore(InMemoryMedium())


async def _manager_with_mess(store: LocalStore):
    return await store.register_manager("Karim", "Green House", "0171", "karim@example.com", "pw")


class TestMedia:
    """Tests for the storage media."""

    def test_json_file_medium_round_trip(self, tmp_path):
        medium = JsonFileMedium(tmp_path)

        async def scenario():
            await medium.write("mess_manager_meals", [{"id": "a"}])
            return await medium.read("mess_manager_meals"), await medium.keys()

        value, keys = run(scenario())
        assert value == [{"id": "a"}]
        assert keys == ["mess_manager_meals"]
        assert (tmp_path / "mess_manager_meals.json").exists()

    def test_json_file_medium_missing_key(self, tmp_path):
        assert run(JsonFileMedium(tmp_path).read("nothing")) is None

    def test_json_file_medium_corrupt_file(self, tmp_path):
        (tmp_path / "mess_manager_users.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(CorruptCollectionError):
            run(JsonFileMedium(tmp_path).read("mess_manager_users"))

    def test_json_file_medium_rejects_path_keys(self, tmp_path):
        with pytest.raises(StorageError):
            run(JsonFileMedium(tmp_path).read("../escape"))

    def test_json_file_medium_delete(self, tmp_path):
        medium = JsonFileMedium(tmp_path)

        async def scenario():
            await medium.write("k", 1)
            return await medium.delete("k"), await medium.delete("k")

        assert run(scenario()) == (True, False)

    def test_in_memory_reads_are_copies(self):
        medium = InMemoryMedium()

        async def scenario():
            await medium.write("k", [{"a": 1}])
            first = await medium.read("k")
            first[0]["a"] = 2
            return await medium.read("k")

        assert run(scenario()) == [{"a": 1}]

    def test_non_list_collection_is_corrupt(self):
        medium = InMemoryMedium()
        store = LocalStore(medium)

        async def scenario():
            await medium.write(Collection.MEALS.value, {"oops": True})
            await store.get_meals_by_month_id("mo1")

        with pytest.raises(CorruptCollectionError):
            run(scenario())


class TestCrud:
    """Tests for generic create/update/delete behavior."""

    def test_create_assigns_id_and_timestamp(self, store):
        draft = Meal(id="client-side", month_id="mo1", user_id="u1", date=date(2024, 3, 1))
        created = run(store.create_meal(draft))
        assert created.id != "client-side"
        assert created.created_at >= draft.created_at

    def test_reads_filter_by_foreign_key(self, store):
        async def scenario():
            await store.create_meal(Meal(month_id="mo1", user_id="u1", date=date(2024, 3, 1)))
            await store.create_meal(Meal(month_id="mo1", user_id="u2", date=date(2024, 3, 1)))
            await store.create_meal(Meal(month_id="mo2", user_id="u1", date=date(2024, 4, 1)))
            return (
                await store.get_meals_by_month_id("mo1"),
                await store.get_meals_by_user_and_month("u1", "mo1"),
            )

        month_meals, user_meals = run(scenario())
        assert len(month_meals) == 2
        assert [m.user_id for m in user_meals] == ["u1"]

    def test_update_unknown_id_returns_none(self, store):
        assert run(store.update_meal("missing", {"lunch": 2})) is None

    def test_delete_unknown_id_returns_false(self, store):
        assert run(store.delete_deposit("missing")) is False

    def test_update_and_delete(self, store):
        async def scenario():
            meal = await store.create_meal(
                Meal(month_id="mo1", user_id="u1", date=date(2024, 3, 1), lunch=1)
            )
            updated = await store.update_meal(meal.id, {"lunch": 2})
            deleted = await store.delete_meal(meal.id)
            return meal, updated, deleted, await store.get_meals_by_month_id("mo1")

        meal, updated, deleted, remaining = run(scenario())
        assert updated.lunch == 2
        assert updated.id == meal.id
        assert deleted is True
        assert remaining == []

    def test_update_with_unknown_field_raises(self, store):
        async def scenario():
            meal = await store.create_meal(Meal(month_id="mo1", user_id="u1", date=date(2024, 3, 1)))
            await store.update_meal(meal.id, {"snack": 1})

        with pytest.raises(ValueError):
            run(scenario())

    def test_records_persist_to_files(self, tmp_path):
        """Test that a new store over the same directory sees earlier writes."""
        run(LocalStore(JsonFileMedium(tmp_path)).create_other_cost(
            OtherCost(month_id="mo1", user_id="u1", amount=50, date=date(2024, 3, 1), is_shared=True)
        ))
        costs = run(LocalStore(JsonFileMedium(tmp_path)).get_other_costs_by_month_id("mo1"))
        assert len(costs) == 1
        assert costs[0].is_shared is True


class TestMonths:
    """Tests for the single-active-month invariant."""

    def test_creating_active_month_deactivates_previous(self, store):
        """Test that only the newest active month stays active."""
        async def scenario():
            march = await store.create_month(Month(mess_id="m1", name="March", is_active=True))
            april = await store.create_month(Month(mess_id="m1", name="April", is_active=True))
            return march, april, await store.get_months_by_mess_id("m1")

        march, april, months = run(scenario())
        by_id = {m.id: m for m in months}
        assert by_id[april.id].is_active is True
        assert by_id[march.id].is_active is False
        assert by_id[march.id].end_date == date.today()

    def test_other_messes_are_untouched(self, store):
        async def scenario():
            other = await store.create_month(Month(mess_id="m2", name="March", is_active=True))
            await store.create_month(Month(mess_id="m1", name="March", is_active=True))
            return await store.get_month_by_id(other.id)

        assert run(scenario()).is_active is True

    def test_concurrent_active_month_creates_leave_one_active(self, store):
        async def scenario():
            await asyncio.gather(*(
                store.create_month(Month(mess_id="m1", name=f"Month {i}", is_active=True))
                for i in range(5)
            ))
            return await store.get_months_by_mess_id("m1")

        months = run(scenario())
        assert len(months) == 5
        assert sum(1 for m in months if m.is_active) == 1

    def test_activating_by_update_deactivates_siblings(self, store):
        async def scenario():
            march = await store.create_month(Month(mess_id="m1", name="March", is_active=True))
            april = await store.create_month(Month(mess_id="m1", name="April"))
            await store.update_month(april.id, {"is_active": True})
            return await store.get_active_month("m1"), await store.get_month_by_id(march.id)

        active, march = run(scenario())
        assert active.name == "April"
        assert march.is_active is False


class TestWriteSerialization:
    """Tests for the read-modify-write race and its lock."""

    @staticmethod
    def _two_concurrent_creates(store: LocalStore):
        async def scenario():
            await asyncio.gather(
                store.create_meal(Meal(month_id="mo1", user_id="u1", date=date(2024, 3, 1))),
                store.create_meal(Meal(month_id="mo1", user_id="u2", date=date(2024, 3, 1))),
            )
            return await store.get_meals_by_month_id("mo1")

        return run(scenario())

    def test_serialized_writes_keep_both_records(self):
        """Test that the per-collection lock prevents lost updates."""
        store = LocalStore(InMemoryMedium(), serialize_writes=True)
        meals = self._two_concurrent_creates(store)
        assert sorted(m.user_id for m in meals) == ["u1", "u2"]

    def test_unserialized_writes_lose_an_update(self):
        """Test that without the lock the second write overwrites the first."""
        store = LocalStore(InMemoryMedium(), serialize_writes=False)
        meals = self._two_concurrent_creates(store)
        assert len(meals) == 1


class TestMessAndMembership:
    """Tests for messes, codes, registration and join requests."""

    def test_register_manager_creates_mess_with_code(self, store):
        user, mess = run(_manager_with_mess(store))
        assert user.role == UserRole.MANAGER
        assert user.mess_id == mess.id
        assert mess.manager_id == user.id
        assert len(mess.code) == 6
        assert mess.code.isalnum() and mess.code.upper() == mess.code

    def test_duplicate_email_rejected(self, store):
        async def scenario():
            await store.register_member("A", "1", "same@example.com", "pw")
            await store.register_member("B", "2", "SAME@example.com", "pw")

        with pytest.raises(RejectedError, match="Email already registered"):
            run(scenario())

    def test_login(self, store):
        async def scenario():
            await store.register_member("Rafi", "1", "rafi@example.com", "secret")
            return await store.authenticate("rafi@example.com", "secret")

        assert run(scenario()).full_name == "Rafi"

    def test_wrong_password_rejected(self, store):
        async def scenario():
            await store.register_member("Rafi", "1", "rafi@example.com", "secret")
            await store.authenticate("rafi@example.com", "nope")

        with pytest.raises(RejectedError, match="Invalid email or password"):
            run(scenario())

    def test_password_is_not_stored_on_user(self, store):
        medium = InMemoryMedium()
        store = LocalStore(medium)

        async def scenario():
            await store.register_member("Rafi", "1", "rafi@example.com", "secret")
            return await medium.read(Collection.USERS.value), await medium.read(
                Collection.CREDENTIALS.value
            )

        users, credentials = run(scenario())
        assert "secret" not in str(users)
        assert "secret" not in str(credentials)
        assert len(credentials) == 1

    def test_mess_code_lookup_is_case_insensitive(self, store):
        async def scenario():
            _, mess = await _manager_with_mess(store)
            return mess, await store.get_mess_by_code(mess.code.lower())

        mess, found = run(scenario())
        assert found.id == mess.id

    def test_mess_code_uniqueness(self, store):
        async def scenario():
            _, mess = await _manager_with_mess(store)
            return (
                await store.is_mess_code_unique(mess.code),
                await store.is_mess_code_unique(mess.code, exclude_mess_id=mess.id),
                await store.generate_unique_mess_code(),
            )

        unique, unique_excluding_self, fresh = run(scenario())
        assert unique is False
        assert unique_excluding_self is True
        assert len(fresh) == 6

    def test_join_request_with_invalid_code_rejected(self, store):
        with pytest.raises(RejectedError, match="Invalid mess code"):
            run(store.create_join_request("u1", "ZZZZZZ"))

    def test_duplicate_pending_request_rejected(self, store):
        async def scenario():
            _, mess = await _manager_with_mess(store)
            member = await store.register_member("Rafi", "1", "rafi@example.com", "pw")
            await store.create_join_request(member.id, mess.code)
            await store.create_join_request(member.id, mess.code)

        with pytest.raises(RejectedError, match="Request already pending"):
            run(scenario())

    def test_join_request_notifies_manager(self, store):
        async def scenario():
            manager, mess = await _manager_with_mess(store)
            member = await store.register_member("Rafi", "1", "rafi@example.com", "pw")
            await store.create_join_request(member.id, mess.code)
            return await store.get_notifications_by_user_id(manager.id)

        notifications = run(scenario())
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.JOIN_REQUEST

    def test_approval_attaches_member(self, store):
        """Test that approving a request makes the user a mess member."""
        async def scenario():
            manager, mess = await _manager_with_mess(store)
            member = await store.register_member("Rafi", "1", "rafi@example.com", "pw")
            request = await store.create_join_request(member.id, mess.code)
            approved = await store.approve_join_request(request.id)
            return mess, approved, await store.get_mess_members(mess.id)

        mess, approved, members = run(scenario())
        assert approved.status == JoinRequestStatus.APPROVED
        assert sorted(m.full_name for m in members) == ["Karim", "Rafi"]

    def test_approval_cleans_up_other_pending_requests(self, store):
        async def scenario():
            _, first = await _manager_with_mess(store)
            _, second = await store.register_manager(
                "Nila", "Blue House", "0181", "nila@example.com", "pw"
            )
            member = await store.register_member("Rafi", "1", "rafi@example.com", "pw")
            request = await store.create_join_request(member.id, first.code)
            await store.create_join_request(member.id, second.code)
            await store.approve_join_request(request.id)
            return await store.get_join_requests_by_user_id(member.id)

        requests = run(scenario())
        assert [r.status for r in requests] == [JoinRequestStatus.APPROVED]

    def test_unapproved_and_inactive_users_are_not_members(self, store):
        async def scenario():
            await store.create_user(User(email="a@x.co", full_name="A", mess_id="m1"))
            await store.create_user(User(email="b@x.co", full_name="B", mess_id="m1",
                                         is_approved=False))
            await store.create_user(User(email="c@x.co", full_name="C", mess_id="m1",
                                         is_active=False))
            return await store.get_mess_members("m1")

        assert [m.full_name for m in run(scenario())] == ["A"]

    def test_remove_member_detaches(self, store):
        async def scenario():
            user = await store.create_user(User(email="a@x.co", full_name="A", mess_id="m1"))
            removed = await store.remove_member(user.id)
            return removed, await store.get_mess_members("m1"), await store.remove_member("nobody")

        removed, members, missing = run(scenario())
        assert removed is True
        assert members == []
        assert missing is False

    def test_update_mess_code_must_stay_unique(self, store):
        async def scenario():
            _, first = await _manager_with_mess(store)
            _, second = await store.register_manager(
                "Nila", "Blue House", "0181", "nila@example.com", "pw"
            )
            await store.update_mess(second.id, {"code": first.code})

        with pytest.raises(RejectedError, match="Mess code already in use"):
            run(scenario())

    def test_concurrent_code_changes_cannot_collide(self, store):
        """Test that two messes racing for one code end with only one holder."""
        async def scenario():
            _, first = await _manager_with_mess(store)
            _, second = await store.register_manager(
                "Nila", "Blue House", "0181", "nila@example.com", "pw"
            )
            results = await asyncio.gather(
                store.update_mess(first.id, {"code": "shared"}),
                store.update_mess(second.id, {"code": "SHARED"}),
                return_exceptions=True,
            )
            return results, await store.get_messes()

        results, messes = run(scenario())
        assert sum(isinstance(r, RejectedError) for r in results) == 1
        assert [m.code for m in messes].count("SHARED") == 1

    def test_update_unknown_mess_returns_none(self, store):
        assert run(store.update_mess("missing", {"code": "NEW123"})) is None

    def test_decided_request_cannot_be_decided_again(self, store):
        """Test that a second approval neither re-attaches nor re-notifies."""
        async def scenario():
            _, mess = await _manager_with_mess(store)
            member = await store.register_member("Rafi", "1", "rafi@example.com", "pw")
            request = await store.create_join_request(member.id, mess.code)
            await store.approve_join_request(request.id)
            await store.remove_member(member.id)
            with pytest.raises(RejectedError, match="Request already approved"):
                await store.approve_join_request(request.id)
            with pytest.raises(RejectedError, match="Request already approved"):
                await store.reject_join_request(request.id)
            return (
                await store.get_mess_members(mess.id),
                await store.get_notifications_by_user_id(member.id),
            )

        members, notifications = run(scenario())
        assert [m.full_name for m in members] == ["Karim"]
        assert [n.type for n in notifications] == [NotificationType.JOIN_APPROVED]

    def test_deciding_unknown_request_returns_none(self, store):
        assert run(store.approve_join_request("missing")) is None
        assert run(store.reject_join_request("missing")) is None


class TestNoticesAndBazar:
    """Tests for notices, bazar dates and notifications."""

    def test_new_notice_deactivates_previous(self, store):
        async def scenario():
            await store.create_notice(Notice(mess_id="m1", title="Water off"))
            latest = await store.create_notice(Notice(mess_id="m1", title="Rent due"))
            return latest, await store.get_notices_by_mess_id("m1"), await store.get_active_notice("m1")

        latest, notices, active = run(scenario())
        assert sum(1 for n in notices if n.is_active) == 1
        assert active.id == latest.id

    def test_notice_notifies_members_except_author(self, store):
        async def scenario():
            manager, mess = await _manager_with_mess(store)
            member = await store.create_user(
                User(email="r@x.co", full_name="Rafi", mess_id=mess.id)
            )
            await store.create_notice(Notice(mess_id=mess.id, title="Rent", created_by=manager.id))
            return (
                await store.get_unseen_notifications_count(member.id),
                await store.get_unseen_notifications_count(manager.id),
            )

        assert run(scenario()) == (1, 0)

    def test_bazar_date_conflict_rejected(self, store):
        """Test that a day can be assigned only once per mess."""
        async def scenario():
            await store.create_bazar_dates("m1", "u1", "Rafi", [date(2024, 3, 5), date(2024, 3, 6)])
            await store.create_bazar_dates("m1", "u2", "Nila", [date(2024, 3, 6), date(2024, 3, 7)])

        with pytest.raises(RejectedError, match="These dates are already assigned: 2024-03-06"):
            run(scenario())

    def test_bazar_dates_sorted_and_scoped(self, store):
        async def scenario():
            await store.create_bazar_dates("m1", "u1", "Rafi", [date(2024, 3, 9), date(2024, 3, 2)])
            await store.create_bazar_dates("m2", "u2", "Nila", [date(2024, 3, 2)])
            return await store.get_bazar_dates_by_mess_id("m1")

        dates = run(scenario())
        assert [d.date for d in dates] == [date(2024, 3, 2), date(2024, 3, 9)]

    def test_mark_all_seen_and_delete_all(self, store):
        async def scenario():
            await store.create_bazar_dates("m1", "u1", "Rafi", [date(2024, 3, 9)])
            await store.create_bazar_dates("m1", "u1", "Rafi", [date(2024, 3, 10)])
            marked = await store.mark_all_notifications_as_seen("u1")
            unseen = await store.get_unseen_notifications_count("u1")
            deleted = await store.delete_all_notifications("u1")
            return marked, unseen, deleted

        assert run(scenario()) == (2, 0, 2)


class TestSession:

    def test_current_user_slot(self, store):
        async def scenario():
            user = User(email="a@x.co", full_name="A")
            await store.set_current_user(user)
            stored = await store.get_current_user()
            await store.set_current_user(None)
            return user, stored, await store.get_current_user()

        user, stored, cleared = run(scenario())
        assert stored == user
        assert cleared is None

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from finance_api.auth import Principal
from finance_api.errors import NotFound, ValidationFailed
from finance_api.models import Profile, User
from finance_api.persistence import SqlPersistence
from finance_api.schemas import (
    BudgetCategoryCreate,
    BudgetCreate,
    EntryCreate,
    EntryFilter,
    EntryKind,
    GoalCreate,
    GoalUpdate,
    NotificationCreate,
    ProfileUpdate,
)


def _expense(description="Groceries", amount="100.50", category="Food", day=date(2024, 1, 15)) -> EntryCreate:
    return EntryCreate(description=description, amount=Decimal(amount), category=category, date=day)


def _goal(**overrides) -> GoalCreate:
    payload = {
        "name": "Vacation",
        "targetAmount": Decimal("1000"),
        "startDate": date(2024, 1, 1),
        "targetDate": date(2024, 12, 31),
        "category": "travel",
    }
    payload.update(overrides)
    return GoalCreate(**payload)


def test_created_expense_is_listed_by_category(persistence) -> None:
    created = persistence.create_entry(EntryKind.expense, "alice", _expense())
    persistence.create_entry(EntryKind.expense, "alice", _expense(description="Bus", category="Transport"))

    rows = persistence.list_entries(EntryKind.expense, "alice", EntryFilter(category="Food"))

    assert [r["id"] for r in rows] == [created["id"]]
    assert rows[0]["amount"] == Decimal("100.50")
    assert rows[0]["description"] == "Groceries"
    assert rows[0]["date"] == date(2024, 1, 15)
    assert rows[0]["user_id"] == "alice"


def test_date_filter_bounds_are_inclusive(persistence) -> None:
    for day in (date(2023, 12, 31), date(2024, 1, 1), date(2024, 1, 31), date(2024, 2, 1)):
        persistence.create_entry(EntryKind.income, "alice", _expense(description=day.isoformat(), day=day))

    rows = persistence.list_entries(
        EntryKind.income,
        "alice",
        EntryFilter(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)),
    )

    assert sorted(r["date"] for r in rows) == [date(2024, 1, 1), date(2024, 1, 31)]


def test_list_is_newest_first_and_limited(persistence) -> None:
    for day in (date(2024, 1, 3), date(2024, 1, 1), date(2024, 1, 2)):
        persistence.create_entry(EntryKind.expense, "alice", _expense(day=day))

    rows = persistence.list_entries(EntryKind.expense, "alice", EntryFilter(limit=2))

    assert [r["date"] for r in rows] == [date(2024, 1, 3), date(2024, 1, 2)]


def test_records_are_isolated_between_users(persistence) -> None:
    entry = persistence.create_entry(EntryKind.expense, "alice", _expense())
    goal = persistence.create_goal("alice", _goal())
    budget = persistence.create_budget("alice", BudgetCreate(name="Jan", amount=Decimal("500"), startDate=date(2024, 1, 1)))
    note = persistence.create_notification("alice", NotificationCreate(type="info", message="hi"))

    assert persistence.list_entries(EntryKind.expense, "bob") == []
    assert persistence.list_goals("bob") == []
    assert persistence.list_budgets("bob") == []
    assert persistence.list_notifications("bob") == []
    assert persistence.get_active_budget("bob") is None

    with pytest.raises(NotFound):
        persistence.get_entry(EntryKind.expense, "bob", entry["id"])
    with pytest.raises(NotFound):
        persistence.update_entry(EntryKind.expense, "bob", entry["id"], _expense(amount="1"))
    with pytest.raises(NotFound):
        persistence.delete_entry(EntryKind.expense, "bob", entry["id"])
    with pytest.raises(NotFound):
        persistence.update_goal("bob", goal["id"], GoalUpdate(name="mine"))
    with pytest.raises(NotFound):
        persistence.delete_goal("bob", goal["id"])
    with pytest.raises(NotFound):
        persistence.get_budget("bob", budget["id"])
    with pytest.raises(NotFound):
        persistence.create_budget_category("bob", budget["id"], BudgetCategoryCreate(name="Food", amount=Decimal("1")))
    with pytest.raises(NotFound):
        persistence.mark_notification_read("bob", note["id"])
    with pytest.raises(NotFound):
        persistence.delete_notification("bob", note["id"])

    assert persistence.get_entry(EntryKind.expense, "alice", entry["id"])["amount"] == Decimal("100.50")
    assert persistence.list_notifications("alice")[0]["read"] is False
    assert len(persistence.get_budget("alice", budget["id"])["categories"]) == 0


def test_income_and_expense_tables_are_separate(persistence) -> None:
    entry = persistence.create_entry(EntryKind.income, "alice", _expense(description="Salary"))

    assert persistence.list_entries(EntryKind.expense, "alice") == []
    with pytest.raises(NotFound):
        persistence.get_entry(EntryKind.expense, "alice", entry["id"])


def test_update_and_delete_entry(persistence) -> None:
    entry = persistence.create_entry(EntryKind.expense, "alice", _expense())

    updated = persistence.update_entry(EntryKind.expense, "alice", entry["id"], _expense(amount="12.30", category="Home"))
    assert updated["amount"] == Decimal("12.30")
    assert updated["category"] == "Home"

    persistence.delete_entry(EntryKind.expense, "alice", entry["id"])
    assert persistence.list_entries(EntryKind.expense, "alice") == []
    with pytest.raises(NotFound):
        persistence.delete_entry(EntryKind.expense, "alice", entry["id"])


def test_goal_defaults_and_ordering(persistence) -> None:
    later = persistence.create_goal("alice", _goal(name="Car", targetDate=date(2025, 6, 1)))
    sooner = persistence.create_goal("alice", _goal(name="Trip", targetDate=date(2024, 6, 1)))

    goals = persistence.list_goals("alice")

    assert [g["id"] for g in goals] == [sooner["id"], later["id"]]
    assert all(g["priority"] == "medium" for g in goals)
    assert all(g["current_amount"] == Decimal("0") for g in goals)


def test_goal_update_rechecks_dates(persistence) -> None:
    goal = persistence.create_goal("alice", _goal())

    updated = persistence.update_goal("alice", goal["id"], GoalUpdate(currentAmount=Decimal("250"), priority="high"))
    assert updated["current_amount"] == Decimal("250.00")
    assert updated["priority"] == "high"

    with pytest.raises(ValidationFailed):
        persistence.update_goal("alice", goal["id"], GoalUpdate(targetDate=date(2023, 1, 1)))
    assert persistence.list_goals("alice")[0]["target_date"] == date(2024, 12, 31)


def test_active_budget_is_latest_open_budget(persistence) -> None:
    persistence.create_budget(
        "alice",
        BudgetCreate(name="Closed", amount=Decimal("100"), startDate=date(2024, 3, 1), endDate=date(2024, 3, 31)),
    )
    assert persistence.get_active_budget("alice") is None

    persistence.create_budget("alice", BudgetCreate(name="Old", amount=Decimal("100"), startDate=date(2024, 1, 1)))
    newest = persistence.create_budget(
        "alice",
        BudgetCreate(
            name="New",
            amount=Decimal("200"),
            startDate=date(2024, 2, 1),
            categories=[BudgetCategoryCreate(name="Rent", amount=Decimal("150"))],
        ),
    )

    active = persistence.get_active_budget("alice")
    assert active["id"] == newest["id"]
    assert [c["name"] for c in active["categories"]] == ["Rent"]


def test_delete_budget_removes_categories(persistence) -> None:
    budget = persistence.create_budget(
        "alice",
        BudgetCreate(
            name="Jan",
            amount=Decimal("300"),
            startDate=date(2024, 1, 1),
            categories=[BudgetCategoryCreate(name="Food", amount=Decimal("100"))],
        ),
    )
    persistence.create_budget_category("alice", budget["id"], BudgetCategoryCreate(name="Fun", amount=Decimal("50")))
    assert persistence.debug_counts()["budgetCategories"] == 2

    persistence.delete_budget("alice", budget["id"])

    counts = persistence.debug_counts()
    assert counts["budgets"] == 0
    assert counts["budgetCategories"] == 0


def test_notifications_newest_first_and_mark_read(persistence) -> None:
    first = persistence.create_notification("alice", NotificationCreate(type="info", message="one"))
    persistence.create_notification("alice", NotificationCreate(type="info", message="two"))

    rows = persistence.list_notifications("alice", limit=1)
    assert len(rows) == 1

    marked = persistence.mark_notification_read("alice", first["id"])
    assert marked["read"] is True

    persistence.delete_notification("alice", first["id"])
    assert [n["message"] for n in persistence.list_notifications("alice")] == ["two"]


def test_profile_defaults_and_update(persistence) -> None:
    profile = persistence.get_or_create_profile("alice")
    assert profile["currency"] == "USD"
    assert profile["language"] == "en"
    assert profile["theme"] == "light"
    assert profile["date_format"] == "MM/DD/YYYY"
    assert profile["notifications"] is True

    updated = persistence.update_profile("alice", ProfileUpdate(currency="eur", theme="dark"))
    assert updated["currency"] == "EUR"
    assert updated["theme"] == "dark"
    assert updated["language"] == "en"
    assert persistence.get_or_create_profile("alice")["id"] == profile["id"]


def test_ensure_user_is_idempotent(persistence) -> None:
    before = persistence.debug_counts()["users"]
    principal = Principal(user_id="carol", email="carol@example.com", name="Carol")

    first = persistence.ensure_user(principal)
    second = persistence.ensure_user(principal)

    assert first["id"] == second["id"] == "carol"
    assert persistence.debug_counts()["users"] == before + 1
    assert persistence.get_user("carol")["email"] == "carol@example.com"


def test_sum_entries_is_exact(persistence) -> None:
    for amount in ("0.10", "0.20", "0.30"):
        persistence.create_entry(EntryKind.expense, "alice", _expense(amount=amount))

    assert persistence.sum_entries(EntryKind.expense, "alice") == Decimal("0.60")
    assert persistence.sum_entries(EntryKind.expense, "bob") == Decimal("0.00")


def test_sum_entries_applies_category_and_date_bounds(persistence) -> None:
    persistence.create_entry(EntryKind.expense, "alice", _expense(amount="10.10", day=date(2024, 1, 1)))
    persistence.create_entry(EntryKind.expense, "alice", _expense(amount="5.05", day=date(2024, 1, 31)))
    persistence.create_entry(EntryKind.expense, "alice", _expense(amount="7", day=date(2024, 2, 1)))
    persistence.create_entry(EntryKind.expense, "alice", _expense(amount="3", category="Home", day=date(2024, 1, 10)))

    total = persistence.sum_entries(EntryKind.expense, "alice", date(2024, 1, 1), date(2024, 1, 31), category="Food")

    assert total == Decimal("15.15")
    assert persistence.sum_entries(EntryKind.income, "alice") == Decimal("0.00")


def _sql_backend() -> SqlPersistence:
    backend = SqlPersistence("sqlite://")
    backend.ensure_user(Principal(user_id="alice", email="alice@example.com"))
    return backend


def test_ensure_user_absorbs_concurrent_insert(monkeypatch) -> None:
    backend = SqlPersistence("sqlite://")
    with backend.SessionLocal() as session:
        session.add(User(id="carol", email="first@example.com", name="", image="", created_at=datetime.now(timezone.utc)))
        session.commit()

    real_get_user = backend.get_user
    calls = []

    def get_user_missed_once(user_id):
        calls.append(user_id)
        # The existence check runs before the other request's insert lands.
        return None if len(calls) == 1 else real_get_user(user_id)

    monkeypatch.setattr(backend, "get_user", get_user_missed_once)

    row = backend.ensure_user(Principal(user_id="carol", email="second@example.com"))

    assert row["email"] == "first@example.com"
    assert backend.debug_counts()["users"] == 1


def test_profile_creation_absorbs_concurrent_insert(monkeypatch) -> None:
    backend = _sql_backend()
    with backend.SessionLocal() as session:
        session.add(Profile(id="existing", user_id="alice", currency="EUR", language="de", theme="dark",
                            date_format="DD.MM.YYYY", notifications=False))
        session.commit()

    real_find_profile = backend.find_profile
    calls = []

    def find_profile_missed_once(user_id):
        calls.append(user_id)
        return None if len(calls) == 1 else real_find_profile(user_id)

    monkeypatch.setattr(backend, "find_profile", find_profile_missed_once)

    profile = backend.get_or_create_profile("alice")

    assert profile["id"] == "existing"
    assert profile["currency"] == "EUR"
    assert backend.debug_counts()["profiles"] == 1

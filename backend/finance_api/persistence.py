from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator
from uuid import uuid4

from sqlalchemy import create_engine, event, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .auth import Principal
from .config import Settings
from .errors import NotFound, StoreError, ValidationFailed
from .models import Base, Budget, BudgetCategory, Expense, Goal, Income, Notification, Profile, User
from .ownership import owned_or_not_found
from .schemas import (
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
from .store import InMemoryStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

PROFILE_DEFAULTS: dict[str, Any] = {
    "currency": "USD",
    "language": "en",
    "theme": "light",
    "date_format": "MM/DD/YYYY",
    "notifications": True,
}

GOAL_FIELDS = {
    "name": "name",
    "targetAmount": "target_amount",
    "currentAmount": "current_amount",
    "startDate": "start_date",
    "targetDate": "target_date",
    "category": "category",
    "priority": "priority",
    "notes": "notes",
}

PROFILE_FIELDS = {
    "currency": "currency",
    "language": "language",
    "theme": "theme",
    "dateFormat": "date_format",
    "notifications": "notifications",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _cents(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def _plain(value: Any) -> Any:
    # Enum members are stored by value.
    return getattr(value, "value", value)


def _kind(kind: EntryKind | str) -> str:
    return EntryKind(kind).value


def _check_goal_dates(row: dict[str, Any]) -> None:
    if row["target_date"] < row["start_date"]:
        raise ValidationFailed(details=[{"field": "targetDate", "message": "targetDate must be >= startDate"}])


class Persistence:
    """User-scoped record store.

    Every read and write takes the owning user id; lookups by id that miss or
    hit another user's row raise ``NotFound``.
    """

    def ensure_user(self, principal: Principal) -> dict[str, Any]:
        raise NotImplementedError

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_entry(self, kind: EntryKind | str, user_id: str, payload: EntryCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_entries(self, kind: EntryKind | str, user_id: str, filters: EntryFilter | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def update_entry(self, kind: EntryKind | str, user_id: str, entry_id: str, payload: EntryCreate) -> dict[str, Any]:
        raise NotImplementedError

    def delete_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> None:
        raise NotImplementedError

    def create_goal(self, user_id: str, payload: GoalCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_goals(self, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def update_goal(self, user_id: str, goal_id: str, payload: GoalUpdate) -> dict[str, Any]:
        raise NotImplementedError

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        raise NotImplementedError

    def create_budget(self, user_id: str, payload: BudgetCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_budgets(self, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_budget(self, user_id: str, budget_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def delete_budget(self, user_id: str, budget_id: str) -> None:
        raise NotImplementedError

    def get_active_budget(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_budget_category(self, user_id: str, budget_id: str, payload: BudgetCategoryCreate) -> dict[str, Any]:
        raise NotImplementedError

    def create_notification(self, user_id: str, payload: NotificationCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_notifications(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        raise NotImplementedError

    def mark_notification_read(self, user_id: str, notification_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def delete_notification(self, user_id: str, notification_id: str) -> None:
        raise NotImplementedError

    def get_or_create_profile(self, user_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def update_profile(self, user_id: str, payload: ProfileUpdate) -> dict[str, Any]:
        raise NotImplementedError

    def debug_counts(self) -> dict[str, int]:
        raise NotImplementedError

    def sum_entries(
        self,
        kind: EntryKind | str,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
        category: str | None = None,
    ) -> Decimal:
        """Exact total of the matching entries; ``0.00`` when nothing matches."""
        rows = self.list_entries(kind, user_id, EntryFilter(category=category, start_date=start, end_date=end))
        total = sum((Decimal(row["amount"]) for row in rows), Decimal("0"))
        return _cents(total)


class InMemoryPersistence(Persistence):
    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store or InMemoryStore()

    def ensure_user(self, principal: Principal) -> dict[str, Any]:
        row = self.store.users.get(principal.user_id)
        if row is None:
            row = {
                "id": principal.user_id,
                "email": principal.email or "",
                "name": principal.name or "",
                "image": principal.image or "",
                "created_at": _utcnow(),
            }
            # setdefault keeps whichever insert landed first.
            row = self.store.users.setdefault(principal.user_id, row)
            logger.info("provisioned user %s", principal.user_id)
        return row

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self.store.users.get(user_id)

    def create_entry(self, kind: EntryKind | str, user_id: str, payload: EntryCreate) -> dict[str, Any]:
        now = _utcnow()
        row = {
            "id": _new_id(),
            "user_id": user_id,
            "description": payload.description,
            "amount": _cents(payload.amount),
            "category": payload.category,
            "date": payload.date,
            "created_at": now,
            "updated_at": now,
        }
        self.store.entries(_kind(kind))[row["id"]] = row
        return row

    def list_entries(self, kind: EntryKind | str, user_id: str, filters: EntryFilter | None = None) -> list[dict[str, Any]]:
        filters = filters or EntryFilter()
        rows = [r for r in self.store.entries(_kind(kind)).values() if r["user_id"] == user_id]
        if filters.category:
            rows = [r for r in rows if r["category"] == filters.category]
        if filters.start_date:
            rows = [r for r in rows if r["date"] >= filters.start_date]
        if filters.end_date:
            rows = [r for r in rows if r["date"] <= filters.end_date]
        rows.sort(key=lambda r: (r["date"], r["created_at"]), reverse=True)
        if filters.limit:
            rows = rows[: filters.limit]
        return rows

    def get_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> dict[str, Any]:
        return owned_or_not_found(self.store.entries(_kind(kind)).get(entry_id), user_id, _kind(kind))

    def update_entry(self, kind: EntryKind | str, user_id: str, entry_id: str, payload: EntryCreate) -> dict[str, Any]:
        row = self.get_entry(kind, user_id, entry_id)
        row.update(
            description=payload.description,
            amount=_cents(payload.amount),
            category=payload.category,
            date=payload.date,
            updated_at=_utcnow(),
        )
        return row

    def delete_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> None:
        row = self.get_entry(kind, user_id, entry_id)
        del self.store.entries(_kind(kind))[row["id"]]

    def create_goal(self, user_id: str, payload: GoalCreate) -> dict[str, Any]:
        now = _utcnow()
        row = {
            "id": _new_id(),
            "user_id": user_id,
            "name": payload.name,
            "target_amount": _cents(payload.targetAmount),
            "current_amount": _cents(payload.currentAmount),
            "start_date": payload.startDate,
            "target_date": payload.targetDate,
            "category": payload.category,
            "priority": _plain(payload.priority),
            "notes": payload.notes,
            "created_at": now,
            "updated_at": now,
        }
        self.store.goals[row["id"]] = row
        return row

    def list_goals(self, user_id: str) -> list[dict[str, Any]]:
        rows = [g for g in self.store.goals.values() if g["user_id"] == user_id]
        return sorted(rows, key=lambda g: (g["target_date"], g["created_at"]))

    def update_goal(self, user_id: str, goal_id: str, payload: GoalUpdate) -> dict[str, Any]:
        current = owned_or_not_found(self.store.goals.get(goal_id), user_id, "goal")
        merged = current.copy()
        for key, value in payload.model_dump(exclude_unset=True).items():
            if value is None and key != "notes":
                continue
            if key in {"targetAmount", "currentAmount"}:
                value = _cents(value)
            merged[GOAL_FIELDS[key]] = _plain(value)
        _check_goal_dates(merged)
        merged["updated_at"] = _utcnow()
        current.update(merged)
        return current

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        row = owned_or_not_found(self.store.goals.get(goal_id), user_id, "goal")
        del self.store.goals[row["id"]]

    def _budget_row(self, budget: dict[str, Any]) -> dict[str, Any]:
        categories = [c for c in self.store.budget_categories.values() if c["budget_id"] == budget["id"]]
        return {**budget, "categories": sorted(categories, key=lambda c: c["name"])}

    def create_budget(self, user_id: str, payload: BudgetCreate) -> dict[str, Any]:
        budget = {
            "id": _new_id(),
            "user_id": user_id,
            "name": payload.name,
            "amount": _cents(payload.amount),
            "period": payload.period,
            "start_date": payload.startDate,
            "end_date": payload.endDate,
            "created_at": _utcnow(),
        }
        self.store.budgets[budget["id"]] = budget
        for category in payload.categories:
            self._insert_category(budget["id"], category)
        return self._budget_row(budget)

    def list_budgets(self, user_id: str) -> list[dict[str, Any]]:
        rows = [b for b in self.store.budgets.values() if b["user_id"] == user_id]
        rows.sort(key=lambda b: (b["start_date"], b["created_at"]), reverse=True)
        return [self._budget_row(b) for b in rows]

    def get_budget(self, user_id: str, budget_id: str) -> dict[str, Any]:
        budget = owned_or_not_found(self.store.budgets.get(budget_id), user_id, "budget")
        return self._budget_row(budget)

    def delete_budget(self, user_id: str, budget_id: str) -> None:
        budget = owned_or_not_found(self.store.budgets.get(budget_id), user_id, "budget")
        for category_id in [k for k, c in self.store.budget_categories.items() if c["budget_id"] == budget["id"]]:
            del self.store.budget_categories[category_id]
        del self.store.budgets[budget["id"]]

    def get_active_budget(self, user_id: str) -> dict[str, Any] | None:
        active = [b for b in self.store.budgets.values() if b["user_id"] == user_id and b["end_date"] is None]
        if not active:
            return None
        latest = max(active, key=lambda b: (b["start_date"], b["created_at"]))
        return self._budget_row(latest)

    def _insert_category(self, budget_id: str, payload: BudgetCategoryCreate) -> dict[str, Any]:
        row = {"id": _new_id(), "budget_id": budget_id, "name": payload.name, "amount": _cents(payload.amount)}
        self.store.budget_categories[row["id"]] = row
        return row

    def create_budget_category(self, user_id: str, budget_id: str, payload: BudgetCategoryCreate) -> dict[str, Any]:
        budget = owned_or_not_found(self.store.budgets.get(budget_id), user_id, "budget")
        return self._insert_category(budget["id"], payload)

    def create_notification(self, user_id: str, payload: NotificationCreate) -> dict[str, Any]:
        row = {
            "id": _new_id(),
            "user_id": user_id,
            "type": payload.type,
            "message": payload.message,
            "read": False,
            "created_at": _utcnow(),
        }
        self.store.notifications[row["id"]] = row
        return row

    def list_notifications(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        rows = [n for n in self.store.notifications.values() if n["user_id"] == user_id]
        rows.sort(key=lambda n: n["created_at"], reverse=True)
        return rows[:limit]

    def mark_notification_read(self, user_id: str, notification_id: str) -> dict[str, Any]:
        row = owned_or_not_found(self.store.notifications.get(notification_id), user_id, "notification")
        row["read"] = True
        return row

    def delete_notification(self, user_id: str, notification_id: str) -> None:
        row = owned_or_not_found(self.store.notifications.get(notification_id), user_id, "notification")
        del self.store.notifications[row["id"]]

    def get_or_create_profile(self, user_id: str) -> dict[str, Any]:
        row = self.store.profiles.get(user_id)
        if row is None:
            row = {"id": _new_id(), "user_id": user_id, **PROFILE_DEFAULTS}
            self.store.profiles[user_id] = row
            logger.info("created default profile for user %s", user_id)
        return row

    def update_profile(self, user_id: str, payload: ProfileUpdate) -> dict[str, Any]:
        row = self.get_or_create_profile(user_id)
        for key, value in payload.model_dump(exclude_none=True).items():
            row[PROFILE_FIELDS[key]] = _plain(value)
        return row

    def debug_counts(self) -> dict[str, int]:
        return {
            "users": len(self.store.users),
            "incomes": len(self.store.incomes),
            "expenses": len(self.store.expenses),
            "goals": len(self.store.goals),
            "budgets": len(self.store.budgets),
            "budgetCategories": len(self.store.budget_categories),
            "notifications": len(self.store.notifications),
            "profiles": len(self.store.profiles),
        }


ENTRY_MODELS = {"income": Income, "expense": Expense}


def _as_dict(obj: Any) -> dict[str, Any]:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


def _budget_as_dict(budget: Budget) -> dict[str, Any]:
    row = _as_dict(budget)
    row["categories"] = sorted((_as_dict(c) for c in budget.categories), key=lambda c: c["name"])
    return row


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlPersistence(Persistence):
    def __init__(self, database_url: str) -> None:
        engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in {"sqlite://", "sqlite:///:memory:"}:
                # One shared connection, otherwise every checkout sees an empty database.
                engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(database_url, **engine_kwargs)
        if database_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.exception("schema creation failed")
            raise StoreError() from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("store operation failed: %s", exc.__class__.__name__)
            raise StoreError() from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _owned(session: Session, model: Any, entity_id: str, user_id: str, what: str) -> Any:
        obj = session.query(model).filter(model.id == entity_id, model.user_id == user_id).first()
        if obj is None:
            raise NotFound(f"{what} not found")
        return obj

    def ensure_user(self, principal: Principal) -> dict[str, Any]:
        existing = self.get_user(principal.user_id)
        if existing is not None:
            return existing
        session = self.SessionLocal()
        try:
            session.add(
                User(
                    id=principal.user_id,
                    email=principal.email or "",
                    name=principal.name or "",
                    image=principal.image or "",
                    created_at=_utcnow(),
                )
            )
            session.commit()
            logger.info("provisioned user %s", principal.user_id)
        except IntegrityError:
            # A concurrent request inserted the same user first.
            session.rollback()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("user provisioning failed: %s", exc.__class__.__name__)
            raise StoreError() from exc
        finally:
            session.close()
        row = self.get_user(principal.user_id)
        if row is None:
            raise StoreError()
        return row

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._session() as session:
            user = session.get(User, user_id)
            return _as_dict(user) if user is not None else None

    def create_entry(self, kind: EntryKind | str, user_id: str, payload: EntryCreate) -> dict[str, Any]:
        model = ENTRY_MODELS[_kind(kind)]
        now = _utcnow()
        with self._session() as session:
            obj = model(
                id=_new_id(),
                user_id=user_id,
                description=payload.description,
                amount=_cents(payload.amount),
                category=payload.category,
                date=payload.date,
                created_at=now,
                updated_at=now,
            )
            session.add(obj)
            session.flush()
            return _as_dict(obj)

    def list_entries(self, kind: EntryKind | str, user_id: str, filters: EntryFilter | None = None) -> list[dict[str, Any]]:
        model = ENTRY_MODELS[_kind(kind)]
        filters = filters or EntryFilter()
        with self._session() as session:
            query = session.query(model).filter(model.user_id == user_id)
            if filters.category:
                query = query.filter(model.category == filters.category)
            if filters.start_date:
                query = query.filter(model.date >= filters.start_date)
            if filters.end_date:
                query = query.filter(model.date <= filters.end_date)
            query = query.order_by(model.date.desc(), model.created_at.desc())
            if filters.limit:
                query = query.limit(filters.limit)
            return [_as_dict(obj) for obj in query.all()]

    def sum_entries(
        self,
        kind: EntryKind | str,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
        category: str | None = None,
    ) -> Decimal:
        model = ENTRY_MODELS[_kind(kind)]
        with self._session() as session:
            query = session.query(func.coalesce(func.sum(model.amount), 0)).filter(model.user_id == user_id)
            if category:
                query = query.filter(model.category == category)
            if start:
                query = query.filter(model.date >= start)
            if end:
                query = query.filter(model.date <= end)
            return _cents(query.scalar())

    def get_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> dict[str, Any]:
        with self._session() as session:
            return _as_dict(self._owned(session, ENTRY_MODELS[_kind(kind)], entry_id, user_id, _kind(kind)))

    def update_entry(self, kind: EntryKind | str, user_id: str, entry_id: str, payload: EntryCreate) -> dict[str, Any]:
        with self._session() as session:
            obj = self._owned(session, ENTRY_MODELS[_kind(kind)], entry_id, user_id, _kind(kind))
            obj.description = payload.description
            obj.amount = _cents(payload.amount)
            obj.category = payload.category
            obj.date = payload.date
            obj.updated_at = _utcnow()
            session.flush()
            return _as_dict(obj)

    def delete_entry(self, kind: EntryKind | str, user_id: str, entry_id: str) -> None:
        with self._session() as session:
            session.delete(self._owned(session, ENTRY_MODELS[_kind(kind)], entry_id, user_id, _kind(kind)))

    def create_goal(self, user_id: str, payload: GoalCreate) -> dict[str, Any]:
        now = _utcnow()
        with self._session() as session:
            goal = Goal(
                id=_new_id(),
                user_id=user_id,
                name=payload.name,
                target_amount=_cents(payload.targetAmount),
                current_amount=_cents(payload.currentAmount),
                start_date=payload.startDate,
                target_date=payload.targetDate,
                category=payload.category,
                priority=_plain(payload.priority),
                notes=payload.notes,
                created_at=now,
                updated_at=now,
            )
            session.add(goal)
            session.flush()
            return _as_dict(goal)

    def list_goals(self, user_id: str) -> list[dict[str, Any]]:
        with self._session() as session:
            goals = (
                session.query(Goal)
                .filter(Goal.user_id == user_id)
                .order_by(Goal.target_date.asc(), Goal.created_at.asc())
                .all()
            )
            return [_as_dict(g) for g in goals]

    def update_goal(self, user_id: str, goal_id: str, payload: GoalUpdate) -> dict[str, Any]:
        with self._session() as session:
            goal = self._owned(session, Goal, goal_id, user_id, "goal")
            merged = _as_dict(goal)
            for key, value in payload.model_dump(exclude_unset=True).items():
                if value is None and key != "notes":
                    continue
                if key in {"targetAmount", "currentAmount"}:
                    value = _cents(value)
                merged[GOAL_FIELDS[key]] = _plain(value)
            _check_goal_dates(merged)
            merged["updated_at"] = _utcnow()
            for column, value in merged.items():
                setattr(goal, column, value)
            session.flush()
            return _as_dict(goal)

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        with self._session() as session:
            session.delete(self._owned(session, Goal, goal_id, user_id, "goal"))

    def create_budget(self, user_id: str, payload: BudgetCreate) -> dict[str, Any]:
        with self._session() as session:
            budget = Budget(
                id=_new_id(),
                user_id=user_id,
                name=payload.name,
                amount=_cents(payload.amount),
                period=payload.period,
                start_date=payload.startDate,
                end_date=payload.endDate,
                created_at=_utcnow(),
                categories=[
                    BudgetCategory(id=_new_id(), name=c.name, amount=_cents(c.amount)) for c in payload.categories
                ],
            )
            session.add(budget)
            session.flush()
            return _budget_as_dict(budget)

    def list_budgets(self, user_id: str) -> list[dict[str, Any]]:
        with self._session() as session:
            budgets = (
                session.query(Budget)
                .filter(Budget.user_id == user_id)
                .order_by(Budget.start_date.desc(), Budget.created_at.desc())
                .all()
            )
            return [_budget_as_dict(b) for b in budgets]

    def get_budget(self, user_id: str, budget_id: str) -> dict[str, Any]:
        with self._session() as session:
            return _budget_as_dict(self._owned(session, Budget, budget_id, user_id, "budget"))

    def delete_budget(self, user_id: str, budget_id: str) -> None:
        with self._session() as session:
            budget = self._owned(session, Budget, budget_id, user_id, "budget")
            session.query(BudgetCategory).filter(BudgetCategory.budget_id == budget.id).delete(synchronize_session="fetch")
            session.delete(budget)

    def get_active_budget(self, user_id: str) -> dict[str, Any] | None:
        with self._session() as session:
            budget = (
                session.query(Budget)
                .filter(Budget.user_id == user_id, Budget.end_date.is_(None))
                .order_by(Budget.start_date.desc(), Budget.created_at.desc())
                .first()
            )
            return _budget_as_dict(budget) if budget is not None else None

    def create_budget_category(self, user_id: str, budget_id: str, payload: BudgetCategoryCreate) -> dict[str, Any]:
        with self._session() as session:
            budget = self._owned(session, Budget, budget_id, user_id, "budget")
            category = BudgetCategory(id=_new_id(), budget_id=budget.id, name=payload.name, amount=_cents(payload.amount))
            session.add(category)
            session.flush()
            return _as_dict(category)

    def create_notification(self, user_id: str, payload: NotificationCreate) -> dict[str, Any]:
        with self._session() as session:
            notification = Notification(
                id=_new_id(),
                user_id=user_id,
                type=payload.type,
                message=payload.message,
                read=False,
                created_at=_utcnow(),
            )
            session.add(notification)
            session.flush()
            return _as_dict(notification)

    def list_notifications(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._session() as session:
            rows = (
                session.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_as_dict(n) for n in rows]

    def mark_notification_read(self, user_id: str, notification_id: str) -> dict[str, Any]:
        with self._session() as session:
            notification = self._owned(session, Notification, notification_id, user_id, "notification")
            notification.read = True
            session.flush()
            return _as_dict(notification)

    def delete_notification(self, user_id: str, notification_id: str) -> None:
        with self._session() as session:
            session.delete(self._owned(session, Notification, notification_id, user_id, "notification"))

    def find_profile(self, user_id: str) -> dict[str, Any] | None:
        with self._session() as session:
            profile = session.query(Profile).filter(Profile.user_id == user_id).first()
            return _as_dict(profile) if profile is not None else None

    def get_or_create_profile(self, user_id: str) -> dict[str, Any]:
        existing = self.find_profile(user_id)
        if existing is not None:
            return existing
        session = self.SessionLocal()
        try:
            session.add(Profile(id=_new_id(), user_id=user_id, **PROFILE_DEFAULTS))
            session.commit()
            logger.info("created default profile for user %s", user_id)
        except IntegrityError:
            # Lost a race with a concurrent first visit; the other row wins.
            session.rollback()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("profile creation failed: %s", exc.__class__.__name__)
            raise StoreError() from exc
        finally:
            session.close()
        row = self.find_profile(user_id)
        if row is None:
            raise StoreError()
        return row

    def update_profile(self, user_id: str, payload: ProfileUpdate) -> dict[str, Any]:
        self.get_or_create_profile(user_id)
        with self._session() as session:
            profile = session.query(Profile).filter(Profile.user_id == user_id).one()
            for key, value in payload.model_dump(exclude_none=True).items():
                setattr(profile, PROFILE_FIELDS[key], _plain(value))
            session.flush()
            return _as_dict(profile)

    def debug_counts(self) -> dict[str, int]:
        with self._session() as session:
            return {
                "users": session.query(func.count(User.id)).scalar(),
                "incomes": session.query(func.count(Income.id)).scalar(),
                "expenses": session.query(func.count(Expense.id)).scalar(),
                "goals": session.query(func.count(Goal.id)).scalar(),
                "budgets": session.query(func.count(Budget.id)).scalar(),
                "budgetCategories": session.query(func.count(BudgetCategory.id)).scalar(),
                "notifications": session.query(func.count(Notification.id)).scalar(),
                "profiles": session.query(func.count(Profile.id)).scalar(),
            }


def get_persistence(settings: Settings) -> Persistence:
    if settings.storage_backend == "sql":
        return SqlPersistence(settings.database_url)
    return InMemoryPersistence()

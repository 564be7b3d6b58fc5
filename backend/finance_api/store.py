from typing import Any


class InMemoryStore:
    """Process-local tables keyed by record id, used by the ``memory`` backend."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.incomes: dict[str, dict[str, Any]] = {}
        self.expenses: dict[str, dict[str, Any]] = {}
        self.goals: dict[str, dict[str, Any]] = {}
        self.budgets: dict[str, dict[str, Any]] = {}
        self.budget_categories: dict[str, dict[str, Any]] = {}
        self.notifications: dict[str, dict[str, Any]] = {}
        self.profiles: dict[str, dict[str, Any]] = {}

    def entries(self, kind: str) -> dict[str, dict[str, Any]]:
        return self.incomes if kind == "income" else self.expenses

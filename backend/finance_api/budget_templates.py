from decimal import Decimal
from typing import Any
from uuid import uuid4

from .schemas import BudgetTemplateCreate


def _categories(*pairs: tuple[str, int]) -> list[dict[str, Any]]:
    return [{"name": name, "amount": Decimal(amount)} for name, amount in pairs]


DEFAULT_TEMPLATES: tuple[dict[str, Any], ...] = (
    {
        "id": "default-1",
        "name": "Basic Monthly Budget",
        "categories": _categories(
            ("Housing", 1200),
            ("Food & Groceries", 400),
            ("Transportation", 300),
            ("Utilities", 200),
            ("Entertainment", 150),
            ("Healthcare", 100),
            ("Savings", 300),
        ),
    },
    {
        "id": "default-2",
        "name": "Student Budget",
        "categories": _categories(
            ("Tuition & Books", 800),
            ("Food", 250),
            ("Housing", 600),
            ("Transportation", 100),
            ("Entertainment", 100),
            ("Personal Care", 50),
        ),
    },
    {
        "id": "default-3",
        "name": "Family Budget",
        "categories": _categories(
            ("Housing", 1800),
            ("Food & Groceries", 600),
            ("Childcare", 500),
            ("Transportation", 400),
            ("Utilities", 300),
            ("Healthcare", 200),
            ("Education", 150),
            ("Entertainment", 200),
            ("Savings", 500),
        ),
    },
    {
        "id": "default-4",
        "name": "Minimalist Budget",
        "categories": _categories(
            ("Housing", 800),
            ("Food", 200),
            ("Transportation", 150),
            ("Utilities", 100),
            ("Savings", 250),
        ),
    },
)


def list_templates() -> list[dict[str, Any]]:
    return [dict(template) for template in DEFAULT_TEMPLATES]


def build_template(payload: BudgetTemplateCreate) -> dict[str, Any]:
    # Custom templates are handed back to the client, not stored.
    return {
        "id": str(uuid4()),
        "name": payload.name,
        "categories": [{"name": c.name, "amount": c.amount} for c in payload.categories],
    }

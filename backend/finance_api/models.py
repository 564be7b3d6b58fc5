from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(14, 2)


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="")
    image = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)


class Income(Base):
    __tablename__ = "incomes"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Goal(Base):
    __tablename__ = "goals"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    target_amount = Column(MONEY, nullable=False)
    current_amount = Column(MONEY, nullable=False, default=0)
    start_date = Column(Date, nullable=False)
    target_date = Column(Date, nullable=False)
    category = Column(String(100), nullable=False)
    priority = Column(String(10), nullable=False, default="medium")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(MONEY, nullable=False)
    period = Column(String(50), nullable=False, default="monthly")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # null means currently active
    created_at = Column(DateTime(timezone=True), nullable=False)

    categories = relationship("BudgetCategory", back_populates="budget", cascade="all, delete-orphan")


class BudgetCategory(Base):
    __tablename__ = "budget_categories"

    id = Column(String(36), primary_key=True)
    budget_id = Column(String(36), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    amount = Column(MONEY, nullable=False)

    budget = relationship("Budget", back_populates="categories")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    currency = Column(String(3), nullable=False, default="USD")
    language = Column(String(10), nullable=False, default="en")
    theme = Column(String(10), nullable=False, default="light")
    date_format = Column(String(20), nullable=False, default="MM/DD/YYYY")
    notifications = Column(Boolean, nullable=False, default=True)

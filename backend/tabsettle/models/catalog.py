"""Catalog and registry models - buffet packages, services, staff, customers, tables.

These rows are owned by the back-office screens; the settlement core only
reads them (customers also receive loyalty points).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from tabsettle.db.base import Base, TimestampMixin
from tabsettle.models.validators import non_negative, percentage


class BuffetPackage(Base, TimestampMixin):
    """A buffet admission package, sold per ticket."""

    __tablename__ = "buffet_packages"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class Service(Base, TimestampMixin):
    """A sellable food item or spa service."""

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # Percentage of the sale credited to the employee; NULL means the
    # employee's own rate applies.
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)

    @validates("commission_rate")
    def _validate_rate(self, key, value):
        return percentage(key, value)


class Employee(Base, TimestampMixin):
    """Staff member who can be credited with sales."""

    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(primary_key=True)
    employee_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    fullname: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("base_salary")
    def _validate_salary(self, key, value):
        return non_negative(key, value)

    @validates("commission_rate")
    def _validate_rate(self, key, value):
        return percentage(key, value)


class Customer(Base, TimestampMixin):
    """Guest with a loyalty balance."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True)
    fullname: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    loyalty_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class DiningTable(Base, TimestampMixin):
    """Table or treatment room an order can be opened on."""

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    area: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

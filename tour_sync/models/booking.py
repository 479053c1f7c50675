"""Destination tables the sheet sync writes into.

Column names follow the operations spreadsheet; the sync engine reflects
these tables at run time rather than importing the classes.
"""

from datetime import date, datetime, timezone

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tour_sync.models.base import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tour_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tour_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tour_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pickup_hotel: Mapped[str | None] = mapped_column(String(200), nullable=True)
    pickup_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    adults: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    child: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    infant: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    total_people: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    channel_rn: Mapped[str | None] = mapped_column(String(100), nullable=True)
    added_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str | None] = mapped_column(String(30), nullable=True, default="pending")
    event_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_private_tour: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    selected_options: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    selected_option_prices: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)


class Tour(Base):
    __tablename__ = "tours"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tour_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tour_guide_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assistant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tour_car_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tour_status: Mapped[str | None] = mapped_column(String(30), nullable=True, default="scheduled")
    guide_fee: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True, default=0)
    assistant_fee: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True, default=0)
    tour_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reservation_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    team_type: Mapped[str | None] = mapped_column(String(20), nullable=True, default="1guide")
    is_private_tour: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    nationality: Mapped[str | None] = mapped_column(String(50), nullable=True)
    language: Mapped[str | None] = mapped_column(String(10), nullable=True, default="ko")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name_ko: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_price: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)


class TeamMember(Base):
    __tablename__ = "team"

    email: Mapped[str] = mapped_column(String(200), primary_key=True)
    name_ko: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name_en: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    position: Mapped[str | None] = mapped_column(String(50), nullable=True)
    languages: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_now)

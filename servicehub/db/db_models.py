import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Column, String, Float, Boolean, Text, DateTime, Numeric,
    ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship, DeclarativeBase
import enum


class Base(DeclarativeBase):
    pass


# ─── Enums ───────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    CLIENT = "CLIENT"
    PRO = "PRO"


class PricingType(str, enum.Enum):
    FIXED = "FIXED"
    HOURLY = "HOURLY"
    BUDGET = "BUDGET"


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    FILE = "FILE"


class BudgetStatus(str, enum.Enum):
    PENDING = "PENDING"
    QUOTED = "QUOTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class BookingStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"


# ─── Helper ──────────────────────────────────────────────────────────

def generate_uuid():
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# "0" means the professional has not priced the budget yet.
SENTINEL_PRICE = Decimal("0")

# Chats without a service are keyed by this value so the unique
# (client, professional, service) triple also covers them.
NO_SERVICE_KEY = ""


# ─── Models ──────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.CLIENT.value)
    avatar_url = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    professional_profile = relationship("ProfessionalProfile", back_populates="user", uselist=False)


class ProfessionalProfile(Base):
    __tablename__ = "professional_profiles"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    user = relationship("User", back_populates="professional_profile")
    services = relationship("Service", back_populates="professional")


class Service(Base):
    __tablename__ = "services"

    id = Column(String, primary_key=True, default=generate_uuid)
    professional_id = Column(String, ForeignKey("professional_profiles.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    pricing_type = Column(String, nullable=False, default=PricingType.BUDGET.value)
    price = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    professional = relationship("ProfessionalProfile", back_populates="services")


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("client_id", "professional_id", "service_key", name="uq_chat_triple"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    client_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    professional_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("services.id"), nullable=True)
    service_key = Column(String, nullable=False, default=NO_SERVICE_KEY)
    last_message_at = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    professional = relationship("User", foreign_keys=[professional_id])
    service = relationship("Service")
    budget = relationship("Budget", back_populates="chat", uselist=False)
    messages = relationship(
        "Message", back_populates="chat", order_by="Message.created_at",
        cascade="all, delete-orphan",
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_chat_created", "chat_id", "created_at"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    chat_id = Column(String, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=True)
    message_type = Column(String, nullable=False, default=MessageType.TEXT.value)
    media_url = Column(String, nullable=True)
    audio_duration = Column(Float, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User")


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(String, primary_key=True, default=generate_uuid)
    chat_id = Column(String, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, unique=True)
    service_id = Column(String, ForeignKey("services.id"), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=SENTINEL_PRICE)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=BudgetStatus.PENDING.value)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    chat = relationship("Chat", back_populates="budget")
    service = relationship("Service")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True, default=generate_uuid)
    client_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    professional_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("services.id"), nullable=False)
    status = Column(String, nullable=False, default=BookingStatus.REQUESTED.value)
    scheduled_at = Column(DateTime, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String, nullable=True)
    # Client contact details as they were when the booking was requested
    client_name = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    professional = relationship("User", foreign_keys=[professional_id])
    service = relationship("Service")

import uuid
from datetime import date as date_type, datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.db import Base


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    SALON_OWNER = "salon_owner"
    SALON_ADMIN = "salon_admin"
    SALON_BRANCH_ADMIN = "salon_branch_admin"
    SALON_STAFF = "salon_staff"
    PENDING = "pending"


ADMIN_ROLES = (
    UserRole.SALON_OWNER,
    UserRole.SALON_ADMIN,
    UserRole.SALON_BRANCH_ADMIN,
    UserRole.SUPER_ADMIN,
)
STAFF_MANAGEMENT_ROLES = (
    UserRole.SALON_OWNER,
    UserRole.SALON_BRANCH_ADMIN,
    UserRole.SUPER_ADMIN,
)
STAFF_ROLES = (UserRole.SALON_STAFF, UserRole.SALON_BRANCH_ADMIN)


class AccountStatus(str, Enum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"


class User(Base):
    """Firebase-authenticated account: tenants (salon owners), staff and platform admins."""

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=UserRole.PENDING.value)
    # Tenant this account belongs to; equals uid for salon owners
    owner_uid: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    staff_role: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AccountStatus.ACTIVE.value)
    suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    salon_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("subscription_plans.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def tenant_uid(self) -> str | None:
        if self.role == UserRole.SALON_OWNER.value:
            return self.uid
        return self.owner_uid


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Australia/Melbourne")
    # {"Monday": {"open": "09:00", "close": "17:00", "closed": false}, ...}
    hours: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active")
    admin_staff_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    allowed_check_in_radius: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("owner_uid", "name", name="uq_branch_owner_name"),)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    icon: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("owner_uid", "name", name="uq_service_owner_name"),)


class ServiceBranch(Base):
    __tablename__ = "service_branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("service_id", "branch_id", name="uq_service_branch"),)


class ServiceStaff(Base):
    """Staff qualified to perform a service."""

    __tablename__ = "service_staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("service_id", "staff_uid", name="uq_service_staff"),)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    price_label: Mapped[str] = mapped_column(String(64), nullable=False)
    branches: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    staff: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str] = mapped_column(String(32), nullable=False, default="blue")
    image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(128), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Hidden plans are assignable by super admins but never offered for upgrade/downgrade
    hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stripe_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    booking_code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False, index=True)
    branch_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # None means "any available staff"
    staff_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    accepted_by_staff_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    accepted_by_staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_staff_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rejected_by_staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reassigned_by_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reassigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    services: Mapped[list["BookingService"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingService.position",
        lazy="selectin",
    )

    @property
    def is_multi_service(self) -> bool:
        return len(self.services) > 0

    def is_assigned_to(self, staff_uid: str) -> bool:
        if self.staff_id == staff_uid:
            return True
        return any(svc.staff_id == staff_uid for svc in self.services)

    @staticmethod
    def now_utc() -> datetime:
        return datetime.now(timezone.utc)


class BookingService(Base):
    """One service line of a multi-service booking."""

    __tablename__ = "booking_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    staff_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    responded_by_staff_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    responded_by_staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    completion_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_staff_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    completed_by_staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="services")


class BookingRequest(Base):
    """Customer-submitted appointment request awaiting conversion into a booking."""

    __tablename__ = "booking_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False, index=True)
    client: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    staff_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    # [{"service_id", "name", "price", "duration", "time", "staff_id", "staff_name"}]
    services: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Pending")
    booking_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class BookingActivity(Base):
    __tablename__ = "booking_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    booking_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    staff_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_uid: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    actor_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    extra_data: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

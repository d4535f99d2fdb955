from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemberRole(str, Enum):
    OFFICE = "office"
    TECHNICIAN = "technician"
    ENGINEER = "engineer"


class ElevatorStatus(str, Enum):
    FIT = "fit"
    FIT_NEEDS_IMPROVEMENTS = "fit-needs-improvements"
    NOT_FIT = "not-fit"


class EquipmentType(str, Enum):
    # "elevator" coexists with the Elevator entity on purpose.
    ELEVATOR = "elevator"
    WATER_PUMP = "water_pump"
    FREIGHT_ELEVATOR = "freight_elevator"
    CAR_LIFT = "car_lift"
    DUMBWAITER = "dumbwaiter"
    CAMILLERO = "camillero"
    OTHER = "other"


class EquipmentStatus(str, Enum):
    FIT = "fit"
    OUT_OF_SERVICE = "out_of_service"


class TechnicianRole(str, Enum):
    RECLAMISTA = "Reclamista"
    ENGRASADOR = "Engrasador"


class ClaimType(str, Enum):
    SEMIANNUAL_TESTS = "Semiannual Tests"
    MONTHLY_MAINTENANCE = "Monthly Maintenance"
    CORRECTIVE = "Corrective"


class CorrectiveType(str, Enum):
    MINOR_REPAIR = "Minor Repair"
    REFURBISHMENT = "Refurbishment"
    INSTALLATION = "Installation"


class WorkOrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


# Orders only move forward; Completed is final
STATUS_TRANSITIONS: dict[str, set[str]] = {
    WorkOrderStatus.PENDING.value: {WorkOrderStatus.IN_PROGRESS.value, WorkOrderStatus.COMPLETED.value},
    WorkOrderStatus.IN_PROGRESS.value: {WorkOrderStatus.COMPLETED.value},
    WorkOrderStatus.COMPLETED.value: set(),
}


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


def _check_choice(enum_cls: type[Enum], value, field_name: str, nullable: bool = False):
    if value is None and nullable:
        return None
    raw = value.value if isinstance(value, Enum) else value
    allowed = {member.value for member in enum_cls}
    if raw not in allowed:
        raise ValueError(f"Valor invalido para {field_name}: {raw}")
    return raw


class Company(db.Model):
    # Tenant: root of all data isolation
    __tablename__ = "company"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    memberships = relationship("CompanyMembership", back_populates="company")


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    memberships = relationship("CompanyMembership", back_populates="user")


class CompanyMembership(db.Model):
    __tablename__ = "company_membership"
    __table_args__ = (UniqueConstraint("user_id", "company_id", name="uq_company_membership_user_company"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False)
    role: Mapped[str] = mapped_column(db.String(20), nullable=False, default=MemberRole.OFFICE.value)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user = relationship("User", back_populates="memberships")
    company = relationship("Company", back_populates="memberships")

    @validates("role")
    def validate_role(self, _key, value):
        role = _check_choice(MemberRole, value, "role")
        if role == MemberRole.ENGINEER.value:
            raise ValueError("Los ingenieros no usan membresias de empresa")
        return role


class CompanyJoinCode(db.Model):
    __tablename__ = "company_join_code"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(db.String(40), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    company = relationship("Company")


class Engineer(db.Model):
    # Not tenant-scoped: linked to companies through EngineerCompanyMembership
    __tablename__ = "engineer"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    contact: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    memberships = relationship(
        "EngineerCompanyMembership",
        back_populates="engineer",
        cascade="all, delete-orphan",
    )


class EngineerCompanyMembership(db.Model):
    __tablename__ = "engineer_company_membership"
    __table_args__ = (UniqueConstraint("engineer_id", "company_id", name="uq_engineer_company"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    engineer_id: Mapped[int] = mapped_column(ForeignKey("engineer.id"), nullable=False, index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    engineer = relationship("Engineer", back_populates="memberships")
    company = relationship("Company")

    @property
    def role(self) -> str:
        return MemberRole.ENGINEER.value


class Building(db.Model):
    __tablename__ = "building"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(db.String(255), nullable=False)
    neighborhood: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    entry_hours: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    client_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    relationship_start_date: Mapped[date | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    elevators = relationship("Elevator", back_populates="building")
    equipments = relationship("Equipment", back_populates="building")

    @validates("address")
    def validate_address(self, _key, value):
        if not (value or "").strip():
            raise ValueError("La dirección es obligatoria")
        return value.strip()


class Elevator(db.Model):
    __tablename__ = "elevator"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("building.id"), nullable=False, index=True)
    number: Mapped[int] = mapped_column(nullable=False)
    location_description: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    has_two_doors: Mapped[bool] = mapped_column(default=False, nullable=False)
    status: Mapped[str] = mapped_column(db.String(30), nullable=False, default=ElevatorStatus.FIT.value)
    stops: Mapped[int] = mapped_column(nullable=False, default=0)
    capacity: Mapped[int] = mapped_column(nullable=False, default=0)
    machine_room_location: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    control_type: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    plate_number: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    building = relationship("Building", back_populates="elevators")

    @validates("status")
    def validate_status(self, _key, value):
        return _check_choice(ElevatorStatus, value, "status")


class Equipment(db.Model):
    __tablename__ = "equipment"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("building.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(db.String(30), nullable=False, default=EquipmentType.OTHER.value)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    location_description: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    brand: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    model: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    capacity: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(db.String(30), nullable=False, default=EquipmentStatus.FIT.value)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    building = relationship("Building", back_populates="equipments")

    @validates("type")
    def validate_type(self, _key, value):
        return _check_choice(EquipmentType, value, "type")

    @validates("status")
    def validate_status(self, _key, value):
        return _check_choice(EquipmentStatus, value, "status")


class Technician(db.Model):
    __tablename__ = "technician"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    specialty: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    contact: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    role: Mapped[str] = mapped_column(db.String(20), nullable=False, default=TechnicianRole.RECLAMISTA.value)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @validates("name")
    def validate_name(self, _key, value):
        if not (value or "").strip():
            raise ValueError("El nombre es obligatorio")
        return value.strip()

    @validates("role")
    def validate_role(self, _key, value):
        return _check_choice(TechnicianRole, value, "role")


class WorkOrder(db.Model):
    __tablename__ = "work_order"
    __table_args__ = (
        Index("ix_work_order_company_status", "company_id", "status"),
        Index("ix_work_order_company_technician", "company_id", "technician_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    claim_type: Mapped[str] = mapped_column(db.String(40), nullable=False, default=ClaimType.CORRECTIVE.value)
    corrective_type: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("building.id"), nullable=False)
    elevator_id: Mapped[int | None] = mapped_column(ForeignKey("elevator.id"), nullable=True)
    equipment_id: Mapped[int | None] = mapped_column(ForeignKey("equipment.id"), nullable=True)
    technician_id: Mapped[int | None] = mapped_column(ForeignKey("technician.id"), nullable=True)
    contact_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    date_time: Mapped[datetime | None] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default=WorkOrderStatus.PENDING.value)
    priority: Mapped[str] = mapped_column(db.String(10), nullable=False, default=Priority.LOW.value)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(nullable=True)
    finish_time: Mapped[datetime | None] = mapped_column(nullable=True)
    comments: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    parts_used: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    photo_urls: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    signature_data_url: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    technician_signature_data_url: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    client_dni: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    client_clarification: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    building = relationship("Building")
    elevator = relationship("Elevator")
    equipment = relationship("Equipment")
    technician = relationship("Technician")

    @validates("claim_type")
    def validate_claim_type(self, _key, value):
        return _check_choice(ClaimType, value, "claimType")

    @validates("corrective_type")
    def validate_corrective_type(self, _key, value):
        return _check_choice(CorrectiveType, value, "correctiveType", nullable=True)

    @validates("status")
    def validate_status(self, _key, value):
        return _check_choice(WorkOrderStatus, value, "status")

    @validates("priority")
    def validate_priority(self, _key, value):
        return _check_choice(Priority, value, "priority")

    @validates("parts_used")
    def validate_parts_used(self, _key, value):
        if value is None:
            return None
        parts = []
        for item in value:
            name = str((item or {}).get("name") or "").strip()
            if not name:
                continue
            try:
                quantity = int((item or {}).get("quantity") or 0)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Cantidad invalida para el repuesto {name}") from exc
            parts.append({"name": name, "quantity": quantity})
        return parts


class ElevatorHistory(db.Model):
    # Append-only service log
    __tablename__ = "elevator_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    elevator_id: Mapped[int] = mapped_column(ForeignKey("elevator.id"), nullable=False, index=True)
    work_order_id: Mapped[int | None] = mapped_column(ForeignKey("work_order.id"), nullable=True)
    date: Mapped[date] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    technician_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class EngineerReport(db.Model):
    __tablename__ = "engineer_report"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    engineer_id: Mapped[int] = mapped_column(ForeignKey("engineer.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(db.String(255), nullable=False)
    comments: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    engineer = relationship("Engineer")

    @validates("address")
    def validate_address(self, _key, value):
        if not (value or "").strip():
            raise ValueError("La dirección es obligatoria")
        return value.strip()


class Remito(db.Model):
    # One receipt per work order; regeneration replaces the record
    __tablename__ = "remito"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("work_order.id"), unique=True, nullable=False)
    remito_number: Mapped[int] = mapped_column(nullable=False)
    file_url: Mapped[str] = mapped_column(db.String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def display_number(self) -> str:
        return f"{self.remito_number:08d}"


class RemitoCounter(db.Model):
    __tablename__ = "remito_counter"

    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), primary_key=True)
    last_number: Mapped[int] = mapped_column(nullable=False, default=0)


def seed_demo_data(session) -> None:
    company = Company(name="Ascensores Demo")
    session.add(company)
    session.flush()

    office = User(
        email="oficina@demo.local",
        full_name="Oficina Demo",
        password_hash=generate_password_hash("oficina123"),
    )
    tech_user = User(
        email="tecnico@demo.local",
        full_name="Juan Pérez",
        password_hash=generate_password_hash("tecnico123"),
    )
    engineer_user = User(
        email="ingeniero@demo.local",
        full_name="Ing. Laura Gómez",
        password_hash=generate_password_hash("ingeniero123"),
    )
    session.add_all([office, tech_user, engineer_user])
    session.flush()

    session.add_all(
        [
            CompanyMembership(user_id=office.id, company_id=company.id, role=MemberRole.OFFICE.value),
            CompanyMembership(user_id=tech_user.id, company_id=company.id, role=MemberRole.TECHNICIAN.value),
            CompanyJoinCode(
                company_id=company.id,
                code="DEMO2024",
                expires_at=utcnow() + timedelta(days=365),
            ),
        ]
    )

    engineer = Engineer(user_id=engineer_user.id, name="Laura Gómez", contact="laura@demo.local")
    session.add(engineer)
    session.flush()
    session.add(EngineerCompanyMembership(engineer_id=engineer.id, company_id=company.id))

    building = Building(
        company_id=company.id,
        address="Av. Santa Fe 2450",
        neighborhood="Recoleta",
        contact_phone="11 4821-0000",
        entry_hours="08:00 - 18:00",
        client_name="Consorcio Santa Fe 2450",
        relationship_start_date=date(2021, 3, 1),
    )
    session.add(building)
    session.flush()

    elevator = Elevator(
        company_id=company.id,
        building_id=building.id,
        number=1,
        location_description="Hall principal",
        has_two_doors=False,
        status=ElevatorStatus.FIT.value,
        stops=10,
        capacity=6,
        machine_room_location="Azotea",
        control_type="Electromecánico",
    )
    pump = Equipment(
        company_id=company.id,
        building_id=building.id,
        type=EquipmentType.WATER_PUMP.value,
        name="Bomba cisterna",
        location_description="Subsuelo",
        status=EquipmentStatus.FIT.value,
    )
    technician = Technician(
        company_id=company.id,
        user_id=tech_user.id,
        name="Juan Pérez",
        specialty="Ascensores",
        contact="11 5555-0001",
        role=TechnicianRole.RECLAMISTA.value,
    )
    session.add_all([elevator, pump, technician])
    session.flush()

    session.add_all(
        [
            WorkOrder(
                company_id=company.id,
                claim_type=ClaimType.MONTHLY_MAINTENANCE.value,
                building_id=building.id,
                elevator_id=elevator.id,
                technician_id=technician.id,
                contact_name="Encargado",
                contact_phone="11 4821-0001",
                description="Mantenimiento mensual ascensor 1",
                status=WorkOrderStatus.PENDING.value,
                priority=Priority.MEDIUM.value,
            ),
            WorkOrder(
                company_id=company.id,
                claim_type=ClaimType.CORRECTIVE.value,
                corrective_type=CorrectiveType.MINOR_REPAIR.value,
                building_id=building.id,
                equipment_id=pump.id,
                contact_name="Encargado",
                contact_phone="11 4821-0001",
                description="La bomba no arranca",
                status=WorkOrderStatus.PENDING.value,
                priority=Priority.HIGH.value,
            ),
        ]
    )
    session.commit()

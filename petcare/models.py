# petcare/models.py
import enum
import uuid

from sqlalchemy import (
    Column, String, DateTime, Date, ForeignKey, Text, Float, Boolean, JSON, Index,
    Enum as SQLAlchemyEnum, text
)
from sqlalchemy.orm import relationship

from .database import Base
from .timeutils import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


def enum_column(enum_cls, **kwargs):
    """Store the enum's human readable value ("Full Access"), not its member name."""
    return Column(
        SQLAlchemyEnum(
            enum_cls,
            values_callable=lambda e: [member.value for member in e],
            native_enum=False,
            validate_strings=True,
            length=32,
        ),
        **kwargs,
    )


# --- Enum Classes ---
class AccessLevel(str, enum.Enum):
    primary = "Primary"
    full = "Full Access"
    normal = "Normal Access"


class VetStatus(str, enum.Enum):
    active = "Active"
    deactivated = "Deactivated"
    deleted = "Deleted"


class StaffRole(str, enum.Enum):
    receptionist = "Receptionist"
    vet_tech = "Vet Tech"
    assistant = "Assistant"
    manager = "Manager"
    kennel_staff = "Kennel Staff"


class StaffAccessLevel(str, enum.Enum):
    basic = "Basic"
    moderate = "Moderate"
    admin = "Admin"


class StaffStatus(str, enum.Enum):
    active = "Active"
    inactive = "Inactive"
    deleted = "Deleted"


class Gender(str, enum.Enum):
    male = "Male"
    female = "Female"
    other = "Other"


class RegistrationStatus(str, enum.Enum):
    pending = "Pending"
    approved = "Approved"
    rejected = "Rejected"


class AppointmentStatus(str, enum.Enum):
    booked = "Booked"
    confirmed = "Confirmed"
    rescheduled = "Rescheduled"
    canceled = "Canceled"
    completed = "Completed"

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentStatus.canceled, AppointmentStatus.completed)


TERMINAL_APPOINTMENT_STATUSES = (AppointmentStatus.canceled, AppointmentStatus.completed)


class PrescriptionType(str, enum.Enum):
    medication = "Medication"
    vaccination = "Vaccination"


class SenderType(str, enum.Enum):
    owner = "Owner"
    vet = "Vet"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    EXPORT = "EXPORT"


# --- Identity ---
class PetOwner(Base):
    __tablename__ = "pet_owners"

    id = Column(String(36), primary_key=True, default=new_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    address = Column(String(255), nullable=False)
    phone_number = Column(String(32), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    profile_photo = Column(String(500), nullable=True)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    pets = relationship("PetProfile", back_populates="owner")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Veterinarian(Base):
    __tablename__ = "veterinarians"

    id = Column(String(36), primary_key=True, default=new_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(32), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    veterinary_id = Column(String(100), unique=True, index=True, nullable=False)
    specialization = Column(String(255), nullable=True)
    avatar = Column(String(500), nullable=True)
    access_level = enum_column(AccessLevel, nullable=False)
    is_primary_vet = Column(Boolean, default=False, nullable=False)
    # Clinics reference vets through primary_vet_id, so this side carries no FK constraint.
    current_active_clinic_id = Column(String(36), index=True, nullable=True)
    created_by_vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=True)
    status = enum_column(VetStatus, default=VetStatus.active, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    current_active_clinic = relationship(
        "Clinic",
        primaryjoin="foreign(Veterinarian.current_active_clinic_id) == Clinic.id",
        viewonly=True,
    )
    owned_clinics = relationship(
        "Clinic",
        primaryjoin="and_(Clinic.primary_vet_id == Veterinarian.id, Clinic.is_deleted == False)",
        viewonly=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    address = Column(String(255), default="", nullable=False)
    phone_number = Column(String(32), nullable=False)
    operating_hours = Column(String(255), default="", nullable=False)
    description = Column(Text, default="", nullable=False)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    primary_vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=True, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    primary_vet = relationship("Veterinarian", foreign_keys=[primary_vet_id])
    staff = relationship("ClinicStaff", back_populates="clinic")


class ClinicStaff(Base):
    __tablename__ = "clinic_staff"

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone_number = Column(String(32), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = enum_column(StaffRole, nullable=False)
    access_level = enum_column(StaffAccessLevel, default=StaffAccessLevel.basic, nullable=False)
    created_by_vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=False)
    status = enum_column(StaffStatus, default=StaffStatus.active, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    clinic = relationship("Clinic", back_populates="staff")


# --- Clinical data ---
class PetProfile(Base):
    __tablename__ = "pet_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), ForeignKey("pet_owners.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    species = Column(String(100), nullable=False)
    breed = Column(String(100), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = enum_column(Gender, nullable=True)
    color = Column(String(100), nullable=True)
    weight = Column(Float, nullable=True)
    microchip_number = Column(String(100), nullable=True)
    photo = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    registration_status = enum_column(
        RegistrationStatus, default=RegistrationStatus.pending, nullable=False, index=True
    )
    registered_clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True, index=True)
    rejection_reason = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("PetOwner", back_populates="pets")
    registered_clinic = relationship("Clinic")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=new_id)
    pet_id = Column(String(36), ForeignKey("pet_profiles.id"), nullable=False, index=True)
    owner_id = Column(String(36), ForeignKey("pet_owners.id"), nullable=False)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=False)
    date_time = Column(DateTime, nullable=False)
    status = enum_column(AppointmentStatus, default=AppointmentStatus.booked, nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    pet = relationship("PetProfile")
    owner = relationship("PetOwner")
    clinic = relationship("Clinic")
    vet = relationship("Veterinarian")

    __table_args__ = (
        Index("ix_appointments_owner_date", "owner_id", "date_time"),
        Index("ix_appointments_clinic_date", "clinic_id", "date_time"),
        # A vet holds at most one live appointment per exact timestamp.
        Index(
            "uq_appointments_vet_slot_active",
            "vet_id",
            "date_time",
            unique=True,
            sqlite_where=text("status NOT IN ('Canceled', 'Completed')"),
            postgresql_where=text("status NOT IN ('Canceled', 'Completed')"),
        ),
    )


class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id = Column(String(36), primary_key=True, default=new_id)
    pet_id = Column(String(36), ForeignKey("pet_profiles.id"), nullable=False, index=True)
    vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=False)
    date = Column(DateTime, default=utcnow, nullable=False)
    diagnosis = Column(Text, nullable=False)
    treatment_notes = Column(Text, nullable=True)
    visible_to_owner = Column(Boolean, default=False, nullable=False)
    attachments = Column(JSON, default=list, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    pet = relationship("PetProfile")
    vet = relationship("Veterinarian")


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    pet_id = Column(String(36), ForeignKey("pet_profiles.id"), nullable=False, index=True)
    medical_record_id = Column(String(36), ForeignKey("medical_records.id"), nullable=True)
    created_by_vet_id = Column(String(36), ForeignKey("veterinarians.id"), nullable=True)
    medication_name = Column(String(255), nullable=False)
    dosage = Column(String(255), nullable=False)
    duration = Column(String(255), nullable=False)
    instructions = Column(Text, nullable=True)
    type = enum_column(PrescriptionType, nullable=False)
    due_date = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    pet = relationship("PetProfile")
    medical_record = relationship("MedicalRecord")
    created_by_vet = relationship("Veterinarian")


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    pet_id = Column(String(36), ForeignKey("pet_profiles.id"), nullable=False)
    sender_id = Column(String(36), nullable=False)
    sender_type = enum_column(SenderType, nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    attachments = Column(JSON, default=list, nullable=False)

    pet = relationship("PetProfile")

    __table_args__ = (
        Index("ix_chat_messages_pet_timestamp", "pet_id", "timestamp"),
    )


# --- Audit ---
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    actor_id = Column(String(36), nullable=True, index=True)
    actor_role = Column(String(16), nullable=True)
    action = Column(String(32), nullable=False)
    category = Column(String(64), nullable=False, default="GENERAL")
    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(36), nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

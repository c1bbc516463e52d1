# petcare/schemas.py
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from .models import (
    AccessLevel, AppointmentStatus, Gender, PrescriptionType, RegistrationStatus,
    SenderType, StaffAccessLevel, StaffRole, StaffStatus, VetStatus,
)
from .permissions import Role


class BaseSchema(BaseModel):
    """camelCase on the wire, snake_case in Python; reads straight from ORM objects."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


def _strip(v):
    return v.strip() if isinstance(v, str) else v


# --- Geo ---
class GeoPoint(BaseSchema):
    """GeoJSON point; coordinates are [longitude, latitude]."""

    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0], min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def validate_range(cls, v):
        lng, lat = v
        if not -180 <= lng <= 180 or not -90 <= lat <= 90:
            raise ValueError("coordinates must be [longitude, latitude] within valid ranges")
        return v

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class GeoOut(BaseSchema):
    """Mixin for responses built from rows carrying longitude/latitude columns."""

    longitude: Optional[float] = Field(default=None, exclude=True)
    latitude: Optional[float] = Field(default=None, exclude=True)

    @computed_field
    @property
    def location(self) -> Optional[GeoPoint]:
        if self.longitude is None or self.latitude is None:
            return None
        return GeoPoint(coordinates=[self.longitude, self.latitude])


# --- Auth ---
class LoginRequest(BaseSchema):
    email: EmailStr
    password: str
    role: Optional[Role] = None


class ChangePasswordRequest(BaseSchema):
    current_password: str
    new_password: str


# --- Owners ---
class OwnerRegister(BaseSchema):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    profile_photo: Optional[str] = None
    location: Optional[GeoPoint] = None

    @field_validator("first_name", "last_name", "address", "phone_number", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


class OwnerUpdate(BaseSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    profile_photo: Optional[str] = None
    location: Optional[GeoPoint] = None
    # Present only so the API can refuse it; passwords change via /auth/change-password.
    password: Optional[str] = None


class OwnerOut(GeoOut):
    id: str
    first_name: str
    last_name: str
    address: str
    phone_number: str
    email: str
    profile_photo: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OwnerBrief(BaseSchema):
    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None


# --- Clinics ---
class ClinicCreate(BaseSchema):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    operating_hours: Optional[str] = ""
    description: Optional[str] = ""
    location: Optional[GeoPoint] = None


class ClinicUpdate(BaseSchema):
    name: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    operating_hours: Optional[str] = None
    description: Optional[str] = None
    location: Optional[GeoPoint] = None
    primary_vet_id: Optional[str] = None


class ClinicBrief(BaseSchema):
    id: str
    name: str
    address: Optional[str] = ""
    phone_number: Optional[str] = None


class ClinicOut(GeoOut):
    id: str
    name: str
    address: str
    phone_number: str
    operating_hours: str
    description: str
    primary_vet_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class NearbyClinicOut(ClinicOut):
    distance_meters: Optional[float] = None


# --- Veterinarians ---
class VetRegister(BaseSchema):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone_number: str = Field(..., min_length=1)
    veterinary_id: str = Field(..., min_length=1)
    specialization: Optional[str] = ""
    clinic_id: Optional[str] = None
    is_primary_vet: bool = False

    @field_validator("first_name", "last_name", "phone_number", "veterinary_id", "specialization", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


class VetSubAccountCreate(BaseSchema):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone_number: str = Field(..., min_length=1)
    veterinary_id: str = Field(..., min_length=1)
    specialization: Optional[str] = ""
    clinic_id: str
    access_level: AccessLevel = AccessLevel.normal


class VetUpdate(BaseSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    specialization: Optional[str] = None
    avatar: Optional[str] = None
    # Refused when present.
    clinic_id: Optional[str] = None
    current_active_clinic_id: Optional[str] = None
    access_level: Optional[AccessLevel] = None
    is_primary_vet: Optional[bool] = None
    created_by_vet_id: Optional[str] = None
    email: Optional[EmailStr] = None
    veterinary_id: Optional[str] = None
    status: Optional[VetStatus] = None
    password: Optional[str] = None


RESTRICTED_VET_FIELDS = (
    "clinic_id", "current_active_clinic_id", "access_level", "is_primary_vet",
    "created_by_vet_id", "email", "veterinary_id", "status", "password",
)


class ActiveClinicSwitch(BaseSchema):
    clinic_id: str


class VetOut(BaseSchema):
    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: str
    veterinary_id: str
    specialization: Optional[str] = None
    avatar: Optional[str] = None
    access_level: AccessLevel
    is_primary_vet: bool
    current_active_clinic_id: Optional[str] = None
    created_by_vet_id: Optional[str] = None
    status: VetStatus
    created_at: datetime
    updated_at: datetime


class VetBrief(BaseSchema):
    id: str
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


# --- Clinic staff ---
STAFF_TYPES = ("veterinarian", "receptionist", "vettech", "manager", "assistant", "kennelstaff")


class StaffCreate(BaseSchema):
    """One payload for both vet sub-accounts and non-veterinary staff, split by ``staff_type``."""

    staff_type: str
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone_number: Optional[str] = None
    clinic_id: Optional[str] = None
    # veterinarian only
    veterinary_id: Optional[str] = None
    specialization: Optional[str] = ""
    access_level: Optional[str] = None
    # non-vet staff only
    role: Optional[StaffRole] = None

    @field_validator("staff_type", mode="before")
    @classmethod
    def normalize_staff_type(cls, v):
        if isinstance(v, str):
            v = v.replace(" ", "").replace("_", "").lower()
        if v not in STAFF_TYPES:
            raise ValueError(f"staffType must be one of: {', '.join(STAFF_TYPES)}")
        return v


class StaffUpdate(BaseSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: Optional[StaffRole] = None
    # Checked on update: a clinic move needs a managed target and email must stay unique.
    clinic_id: Optional[str] = None
    email: Optional[EmailStr] = None
    # Refused when present.
    password: Optional[str] = None


class StaffOut(BaseSchema):
    id: str
    clinic_id: str
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    role: StaffRole
    access_level: StaffAccessLevel
    created_by_vet_id: str
    status: StaffStatus
    created_at: datetime
    updated_at: datetime


# --- Pets ---
class PetCreate(BaseSchema):
    name: str = Field(..., min_length=1)
    species: str = Field(..., min_length=1)
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    color: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0)
    microchip_number: Optional[str] = None
    photo: Optional[str] = None
    notes: Optional[str] = None
    registered_clinic_id: Optional[str] = None


class PetUpdate(BaseSchema):
    name: Optional[str] = None
    species: Optional[str] = None
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    color: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0)
    microchip_number: Optional[str] = None
    photo: Optional[str] = None
    notes: Optional[str] = None
    # Refused when present.
    owner_id: Optional[str] = None
    registration_status: Optional[RegistrationStatus] = None
    registered_clinic_id: Optional[str] = None
    rejection_reason: Optional[str] = None


RESTRICTED_PET_FIELDS = ("owner_id", "registration_status", "registered_clinic_id", "rejection_reason")


class RegistrationRequest(BaseSchema):
    clinic_id: str


class RejectRequest(BaseSchema):
    reason: Optional[str] = None


class PetOut(BaseSchema):
    id: str
    owner_id: str
    name: str
    species: str
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    color: Optional[str] = None
    weight: Optional[float] = None
    microchip_number: Optional[str] = None
    photo: Optional[str] = None
    notes: Optional[str] = None
    registration_status: RegistrationStatus
    registered_clinic_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PetWithOwnerOut(PetOut):
    owner: Optional[OwnerBrief] = None


class PetBrief(BaseSchema):
    id: str
    name: str
    species: str
    breed: Optional[str] = None
    photo: Optional[str] = None
    registration_status: RegistrationStatus


# --- Appointments ---
class AppointmentCreate(BaseSchema):
    pet_id: str
    clinic_id: str
    vet_id: str
    date_time: datetime
    reason: Optional[str] = None
    notes: Optional[str] = None


class CancelRequest(BaseSchema):
    reason: Optional[str] = None


class RescheduleRequest(BaseSchema):
    date_time: datetime
    reason: Optional[str] = None


class CompleteRequest(BaseSchema):
    notes: Optional[str] = None


class AppointmentOut(BaseSchema):
    id: str
    pet_id: str
    owner_id: str
    clinic_id: str
    vet_id: str
    date_time: datetime
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AppointmentDetailOut(AppointmentOut):
    pet: Optional[PetBrief] = None
    vet: Optional[VetBrief] = None
    clinic: Optional[ClinicBrief] = None
    owner: Optional[OwnerBrief] = None
    time_ago: Optional[str] = None
    time_until: Optional[str] = None


# --- Medical records ---
class MedicalRecordCreate(BaseSchema):
    pet_id: str
    diagnosis: str = Field(..., min_length=1)
    treatment_notes: Optional[str] = None
    date: Optional[datetime] = None
    visible_to_owner: bool = False
    attachments: List[str] = Field(default_factory=list)


class MedicalRecordUpdate(BaseSchema):
    diagnosis: Optional[str] = None
    treatment_notes: Optional[str] = None
    date: Optional[datetime] = None
    visible_to_owner: Optional[bool] = None
    attachments: Optional[List[str]] = None
    # Refused when it differs from the stored pet.
    pet_id: Optional[str] = None


class VisibilityUpdate(BaseSchema):
    visible_to_owner: Optional[bool] = None


class MedicalRecordOut(BaseSchema):
    id: str
    pet_id: str
    vet_id: str
    date: datetime
    diagnosis: str
    treatment_notes: Optional[str] = None
    visible_to_owner: bool
    attachments: List[str] = Field(default_factory=list)
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MedicalRecordDetailOut(MedicalRecordOut):
    vet: Optional[VetBrief] = None


# --- Prescriptions ---
class PrescriptionCreate(BaseSchema):
    pet_id: str
    medical_record_id: Optional[str] = None
    medication_name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    duration: str = Field(..., min_length=1)
    instructions: Optional[str] = None
    type: PrescriptionType
    due_date: Optional[datetime] = None


class PrescriptionUpdate(BaseSchema):
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None
    type: Optional[PrescriptionType] = None
    due_date: Optional[datetime] = None
    medical_record_id: Optional[str] = None
    # Refused when it differs from the stored pet.
    pet_id: Optional[str] = None


class PrescriptionOut(BaseSchema):
    id: str
    pet_id: str
    medical_record_id: Optional[str] = None
    created_by_vet_id: Optional[str] = None
    medication_name: str
    dosage: str
    duration: str
    instructions: Optional[str] = None
    type: PrescriptionType
    due_date: Optional[datetime] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# --- Chat ---
class ChatMessageCreate(BaseSchema):
    pet_id: str
    content: str = Field(..., min_length=1)
    attachments: List[str] = Field(default_factory=list)


class ChatMessageOut(BaseSchema):
    id: str
    pet_id: str
    sender_id: str
    sender_type: SenderType
    content: str
    timestamp: datetime
    attachments: List[str] = Field(default_factory=list)


class AssistantQuestion(BaseSchema):
    question: str = Field(..., min_length=1, max_length=2000)
    pet_id: Optional[str] = None
    species: Optional[str] = None


class AssistantAnswer(BaseSchema):
    answer: str
    matched_topic: Optional[str] = None
    score: float = 0.0
    sources: List[str] = Field(default_factory=list)

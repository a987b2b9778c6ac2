"""
Vendor Marketplace Database Schemas

Each Pydantic model below the "Collections" header corresponds to a MongoDB
collection; the collection name is given in its docstring. Stored field
names are snake_case.

Models below the "Request bodies" header describe JSON accepted by the API.
They take camelCase keys (the frontend contract) and snake_case keys alike.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["admin", "vendor", "user"]
BusinessType = Literal["individual", "company", "agency"]
MediaType = Literal["image", "video"]
EventStatus = Literal["requested", "confirmed", "completed", "cancelled"]
OTPPurpose = Literal["login", "password_reset"]

Phone = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^\+?[0-9]{10,15}$")]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
OTPCode = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^[0-9]{6}$")]

MIN_PASSWORD_LENGTH = 8


def _check_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return value


Password = Annotated[str, AfterValidator(_check_password)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NotificationPreferences(CamelModel):
    email: bool = True
    sms: bool = True
    booking_updates: bool = True
    marketing: bool = False


class Location(CamelModel):
    address: str
    city: str
    pincode: Optional[str] = None
    landmark: Optional[str] = None
    map_url: Optional[str] = None


class SocialLinks(CamelModel):
    instagram: Optional[str] = None
    website: Optional[str] = None
    facebook: Optional[str] = None


# --------------------------------------------------
# Collections
# --------------------------------------------------

class User(BaseModel):
    """
    Principals (users and vendors)
    Collection name: "users"
    """
    phone: str = Field(..., description="Phone number, unique")
    email: Optional[EmailStr] = Field(None, description="Email address, unique when present")
    password_hash: Optional[str] = Field(None, description="bcrypt hash, absent for OTP-only accounts")
    role: Role = Field("user", description="Active persona")
    roles: List[Role] = Field(default_factory=lambda: ["user"], description="Granted personas")
    is_verified: bool = Field(False, description="Whether phone/email verified")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    city: Optional[str] = None
    interests: List[str] = []
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)


class VendorProfile(BaseModel):
    """
    Business profile owned by one principal
    Collection name: "vendor_profiles"
    """
    user_id: str = Field(..., description="Owning principal id")
    business_name: Optional[str] = None
    business_type: BusinessType = "individual"
    description: Optional[str] = None
    gst_number: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    pincode: Optional[str] = None
    locality: Optional[str] = None
    plot_no: Optional[str] = None
    landmark: Optional[str] = None
    years_in_business: Optional[int] = Field(None, ge=0)
    acquisition_channels: List[str] = []
    service_categories: List[str] = []
    event_volume: Optional[str] = Field(None, description="e.g. 1-5, 6-20, 20+")
    avg_booking_price: Optional[str] = None
    packages_offered: Optional[str] = None
    challenges: Optional[str] = None
    platform_interest: Optional[str] = None
    preferred_pricing: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    locations: List[Location] = []
    social_links: Optional[SocialLinks] = None


class VendorPackage(BaseModel):
    """
    Priced offering of a vendor profile
    Collection name: "vendor_packages"
    """
    vendor_id: str = Field(..., description="Owning vendor profile id")
    name: str
    description: str = ""
    price: float = Field(..., ge=0, description="Price, two decimals")
    features: List[str] = []
    images: List[str] = []
    category: Optional[str] = Field(None, description="e.g. Photography, Catering")
    tier: Optional[str] = Field(None, description="Basic, Standard, Premium")
    active: bool = True

    @field_validator("price")
    @classmethod
    def round_price(cls, value: float) -> float:
        return round(value, 2)


class VendorGallery(BaseModel):
    """
    Gallery media of a vendor profile
    Collection name: "vendor_gallery"
    """
    vendor_id: str
    url: str
    type: MediaType = "image"


class SavedVendor(BaseModel):
    """
    A user's bookmark of a vendor profile
    Collection name: "saved_vendors"
    """
    user_id: str
    vendor_id: str


class Event(BaseModel):
    """
    Booking request from a user to a vendor
    Collection name: "events"
    """
    user_id: str
    vendor_id: str = Field(..., description="Vendor's principal id")
    title: str
    description: Optional[str] = None
    date: datetime
    status: EventStatus = "requested"


class OTP(BaseModel):
    """
    One-time codes
    Collection name: "otps"
    """
    identifier: str = Field(..., description="Phone number or email address")
    purpose: OTPPurpose = "login"
    code: str = Field(..., description="6-digit code")
    expires_at: datetime


# --------------------------------------------------
# Request bodies
# --------------------------------------------------

class SendOTPRequest(CamelModel):
    phone: Phone


class VerifyOTPRequest(CamelModel):
    phone: Phone
    otp: OTPCode
    role: Role = "user"


class LoginRequest(CamelModel):
    """Either email + password (vendors) or phone + otp + role."""
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[Phone] = None
    otp: Optional[OTPCode] = None
    role: Role = "user"

    @model_validator(mode="after")
    def check_credentials(self):
        if self.email and self.password:
            return self
        if self.phone and self.otp:
            return self
        raise ValueError("Provide email and password, or phone and otp")


class RegisterVendorRequest(CamelModel):
    email: EmailStr
    password: Password
    phone: Phone
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    business_name: NonEmptyStr
    business_type: Optional[BusinessType] = None
    description: Optional[str] = None
    gst_number: Optional[str] = None
    city: NonEmptyStr
    address: NonEmptyStr
    pincode: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    plot_no: Optional[str] = None
    landmark: Optional[str] = None
    years_in_business: Optional[int] = Field(None, ge=0)
    acquisition_channels: Optional[List[str]] = None
    service_categories: Optional[List[str]] = None
    event_volume: Optional[str] = None
    avg_booking_price: Optional[str] = None


class VendorProfileRequest(CamelModel):
    business_name: Optional[str] = None
    business_type: Optional[BusinessType] = None
    description: Optional[str] = None
    gst_number: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    pincode: Optional[str] = None
    locality: Optional[str] = None
    plot_no: Optional[str] = None
    landmark: Optional[str] = None
    years_in_business: Optional[int] = Field(None, ge=0)
    acquisition_channels: Optional[List[str]] = None
    service_categories: Optional[List[str]] = None
    event_volume: Optional[str] = None
    avg_booking_price: Optional[str] = None
    packages_offered: Optional[str] = None
    challenges: Optional[str] = None
    platform_interest: Optional[str] = None
    preferred_pricing: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    locations: Optional[List[Location]] = None
    social_links: Optional[SocialLinks] = None
    # principal-level fields sent in the same form by the frontend
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None


class OnboardingRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    city: Optional[str] = None
    interests: Optional[List[str]] = None


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    code: OTPCode
    new_password: Password


class CreateEventRequest(CamelModel):
    vendor_id: NonEmptyStr
    title: NonEmptyStr
    description: Optional[str] = None
    date: datetime


class EventStatusRequest(CamelModel):
    status: EventStatus

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from datetime import datetime, timezone
from typing import List, Optional


def to_naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    # В базе храним datetime без часового пояса, в UTC
    if v is not None and v.tzinfo is not None:
        v = v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


class IntervalMixin(BaseModel):
    start_date: datetime
    end_date: datetime

    @field_validator('start_date', 'end_date')
    @classmethod
    def ensure_naive_datetime(cls, v):
        return to_naive_utc(v)


# --- Vehicles ---

class VehicleBase(BaseModel):
    name: str
    make: str
    model: str
    year: int
    license_plate: str
    status: str = "available"
    rate4h: float
    rate12h: float
    daily_rate: float
    features: List[str] = []
    current_mileage: int = 0
    description: str = ""
    dimensions: str = ""


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(BaseModel):
    name: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    license_plate: Optional[str] = None
    status: Optional[str] = None
    rate4h: Optional[float] = None
    rate12h: Optional[float] = None
    daily_rate: Optional[float] = None
    features: Optional[List[str]] = None
    current_mileage: Optional[int] = None
    description: Optional[str] = None
    dimensions: Optional[str] = None


class Vehicle(VehicleBase):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: int
    image_url: Optional[str] = None
    features: Optional[List[str]] = None


class PriceQuote(BaseModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    price: float


class ServiceRecordCreate(BaseModel):
    description: str
    cost: float
    mileage: int
    service_date: datetime

    @field_validator('service_date')
    @classmethod
    def ensure_naive_datetime(cls, v):
        return to_naive_utc(v)


class ServiceRecord(ServiceRecordCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int


# --- Customers ---

class CustomerBase(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    driver_license_number: str
    address: str
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    vat_id: Optional[str] = None


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    driver_license_number: Optional[str] = None
    address: Optional[str] = None
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    vat_id: Optional[str] = None


class Customer(CustomerBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    driver_license_image_url: Optional[str] = None


class CompanyLookup(BaseModel):
    company_name: str
    company_id: str
    vat_id: str
    address: str


# --- Reservations ---

class ReservationCreate(IntervalMixin):
    customer_id: int
    vehicle_id: int
    notes: Optional[str] = None


class PendingReservationCreate(BaseModel):
    vehicle_id: int


class Reservation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    customer_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    start_mileage: Optional[int] = None
    end_mileage: Optional[int] = None
    total_price: Optional[float] = None
    mileage_surcharge: Optional[float] = None
    payment_method: Optional[str] = None
    handover_signature_url: Optional[str] = None
    return_signature_url: Optional[str] = None
    created_at: Optional[datetime] = None


class PendingReservation(BaseModel):
    reservation: Reservation
    portal_token: str
    portal_url: str


class PortalReservation(BaseModel):
    reservation: Reservation
    vehicle: Vehicle


class OnlineReservationResult(BaseModel):
    reservation: Reservation
    customer: Customer
    contract_text: str


# --- Contracts, finance ---

class Contract(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_id: int
    customer_id: int
    vehicle_id: int
    generated_at: datetime
    contract_text: str


class FinancialTransaction(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: float
    date: datetime
    description: str
    related_reservation_id: Optional[int] = None
    related_vehicle_id: Optional[int] = None


class ExpenseCreate(BaseModel):
    amount: float
    date: datetime
    description: str
    vehicle_id: Optional[int] = None

    @field_validator('date')
    @classmethod
    def ensure_naive_datetime(cls, v):
        return to_naive_utc(v)


class MonthlyIncome(BaseModel):
    month: str
    amount: float


class FinancialSummary(BaseModel):
    total_income: float
    total_expenses: float
    net: float
    monthly_income: List[MonthlyIncome]


class InvoiceLineItem(BaseModel):
    description: str
    amount: float


class Invoice(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    reservation_id: int
    issue_date: datetime
    due_date: datetime
    total_amount: float
    payment_method: str
    line_items: List[InvoiceLineItem]
    customer_details_snapshot: dict
    vehicle_details_snapshot: dict


class CompanySettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_name: str = ""
    company_address: str = ""
    company_ico: str = ""
    bank_account: str = ""


class Dashboard(BaseModel):
    available_vehicles: int
    total_vehicles: int
    upcoming_reservations: int
    due_back: int
    total_customers: int
    todays_departures: List[Reservation]
    todays_arrivals: List[Reservation]


# --- Staff users ---

class UserBase(BaseModel):
    email: EmailStr
    full_name: str
    is_admin: bool = False


class UserCreate(UserBase):
    password: str


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class User(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime

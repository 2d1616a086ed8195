from sqlalchemy import Column, Integer, DateTime, String, Float, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class VehicleStatus:
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"

    ALL = (AVAILABLE, RENTED, MAINTENANCE)


class ReservationStatus:
    PENDING_CUSTOMER = "pending-customer"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING_CUSTOMER, SCHEDULED, ACTIVE, COMPLETED, CANCELLED)
    # Статусы, при которых резервация занимает интервал автомобиля
    OCCUPYING = (SCHEDULED, ACTIVE)
    TERMINAL = (COMPLETED, CANCELLED)


class PortalTokenStatus:
    LIVE = "live"
    REDEEMED = "redeemed"
    REVOKED = "revoked"


class PaymentMethod:
    CASH = "cash"
    INVOICE = "invoice"

    ALL = (CASH, INVOICE)


class TransactionType:
    INCOME = "income"
    EXPENSE = "expense"


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True)
    make = Column(String)
    model = Column(String)
    year = Column(Integer)
    license_plate = Column(String, unique=True)
    status = Column(String, default=VehicleStatus.AVAILABLE)  # available, rented, maintenance
    rate4h = Column(Float)
    rate12h = Column(Float)
    daily_rate = Column(Float)
    features = Column(JSON, default=list)
    current_mileage = Column(Integer, default=0)
    description = Column(Text, default="")
    dimensions = Column(String, default="")
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ServiceRecord(Base):
    __tablename__ = "service_records"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), index=True)
    description = Column(Text)
    cost = Column(Float)
    mileage = Column(Integer)
    service_date = Column(DateTime)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String)
    last_name = Column(String, index=True)
    email = Column(String, index=True)
    phone = Column(String)
    driver_license_number = Column(String)
    address = Column(String)
    driver_license_image_url = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    company_id = Column(String, nullable=True)  # IČO
    vat_id = Column(String, nullable=True)  # DIČ
    created_at = Column(DateTime, default=datetime.utcnow)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    status = Column(String, index=True, default=ReservationStatus.SCHEDULED)
    notes = Column(Text, nullable=True)
    start_mileage = Column(Integer, nullable=True)
    end_mileage = Column(Integer, nullable=True)
    total_price = Column(Float, nullable=True)
    mileage_surcharge = Column(Float, nullable=True)
    payment_method = Column(String, nullable=True)  # cash, invoice
    handover_signature_url = Column(String, nullable=True)
    return_signature_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PortalToken(Base):
    __tablename__ = "portal_tokens"

    token = Column(String, primary_key=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), index=True, nullable=False)
    status = Column(String, default=PortalTokenStatus.LIVE)  # live, redeemed, revoked
    created_at = Column(DateTime, default=datetime.utcnow)
    closed_at = Column(DateTime, nullable=True)


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"))
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"))
    generated_at = Column(DateTime, default=datetime.utcnow)
    contract_text = Column(Text)


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, index=True)  # income, expense
    amount = Column(Float)
    date = Column(DateTime, default=datetime.utcnow)
    description = Column(String)
    related_reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    related_vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String, unique=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), unique=True)
    issue_date = Column(DateTime)
    due_date = Column(DateTime)
    total_amount = Column(Float)
    payment_method = Column(String)
    line_items = Column(JSON)
    customer_details_snapshot = Column(JSON)
    vehicle_details_snapshot = Column(JSON)


class CompanySettings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    company_name = Column(String, default="")
    company_address = Column(String, default="")
    company_ico = Column(String, default="")
    bank_account = Column(String, default="")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StaffUser(Base):
    __tablename__ = "staff_users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    hashed_password = Column(String)
    is_admin = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

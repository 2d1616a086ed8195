import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Form, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import text, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models, schemas, database, auth
from .ares_client import fetch_company
from .availability import available_vehicles
from .contracts import ContractService, ContractGenerator, contract_generator
from .errors import (
    RentalError, NotFound, IntervalConflict, InvalidTransition, UpstreamFailure, InvalidInterval,
    PreconditionFailed, Reason,
)
from .financials import FinancialService
from .pricing import calculate_price
from .repositories import (
    VehicleRepository, ReservationRepository, CustomerRepository, CompanySettingsRepository,
)
from .reports import dashboard_stats
from .reservations import ReservationService
from .s3_client import upload_file, delete_file, LICENSES_FOLDER, SIGNATURES_FOLDER, VEHICLES_FOLDER

logger = logging.getLogger(__name__)

PORTAL_BASE_URL = os.getenv("PORTAL_BASE_URL", "http://localhost:3000/portal")

app = FastAPI(
    title="Van Rental Back Office",
    description="API for fleet, customers, reservations and the self-service portal",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Создание таблиц при старте приложения
@app.on_event("startup")
async def startup():
    async with database.engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


def error_status(error: RentalError) -> int:
    if isinstance(error, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (IntervalConflict, InvalidTransition)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, UpstreamFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    return JSONResponse(status_code=error_status(exc), content={"detail": exc.to_dict()})


def get_reservation_service(db: AsyncSession = Depends(database.get_db)) -> ReservationService:
    return ReservationService(db)


def get_contract_generator() -> ContractGenerator:
    return contract_generator


def require_image(upload: Optional[UploadFile], reason: str = Reason.LICENSE_IMAGE_REQUIRED):
    if upload is None or not upload.filename:
        raise PreconditionFailed(reason, "An image file is required")
    if not (upload.content_type or "").startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be an image"
        )


def check_interval(start_date: datetime, end_date: datetime):
    if end_date <= start_date:
        raise InvalidInterval()


@asynccontextmanager
async def uploaded(upload: UploadFile, folder: str):
    """Загружает файл; если операция с ним отклонена, файл удаляется."""
    url = await upload_file(upload.file, upload.filename, folder)
    try:
        yield url
    except RentalError:
        try:
            await delete_file(url)
        except UpstreamFailure:
            # исходная ошибка важнее, файл останется сиротой
            logger.warning(f"Could not remove rejected upload {url}")
        raise


# --- Staff authentication ---

async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: AsyncSession = Depends(database.get_db)
) -> models.StaffUser:
    user_id = auth.staff_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )

    user = await db.get(models.StaffUser, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    return user


@app.post("/register", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
async def register(
        user_data: schemas.UserCreate,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
        db: AsyncSession = Depends(database.get_db)
):
    staff_count = (await db.execute(select(func.count(models.StaffUser.id)))).scalar_one()

    # Первый пользователь становится администратором, дальше регистрирует только админ
    if staff_count:
        current_user = await get_current_user(credentials, db) if credentials else None
        if current_user is None or not current_user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only administrators can register staff users"
            )

    result = await db.execute(
        select(models.StaffUser).where(models.StaffUser.email == user_data.email)
    )
    if result.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    user = models.StaffUser(
        email=user_data.email,
        hashed_password=auth.get_password_hash(user_data.password),
        full_name=user_data.full_name,
        is_admin=user_data.is_admin or staff_count == 0,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Staff user {user.id} registered")
    return user


@app.post("/login")
async def login(login_data: schemas.UserLogin, db: AsyncSession = Depends(database.get_db)):
    result = await db.execute(
        select(models.StaffUser).where(models.StaffUser.email == login_data.email)
    )
    user = result.scalar_one_or_none()

    if not user or not auth.verify_password(login_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    return {"access_token": auth.issue_staff_token(user), "token_type": "bearer"}


@app.get("/users/me", response_model=schemas.User)
async def read_users_me(current_user: models.StaffUser = Depends(get_current_user)):
    return current_user


# --- Vehicles ---

@app.get("/vehicles/", response_model=List[schemas.Vehicle])
async def read_vehicles(
        available_only: bool = False,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    repo = VehicleRepository(db)
    return await (repo.list_available() if available_only else repo.list_all())


@app.post("/vehicles/", response_model=schemas.Vehicle, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
        vehicle_data: schemas.VehicleCreate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    try:
        if min(vehicle_data.rate4h, vehicle_data.rate12h, vehicle_data.daily_rate) <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Rates must be positive"
            )
        if vehicle_data.status not in models.VehicleStatus.ALL:
            raise HTTPException(status_code=400, detail=f"Unknown vehicle status '{vehicle_data.status}'")

        vehicle = models.Vehicle(**vehicle_data.model_dump())
        db.add(vehicle)
        await db.commit()
        await db.refresh(vehicle)
        return vehicle

    except HTTPException:
        raise
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error creating vehicle: {str(e)}"
        )


@app.get("/vehicles/available", response_model=List[schemas.Vehicle])
async def search_available_vehicles(
        start_date: datetime,
        end_date: datetime,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    start_date, end_date = schemas.to_naive_utc(start_date), schemas.to_naive_utc(end_date)
    vehicles = await VehicleRepository(db).list_all()
    reservations = await ReservationRepository(db).list_by_status(models.ReservationStatus.OCCUPYING)
    return available_vehicles(start_date, end_date, reservations, vehicles)


@app.get("/vehicles/{vehicle_id}", response_model=schemas.Vehicle)
async def read_vehicle(
        vehicle_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await VehicleRepository(db).get(vehicle_id)


@app.put("/vehicles/{vehicle_id}", response_model=schemas.Vehicle)
async def update_vehicle(
        vehicle_id: int,
        vehicle_data: schemas.VehicleUpdate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    try:
        vehicle = await VehicleRepository(db).get(vehicle_id)
        update_data = vehicle_data.model_dump(exclude_unset=True)

        for rate in ("rate4h", "rate12h", "daily_rate"):
            if rate in update_data and update_data[rate] <= 0:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Rates must be positive"
                )
        if "status" in update_data and update_data["status"] not in models.VehicleStatus.ALL:
            raise HTTPException(status_code=400, detail=f"Unknown vehicle status '{update_data['status']}'")
        # пробег меняется только при возврате автомобиля, и только вверх
        if update_data.get("current_mileage", vehicle.current_mileage) < vehicle.current_mileage:
            raise PreconditionFailed(
                Reason.ODOMETER_BELOW_CURRENT, "Vehicle mileage cannot decrease"
            )

        for field, value in update_data.items():
            setattr(vehicle, field, value)

        await db.commit()
        await db.refresh(vehicle)
        return vehicle

    except (RentalError, HTTPException):
        raise
    except Exception as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error updating vehicle: {str(e)}"
        )


@app.post("/vehicles/{vehicle_id}/image", response_model=schemas.Vehicle)
async def upload_vehicle_image(
        vehicle_id: int,
        image: UploadFile = File(...),
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    vehicle = await VehicleRepository(db).get(vehicle_id)
    require_image(image)

    vehicle.image_url = await upload_file(image.file, image.filename, VEHICLES_FOLDER)
    await db.commit()
    await db.refresh(vehicle)
    return vehicle


@app.get("/vehicles/{vehicle_id}/quote", response_model=schemas.PriceQuote)
async def quote_vehicle(
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await _quote(db, vehicle_id, start_date, end_date)


async def _quote(db: AsyncSession, vehicle_id: int, start_date: datetime, end_date: datetime):
    start_date, end_date = schemas.to_naive_utc(start_date), schemas.to_naive_utc(end_date)
    vehicle = await VehicleRepository(db).get(vehicle_id)
    return schemas.PriceQuote(
        vehicle_id=vehicle_id,
        start_date=start_date,
        end_date=end_date,
        price=calculate_price(vehicle, start_date, end_date),
    )


@app.get("/vehicles/{vehicle_id}/service-records", response_model=List[schemas.ServiceRecord])
async def read_service_records(
        vehicle_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).list_service_records(vehicle_id)


@app.post("/vehicles/{vehicle_id}/service-records", response_model=schemas.ServiceRecord,
          status_code=status.HTTP_201_CREATED)
async def create_service_record(
        vehicle_id: int,
        record: schemas.ServiceRecordCreate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).add_service_record(
        vehicle_id, record.description, record.cost, record.mileage, record.service_date
    )


@app.delete("/service-records/{record_id}")
async def delete_service_record(
        record_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    await FinancialService(db).delete_service_record(record_id)
    return {"message": "Service record deleted successfully", "record_id": record_id}


# --- Customers ---

@app.get("/customers/", response_model=List[schemas.Customer])
async def read_customers(
        skip: int = 0,
        limit: int = 100,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await CustomerRepository(db).list(skip, limit)


@app.post("/customers/", response_model=schemas.Customer, status_code=status.HTTP_201_CREATED)
async def create_customer(
        customer_data: schemas.CustomerCreate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    customer = await CustomerRepository(db).insert(models.Customer(**customer_data.model_dump()))
    await db.commit()
    await db.refresh(customer)
    return customer


@app.get("/customers/{customer_id}", response_model=schemas.Customer)
async def read_customer(
        customer_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await CustomerRepository(db).get(customer_id)


@app.put("/customers/{customer_id}", response_model=schemas.Customer)
async def update_customer(
        customer_id: int,
        customer_data: schemas.CustomerUpdate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    customer = await CustomerRepository(db).get(customer_id)
    for field, value in customer_data.model_dump(exclude_unset=True).items():
        setattr(customer, field, value)
    await db.commit()
    await db.refresh(customer)
    return customer


@app.post("/customers/{customer_id}/license-image", response_model=schemas.Customer)
async def upload_customer_license(
        customer_id: int,
        image: UploadFile = File(...),
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    customer = await CustomerRepository(db).get(customer_id)
    require_image(image)

    customer.driver_license_image_url = await upload_file(image.file, image.filename, LICENSES_FOLDER)
    await db.commit()
    await db.refresh(customer)
    return customer


@app.get("/ares/{ico}", response_model=schemas.CompanyLookup)
async def lookup_company(ico: str, current_user: models.StaffUser = Depends(get_current_user)):
    return await fetch_company(ico)


# --- Reservations ---

@app.get("/reservations/", response_model=List[schemas.Reservation])
async def read_reservations(
        status_filter: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await ReservationRepository(db).list(status_filter, skip, limit)


@app.post("/reservations/", response_model=schemas.Reservation, status_code=status.HTTP_201_CREATED)
async def create_reservation(
        reservation_data: schemas.ReservationCreate,
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await service.create_full_reservation(
        reservation_data.customer_id,
        reservation_data.vehicle_id,
        reservation_data.start_date,
        reservation_data.end_date,
        reservation_data.notes,
    )


@app.post("/reservations/pending", response_model=schemas.PendingReservation,
          status_code=status.HTTP_201_CREATED)
async def create_pending_reservation(
        pending_data: schemas.PendingReservationCreate,
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    reservation, token = await service.create_pending_reservation(pending_data.vehicle_id)
    return schemas.PendingReservation(
        reservation=schemas.Reservation.model_validate(reservation),
        portal_token=token,
        portal_url=f"{PORTAL_BASE_URL}/{token}",
    )


@app.get("/reservations/{reservation_id}", response_model=schemas.Reservation)
async def read_reservation(
        reservation_id: int,
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await service.get(reservation_id)


@app.put("/reservations/{reservation_id}/activate", response_model=schemas.Reservation)
async def activate_reservation(
        reservation_id: int,
        start_mileage: int = Form(...),
        signature: Optional[UploadFile] = File(None),
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    # Проверяем статус до загрузки подписи, чтобы не плодить файлы
    reservation = await service.get(reservation_id)
    if reservation.status != models.ReservationStatus.SCHEDULED:
        raise InvalidTransition("activate", reservation.status)
    require_image(signature, Reason.SIGNATURE_REQUIRED)

    async with uploaded(signature, SIGNATURES_FOLDER) as signature_url:
        return await service.activate(reservation_id, start_mileage, signature_url)


@app.put("/reservations/{reservation_id}/complete", response_model=schemas.Reservation)
async def complete_reservation(
        reservation_id: int,
        end_mileage: int = Form(...),
        payment_method: str = Form(...),
        notes: Optional[str] = Form(None),
        signature: Optional[UploadFile] = File(None),
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    reservation = await service.get(reservation_id)
    if reservation.status != models.ReservationStatus.ACTIVE:
        raise InvalidTransition("complete", reservation.status)
    require_image(signature, Reason.SIGNATURE_REQUIRED)

    async with uploaded(signature, SIGNATURES_FOLDER) as signature_url:
        return await service.complete(reservation_id, end_mileage, notes, payment_method, signature_url)


@app.put("/reservations/{reservation_id}/cancel", response_model=schemas.Reservation)
async def cancel_reservation(
        reservation_id: int,
        service: ReservationService = Depends(get_reservation_service),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await service.cancel(reservation_id)


@app.post("/reservations/{reservation_id}/contract", response_model=schemas.Contract,
          status_code=status.HTTP_201_CREATED)
async def generate_contract(
        reservation_id: int,
        db: AsyncSession = Depends(database.get_db),
        generator: ContractGenerator = Depends(get_contract_generator),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await ContractService(db, generator).generate_for_reservation(reservation_id)


@app.post("/reservations/{reservation_id}/invoice", response_model=schemas.Invoice,
          status_code=status.HTTP_201_CREATED)
async def create_invoice(
        reservation_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).create_invoice(reservation_id)


# --- Contracts, invoices, finance ---

@app.get("/contracts/", response_model=List[schemas.Contract])
async def read_contracts(
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await ContractService(db).list()


@app.get("/contracts/{contract_id}", response_model=schemas.Contract)
async def read_contract(
        contract_id: int,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await ContractService(db).get(contract_id)


@app.get("/invoices/", response_model=List[schemas.Invoice])
async def read_invoices(
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).list_invoices()


@app.get("/financials/", response_model=List[schemas.FinancialTransaction])
async def read_financials(
        type_filter: Optional[str] = None,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).list_transactions(type_filter)


@app.get("/financials/summary", response_model=schemas.FinancialSummary)
async def read_financial_summary(
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).summary()


@app.post("/financials/expenses", response_model=schemas.FinancialTransaction,
          status_code=status.HTTP_201_CREATED)
async def create_expense(
        expense: schemas.ExpenseCreate,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await FinancialService(db).add_expense(
        expense.amount, expense.date, expense.description, expense.vehicle_id
    )


@app.get("/dashboard", response_model=schemas.Dashboard)
async def read_dashboard(
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await dashboard_stats(db)


@app.get("/settings", response_model=schemas.CompanySettings)
async def read_settings(
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    return await CompanySettingsRepository(db).get()


@app.put("/settings", response_model=schemas.CompanySettings)
async def update_settings(
        settings_data: schemas.CompanySettings,
        db: AsyncSession = Depends(database.get_db),
        current_user: models.StaffUser = Depends(get_current_user)
):
    settings = await CompanySettingsRepository(db).upsert(**settings_data.model_dump())
    await db.commit()
    await db.refresh(settings)
    return settings


# --- Customer self-service portal (без авторизации, доступ по токену) ---

@app.get("/portal/{token}", response_model=schemas.PortalReservation)
async def read_portal_reservation(
        token: str,
        db: AsyncSession = Depends(database.get_db),
        service: ReservationService = Depends(get_reservation_service)
):
    reservation = await service.resolve_token(token)
    vehicle = await VehicleRepository(db).get(reservation.vehicle_id)
    return schemas.PortalReservation(
        reservation=schemas.Reservation.model_validate(reservation),
        vehicle=schemas.Vehicle.model_validate(vehicle),
    )


@app.post("/portal/{token}", response_model=schemas.Reservation)
async def submit_portal_details(
        token: str,
        first_name: str = Form(...),
        last_name: str = Form(...),
        email: str = Form(...),
        phone: str = Form(...),
        driver_license_number: str = Form(...),
        address: str = Form(...),
        start_date: datetime = Form(...),
        end_date: datetime = Form(...),
        driver_license: Optional[UploadFile] = File(None),
        service: ReservationService = Depends(get_reservation_service)
):
    start_date, end_date = schemas.to_naive_utc(start_date), schemas.to_naive_utc(end_date)
    check_interval(start_date, end_date)
    require_image(driver_license)
    await service.resolve_token(token)

    async with uploaded(driver_license, LICENSES_FOLDER) as license_url:
        customer_data = dict(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            driver_license_number=driver_license_number,
            address=address,
            driver_license_image_url=license_url,
            created_at=datetime.utcnow(),
        )
        return await service.complete_customer_details(token, customer_data, start_date, end_date)


# --- Public online rental portal ---

@app.get("/online/vehicles", response_model=List[schemas.Vehicle])
async def read_online_vehicles(db: AsyncSession = Depends(database.get_db)):
    return await VehicleRepository(db).list_available()


@app.get("/online/quote", response_model=schemas.PriceQuote)
async def online_quote(
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        db: AsyncSession = Depends(database.get_db)
):
    return await _quote(db, vehicle_id, start_date, end_date)


@app.post("/online/reservations", response_model=schemas.OnlineReservationResult,
          status_code=status.HTTP_201_CREATED)
async def submit_online_reservation(
        vehicle_id: int = Form(...),
        start_date: datetime = Form(...),
        end_date: datetime = Form(...),
        first_name: str = Form(...),
        last_name: str = Form(...),
        email: str = Form(...),
        phone: str = Form(...),
        driver_license_number: str = Form(...),
        address: str = Form(...),
        driver_license: Optional[UploadFile] = File(None),
        db: AsyncSession = Depends(database.get_db),
        service: ReservationService = Depends(get_reservation_service),
        generator: ContractGenerator = Depends(get_contract_generator)
):
    start_date, end_date = schemas.to_naive_utc(start_date), schemas.to_naive_utc(end_date)
    check_interval(start_date, end_date)
    require_image(driver_license)

    async with uploaded(driver_license, LICENSES_FOLDER) as license_url:
        reservation = await service.create_reservation_for_new_customer(
            dict(
                first_name=first_name,
                last_name=last_name,
                email=email,
                phone=phone,
                driver_license_number=driver_license_number,
                address=address,
                driver_license_image_url=license_url,
                created_at=datetime.utcnow(),
            ),
            vehicle_id, start_date, end_date,
        )
    customer = await CustomerRepository(db).get(reservation.customer_id)
    contract = await ContractService(db, generator).generate_for_reservation(reservation.id)

    return schemas.OnlineReservationResult(
        reservation=schemas.Reservation.model_validate(reservation),
        customer=schemas.Customer.model_validate(customer),
        contract_text=contract.contract_text,
    )


# Health check остается без авторизации
@app.get("/health")
async def health_check(db: AsyncSession = Depends(database.get_db)):
    health_info = {
        "status": "healthy",
        "service": "backoffice",
        "timestamp": datetime.utcnow().isoformat()
    }

    try:
        start_time = datetime.utcnow()
        await db.execute(text("SELECT 1"))
        db_response_time = (datetime.utcnow() - start_time).total_seconds() * 1000
        health_info["database"] = {
            "status": "connected",
            "response_time_ms": round(db_response_time, 2)
        }
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_info["database"] = {
            "status": "error",
            "error": str(e)
        }
        health_info["status"] = "unhealthy"

    return health_info

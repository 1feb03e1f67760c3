import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.errors import PyMongoError

import analytics_service
import database
import donation_service
import navigation
import otp_service
import program_service
import report_service
import seed
import user_service
import volunteer_service
from errors import AuthError, EmailAlreadyExistsError, InvalidOtpError, NotFoundError, ServiceError
from schemas import (
    DonationCreate, DonationUpdate, EmailPayload, OnboardingPayload, ProgramCreate, ProgramUpdate,
    RegisterPayload, ResetCodePayload, ResetPasswordPayload, RoleUpdate, UserCreate, UserUpdate,
    VerifyOtpPayload, VolunteerCreate, VolunteerUpdate,
)

logger = logging.getLogger(__name__)


def setup_logging():
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # Quiet down the driver's own chatter
    logging.getLogger("pymongo").setLevel(logging.WARNING)


setup_logging()

app = FastAPI(title="Do Charity API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===== Security / Auth Setup =====
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
DEV_ROUTES_ENABLED = os.getenv("ENABLE_DEV_ROUTES", "0") in ("1", "true", "True")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

AUTH_ERROR_MESSAGES = {
    "user-not-found": "No account found with this email. Please check your email or create a new account.",
    "wrong-password": "Incorrect password. Please try again.",
    "user-disabled": "This account has been disabled. Please contact support.",
}


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Helpers

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def auth_error(code: str, status_code: int = 401) -> AuthError:
    return AuthError(AUTH_ERROR_MESSAGES[code], error_code=code, status_code=status_code)


def _user_from_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None
    doc = database.get_document("users", user_id)
    if doc is None or not doc.get("is_active", True):
        return None
    return user_service.to_user(doc)


async def get_current_user(token: str = Depends(oauth2_scheme)):
    user = _user_from_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)):
    return _user_from_token(token) if token else None


async def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return current_user


async def require_dev_admin(current_user: dict = Depends(require_admin)):
    if not DEV_ROUTES_ENABLED:
        raise HTTPException(status_code=404, detail="Not Found")
    return current_user


@app.exception_handler(ServiceError)
async def service_error_handler(request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "errorCode": exc.error_code},
    )


@app.get("/")
def read_root():
    return {"name": "Do Charity API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ===== Registration handshake =====
def _require_valid_email(email: Optional[str]) -> str:
    if not email:
        raise ServiceError("Email is required")
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise ServiceError("Invalid email format")
    return user_service.normalize_email(email)


def _require_unregistered(email: str):
    if user_service.email_exists(email):
        logger.info(f"Email {email} already exists")
        raise EmailAlreadyExistsError()


@app.post("/api/auth/check-email")
async def check_email(payload: EmailPayload):
    email = _require_valid_email(payload.email)
    _require_unregistered(email)
    return {"success": True, "message": "Email is available for registration"}


@app.post("/api/auth/send-otp")
async def send_otp(payload: EmailPayload):
    email = _require_valid_email(payload.email)
    _require_unregistered(email)
    otp_service.create_and_send_otp(email)
    return {"success": True, "message": "Verification code sent"}


@app.post("/api/auth/verify-otp")
async def verify_otp(payload: VerifyOtpPayload):
    if not payload.email or not payload.otp:
        raise ServiceError("Email and OTP are required")
    _require_unregistered(payload.email)
    if not otp_service.verify_otp(payload.email, payload.otp):
        raise InvalidOtpError()
    return {"success": True, "message": "Verification successful"}


@app.post("/api/auth/register")
async def register(payload: RegisterPayload):
    if not payload.name or not payload.email or not payload.password or not payload.role:
        raise ServiceError("All fields are required")
    email = _require_valid_email(payload.email)
    _require_unregistered(email)
    if not otp_service.consume_verified_email(email):
        raise ServiceError("Email has not been verified. Please request a new code.", error_code="email-not-verified")
    user = user_service.create_user(payload.name, email, get_password_hash(payload.password), payload.role)
    return {"success": True, "message": "User registered successfully", "uid": user["id"]}


# ===== Password reset =====
@app.post("/api/auth/forgot-password")
async def forgot_password(payload: EmailPayload):
    email = _require_valid_email(payload.email)
    if not user_service.email_exists(email):
        raise auth_error("user-not-found", status_code=404)
    otp_service.create_and_send_reset_code(email)
    return {"success": True, "message": "Password reset email sent"}


@app.post("/api/auth/verify-reset-code")
async def verify_reset_code(payload: ResetCodePayload):
    if not otp_service.check_reset_code(payload.email, payload.code):
        raise ServiceError("Invalid or expired reset code.", error_code="invalid-reset-code")
    return {"success": True, "email": user_service.normalize_email(payload.email)}


@app.post("/api/auth/reset-password")
async def reset_password(payload: ResetPasswordPayload):
    user = user_service.get_user_doc_by_email(payload.email)
    if user is None or not otp_service.check_reset_code(payload.email, payload.code, consume=True):
        raise ServiceError("Invalid or expired reset code.", error_code="invalid-reset-code")
    user_service.set_password(str(user["_id"]), get_password_hash(payload.new_password))
    return {"success": True, "message": "Password has been reset"}


# ===== Session =====
@app.post("/auth/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    # OAuth2PasswordRequestForm expects fields: username, password; we use username as email
    try:
        user = user_service.get_user_doc_by_email(form_data.username)
    except PyMongoError as e:
        logger.error(f"Login lookup failed for {form_data.username}: {e}")
        raise
    if not user:
        raise auth_error("user-not-found")
    if not user.get("password") or not verify_password(form_data.password, user["password"]):
        raise auth_error("wrong-password")
    if not user.get("is_active", True):
        raise auth_error("user-disabled", status_code=403)
    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "donor")})
    return {"access_token": token, "token_type": "bearer"}


@app.get("/auth/me", response_model=dict)
async def read_users_me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.get("/navigation", response_model=List[dict])
async def get_navigation(current_user: Optional[dict] = Depends(get_optional_user)):
    return navigation.visible_nav_items(current_user["role"] if current_user else None)


# ===== Users =====
@app.patch("/users/me", response_model=dict)
async def update_me(payload: UserUpdate, current_user: dict = Depends(get_current_user)):
    return user_service.update_user_profile(current_user["id"], payload)


@app.post("/users/me/onboarding", response_model=dict)
async def complete_onboarding(payload: OnboardingPayload, current_user: dict = Depends(get_current_user)):
    return user_service.complete_onboarding(current_user["id"], payload)


@app.post("/users", response_model=dict, status_code=201)
async def create_user(user: UserCreate, _admin: dict = Depends(require_admin)):
    return user_service.create_user(user.name, str(user.email), get_password_hash(user.password), user.role)


@app.get("/users", response_model=List[dict])
async def list_users(role: Optional[str] = None, _admin: dict = Depends(require_admin)):
    return user_service.list_users(role)


@app.patch("/users/{user_id}/role", response_model=dict)
async def update_user_role(user_id: str, payload: RoleUpdate, _admin: dict = Depends(require_admin)):
    return user_service.update_user_role(user_id, payload.role, payload.is_active)


@app.delete("/users/{user_id}", status_code=204)
async def delete_user(user_id: str, _admin: dict = Depends(require_admin)):
    user_service.delete_user(user_id)


# ===== Programs =====
@app.get("/programs", response_model=List[dict])
async def list_programs(status: Optional[str] = None, category: Optional[str] = None,
                        search: Optional[str] = None):
    return program_service.get_all_programs(status=status, category=category, search=search)


@app.get("/programs/featured", response_model=List[dict])
async def list_featured_programs():
    return program_service.get_featured_programs()


@app.get("/programs/{program_id}", response_model=dict)
async def get_program(program_id: str):
    return program_service.require_program(program_id)


@app.post("/programs", response_model=dict, status_code=201)
async def create_program(program: ProgramCreate, _admin: dict = Depends(require_admin)):
    return program_service.create_program(program)


@app.patch("/programs/{program_id}", response_model=dict)
async def update_program(program_id: str, program: ProgramUpdate, _admin: dict = Depends(require_admin)):
    return program_service.update_program(program_id, program)


@app.delete("/programs/{program_id}", status_code=204)
async def delete_program(program_id: str, _admin: dict = Depends(require_admin)):
    program_service.delete_program(program_id)


@app.get("/programs/{program_id}/donations", response_model=List[dict])
async def list_program_donations(program_id: str, recent: Optional[int] = Query(None, ge=1, le=100)):
    if recent:
        return donation_service.get_recent_donations(program_id, recent)
    return donation_service.get_donations_by_program(program_id)


@app.get("/programs/{program_id}/volunteers", response_model=List[dict])
async def list_program_volunteers(program_id: str, active: bool = False,
                                  _admin: dict = Depends(require_admin)):
    if active:
        return volunteer_service.get_active_volunteers_by_program(program_id)
    return volunteer_service.get_volunteers_by_program(program_id)


def log_feed_failure(task: asyncio.Task):
    """Done callback for a feed task; reports why it stopped unless it was cancelled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"{task.get_name()} stopped: {exc}")


@app.websocket("/ws/programs/{program_id}/donations")
async def recent_donations_feed(websocket: WebSocket, program_id: str, limit: int = 5):
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    subscription = donation_service.subscribe_to_recent_donations(
        program_id, lambda donations: loop.call_soon_threadsafe(queue.put_nowait, donations), limit
    )

    async def forward():
        while True:
            donations = await queue.get()
            await websocket.send_json(jsonable_encoder(donations))

    forward_task = asyncio.create_task(forward(), name=f"Donation feed for {program_id}")
    forward_task.add_done_callback(log_feed_failure)
    try:
        # Client messages are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        forward_task.cancel()
        subscription.unsubscribe()


# ===== Donations =====
@app.post("/donations", response_model=dict, status_code=201)
async def create_donation(donation: DonationCreate, current_user: dict = Depends(get_current_user)):
    if current_user["role"] != "admin":
        # Donors give as themselves
        donation = donation.model_copy(update={"donor_id": None, "donor_name": None, "donor_avatar": None})
    return donation_service.create_donation(donation, donor=current_user)


@app.get("/donations", response_model=List[dict])
async def list_donations(status: Optional[str] = None, sort_by: str = "created_at",
                         order: str = Query("desc", pattern="^(asc|desc)$"),
                         _admin: dict = Depends(require_admin)):
    return donation_service.get_all_donations(status=status, sort_by=sort_by, order=order)


@app.get("/donations/mine", response_model=List[dict])
async def list_my_donations(current_user: dict = Depends(get_current_user)):
    return donation_service.get_donations_by_donor(current_user["id"])


@app.get("/donations/mine/summary", response_model=dict)
async def my_donation_summary(current_user: dict = Depends(get_current_user)):
    return analytics_service.donor_summary(donation_service.get_donations_by_donor(current_user["id"]))


@app.get("/donations/{donation_id}", response_model=dict)
async def get_donation(donation_id: str, current_user: dict = Depends(get_current_user)):
    donation = donation_service.get_donation_by_id(donation_id)
    if donation is None or (current_user["role"] != "admin" and donation.get("donor_id") != current_user["id"]):
        raise NotFoundError(f"Donation with ID {donation_id} does not exist")
    return donation


@app.patch("/donations/{donation_id}", response_model=dict)
async def update_donation(donation_id: str, donation: DonationUpdate, _admin: dict = Depends(require_admin)):
    return donation_service.update_donation(donation_id, donation)


@app.delete("/donations/{donation_id}", status_code=204)
async def delete_donation(donation_id: str, _admin: dict = Depends(require_admin)):
    donation_service.delete_donation(donation_id)


# ===== Volunteers =====
@app.post("/volunteers", response_model=dict, status_code=201)
async def create_volunteer(volunteer: VolunteerCreate, _admin: dict = Depends(require_admin)):
    return volunteer_service.create_volunteer(volunteer)


@app.get("/volunteers", response_model=List[dict])
async def list_volunteers(_admin: dict = Depends(require_admin)):
    return volunteer_service.get_all_volunteers()


@app.get("/volunteers/{volunteer_id}", response_model=dict)
async def get_volunteer(volunteer_id: str, _admin: dict = Depends(require_admin)):
    volunteer = volunteer_service.get_volunteer_by_id(volunteer_id)
    if volunteer is None:
        raise NotFoundError(f"Volunteer with ID {volunteer_id} does not exist")
    return volunteer


@app.patch("/volunteers/{volunteer_id}", response_model=dict)
async def update_volunteer(volunteer_id: str, volunteer: VolunteerUpdate, _admin: dict = Depends(require_admin)):
    return volunteer_service.update_volunteer(volunteer_id, volunteer)


@app.delete("/volunteers/{volunteer_id}", status_code=204)
async def delete_volunteer(volunteer_id: str, _admin: dict = Depends(require_admin)):
    volunteer_service.delete_volunteer(volunteer_id)


# ===== Analytics & Reports =====
@app.get("/analytics/summary", response_model=dict)
async def analytics_summary(_admin: dict = Depends(require_admin)):
    return analytics_service.dashboard_summary()


@app.get("/analytics/donors", response_model=dict)
async def analytics_donors(_admin: dict = Depends(require_admin)):
    return analytics_service.donor_statistics()


@app.get("/reports/{report_type}")
async def download_report(report_type: str, date_range: str = "last30days",
                          _admin: dict = Depends(require_admin)):
    report = report_service.generate_report(report_type, date_range)
    content = report.to_xlsx()
    return Response(
        content=content,
        media_type=report_service.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={report.filename}"},
    )


# ===== Developer data seeding =====
@app.post("/dev/seed/programs", response_model=dict)
async def seed_programs(_admin: dict = Depends(require_dev_admin)):
    return seed.add_mock_programs()


@app.post("/dev/seed/donations", response_model=dict)
async def seed_donations(_admin: dict = Depends(require_dev_admin)):
    return seed.add_mock_donations()


@app.post("/dev/seed/volunteers", response_model=dict)
async def seed_volunteers(_admin: dict = Depends(require_dev_admin)):
    return seed.add_mock_volunteers()


@app.post("/dev/featured", response_model=dict)
async def seed_featured(_admin: dict = Depends(require_dev_admin)):
    return seed.update_featured_programs()


@app.post("/dev/recompute", response_model=dict)
async def recompute_aggregates(_admin: dict = Depends(require_dev_admin)):
    return {"success": True, "programs": seed.recompute_all()}


@app.delete("/dev/data", response_model=dict)
async def clear_data(_admin: dict = Depends(require_dev_admin)):
    return seed.clear_all_data()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

from __future__ import annotations

from typing import Any

from aws_lambda_powertools import Logger
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from minibus import access_log, authentication, bookings, issues, maintenance, notifier, users
from minibus.auth import current_claims, current_user, require_admin
from minibus.config import CORS_ORIGIN
from minibus.errors import BookingAppError, OverlapConflict
from minibus.models import (
    AccessLogEntry,
    Booking,
    BookingCreate,
    BookingCreated,
    EmailCheck,
    Issue,
    IssueCreate,
    IssueCreated,
    IssueUpdate,
    LoginResult,
    MaintenanceItem,
    MaintenanceUpdate,
    Message,
    PinRequest,
    PinValidate,
    TokenClaims,
    User,
    UserCreate,
    UserCreated,
    UserSummary,
)

logger = Logger()
metrics = Metrics(namespace="MinibusBooking")

app = FastAPI(title="Minibus Booking API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(BookingAppError)
def handle_app_error(request: Request, exc: BookingAppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.exception("Request failed", extra={"path": request.url.path})
    body: dict[str, str] = {"detail": exc.message}
    headers = None
    if exc.code:
        body["code"] = exc.code
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Missing or invalid fields", "fields": fields})


@app.exception_handler(ClientError)
@app.exception_handler(BotoCoreError)
def handle_store_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Data store failure", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _client_ip(request: Request) -> str | None:
    # Mangum exposes the API Gateway event; X-Forwarded-For is client-supplied
    event = request.scope.get("aws.event") or {}
    source_ip = event.get("requestContext", {}).get("http", {}).get("sourceIp")
    if source_ip:
        return str(source_ip)
    return request.client.host if request.client else None


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Bookings

@app.get("/bookings", response_model=list[Booking])
def list_bookings() -> list[Booking]:
    return bookings.list_bookings()


@app.get("/bookings/{booking_id}", response_model=Booking)
def get_booking(booking_id: int) -> Booking:
    return bookings.get_booking(booking_id)


@app.post("/bookings", response_model=BookingCreated, status_code=201)
def create_booking(
    payload: BookingCreate,
    background: BackgroundTasks,
    claims: TokenClaims = Depends(current_claims),
) -> BookingCreated:
    try:
        booking = bookings.create_booking(claims.phone, payload, background)
    except OverlapConflict:
        metrics.add_metric(name="BookingRejected", value=1, unit=MetricUnit.Count)
        raise
    metrics.add_metric(name="BookingCreated", value=1, unit=MetricUnit.Count)
    return BookingCreated(id=booking.booking_id)


@app.delete("/bookings/{booking_id}", response_model=Message)
def cancel_booking(
    booking_id: int,
    background: BackgroundTasks,
    claims: TokenClaims = Depends(current_claims),
) -> Message:
    bookings.cancel_booking(booking_id, claims.phone, background)
    metrics.add_metric(name="BookingCancelled", value=1, unit=MetricUnit.Count)
    return Message(message="Booking cancelled")


# PIN sign-in

@app.post("/pin/request-pin", response_model=Message)
def request_pin(payload: PinRequest, background: BackgroundTasks) -> Message:
    authentication.request_pin(payload.phone, background, channel="sms")
    metrics.add_metric(name="PinRequested", value=1, unit=MetricUnit.Count)
    return Message(message="PIN sent successfully")


@app.post("/pin/check-email", response_model=EmailCheck)
def check_email(payload: PinRequest) -> EmailCheck:
    return EmailCheck(has_email=authentication.check_email(payload.phone))


@app.post("/pin/request-pin-email", response_model=Message)
def request_pin_email(payload: PinRequest, background: BackgroundTasks) -> Message:
    authentication.request_pin(payload.phone, background, channel="email")
    metrics.add_metric(name="PinRequested", value=1, unit=MetricUnit.Count)
    return Message(message="PIN sent to email successfully")


@app.post("/pincheck/validate-pin", response_model=LoginResult)
def validate_pin(payload: PinValidate, request: Request, background: BackgroundTasks) -> LoginResult:
    try:
        result = authentication.validate_pin(
            payload.phone,
            payload.pin,
            background,
            ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except BookingAppError:
        metrics.add_metric(name="PinRejected", value=1, unit=MetricUnit.Count)
        raise
    metrics.add_metric(name="PinValidated", value=1, unit=MetricUnit.Count)
    return result


@app.get("/auth/user-details")
def user_details(user: User = Depends(current_user)) -> dict[str, User]:
    return {"user": user}


# Users

@app.get("/users", response_model=None)
def list_users(user: User = Depends(current_user)) -> list[dict[str, Any]]:
    # Only administrators get contact details
    everyone = users.list_users()
    if user.role == "admin":
        return [u.model_dump(mode="json") for u in everyone]
    return [UserSummary(id=u.id, name=u.name).model_dump() for u in everyone]


@app.post("/users", response_model=UserCreated, status_code=201)
def create_user(
    payload: UserCreate,
    background: BackgroundTasks,
    admin: User = Depends(require_admin),
) -> UserCreated:
    created = users.create_user(payload)
    if created.email:
        background.add_task(notifier.notify_welcome, created)
    return UserCreated(id=created.id)


@app.delete("/users/{user_id}", response_model=Message)
def delete_user(user_id: int, admin: User = Depends(require_admin)) -> Message:
    users.delete_user(user_id)
    return Message(message="User deleted")


@app.get("/admin/access-logs")
def access_logs(admin: User = Depends(require_admin)) -> dict[str, list[AccessLogEntry]]:
    return {"logs": access_log.recent_logins()}


# Issues

@app.get("/issues", response_model=list[Issue])
def list_issues(user: User = Depends(current_user)) -> list[Issue]:
    return issues.list_issues()


@app.post("/issues", response_model=IssueCreated, status_code=201)
def report_issue(
    payload: IssueCreate,
    background: BackgroundTasks,
    user: User = Depends(current_user),
) -> IssueCreated:
    issue = issues.report_issue(user, payload, background)
    metrics.add_metric(name="IssueReported", value=1, unit=MetricUnit.Count)
    return IssueCreated(id=issue.id)


@app.patch("/issues/{issue_id}", response_model=Message)
def update_issue(
    issue_id: int,
    payload: IssueUpdate,
    background: BackgroundTasks,
    admin: User = Depends(require_admin),
) -> Message:
    issues.update_issue(issue_id, payload, admin, background)
    return Message(message="Issue status updated")


@app.delete("/issues/{issue_id}", response_model=Message)
def delete_issue(issue_id: int, admin: User = Depends(require_admin)) -> Message:
    issues.delete_issue(issue_id)
    return Message(message="Issue deleted")


# Maintenance

@app.get("/maintenance/status", response_model=list[MaintenanceItem])
def maintenance_status() -> list[MaintenanceItem]:
    return maintenance.maintenance_status()


@app.api_route("/maintenance/update", methods=["POST", "PATCH"], response_model=Message)
def update_maintenance(payload: MaintenanceUpdate, admin: User = Depends(require_admin)) -> Message:
    maintenance.update_expiry(payload.type, payload.expiry_date, admin)
    return Message(message="Maintenance information updated")

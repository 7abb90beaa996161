import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from config import settings
from domain import (
    DoctorNotFound,
    QueueError,
    SessionMode,
    TokenEngine,
    TokenNotFound,
    TokenStatus,
)
from store import PersistenceError, StateStore

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, docs_url=None)
engine = TokenEngine(StateStore(settings.DATA_FILE or None))


class CreateDoctorRequest(BaseModel):
    name: str
    mode: SessionMode
    session_name: str = ""
    limit: Optional[int] = Field(default=None, ge=0)  # count mode
    start_time: Optional[str] = None  # e.g. "09:00"
    end_time: Optional[str] = None
    avg_time: Optional[int] = Field(default=None, gt=0)
    buffer_time: Optional[int] = Field(default=None, ge=0)


class DoctorResponse(BaseModel):
    id: int
    name: str
    session_name: str
    mode: SessionMode
    max_patients: int
    start_time: str
    end_time: str
    avg_time: int
    buffer_time: int
    active: bool


class BookConsultationRequest(BaseModel):
    name: str
    doctor_id: Optional[int] = None


class BookTicketRequest(BaseModel):
    name: str


class BookingResponse(BaseModel):
    id: int
    name: str
    doctor_id: int
    doctor_name: str
    status: TokenStatus
    booking_time: str
    estimated_slot: Optional[str] = None
    arrival_value: Optional[int] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None


class TicketResponse(BaseModel):
    id: int
    name: str
    queue_type: str
    status: TokenStatus
    booking_time: str


class DoctorStatsResponse(BaseModel):
    name: str
    session_name: str
    max_patients: int
    completed: int
    no_show: int
    allocated_count: int
    waiting_count: int
    patients: List[BookingResponse]
    mode: SessionMode
    start_time: str
    avg_time: int
    buffer_time: int


class QueueStatsResponse(BaseModel):
    current: int
    last: int
    tickets: List[TicketResponse]
    waiting: int


class SessionResponse(BaseModel):
    token: int
    name: str
    queue_type: str
    doctor_id: Optional[int] = None


def to_doctor_response(d) -> DoctorResponse:
    return DoctorResponse(
        id=d.id,
        name=d.name,
        session_name=d.session_name,
        mode=d.mode,
        max_patients=d.max_patients,
        start_time=d.start_time,
        end_time=d.end_time,
        avg_time=d.avg_time,
        buffer_time=d.buffer_time,
        active=d.active,
    )


def to_booking_response(b) -> BookingResponse:
    return BookingResponse(
        id=b.id,
        name=b.name,
        doctor_id=b.doctor_id,
        doctor_name=b.doctor_name,
        status=b.status,
        booking_time=b.booking_time,
        estimated_slot=b.estimated_slot,
        arrival_value=b.arrival_value,
        completed_at=b.completed_at,
        cancelled_at=b.cancelled_at,
    )


def to_ticket_response(t) -> TicketResponse:
    return TicketResponse(
        id=t.id,
        name=t.name,
        queue_type=t.queue_type,
        status=t.status,
        booking_time=t.booking_time,
    )


def http_error(exc: QueueError) -> HTTPException:
    status_code = 404 if isinstance(exc, (DoctorNotFound, TokenNotFound)) else 400
    return HTTPException(status_code=status_code, detail=str(exc))


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# --- Doctors ---


@app.post("/doctors", response_model=DoctorResponse)
def create_doctor(body: CreateDoctorRequest) -> DoctorResponse:
    try:
        doctor = engine.create_doctor(
            name=body.name,
            mode=body.mode,
            limit=body.limit,
            start_time=body.start_time,
            end_time=body.end_time,
            avg_time=body.avg_time,
            buffer_time=body.buffer_time,
            session_name=body.session_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_doctor_response(doctor)


@app.get("/doctors", response_model=List[DoctorResponse])
def list_doctors() -> List[DoctorResponse]:
    return [to_doctor_response(d) for d in engine.list_doctors()]


@app.delete("/doctors/{doctor_id}")
def delete_doctor(doctor_id: int) -> dict:
    try:
        engine.delete_doctor(doctor_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return {"detail": f"Doctor {doctor_id} deleted"}


@app.get("/doctors/{doctor_id}/stats", response_model=DoctorStatsResponse)
def get_doctor_stats(doctor_id: int) -> DoctorStatsResponse:
    stats = engine.get_doctor_stats(doctor_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Doctor {doctor_id} not found")
    return DoctorStatsResponse(
        **{**stats, "patients": [to_booking_response(p) for p in stats["patients"]]}
    )


# --- Consultation bookings ---


@app.post("/consultations/book", response_model=BookingResponse)
def book_consultation(body: BookConsultationRequest) -> BookingResponse:
    try:
        booking = engine.book_consultation(name=body.name, doctor_id=body.doctor_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_booking_response(booking)


@app.post("/doctors/{doctor_id}/tokens/{token_id}/complete", response_model=BookingResponse)
def mark_completed(doctor_id: int, token_id: int) -> BookingResponse:
    try:
        booking = engine.mark_completed(doctor_id, token_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_booking_response(booking)


@app.post("/doctors/{doctor_id}/tokens/{token_id}/no-show", response_model=BookingResponse)
def mark_no_show(doctor_id: int, token_id: int) -> BookingResponse:
    try:
        booking = engine.mark_no_show(doctor_id, token_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_booking_response(booking)


@app.post("/doctors/{doctor_id}/tokens/{token_id}/cancel", response_model=BookingResponse)
def cancel_token(doctor_id: int, token_id: int) -> BookingResponse:
    try:
        booking = engine.cancel(doctor_id, token_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_booking_response(booking)


@app.post("/doctors/{doctor_id}/tokens/{token_id}/leave", response_model=BookingResponse)
def leave_queue(doctor_id: int, token_id: int) -> BookingResponse:
    try:
        booking = engine.leave_queue(doctor_id, token_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_booking_response(booking)


# --- Pharmacy / billing counters ---


@app.post("/queues/{queue_type}/book", response_model=TicketResponse)
def book_ticket(queue_type: str, body: BookTicketRequest) -> TicketResponse:
    if queue_type.lower() == "consultation":
        raise HTTPException(status_code=400, detail="Use /consultations/book for doctor queues")
    try:
        ticket = engine.book_token(name=body.name, queue_type=queue_type)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_ticket_response(ticket)


@app.post("/queues/{queue_type}/advance", response_model=Optional[TicketResponse])
def advance_queue(queue_type: str) -> Optional[TicketResponse]:
    try:
        ticket = engine.advance_queue(queue_type)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_ticket_response(ticket) if ticket else None


@app.get("/queues/{queue_type}", response_model=QueueStatsResponse)
def get_queue_stats(queue_type: str) -> QueueStatsResponse:
    try:
        stats = engine.get_queue_stats(queue_type)
    except QueueError as exc:
        raise http_error(exc) from exc
    return QueueStatsResponse(
        **{**stats, "tickets": [to_ticket_response(t) for t in stats["tickets"]]}
    )


# --- Session & admin ---


@app.get("/session", response_model=Optional[SessionResponse])
def get_session() -> Optional[SessionResponse]:
    session = engine.sessions.current()
    if session is None:
        return None
    return SessionResponse(
        token=session.token,
        name=session.name,
        queue_type=session.queue_type,
        doctor_id=session.doctor_id,
    )


@app.post("/admin/reset")
def reset_all() -> dict:
    """Clear every doctor, queue and the user session."""
    engine.reset()
    return {"detail": "State cleared"}


@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui() -> object:
    """
    Serve Swagger UI with the project name as page title.
    Also hides version/OAS badges.
    """
    resp = get_swagger_ui_html(
        openapi_url=app.openapi_url,
        title=settings.PROJECT_NAME,
    )
    html = resp.body.decode("utf-8")
    css = """
<style>
  .swagger-ui .info .title small { display: none !important; }
  .swagger-ui .info .title .version-stamp { display: none !important; }
</style>
""".strip()
    html = html.replace("</head>", f"{css}</head>", 1)
    headers = dict(resp.headers)
    headers.pop("content-length", None)
    return HTMLResponse(html, status_code=resp.status_code, headers=headers)

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from config import settings

logger = logging.getLogger(__name__)


class SessionMode(str, Enum):
    COUNT = "count"
    TIME = "time"


class TokenStatus(str, Enum):
    PENDING = "pending"
    ALLOCATED = "allocated"
    WAITING = "waiting"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


TERMINAL_STATUSES = frozenset({TokenStatus.COMPLETED, TokenStatus.NO_SHOW})

CONSULTATION = "consultation"
SERVICE_QUEUE_TYPES = ("pharmacy", "billing")

WAITING_LIST_LABEL = "Waiting List"
# Sorts after any real arrival minute.
WAITING_ARRIVAL = 999999


# --- Errors ---


class QueueError(ValueError):
    code = "queue_error"
    default_message = "Queue operation failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class NoActiveDoctor(QueueError):
    code = "no_active_doctor"
    default_message = "No active doctors available."


class DoctorNotFound(QueueError):
    code = "doctor_not_found"
    default_message = "Doctor not found"


class SessionComplete(QueueError):
    code = "session_complete"
    default_message = "Session completed. Sorry, book next time."


class WaitingListFull(QueueError):
    code = "waiting_list_full"
    default_message = "Waiting list is full. Sorry, book next time."


class QueueTypeInvalid(QueueError):
    code = "queue_type_invalid"
    default_message = "Queue type invalid"


class TokenNotFound(QueueError):
    code = "token_not_found"
    default_message = "Token not found"


# --- Time helpers ---


def time_to_minutes(time_str: Optional[str]) -> int:
    """Convert an ``HH:MM`` clock string to minutes since midnight."""
    if not time_str:
        return 0
    try:
        hours, minutes = (int(part) for part in time_str.split(":"))
    except ValueError as exc:
        raise ValueError(f"Invalid clock time {time_str!r}, expected HH:MM") from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Clock time {time_str!r} out of range")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """
    Format minutes since midnight as a 12-hour clock string, e.g. ``9:05 AM``.

    Hours wrap modulo 24, so values past midnight (1440 and up) come back as
    early-morning times of the same day. Only meaningful inside one day.
    """
    hours = (minutes // 60) % 24
    mins = minutes % 60
    suffix = "PM" if hours >= 12 else "AM"
    return f"{hours % 12 or 12}:{mins:02d} {suffix}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Data model ---


@dataclass
class DoctorStats:
    completed: int = 0
    no_show: int = 0


@dataclass
class Booking:
    id: int
    name: str
    doctor_id: int
    doctor_name: str
    status: TokenStatus = TokenStatus.PENDING
    booking_time: str = field(default_factory=_now)
    estimated_slot: Optional[str] = None
    arrival_value: Optional[int] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_dict(cls, data: Dict) -> "Booking":
        return cls(**{**data, "status": TokenStatus(data["status"])})


@dataclass
class Doctor:
    id: int
    name: str
    mode: SessionMode
    max_patients: int
    start_time: str
    end_time: str
    avg_time: int
    buffer_time: int
    session_name: str = ""
    active: bool = True
    patients: List[Booking] = field(default_factory=list)
    stats: DoctorStats = field(default_factory=DoctorStats)

    @property
    def step(self) -> int:
        return self.avg_time + self.buffer_time

    def count(self, status: TokenStatus) -> int:
        return sum(1 for p in self.patients if p.status == status)

    def find_token(self, token_id: int) -> Booking:
        for booking in self.patients:
            if booking.id == token_id:
                return booking
        raise TokenNotFound(f"Token {token_id} not found for doctor {self.id}")

    @classmethod
    def from_dict(cls, data: Dict) -> "Doctor":
        return cls(
            **{
                **data,
                "mode": SessionMode(data["mode"]),
                "patients": [Booking.from_dict(p) for p in data.get("patients", [])],
                "stats": DoctorStats(**data.get("stats", {})),
            }
        )


@dataclass
class Ticket:
    id: int
    name: str
    queue_type: str
    status: TokenStatus = TokenStatus.WAITING
    booking_time: str = field(default_factory=_now)


@dataclass
class ServiceQueue:
    current: int = 0
    last: int = 0
    tickets: List[Ticket] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "ServiceQueue":
        tickets = [
            Ticket(**{**t, "status": TokenStatus(t["status"])})
            for t in data.get("tickets", [])
        ]
        return cls(current=data.get("current", 0), last=data.get("last", 0), tickets=tickets)


def _empty_queues() -> Dict[str, ServiceQueue]:
    return {queue_type: ServiceQueue() for queue_type in SERVICE_QUEUE_TYPES}


@dataclass
class FacilityState:
    """Everything the engine persists, as one blob."""

    doctors: List[Doctor] = field(default_factory=list)
    queues: Dict[str, ServiceQueue] = field(default_factory=_empty_queues)
    next_doctor_id: int = 1

    def find_doctor(self, doctor_id: int) -> Optional[Doctor]:
        for doctor in self.doctors:
            if doctor.id == doctor_id:
                return doctor
        return None

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.find_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound(f"Doctor {doctor_id} not found")
        return doctor

    def active_doctors(self) -> List[Doctor]:
        return [d for d in self.doctors if d.active]

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "FacilityState":
        queues = _empty_queues()
        for queue_type, raw in data.get("queues", {}).items():
            queues[queue_type] = ServiceQueue.from_dict(raw)
        return cls(
            doctors=[Doctor.from_dict(d) for d in data.get("doctors", [])],
            queues=queues,
            next_doctor_id=data.get("next_doctor_id", 1),
        )


@dataclass
class UserSession:
    token: int
    name: str
    queue_type: str
    doctor_id: Optional[int] = None


class UserSessionStore:
    """Holds the token the current user booked last."""

    def __init__(self) -> None:
        self._session: Optional[UserSession] = None

    def remember(self, session: UserSession) -> None:
        self._session = session

    def current(self) -> Optional[UserSession]:
        return self._session

    def clear(self) -> None:
        self._session = None


# --- Allocation ---


def compute_max_patients(
    mode: SessionMode,
    limit: Optional[int],
    start_time: Optional[str],
    end_time: Optional[str],
    step: int,
) -> int:
    if mode == SessionMode.COUNT:
        return max(limit or 0, 0)
    if not start_time or not end_time:
        return 0
    duration = time_to_minutes(end_time) - time_to_minutes(start_time)
    if duration <= 0 or step <= 0:
        return 0
    return duration // step


def recalculate_queue(doctor: Doctor) -> None:
    """
    Re-derive allocated/waiting status and arrival estimates for every
    non-terminal token of ``doctor``.

    Capacity left for allocation is ``max_patients - completed``. Active
    tokens are walked in booking order; the first ones fill that capacity and
    the rest wait. Arrival slots continue after the completed patients, so
    completing one patient frees one allocation slot and nothing more.
    """
    completed = doctor.count(TokenStatus.COMPLETED)
    doctor.stats.completed = completed
    doctor.stats.no_show = doctor.count(TokenStatus.NO_SHOW)

    allowed_allocated = doctor.max_patients - completed
    start_minutes = time_to_minutes(doctor.start_time)

    allocated = 0
    for booking in doctor.patients:
        if booking.is_terminal:
            continue
        if allocated < allowed_allocated:
            arrival = start_minutes + (allocated + completed) * doctor.step
            booking.status = TokenStatus.ALLOCATED
            booking.estimated_slot = minutes_to_time(arrival)
            booking.arrival_value = arrival
            allocated += 1
        else:
            booking.status = TokenStatus.WAITING
            booking.estimated_slot = WAITING_LIST_LABEL
            booking.arrival_value = WAITING_ARRIVAL


# --- Engine ---


class TokenEngine:
    """
    Facility queue engine.

    Responsibilities:
    - Keeps the doctor registry (create, list active, delete).
    - Admits consultation bookings against session capacity and the waiting cap.
    - Recomputes allocated/waiting status after every change to a patient list.
    - Applies completion, no-show and cancel transitions.
    - Runs the plain counter queues for pharmacy and billing.

    Every operation opens a transaction on ``store`` (see ``store.StateStore``),
    so a failed operation leaves the persisted state untouched.
    """

    def __init__(
        self,
        store,
        sessions: Optional[UserSessionStore] = None,
        waiting_list_cap: Optional[int] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions if sessions is not None else UserSessionStore()
        self.waiting_list_cap = (
            waiting_list_cap if waiting_list_cap is not None else settings.WAITING_LIST_CAP
        )

    def reset(self) -> None:
        with self.store.transaction() as state:
            state.doctors.clear()
            state.queues.clear()
            state.queues.update(_empty_queues())
            state.next_doctor_id = 1
        self.sessions.clear()
        logger.info("System reset")

    # --- Doctor registry ---

    def create_doctor(
        self,
        name: str,
        mode: Union[SessionMode, str],
        limit: Optional[int] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        avg_time: Optional[int] = None,
        buffer_time: Optional[int] = None,
        session_name: str = "",
    ) -> Doctor:
        mode = SessionMode(mode)
        avg_time = avg_time if avg_time and avg_time > 0 else settings.DEFAULT_AVG_TIME
        buffer_time = buffer_time if buffer_time and buffer_time > 0 else settings.DEFAULT_BUFFER_TIME
        # A time-mode window needs both ends; a missing one means no capacity.
        max_patients = compute_max_patients(
            mode, limit, start_time, end_time, avg_time + buffer_time
        )
        start_time = start_time or settings.DEFAULT_START_TIME
        end_time = end_time or settings.DEFAULT_END_TIME
        # Arrival estimates parse both, whatever the mode.
        time_to_minutes(start_time)
        time_to_minutes(end_time)

        with self.store.transaction() as state:
            doctor = Doctor(
                id=state.next_doctor_id,
                name=name,
                session_name=session_name,
                mode=mode,
                max_patients=max_patients,
                start_time=start_time,
                end_time=end_time,
                avg_time=avg_time,
                buffer_time=buffer_time,
            )
            state.next_doctor_id += 1
            state.doctors.append(doctor)

        logger.info(
            f"Doctor {doctor.id} ({doctor.name}) created in {mode.value} mode "
            f"with {doctor.max_patients} slots"
        )
        return doctor

    def list_doctors(self) -> List[Doctor]:
        return self.store.snapshot().active_doctors()

    def get_doctor(self, doctor_id: int) -> Doctor:
        return self.store.snapshot().get_doctor(doctor_id)

    def delete_doctor(self, doctor_id: int) -> None:
        with self.store.transaction() as state:
            state.doctors.remove(state.get_doctor(doctor_id))
        logger.info(f"Doctor {doctor_id} deleted")

    # --- Booking ---

    def book_token(
        self,
        name: str,
        queue_type: str,
        doctor_id: Optional[int] = None,
    ) -> Union[Booking, Ticket]:
        queue_type = queue_type.lower()
        if queue_type == CONSULTATION:
            return self.book_consultation(name, doctor_id)

        with self.store.transaction() as state:
            queue = state.queues.get(queue_type)
            if queue is None:
                raise QueueTypeInvalid(f"Queue type {queue_type!r} invalid")
            queue.last += 1
            ticket = Ticket(id=queue.last, name=name, queue_type=queue_type)
            queue.tickets.append(ticket)

        self.sessions.remember(UserSession(token=ticket.id, name=name, queue_type=queue_type))
        logger.info(f"Ticket {ticket.id} issued on {queue_type} queue")
        return ticket

    def book_consultation(self, name: str, doctor_id: Optional[int] = None) -> Booking:
        with self.store.transaction() as state:
            if doctor_id is None:
                active = state.active_doctors()
                if not active:
                    raise NoActiveDoctor()
                doctor_id = active[0].id

            doctor = state.get_doctor(doctor_id)

            if doctor.stats.completed >= doctor.max_patients:
                raise SessionComplete()
            if doctor.count(TokenStatus.WAITING) >= self.waiting_list_cap:
                raise WaitingListFull()

            booking = Booking(
                id=len(doctor.patients) + 1,
                name=name,
                doctor_id=doctor.id,
                doctor_name=doctor.name,
            )
            doctor.patients.append(booking)
            recalculate_queue(doctor)

        self.sessions.remember(
            UserSession(token=booking.id, name=name, queue_type=CONSULTATION, doctor_id=doctor_id)
        )
        logger.info(
            f"Token {booking.id} booked with doctor {doctor_id}: "
            f"{booking.status.value} ({booking.estimated_slot})"
        )
        return booking

    def recompute(self, doctor_id: int) -> Doctor:
        with self.store.transaction() as state:
            doctor = state.get_doctor(doctor_id)
            recalculate_queue(doctor)
        return doctor

    # --- Status transitions ---

    def _transition(self, doctor_id: int, token_id: int, status: TokenStatus) -> Booking:
        with self.store.transaction() as state:
            doctor = state.get_doctor(doctor_id)
            booking = doctor.find_token(token_id)
            if booking.is_terminal:
                logger.debug(
                    f"Token {token_id} of doctor {doctor_id} already {booking.status.value}"
                )
                return booking

            booking.status = status
            if status == TokenStatus.COMPLETED:
                booking.completed_at = _now()
            else:
                booking.cancelled_at = _now()
            recalculate_queue(doctor)

        logger.info(f"Token {token_id} of doctor {doctor_id} marked {status.value}")
        return booking

    def mark_completed(self, doctor_id: int, token_id: int) -> Booking:
        return self._transition(doctor_id, token_id, TokenStatus.COMPLETED)

    def mark_no_show(self, doctor_id: int, token_id: int) -> Booking:
        return self._transition(doctor_id, token_id, TokenStatus.NO_SHOW)

    def cancel(self, doctor_id: int, token_id: int) -> Booking:
        """Patient-initiated cancel; recorded the same way as a no-show."""
        return self.mark_no_show(doctor_id, token_id)

    def leave_queue(self, doctor_id: int, token_id: int) -> Booking:
        booking = self.mark_no_show(doctor_id, token_id)
        self.sessions.clear()
        return booking

    # --- Stats & service queues ---

    def get_doctor_stats(self, doctor_id: int) -> Optional[Dict]:
        doctor = self.store.snapshot().find_doctor(doctor_id)
        if doctor is None:
            return None

        return {
            "name": doctor.name,
            "session_name": doctor.session_name,
            "max_patients": doctor.max_patients,
            "completed": doctor.stats.completed,
            "no_show": doctor.stats.no_show,
            "allocated_count": doctor.count(TokenStatus.ALLOCATED),
            "waiting_count": doctor.count(TokenStatus.WAITING),
            "patients": doctor.patients,
            "mode": doctor.mode,
            "start_time": doctor.start_time,
            "avg_time": doctor.avg_time,
            "buffer_time": doctor.buffer_time,
        }

    def get_queue_stats(self, queue_type: str) -> Dict:
        queue = self.store.snapshot().queues.get(queue_type.lower())
        if queue is None:
            raise QueueTypeInvalid(f"Queue type {queue_type!r} invalid")
        return {
            "current": queue.current,
            "last": queue.last,
            "tickets": queue.tickets,
            "waiting": sum(1 for t in queue.tickets if t.status == TokenStatus.WAITING),
        }

    def advance_queue(self, queue_type: str) -> Optional[Ticket]:
        """Call the next ticket; returns it, or None when nobody is left."""
        with self.store.transaction() as state:
            queue = state.queues.get(queue_type.lower())
            if queue is None:
                raise QueueTypeInvalid(f"Queue type {queue_type!r} invalid")
            if queue.current >= queue.last:
                return None
            queue.current += 1
            ticket = next((t for t in queue.tickets if t.id == queue.current), None)
            if ticket is not None:
                ticket.status = TokenStatus.COMPLETED
        return ticket

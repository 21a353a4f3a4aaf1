"""Modelos de dominio persistidos (independientes del backend de almacenamiento)"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationMethod(str, Enum):
    """Cómo llegó el token al scanner"""
    QR_SCAN = "qr_scan"
    MANUAL = "manual"


class TicketRecord(BaseModel):
    """Registro de inscripción / ticket"""
    id: str
    ticket_id: str
    event_id: str
    name: str
    email: str
    phone: Optional[str] = None
    time_slot: Optional[str] = None
    token: str
    ticket_sent: bool = False
    registered_at: datetime = Field(default_factory=utcnow)

    # Se completan una sola vez, al hacer check-in
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    checked_in_location: Optional[str] = None
    verification_method: Optional[VerificationMethod] = None


class CheckInStamp(BaseModel):
    """Campos escritos por el check-in"""
    checked_in_at: datetime
    checked_in_by: str
    checked_in_location: Optional[str] = None
    verification_method: VerificationMethod = VerificationMethod.QR_SCAN


class EventRecord(BaseModel):
    id: str
    title: str
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = None
    available_tickets: int = 0
    registrations: int = 0
    time_slots: List[str] = []


class StoreChange(BaseModel):
    """Notificación push de un cambio en los datos de un evento"""
    kind: str  # registration, check_in
    event_id: str
    record_id: str
    ticket_id: str
    at: datetime = Field(default_factory=utcnow)

"""Modelos Pydantic para inscripción de asistentes"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class RegistrationRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str = Field(..., min_length=1)
    time_slot: Optional[str] = None


class RegistrationResponse(BaseModel):
    id: str
    event_id: str
    ticket_number: str
    verification_qr: str  # Token a mostrar como QR
    time_slot: Optional[str] = None
    registered_at: datetime
    ticket_sent: bool

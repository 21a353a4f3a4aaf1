"""Modelos Pydantic para emisión, verificación y check-in de tickets"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from shared.tickets.records import VerificationMethod
from shared.tickets.token import TicketToken


class VerificationOutcome(str, Enum):
    """Resultado de la verificación local (sin store)"""
    VALID = "VALID"
    INVALID_FORMAT = "INVALID_FORMAT"
    WRONG_EVENT = "WRONG_EVENT"
    EXPIRED = "EXPIRED"


class CheckInStatus(str, Enum):
    APPROVED = "APPROVED"
    INVALID_FORMAT = "INVALID_FORMAT"
    WRONG_EVENT = "WRONG_EVENT"
    EXPIRED = "EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    STORE_ERROR = "STORE_ERROR"


# Advertencia blanda: nunca convierte un APPROVED en rechazo
NOTIFY_FAILED = "NOTIFY_FAILED"


class IssuedTicket(BaseModel):
    ticket_id: str
    token: TicketToken
    token_string: str


class VerificationResult(BaseModel):
    outcome: VerificationOutcome
    message: str
    token: Optional[TicketToken] = None

    @property
    def valid(self) -> bool:
        return self.outcome == VerificationOutcome.VALID


class OperatorIdentity(BaseModel):
    """Quién está escaneando; se pasa explícitamente al coordinador"""
    user_id: str
    email: Optional[str] = None
    role: str = "scanner"


class CheckInResult(BaseModel):
    status: CheckInStatus
    message: str
    ticket_id: Optional[str] = None
    event_id: Optional[str] = None

    # Datos del asistente (solo si se encontró el registro)
    attendee_name: Optional[str] = None
    ticket_number: Optional[str] = None
    time_slot: Optional[str] = None

    # En ALREADY_USED es el check-in original
    checked_in_at: Optional[datetime] = None
    email_sent: bool = False
    warnings: List[str] = []

    @property
    def approved(self) -> bool:
        return self.status == CheckInStatus.APPROVED

    @property
    def retryable(self) -> bool:
        """Solo los fallos de transporte tienen sentido reintentarlos"""
        return self.status == CheckInStatus.STORE_ERROR


class TicketVerificationRequest(BaseModel):
    token: str = Field(..., description="Token escaneado o pegado a mano")
    event_id: str


class TicketVerificationResponse(BaseModel):
    valid: bool
    outcome: VerificationOutcome
    message: str
    ticket_id: Optional[str] = None
    event_id: Optional[str] = None
    holder_email: Optional[str] = None
    issued_at_millis: Optional[int] = None


class CheckInRequest(BaseModel):
    token: str = Field(..., description="Token escaneado o pegado a mano")
    event_id: str
    location: Optional[str] = Field(None, description="Puerta o punto de acceso")
    method: VerificationMethod = VerificationMethod.QR_SCAN


class CheckInResponse(BaseModel):
    approved: bool
    status: CheckInStatus
    message: str
    ticket_id: Optional[str] = None
    attendee_name: Optional[str] = None
    ticket_number: Optional[str] = None
    time_slot: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    email_sent: bool = False
    warnings: List[str] = []


class CheckInSummary(BaseModel):
    event_id: str
    title: str
    registrations: int
    available_tickets: int
    checked_in: int

"""Emisión de tickets: ID único + token de verificación"""
import secrets
import string
import time
from typing import Optional

from app.core.config import settings
from services.ticket_validation.models.ticket import IssuedTicket
from shared.tickets.token import TICKET_VERIFICATION, TicketToken, TokenCodec

BASE36_ALPHABET = string.digits + string.ascii_uppercase

# 36^8 ≈ 2.8e12 combinaciones por milisegundo
RANDOM_PART_LENGTH = 8


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("valor negativo")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def now_millis() -> int:
    return time.time_ns() // 1_000_000


class TicketIssuer:
    """Genera ticket_id y el token que se imprime en el QR"""

    def __init__(self, codec: Optional[TokenCodec] = None, prefix: Optional[str] = None):
        self.codec = codec or TokenCodec()
        self.prefix = prefix or settings.TICKET_ID_PREFIX

    def generate_ticket_id(self, issued_at_millis: int) -> str:
        """Formato TKT-<millis base36>-<aleatorio base36>, en mayúsculas"""
        random_part = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(RANDOM_PART_LENGTH))
        return f"{self.prefix}-{to_base36(issued_at_millis)}-{random_part}".upper()

    def issue(self, event_id: str, holder_email: str, issued_at_millis: Optional[int] = None) -> IssuedTicket:
        """
        Emitir un ticket nuevo. Operación local, sin I/O.

        Raises:
            ValueError: si event_id o holder_email están vacíos
        """
        if not event_id or not event_id.strip():
            raise ValueError("event_id es requerido")
        if not holder_email or not holder_email.strip():
            raise ValueError("holder_email es requerido")

        issued_at = now_millis() if issued_at_millis is None else issued_at_millis
        ticket_id = self.generate_ticket_id(issued_at)

        token = TicketToken(
            ticket_id=ticket_id,
            event_id=event_id,
            holder_email=holder_email.strip(),
            issued_at_millis=issued_at,
            kind=TICKET_VERIFICATION,
        )

        return IssuedTicket(
            ticket_id=ticket_id,
            token=token,
            token_string=self.codec.encode(token),
        )

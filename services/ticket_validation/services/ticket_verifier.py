"""Verificación local de tokens: formato, evento y vigencia"""
import logging
from typing import Optional

from services.ticket_validation.models.ticket import VerificationOutcome, VerificationResult
from shared.tickets.token import TICKET_VERIFICATION, DecodeError, TokenCodec

logger = logging.getLogger(__name__)

HOUR_MILLIS = 60 * 60 * 1000

# Ventana fija de validez desde la emisión (el borde exacto sigue siendo válido)
VALIDITY_WINDOW_HOURS = 24


class TicketVerifier:
    """
    Decide VALID / INVALID_FORMAT / WRONG_EVENT / EXPIRED sin tocar el store.

    Función pura de (token, evento esperado, now): no lee el reloj.
    """

    def __init__(self, codec: Optional[TokenCodec] = None):
        self.codec = codec or TokenCodec()
        self.validity_millis = VALIDITY_WINDOW_HOURS * HOUR_MILLIS

    def verify(self, token_string: str, expected_event_id: str, now_millis: int) -> VerificationResult:
        try:
            token = self.codec.decode(token_string)
        except DecodeError as e:
            logger.debug(f"Token no decodificable: {e}")
            return VerificationResult(
                outcome=VerificationOutcome.INVALID_FORMAT,
                message="Código QR con formato inválido"
            )

        if token.kind != TICKET_VERIFICATION:
            return VerificationResult(
                outcome=VerificationOutcome.INVALID_FORMAT,
                message="El código QR no es un ticket"
            )

        if token.event_id != expected_event_id:
            return VerificationResult(
                outcome=VerificationOutcome.WRONG_EVENT,
                message="Ticket no corresponde a este evento",
                token=token
            )

        # Un token emitido "en el futuro" (desfase de reloj) se considera vigente
        if now_millis - token.issued_at_millis > self.validity_millis:
            return VerificationResult(
                outcome=VerificationOutcome.EXPIRED,
                message="Código QR expirado",
                token=token
            )

        return VerificationResult(
            outcome=VerificationOutcome.VALID,
            message="Ticket válido",
            token=token
        )

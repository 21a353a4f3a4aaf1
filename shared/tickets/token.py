"""Token de verificación de tickets y su codificación para QR"""
import base64
import binascii
import json
import re
from typing import Dict

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError, field_validator


TICKET_VERIFICATION = "TICKET_VERIFICATION"

# Claves cortas (formato actual) -> campo del token
SHORT_KEYS: Dict[str, str] = {
    "t": "ticket_id",
    "e": "event_id",
    "m": "holder_email",
    "ts": "issued_at_millis",
    "k": "kind",
}

# Claves largas del formato histórico (base64 estándar)
LEGACY_KEYS: Dict[str, str] = {
    "ticketNumber": "ticket_id",
    "eventId": "event_id",
    "userEmail": "holder_email",
    "timestamp": "issued_at_millis",
    "type": "kind",
}

# Alias cortos del discriminador
SHORT_KINDS: Dict[str, str] = {"TV": TICKET_VERIFICATION}
_KIND_ALIASES = {v: k for k, v in SHORT_KINDS.items()}

# Un QR versión 40 no admite más de ~4k caracteres alfanuméricos
MAX_TOKEN_LENGTH = 4096

_URLSAFE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_STANDARD_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


class DecodeError(ValueError):
    """El string no es un token de ticket decodificable"""


class TicketToken(BaseModel):
    """
    Datos de verificación de un ticket.

    No lleva firma: la autenticidad se establece cruzando ticket_id + event_id
    con el registro persistido.
    """
    model_config = ConfigDict(frozen=True)

    ticket_id: StrictStr
    event_id: StrictStr
    holder_email: StrictStr
    issued_at_millis: StrictInt
    kind: StrictStr = TICKET_VERIFICATION

    @field_validator("ticket_id", "event_id", "kind")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("no puede estar vacío")
        return value

    @field_validator("kind")
    @classmethod
    def _not_short_alias(cls, value: str) -> str:
        if value in SHORT_KINDS:
            raise ValueError(f"'{value}' es un alias reservado")
        return value

    @field_validator("issued_at_millis")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("timestamp negativo")
        return value


class TokenCodec:
    """Codificador reversible TicketToken <-> string apto para QR y URLs"""

    def encode(self, token: TicketToken) -> str:
        """
        Serializar con claves cortas y aplicar base64 URL-safe sin padding.

        El resultado solo contiene [A-Za-z0-9_-].
        """
        payload = {
            "t": token.ticket_id,
            "e": token.event_id,
            "m": token.holder_email,
            "ts": token.issued_at_millis,
            "k": _KIND_ALIASES.get(token.kind, token.kind),
        }
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    def decode(self, value: str) -> TicketToken:
        """
        Inverso de encode. Acepta también el formato histórico de claves largas.

        Raises:
            DecodeError: si el string no es base64 canónico, no es JSON o le faltan campos
        """
        if not isinstance(value, str):
            raise DecodeError("El token debe ser un string")

        text = value.strip()
        if not text:
            raise DecodeError("Token vacío")
        if len(text) > MAX_TOKEN_LENGTH:
            raise DecodeError("Token demasiado largo")

        raw = _b64decode_canonical(text)

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"Contenido no es JSON válido: {e}") from e

        if not isinstance(payload, dict):
            raise DecodeError("Contenido no es un objeto")

        return _normalize(payload)


def _normalize(payload: dict) -> TicketToken:
    """Llevar cualquiera de los dos esquemas de claves a un TicketToken"""
    for scheme in (SHORT_KEYS, LEGACY_KEYS):
        if not all(key in payload for key in scheme):
            continue

        fields = {field: payload[key] for key, field in scheme.items()}
        if scheme is SHORT_KEYS and isinstance(fields["kind"], str):
            fields["kind"] = SHORT_KINDS.get(fields["kind"], fields["kind"])

        try:
            return TicketToken(**fields)
        except ValidationError as e:
            raise DecodeError(f"Campos inválidos: {e.error_count()} errores") from e

    raise DecodeError("Faltan campos del token")


def _b64decode_canonical(text: str) -> bytes:
    """
    Decodificar base64 (URL-safe o estándar) exigiendo forma canónica,
    para que ningún carácter alterado vuelva a producir los mismos bytes.
    """
    if _URLSAFE_RE.match(text):
        body, altchars, padded_input = text, b"-_", False
    elif _STANDARD_RE.match(text):
        body, altchars, padded_input = text.rstrip("="), b"+/", text.endswith("=")
    else:
        raise DecodeError("Caracteres fuera del alfabeto base64")

    if len(body) % 4 == 1:
        raise DecodeError("Longitud base64 inválida")

    padding = "=" * (-len(body) % 4)
    if padded_input and text != body + padding:
        raise DecodeError("Padding base64 inválido")

    try:
        raw = base64.b64decode(body + padding, altchars=altchars, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Base64 inválido: {e}") from e

    canonical = base64.b64encode(raw, altchars=altchars).decode("ascii").rstrip("=")
    if canonical != body:
        raise DecodeError("Base64 no canónico")

    return raw

"""Servicio de envío de emails usando Resend"""
import asyncio
import html
import logging
from typing import Dict, List, Optional, Union

import resend

from app.core.config import settings
from services.notifications.services.notifier import Notifier
from shared.utils.qr_generator import generate_qr_base64
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

TEMPLATE_TICKET = "ticket"
TEMPLATE_CHECKIN = "checkin"


class EmailSendError(Exception):
    """Resend rechazó o no pudo procesar el envío"""


class EmailService(Notifier):
    """Servicio para enviar emails usando Resend (desarrollo y producción)"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        max_retries: int = 2,
        initial_delay: float = 1.0
    ):
        self.resend_api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.max_retries = max_retries
        self.initial_delay = initial_delay

        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY no configurado. Los emails no se enviarán.")
            self.resend_configured = False
        else:
            resend.api_key = self.resend_api_key
            self.resend_configured = True
            logger.info(f"EmailService (Resend) inicializado con from: {self.from_email}")

    async def send(self, to_email: str, template: str, fields: Dict[str, str]) -> bool:
        """
        Renderizar una plantilla y enviarla

        Args:
            to_email: Email destino
            template: "ticket" o "checkin"
            fields: Valores de la plantilla

        Returns:
            True si se envió correctamente
        """
        renderers = {
            TEMPLATE_TICKET: self._render_ticket,
            TEMPLATE_CHECKIN: self._render_checkin,
        }
        renderer = renderers.get(template)
        if renderer is None:
            logger.error(f"Plantilla de email desconocida: {template}")
            return False

        subject, html_content = renderer(fields)
        return await self.send_email(to_email, subject, html_content)

    async def send_email(
        self,
        to_email: Union[str, List[str]],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Enviar email usando Resend

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        if not self.resend_configured:
            logger.warning(f"Resend no configurado. Email simulado a {to_email}: {subject}")
            return True

        to_emails = [to_email] if isinstance(to_email, str) else to_email

        params = {
            "from": self.from_email,
            "to": to_emails,
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content

        # Resend SDK es síncrono: se ejecuta en un thread
        async def send_once():
            result = await asyncio.to_thread(resend.Emails.send, params)
            if not result or result.get("error"):
                raise EmailSendError(str((result or {}).get("error", "respuesta vacía")))
            return result

        try:
            result = await retry_with_backoff(
                send_once,
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
            )
        except Exception as e:
            logger.error(f"Error enviando email a {to_emails}: {e}")
            return False

        logger.info(f"Email enviado exitosamente a {to_emails}: {subject} (ID: {result.get('id', 'N/A')})")
        return True

    def _render_ticket(self, fields: Dict[str, str]) -> tuple:
        """Email de inscripción con el QR del ticket incrustado"""
        f = {k: html.escape(str(v)) for k, v in fields.items() if v is not None}
        token = fields.get("verification_qr", "")

        qr_html = ""
        if token:
            try:
                qr_image_base64 = generate_qr_base64(token)
                qr_html = f'''<div style="text-align: center; margin: 30px 0;">
                    <img src="data:image/png;base64,{qr_image_base64}"
                         alt="Código QR del Ticket" width="250" height="250"
                         style="display: block; margin: 0 auto;" />
                    <p style="font-size: 12px; color: #6b7280;">Escanea este código en la entrada del evento</p>
                </div>'''
            except Exception as e:
                logger.error(f"[EMAIL] No se pudo generar QR para ticket {fields.get('ticket_number')}: {e}", exc_info=True)
        else:
            logger.warning(f"[EMAIL] No se proporcionó token para ticket {fields.get('ticket_number')}")

        time_slot_row = ""
        if f.get("time_slot"):
            time_slot_row = f"<p><strong>Horario:</strong> {f['time_slot']}</p>"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1>{f.get('event_title', '')}</h1>
            <p>Hola {f.get('to_name', '')}, esta es tu entrada.</p>
            <p style="font-size: 18px; font-weight: bold;">Ticket #{f.get('ticket_number', '')}</p>
            <p><strong>Fecha:</strong> {f.get('event_date', '')} {f.get('event_time', '')}</p>
            <p><strong>Lugar:</strong> {f.get('event_location', 'Por confirmar')}</p>
            {time_slot_row}
            {qr_html}
            <p style="font-size: 12px; color: #666;">Te recomendamos llegar 15 minutos antes.</p>
        </body>
        </html>
        """
        subject = f"Tu ticket para {fields.get('event_title', 'el evento')}"
        return subject, html_content

    def _render_checkin(self, fields: Dict[str, str]) -> tuple:
        """Confirmación de ingreso"""
        f = {k: html.escape(str(v)) for k, v in fields.items() if v is not None}
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1>¡Bienvenido a {f.get('event_title', '')}!</h1>
            <p>Hola {f.get('to_name', '')}, registramos tu ingreso.</p>
            <p><strong>Ticket:</strong> {f.get('ticket_number', '')}</p>
            <p><strong>Hora de ingreso:</strong> {f.get('checked_in_at', '')}</p>
            <p><strong>Acceso:</strong> {f.get('location', '')}</p>
        </body>
        </html>
        """
        subject = f"Check-in confirmado: {fields.get('event_title', 'evento')}"
        return subject, html_content


def get_email_service() -> Notifier:
    """Dependency para FastAPI"""
    return EmailService()

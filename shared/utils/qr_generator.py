"""Generación de imágenes QR a partir del token de un ticket"""
import base64
import io
import logging

import qrcode

logger = logging.getLogger(__name__)


def generate_qr_png(token: str, box_size: int = 10, border: int = 4) -> bytes:
    """
    Renderizar el token tal cual como QR en PNG

    Args:
        token: Token emitido (no se re-codifica)
        box_size: Tamaño en píxeles de cada módulo
        border: Módulos de margen

    Returns:
        Bytes de la imagen PNG
    """
    if not token:
        raise ValueError("token vacío, no se puede generar QR")

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(token)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    img_buffer = io.BytesIO()
    img.save(img_buffer, format="PNG")
    img_bytes = img_buffer.getvalue()

    logger.debug(f"QR generado ({len(img_bytes)} bytes) para token {token[:12]}...")
    return img_bytes


def generate_qr_base64(token: str) -> str:
    """QR en PNG codificado en base64 (para incrustar en emails)"""
    return base64.b64encode(generate_qr_png(token)).decode("utf-8")

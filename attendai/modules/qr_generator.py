"""
QR Code Generator Module - AttendAI QR Attendance Service

This module renders attendance credential payloads as scannable QR codes.
The payload itself is opaque to the renderer; it only has to survive the
round trip through the code.

Features:
- QR code rendering to base64 PNG (for embedding in pages and JSON)
- Data URI helper for <img> tags
- Configurable box size, border and error correction
"""

import qrcode
import io
import base64
import logging
from typing import Optional

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,  # ~7%
    'M': qrcode.constants.ERROR_CORRECT_M,  # ~15%
    'Q': qrcode.constants.ERROR_CORRECT_Q,  # ~25%
    'H': qrcode.constants.ERROR_CORRECT_H,  # ~30%
}


class QRGenerator:
    """
    Renders credential payloads as QR code images.
    """

    def __init__(self, box_size: int = 10, border: int = 4,
                 error_correction: str = 'M'):
        """
        Initialize the QR code generator.

        Args:
            box_size (int): Size of each box in pixels
            border (int): Quiet zone width in boxes (minimum is 4)
            error_correction (str): One of L, M, Q, H
        """
        self.logger = logging.getLogger(__name__)
        self.default_settings = {
            'error_correction': ERROR_CORRECTION_LEVELS.get(
                error_correction, qrcode.constants.ERROR_CORRECT_M
            ),
            'box_size': box_size,
            'border': max(border, 4),
            'fill_color': 'black',
            'back_color': 'white'
        }

    def render_payload(self, payload: str, custom_settings: Optional[dict] = None) -> str:
        """
        Render a payload as a PNG QR code.

        Args:
            payload (str): Data to encode
            custom_settings (dict): Overrides for the default settings

        Returns:
            str: Base64 encoded PNG image
        """
        if not payload:
            raise ValueError("Cannot render an empty payload")

        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr = qrcode.QRCode(
            version=None,
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        image_base64 = base64.b64encode(buffer.getvalue()).decode()

        self.logger.debug(f"Rendered QR code (version {qr.version})")
        return image_base64

    def render_data_uri(self, payload: str) -> str:
        """Render a payload as a `data:image/png;base64,...` URI."""
        return f"data:image/png;base64,{self.render_payload(payload)}"

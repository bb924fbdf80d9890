import base64
from io import BytesIO
from typing import Optional

import qrcode

from app.logging_config import get_logger

logger = get_logger("qr_service")


def render_qr_data_uri(qr_payload: str) -> Optional[str]:
    """Render a pairing payload as a PNG data URI for the dashboard."""
    if not qr_payload:
        return None
    try:
        image = qrcode.make(qr_payload)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
    except Exception as e:
        logger.error(f"QR render failed: {e}")
        return None
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"

"""Decision-letter renderer (ReportLab).

Produces the PDF bytes for an approval or rejection letter.  Approval
letters embed the public verification URL as a QR code together with the
payload hash so a reader can check the letter against ``/verify/{token}``.
"""

import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors as rl_colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
ORGANISATION_NAME = os.getenv(
    "RARS_ORGANISATION_NAME", "Research Application Review Secretariat"
)

LETTER_COLORS = {
    "primary": rl_colors.HexColor("#1F3A5F"),
    "muted": rl_colors.HexColor("#5F6B7A"),
}


@dataclass
class LetterFields:
    reference_number: str
    title: str
    applicant_name: str
    decision: str
    decision_date: datetime
    decider_name: str
    notes: Optional[str] = None
    verification_token: Optional[str] = None
    payload_hash: Optional[str] = None


def verification_url(token: str) -> str:
    return f"{PUBLIC_BASE_URL}/verify/{token}"


def _letter_styles() -> dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    return {
        "Org": ParagraphStyle(
            "Org",
            parent=styles["Heading2"],
            alignment=TA_CENTER,
            textColor=LETTER_COLORS["primary"],
            fontName="Helvetica-Bold",
        ),
        "Title": ParagraphStyle(
            "LetterTitle",
            parent=styles["Heading1"],
            fontSize=18,
            spaceBefore=12,
            spaceAfter=12,
            fontName="Helvetica-Bold",
        ),
        "Body": ParagraphStyle(
            "LetterBody",
            parent=styles["Normal"],
            fontSize=11,
            leading=15,
            spaceAfter=8,
        ),
        "Small": ParagraphStyle(
            "LetterSmall",
            parent=styles["Normal"],
            fontSize=8,
            textColor=LETTER_COLORS["muted"],
            leading=10,
        ),
    }


def _qr_drawing(value: str, size: float = 1.4 * inch) -> Drawing:
    widget = QrCodeWidget(value)
    x1, y1, x2, y2 = widget.getBounds()
    drawing = Drawing(
        size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0]
    )
    drawing.add(widget)
    return drawing


def render_decision_letter(fields: LetterFields) -> bytes:
    """Render the decision letter for *fields* and return the PDF bytes."""
    styles = _letter_styles()
    approved = fields.decision == "APPROVED"
    verdict_color = "#1E7B34" if approved else "#A61B1B"

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=72,
        leftMargin=72,
        topMargin=72,
        bottomMargin=72,
        title=f"Decision {fields.reference_number}",
    )

    elements = [
        Paragraph(escape(ORGANISATION_NAME), styles["Org"]),
        Spacer(1, 0.2 * inch),
        Paragraph(
            f"Reference: <b>{escape(fields.reference_number)}</b><br/>"
            f"Date: {fields.decision_date:%d %B %Y}",
            styles["Body"],
        ),
        Paragraph(
            f"Research Application <font color='{verdict_color}'>"
            f"{'Approved' if approved else 'Not Approved'}</font>",
            styles["Title"],
        ),
        Paragraph(f"Dear {escape(fields.applicant_name)},", styles["Body"]),
        Paragraph(
            f"Your research application <b>{escape(fields.title)}</b> has been "
            f"{'approved' if approved else 'rejected'} following review.",
            styles["Body"],
        ),
    ]

    if fields.notes:
        elements.append(Paragraph(f"Notes: {escape(fields.notes)}", styles["Body"]))

    elements.extend(
        [
            Spacer(1, 0.3 * inch),
            Paragraph(f"Signed: {escape(fields.decider_name)}", styles["Body"]),
        ]
    )

    if approved and fields.verification_token:
        url = verification_url(fields.verification_token)
        elements.extend(
            [
                Spacer(1, 0.3 * inch),
                _qr_drawing(url),
                Paragraph(f"Verify this letter at {escape(url)}", styles["Small"]),
                Paragraph(f"Hash: {escape(fields.payload_hash or '')}", styles["Small"]),
            ]
        )

    doc.build(elements)
    logger.info(
        "Rendered %s letter for %s", fields.decision.lower(), fields.reference_number
    )
    return buffer.getvalue()

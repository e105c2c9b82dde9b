# blockserved/services/receipt_service.py
"""
Proof-of-service receipt: a one-page PDF summarizing a served notice
(parties, tokens, transaction, served/accepted times).
"""
import io
from datetime import datetime
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from blockserved.core.config import settings
from blockserved.db.models import Notice
from blockserved.services.notice_service import derived_status


def _fmt(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else "-"


def build_receipt_pdf(notice: Notice) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=0.8 * inch,
        rightMargin=0.8 * inch,
        topMargin=0.8 * inch,
        bottomMargin=0.8 * inch,
        title=f"Proof of Service {notice.notice_id}",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ReceiptTitle", parent=styles["Title"], fontSize=18, spaceAfter=6)
    small = ParagraphStyle("ReceiptSmall", parent=styles["Normal"], fontSize=8, textColor=colors.grey)
    mono = ParagraphStyle("ReceiptMono", parent=styles["Normal"], fontName="Courier", fontSize=8, leading=10)

    rows = [
        ["Notice ID", notice.notice_id],
        ["Case number", notice.case_number],
        ["Notice type", notice.notice_type or "Legal Notice"],
        ["Issuing agency", notice.issuing_agency or "-"],
        ["Recipient", Paragraph(notice.recipient_address, mono)],
        ["Recipient name", notice.recipient_name or "-"],
        ["Process server", Paragraph(notice.server_address, mono)],
        ["Alert token", str(notice.alert_token_id) if notice.alert_token_id is not None else "-"],
        ["Document token", str(notice.document_token_id) if notice.document_token_id is not None else "-"],
        ["Transaction", Paragraph(notice.transaction_hash or "-", mono)],
        ["Block", str(notice.block_number) if notice.block_number is not None else "-"],
        ["Network", settings.TRON_NETWORK],
        ["Served at", _fmt(notice.created_at)],
        ["Accepted at", _fmt(notice.accepted_at)],
        ["Status", derived_status(notice)],
    ]
    table = Table(rows, colWidths=[1.7 * inch, 4.6 * inch])
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 0), (-1, -1), [colors.whitesmoke, colors.white]),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
    ]))

    story = [
        Paragraph("Proof of Service", title_style),
        Paragraph("Legal notice delivered on the TRON blockchain", styles["Normal"]),
        HRFlowable(width="100%", thickness=0.5, color=colors.grey, spaceBefore=6, spaceAfter=12),
        table,
        Spacer(1, 0.3 * inch),
        Paragraph(f"Generated {_fmt(datetime.utcnow())} by {settings.APP_NAME}", small),
    ]
    doc.build(story)
    return buf.getvalue()

"""Certificate document rendering."""

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from certanchor.common.config import CertAnchorSettings
from certanchor.verification.payload import build_scan_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedDocument:
    data: bytes
    local_path: Path

    @property
    def filename(self) -> str:
        return self.local_path.name


class DocumentRenderer:
    """Interface: render(record) -> RenderedDocument, raising on failure."""

    async def render(self, record: Any) -> RenderedDocument:
        raise NotImplementedError


class ReportLabRenderer(DocumentRenderer):
    """Single-page landscape PDF written to the temp directory."""

    def __init__(self, settings: CertAnchorSettings):
        self.settings = settings
        self.temp_dir = Path(settings.temp_dir)

    async def render(self, record: Any) -> RenderedDocument:
        data = await asyncio.to_thread(self._draw, record)
        path = self.temp_dir / f"Certificate_{record.id}.pdf"
        await asyncio.to_thread(self._write, path, data)
        logger.info("Rendered %s (%d bytes)", path.name, len(data))
        return RenderedDocument(data=data, local_path=path)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _draw(self, record: Any) -> bytes:
        from reportlab.lib.pagesizes import A4, landscape
        from reportlab.pdfgen import canvas

        buf = io.BytesIO()
        width, height = landscape(A4)
        pdf = canvas.Canvas(buf, pagesize=(width, height))
        pdf.setTitle(f"Certificate {record.id}")

        pdf.setFont("Helvetica-Bold", 30)
        pdf.drawCentredString(width / 2, height - 110, "Certificate of Completion")
        pdf.setFont("Helvetica", 14)
        pdf.drawCentredString(width / 2, height - 160, "This is to certify that")
        pdf.setFont("Helvetica-Bold", 24)
        pdf.drawCentredString(width / 2, height - 200, record.subject_name)
        pdf.setFont("Helvetica", 14)
        if record.guardian_name:
            pdf.drawCentredString(width / 2, height - 228, f"child of {record.guardian_name}")
        pdf.drawCentredString(width / 2, height - 260, "has successfully completed")
        pdf.setFont("Helvetica-Bold", 20)
        pdf.drawCentredString(width / 2, height - 295, record.course_name)
        pdf.setFont("Helvetica", 12)
        pdf.drawCentredString(width / 2, height - 330, record.institute_name)

        pdf.setFont("Helvetica", 9)
        pdf.drawString(50, 80, f"Certificate ID: {record.id}")
        pdf.drawString(50, 66, f"Issued: {record.issued_at:%d %B %Y}")
        pdf.drawString(50, 52, f"Fingerprint: {record.content_fingerprint}")
        self._draw_scan_code(pdf, build_scan_payload(record, self.settings.frontend_url), width - 160, 40)

        pdf.showPage()
        pdf.save()
        return buf.getvalue()

    @staticmethod
    def _draw_scan_code(pdf, payload: str, x: float, y: float, size: float = 110) -> None:
        from reportlab.graphics import renderPDF
        from reportlab.graphics.barcode.qr import QrCodeWidget
        from reportlab.graphics.shapes import Drawing

        widget = QrCodeWidget(payload)
        x1, y1, x2, y2 = widget.getBounds()
        drawing = Drawing(
            size, size,
            transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0],
        )
        drawing.add(widget)
        renderPDF.draw(drawing, pdf, x, y)

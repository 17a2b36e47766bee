"""
Booking confirmation PDF.

Dark single-page layout: brand header, status badge, two columns of booking
details, total price, arrival notes for confirmed bookings, a QR code that
encodes the booking reference, and a footer.
"""
import io
import json
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
from xml.sax.saxutils import escape

from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.core.config import settings
from app.models.booking import Booking
from app.schemas.venue import VenueView

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "confirmed": (16, 185, 129),
    "pending": (241, 196, 15),
    "cancelled": (231, 76, 60),
    "default": (41, 128, 185),
}


def _rgb(values) -> colors.Color:
    r, g, b = values
    return colors.Color(r / 255, g / 255, b / 255)


def status_color(status: str) -> colors.Color:
    return _rgb(STATUS_COLORS.get((status or "").lower(), STATUS_COLORS["default"]))


def _money(currency: str, amount) -> str:
    amount = Decimal(str(amount or 0))
    if amount == amount.to_integral_value():
        return f"{currency} {amount:,.0f}"
    return f"{currency} {amount:,.2f}"


def confirmation_filename(booking: Booking) -> str:
    venue = re.sub(r"\s+", "_", (booking.venue_name or "").strip())
    return f"Avnu_Booking_{venue}_{booking.booking_date:%Y-%m-%d}.pdf"


def qr_payload(booking: Booking) -> str:
    return json.dumps({
        "bookingId": str(booking.id),
        "venueId": str(booking.venue_id),
        "venueName": booking.venue_name,
        "date": booking.booking_date.isoformat(),
        "status": booking.status,
    })


class BookingConfirmationPDF:
    """Render one booking's confirmation."""

    def __init__(self, booking: Booking, venue: Optional[VenueView] = None):
        self.booking = booking
        self.venue = venue
        self.currency = venue.pricing.currency if venue else settings.DEFAULT_CURRENCY

        self.page_width, self.page_height = A4
        self.margin = 0.8 * inch
        self.content_width = self.page_width - (2 * self.margin)

        self.brand_color = _rgb((16, 185, 129))
        self.background = _rgb((16, 24, 39))
        self.panel = _rgb((30, 41, 59))
        self.muted = _rgb((150, 150, 150))

    def _draw_background(self, canvas, doc):
        canvas.saveState()
        canvas.setFillColor(self.background)
        canvas.rect(0, 0, self.page_width, self.page_height, stroke=0, fill=1)
        canvas.restoreState()

    def _styles(self):
        base = getSampleStyleSheet()
        return {
            "brand": ParagraphStyle("Brand", parent=base["Title"], fontSize=30,
                                    textColor=self.brand_color, spaceAfter=4),
            "subtitle": ParagraphStyle("Subtitle", parent=base["Normal"], fontSize=14,
                                       textColor=colors.white, alignment=1, spaceAfter=16),
            "badge": ParagraphStyle("Badge", parent=base["Normal"], fontName="Helvetica-Bold",
                                    fontSize=12, textColor=colors.white, alignment=1),
            "label": ParagraphStyle("Label", parent=base["Normal"], fontSize=8, textColor=self.muted),
            "value": ParagraphStyle("Value", parent=base["Normal"], fontSize=11,
                                    textColor=colors.white, spaceAfter=10),
            "total_label": ParagraphStyle("TotalLabel", parent=base["Normal"], fontName="Helvetica-Bold",
                                          fontSize=12, textColor=colors.white),
            "total_value": ParagraphStyle("TotalValue", parent=base["Normal"], fontName="Helvetica-Bold",
                                          fontSize=14, textColor=self.brand_color, alignment=2),
            "note": ParagraphStyle("Note", parent=base["Normal"], fontSize=9, textColor=colors.white),
            "footer": ParagraphStyle("Footer", parent=base["Normal"], fontSize=8,
                                     textColor=self.muted, alignment=1),
        }

    def _detail(self, styles, label: str, value) -> list:
        text = escape(str(value)) if value not in (None, "") else "N/A"
        return [Paragraph(label, styles["label"]), Paragraph(text, styles["value"])]

    def _price_per_person(self):
        if self.venue and self.venue.pricing.price_per_person:
            return self.venue.pricing.price_per_person
        return None

    def _details_table(self, styles) -> Table:
        b = self.booking
        if b.start_time and b.end_time:
            time_text = f"{b.start_time} - {b.end_time}"
        else:
            time_text = "Full day"

        left = []
        left += self._detail(styles, "VENUE", b.venue_name)
        left += self._detail(styles, "DATE", f"{b.booking_date:%B} {b.booking_date.day}, {b.booking_date.year}")
        left += self._detail(styles, "TIME", time_text)
        left += self._detail(styles, "NUMBER OF GUESTS", b.guests)

        address = (self.venue.address if self.venue else "") or "Address not available"
        if self.venue and self.venue.city:
            address = f"{address}, {self.venue.city}"
        right = []
        right += self._detail(styles, "ADDRESS", address)
        if self._price_per_person():
            right += self._detail(styles, "PRICE PER PERSON", _money(self.currency, self._price_per_person()))
        right += self._detail(styles, "BOOKING ID", b.id)

        column_width = self.content_width / 2
        table = Table([[left, right]], colWidths=[column_width, column_width])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ]))
        return table

    def _total_block(self, styles) -> Table:
        rows = [[Paragraph("TOTAL PRICE", styles["total_label"]),
                 Paragraph(_money(self.currency, self.booking.total_price), styles["total_value"])]]
        if self._price_per_person():
            breakdown = f"({self.booking.guests} guests × {_money(self.currency, self._price_per_person())})"
            rows.append(["", Paragraph(breakdown, styles["footer"])])
        table = Table(rows, colWidths=[self.content_width / 2, self.content_width / 2])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), self.panel),
            ("LINEABOVE", (0, 0), (-1, 0), 0.5, self.brand_color),
            ("TOPPADDING", (0, 0), (-1, -1), 10),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
            ("LEFTPADDING", (0, 0), (-1, -1), 12),
            ("RIGHTPADDING", (0, 0), (-1, -1), 12),
        ]))
        return table

    def _important_information(self, styles) -> Table:
        rows = [
            [Paragraph("IMPORTANT INFORMATION", styles["total_label"])],
            [Paragraph("Please arrive 15 minutes before your booking time.", styles["note"])],
            [Paragraph("Don't forget to bring your booking confirmation.", styles["note"])],
        ]
        table = Table(rows, colWidths=[self.content_width])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), self.panel),
            ("LEFTPADDING", (0, 0), (-1, -1), 12),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
        ]))
        return table

    def _qr_code(self, size: float = 1.4 * inch) -> Drawing:
        widget = QrCodeWidget(qr_payload(self.booking))
        widget.barFillColor = self.brand_color
        x1, y1, x2, y2 = widget.getBounds()
        width, height = x2 - x1, y2 - y1
        drawing = Drawing(size, size, transform=[size / width, 0, 0, size / height, 0, 0])
        drawing.add(widget)
        return drawing

    def generate(self) -> bytes:
        logger.info("Generating confirmation PDF for booking %s", self.booking.id)
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Booking Confirmation - {self.booking.venue_name}",
        )
        styles = self._styles()

        badge = Table([[Paragraph(f"STATUS: {escape(self.booking.status.upper())}", styles["badge"])]],
                      colWidths=[self.content_width])
        badge.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), status_color(self.booking.status)),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))

        story = [
            Paragraph("AVNU", styles["brand"]),
            Paragraph("Booking Confirmation", styles["subtitle"]),
            badge,
            Spacer(1, 0.3 * inch),
            self._details_table(styles),
            Spacer(1, 0.2 * inch),
            self._total_block(styles),
        ]
        if self.booking.status == "confirmed":
            story += [Spacer(1, 0.2 * inch), self._important_information(styles)]

        qr = Table([[self._qr_code()], [Paragraph("SCAN QR CODE TO VERIFY BOOKING", styles["footer"])]],
                   colWidths=[self.content_width])
        qr.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER")]))
        story += [Spacer(1, 0.3 * inch), qr, Spacer(1, 0.3 * inch)]

        generated = datetime.now()
        story += [
            Paragraph("Thank you for choosing Avnu!", styles["footer"]),
            Paragraph(f"Generated on: {generated:%B} {generated.day}, {generated:%Y, %H:%M}", styles["footer"]),
            Paragraph(f"Confirmation ID: {self.booking.id}", styles["footer"]),
        ]

        doc.build(story, onFirstPage=self._draw_background, onLaterPages=self._draw_background)
        return buffer.getvalue()


def render_booking_confirmation(booking: Booking, venue: Optional[VenueView] = None) -> Tuple[str, bytes]:
    return confirmation_filename(booking), BookingConfirmationPDF(booking, venue).generate()

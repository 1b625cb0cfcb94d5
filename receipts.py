"""
Order receipt rendering.

The receipt is drawn once with Pillow on an A4-proportioned page (150 dpi)
and exported both as JPEG and as a single-page PDF.
"""
import io
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import structlog
from PIL import Image, ImageDraw, ImageFont

from helpers import format_amount

logger = structlog.get_logger(__name__)

PAGE_SIZE = (1240, 1754)
DPI = 150
MARGIN = 80
ROW_HEIGHT = 52
TEXT_COLOR = (17, 17, 17)
MUTED_COLOR = (68, 68, 68)
HEADER_FILL = (242, 242, 242)
TOTAL_FILL = (249, 249, 249)
BORDER = (221, 221, 221)

# (header, relative width)
COLUMNS = [("S/N", 0.08), ("Description", 0.46), ("Quantity", 0.14), ("Unit Price", 0.16), ("Amount", 0.16)]


def load_font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _parse_paid_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


def format_receipt_date(value: Any) -> str:
    return _parse_paid_at(value).strftime("%d/%m/%Y %H:%M:%S")


def wrap_text(draw: ImageDraw.ImageDraw, text: str, font, width: int) -> List[str]:
    words, lines, line = text.split(), [], ""
    for word in words:
        candidate = f"{line} {word}".strip()
        if draw.textlength(candidate, font=font) <= width:
            line = candidate
        else:
            if line:
                lines.append(line)
            line = word
    if line:
        lines.append(line)
    return lines or [""]


def draw_receipt(order: Dict[str, Any], brand: Dict[str, Any]) -> Image.Image:
    currency = order.get("currency") or "NGN"
    products = order.get("products") or []

    image = Image.new("RGB", PAGE_SIZE, "white")
    draw = ImageDraw.Draw(image)
    title_font, heading_font, body_font, small_font = load_font(48), load_font(30), load_font(24), load_font(20)
    content_width = PAGE_SIZE[0] - 2 * MARGIN

    y = MARGIN
    draw.text((MARGIN, y), brand.get("name") or "", font=title_font, fill=TEXT_COLOR)
    y += 80
    draw.text((MARGIN, y), "Order Receipt", font=heading_font, fill=TEXT_COLOR)
    y += 56
    for line in (
        f"Purchase Date: {format_receipt_date(order.get('paidAt'))}",
        f"Reference: {order.get('reference', '')}",
        f"Client: {order.get('clientName', '')}",
    ):
        draw.text((MARGIN, y), line, font=body_font, fill=TEXT_COLOR)
        y += 36

    y += 24
    draw.text((MARGIN, y), "Items Purchased", font=heading_font, fill=TEXT_COLOR)
    y += 50

    # Item table
    x_positions: List[Tuple[int, int]] = []
    x = MARGIN
    for _, share in COLUMNS:
        width = int(content_width * share)
        x_positions.append((x, width))
        x += width

    def row(cells: List[str], top: int, fill=None, font=body_font) -> int:
        wrapped = [wrap_text(draw, cell, font, w - 20) for cell, (_, w) in zip(cells, x_positions)]
        height = max(ROW_HEIGHT, max(len(lines) for lines in wrapped) * 30 + 22)
        for (left, width), lines in zip(x_positions, wrapped):
            draw.rectangle([left, top, left + width, top + height], outline=BORDER, fill=fill)
            for index, text in enumerate(lines):
                draw.text((left + 10, top + 12 + index * 30), text, font=font, fill=TEXT_COLOR)
        return top + height

    y = row([f"{name} ({currency})" if name in ("Unit Price", "Amount") else name for name, _ in COLUMNS],
            y, fill=HEADER_FILL)
    for index, item in enumerate(products, start=1):
        price = float(item.get("price") or 0)
        quantity = int(item.get("quantity") or 0)
        y = row([
            str(index),
            str(item.get("description") or ""),
            str(quantity),
            f"{price:,.2f}",
            f"{price * quantity:,.2f}",
        ], y)

    total_left = x_positions[0][0]
    total_right = x_positions[-1][0] + x_positions[-1][1]
    draw.rectangle([total_left, y, total_right, y + ROW_HEIGHT], outline=BORDER, fill=TOTAL_FILL)
    draw.text((total_left + 10, y + 12), "Total", font=heading_font, fill=TEXT_COLOR)
    total_text = format_amount(float(order.get("totalAmount") or 0), currency)
    draw.text((total_right - 10 - draw.textlength(total_text, font=heading_font), y + 10), total_text,
              font=heading_font, fill=TEXT_COLOR)
    y += ROW_HEIGHT + 50

    draw.text((MARGIN, y), f"Thank you for choosing {brand.get('name') or 'us'}!", font=heading_font,
              fill=TEXT_COLOR)
    y += 46
    note = ("We truly value your trust and support. If you enjoyed your experience, we'd be grateful "
            "if you could leave us a review. For any questions, feedback, or assistance, feel free to "
            "reach out through our contact channels.")
    for line in wrap_text(draw, note, body_font, content_width):
        draw.text((MARGIN, y), line, font=body_font, fill=MUTED_COLOR)
        y += 32

    y += 30
    contact = [
        " - ".join(part for part in (brand.get("name"), brand.get("address")) if part),
        " - ".join(f"{label}: {brand[key]}" for label, key in (("Phone", "phone"), ("WhatsApp", "whatsapp"))
                   if brand.get(key)),
        " - ".join(f"{label}: {brand[key]}" for label, key in (("Email", "email"), ("Website", "website"))
                   if brand.get(key)),
    ]
    for line in filter(None, contact):
        draw.text((MARGIN, y), line, font=small_font, fill=MUTED_COLOR)
        y += 28
    return image


def render_receipt(order: Dict[str, Any], brand: Dict[str, Any]) -> Tuple[bytes, bytes]:
    """Return ``(pdf_bytes, jpeg_bytes)`` for a paid order."""
    image = draw_receipt(order, brand)

    pdf = io.BytesIO()
    image.save(pdf, format="PDF", resolution=DPI)
    jpeg = io.BytesIO()
    image.save(jpeg, format="JPEG", quality=90)

    logger.info("receipt_rendered", reference=order.get("reference"), items=len(order.get("products") or []))
    return pdf.getvalue(), jpeg.getvalue()

import re
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote, urlparse

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email as check_email

from config import S3_BUCKET
from errors import AppError

# Nigerian mobile numbers: +234 or 0, then 7/8/9, 0/1, eight digits
PHONE_RE = re.compile(r"^(\+234|0)[789][01]\d{8}$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*])[A-Za-z\d!@#$%^&*]{8,}$")
TAG_RE = re.compile(r"<[^>]*>")

REFERENCE_ALPHABET = string.ascii_letters + string.digits + "_-"


def validate_email(email: str) -> bool:
    """Same rules as pydantic's EmailStr, without the DNS lookup."""
    if not email:
        return False
    try:
        check_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def validate_phone(phone: str) -> bool:
    return bool(phone and PHONE_RE.match(phone))


def validate_password(password: str) -> bool:
    return bool(password and PASSWORD_RE.match(password))


def sanitize(value: Any) -> Any:
    """Trim strings and strip markup; other scalars pass through."""
    if isinstance(value, str):
        return TAG_RE.sub("", value).strip()
    return value


def parse_object_id(value: Any, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise AppError(f"Invalid {label}", 400)
    return ObjectId(str(value))


def _convert(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out = _convert(dict(doc))
    if "_id" in out:
        out["id"] = out["_id"]
    return out


def serialize_docs(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def generate_reference(length: int = 10) -> str:
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def format_amount(amount: float, currency: str = "NGN") -> str:
    return f"{currency} {amount:,.2f}"


def build_whatsapp_message(client_name: str, products: List[Dict[str, Any]], total_amount: float,
                           reference: str, currency: str) -> str:
    """URL-encoded order summary sent to the shop's WhatsApp number."""
    lines = [
        "Hello, I'd like to place an order.",
        "",
        f"Name: {client_name}",
        f"Order reference: {reference}",
        "",
        "Items:",
    ]
    for index, item in enumerate(products, start=1):
        lines.append(
            f"{index}. {item.get('description')} x{item.get('quantity')} @ "
            f"{format_amount(item.get('price', 0), currency)}"
        )
    lines += ["", f"Total: {format_amount(total_amount, currency)}"]
    return quote("\n".join(lines))


def extract_file_key(url: str) -> Optional[str]:
    """Object key from a ``<endpoint>/<bucket>/<key>`` URL, or None."""
    try:
        path = urlparse(url).path
    except (TypeError, ValueError):
        return None
    bucket_path = f"/{S3_BUCKET}/"
    if path.startswith(bucket_path):
        return unquote(path[len(bucket_path):]) or None
    return None

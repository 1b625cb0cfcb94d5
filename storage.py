"""
S3-compatible object storage for product, category, banner and receipt files.
"""
import io
import time
from typing import Optional

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from config import (MAX_UPLOAD_BYTES, S3_ACCESS_KEY_ID, S3_BUCKET, S3_ENDPOINT, S3_REGION,
                    S3_SECRET_KEY)
from errors import AppError
from helpers import extract_file_key

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpg", "image/jpeg", "image/webp"}

s3_client = boto3.client(
    "s3",
    endpoint_url=S3_ENDPOINT,
    region_name=S3_REGION,
    aws_access_key_id=S3_ACCESS_KEY_ID or None,
    aws_secret_access_key=S3_SECRET_KEY or None,
    # path-style addressing for MinIO / DigitalOcean Spaces
    config=Config(s3={"addressing_style": "path"}),
)


def public_url(key: str) -> str:
    return f"{S3_ENDPOINT}/{S3_BUCKET}/{key}"


def _object_key(filename: str) -> str:
    safe_name = (filename or "file").replace(" ", "-").replace("/", "-")
    return f"uploads/{int(time.time() * 1000)}-{safe_name}"


def to_jpeg(data: bytes, quality: int = 80) -> bytes:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError):
        raise AppError("Uploaded file is not a valid image", 400)
    if image.mode != "RGB":
        image = image.convert("RGB")
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def _put(key: str, body: bytes, content_type: str) -> str:
    try:
        s3_client.put_object(
            Bucket=S3_BUCKET,
            Key=key,
            Body=body,
            ContentType=content_type,
            ACL="public-read",
        )
    except (BotoCoreError, ClientError) as exc:
        logger.error("upload_failed", key=key, error=str(exc))
        raise AppError("Failed to upload file", 500)
    logger.info("file_uploaded", key=key, size=len(body))
    return public_url(key)


def upload_image(data: bytes, filename: str, content_type: Optional[str]) -> str:
    """Validate, normalize to JPEG and upload an image; returns its public URL."""
    if not data:
        raise AppError("Please upload an image", 400)
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise AppError("Invalid file type. Only PNG, JPG, JPEG, and WEBP are allowed.", 400)
    if len(data) > MAX_UPLOAD_BYTES:
        raise AppError("File too large. Maximum size is 5 MB.", 400)
    return _put(_object_key(filename), to_jpeg(data), "image/jpeg")


def upload_pdf(data: bytes, filename: str) -> str:
    if not data:
        raise AppError("PDF file is empty", 400)
    return _put(_object_key(filename), data, "application/pdf")


def delete_file(url: Optional[str]) -> bool:
    """Delete the object behind a public URL; failures are logged, not raised."""
    if not url:
        return False
    key = extract_file_key(url)
    if not key:
        logger.warning("delete_skipped_foreign_url", url=url)
        return False
    try:
        s3_client.delete_object(Bucket=S3_BUCKET, Key=key)
    except (BotoCoreError, ClientError) as exc:
        logger.error("delete_failed", key=key, error=str(exc))
        return False
    logger.info("file_deleted", key=key)
    return True


def check_bucket() -> bool:
    try:
        s3_client.head_bucket(Bucket=S3_BUCKET)
    except (BotoCoreError, ClientError) as exc:
        logger.error("bucket_unreachable", bucket=S3_BUCKET, error=str(exc))
        return False
    logger.info("bucket_reachable", bucket=S3_BUCKET)
    return True


def upload_image_file(upload) -> str:
    """Upload a FastAPI ``UploadFile`` image."""
    data = upload.file.read()
    return upload_image(data, upload.filename, upload.content_type)

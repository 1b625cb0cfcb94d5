"""
Background jobs on rq queues.

Three queues: ``email`` (transactional mail), ``receipts`` (receipt
rendering/upload after a payment is confirmed) and ``promotions`` (the
nightly sweep releasing expired promotions). Email and receipt jobs retry
three times with growing delays; completed jobs are not kept, failed ones
stay in the failed registry.
"""
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import redis
import structlog
from rq import Queue, Retry

from config import REDIS_URL
from database import db, now
from errors import AppError
from mailer import send_mail
from receipts import render_receipt
from storage import upload_image, upload_pdf

logger = structlog.get_logger(__name__)

# rq stores pickled payloads, so this connection must not decode responses
queue_connection = redis.Redis.from_url(REDIS_URL)

EMAIL_QUEUE = "email"
RECEIPT_QUEUE = "receipts"
PROMOTION_QUEUE = "promotions"
QUEUE_NAMES = [EMAIL_QUEUE, RECEIPT_QUEUE, PROMOTION_QUEUE]

PROMOTION_SWEEP_JOB_PREFIX = "expire-promotions"
FAILED_JOB_TTL = 7 * 24 * 60 * 60


def job_retry() -> Retry:
    return Retry(max=3, interval=[5, 10, 20])


def get_queue(name: str) -> Queue:
    return Queue(name, connection=queue_connection)


# Producers

def enqueue_email(to: Union[str, List[str]], subject: str, html: str, text: Optional[str] = None):
    try:
        job = get_queue(EMAIL_QUEUE).enqueue(
            send_email_job, to, subject, html, text,
            retry=job_retry(), result_ttl=0, failure_ttl=FAILED_JOB_TTL,
        )
    except redis.RedisError as exc:
        logger.error("email_job_enqueue_failed", to=to, error=str(exc))
        raise AppError("Failed to add email job to the queue", 500)
    logger.info("email_job_queued", job_id=job.id, subject=subject)
    return job


def enqueue_receipt(order_data: Dict[str, Any], brand_info: Dict[str, Any]):
    try:
        job = get_queue(RECEIPT_QUEUE).enqueue(
            generate_receipt_job, order_data, brand_info,
            retry=job_retry(), result_ttl=0, failure_ttl=FAILED_JOB_TTL,
        )
    except redis.RedisError as exc:
        logger.error("receipt_job_enqueue_failed", reference=order_data.get("reference"), error=str(exc))
        raise AppError("Failed to add create receipt job to the queue", 500)
    logger.info("receipt_job_queued", job_id=job.id, reference=order_data.get("reference"))
    return job


def next_midnight(after: Optional[datetime] = None) -> datetime:
    after = after or datetime.now(timezone.utc)
    return datetime.combine(after.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)


def schedule_promotion_sweep(at: Optional[datetime] = None):
    """Schedule the expiry sweep; one job id per run date keeps a single pending run."""
    run_at = at or next_midnight()
    job = get_queue(PROMOTION_QUEUE).enqueue_at(
        run_at, expire_promotions_job,
        job_id=f"{PROMOTION_SWEEP_JOB_PREFIX}-{run_at:%Y%m%d}", result_ttl=0, failure_ttl=FAILED_JOB_TTL,
    )
    logger.info("promotion_sweep_scheduled", run_at=run_at.isoformat())
    return job


# Jobs (run inside the rq worker)

def send_email_job(to, subject: str, html: str, text: Optional[str] = None) -> str:
    return send_mail(to, subject, html, text)


def generate_receipt_job(order_data: Dict[str, Any], brand_info: Dict[str, Any]) -> Dict[str, str]:
    reference = order_data["reference"]
    pdf_bytes, jpeg_bytes = render_receipt(order_data, brand_info)
    pdf_url = upload_pdf(pdf_bytes, f"receipt-{reference}.pdf")
    jpg_url = upload_image(jpeg_bytes, f"receipt-{reference}.jpg", "image/jpeg")

    result = db["order"].update_one(
        {"reference": reference},
        {"$set": {"receiptPdf": pdf_url, "receiptImage": jpg_url, "updated_at": now()}},
    )
    if result.matched_count == 0:
        raise AppError("Failed to update order with receipt URLs", 404)
    logger.info("receipt_generated", reference=reference)
    return {"pdfUrl": pdf_url, "jpgUrl": jpg_url}


def expire_promotions_job() -> int:
    # promotions pulls in the routers; import lazily inside the worker
    from promotions import expire_promotions

    try:
        released = expire_promotions()
    finally:
        schedule_promotion_sweep()
    logger.info("promotion_sweep_completed", released=released)
    return released

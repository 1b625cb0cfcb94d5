from datetime import datetime, timezone

import fakeredis
import pytest
import redis

import jobs
from database import create_document, db, now
from errors import AppError


@pytest.fixture
def queue_redis(monkeypatch):
    fake = fakeredis.FakeRedis()
    monkeypatch.setattr(jobs, "queue_connection", fake)
    return fake


def paid_order(reference="REF1234567"):
    create_document("order", {
        "clientName": "Ada Obi",
        "products": [{"product": "p1", "description": "iphone 15", "quantity": 2, "price": 1000.0,
                      "thumbnail": "http://localhost:9000/storefront/uploads/i.jpg"}],
        "totalAmount": 2000.0,
        "currency": "NGN",
        "reference": reference,
        "status": "paid",
        "paidAt": now(),
    })
    order = db["order"].find_one({"reference": reference})
    order["paidAt"] = order["paidAt"].isoformat()
    order["_id"] = str(order["_id"])
    return order


def test_enqueue_email(queue_redis):
    job = jobs.enqueue_email("ada@example.com", "Hello", "<p>Hi</p>", "Hi")
    queue = jobs.get_queue(jobs.EMAIL_QUEUE)
    assert queue.count == 1
    assert job.func_name == "jobs.send_email_job"
    assert tuple(job.args) == ("ada@example.com", "Hello", "<p>Hi</p>", "Hi")
    assert job.retries_left == 3


def test_enqueue_receipt(queue_redis):
    order = {"reference": "REF1234567", "totalAmount": 10}
    job = jobs.enqueue_receipt(order, {"name": "Shop"})
    assert jobs.get_queue(jobs.RECEIPT_QUEUE).count == 1
    assert tuple(job.args) == (order, {"name": "Shop"})


def test_enqueue_failure_raises_app_error(monkeypatch):
    class BrokenQueue:
        def enqueue(self, *args, **kwargs):
            raise redis.ConnectionError("down")

    monkeypatch.setattr(jobs, "get_queue", lambda name: BrokenQueue())
    with pytest.raises(AppError) as exc:
        jobs.enqueue_email("ada@example.com", "Hello", "<p>Hi</p>")
    assert exc.value.status_code == 500


def test_next_midnight():
    after = datetime(2025, 3, 4, 22, 15, tzinfo=timezone.utc)
    assert jobs.next_midnight(after) == datetime(2025, 3, 5, tzinfo=timezone.utc)


def test_schedule_promotion_sweep(queue_redis):
    run_at = datetime(2030, 1, 1, tzinfo=timezone.utc)
    job = jobs.schedule_promotion_sweep(run_at)
    assert job.id == "expire-promotions-20300101"
    registry = jobs.get_queue(jobs.PROMOTION_QUEUE).scheduled_job_registry
    assert job.id in registry.get_job_ids()


def test_send_email_job(monkeypatch):
    sent = []
    monkeypatch.setattr(jobs, "send_mail", lambda *args: sent.append(args) or "msg-1")
    assert jobs.send_email_job("ada@example.com", "Hello", "<p>Hi</p>") == "msg-1"
    assert sent == [("ada@example.com", "Hello", "<p>Hi</p>", None)]


def test_generate_receipt_job_stores_urls(storage):
    order = paid_order()
    result = jobs.generate_receipt_job(order, {"name": "Smart Commerce", "phone": "0801"})

    assert result["pdfUrl"].endswith("receipt-REF1234567.pdf")
    assert result["jpgUrl"].endswith("receipt-REF1234567.jpg")
    stored = db["order"].find_one({"reference": "REF1234567"})
    assert stored["receiptPdf"] == result["pdfUrl"]
    assert stored["receiptImage"] == result["jpgUrl"]


def test_generate_receipt_job_missing_order(storage):
    order = paid_order()
    db["order"].delete_many({})
    with pytest.raises(AppError) as exc:
        jobs.generate_receipt_job(order, {"name": "Smart Commerce"})
    assert exc.value.status_code == 404


def test_expire_promotions_job_reschedules(monkeypatch):
    import promotions

    scheduled = []
    monkeypatch.setattr(jobs, "schedule_promotion_sweep", lambda at=None: scheduled.append(at))
    monkeypatch.setattr(promotions, "expire_promotions", lambda: 2)
    assert jobs.expire_promotions_job() == 2
    assert scheduled == [None]


def test_expire_promotions_job_reschedules_after_failure(monkeypatch):
    import promotions

    scheduled = []

    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(jobs, "schedule_promotion_sweep", lambda at=None: scheduled.append(at))
    monkeypatch.setattr(promotions, "expire_promotions", boom)
    with pytest.raises(RuntimeError):
        jobs.expire_promotions_job()
    assert scheduled == [None]

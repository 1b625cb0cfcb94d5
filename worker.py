"""
Background worker: ``python worker.py``.

Listens on the email, receipt and promotion queues and runs rq's scheduler
so the nightly promotion sweep fires on time.
"""
import structlog
from rq import Worker

from jobs import QUEUE_NAMES, get_queue, queue_connection, schedule_promotion_sweep
from logging_config import setup_logging


def main() -> None:
    setup_logging(service="storefront-worker")
    logger = structlog.get_logger(__name__)

    queue_connection.ping()
    schedule_promotion_sweep()
    logger.info("worker_starting", queues=QUEUE_NAMES)

    worker = Worker([get_queue(name) for name in QUEUE_NAMES], connection=queue_connection)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()

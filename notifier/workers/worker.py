from __future__ import annotations

from notifier.core.logger import init_logging
from notifier.core.monitoring import init_monitoring
from notifier.workers.celery_app import celery_app


def main() -> None:
    """Launch a Celery worker with embedded beat for the reminder schedule."""
    init_logging()
    init_monitoring()
    celery_app.worker_main(["worker", "--beat", "--loglevel=info"])


if __name__ == "__main__":
    main()

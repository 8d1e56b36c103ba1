"""Local entry point: one worker process serving every queue plus the beat scheduler.

Production runs ``celery -A infrastructure.tasks worker`` and a separate
``celery -A infrastructure.tasks beat`` instead.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=["worker", "-B", "-Q", "high,default,low", "--hostname=paysync@%h", "--loglevel=INFO"]
    )


if __name__ == "__main__":
    main()

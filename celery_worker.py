#!/usr/bin/env python3
"""
Celery worker script for the marketplace order service.
Run this script to start the Celery worker for outgoing notifications.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app
    from core.logging_config import configure_logging

    configure_logging()

    celery_app.start([
        "worker",
        "--loglevel=info",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])

from __future__ import annotations

import os


def _ensure_test_defaults() -> None:
    # unit tests must never pick up credentials from a developer .env
    os.environ.setdefault("DOCKER_CONTAINER", "true")
    os.environ.setdefault("RUN_LIVE_KAFKA_E2E", "false")
    os.environ.setdefault("LOG_LEVEL", "DEBUG")


_ensure_test_defaults()

import os
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def _is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def pytest_collection_modifyitems(config, items):
    should_run = _is_truthy(os.getenv("RUN_DB_TESTS")) and bool(os.getenv("DB_DSN"))
    if should_run:
        return

    skip_marker = pytest.mark.skip(
        reason="Set RUN_DB_TESTS=1 (and DB_DSN) to run tests against a live Postgres"
    )
    for item in items:
        if "requires_postgres" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def _reset_global_caches():
    from utils.caching import NAMED_CACHES

    for cache in NAMED_CACHES.values():
        cache.clear()
    yield
    for cache in NAMED_CACHES.values():
        cache.clear()

"""Shared pytest setup: markers, optional .env.test, excepthook isolation."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from dotenv import load_dotenv

# STABLEHAND_TEST_DATABASE_URL may come from here; read before fixtures run
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env.test')


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line('markers', 'unit: no database needed')
    config.addinivalue_line(
        'markers',
        'integration: runs against a temporary SQLite file, or '
        'STABLEHAND_TEST_DATABASE_URL when set',
    )


@pytest.fixture(autouse=True)
def _keep_excepthook() -> Iterator[None]:
    """Importing stablehand installs an excepthook; tests that swap it get it back."""
    hook = sys.excepthook
    yield
    sys.excepthook = hook

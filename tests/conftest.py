"""
Pytest fixtures and configuration for the CEP Automation test suite.
"""

import os
import random
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Settings are read at import time, so they have to be in place first
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "cep_automation_test_logs"))
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")

from core.file_manager import FileManager  # noqa: E402
from core.models import PaymentRecord  # noqa: E402
from tests.fakes import FakeSleep  # noqa: E402


# === Test Data Fixtures ===

@pytest.fixture
def sample_records():
    """Three payments as the data source returns them."""
    return [
        PaymentRecord("2024-03-14T00:00:00", "MBAN01002403140001", "40012", "90646", "646180157000000004", "1500.00"),
        PaymentRecord("2024-03-14", "MBAN01002403140002", "40072", "90646", "646180157000000017", "12,345.67"),
        PaymentRecord("2024-03-14", "MBAN01002403140003", "40014", "90646", "646180157000000020", "-20"),
    ]


@pytest.fixture
def files(tmp_path):
    """File manager rooted in a temporary data directory."""
    manager = FileManager(tmp_path / "data")
    manager.initialize_directories()
    return manager


@pytest.fixture
def input_file(files):
    path = files.output_path("20240315-0900-T01")
    path.write_text("2024-03-14,MBAN01002403140001,40012,90646,646180157000000004,1500.00\n")
    return path


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def rng():
    """Seeded randomness so human-behavior helpers are repeatable."""
    return random.Random(1234)


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests that don't require external services")
    config.addinivalue_line("markers", "integration: Tests that wire several components together")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")

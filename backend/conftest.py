"""Root conftest: load .env.tests and route structlog through stdlib logging so caplog sees ledger events."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import _serialize_enums

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# Events reach caplog as event dicts (record.msg) with enums already flattened.
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _serialize_enums,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Prevent context leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()

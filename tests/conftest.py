import logging

import pytest

from factories import FakeAttachments, FakeGateway, FakeStore
from modmail.services.relay import RelayOptions
from modmail.services.state import ModmailState
from modmail.services.transcripts import LogExporter

# Configure logging for tests (reduce noise)
logging.basicConfig(level=logging.WARNING)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def attachments():
    return FakeAttachments()


@pytest.fixture
def options():
    return RelayOptions(prefix="!", snippet_prefix="!!", log_channel_id=42)


@pytest.fixture
def log_exporter(store, tmp_path):
    return LogExporter(store, logs_dir=tmp_path / "logs", url_base="https://modmail.example")


@pytest.fixture
def state(store, gateway, attachments, options, log_exporter):
    """Process state wired to in-memory fakes."""
    return ModmailState.build(store, gateway, attachments, options=options, log_exporter=log_exporter)

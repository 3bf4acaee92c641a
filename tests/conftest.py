import pytest

from helpers import RecordingTransport


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()

"""Test helpers package for shared fakes."""

from tests.helpers.fake_client import InMemoryDatabaseClient
from tests.helpers.reporters import RecordingReporter

__all__ = [
    "InMemoryDatabaseClient",
    "RecordingReporter",
]

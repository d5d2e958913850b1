"""
Tests for backend mode parsing and selection.
"""
import pytest

from store import BackendMode, BackendSelector
from db_operations import SqlRentalStore
from mongo_operations import MongoRentalStore


@pytest.mark.parametrize("value,expected", [
    ("nosql", BackendMode.DOCUMENT),
    ("NoSQL", BackendMode.DOCUMENT),
    (" mongodb ", BackendMode.DOCUMENT),
    ("document", BackendMode.DOCUMENT),
    ("relational", BackendMode.RELATIONAL),
    ("sql", BackendMode.RELATIONAL),
    ("", BackendMode.RELATIONAL),
    (None, BackendMode.RELATIONAL),
])
def test_parse_mode(value, expected):
    assert BackendMode.parse(value) is expected


class TestBackendSelector:
    def setup_method(self):
        self.relational = SqlRentalStore(session_maker=None)
        self.document = MongoRentalStore()

    def test_starts_relational(self):
        backends = BackendSelector(self.relational, self.document)

        assert backends.mode is BackendMode.RELATIONAL
        assert backends.current() is self.relational

    def test_configured_start_mode(self):
        backends = BackendSelector(self.relational, self.document, mode=BackendMode.parse("nosql"))

        assert backends.current() is self.document

    def test_switch(self):
        backends = BackendSelector(self.relational, self.document)

        backends.switch(BackendMode.DOCUMENT)

        assert backends.mode is BackendMode.DOCUMENT
        assert backends.current() is self.document
        assert backends.store_for(BackendMode.RELATIONAL) is self.relational

    def test_store_resolved_before_switch_is_kept(self):
        backends = BackendSelector(self.relational, self.document)
        in_flight = backends.current()

        backends.switch(BackendMode.DOCUMENT)

        assert in_flight is self.relational
        assert backends.current() is self.document

    def test_error_messages_name_the_backend(self):
        assert self.relational.error_message("Failed to load vehicles") == "Failed to load vehicles"
        assert self.document.error_message("Failed to load vehicles") == "NoSQL: Failed to load vehicles"

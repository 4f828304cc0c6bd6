"""
Unit tests for duplicate detection.
Tests cloudnest/storage/deduplication.py
"""
import pytest


@pytest.mark.unit
class TestDuplicateDetector:
    """Test duplicate grouping and wasted-space accounting."""

    def test_groups_by_hash_with_oldest_as_original(self, db, storage_engine, register_backend, make_file):
        backend = register_backend("primary", is_default=True)
        original = make_file(backend_id=backend.id, name="a.bin", size=1000, content_hash="h1", storage_key="k-a")
        copy = make_file(backend_id=backend.id, name="b.bin", size=1000, content_hash="h1", storage_key="k-b")
        make_file(backend_id=backend.id, name="c.bin", size=500, content_hash="h2", storage_key="k-c")

        groups = storage_engine.duplicates(db).scan("user-1")

        assert len(groups) == 1
        assert groups[0].original.file_id == original.id
        assert [d.file_id for d in groups[0].duplicates] == [copy.id]
        assert groups[0].wasted_space_bytes == 1000

    def test_reused_key_wastes_nothing(self, db, storage_engine, register_backend, make_file):
        backend = register_backend("primary", is_default=True)
        make_file(backend_id=backend.id, name="a.bin", size=1000, content_hash="h1", storage_key="shared")
        make_file(backend_id=backend.id, name="b.bin", size=1000, content_hash="h1", storage_key="shared")

        groups = storage_engine.duplicates(db).scan("user-1")

        assert groups[0].total_duplicates == 1
        assert groups[0].wasted_space_bytes == 0

    def test_report(self, db, storage_engine, register_backend, make_file):
        backend = register_backend("primary", is_default=True)
        make_file(backend_id=backend.id, name="a.bin", size=1000, content_hash="h1", storage_key="k-a")
        make_file(backend_id=backend.id, name="b.bin", size=1000, content_hash="h1", storage_key="k-b")
        make_file(backend_id=backend.id, name="c.bin", size=2000, content_hash="h2", storage_key="k-c")
        make_file(owner_id="user-2", backend_id=backend.id, name="d.bin", size=1000, content_hash="h1")

        report = storage_engine.duplicates(db).report("user-1")

        assert report["total_files"] == 3
        assert report["total_size_bytes"] == 4000
        assert report["unique_hashes"] == 2
        assert report["duplicate_groups"] == 1
        assert report["wasted_space_bytes"] == 1000
        assert report["savings_percentage"] == 25.0

    def test_deleted_files_are_ignored(self, db, storage_engine, register_backend, make_file):
        backend = register_backend("primary", is_default=True)
        make_file(backend_id=backend.id, name="a.bin", content_hash="h1", storage_key="k-a")
        copy = make_file(backend_id=backend.id, name="b.bin", content_hash="h1", storage_key="k-b")
        storage_engine.catalog(db).soft_delete(copy.id, "user-1")

        assert storage_engine.duplicates(db).scan("user-1") == []

    def test_empty_catalog(self, db, storage_engine):
        report = storage_engine.duplicates(db).report()

        assert report["total_files"] == 0
        assert report["savings_percentage"] == 0
        assert report["duplicates"] == []

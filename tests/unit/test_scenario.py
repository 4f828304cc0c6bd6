"""
End-to-end walk through folders, uploads, quota and cascading delete
using the engine's services directly.
"""
import pytest

from cloudnest.storage.admission import AdmissionStatus
from cloudnest.services.upload_service import TransferResult, UploadService
from cloudnest.storage.catalog import FileMeta


@pytest.mark.unit
class TestDocsArchiveScenario:

    def test_scenario(self, db, storage_engine, register_backend):
        owner = "user-1"
        register_backend("primary", is_default=True)
        storage_engine.ensure_quota_loaded(db, owner, limit_bytes=1_000_000)
        tree = storage_engine.folders(db)
        uploads = UploadService(storage_engine, db)

        docs = tree.create("Docs", owner)
        year = tree.create("2024", owner, parent_id=docs.id)
        assert year.path == "/Docs/2024"

        report_meta = FileMeta(
            owner_id=owner,
            name="report.pdf",
            mime_type="application/pdf",
            size=500_000,
            content_hash="report-hash",
            folder_id=year.id,
        )
        decision = storage_engine.admission(db).admit_upload(owner, report_meta)
        assert decision.status == AdmissionStatus.ADMITTED
        report = uploads.finalize_upload(
            owner, report_meta, decision,
            TransferResult(storage_key="user-1/report.pdf", bytes_transferred=500_000),
        )
        assert storage_engine.ledger.state(owner).used_bytes == 500_000

        second_meta = FileMeta(
            owner_id=owner,
            name="second.bin",
            mime_type="application/octet-stream",
            size=600_000,
            content_hash="second-hash",
            folder_id=year.id,
        )
        denied = storage_engine.admission(db).admit_upload(owner, second_meta)
        assert denied.status == AdmissionStatus.QUOTA_EXCEEDED
        assert denied.shortfall_bytes == 100_000
        assert storage_engine.ledger.state(owner).used_bytes == 500_000

        tree.rename(docs.id, "Archive")
        assert tree.get(year.id).path == "/Archive/2024"

        cascade = tree.soft_delete(docs.id, owner)
        assert set(cascade.folder_ids) == {docs.id, year.id}
        assert cascade.file_ids == [report.id]
        assert tree.get(year.id, include_deleted=True).is_deleted is True
        assert storage_engine.catalog(db).get(report.id, include_deleted=True).is_deleted is True

        assert storage_engine.ledger.state(owner).used_bytes == 500_000

    def test_quota_rehydrates_with_soft_deleted_bytes(self, db, storage_engine, register_backend, make_file):
        backend = register_backend("primary", is_default=True)
        record = make_file(backend_id=backend.id, size=300_000, track_usage=False)
        storage_engine.catalog(db, track_usage=False).soft_delete(record.id, "user-1")

        state = storage_engine.ensure_quota_loaded(db, "user-1", limit_bytes=1_000_000)

        assert state.used_bytes == 300_000
        assert state.limit_bytes == 1_000_000

        updated = storage_engine.ensure_quota_loaded(db, "user-1", limit_bytes=2_000_000)
        assert updated.limit_bytes == 2_000_000
        assert updated.used_bytes == 300_000

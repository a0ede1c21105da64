"""Upload, duplicate resolution and version management."""

import hashlib

import pytest

from conftest import FORM31_TEXT, OWNER
from trustee_docs.core.entities.document import ProcessingStatus
from trustee_docs.core.errors import DocumentNotFoundError, InvalidUploadError
from trustee_docs.core.interfaces.storage_service import StorageRef
from trustee_docs.core.use_cases.upload_document import CancellationToken, UploadDocumentUseCase
from trustee_docs.infrastructure.db.repository import DocumentRepository


def stored_files(storage_root):
    return sorted(p.relative_to(storage_root).as_posix() for p in storage_root.rglob("*") if p.is_file())


class TestCreate:
    def test_new_upload(self, upload, store, storage):
        outcome = upload()

        assert outcome.outcome == "created"
        assert outcome.needs_analysis
        doc = outcome.document
        assert doc.status == ProcessingStatus.PENDING
        assert doc.storage_path == f"{OWNER}/{doc.id}/claim.txt"
        assert storage.download(doc.storage_path) == FORM31_TEXT.encode()
        assert doc.metadata["stage"] == "queued"
        assert doc.metadata["events"][0]["event"] == "uploaded"

        versions = store.list_versions(doc.id)
        assert len(versions) == 1
        assert versions[0].is_current
        assert versions[0].version_number == 1

    def test_same_content_is_a_duplicate(self, upload, store):
        first = upload().document
        outcome = upload(filename="renamed.txt")

        assert outcome.outcome == "duplicate"
        assert not outcome.needs_analysis
        assert [d.id for d in outcome.duplicate.candidates] == [first.id]
        assert not store.title_exists(OWNER, "renamed.txt")

    def test_five_byte_file_twice(self, upload):
        first = upload(filename="a.txt", text=b"12345")
        second = upload(filename="a.txt", text=b"12345")
        assert second.outcome == "duplicate"
        assert second.duplicate.candidates[0].id == first.document.id

    def test_other_owner_is_not_a_duplicate(self, upload):
        upload()
        assert upload(owner="trustee-2").outcome == "created"

    def test_lookup_failure_proceeds(self, upload, store, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("index unavailable")

        monkeypatch.setattr(store, "find_duplicates", broken)
        outcome = upload()

        assert outcome.outcome == "created"
        assert outcome.document.metadata["duplicate_check_failed"] is True

    def test_metadata_mode_duplicates_by_name_size_type(self, store, storage, services):
        uploads = UploadDocumentUseCase(store, storage, services.orchestrator, fingerprint_mode="metadata")
        uploads.execute(OWNER, "claim.txt", b"aaaa", "text/plain")
        outcome = uploads.execute(OWNER, "claim.txt", b"bbbb", "text/plain")

        assert outcome.outcome == "duplicate"
        assert outcome.fingerprint.sha256 is None

    @pytest.mark.parametrize("kwargs", [
        {"filename": "", "text": "x"},
        {"text": b""},
        {"mime_type": "application/x-msdownload"},
    ])
    def test_invalid_uploads_rejected(self, upload, kwargs):
        with pytest.raises(InvalidUploadError):
            upload(**kwargs)

    def test_too_large(self, store, storage, services):
        uploads = UploadDocumentUseCase(store, storage, services.orchestrator, max_upload_bytes=4)
        with pytest.raises(InvalidUploadError) as exc:
            uploads.execute(OWNER, "big.txt", b"12345", "text/plain")
        assert exc.value.details["max_upload_bytes"] == 4


class TestResolutions:
    def test_cancel_creates_nothing(self, upload, store, tmp_path):
        upload()
        outcome = upload(resolution="cancel")
        assert outcome.outcome == "cancelled"
        assert len(store.find_duplicates(OWNER, sha256=outcome.fingerprint.sha256)) == 1

    def test_rename_creates_copy(self, upload, store):
        upload()
        first = upload(resolution="rename").document
        second = upload(resolution="rename").document

        assert first.title == "claim_copy.txt"
        assert second.title == "claim_copy_2.txt"
        assert first.metadata["renamed_from"] == "claim.txt"

    def test_replace_resets_complete_document(self, services, upload, store, storage, oracle):
        doc = upload().document
        services.orchestrator.execute(doc.id)

        new_text = FORM31_TEXT + "\nSigned by the creditor.\n"
        outcome = upload(text=new_text, resolution="replace", target_existing_id=doc.id)

        assert outcome.outcome == "replaced"
        replaced = outcome.document
        assert replaced.id == doc.id
        assert replaced.status == ProcessingStatus.PENDING
        assert replaced.metadata["force_reanalysis"] is True
        assert store.get_current_analysis(doc.id) is None
        assert storage.download(doc.storage_path) == new_text.encode()
        versions = store.list_versions(doc.id)
        assert len(versions) == 1
        assert versions[0].size == len(new_text.encode())
        assert versions[0].sha256 == hashlib.sha256(new_text.encode()).hexdigest()
        assert versions[0].storage_path == doc.storage_path

        run = services.orchestrator.execute(doc.id)
        assert run.success
        assert oracle.calls == 2

    def test_version_keeps_exactly_one_current(self, services, upload, store, storage, oracle):
        doc = upload().document
        services.orchestrator.execute(doc.id)

        outcome = upload(text=FORM31_TEXT + "\nAmended.\n", resolution="version", target_existing_id=doc.id)

        assert outcome.outcome == "versioned"
        versioned = outcome.document
        versions = store.list_versions(doc.id)
        assert [v.version_number for v in versions] == [2, 1]
        assert [v.is_current for v in versions] == [True, False]
        assert versioned.storage_path == versions[0].storage_path == f"{OWNER}/{doc.id}/v2_claim.txt"
        assert versioned.status == ProcessingStatus.PENDING
        assert store.get_current_analysis(doc.id) is None

        services.orchestrator.execute(doc.id)
        assert oracle.calls == 2

    def test_version_without_target_uses_latest_candidate(self, upload, store):
        doc = upload().document
        outcome = upload(resolution="version")
        assert outcome.document.id == doc.id

    def test_version_with_foreign_target_rejected(self, upload):
        doc = upload().document
        with pytest.raises(DocumentNotFoundError):
            upload(owner="trustee-2", resolution="version", target_existing_id=doc.id)

    def test_version_of_running_document_stops_the_run(self, services, upload, store):
        doc = upload().document
        store.update_status(doc.id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)

        versioned = upload(text="new bytes", resolution="version", target_existing_id=doc.id).document

        assert versioned.status == ProcessingStatus.PENDING
        assert versioned.metadata["previous_errors"][0]["error"] == "user_cancelled"


class TestCancellationToken:
    def test_cancelled_before_write(self, upload, storage, tmp_path):
        token = CancellationToken()
        token.cancel()

        outcome = upload(cancel_token=token)

        assert outcome.outcome == "cancelled"
        assert stored_files(tmp_path / "storage") == []

    def test_cancel_during_write_removes_object(self, store, storage, services, tmp_path):
        token = CancellationToken()

        class CancellingStorage:
            def upload(self, data, key, content_type="application/octet-stream") -> StorageRef:
                ref = storage.upload(data, key, content_type)
                token.cancel()
                return ref

            def delete(self, key):
                storage.delete(key)

        uploads = UploadDocumentUseCase(store, CancellingStorage(), services.orchestrator)
        outcome = uploads.execute(OWNER, "claim.txt", b"content", "text/plain", cancel_token=token)

        assert outcome.outcome == "cancelled"
        assert stored_files(tmp_path / "storage") == []
        assert not store.title_exists(OWNER, "claim.txt")

    def test_failed_insert_removes_object(self, storage, services, tmp_path, engine):
        class FailingStore(DocumentRepository):
            def insert(self, document, initial_version=None):
                raise RuntimeError("constraint violated")

        uploads = UploadDocumentUseCase(FailingStore(), storage, services.orchestrator)
        with pytest.raises(RuntimeError):
            uploads.execute(OWNER, "claim.txt", b"content", "text/plain")
        assert stored_files(tmp_path / "storage") == []


class TestVersionSwitch:
    def test_switch_back_to_first_version(self, services, upload, store):
        doc = upload().document
        upload(text="second version", resolution="version", target_existing_id=doc.id)
        first = store.list_versions(doc.id)[-1]

        switched = services.versions.switch(doc.id, first.id)

        versions = store.list_versions(doc.id)
        assert [v.is_current for v in versions] == [False, True]
        assert switched.storage_path == first.storage_path
        assert switched.status == ProcessingStatus.PENDING

    def test_switch_unknown_version(self, services, upload):
        doc = upload().document
        with pytest.raises(DocumentNotFoundError):
            services.versions.switch(doc.id, "nope")

    def test_list_unknown_document(self, services):
        with pytest.raises(DocumentNotFoundError):
            services.versions.list("nope")

"""Document upload, batch validation, retry and deletion."""
import pytest

from conftest import StubProcessingAPI
from studyquiz.cache import QueryCache
from studyquiz.documents import (
    DocumentService,
    UploadFile,
    build_storage_path,
    format_file_size,
    sanitize_filename,
    validate_batch,
)
from studyquiz.errors import StudyQuizError, UploadValidationError
from studyquiz.processing_api import TriggerResult

MB = 1024 * 1024


def pdf(name="notes.pdf", size=1000):
    return UploadFile(name, b"x" * size, "application/pdf")


def test_batch_limits():
    validate_batch([pdf(f"{i}.pdf") for i in range(5)])
    with pytest.raises(UploadValidationError) as exc:
        validate_batch([pdf(f"{i}.pdf") for i in range(6)])
    assert str(exc.value) == "You can only upload up to 5 files at a time."


def test_oversized_file_rejects_the_batch():
    with pytest.raises(UploadValidationError) as exc:
        validate_batch([pdf("small.pdf"), pdf("huge.pdf", 10 * MB + 1)])
    assert str(exc.value) == "Some files are too large. Maximum size is 10MB. (huge.pdf)"
    validate_batch([pdf("exact.pdf", 10 * MB)])


def test_storage_path_is_sanitized():
    assert sanitize_filename("Week 1: notes (v2).pdf") == "Week_1__notes__v2_.pdf"
    assert build_storage_path("u1", "my file.pdf", 1700000000000) == "u1/1700000000000_my_file.pdf"


@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (512, "512 B"),
    (1024, "1 KB"),
    (1536, "1.5 KB"),
    (10 * MB, "10 MB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_upload_document_stores_file_row_and_triggers(supabase, db, api):
    progress = []
    doc = DocumentService(db, api).upload_document(pdf("lecture 1.pdf"), "u1", progress.append)

    assert doc.status == "pending"
    assert doc.title == "lecture 1.pdf"
    assert doc.file_path.startswith("u1/") and doc.file_path.endswith("_lecture_1.pdf")
    assert doc.file_path in supabase.storage.objects
    assert api.triggered == [doc.id]
    assert progress == [10, 50, 80, 100]


def test_failed_trigger_marks_document_failed_but_returns_it(supabase, db):
    api = StubProcessingAPI(TriggerResult(success=False, error="Server error 503", retries=3))
    doc = DocumentService(db, api).upload_document(pdf(), "u1")

    assert doc.status == "failed"
    assert doc.error_message == "Server error 503"
    stored = supabase.tables["documents"][0]
    assert stored["status"] == "failed"
    assert stored["error_message"] == "Failed to start processing: Server error 503"


def test_storage_failure_raises_before_any_row(supabase, db, api):
    supabase.storage.fail_upload = True
    with pytest.raises(StudyQuizError, match="Failed to upload notes.pdf"):
        DocumentService(db, api).upload_document(pdf(), "u1")
    assert supabase.tables.get("documents", []) == []
    assert api.triggered == []


def test_batch_upload_isolates_failures(supabase, db, api):
    service = DocumentService(db, api)
    original = service.upload_document

    def flaky(file, user_id, on_progress=None):
        if file.name == "bad.pdf":
            raise StudyQuizError("Failed to upload bad.pdf")
        return original(file, user_id, on_progress)

    service.upload_document = flaky
    statuses = service.upload_batch([pdf("a.pdf"), pdf("bad.pdf"), pdf("c.pdf")], "u1")

    assert [s.file_name for s in statuses] == ["a.pdf", "bad.pdf", "c.pdf"]
    assert [s.complete for s in statuses] == [True, False, True]
    assert statuses[1].error == "Failed to upload bad.pdf"
    assert len(supabase.tables["documents"]) == 2


def test_batch_validation_happens_before_upload(supabase, db, api):
    with pytest.raises(UploadValidationError):
        DocumentService(db, api).upload_batch([pdf(f"{i}.pdf") for i in range(6)], "u1")
    assert supabase.storage.objects == {}


def test_retry_resets_status_then_triggers(supabase, db, api):
    supabase.tables["documents"] = [{"id": "d1", "status": "failed", "error_message": "timeout"}]
    result = DocumentService(db, api).retry_document_processing("d1")
    assert result.success
    assert supabase.tables["documents"][0]["status"] == "pending"
    assert api.triggered == ["d1"]


def test_retry_reports_reset_failure(supabase, db, api):
    supabase.failing.add("documents")
    with pytest.raises(StudyQuizError, match="Failed to fetch storage stats"):
        service.get_user_storage_stats("u1")
    result = DocumentService(db, api).retry_document_processing("d1")
    assert not result.success
    assert result.error == "Failed to reset document status"
    assert api.triggered == []


def test_list_and_stats(supabase, db, api):
    supabase.tables["documents"] = [
        {"id": "d1", "user_id": "u1", "title": "old", "file_path": "p1", "file_type": "t", "file_size": 100,
         "status": "completed", "created_at": "2024-01-01T00:00:00+00:00"},
        {"id": "d2", "user_id": "u1", "title": "new", "file_path": "p2", "file_type": "t", "file_size": 250,
         "status": "pending", "created_at": "2024-02-01T00:00:00+00:00"},
    ]
    service = DocumentService(db, api)
    assert [d.id for d in service.fetch_user_documents("u1")] == ["d2", "d1"]
    stats = service.get_user_storage_stats("u1")
    assert (stats.used_space, stats.file_count) == (350, 2)

    supabase.failing.add("documents")
    with pytest.raises(StudyQuizError, match="Failed to fetch storage stats"):
        service.get_user_storage_stats("u1")
    with pytest.raises(StudyQuizError, match="Failed to fetch documents"):
        service.fetch_user_documents("u1")


def test_delete_survives_storage_failure(supabase, db, api):
    supabase.tables["documents"] = [{"id": "d1", "file_path": "u1/x.pdf"}]
    supabase.storage.fail_remove = True
    DocumentService(db, api).delete_document("d1", "u1/x.pdf")
    assert supabase.tables["documents"] == []


def test_failed_storage_stats_are_not_cached(supabase, db, api):
    supabase.tables["documents"] = [
        {"id": "d1", "user_id": "u1", "title": "a", "file_path": "p1", "file_type": "t", "file_size": 100,
         "status": "completed", "created_at": "2024-01-01T00:00:00+00:00"},
    ]
    service = DocumentService(db, api)
    cache = QueryCache()

    supabase.failing.add("documents")
    with pytest.raises(StudyQuizError):
        cache.get_or_fetch("storage", "u1", lambda: service.get_user_storage_stats("u1"))
    assert ("storage", "u1") not in cache

    supabase.failing.clear()
    stats = cache.get_or_fetch("storage", "u1", lambda: service.get_user_storage_stats("u1"))
    assert stats.file_count == 1

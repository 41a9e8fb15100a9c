"""Maintenance scripts: schema printout and stuck-document retries."""
from datetime import datetime, timedelta, timezone

import init_db
import retry_stuck_documents
from conftest import StubProcessingAPI

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def doc_row(doc_id, status, minutes_ago, user_id="u1"):
    stamp = (NOW - timedelta(minutes=minutes_ago)).isoformat()
    return {
        "id": doc_id, "user_id": user_id, "title": doc_id, "file_path": f"{user_id}/{doc_id}", "file_type": "text/plain",
        "file_size": 1, "status": status, "created_at": stamp, "updated_at": stamp,
    }


def test_schema_covers_every_table():
    sql = init_db.SCHEMA_SQL
    for table in (
        "documents", "topics", "concepts", "quizzes", "questions", "question_options",
        "user_quiz_attempts", "user_concept_mastery", "question_attempts", "study_sessions",
    ):
        assert f"CREATE TABLE IF NOT EXISTS {table} (" in sql
    assert len(init_db.schema_statements()) > 10


def test_find_retryable_picks_failed_and_stuck(db, supabase):
    supabase.tables["documents"] = [
        doc_row("fresh", "processing", 5),
        doc_row("stuck", "processing", 30),
        doc_row("failed", "failed", 1),
        doc_row("done", "completed", 300),
        doc_row("other-user", "failed", 1, user_id="u2"),
    ]
    found = retry_stuck_documents.find_retryable(db, now=NOW)
    assert {d.id for d in found} == {"stuck", "failed", "other-user"}

    found = retry_stuck_documents.find_retryable(db, user_id="u1", now=NOW)
    assert {d.id for d in found} == {"stuck", "failed"}


def test_dry_run_changes_nothing(monkeypatch, db, supabase):
    supabase.tables["documents"] = [doc_row("failed", "failed", 1)]
    api = StubProcessingAPI()
    monkeypatch.setattr(retry_stuck_documents, "get_supabase_uncached", lambda: supabase)
    monkeypatch.setattr(retry_stuck_documents, "ProcessingAPIClient", lambda: api)

    assert retry_stuck_documents.main(["--dry-run"]) == 0
    assert api.triggered == []
    assert supabase.tables["documents"][0]["status"] == "failed"

    assert retry_stuck_documents.main([]) == 0
    assert api.triggered == ["failed"]
    assert supabase.tables["documents"][0]["status"] == "pending"

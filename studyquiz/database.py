"""
Database operations for StudyQuiz.
Handles Supabase CRUD for documents, topics/concepts, quizzes, attempts and mastery.

Every read is validated into a row model from studyquiz.rows. Errors are
logged and re-raised; the page that triggered the call decides what the user
sees.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from engine import BUCKET_NAME
from studyquiz.errors import NotFoundError
from studyquiz.models import ConceptMastery, QuestionAttempt, QuizAnswer
from studyquiz.rows import (
    AttemptRow,
    ConceptRow,
    DocumentRow,
    FileSizeRow,
    FullQuizRow,
    MasteryRow,
    NameRow,
    QuestionRow,
    QuizListRow,
    QuizStatusRow,
    StudySessionRow,
    TopicConceptIdsRow,
    TopicWithConceptsRow,
)

logger = logging.getLogger(__name__)

NO_ROWS_CODE = "PGRST116"

QUIZ_LIST_SELECT = """
    id,
    title,
    description,
    document_id,
    generation_status,
    created_at,
    documents ( title ),
    questions ( id )
"""

FULL_QUIZ_SELECT = """
    id,
    title,
    description,
    document_id,
    user_id,
    generation_status,
    created_at,
    updated_at,
    questions (
        id,
        question,
        hint,
        difficulty_level,
        concept_id,
        order_index,
        question_options ( id, option_text, option_index, is_correct, explanation )
    )
"""

QUESTION_SELECT = """
    id,
    question,
    hint,
    difficulty_level,
    concept_id,
    order_index,
    question_options ( id, option_text, option_index, is_correct, explanation )
"""


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseClient:
    """Wrapper around a Supabase client with StudyQuiz-specific operations."""

    def __init__(self, client: Client, bucket: str = BUCKET_NAME):
        self.client = client
        self.bucket = bucket

    # ============= Storage =============

    def upload_file(self, path: str, content: bytes, content_type: str) -> None:
        self.client.storage.from_(self.bucket).upload(
            path,
            content,
            {"content-type": content_type or "application/octet-stream", "cache-control": "3600", "upsert": "false"},
        )

    def remove_file(self, path: str) -> None:
        self.client.storage.from_(self.bucket).remove([path])

    # ============= Documents =============

    def insert_document(self, row: Dict[str, Any]) -> DocumentRow:
        response = self.client.table("documents").insert(row).execute()
        if not response.data:
            raise NotFoundError("Document insert returned no row")
        return DocumentRow.model_validate(response.data[0])

    def update_document(self, document_id: str, fields: Dict[str, Any]) -> None:
        self.client.table("documents").update(fields).eq("id", document_id).execute()

    def delete_document_row(self, document_id: str) -> None:
        self.client.table("documents").delete().eq("id", document_id).execute()

    def get_documents(self, user_id: str) -> List[DocumentRow]:
        response = (
            self.client.table("documents")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [DocumentRow.model_validate(r) for r in response.data or []]

    def get_documents_by_status(self, statuses: List[str], user_id: Optional[str] = None) -> List[DocumentRow]:
        query = self.client.table("documents").select("*").in_("status", statuses)
        if user_id:
            query = query.eq("user_id", user_id)
        response = query.order("created_at").execute()
        return [DocumentRow.model_validate(r) for r in response.data or []]

    def get_document(self, document_id: str) -> DocumentRow:
        try:
            response = self.client.table("documents").select("*").eq("id", document_id).single().execute()
        except APIError as e:
            if e.code == NO_ROWS_CODE:
                raise NotFoundError(f"Document {document_id} not found") from e
            raise
        return DocumentRow.model_validate(response.data)

    def get_file_sizes(self, user_id: str) -> List[FileSizeRow]:
        response = self.client.table("documents").select("file_size").eq("user_id", user_id).execute()
        return [FileSizeRow.model_validate(r) for r in response.data or []]

    # ============= Topics & concepts =============

    def get_topic_concept_ids(self, document_ids: List[str]) -> List[TopicConceptIdsRow]:
        if not document_ids:
            return []
        response = (
            self.client.table("topics")
            .select("id, document_id, concepts ( id )")
            .in_("document_id", document_ids)
            .execute()
        )
        return [TopicConceptIdsRow.model_validate(r) for r in response.data or []]

    def get_topics_with_concepts(self, document_id: str) -> List[TopicWithConceptsRow]:
        response = (
            self.client.table("topics")
            .select("id, document_id, name, created_at, concepts ( id, topic_id, name, explanation, source_text, complexity_level, created_at )")
            .eq("document_id", document_id)
            .order("created_at")
            .execute()
        )
        return [TopicWithConceptsRow.model_validate(r) for r in response.data or []]

    def get_concept(self, concept_id: str) -> ConceptRow:
        try:
            response = self.client.table("concepts").select("*").eq("id", concept_id).single().execute()
        except APIError as e:
            if e.code == NO_ROWS_CODE:
                raise NotFoundError(f"Concept {concept_id} not found") from e
            raise
        return ConceptRow.model_validate(response.data)

    def get_concept_names(self, concept_ids: List[str]) -> Dict[str, str]:
        if not concept_ids:
            return {}
        response = self.client.table("concepts").select("id, name").in_("id", concept_ids).execute()
        return {row.id: row.name for row in (NameRow.model_validate(r) for r in response.data or [])}

    def get_concept_questions(self, concept_id: str) -> List[QuestionRow]:
        response = (
            self.client.table("questions")
            .select(QUESTION_SELECT)
            .eq("concept_id", concept_id)
            .order("order_index")
            .execute()
        )
        return [QuestionRow.model_validate(r) for r in response.data or []]

    # ============= Mastery =============

    def get_mastery(self, user_id: str, concept_ids: Optional[List[str]] = None) -> List[MasteryRow]:
        if concept_ids is not None and not concept_ids:
            return []
        query = self.client.table("user_concept_mastery").select("*").eq("user_id", user_id)
        if concept_ids is not None:
            query = query.in_("concept_id", concept_ids)
        response = query.execute()
        return [MasteryRow.model_validate(r) for r in response.data or []]

    def get_concept_mastery(self, user_id: str, concept_id: str) -> Optional[MasteryRow]:
        rows = self.get_mastery(user_id, [concept_id])
        return rows[0] if rows else None

    def upsert_mastery(self, mastery: ConceptMastery) -> None:
        row = mastery.model_dump(mode="json")
        self.client.table("user_concept_mastery").upsert(row, on_conflict="user_id,concept_id").execute()

    # ============= Study sessions & attempts =============

    def create_study_session(self, user_id: str, concept_id: str) -> StudySessionRow:
        row = {"user_id": user_id, "concept_id": concept_id, "started_at": _utcnow_iso()}
        response = self.client.table("study_sessions").insert(row).execute()
        if not response.data:
            raise NotFoundError("Study session insert returned no row")
        return StudySessionRow.model_validate(response.data[0])

    def end_study_session(self, session_id: str) -> None:
        self.client.table("study_sessions").update({"ended_at": _utcnow_iso()}).eq("id", session_id).execute()

    def insert_question_attempt(self, user_id: str, attempt: QuestionAttempt, session_id: Optional[str]) -> None:
        row = {
            "user_id": user_id,
            "question_id": attempt.question_id,
            "concept_id": attempt.concept_id,
            "session_id": session_id,
            "selected_option": attempt.selected_option,
            "is_correct": attempt.is_correct,
            "time_spent_ms": attempt.time_spent_ms,
            "created_at": _utcnow_iso(),
        }
        self.client.table("question_attempts").insert(row).execute()

    # ============= Quizzes =============

    def get_user_quizzes(self, user_id: str) -> List[QuizListRow]:
        response = (
            self.client.table("quizzes")
            .select(QUIZ_LIST_SELECT)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [QuizListRow.model_validate(r) for r in response.data or []]

    def get_document_quiz(self, document_id: str) -> Optional[QuizListRow]:
        try:
            response = self.client.table("quizzes").select(QUIZ_LIST_SELECT).eq("document_id", document_id).single().execute()
        except APIError as e:
            if e.code == NO_ROWS_CODE:
                return None
            raise
        return QuizListRow.model_validate(response.data) if response.data else None

    def get_full_quiz(self, quiz_id: str) -> FullQuizRow:
        try:
            response = self.client.table("quizzes").select(FULL_QUIZ_SELECT).eq("id", quiz_id).single().execute()
        except APIError as e:
            if e.code == NO_ROWS_CODE:
                raise NotFoundError(f"Quiz {quiz_id} not found") from e
            raise
        if not response.data:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        return FullQuizRow.model_validate(response.data)

    def get_quiz_statuses(self, document_ids: List[str]) -> List[QuizStatusRow]:
        if not document_ids:
            return []
        response = (
            self.client.table("quizzes")
            .select("document_id, generation_status")
            .in_("document_id", document_ids)
            .execute()
        )
        return [QuizStatusRow.model_validate(r) for r in response.data or []]

    def insert_quiz_attempt(self, user_id: str, quiz_id: str, score: int, total: int, answers: List[QuizAnswer]) -> Dict[str, Any]:
        row = {
            "user_id": user_id,
            "quiz_id": quiz_id,
            "score": score,
            "total_questions": total,
            "answers": [
                {"questionId": a.question_id, "selectedOption": a.selected_option} for a in answers
            ],
        }
        response = self.client.table("user_quiz_attempts").insert(row).execute()
        if not response.data:
            raise NotFoundError("Quiz attempt insert returned no row")
        return response.data[0]

    def get_quiz_attempts(self, user_id: str, quiz_id: str) -> List[AttemptRow]:
        response = (
            self.client.table("user_quiz_attempts")
            .select("id, score, total_questions, completed_at")
            .eq("user_id", user_id)
            .eq("quiz_id", quiz_id)
            .order("completed_at", desc=True)
            .execute()
        )
        return [AttemptRow.model_validate(r) for r in response.data or []]

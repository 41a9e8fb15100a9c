"""
Study mode: per-document mastery progress, picking the next concept, and
focused practice sessions that update mastery after every answer.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from studyquiz.database import DatabaseClient
from studyquiz.mastery import (
    DEFAULT_REVIEW_POLICY,
    ReviewPolicy,
    StudySession,
    apply_attempt,
    new_mastery,
)
from studyquiz.models import (
    AttemptOutcome,
    ConceptMastery,
    ConceptProgress,
    DocumentProgress,
    QuestionAttempt,
    TopicProgress,
)
from studyquiz.rows import TopicWithConceptsRow
from studyquiz.scoring import percentage

logger = logging.getLogger(__name__)


def build_document_progress(
    document_id: str,
    document_title: str,
    topics: List[TopicWithConceptsRow],
    mastery_by_concept: Dict[str, ConceptMastery],
) -> DocumentProgress:
    topic_progress = []
    total = mastered = in_progress = 0

    for topic in topics:
        concepts = []
        for row in topic.concepts:
            concept = row.to_concept()
            m = mastery_by_concept.get(concept.id)
            status = m.status if m else "not_started"
            concepts.append(ConceptProgress(
                concept_id=concept.id,
                name=concept.name,
                explanation=concept.explanation,
                status=status,
                correct_count=m.correct_count if m else 0,
                next_review_at=m.next_review_at if m else None,
            ))
            total += 1
            if status == "mastered":
                mastered += 1
            elif status == "in_progress":
                in_progress += 1
        topic_progress.append(TopicProgress(topic_id=topic.id, name=topic.name, concepts=concepts))

    return DocumentProgress(
        document_id=document_id,
        document_title=document_title,
        topics=topic_progress,
        total_concepts=total,
        mastered_concepts=mastered,
        in_progress_concepts=in_progress,
        overall_progress=percentage(mastered, total),
    )


def next_concept_in(progress: DocumentProgress, now: Optional[datetime] = None) -> Optional[ConceptProgress]:
    """First in-progress concept, else first not started, else the earliest due review."""
    now = now or datetime.now(timezone.utc)
    concepts = [c for t in progress.topics for c in t.concepts]

    for status in ("in_progress", "not_started"):
        found = next((c for c in concepts if c.status == status), None)
        if found is not None:
            return found

    due = [
        c for c in concepts
        if c.status == "mastered" and c.next_review_at is not None and c.next_review_at <= now
    ]
    if due:
        return min(due, key=lambda c: c.next_review_at)
    return None


class StudyService:
    def __init__(self, db: DatabaseClient, policy: ReviewPolicy = DEFAULT_REVIEW_POLICY):
        self.db = db
        self.policy = policy

    def fetch_document_progress(self, document_id: str, user_id: str) -> DocumentProgress:
        try:
            document = self.db.get_document(document_id)
            topics = self.db.get_topics_with_concepts(document_id)
            concept_ids = [c.id for t in topics for c in t.concepts]
            mastery = {
                row.concept_id: row.to_mastery()
                for row in self.db.get_mastery(user_id, concept_ids)
            }
        except Exception as e:
            logger.error(f"Error fetching progress for document {document_id}: {e}")
            raise
        return build_document_progress(document_id, document.title, topics, mastery)

    def get_next_concept_to_study(self, document_id: str, user_id: str) -> Optional[ConceptProgress]:
        return next_concept_in(self.fetch_document_progress(document_id, user_id))

    def start_study_session(self, concept_id: str, user_id: str) -> StudySession:
        """Open a session row and load the concept's questions in order."""
        concept = self.db.get_concept(concept_id).to_concept()
        questions = [row.to_question() for row in self.db.get_concept_questions(concept_id)]
        row = self.db.get_concept_mastery(user_id, concept_id)
        mastery = row.to_mastery() if row else None
        session_row = self.db.create_study_session(user_id, concept_id)

        if not questions:
            logger.warning(f"Concept {concept_id} has no questions; session {session_row.id} will end immediately")
        logger.info(f"Study session {session_row.id} started on {concept.name} ({len(questions)} questions)")
        return StudySession(session_row.id, concept.id, concept.name, questions, mastery)

    def record_question_attempt(
        self,
        user_id: str,
        attempt: QuestionAttempt,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AttemptOutcome:
        """
        Save one answered question, then recompute and store the concept's mastery.

        The attempt row is written before the mastery row is touched.
        """
        try:
            self.db.insert_question_attempt(user_id, attempt, session_id)
        except Exception as e:
            logger.error(f"Error saving question attempt: {e}")
            raise

        row = self.db.get_concept_mastery(user_id, attempt.concept_id)
        current = row.to_mastery() if row else new_mastery(user_id, attempt.concept_id)
        outcome = apply_attempt(current, attempt.is_correct, now=now, policy=self.policy)

        try:
            self.db.upsert_mastery(outcome.mastery)
        except Exception as e:
            logger.error(f"Error updating mastery for concept {attempt.concept_id}: {e}")
            raise
        return outcome

    def end_session(self, session: StudySession) -> None:
        try:
            self.db.end_study_session(session.session_id)
        except Exception as e:
            logger.warning(f"Could not close study session {session.session_id}: {e}")

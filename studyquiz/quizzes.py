"""Quiz listing, loading, submission and generation."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from engine import QUESTIONS_PER_CONCEPT
from studyquiz.database import DatabaseClient
from studyquiz.models import (
    GenerationTicket,
    Quiz,
    QuizAnswer,
    QuizAttemptSummary,
    QuizListItem,
    QuizResult,
)
from studyquiz.processing_api import ProcessingAPIClient
from studyquiz.realtime import ChangeFeed, Subscription
from studyquiz.scoring import score_quiz

logger = logging.getLogger(__name__)


class QuizService:
    def __init__(self, db: DatabaseClient, api: ProcessingAPIClient):
        self.db = db
        self.api = api

    def fetch_user_quizzes(self, user_id: str) -> List[QuizListItem]:
        try:
            return [row.to_list_item() for row in self.db.get_user_quizzes(user_id)]
        except Exception as e:
            logger.error(f"Error fetching user quizzes: {e}")
            raise

    def fetch_document_quiz(self, document_id: str) -> Optional[QuizListItem]:
        """The quiz generated for a document, or None if there is none yet."""
        try:
            row = self.db.get_document_quiz(document_id)
        except Exception as e:
            logger.error(f"Error fetching document quiz: {e}")
            raise
        return row.to_list_item() if row else None

    def fetch_quiz(self, quiz_id: str) -> Quiz:
        """Full quiz with questions and options in display order."""
        try:
            return self.db.get_full_quiz(quiz_id).to_quiz()
        except Exception as e:
            logger.error(f"Error fetching quiz {quiz_id}: {e}")
            raise

    def submit_quiz_attempt(self, quiz_id: str, user_id: str, answers: List[QuizAnswer]) -> QuizResult:
        """
        Grade answers against the stored quiz and save the attempt.

        Raises:
            QuestionNotFoundError: an answer references a question the quiz does not have;
                nothing is saved in that case
        """
        quiz = self.fetch_quiz(quiz_id)
        graded = score_quiz(quiz, answers)

        try:
            attempt = self.db.insert_quiz_attempt(user_id, quiz_id, graded.score, graded.total_questions, answers)
        except Exception as e:
            logger.error(f"Error submitting quiz attempt: {e}")
            raise

        completed_at = attempt.get("completed_at") or datetime.now(timezone.utc).isoformat()
        logger.info(f"Quiz {quiz_id} submitted by {user_id}: {graded.score}/{graded.total_questions}")
        return QuizResult(
            attempt_id=attempt["id"],
            quiz_id=quiz_id,
            score=graded.score,
            total_questions=graded.total_questions,
            percentage=graded.percentage,
            question_results=graded.question_results,
            completed_at=completed_at,
        )

    def fetch_quiz_attempts(self, user_id: str, quiz_id: str) -> List[QuizAttemptSummary]:
        try:
            return [row.to_summary() for row in self.db.get_quiz_attempts(user_id, quiz_id)]
        except Exception as e:
            logger.error(f"Error fetching quiz attempts: {e}")
            raise

    def trigger_quiz_generation(
        self,
        document_id: str,
        questions_per_concept: int = QUESTIONS_PER_CONCEPT,
    ) -> GenerationTicket:
        return self.api.generate_quiz(document_id, questions_per_concept, include_hints=True)


def subscribe_to_quiz_updates(feed: ChangeFeed, document_id: str) -> Subscription:
    """Quiz row changes for one document. Drain the subscription and re-fetch on any event."""
    return feed.subscribe(
        f"quiz-updates-{document_id}",
        table="quizzes",
        event="*",
        row_filter=f"document_id=eq.{document_id}",
    )

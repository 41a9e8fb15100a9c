"""
Concept mastery tracking and spaced-review scheduling.

State per (user, concept): not_started -> in_progress -> mastered.
MASTERY_THRESHOLD consecutive correct answers master a concept; an incorrect
answer resets the streak to zero. Status never moves backwards. Once
mastered, every graded answer counts as a review and reschedules
next_review_at through a ReviewPolicy.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

from engine import MASTERY_THRESHOLD, REVIEW_BASE_DAYS, REVIEW_MAX_DAYS
from studyquiz.models import AttemptOutcome, ConceptMastery, QuizQuestion

logger = logging.getLogger(__name__)


class ReviewPolicy(Protocol):
    """Interval until the next review, given how many reviews have succeeded so far."""

    def interval(self, review_count: int) -> timedelta:
        ...


class ExponentialReviewPolicy:
    """base * factor ** review_count, capped. Monotonically non-decreasing in review_count."""

    def __init__(
        self,
        base: timedelta = timedelta(days=REVIEW_BASE_DAYS),
        factor: float = 2.0,
        maximum: timedelta = timedelta(days=REVIEW_MAX_DAYS),
    ):
        if factor < 1:
            raise ValueError("factor must be >= 1")
        self.base = base
        self.factor = factor
        self.maximum = maximum

    def interval(self, review_count: int) -> timedelta:
        exponent = min(max(0, review_count), 64)
        seconds = self.base.total_seconds() * (self.factor ** exponent)
        return timedelta(seconds=min(seconds, self.maximum.total_seconds()))


class FixedReviewPolicy:
    def __init__(self, every: timedelta = timedelta(days=REVIEW_BASE_DAYS)):
        self.every = every

    def interval(self, review_count: int) -> timedelta:
        return self.every


DEFAULT_REVIEW_POLICY = ExponentialReviewPolicy()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_mastery(user_id: str, concept_id: str) -> ConceptMastery:
    return ConceptMastery(user_id=user_id, concept_id=concept_id)


def apply_attempt(
    mastery: ConceptMastery,
    is_correct: bool,
    now: Optional[datetime] = None,
    policy: ReviewPolicy = DEFAULT_REVIEW_POLICY,
) -> AttemptOutcome:
    """
    Return the mastery row after one graded answer. The input is not modified.

    Args:
        mastery: Current row (use new_mastery() when none is stored yet)
        is_correct: Whether the answer was correct
        now: Clock for last_practiced_at / next_review_at (defaults to UTC now)
        policy: Spaced-review interval policy

    Returns:
        AttemptOutcome(mastery, is_mastered, just_mastered)
    """
    now = now or _utcnow()
    updated = mastery.model_copy()
    updated.last_practiced_at = now
    was_mastered = mastery.status == "mastered"

    if was_mastered:
        # Review of an already mastered concept
        if is_correct:
            updated.correct_count = mastery.correct_count + 1
            updated.review_count = mastery.review_count + 1
        else:
            updated.correct_count = 0
            updated.review_count = 0
        updated.next_review_at = now + policy.interval(updated.review_count)
        return AttemptOutcome(mastery=updated, is_mastered=True, just_mastered=False)

    if is_correct:
        updated.correct_count = mastery.correct_count + 1
    else:
        updated.correct_count = 0
    updated.status = "in_progress"

    just_mastered = updated.correct_count >= MASTERY_THRESHOLD
    if just_mastered:
        updated.status = "mastered"
        updated.next_review_at = now + policy.interval(updated.review_count)
        logger.info(f"Concept {mastery.concept_id} mastered by {mastery.user_id}; next review {updated.next_review_at.isoformat()}")

    return AttemptOutcome(mastery=updated, is_mastered=just_mastered, just_mastered=just_mastered)


def is_review_due(mastery: ConceptMastery, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    return (
        mastery.status == "mastered"
        and mastery.next_review_at is not None
        and mastery.next_review_at <= now
    )


def correct_needed(mastery: Optional[ConceptMastery]) -> int:
    """Correct answers still needed to master; at least 1 so a session always has a goal."""
    streak = mastery.correct_count if mastery else 0
    return max(1, MASTERY_THRESHOLD - streak)


class StudySession:
    """
    One focused practice run on a single concept.

    Ends when the concept is mastered, the question pool runs out, or the user
    exits. Mastery rows are persisted after every answer by the caller, so an
    abandoned session keeps its partial streak.
    """

    def __init__(
        self,
        session_id: str,
        concept_id: str,
        concept_name: str,
        questions: List[QuizQuestion],
        mastery: Optional[ConceptMastery] = None,
    ):
        self.session_id = session_id
        self.concept_id = concept_id
        self.concept_name = concept_name
        self.questions = questions
        self.mastery = mastery
        self.current_question_idx = 0
        self.session_correct_count = 0
        self.answered_current = False
        self.last_selected: Optional[int] = None
        self.was_mastered = False
        self.exited = False
        self.correct_target = correct_needed(mastery)

    def get_current_question(self) -> Optional[QuizQuestion]:
        if self.current_question_idx >= len(self.questions):
            return None
        return self.questions[self.current_question_idx]

    def grade(self, option_index: int) -> bool:
        """Grade the current question. Call record_outcome() with the persisted result."""
        question = self.get_current_question()
        if question is None:
            raise IndexError("No question left in this session")
        is_correct = option_index == question.correct_answer
        self.answered_current = True
        self.last_selected = option_index
        if is_correct:
            self.session_correct_count += 1
        return is_correct

    def record_outcome(self, outcome: AttemptOutcome) -> None:
        self.mastery = outcome.mastery
        if outcome.just_mastered:
            self.was_mastered = True

    @property
    def pool_exhausted(self) -> bool:
        return self.current_question_idx >= len(self.questions) - 1

    def is_finished(self) -> bool:
        if self.exited or self.was_mastered:
            return True
        if not self.questions:
            return True
        return self.answered_current and self.pool_exhausted

    def advance(self) -> bool:
        """Move to the next question. Returns False when the session is over instead."""
        if self.is_finished():
            return False
        self.current_question_idx += 1
        self.answered_current = False
        self.last_selected = None
        return True

    def exit(self) -> None:
        self.exited = True

    def restart(self) -> None:
        """Continue practising from the first question; the stored streak carries over."""
        self.current_question_idx = 0
        self.session_correct_count = 0
        self.answered_current = False
        self.last_selected = None
        self.exited = False
        self.correct_target = correct_needed(self.mastery)

    def progress_percent(self) -> int:
        streak = self.mastery.correct_count if self.mastery else 0
        return min(100, int(streak / MASTERY_THRESHOLD * 100))

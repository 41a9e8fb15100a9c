"""
Quiz engine: answer scoring, percentage/grade banding, and quiz-taking state.
Scores are plain counts of correct answers; there is no negative marking.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from engine import GRADE_BANDS
from studyquiz.errors import QuestionNotFoundError
from studyquiz.models import QuestionResult, Quiz, QuizAnswer, QuizQuestion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grade:
    emoji: str
    message: str
    color: str


@dataclass
class QuizScore:
    score: int
    total_questions: int
    percentage: int
    question_results: List[QuestionResult]


def percentage(score: int, total: int) -> int:
    """round(100 * score / total), halves rounded up. 0 when there are no questions."""
    if total <= 0:
        return 0
    value = Decimal(100 * score) / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def grade_for(percent: int) -> Grade:
    for minimum, emoji, message, color in GRADE_BANDS:
        if percent >= minimum:
            return Grade(emoji, message, color)
    _, emoji, message, color = GRADE_BANDS[-1]
    return Grade(emoji, message, color)


def calculate_quiz_score(quiz: Quiz, answers: List[QuizAnswer]) -> int:
    """Count of answers matching the correct option. Unknown question ids raise."""
    return score_quiz(quiz, answers).score


def score_quiz(quiz: Quiz, answers: List[QuizAnswer]) -> QuizScore:
    """
    Grade submitted answers against the quiz.

    Args:
        quiz: Quiz with questions (correct_answer set from the option flagged is_correct)
        answers: One answer per question

    Returns:
        QuizScore with the count of correct answers and one QuestionResult per answer

    Raises:
        QuestionNotFoundError: an answer references a question that is not in the quiz
    """
    by_id: Dict[str, QuizQuestion] = {q.id: q for q in quiz.questions}
    results: List[QuestionResult] = []

    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            logger.error(f"Answer references question {answer.question_id} not in quiz {quiz.id}")
            raise QuestionNotFoundError(answer.question_id)

        is_correct = answer.selected_option == question.correct_answer
        selected = question.option_at(answer.selected_option)
        results.append(
            QuestionResult(
                question_id=question.id,
                question_text=question.question,
                selected_option_index=answer.selected_option,
                correct_option_index=question.correct_answer,
                is_correct=is_correct,
                explanation=selected.explanation if selected else "",
                hint=question.hint,
            )
        )

    score = sum(1 for r in results if r.is_correct)
    total = len(quiz.questions)
    return QuizScore(
        score=score,
        total_questions=total,
        percentage=percentage(score, total),
        question_results=results,
    )


class QuizSession:
    """Tracks one sitting of a quiz: position, selected answers, revealed hints."""

    def __init__(self, quiz: Quiz):
        self.quiz = quiz
        self.current_question_idx = 0
        self.answers: Dict[str, int] = {}  # question_id -> selected option index
        self.hints_shown: set = set()

    @property
    def total_questions(self) -> int:
        return len(self.quiz.questions)

    def get_current_question(self) -> Optional[QuizQuestion]:
        if self.current_question_idx >= self.total_questions:
            return None
        return self.quiz.questions[self.current_question_idx]

    def select(self, option_index: int) -> None:
        question = self.get_current_question()
        if question is None:
            return
        self.answers[question.id] = option_index

    def selected_for_current(self) -> Optional[int]:
        question = self.get_current_question()
        return self.answers.get(question.id) if question else None

    def toggle_hint(self) -> None:
        question = self.get_current_question()
        if question is None:
            return
        if question.id in self.hints_shown:
            self.hints_shown.discard(question.id)
        else:
            self.hints_shown.add(question.id)

    def hint_visible(self) -> bool:
        question = self.get_current_question()
        return bool(question and question.id in self.hints_shown)

    def next(self) -> None:
        if self.current_question_idx < self.total_questions - 1:
            self.current_question_idx += 1

    def previous(self) -> None:
        if self.current_question_idx > 0:
            self.current_question_idx -= 1

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    def is_complete(self) -> bool:
        return self.total_questions > 0 and all(q.id in self.answers for q in self.quiz.questions)

    def to_answers(self) -> List[QuizAnswer]:
        """Answers in question order. Unanswered questions are left out."""
        return [
            QuizAnswer(question_id=q.id, selected_option=self.answers[q.id])
            for q in self.quiz.questions
            if q.id in self.answers
        ]

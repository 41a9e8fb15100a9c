"""Quiz scoring, grade bands and quiz-taking state."""
from datetime import datetime, timezone

import pytest

from studyquiz.errors import DataIntegrityError, QuestionNotFoundError
from studyquiz.models import QuestionOption, Quiz, QuizAnswer, QuizQuestion
from studyquiz.scoring import (
    QuizSession,
    calculate_quiz_score,
    grade_for,
    percentage,
    score_quiz,
)


def make_question(qid, correct, n_options=4, hint=None):
    options = [
        QuestionOption(
            id=f"{qid}-o{i}",
            option_text=f"Option {i}",
            option_index=i,
            is_correct=i == correct,
            explanation=f"Because {i}",
        )
        for i in range(n_options)
    ]
    return QuizQuestion(id=qid, question=f"Question {qid}?", options=options, correct_answer=correct, hint=hint)


def make_quiz(*correct_answers):
    return Quiz(
        id="quiz-1",
        title="Cell biology",
        generation_status="completed",
        questions=[make_question(f"q{i}", c) for i, c in enumerate(correct_answers)],
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_score_counts_matching_answers():
    quiz = make_quiz(0, 1, 2, 3)
    answers = [
        QuizAnswer(question_id="q0", selected_option=0),
        QuizAnswer(question_id="q1", selected_option=1),
        QuizAnswer(question_id="q2", selected_option=0),
        QuizAnswer(question_id="q3", selected_option=1),
    ]
    result = score_quiz(quiz, answers)
    assert result.score == 2
    assert result.total_questions == 4
    assert result.percentage == 50
    assert [r.is_correct for r in result.question_results] == [True, True, False, False]
    assert calculate_quiz_score(quiz, answers) == 2


def test_percentage_boundaries():
    quiz = make_quiz(1, 1, 1)
    all_right = [QuizAnswer(question_id=f"q{i}", selected_option=1) for i in range(3)]
    all_wrong = [QuizAnswer(question_id=f"q{i}", selected_option=0) for i in range(3)]
    assert score_quiz(quiz, all_right).percentage == 100
    assert score_quiz(quiz, all_wrong).percentage == 0


def test_percentage_rounds_half_up_and_handles_empty():
    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(1, 8) == 13  # 12.5
    assert percentage(0, 0) == 0


def test_explanation_comes_from_selected_option():
    quiz = make_quiz(2)
    result = score_quiz(quiz, [QuizAnswer(question_id="q0", selected_option=1)])
    assert result.question_results[0].explanation == "Because 1"
    assert result.question_results[0].correct_option_index == 2


def test_unknown_question_is_an_integrity_error():
    quiz = make_quiz(0)
    with pytest.raises(QuestionNotFoundError) as exc:
        score_quiz(quiz, [QuizAnswer(question_id="nope", selected_option=0)])
    assert str(exc.value) == "Question nope not found"
    assert isinstance(exc.value, DataIntegrityError)


@pytest.mark.parametrize("percent,message,color", [
    (100, "Outstanding!", "green"),
    (90, "Outstanding!", "green"),
    (89, "Great job!", "blue"),
    (70, "Great job!", "blue"),
    (69, "Good effort!", "orange"),
    (50, "Good effort!", "orange"),
    (49, "Keep practicing!", "red"),
    (0, "Keep practicing!", "red"),
])
def test_grade_bands(percent, message, color):
    grade = grade_for(percent)
    assert grade.message == message
    assert grade.color == color


def test_quiz_session_navigation_and_answers():
    quiz = make_quiz(0, 1, 2)
    session = QuizSession(quiz)

    session.previous()
    assert session.current_question_idx == 0
    session.select(0)
    session.next()
    session.select(3)
    session.next()
    session.next()
    assert session.current_question_idx == 2
    assert not session.is_complete()

    session.select(2)
    assert session.is_complete()
    assert session.answered_count == 3
    assert [(a.question_id, a.selected_option) for a in session.to_answers()] == [
        ("q0", 0), ("q1", 3), ("q2", 2),
    ]
    assert score_quiz(quiz, session.to_answers()).score == 2


def test_quiz_session_changing_an_answer_keeps_one_entry():
    session = QuizSession(make_quiz(0, 1))
    session.select(1)
    session.select(0)
    assert session.selected_for_current() == 0
    assert session.answered_count == 1


def test_quiz_session_hint_toggle_is_per_question():
    quiz = make_quiz(0, 1)
    session = QuizSession(quiz)
    assert not session.hint_visible()
    session.toggle_hint()
    assert session.hint_visible()
    session.next()
    assert not session.hint_visible()
    session.previous()
    session.toggle_hint()
    assert not session.hint_visible()

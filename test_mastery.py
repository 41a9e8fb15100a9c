"""Mastery transitions, review scheduling and study sessions."""
from datetime import datetime, timedelta, timezone

import pytest

from studyquiz.mastery import (
    ExponentialReviewPolicy,
    FixedReviewPolicy,
    StudySession,
    apply_attempt,
    correct_needed,
    is_review_due,
    new_mastery,
)
from studyquiz.models import ConceptMastery, QuestionOption, QuizQuestion

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def question(qid, correct=0):
    options = [QuestionOption(id=f"{qid}-{i}", option_text=str(i), option_index=i, is_correct=i == correct) for i in range(4)]
    return QuizQuestion(id=qid, question=qid, options=options, correct_answer=correct, concept_id="c1")


def answer(mastery, *results, policy=None):
    outcome = None
    for is_correct in results:
        kwargs = {"policy": policy} if policy else {}
        outcome = apply_attempt(mastery, is_correct, now=NOW, **kwargs)
        mastery = outcome.mastery
    return outcome


def test_three_consecutive_correct_answers_master_the_concept():
    outcome = answer(new_mastery("u1", "c1"), True, True, True)
    assert outcome.is_mastered
    assert outcome.just_mastered
    assert outcome.mastery.status == "mastered"
    assert outcome.mastery.next_review_at == NOW + timedelta(days=1)
    assert outcome.mastery.last_practiced_at == NOW


def test_first_answer_moves_to_in_progress_even_when_wrong():
    outcome = answer(new_mastery("u1", "c1"), False)
    assert outcome.mastery.status == "in_progress"
    assert outcome.mastery.correct_count == 0
    assert not outcome.is_mastered


def test_incorrect_answer_resets_the_streak():
    outcome = answer(new_mastery("u1", "c1"), True, True, False)
    assert outcome.mastery.correct_count == 0
    assert outcome.mastery.status == "in_progress"
    outcome = answer(outcome.mastery, True, True)
    assert outcome.mastery.status == "in_progress"
    outcome = answer(outcome.mastery, True)
    assert outcome.just_mastered


def test_apply_attempt_does_not_modify_its_input():
    original = new_mastery("u1", "c1")
    apply_attempt(original, True, now=NOW)
    assert original.correct_count == 0
    assert original.status == "not_started"


def test_review_of_mastered_concept_pushes_next_review_out():
    mastered = answer(new_mastery("u1", "c1"), True, True, True).mastery
    first = apply_attempt(mastered, True, now=NOW)
    assert first.mastery.status == "mastered"
    assert first.mastery.review_count == 1
    assert first.mastery.next_review_at == NOW + timedelta(days=2)
    assert not first.just_mastered

    second = apply_attempt(first.mastery, True, now=NOW)
    assert second.mastery.next_review_at == NOW + timedelta(days=4)


def test_failed_review_keeps_mastered_but_reschedules_soon():
    mastered = ConceptMastery(user_id="u1", concept_id="c1", status="mastered", correct_count=5, review_count=4)
    outcome = apply_attempt(mastered, False, now=NOW)
    assert outcome.mastery.status == "mastered"
    assert outcome.mastery.review_count == 0
    assert outcome.mastery.correct_count == 0
    assert outcome.mastery.next_review_at == NOW + timedelta(days=1)


def test_exponential_policy_is_monotonic_and_capped():
    policy = ExponentialReviewPolicy()
    intervals = [policy.interval(n) for n in range(12)]
    assert intervals == sorted(intervals)
    assert intervals[0] == timedelta(days=1)
    assert intervals[-1] == timedelta(days=60)
    assert policy.interval(10_000) == timedelta(days=60)


def test_exponential_policy_rejects_shrinking_factor():
    with pytest.raises(ValueError):
        ExponentialReviewPolicy(factor=0.5)


def test_fixed_policy():
    policy = FixedReviewPolicy(timedelta(days=3))
    outcome = answer(new_mastery("u1", "c1"), True, True, True, policy=policy)
    assert outcome.mastery.next_review_at == NOW + timedelta(days=3)


def test_is_review_due():
    m = ConceptMastery(user_id="u1", concept_id="c1", status="mastered", next_review_at=NOW)
    assert is_review_due(m, NOW)
    assert not is_review_due(m, NOW - timedelta(seconds=1))
    assert not is_review_due(m.model_copy(update={"status": "in_progress"}), NOW)
    assert not is_review_due(m.model_copy(update={"next_review_at": None}), NOW)


def test_correct_needed():
    assert correct_needed(None) == 3
    assert correct_needed(ConceptMastery(user_id="u", concept_id="c", correct_count=2)) == 1
    assert correct_needed(ConceptMastery(user_id="u", concept_id="c", status="mastered", correct_count=7)) == 1


def test_study_session_ends_when_mastered():
    session = StudySession("s1", "c1", "Mitosis", [question("q1"), question("q2"), question("q3"), question("q4")])
    mastery = new_mastery("u1", "c1")
    for _ in range(3):
        assert session.grade(0)
        outcome = apply_attempt(mastery, True, now=NOW)
        mastery = outcome.mastery
        session.record_outcome(outcome)
        if session.is_finished():
            break
        assert session.advance()

    assert session.was_mastered
    assert session.is_finished()
    assert session.current_question_idx == 2
    assert session.progress_percent() == 100
    assert not session.advance()


def test_study_session_ends_when_pool_is_exhausted():
    session = StudySession("s1", "c1", "Mitosis", [question("q1"), question("q2")])
    assert not session.grade(1)
    assert session.advance()
    assert not session.grade(1)
    assert session.is_finished()
    assert not session.advance()
    assert session.session_correct_count == 0

    session.restart()
    assert session.current_question_idx == 0
    assert not session.is_finished()


def test_study_session_exit_and_empty_pool():
    session = StudySession("s1", "c1", "Mitosis", [question("q1"), question("q2")])
    session.exit()
    assert session.is_finished()

    empty = StudySession("s2", "c1", "Mitosis", [])
    assert empty.is_finished()
    with pytest.raises(IndexError):
        empty.grade(0)

"""
Row shapes returned by each Supabase query, validated at the boundary.

One model per select() shape. Each knows how to map itself into the domain
models in studyquiz.models, so callers never index into raw dicts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from studyquiz.models import (
    Concept,
    ConceptMastery,
    Difficulty,
    Document,
    GenerationStatus,
    MasteryStatus,
    ProcessingStatus,
    QuestionOption,
    Quiz,
    QuizAttemptSummary,
    QuizListItem,
    QuizQuestion,
    Topic,
)
from studyquiz.scoring import percentage


class IdRow(BaseModel):
    id: str


class TitleRow(BaseModel):
    title: str


class NameRow(BaseModel):
    id: str
    name: str


class DocumentRow(BaseModel):
    id: str
    user_id: Optional[str] = None
    title: str
    file_path: str = ""
    file_type: str = ""
    file_size: int = 0
    status: ProcessingStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def to_document(self) -> Document:
        return Document(
            id=self.id,
            user_id=self.user_id or "",
            title=self.title,
            file_path=self.file_path,
            file_type=self.file_type,
            file_size=self.file_size,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            error_message=self.error_message,
        )


class FileSizeRow(BaseModel):
    file_size: int = 0


class TopicConceptIdsRow(BaseModel):
    """topics(id, document_id, concepts(id))"""
    id: str
    document_id: str
    concepts: List[IdRow] = Field(default_factory=list)

    @field_validator("concepts", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any):
        return v or []


class ConceptRow(BaseModel):
    id: str
    topic_id: str
    name: str
    explanation: Optional[str] = ""
    source_text: Optional[str] = None
    complexity_level: Optional[str] = "basic"

    def to_concept(self) -> Concept:
        return Concept(
            id=self.id,
            topic_id=self.topic_id,
            name=self.name,
            explanation=self.explanation or "",
            source_text=self.source_text,
            complexity_level=self.complexity_level or "basic",
        )


class TopicWithConceptsRow(BaseModel):
    """topics(id, document_id, name, concepts(*))"""
    id: str
    document_id: str
    name: str
    concepts: List[ConceptRow] = Field(default_factory=list)

    @field_validator("concepts", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any):
        return v or []

    def to_topic(self) -> Topic:
        return Topic(id=self.id, document_id=self.document_id, name=self.name)


class MasteryRow(BaseModel):
    user_id: str
    concept_id: str
    status: MasteryStatus = "not_started"
    correct_count: Optional[int] = 0
    review_count: Optional[int] = 0
    next_review_at: Optional[datetime] = None
    last_practiced_at: Optional[datetime] = None

    def to_mastery(self) -> ConceptMastery:
        return ConceptMastery(
            user_id=self.user_id,
            concept_id=self.concept_id,
            status=self.status,
            correct_count=self.correct_count or 0,
            review_count=self.review_count or 0,
            next_review_at=self.next_review_at,
            last_practiced_at=self.last_practiced_at,
        )


class QuizStatusRow(BaseModel):
    document_id: Optional[str] = None
    generation_status: GenerationStatus


class QuizListRow(BaseModel):
    """quizzes(id, title, description, document_id, generation_status, created_at, documents(title), questions(id))"""
    id: str
    title: str
    description: Optional[str] = ""
    document_id: Optional[str] = None
    generation_status: GenerationStatus
    created_at: datetime
    documents: Optional[TitleRow] = None
    questions: List[IdRow] = Field(default_factory=list)

    @field_validator("questions", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any):
        return v or []

    def to_list_item(self) -> QuizListItem:
        return QuizListItem(
            id=self.id,
            title=self.title,
            description=self.description or "",
            document_id=self.document_id,
            document_title=self.documents.title if self.documents else None,
            generation_status=self.generation_status,
            question_count=len(self.questions),
            created_at=self.created_at,
        )


class OptionRow(BaseModel):
    id: str
    option_text: str
    option_index: int
    is_correct: bool = False
    explanation: Optional[str] = ""

    def to_option(self) -> QuestionOption:
        return QuestionOption(
            id=self.id,
            option_text=self.option_text,
            option_index=self.option_index,
            is_correct=self.is_correct,
            explanation=self.explanation or "",
        )


class QuestionRow(BaseModel):
    id: str
    question: str
    hint: Optional[str] = None
    difficulty_level: Difficulty = "medium"
    concept_id: Optional[str] = None
    order_index: int = 0
    question_options: List[OptionRow] = Field(default_factory=list)

    @field_validator("question_options", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any):
        return v or []

    def to_question(self) -> QuizQuestion:
        options = sorted(self.question_options, key=lambda o: o.option_index)
        correct = next((o.option_index for o in options if o.is_correct), 0)
        return QuizQuestion(
            id=self.id,
            question=self.question,
            options=[o.to_option() for o in options],
            correct_answer=correct,
            hint=self.hint,
            difficulty_level=self.difficulty_level,
            concept_id=self.concept_id,
            order_index=self.order_index,
        )


class FullQuizRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = ""
    document_id: Optional[str] = None
    user_id: Optional[str] = None
    generation_status: GenerationStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    questions: List[QuestionRow] = Field(default_factory=list)

    @field_validator("questions", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any):
        return v or []

    def to_quiz(self) -> Quiz:
        questions = sorted(self.questions, key=lambda q: q.order_index)
        return Quiz(
            id=self.id,
            title=self.title,
            description=self.description or "",
            document_id=self.document_id,
            user_id=self.user_id,
            generation_status=self.generation_status,
            questions=[q.to_question() for q in questions],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class AttemptRow(BaseModel):
    id: str
    score: int
    total_questions: int
    completed_at: datetime

    def to_summary(self) -> QuizAttemptSummary:
        return QuizAttemptSummary(
            id=self.id,
            score=self.score,
            total_questions=self.total_questions,
            percentage=percentage(self.score, self.total_questions),
            completed_at=self.completed_at,
        )


class StudySessionRow(BaseModel):
    id: str
    user_id: str
    concept_id: str
    started_at: Optional[datetime] = None

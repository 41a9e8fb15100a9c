"""
Domain models for StudyQuiz.

These are the shapes the pages and the pure logic work with. Rows coming back
from Supabase are validated by the models in studyquiz.rows and mapped into
these; nothing here knows about table or column names.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ProcessingStatus = Literal["pending", "processing", "completed", "failed"]
GenerationStatus = Literal["pending", "generating", "completed", "failed"]
MasteryStatus = Literal["not_started", "in_progress", "mastered"]
Difficulty = Literal["easy", "medium", "hard"]
StudyReason = Literal["continue", "new", "review"]


# ----- Documents -----

class Document(BaseModel):
    id: str
    user_id: str
    title: str
    file_path: str
    file_type: str
    file_size: int
    status: ProcessingStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    error_message: Optional[str] = None


class Topic(BaseModel):
    id: str
    document_id: str
    name: str


class Concept(BaseModel):
    id: str
    topic_id: str
    name: str
    explanation: str = ""
    source_text: Optional[str] = None
    complexity_level: str = "basic"


class UploadStatus(BaseModel):
    file_name: str
    progress: int = 0
    error: Optional[str] = None
    complete: bool = False
    document: Optional[Document] = None


class StorageStats(BaseModel):
    used_space: int = 0
    file_count: int = 0


# ----- Quizzes -----

class QuestionOption(BaseModel):
    id: str
    option_text: str
    option_index: int
    is_correct: bool = False
    explanation: str = ""


class QuizQuestion(BaseModel):
    id: str
    question: str
    options: List[QuestionOption] = Field(default_factory=list)
    correct_answer: int
    hint: Optional[str] = None
    difficulty_level: Difficulty = "medium"
    concept_id: Optional[str] = None
    order_index: int = 0

    def option_at(self, index: int) -> Optional[QuestionOption]:
        return next((o for o in self.options if o.option_index == index), None)


class Quiz(BaseModel):
    id: str
    title: str
    description: str = ""
    document_id: Optional[str] = None
    user_id: Optional[str] = None
    generation_status: GenerationStatus
    questions: List[QuizQuestion] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None


class QuizListItem(BaseModel):
    id: str
    title: str
    description: str = ""
    document_id: Optional[str] = None
    document_title: Optional[str] = None
    generation_status: GenerationStatus
    question_count: int = 0
    created_at: datetime


class QuizAnswer(BaseModel):
    question_id: str
    selected_option: int


class QuestionResult(BaseModel):
    question_id: str
    question_text: str
    selected_option_index: int
    correct_option_index: int
    is_correct: bool
    explanation: str = ""
    hint: Optional[str] = None


class QuizResult(BaseModel):
    attempt_id: str
    quiz_id: str
    score: int
    total_questions: int
    percentage: int
    question_results: List[QuestionResult]
    completed_at: datetime


class QuizAttemptSummary(BaseModel):
    id: str
    score: int
    total_questions: int
    percentage: int
    completed_at: datetime


class GenerationTicket(BaseModel):
    """Response of the processing API's quiz generation endpoint."""
    quiz_id: str
    status: str
    message: str = ""


# ----- Study -----

class ConceptMastery(BaseModel):
    user_id: str
    concept_id: str
    status: MasteryStatus = "not_started"
    correct_count: int = 0
    review_count: int = 0
    next_review_at: Optional[datetime] = None
    last_practiced_at: Optional[datetime] = None


class ConceptProgress(BaseModel):
    concept_id: str
    name: str
    explanation: str = ""
    status: MasteryStatus = "not_started"
    correct_count: int = 0
    next_review_at: Optional[datetime] = None


class TopicProgress(BaseModel):
    topic_id: str
    name: str
    concepts: List[ConceptProgress] = Field(default_factory=list)


class DocumentProgress(BaseModel):
    document_id: str
    document_title: str
    topics: List[TopicProgress] = Field(default_factory=list)
    total_concepts: int = 0
    mastered_concepts: int = 0
    in_progress_concepts: int = 0
    overall_progress: int = 0


class QuestionAttempt(BaseModel):
    question_id: str
    concept_id: str
    selected_option: int
    is_correct: bool
    time_spent_ms: int = 0


class AttemptOutcome(BaseModel):
    mastery: ConceptMastery
    is_mastered: bool
    just_mastered: bool


# ----- Dashboard -----

class ReviewItem(BaseModel):
    concept_id: str
    concept_name: str
    document_id: str
    document_title: str
    due_at: datetime
    review_count: int = 0


class InProgressConcept(BaseModel):
    concept_id: str
    concept_name: str
    document_id: str
    document_title: str


class MaterialSummary(BaseModel):
    id: str
    title: str
    file_type: str
    status: ProcessingStatus
    created_at: datetime
    updated_at: datetime
    total_concepts: int = 0
    mastered_concepts: int = 0
    progress_percent: int = 0
    concepts_due_for_review: int = 0
    has_quiz: bool = False
    error_message: Optional[str] = None
    is_stuck: bool = False


class NextStudyItem(BaseModel):
    document_id: str
    document_title: str
    concept_id: Optional[str] = None
    concept_name: Optional[str] = None
    reason: StudyReason


class DashboardData(BaseModel):
    materials: List[MaterialSummary] = Field(default_factory=list)
    reviews_due: List[ReviewItem] = Field(default_factory=list)
    total_materials: int = 0
    total_concepts_mastered: int = 0
    total_concepts: int = 0
    overall_progress: int = 0
    next_study_item: Optional[NextStudyItem] = None

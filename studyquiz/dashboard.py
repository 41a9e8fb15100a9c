"""
Dashboard aggregation: per-document mastery progress, due reviews, stuck
detection and the "what to study next" pick.

fetch_dashboard_data() does the I/O; everything it calls after the fetches is
a pure function of the rows and a clock, so it can be tested without Supabase.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from engine import REVIEWS_DUE_LIMIT, STUCK_THRESHOLD_MINUTES
from studyquiz.database import DatabaseClient
from studyquiz.documents import DocumentService
from studyquiz.mastery import is_review_due
from studyquiz.models import (
    ConceptMastery,
    DashboardData,
    Document,
    InProgressConcept,
    MaterialSummary,
    NextStudyItem,
    ReviewItem,
)
from studyquiz.processing_api import TriggerResult
from studyquiz.realtime import ChangeFeed, Subscription
from studyquiz.rows import QuizStatusRow, TopicConceptIdsRow
from studyquiz.scoring import percentage

logger = logging.getLogger(__name__)

STUCK_THRESHOLD = timedelta(minutes=STUCK_THRESHOLD_MINUTES)


def is_stuck(document: Document, now: Optional[datetime] = None) -> bool:
    """Pending/processing for longer than the stuck threshold, measured from updated_at (or created_at)."""
    if document.status not in ("pending", "processing"):
        return False
    now = now or datetime.now(timezone.utc)
    last_change = document.updated_at or document.created_at
    return now - last_change > STUCK_THRESHOLD


def select_next_study_item(
    materials: List[MaterialSummary],
    in_progress: List[InProgressConcept],
    reviews: List[ReviewItem],
) -> Optional[NextStudyItem]:
    """
    Pick one thing to study, first match wins:
    an in-progress concept, then the first completed material with unmastered
    concepts, then the earliest due review. Ties keep input order.
    """
    if in_progress:
        concept = in_progress[0]
        return NextStudyItem(
            document_id=concept.document_id,
            document_title=concept.document_title,
            concept_id=concept.concept_id,
            concept_name=concept.concept_name,
            reason="continue",
        )

    for material in materials:
        if (
            material.status == "completed"
            and material.total_concepts > 0
            and material.mastered_concepts < material.total_concepts
        ):
            return NextStudyItem(document_id=material.id, document_title=material.title, reason="new")

    if reviews:
        review = min(reviews, key=lambda r: r.due_at)
        return NextStudyItem(
            document_id=review.document_id,
            document_title=review.document_title,
            concept_id=review.concept_id,
            concept_name=review.concept_name,
            reason="review",
        )

    return None


def concept_document_map(topics: Iterable[TopicConceptIdsRow]) -> Dict[str, str]:
    return {c.id: t.document_id for t in topics for c in t.concepts}


def build_dashboard(
    documents: List[Document],
    topics: List[TopicConceptIdsRow],
    mastery: List[ConceptMastery],
    concept_names: Dict[str, str],
    quiz_statuses: List[QuizStatusRow],
    now: Optional[datetime] = None,
) -> DashboardData:
    """
    Aggregate fetched rows into DashboardData.

    Args:
        documents: User's documents, newest first
        topics: Topics (with concept ids) of the completed documents
        mastery: User's mastery rows for those concepts
        concept_names: Names for at least the due-review and in-progress concepts
        quiz_statuses: Quiz generation status per document
        now: Clock for due reviews and stuck detection
    """
    now = now or datetime.now(timezone.utc)
    docs_by_id = {d.id: d for d in documents}
    concept_to_doc = concept_document_map(topics)

    total_by_doc: Dict[str, int] = defaultdict(int)
    for topic in topics:
        total_by_doc[topic.document_id] += len(topic.concepts)

    mastered_by_doc: Dict[str, int] = defaultdict(int)
    due_by_doc: Dict[str, int] = defaultdict(int)
    reviews: List[ReviewItem] = []
    in_progress: List[InProgressConcept] = []

    for m in mastery:
        doc_id = concept_to_doc.get(m.concept_id)
        if doc_id is None or doc_id not in docs_by_id:
            continue
        doc = docs_by_id[doc_id]
        if m.status == "mastered":
            mastered_by_doc[doc_id] += 1
            if is_review_due(m, now):
                due_by_doc[doc_id] += 1
                reviews.append(ReviewItem(
                    concept_id=m.concept_id,
                    concept_name=concept_names.get(m.concept_id, "Unknown"),
                    document_id=doc_id,
                    document_title=doc.title,
                    due_at=m.next_review_at,
                    review_count=m.review_count,
                ))
        elif m.status == "in_progress" and m.concept_id in concept_names:
            in_progress.append(InProgressConcept(
                concept_id=m.concept_id,
                concept_name=concept_names[m.concept_id],
                document_id=doc_id,
                document_title=doc.title,
            ))

    has_quiz = {q.document_id: q.generation_status == "completed" for q in quiz_statuses if q.document_id}

    materials = []
    for doc in documents:
        total = total_by_doc.get(doc.id, 0)
        mastered = mastered_by_doc.get(doc.id, 0)
        materials.append(MaterialSummary(
            id=doc.id,
            title=doc.title,
            file_type=doc.file_type,
            status=doc.status,
            created_at=doc.created_at,
            updated_at=doc.updated_at or doc.created_at,
            total_concepts=total,
            mastered_concepts=mastered,
            progress_percent=percentage(mastered, total),
            concepts_due_for_review=due_by_doc.get(doc.id, 0),
            has_quiz=has_quiz.get(doc.id, False),
            error_message=doc.error_message or None,
            is_stuck=is_stuck(doc, now),
        ))

    total_concepts = sum(total_by_doc.values())
    total_mastered = sum(mastered_by_doc.values())
    reviews_sorted = sorted(reviews, key=lambda r: r.due_at)

    return DashboardData(
        materials=materials,
        reviews_due=reviews_sorted[:REVIEWS_DUE_LIMIT],
        total_materials=len(materials),
        total_concepts_mastered=total_mastered,
        total_concepts=total_concepts,
        overall_progress=percentage(total_mastered, total_concepts),
        next_study_item=select_next_study_item(materials, in_progress, reviews),
    )


def fetch_dashboard_data(db: DatabaseClient, user_id: str, now: Optional[datetime] = None) -> DashboardData:
    """Fetch everything the dashboard shows for a user and aggregate it."""
    now = now or datetime.now(timezone.utc)
    try:
        documents = [row.to_document() for row in db.get_documents(user_id)]
    except Exception as e:
        logger.error(f"Error fetching documents: {e}")
        raise

    completed_ids = [d.id for d in documents if d.status == "completed"]
    topics = db.get_topic_concept_ids(completed_ids)
    concept_ids = [c.id for t in topics for c in t.concepts]
    mastery = [row.to_mastery() for row in db.get_mastery(user_id, concept_ids)]

    named_ids = [
        m.concept_id for m in mastery
        if m.status == "in_progress" or is_review_due(m, now)
    ]
    concept_names = db.get_concept_names(named_ids)
    quiz_statuses = db.get_quiz_statuses(completed_ids)

    data = build_dashboard(documents, topics, mastery, concept_names, quiz_statuses, now)
    logger.info(
        f"Dashboard for {user_id}: {data.total_materials} materials, "
        f"{data.total_concepts_mastered}/{data.total_concepts} concepts mastered, {len(data.reviews_due)} reviews due"
    )
    return data


def subscribe_to_dashboard_updates(feed: ChangeFeed, user_id: str) -> List[Subscription]:
    """Document status changes and new quizzes for a user. Any event means: re-fetch the dashboard."""
    return [
        feed.subscribe(
            f"dashboard-documents-{user_id}",
            table="documents",
            event="UPDATE",
            row_filter=f"user_id=eq.{user_id}",
        ),
        feed.subscribe(
            f"dashboard-quizzes-{user_id}",
            table="quizzes",
            event="INSERT",
            row_filter=f"user_id=eq.{user_id}",
        ),
    ]


def retry_stuck_document(documents: DocumentService, material: MaterialSummary) -> TriggerResult:
    """Re-trigger processing for a stuck or failed material."""
    if not (material.is_stuck or material.status == "failed"):
        return TriggerResult(success=False, error="Document is not stuck")
    logger.info(f"Retrying processing for {material.id} ({material.title})")
    return documents.retry_document_processing(material.id)

"""StudyQuiz: upload course material, take generated quizzes, study concepts to mastery."""
import sys
import time
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st

from db import get_supabase, get_supabase_credentials
from engine import MAX_FILE_SIZE, MAX_FILES_PER_BATCH, MASTERY_THRESHOLD
from studyquiz.auth import AuthService
from studyquiz.cache import DOCUMENT_VIEWS, QUIZ_VIEWS, QueryCache
from studyquiz.dashboard import fetch_dashboard_data, retry_stuck_document, subscribe_to_dashboard_updates
from studyquiz.database import DatabaseClient
from studyquiz.documents import DocumentService, UploadFile, format_file_size
from studyquiz.errors import StudyQuizError
from studyquiz.models import QuestionAttempt
from studyquiz.processing_api import ProcessingAPIClient
from studyquiz.quizzes import QuizService, subscribe_to_quiz_updates
from studyquiz.realtime import ChangeFeed, SupabaseRealtimeTransport
from studyquiz.scoring import QuizSession, grade_for
from studyquiz.study import StudyService, next_concept_in

OPTION_LABELS = "ABCDEFGHIJ"
STATUS_ICONS = {"pending": "⏳", "processing": "⚙️", "completed": "✅", "failed": "❌"}
ACCEPTED_TYPES = ["pdf", "doc", "docx", "ppt", "pptx", "txt", "jpg", "jpeg", "png"]


@st.cache_resource
def get_api() -> ProcessingAPIClient:
    return ProcessingAPIClient()


def get_cache() -> QueryCache:
    if "query_cache" not in st.session_state:
        st.session_state["query_cache"] = QueryCache()
    return st.session_state["query_cache"]


def services():
    db = DatabaseClient(get_supabase())
    api = get_api()
    return DocumentService(db, api), QuizService(db, api), StudyService(db), db


def start_change_feed(access_token: str, refresh_token: str) -> None:
    url, key = get_supabase_credentials()
    transport = SupabaseRealtimeTransport(url, key, access_token, refresh_token)
    st.session_state["realtime_transport"] = transport
    st.session_state["change_feed"] = ChangeFeed(transport)


def stop_change_feed() -> None:
    feed = st.session_state.pop("change_feed", None)
    if feed is not None:
        feed.cancel_all()
    transport = st.session_state.pop("realtime_transport", None)
    if transport is not None:
        transport.shutdown()


def apply_change_events(cache: QueryCache) -> None:
    """Realtime events only mark cached views stale; the next read re-fetches."""
    feed = st.session_state.get("change_feed")
    if feed is None:
        return
    for event in feed.drain_all():
        if event.table == "documents":
            cache.invalidate_views(DOCUMENT_VIEWS)
        elif event.table == "quizzes":
            cache.invalidate_views(QUIZ_VIEWS)


def reset_quiz_state() -> None:
    for key in ("quiz_session", "quiz_result"):
        st.session_state.pop(key, None)


def reset_study_state() -> None:
    for key in ("study_session", "study_feedback"):
        st.session_state.pop(key, None)


st.set_page_config(page_title="StudyQuiz", layout="wide")
st.sidebar.title("StudyQuiz")

user = st.session_state.get("user")
cache = get_cache()

# ----- Signed out -----
if user is None:
    page = st.sidebar.radio("Navigate", ["Sign In", "Sign Up"], label_visibility="collapsed")
    auth = AuthService(get_supabase())

    if page == "Sign In":
        st.header("Sign In")
        with st.form("sign_in"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in", type="primary")
        if submitted:
            try:
                response = auth.sign_in(email, password)
                st.session_state["user"] = {"id": response.user.id, "email": response.user.email}
                try:
                    start_change_feed(response.session.access_token, response.session.refresh_token)
                except Exception as e:
                    st.warning(f"Live updates unavailable: {e}")
                st.rerun()
            except StudyQuizError as e:
                st.error(str(e))

    else:
        st.header("Create an account")
        registered = st.session_state.get("registered_email")
        if registered:
            st.success(f"Check your email. We sent a verification link to {registered}.")
            st.caption("Didn't receive the email? Check your spam folder or request a new one.")
            if st.button("Resend verification email"):
                try:
                    auth.resend_verification_email(registered)
                    st.success("Verification email resent! Please check your inbox.")
                except StudyQuizError as e:
                    st.error(str(e))
            st.stop()

        with st.form("sign_up"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            confirm = st.text_input("Confirm password", type="password")
            submitted = st.form_submit_button("Sign up", type="primary")
        if submitted:
            try:
                response = auth.sign_up(email, password, confirm)
                if response.session:
                    st.session_state["user"] = {"id": response.user.id, "email": response.user.email}
                else:
                    st.session_state["registered_email"] = email
                st.rerun()
            except StudyQuizError as e:
                st.error(str(e))
    st.stop()

# ----- Signed in -----
user_id = user["id"]
apply_change_events(cache)
documents_service, quiz_service, study_service, db = services()
feed = st.session_state.get("change_feed")
if feed is not None:
    try:
        subscribe_to_dashboard_updates(feed, user_id)
    except Exception as e:
        st.sidebar.caption(f"Live updates unavailable: {e}")

st.sidebar.caption(user["email"])
pages = ["Dashboard", "Documents", "Quizzes", "Study"]
default_page = st.query_params.get("page", "Dashboard")
if default_page not in pages:
    default_page = "Dashboard"
page = st.sidebar.radio("Navigate", pages, index=pages.index(default_page), label_visibility="collapsed")
if st.sidebar.button("Sign out"):
    try:
        AuthService(get_supabase()).sign_out()
    except StudyQuizError as e:
        st.sidebar.warning(str(e))
    stop_change_feed()
    cache.clear()
    reset_quiz_state()
    reset_study_state()
    st.session_state.pop("user", None)
    st.rerun()

# ----- Dashboard -----
if page == "Dashboard":
    st.header("Dashboard")
    try:
        data = cache.get_or_fetch("dashboard", user_id, lambda: fetch_dashboard_data(db, user_id))
    except Exception as e:
        st.error(f"Could not load dashboard. Check DB and .env (SUPABASE_URL, SUPABASE_KEY). {e}")
        st.stop()

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Materials", data.total_materials)
    with col2:
        st.metric("Concepts mastered", f"{data.total_concepts_mastered} / {data.total_concepts}")
    with col3:
        st.metric("Overall progress", f"{data.overall_progress}%")

    item = data.next_study_item
    if item:
        label = {
            "continue": f"Continue studying {item.concept_name} ({item.document_title})",
            "new": f"Start studying {item.document_title}",
            "review": f"Review {item.concept_name} ({item.document_title})",
        }[item.reason]
        st.success(label)
        if st.button("Study now", type="primary", use_container_width=True):
            st.session_state["study_document_id"] = item.document_id
            st.session_state["study_concept_id"] = item.concept_id
            st.query_params["page"] = "Study"
            st.rerun()

    if data.reviews_due:
        st.subheader("Due for review")
        for review in data.reviews_due:
            st.write(f"🔁 **{review.concept_name}** · {review.document_title} · due {review.due_at:%Y-%m-%d}")

    st.subheader("Your materials")
    if not data.materials:
        st.info("Upload course material on the Documents page to get started.")
    for material in data.materials:
        with st.container(border=True):
            st.write(f"{STATUS_ICONS.get(material.status, '')} **{material.title}**")
            if material.status == "completed":
                st.progress(material.progress_percent / 100)
                st.caption(
                    f"{material.mastered_concepts}/{material.total_concepts} concepts mastered"
                    + (f" · {material.concepts_due_for_review} due for review" if material.concepts_due_for_review else "")
                    + (" · quiz ready" if material.has_quiz else "")
                )
            elif material.is_stuck:
                st.warning("Processing seems stuck. Try again?")
            elif material.status == "failed":
                st.error(material.error_message or "Processing failed")
            else:
                st.caption("Processing...")

            if material.status == "failed" or material.is_stuck:
                if st.button("Retry", key=f"retry_{material.id}"):
                    with st.spinner("Retrying..."):
                        result = retry_stuck_document(documents_service, material)
                    if result.success:
                        cache.invalidate_views(DOCUMENT_VIEWS)
                        st.rerun()
                    else:
                        st.error(f"Retry failed: {result.error}")

# ----- Documents -----
elif page == "Documents":
    st.header("Documents")
    try:
        stats = cache.get_or_fetch("storage", user_id, lambda: documents_service.get_user_storage_stats(user_id))
    except StudyQuizError as e:
        st.caption(f"Storage usage unavailable: {e}")
    else:
        st.caption(f"{stats.file_count} files · {format_file_size(stats.used_space)} used")

    if "api_woken" not in st.session_state:
        get_api().wake_up()
        st.session_state["api_woken"] = True

    picked = st.file_uploader(
        f"Upload up to {MAX_FILES_PER_BATCH} files ({format_file_size(MAX_FILE_SIZE)} max each)",
        type=ACCEPTED_TYPES,
        accept_multiple_files=True,
    )
    if picked and st.button("Upload", type="primary"):
        files = [UploadFile(f.name, f.getvalue(), f.type or "application/octet-stream") for f in picked]
        try:
            with st.spinner(f"Uploading {len(files)} file(s)..."):
                statuses = documents_service.upload_batch(files, user_id)
        except StudyQuizError as e:
            st.error(str(e))
        else:
            for status in statuses:
                if status.error:
                    st.error(f"{status.file_name}: {status.error}")
                elif status.document and status.document.status == "failed":
                    st.warning(f"{status.file_name}: uploaded, but {status.document.error_message}")
                else:
                    st.success(f"{status.file_name}: uploaded, processing started")
            cache.invalidate_views(DOCUMENT_VIEWS)

    try:
        documents = cache.get_or_fetch("documents", user_id, lambda: documents_service.fetch_user_documents(user_id))
    except StudyQuizError as e:
        st.error(str(e))
        st.stop()

    if not documents:
        st.info("No documents yet.")
    for doc in documents:
        col1, col2, col3 = st.columns([4, 1, 1])
        with col1:
            st.write(f"{STATUS_ICONS.get(doc.status, '')} **{doc.title}** · {format_file_size(doc.file_size)}")
            if doc.status == "failed" and doc.error_message:
                st.caption(doc.error_message)
        with col2:
            if doc.status == "failed" and st.button("Retry", key=f"retry_{doc.id}"):
                result = documents_service.retry_document_processing(doc.id)
                if result.success:
                    cache.invalidate_views(DOCUMENT_VIEWS)
                    st.rerun()
                st.error(f"Retry failed: {result.error}")
        with col3:
            if st.button("Delete", key=f"delete_{doc.id}"):
                try:
                    documents_service.delete_document(doc.id, doc.file_path)
                    cache.invalidate_views(DOCUMENT_VIEWS)
                    st.rerun()
                except StudyQuizError as e:
                    st.error(str(e))

# ----- Quizzes -----
elif page == "Quizzes":
    st.header("Quizzes")
    session = st.session_state.get("quiz_session")
    result = st.session_state.get("quiz_result")

    if result is not None:
        grade = grade_for(result.percentage)
        st.subheader(f"{grade.emoji} {grade.message}")
        st.metric("Score", f"{result.score} / {result.total_questions}", f"{result.percentage}%")
        for i, qr in enumerate(result.question_results):
            mark = "✓" if qr.is_correct else "✗"
            with st.expander(f"{mark} Question {i + 1}: {qr.question_text}"):
                if qr.is_correct:
                    st.success(f"Your answer: {OPTION_LABELS[qr.selected_option_index]}")
                else:
                    st.error(
                        f"Your answer: {OPTION_LABELS[qr.selected_option_index]} · "
                        f"correct: {OPTION_LABELS[qr.correct_option_index]}"
                    )
                if qr.explanation:
                    st.info(qr.explanation)
        try:
            attempts = cache.get_or_fetch(
                "attempts", result.quiz_id, lambda: quiz_service.fetch_quiz_attempts(user_id, result.quiz_id)
            )
            if len(attempts) > 1:
                st.subheader("Previous attempts")
                for attempt in attempts:
                    st.write(f"{attempt.completed_at:%Y-%m-%d %H:%M} · {attempt.score}/{attempt.total_questions} ({attempt.percentage}%)")
        except Exception as e:
            st.warning(f"Could not load attempt history: {e}")
        if st.button("Back to quizzes"):
            reset_quiz_state()
            st.rerun()
        st.stop()

    if session is not None:
        q = session.get_current_question()
        n = session.total_questions
        idx = session.current_question_idx
        st.sidebar.progress(session.answered_count / n if n else 0)
        st.sidebar.caption(f"{session.answered_count}/{n} answered")

        st.subheader(f"Question {idx + 1} of {n}")
        st.write(q.question)
        option_display = [f"{OPTION_LABELS[o.option_index]}. {o.option_text}" for o in q.options]
        selected = session.selected_for_current()
        choice = st.radio(
            "Choose one:",
            options=[o.option_index for o in q.options],
            format_func=lambda i: option_display[[o.option_index for o in q.options].index(i)],
            index=[o.option_index for o in q.options].index(selected) if selected is not None else None,
            key=f"quiz_{q.id}",
        )
        if choice is not None:
            session.select(choice)

        if q.hint:
            if st.button("Hide hint" if session.hint_visible() else "Show hint"):
                session.toggle_hint()
                st.rerun()
            if session.hint_visible():
                st.info(q.hint)

        col1, col2, col3 = st.columns([1, 1, 2])
        with col1:
            if st.button("Previous", disabled=idx == 0):
                session.previous()
                st.rerun()
        with col2:
            if st.button("Next", disabled=idx >= n - 1):
                session.next()
                st.rerun()
        with col3:
            if st.button("Submit quiz", type="primary", disabled=not session.is_complete()):
                try:
                    st.session_state["quiz_result"] = quiz_service.submit_quiz_attempt(
                        session.quiz.id, user_id, session.to_answers()
                    )
                    cache.invalidate("attempts", session.quiz.id)
                except Exception as e:
                    st.error(f"Failed to submit quiz: {e}")
                else:
                    st.session_state.pop("quiz_session", None)
                    st.rerun()
        if st.button("Leave quiz"):
            reset_quiz_state()
            st.rerun()
        st.stop()

    try:
        quizzes = cache.get_or_fetch("quizzes", user_id, lambda: quiz_service.fetch_user_quizzes(user_id))
    except Exception as e:
        st.error(f"Failed to load quizzes: {e}")
        st.stop()

    if feed is not None:
        for quiz in quizzes:
            if quiz.generation_status in ("pending", "generating") and quiz.document_id:
                subscribe_to_quiz_updates(feed, quiz.document_id)

    if not quizzes:
        st.info("No quizzes yet. Generate one from a processed document below.")
    for quiz in quizzes:
        with st.container(border=True):
            st.write(f"**{quiz.title}**")
            st.caption(
                f"{quiz.document_title or 'No document'} · {quiz.question_count} questions · {quiz.generation_status}"
            )
            if quiz.generation_status == "completed" and st.button("Take quiz", key=f"take_{quiz.id}"):
                try:
                    full = cache.get_or_fetch("quiz", quiz.id, lambda: quiz_service.fetch_quiz(quiz.id))
                except Exception as e:
                    st.error(f"Failed to load quiz: {e}")
                else:
                    if not full.questions:
                        st.warning("This quiz has no questions.")
                    else:
                        st.session_state["quiz_session"] = QuizSession(full)
                        st.rerun()

    st.divider()
    st.subheader("Generate a quiz")
    try:
        documents = cache.get_or_fetch("documents", user_id, lambda: documents_service.fetch_user_documents(user_id))
    except StudyQuizError as e:
        st.error(str(e))
        st.stop()
    ready = [d for d in documents if d.status == "completed"]
    if not ready:
        st.caption("No processed documents yet.")
    else:
        doc_id = st.selectbox("Document", [d.id for d in ready], format_func=lambda i: next(d.title for d in ready if d.id == i))
        if st.button("Generate quiz", type="primary"):
            try:
                ticket = quiz_service.trigger_quiz_generation(doc_id)
                st.success(ticket.message or "Quiz generation started.")
                if feed is not None:
                    subscribe_to_quiz_updates(feed, doc_id)
                cache.invalidate("quizzes", user_id)
            except StudyQuizError as e:
                st.error(str(e))

# ----- Study -----
elif page == "Study":
    st.header("Study")
    session = st.session_state.get("study_session")

    if session is not None:
        st.caption(f"Studying: {session.concept_name}")
        st.progress(session.progress_percent() / 100, text=f"Mastery streak {session.mastery.correct_count if session.mastery else 0}/{MASTERY_THRESHOLD}")

        if session.is_finished():
            if session.was_mastered:
                st.balloons()
                st.success(f"🎉 You mastered {session.concept_name}!")
            elif not session.questions:
                st.warning("No questions are available for this concept yet.")
            else:
                st.info(f"Session over: {session.session_correct_count} correct this session.")
            col1, col2 = st.columns(2)
            with col1:
                if session.questions and not session.was_mastered and st.button("Practice again"):
                    session.restart()
                    st.session_state.pop("study_feedback", None)
                    st.rerun()
            with col2:
                if st.button("Back to concepts"):
                    study_service.end_session(session)
                    cache.invalidate("progress")
                    cache.invalidate("dashboard", user_id)
                    reset_study_state()
                    st.rerun()
            st.stop()

        q = session.get_current_question()
        st.subheader(q.question)
        feedback = st.session_state.get("study_feedback")

        if not session.answered_current:
            option_display = {o.option_index: f"{OPTION_LABELS[o.option_index]}. {o.option_text}" for o in q.options}
            choice = st.radio("Choose your answer:", list(option_display), format_func=option_display.get, key=f"study_{q.id}_{session.current_question_idx}")
            if q.hint:
                with st.expander("Hint"):
                    st.write(q.hint)
            if st.button("Submit Answer", type="primary"):
                started = st.session_state.get("study_question_started", time.time())
                is_correct = session.grade(choice)
                attempt = QuestionAttempt(
                    question_id=q.id,
                    concept_id=session.concept_id,
                    selected_option=choice,
                    is_correct=is_correct,
                    time_spent_ms=int((time.time() - started) * 1000),
                )
                try:
                    outcome = study_service.record_question_attempt(user_id, attempt, session.session_id)
                    session.record_outcome(outcome)
                except Exception as e:
                    st.error(f"Could not save your answer: {e}")
                st.session_state["study_feedback"] = is_correct
                st.rerun()
        else:
            for o in q.options:
                label = f"{OPTION_LABELS[o.option_index]}. {o.option_text}"
                if o.option_index == q.correct_answer:
                    st.success(f"✓ {label}")
                elif o.option_index == session.last_selected:
                    st.error(f"✗ {label}")
                else:
                    st.write(f"○ {label}")
            if feedback:
                st.success("✓ Correct! Well done.")
            else:
                st.error(f"✗ Incorrect. The correct answer is {OPTION_LABELS[q.correct_answer]}.")
            selected_option = q.option_at(session.last_selected)
            if selected_option and selected_option.explanation:
                st.info(selected_option.explanation)
            if st.button("Next →", type="primary"):
                session.advance()
                st.session_state.pop("study_feedback", None)
                st.session_state["study_question_started"] = time.time()
                st.rerun()

        if st.button("End session"):
            session.exit()
            st.rerun()
        st.stop()

    try:
        documents = cache.get_or_fetch("documents", user_id, lambda: documents_service.fetch_user_documents(user_id))
    except StudyQuizError as e:
        st.error(str(e))
        st.stop()
    ready = [d for d in documents if d.status == "completed"]
    if not ready:
        st.info("No processed documents yet. Upload one on the Documents page.")
        st.stop()

    ids = [d.id for d in ready]
    preselected = st.session_state.get("study_document_id")
    doc_id = st.selectbox(
        "Document",
        ids,
        index=ids.index(preselected) if preselected in ids else 0,
        format_func=lambda i: next(d.title for d in ready if d.id == i),
    )
    try:
        progress = cache.get_or_fetch("progress", doc_id, lambda: study_service.fetch_document_progress(doc_id, user_id))
    except Exception as e:
        st.error(f"Failed to load progress: {e}")
        st.stop()

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Concepts", progress.total_concepts)
    with col2:
        st.metric("Mastered", progress.mastered_concepts)
    with col3:
        st.metric("In progress", progress.in_progress_concepts)
    st.progress(progress.overall_progress / 100)

    def begin(concept_id):
        try:
            st.session_state["study_session"] = study_service.start_study_session(concept_id, user_id)
        except Exception as e:
            st.error(f"Failed to start session: {e}")
            return
        st.session_state["study_question_started"] = time.time()
        st.session_state.pop("study_concept_id", None)
        st.rerun()

    suggested = st.session_state.get("study_concept_id")
    if suggested is None:
        nxt = next_concept_in(progress)
        suggested = nxt.concept_id if nxt else None
    if suggested and st.button("Study next concept", type="primary", use_container_width=True):
        begin(suggested)

    for topic in progress.topics:
        st.subheader(topic.name)
        for concept in topic.concepts:
            icon = {"mastered": "🏆", "in_progress": "📖", "not_started": "○"}[concept.status]
            col1, col2 = st.columns([5, 1])
            with col1:
                st.write(f"{icon} **{concept.name}**")
                if concept.explanation:
                    st.caption(concept.explanation)
            with col2:
                if st.button("Study", key=f"study_{concept.concept_id}"):
                    begin(concept.concept_id)

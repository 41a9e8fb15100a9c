"""Study and quiz rules: mastery, review scheduling, upload limits, retry policy. No UI."""
# Mastery: 3 consecutive correct answers; an incorrect answer resets the streak.
# Review interval = REVIEW_BASE_DAYS * 2 ** review_count, capped at REVIEW_MAX_DAYS.

MASTERY_THRESHOLD = 3
REVIEW_BASE_DAYS = 1
REVIEW_MAX_DAYS = 60
STUCK_THRESHOLD_MINUTES = 10
REVIEWS_DUE_LIMIT = 10

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_FILES_PER_BATCH = 5
BUCKET_NAME = "course-materials"

RETRY_MAX_RETRIES = 3
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 10000
REQUEST_TIMEOUT_SECONDS = 60
WAKE_UP_TIMEOUT_SECONDS = 30

QUESTIONS_PER_CONCEPT = 3
CACHE_STALE_SECONDS = 5 * 60

# (minimum percentage, emoji, message, color)
GRADE_BANDS = (
    (90, "🎉", "Outstanding!", "green"),
    (70, "🌟", "Great job!", "blue"),
    (50, "👍", "Good effort!", "orange"),
    (0, "💪", "Keep practicing!", "red"),
)

"""Error taxonomy shared by the services and the Streamlit pages."""


class StudyQuizError(Exception):
    """Base class for errors raised by studyquiz."""


class UploadValidationError(StudyQuizError, ValueError):
    """File batch rejected before any upload was attempted."""


class CredentialsError(StudyQuizError, ValueError):
    """Malformed email/password; auth was not called."""


class TransientServiceError(StudyQuizError):
    """Network failure, 5xx or timeout that outlived the retry budget."""


class RejectedError(StudyQuizError):
    """Permanent rejection (4xx, duplicate registration). Carries the server's reason."""


class NotFoundError(StudyQuizError, LookupError):
    """A requested row does not exist."""


class DataIntegrityError(StudyQuizError):
    """Client data and stored data disagree. Never corrected silently."""


class QuestionNotFoundError(DataIntegrityError):
    def __init__(self, question_id: str):
        super().__init__(f"Question {question_id} not found")
        self.question_id = question_id

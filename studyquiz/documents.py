"""
Document upload and management: validation, storage, metadata rows, processing triggers.
"""
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from engine import MAX_FILE_SIZE, MAX_FILES_PER_BATCH
from studyquiz.database import DatabaseClient
from studyquiz.errors import StudyQuizError, UploadValidationError
from studyquiz.models import Document, StorageStats, UploadStatus
from studyquiz.processing_api import ProcessingAPIClient, TriggerResult

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class UploadFile:
    """A file picked by the user. Mirrors what st.file_uploader hands back."""
    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


def validate_batch(files: List[UploadFile]) -> None:
    """Raise UploadValidationError if the batch may not be uploaded at all."""
    if len(files) > MAX_FILES_PER_BATCH:
        raise UploadValidationError(f"You can only upload up to {MAX_FILES_PER_BATCH} files at a time.")
    too_large = [f.name for f in files if f.size > MAX_FILE_SIZE]
    if too_large:
        raise UploadValidationError(
            f"Some files are too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB. ({', '.join(too_large)})"
        )


def sanitize_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)


def build_storage_path(user_id: str, file_name: str, timestamp_ms: Optional[int] = None) -> str:
    """{user_id}/{timestamp}_{sanitized_filename}"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{user_id}/{timestamp_ms}_{sanitize_filename(file_name)}"


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 B"
    sizes = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(sizes) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {sizes[i]}"


class DocumentService:
    def __init__(self, db: DatabaseClient, api: ProcessingAPIClient):
        self.db = db
        self.api = api

    def upload_document(
        self,
        file: UploadFile,
        user_id: str,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> Document:
        """
        Upload one file: storage object, then documents row, then processing trigger.

        A failed trigger does not raise: the row is marked failed with the reason
        and the returned Document carries it, so the user can retry later.
        Storage and row failures raise StudyQuizError.
        """
        progress = on_progress or (lambda _p: None)
        path = build_storage_path(user_id, file.name)
        progress(10)

        try:
            self.db.upload_file(path, file.content, file.content_type)
        except Exception as e:
            logger.error(f"Storage upload error for {file.name}: {e}")
            raise StudyQuizError(f"Failed to upload {file.name}") from e
        progress(50)

        try:
            row = self.db.insert_document({
                "user_id": user_id,
                "title": file.name,
                "file_path": path,
                "file_type": file.content_type,
                "file_size": file.size,
                "status": "pending",
            })
        except Exception as e:
            logger.error(f"Database insert error for {file.name}: {e}")
            raise StudyQuizError(f"Failed to save metadata for {file.name}") from e
        progress(80)

        document = row.to_document()
        result = self.api.trigger_processing(document.id)
        if not result.success:
            message = f"Failed to start processing: {result.error}"
            try:
                self.db.update_document(document.id, {"status": "failed", "error_message": message})
            except Exception as e:
                logger.error(f"Could not mark document {document.id} as failed: {e}")
            document = document.model_copy(update={"status": "failed", "error_message": result.error})
        progress(100)
        return document

    def upload_batch(
        self,
        files: List[UploadFile],
        user_id: str,
        on_status: Optional[Callable[[int, UploadStatus], None]] = None,
    ) -> List[UploadStatus]:
        """
        Validate the batch, then upload every file concurrently.

        Each file gets its own UploadStatus; one failure never stops the others.

        Raises:
            UploadValidationError: too many files or a file over the size limit
        """
        validate_batch(files)
        statuses = [UploadStatus(file_name=f.name) for f in files]
        if not files:
            return statuses

        def notify(index: int) -> None:
            if on_status:
                on_status(index, statuses[index])

        def run(index: int) -> None:
            file = files[index]

            def set_progress(p: int) -> None:
                statuses[index].progress = p
                notify(index)

            try:
                statuses[index].document = self.upload_document(file, user_id, set_progress)
                statuses[index].progress = 100
                statuses[index].complete = True
            except StudyQuizError as e:
                statuses[index].error = str(e)
            except Exception as e:
                logger.exception(f"Unexpected error uploading {file.name}")
                statuses[index].error = str(e) or "Upload failed"
            notify(index)

        with ThreadPoolExecutor(max_workers=len(files)) as pool:
            list(pool.map(run, range(len(files))))

        logger.info(f"Batch upload: {sum(s.complete for s in statuses)}/{len(files)} files uploaded")
        return statuses

    def retry_document_processing(self, document_id: str) -> TriggerResult:
        """Reset the document to pending and trigger processing again."""
        try:
            self.db.update_document(document_id, {"status": "pending", "error_message": None})
        except Exception as e:
            logger.error(f"Failed to reset document {document_id}: {e}")
            return TriggerResult(success=False, error="Failed to reset document status")
        return self.api.trigger_processing(document_id)

    def fetch_user_documents(self, user_id: str) -> List[Document]:
        try:
            return [row.to_document() for row in self.db.get_documents(user_id)]
        except Exception as e:
            logger.error(f"Error fetching documents for {user_id}: {e}")
            raise StudyQuizError("Failed to fetch documents") from e

    def get_user_storage_stats(self, user_id: str) -> StorageStats:
        try:
            rows = self.db.get_file_sizes(user_id)
        except Exception as e:
            logger.error(f"Stats error: {e}")
            raise StudyQuizError("Failed to fetch storage stats") from e
        return StorageStats(used_space=sum(r.file_size for r in rows), file_count=len(rows))

    def delete_document(self, document_id: str, file_path: str) -> None:
        try:
            self.db.remove_file(file_path)
        except Exception as e:
            logger.warning(f"Failed to delete file {file_path} from storage: {e}")
        try:
            self.db.delete_document_row(document_id)
        except Exception as e:
            logger.error(f"Failed to delete document record {document_id}: {e}")
            raise StudyQuizError("Failed to delete document record") from e

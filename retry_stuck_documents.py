"""
Re-trigger processing for documents that failed or have been pending/processing
for longer than the stuck threshold.

Run: python retry_stuck_documents.py [--dry-run] [--user-id UUID]
"""
import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

path = Path(__file__).resolve().parent
if str(path) not in sys.path:
    sys.path.insert(0, str(path))

from db import get_supabase_uncached
from studyquiz.dashboard import is_stuck
from studyquiz.database import DatabaseClient
from studyquiz.documents import DocumentService
from studyquiz.processing_api import ProcessingAPIClient

logger = logging.getLogger(__name__)


def find_retryable(db: DatabaseClient, user_id=None, now=None):
    now = now or datetime.now(timezone.utc)
    rows = db.get_documents_by_status(["pending", "processing", "failed"], user_id)
    documents = [row.to_document() for row in rows]
    return [d for d in documents if d.status == "failed" or is_stuck(d, now)]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Retry processing for stuck or failed documents")
    parser.add_argument("--dry-run", action="store_true", help="Only print what would be retried")
    parser.add_argument("--user-id", help="Limit to one user's documents")
    args = parser.parse_args(argv)

    try:
        client = get_supabase_uncached()
    except ValueError as e:
        logger.error(f"{e} (check .env)")
        return 1
    db = DatabaseClient(client)
    service = DocumentService(db, ProcessingAPIClient())

    documents = find_retryable(db, args.user_id)
    logger.info(f"Found {len(documents)} stuck or failed documents")
    for doc in documents:
        logger.info(f"  {doc.id}  {doc.status:<10}  {doc.title}")
    if args.dry_run:
        logger.info("Dry run. Run without --dry-run to retry.")
        return 0

    failures = 0
    for doc in documents:
        result = service.retry_document_processing(doc.id)
        if result.success:
            logger.info(f"Retried {doc.title} ({result.retries} retries)")
        else:
            failures += 1
            logger.error(f"Retry failed for {doc.title}: {result.error}")
    logger.info(f"Done. {len(documents) - failures}/{len(documents)} re-triggered.")
    return 1 if failures else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    sys.exit(main())

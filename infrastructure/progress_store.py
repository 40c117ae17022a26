# infrastructure/progress_store.py
"""Simple in-memory ingestion progress tracking with size limit"""
from typing import Dict, Optional
from datetime import datetime, timezone
from core.domain import ProcessingStatus, ErrorCode


class ProgressStore:
    """
    In-memory storage for document ingestion progress.

    Auto-cleanup past 500 entries (keeps newest 250). Lost on restart.
    Usage: start() -> update() -> complete()/fail(). Callers poll get().
    """
    MAX_ENTRIES = 500
    KEEP_ON_CLEANUP = 250

    def __init__(self):
        self._progress: Dict[str, Dict] = {}

    def _cleanup_if_full(self):
        """Drop the oldest entries when the limit is reached"""
        if len(self._progress) < self.MAX_ENTRIES:
            return
        by_age = sorted(self._progress.items(), key=lambda item: item[1]["_created"])
        for document_id, _ in by_age[:len(self._progress) - self.KEEP_ON_CLEANUP]:
            del self._progress[document_id]

    def start(self, document_id: str, filename: str) -> None:
        self._cleanup_if_full()
        self._progress[document_id] = {
            "filename": filename,
            "status": ProcessingStatus.PENDING,
            "progress_percent": 0,
            "current_step": "Starting...",
            "error": None,
            "error_code": None,
            "_created": datetime.now(timezone.utc),
        }

    def update(self, document_id: str, status: ProcessingStatus,
               progress: int, step: str) -> None:
        """Update status, percentage (0-100) and current step message."""
        entry = self._progress.get(document_id)
        if entry is not None:
            entry.update({
                "status": status,
                "progress_percent": max(0, min(100, progress)),
                "current_step": step,
            })

    def fail(self, document_id: str, error: str, error_code: ErrorCode) -> None:
        entry = self._progress.get(document_id)
        if entry is not None:
            entry.update({
                "status": ProcessingStatus.FAILED,
                "error": error,
                "error_code": error_code,
            })

    def complete(self, document_id: str) -> None:
        entry = self._progress.get(document_id)
        if entry is not None:
            entry.update({
                "status": ProcessingStatus.COMPLETED,
                "progress_percent": 100,
                "current_step": "Done!",
            })

    def get(self, document_id: str) -> Optional[Dict]:
        entry = self._progress.get(document_id)
        if entry is None:
            return None
        return {k: v for k, v in entry.items() if not k.startswith("_")}

    def remove(self, document_id: str) -> None:
        self._progress.pop(document_id, None)


# Global instance
progress_store = ProgressStore()

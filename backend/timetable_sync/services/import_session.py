"""
Staging session for document imports.

Documents go to an external extractor; a non-empty result is held for review
and can be discarded (cancel) or reconciled into the entity set (finalize).
Cancellation is only possible while the result is staged.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from timetable_sync.core.exceptions import ImportEmptyError
from timetable_sync.schemas.imports import ExtractionResult, ImportDocument, ImportStatus
from timetable_sync.schemas.timetable import EntityProfile
from timetable_sync.services.import_reconciler import (
    ImportReconciler, MergeResult, fragments_from_extraction
)

logger = logging.getLogger(__name__)


class TimetableExtractor(ABC):
    """Document/image to schedule extraction service."""

    @abstractmethod
    async def extract(self, documents: List[ImportDocument]) -> ExtractionResult:
        """Return the profiles found in the documents."""
        pass


class ImportSession:
    """Tracks one staged extraction import."""

    def __init__(
        self,
        extractor: Optional[TimetableExtractor] = None,
        reconciler: Optional[ImportReconciler] = None
    ):
        self.extractor = extractor
        self.reconciler = reconciler or ImportReconciler()
        self.status = ImportStatus.IDLE
        self.result: Optional[ExtractionResult] = None
        self.error_message: Optional[str] = None

    async def start(self, documents: List[ImportDocument]) -> ImportStatus:
        """Run the extractor over ``documents`` and stage its result."""
        if self.extractor is None:
            self._fail("No extractor configured")
            return self.status

        self.status = ImportStatus.PROCESSING
        self.error_message = None
        try:
            result = await self.extractor.extract(documents)
        except Exception as e:
            logger.error(f"Extraction failed: {e}")
            self._fail(str(e))
            return self.status

        return self.stage(result)

    def stage(self, result: Optional[ExtractionResult]) -> ImportStatus:
        """Hold an extraction result for review, or enter ERROR when it is empty."""
        if result is None or not result.profiles:
            self._fail(ImportEmptyError().message)
            return self.status

        self.result = result
        self.status = ImportStatus.REVIEW
        logger.info(f"Staged import with {len(result.profiles)} profiles")
        return self.status

    def cancel(self) -> bool:
        """Discard a staged result. An extraction in flight cannot be cancelled."""
        if self.status == ImportStatus.PROCESSING:
            logger.warning("Import is still processing; cancel ignored")
            return False
        self.result = None
        self.status = ImportStatus.IDLE
        self.error_message = None
        return True

    def finalize(self, existing: List[EntityProfile]) -> MergeResult:
        """Reconcile the staged result into ``existing`` and complete the session."""
        if self.status != ImportStatus.REVIEW or self.result is None:
            raise ImportEmptyError("No staged import to finalize")

        merged = self.reconciler.merge(fragments_from_extraction(self.result), existing)
        self.status = ImportStatus.COMPLETED
        self.result = None
        return merged

    def _fail(self, message: str) -> None:
        self.status = ImportStatus.ERROR
        self.error_message = message
        self.result = None

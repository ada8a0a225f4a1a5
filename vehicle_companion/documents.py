"""Manual document lifecycle: readiness gating and the upload workflow."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pypdf.errors import PdfReadError

from .config import config
from .errors import UploadError
from .manual_processing import ManualLoader
from .models import DocumentStatus, ManualDocument

if TYPE_CHECKING:
    from .manual_index import ManualIndexer
    from .stores import BlobStore, DocumentStore

logger = config.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADING: frozenset({
        DocumentStatus.PROCESSING,
        DocumentStatus.ERROR,
    }),
    DocumentStatus.PROCESSING: frozenset({
        DocumentStatus.READY,
        DocumentStatus.ERROR,
    }),
    DocumentStatus.READY: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


def transition(
    store: DocumentStore, document: ManualDocument, status: DocumentStatus
) -> ManualDocument:
    """Move a manual record to a new lifecycle status.

    ``ready`` and ``error`` are terminal; leaving ``error`` requires a new
    upload, which recreates the record.

    Returns:
        The updated record.

    Raises:
        ValueError: If the lifecycle does not allow the transition.
    """
    if status not in ALLOWED_TRANSITIONS[document.status]:
        msg = f"Cannot move manual {document.id} from {document.status} to {status}"
        raise ValueError(msg)
    updated = store.update_status(document.id, status)
    logger.info(
        "Manual %s for vehicle %s: %s -> %s",
        document.id,
        document.vehicle_id,
        document.status,
        status,
    )
    return updated


class DocumentLifecycle:
    """Read-side view classifying each vehicle's manual for query gating."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def document(self, vehicle_id: str) -> ManualDocument | None:
        return self.store.get_for_vehicle(vehicle_id)

    def status(self, vehicle_id: str) -> DocumentStatus:
        """Current manual status, ``absent`` when the vehicle has no record."""  # noqa: DOC201
        document = self.document(vehicle_id)
        return document.status if document else DocumentStatus.ABSENT

    def is_ready(self, vehicle_id: str) -> bool:
        return self.status(vehicle_id) is DocumentStatus.READY


class ManualUploader:
    """Stores an owner's manual and walks its record through the lifecycle."""

    def __init__(
        self,
        documents: DocumentStore,
        blobs: BlobStore,
        indexer: ManualIndexer | None = None,
        max_size_bytes: int | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            documents: Store holding the manual records.
            blobs: Destination for the manual files.
            indexer: Extracts and indexes the manual once stored. Without one
                the record stays in ``processing`` for an external indexer.
            max_size_bytes: Upload size limit. If None, uses
                config.MANUAL_MAX_SIZE_MB.
        """
        self.documents = documents
        self.blobs = blobs
        self.indexer = indexer
        self.max_size_bytes = (
            max_size_bytes
            if max_size_bytes is not None
            else config.manual_max_size_bytes()
        )

    def validate(self, file_path: Path) -> int:
        """Check that the file is a readable PDF within the size limit.

        Returns:
            File size in bytes.

        Raises:
            UploadError: If the file cannot be accepted as a manual.
        """
        if file_path.suffix.lower() != ".pdf":
            msg = f"Only PDF manuals are accepted, got {file_path.name}"
            raise UploadError(msg)

        try:
            size = file_path.stat().st_size
        except OSError as e:
            msg = f"Cannot read {file_path}: {e}"
            raise UploadError(msg) from e

        if size > self.max_size_bytes:
            msg = (
                f"{file_path.name} is {size} bytes, the limit is "
                f"{self.max_size_bytes} bytes"
            )
            raise UploadError(msg)

        try:
            pages = ManualLoader.page_count(file_path)
        except (PdfReadError, OSError, ValueError) as e:
            msg = f"{file_path.name} is not a readable PDF"
            raise UploadError(msg) from e

        if pages == 0:
            msg = f"{file_path.name} has no pages"
            raise UploadError(msg)
        return size

    @staticmethod
    def storage_key(vehicle_id: str, file_name: str) -> str:
        return f"manuals/{vehicle_id}/{Path(file_name).name}"

    def upload(self, vehicle_id: str, file_path: Path) -> ManualDocument:
        """Upload a manual for a vehicle, replacing any previous one.

        Returns:
            The manual record in its latest state: ``processing`` when no
            indexer is configured, ``ready`` or ``error`` otherwise.

        Raises:
            UploadError: If validation fails or the blob store rejects the file.
        """
        size = self.validate(file_path)
        document = self.documents.create(vehicle_id, file_path.name, size)

        key = self.storage_key(vehicle_id, file_path.name)
        if not self.blobs.upload(key, file_path):
            transition(self.documents, document, DocumentStatus.ERROR)
            msg = f"Could not store {file_path.name}"
            raise UploadError(msg)

        document = transition(self.documents, document, DocumentStatus.PROCESSING)

        if self.indexer is None:
            return document
        return self.indexer.index(document, file_path)

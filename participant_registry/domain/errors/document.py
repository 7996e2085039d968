"""Document lookup errors."""

from __future__ import annotations

from participant_registry.domain.exceptions import RegistryError


class DocumentNotFoundError(RegistryError):
    """Raised when a referenced document does not exist.

    Surfaced to the caller and never retried automatically. Raised by
    point reads, by updates and deletes whose target is absent at commit
    time, and delivered through the error channel of document watchers.

    Attributes:
        collection: Name of the collection that was searched.
        document_id: Identifier of the missing document.
    """

    def __init__(self, collection: str, document_id: str) -> None:
        """Initialize document not found error.

        Args:
            collection: Name of the collection that was searched.
            document_id: Identifier of the missing document.
        """
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document does not exist: {collection}/{document_id}")

"""Participant lifecycle service.

This service owns every write to participant records. Records enter either
the "new" intake collection (add_new, which also bumps the statistics
counter) or the "permanent" collection directly (add_permanent). Intake
records are promoted with move_to_permanent; permanent records move
through the status state machine:

    Pending -> Approved | Declined | Deleted
    Approved | Declined -> Deleted
    Deleted -> Pending

Every transition appends exactly one audit entry to the record's history
in the same atomic write as the status change.

Constitutional Constraints:
- Counter and intake document change together or not at all
- History only grows; entries are appended with array-union semantics
- Caller fields never overwrite status, createdAt or history
- Store failures propagate unchanged; the service performs no recovery
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from participant_registry.application.ports.document_store import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentRef,
    DocumentStoreProtocol,
    Increment,
    TransactionProtocol,
)
from participant_registry.application.services.base import LoggingMixin
from participant_registry.application.services.document_watcher import (
    DocumentWatcher,
)
from participant_registry.application.services.live_list_controller import (
    ChangeListener,
    LiveListController,
)
from participant_registry.config.registry_config import (
    DEFAULT_REGISTRY_CONFIG,
    RegistryConfig,
)
from participant_registry.domain.errors.document import DocumentNotFoundError
from participant_registry.domain.errors.state_transition import (
    InvalidStateTransitionError,
)
from participant_registry.domain.models.change import DocumentSnapshot
from participant_registry.domain.models.participant import (
    CREATED_AT_FIELD,
    HISTORY_FIELD,
    RESERVED_FIELDS,
    STATUS_FIELD,
    AuditEntry,
    LifecycleEvent,
    Participant,
    ParticipantStatistics,
    ParticipantStatus,
)
from participant_registry.domain.models.query import FilterInput, SorterInput


class ParticipantLifecycleService(LoggingMixin):
    """Lifecycle operations and live views over participant records.

    Construct one instance per process through the bootstrap module and
    pass it to consumers explicitly.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        config: RegistryConfig = DEFAULT_REGISTRY_CONFIG,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            store: Document store holding the participant collections.
            config: Collection names, audit defaults and transition policy.
        """
        self._store = store
        self._config = config
        self._statistics_ref = DocumentRef(
            config.statistics_collection, config.statistics_document
        )
        self._init_logger(component="registry")

    @property
    def config(self) -> RegistryConfig:
        """Configuration this service was built with."""
        return self._config

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def add_new(
        self, fields: Mapping[str, Any], actor: str | None = None
    ) -> str:
        """Create an intake record and increment the intake counter atomically.

        Args:
            fields: Caller-supplied participant fields.
            actor: Audit actor, defaults to the configured system actor.

        Returns:
            Id of the created record in the "new" collection.

        Raises:
            ValueError: If fields contain a lifecycle-owned field.
            StoreUnavailableError: If the batch could not be committed.
        """
        data = self._caller_fields(fields)
        ref = self._new_ref(self._store.new_id(self._config.new_collection))
        log = self._log_operation("add_new", document_id=ref.id)
        log.info("operation_started")

        batch = self._store.batch()
        batch.set(ref, self._initial_document(data, actor, LifecycleEvent.RECEIVED))
        batch.set(self._statistics_ref, self._counter_delta(1), merge=True)
        await batch.commit()

        log.info("participant_received")
        return ref.id

    async def add_permanent(
        self, fields: Mapping[str, Any], actor: str | None = None
    ) -> str:
        """Create a record directly in the "permanent" collection.

        The intake counter is not touched.

        Returns:
            Id of the created record.
        """
        data = self._caller_fields(fields)
        ref = self._permanent_ref(
            self._store.new_id(self._config.permanent_collection)
        )
        log = self._log_operation("add_permanent", document_id=ref.id)
        log.info("operation_started")

        await self._store.set(
            ref, self._initial_document(data, actor, LifecycleEvent.CREATED)
        )

        log.info("participant_created")
        return ref.id

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_new(
        self, document_id: str, fields: Mapping[str, Any], actor: str | None = None
    ) -> None:
        """Merge fields into an intake record and record the update.

        Raises:
            DocumentNotFoundError: If the record does not exist.
        """
        await self._update(self._new_ref(document_id), fields, actor)

    async def update_permanent(
        self, document_id: str, fields: Mapping[str, Any], actor: str | None = None
    ) -> None:
        """Merge fields into a permanent record and record the update.

        Raises:
            DocumentNotFoundError: If the record does not exist.
        """
        await self._update(self._permanent_ref(document_id), fields, actor)

    async def _update(
        self, ref: DocumentRef, fields: Mapping[str, Any], actor: str | None
    ) -> None:
        data = self._caller_fields(fields)
        log = self._log_operation(
            "update", collection=ref.collection, document_id=ref.id
        )
        log.info("operation_started", fields=sorted(data))

        data[HISTORY_FIELD] = self._history_append(actor, LifecycleEvent.UPDATED)
        await self._store.update(ref, data)

        log.info("participant_updated")

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_new(self, document_id: str) -> None:
        """Remove an intake record and decrement the intake counter atomically.

        Runs as a transaction so a record that is already gone never
        decrements the counter.

        Raises:
            DocumentNotFoundError: If the record does not exist.
            TransactionConflictError: If concurrent writers won every attempt.
        """
        ref = self._new_ref(document_id)
        log = self._log_operation("delete_new", document_id=document_id)
        log.info("operation_started")

        async def _delete(transaction: TransactionProtocol) -> None:
            snapshot = await transaction.get(ref)
            if not snapshot.exists:
                raise DocumentNotFoundError(ref.collection, ref.id)
            transaction.delete(ref)
            transaction.set(self._statistics_ref, self._counter_delta(-1), merge=True)

        await self._store.run_transaction(
            _delete, max_attempts=self._config.transaction_max_attempts
        )
        log.info("participant_intake_deleted")

    async def delete_permanent(
        self, document_id: str, actor: str | None = None
    ) -> None:
        """Soft-delete a permanent record; the document is retained."""
        await self._transition(
            document_id, ParticipantStatus.DELETED, LifecycleEvent.DELETED, actor
        )

    async def undo_delete_permanent(
        self, document_id: str, actor: str | None = None
    ) -> None:
        """Restore a soft-deleted permanent record to Pending."""
        await self._transition(
            document_id, ParticipantStatus.PENDING, LifecycleEvent.RESTORED, actor
        )

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def approve_pending(
        self, document_id: str, actor: str | None = None
    ) -> None:
        """Mark a permanent record as Approved."""
        await self._transition(
            document_id, ParticipantStatus.APPROVED, LifecycleEvent.APPROVED, actor
        )

    async def decline_pending(
        self, document_id: str, actor: str | None = None
    ) -> None:
        """Mark a permanent record as Declined."""
        await self._transition(
            document_id, ParticipantStatus.DECLINED, LifecycleEvent.DECLINED, actor
        )

    async def _transition(
        self,
        document_id: str,
        target: ParticipantStatus,
        event: LifecycleEvent,
        actor: str | None,
    ) -> None:
        """Set a permanent record's status and append the matching audit entry.

        With enforce_transitions the current status is read in a
        transaction and checked against the transition matrix; otherwise the
        status is written unconditionally.

        Raises:
            DocumentNotFoundError: If the record does not exist.
            InvalidStateTransitionError: If enforcement is on and the
                transition is not allowed.
        """
        ref = self._permanent_ref(document_id)
        log = self._log_operation(
            "transition", document_id=document_id, to_status=target.value
        )
        log.info("operation_started")

        changes = {
            STATUS_FIELD: target.value,
            HISTORY_FIELD: self._history_append(actor, event),
        }

        if not self._config.enforce_transitions:
            await self._store.update(ref, changes)
            log.info("participant_status_changed")
            return

        async def _guarded(transaction: TransactionProtocol) -> ParticipantStatus:
            snapshot = await transaction.get(ref)
            if not snapshot.exists:
                raise DocumentNotFoundError(ref.collection, ref.id)
            current = ParticipantStatus(snapshot.get(STATUS_FIELD))
            if not current.can_transition_to(target):
                raise InvalidStateTransitionError(
                    document_id=document_id,
                    from_status=current,
                    to_status=target,
                    allowed_transitions=sorted(
                        current.valid_transitions(), key=lambda s: s.value
                    ),
                )
            transaction.update(ref, changes)
            return current

        try:
            previous = await self._store.run_transaction(
                _guarded, max_attempts=self._config.transaction_max_attempts
            )
        except InvalidStateTransitionError as e:
            log.warning(
                "participant_transition_rejected",
                from_status=e.from_status.value,
            )
            raise

        log.info("participant_status_changed", from_status=previous.value)

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    async def move_to_permanent(
        self, document_id: str, actor: str | None = None
    ) -> str:
        """Move an intake record into the "permanent" collection.

        In one transaction: read the intake record, reset it to Pending,
        append a "moved" entry, write it under a freshly generated
        permanent id, delete the intake record and decrement the counter.
        No reader ever sees the record in both collections or in neither.

        The permanent copy gets a new id; the intake id is discarded.

        Returns:
            Id of the record in the "permanent" collection.

        Raises:
            DocumentNotFoundError: If the intake record does not exist.
            InvalidStateTransitionError: If enforcement is on and the
                intake record is not Pending.
            TransactionConflictError: If concurrent writers won every attempt.
        """
        source = self._new_ref(document_id)
        target = self._permanent_ref(
            self._store.new_id(self._config.permanent_collection)
        )
        entry = AuditEntry.record(self._actor(actor), LifecycleEvent.MOVED)
        log = self._log_operation(
            "move_to_permanent", document_id=document_id, new_document_id=target.id
        )
        log.info("operation_started")

        async def _move(transaction: TransactionProtocol) -> str:
            snapshot = await transaction.get(source)
            if not snapshot.exists:
                raise DocumentNotFoundError(source.collection, source.id)

            data = snapshot.to_dict()
            if self._config.enforce_transitions:
                current = ParticipantStatus(data.get(STATUS_FIELD))
                if current is not ParticipantStatus.PENDING:
                    raise InvalidStateTransitionError(
                        document_id=document_id,
                        from_status=current,
                        to_status=ParticipantStatus.PENDING,
                    )

            data[STATUS_FIELD] = ParticipantStatus.PENDING.value
            data[HISTORY_FIELD] = list(data.get(HISTORY_FIELD, [])) + [
                entry.to_document()
            ]
            transaction.set(target, data)
            transaction.delete(source)
            transaction.set(self._statistics_ref, self._counter_delta(-1), merge=True)
            return target.id

        new_id = await self._store.run_transaction(
            _move, max_attempts=self._config.transaction_max_attempts
        )
        log.info("participant_moved")
        return new_id

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    async def fetch_new(self, document_id: str) -> Participant:
        """Read an intake record.

        Raises:
            DocumentNotFoundError: If the record does not exist.
        """
        return Participant.from_snapshot(
            await self._read(self._new_ref(document_id))
        )

    async def fetch_permanent(self, document_id: str) -> Participant:
        """Read a permanent record.

        Raises:
            DocumentNotFoundError: If the record does not exist.
        """
        return Participant.from_snapshot(
            await self._read(self._permanent_ref(document_id))
        )

    async def fetch_statistics(self) -> ParticipantStatistics:
        """Read the statistics singleton.

        Raises:
            DocumentNotFoundError: If no intake record was ever counted.
        """
        return ParticipantStatistics.from_snapshot(
            await self._read(self._statistics_ref)
        )

    async def _read(self, ref: DocumentRef) -> DocumentSnapshot:
        snapshot = await self._store.get(ref)
        if not snapshot.exists:
            raise DocumentNotFoundError(ref.collection, ref.id)
        return snapshot

    # ------------------------------------------------------------------
    # Live views
    # ------------------------------------------------------------------

    def get_new(
        self,
        document_id: str,
        on_next: Callable[[Participant], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> DocumentWatcher[Participant]:
        """Watch one intake record."""
        return DocumentWatcher(
            self._store,
            self._new_ref(document_id),
            on_next,
            on_error,
            Participant.from_snapshot,
        )

    def get_permanent(
        self,
        document_id: str,
        on_next: Callable[[Participant], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> DocumentWatcher[Participant]:
        """Watch one permanent record."""
        return DocumentWatcher(
            self._store,
            self._permanent_ref(document_id),
            on_next,
            on_error,
            Participant.from_snapshot,
        )

    def get_statistics(
        self,
        on_next: Callable[[ParticipantStatistics], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> DocumentWatcher[ParticipantStatistics]:
        """Watch the statistics singleton."""
        return DocumentWatcher(
            self._store,
            self._statistics_ref,
            on_next,
            on_error,
            ParticipantStatistics.from_snapshot,
        )

    def get_new_list(
        self,
        on_change: ChangeListener[Participant],
        filter: FilterInput = None,
        sorter: SorterInput = None,
        limit: int | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> LiveListController[Participant]:
        """Live, paginated list of intake records.

        Args:
            on_change: Receives (participant, new_index, old_index, change_type).
            filter: Field constraints, e.g. {"status": ParticipantStatus.PENDING}.
            sorter: Sort fields, e.g. {"createdAt": "desc"}.
            limit: Page size, defaults to the configured page size.
            on_error: Receives the store error that terminates the list.
        """
        return self._live_list(
            self._config.new_collection, on_change, filter, sorter, limit, on_error
        )

    def get_permanent_list(
        self,
        on_change: ChangeListener[Participant],
        filter: FilterInput = None,
        sorter: SorterInput = None,
        limit: int | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> LiveListController[Participant]:
        """Live, paginated list of permanent records. See get_new_list."""
        return self._live_list(
            self._config.permanent_collection,
            on_change,
            filter,
            sorter,
            limit,
            on_error,
        )

    def _live_list(
        self,
        collection: str,
        on_change: ChangeListener[Participant],
        filter: FilterInput,
        sorter: SorterInput,
        limit: int | None,
        on_error: Callable[[Exception], None] | None,
    ) -> LiveListController[Participant]:
        return LiveListController(
            self._store,
            collection,
            on_change,
            Participant.from_snapshot,
            filter=filter,
            sorter=sorter,
            page_size=limit if limit is not None else self._config.default_page_size,
            on_error=on_error,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_ref(self, document_id: str) -> DocumentRef:
        return DocumentRef(self._config.new_collection, document_id)

    def _permanent_ref(self, document_id: str) -> DocumentRef:
        return DocumentRef(self._config.permanent_collection, document_id)

    def _actor(self, actor: str | None) -> str:
        return actor or self._config.default_actor

    def _history_append(self, actor: str | None, event: LifecycleEvent) -> ArrayUnion:
        return ArrayUnion([AuditEntry.record(self._actor(actor), event).to_document()])

    def _initial_document(
        self, data: dict[str, Any], actor: str | None, event: LifecycleEvent
    ) -> dict[str, Any]:
        document = dict(data)
        document[STATUS_FIELD] = ParticipantStatus.PENDING.value
        document[CREATED_AT_FIELD] = SERVER_TIMESTAMP
        document[HISTORY_FIELD] = [
            AuditEntry.record(self._actor(actor), event).to_document()
        ]
        return document

    @staticmethod
    def _counter_delta(amount: int) -> dict[str, Any]:
        return {ParticipantStatistics.NUM_OF_NEW_FIELD: Increment(amount)}

    @staticmethod
    def _caller_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
        reserved = RESERVED_FIELDS.intersection(fields)
        if reserved:
            raise ValueError(
                f"Fields {sorted(reserved)} are managed by the lifecycle "
                "and cannot be written directly"
            )
        return dict(fields)

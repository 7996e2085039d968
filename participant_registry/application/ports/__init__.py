"""Application ports - Abstract interfaces for infrastructure adapters.

This module defines the contracts that infrastructure adapters must implement.
Ports enable dependency inversion and make the application layer testable.

Available ports:
- DocumentStoreProtocol: Document database with batches, transactions and
  subscriptions
"""

from participant_registry.application.ports.document_store import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentRef,
    DocumentStoreProtocol,
    Increment,
    SubscriptionProtocol,
    TransactionProtocol,
    WriteBatchProtocol,
)

__all__: list[str] = [
    "SERVER_TIMESTAMP",
    "ArrayUnion",
    "DocumentRef",
    "DocumentStoreProtocol",
    "Increment",
    "SubscriptionProtocol",
    "TransactionProtocol",
    "WriteBatchProtocol",
]

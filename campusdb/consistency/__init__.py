"""
Consistency core for campusdb.

The document store guarantees atomicity for one document at a time.
Everything the data model needs beyond that is maintained here:
- SequenceAllocator: unique integer ids without auto-increment
- ConcurrencyTokenManager: optimistic concurrency via rotating tokens
- RelationshipSynchronizer: instructor/course mirrors and administrator names
- CascadeEngine: delete guards and cascades
- Reconciler: drift detection and repair for derived fields

Invariants:
    - Multi-document operations are idempotent set reconciliations, so a
      retry after PartialSynchronizationError converges
    - Guards and token checks run before the first mutation

How to change safely:
    - Never add a write path that skips the synchronizer for instructor
      or course membership
    - Run the Reconciler in tests after any new multi-document operation
"""

from .guards import CascadeEngine
from .reconcile import DriftReport, Reconciler
from .sequence import SequenceAllocator
from .sync import RelationshipSynchronizer, SyncResult, run_steps
from .tokens import ConcurrencyTokenManager, TokenCheck

__all__ = [
    "SequenceAllocator",
    "ConcurrencyTokenManager",
    "TokenCheck",
    "RelationshipSynchronizer",
    "SyncResult",
    "run_steps",
    "CascadeEngine",
    "Reconciler",
    "DriftReport",
]

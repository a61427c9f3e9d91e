"""
unirepl - unified storage replication control plane.

One backend-agnostic replication intent, reconciled onto Ceph-CSI,
NetApp Trident or Dell PowerStore through per-backend adapters.

- unirepl.core: enums, models, errors, logging, settings
- unirepl.translation: unified ↔ backend vocabulary
- unirepl.discovery: backend probing and selection
- unirepl.adapters: the adapter contract and its implementations
- unirepl.resilience: retry, circuit breaker, deadlines
- unirepl.controller: reconciliation loop, state machine, health
- unirepl.observability: metrics
"""

__version__ = "0.1.0"

from unirepl.core import *  # noqa

"""
unirepl.controller - the reconciliation control loop.

Usage:
    controller = ReconciliationController(store, discovery, registry)
    runner = ControllerRunner(controller)
    store.subscribe(runner.enqueue)
    await runner.start()
"""

from unirepl.controller.conditions import (
    is_condition_true,
    mark_not_ready,
    mark_ready,
    remove_condition,
    set_condition,
)
from unirepl.controller.health import (
    HealthChecker,
    HealthReport,
    ReadinessChecker,
    ReadinessReport,
    create_health_router,
)
from unirepl.controller.reconciler import ReconcileResult, ReconciliationController, operation_kind
from unirepl.controller.state_machine import (
    VALID_TRANSITIONS,
    StateMachine,
    TransitionRecord,
    TransitionRule,
    is_valid_transition,
    validate_transition,
)
from unirepl.controller.store import InMemoryIntentStore, IntentStore
from unirepl.controller.workqueue import ControllerRunner, WorkQueue

__all__ = [
    "set_condition",
    "remove_condition",
    "mark_ready",
    "mark_not_ready",
    "is_condition_true",
    "HealthChecker",
    "HealthReport",
    "ReadinessChecker",
    "ReadinessReport",
    "create_health_router",
    "ReconcileResult",
    "ReconciliationController",
    "operation_kind",
    "VALID_TRANSITIONS",
    "StateMachine",
    "TransitionRecord",
    "TransitionRule",
    "is_valid_transition",
    "validate_transition",
    "IntentStore",
    "InMemoryIntentStore",
    "ControllerRunner",
    "WorkQueue",
]

"""
Top-up package: balance monitoring, bridge submission, confirmation,
persisted bridge state and the single-flight checker.
"""

from fpc_services.topup.bridge import BridgeResult, BridgeSubmissionError, BridgeSubmitter
from fpc_services.topup.checker import TopupChecker, TopupCheckerConfig, run_topup_loop
from fpc_services.topup.confirm import (
    ConfirmationConfig,
    ConfirmationResult,
    ConfirmationStatus,
    ConfirmationWaiter,
)
from fpc_services.topup.monitor import (
    BalanceReadError,
    FallbackReadFailed,
    PrimaryReadUnsupported,
    ReserveBalanceMonitor,
    resolve_fee_juice_address,
)
from fpc_services.topup.ops import OpsHandler, ReadinessState
from fpc_services.topup.reconcile import ReconciliationOutcome, reconcile_persisted_bridge
from fpc_services.topup.state import BridgeRecord, BridgeStateError, BridgeStateStore

__all__ = [
    "BridgeResult",
    "BridgeSubmissionError",
    "BridgeSubmitter",
    "TopupChecker",
    "TopupCheckerConfig",
    "run_topup_loop",
    "ConfirmationConfig",
    "ConfirmationResult",
    "ConfirmationStatus",
    "ConfirmationWaiter",
    "BalanceReadError",
    "FallbackReadFailed",
    "PrimaryReadUnsupported",
    "ReserveBalanceMonitor",
    "resolve_fee_juice_address",
    "OpsHandler",
    "ReadinessState",
    "ReconciliationOutcome",
    "reconcile_persisted_bridge",
    "BridgeRecord",
    "BridgeStateError",
    "BridgeStateStore",
]

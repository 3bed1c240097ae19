from .deployment_history_repository_interface import DeploymentHistoryRepository
from .transfer_manager_ledger_interface import ConfidentialCipher, TransferManagerLedger

__all__ = [
    "DeploymentHistoryRepository",
    "ConfidentialCipher",
    "TransferManagerLedger",
]

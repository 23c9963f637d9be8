from .vault import VaultInventory, ReconciliationRecord
from .shifts import CashierShift
from .collections import CollectionSession, CollectionEntry

__all__ = [
    'VaultInventory', 'ReconciliationRecord',
    'CashierShift',
    'CollectionSession', 'CollectionEntry',
]

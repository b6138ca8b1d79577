"""Models package."""

from .credit_account import CreditAccount
from .credit_transaction import CreditTransaction
from .credit_purchase import CreditPurchase
from .credit_reconciliation import CreditReconciliation

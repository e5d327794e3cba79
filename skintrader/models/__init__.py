from skintrader.models.alerts import (
    Alert,
    ApiErrorAlert,
    BalanceFloorAlert,
    CircuitOpenAlert,
    ProfitableTradeAlert,
    Severity,
)
from skintrader.models.budget import BudgetCheck, BudgetState, Reservation, TradingState
from skintrader.models.inventory import (
    Position,
    PositionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from skintrader.models.market import (
    InventoryItem,
    Listing,
    MarketStats,
    Sale,
    SoldItem,
    Tier,
    WhitelistEntry,
)
from skintrader.models.opportunity import (
    BuyDecision,
    BuyOpportunity,
    ExecutionOutcome,
    OutcomeStatus,
    Rejection,
    SellAction,
    SellDecision,
    SellOpportunity,
)

__all__ = [
    "Alert",
    "ApiErrorAlert",
    "BalanceFloorAlert",
    "BudgetCheck",
    "BudgetState",
    "BuyDecision",
    "BuyOpportunity",
    "CircuitOpenAlert",
    "ExecutionOutcome",
    "InventoryItem",
    "Listing",
    "MarketStats",
    "OutcomeStatus",
    "Position",
    "PositionStatus",
    "ProfitableTradeAlert",
    "Rejection",
    "Reservation",
    "Sale",
    "SellAction",
    "SellDecision",
    "SellOpportunity",
    "Severity",
    "SoldItem",
    "Tier",
    "TradingState",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "WhitelistEntry",
]

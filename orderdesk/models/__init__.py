from orderdesk.models.appeal import Appeal, AppealStatus
from orderdesk.models.balance_request import BalanceRequest, BalanceRequestStatus
from orderdesk.models.ledger_entry import LedgerEntry
from orderdesk.models.notification import Notification
from orderdesk.models.team import Team
from orderdesk.models.team_pricing import TeamPricing
from orderdesk.models.work_order import WorkOrder, WorkOrderStatus

__all__ = [
    "Appeal",
    "AppealStatus",
    "BalanceRequest",
    "BalanceRequestStatus",
    "LedgerEntry",
    "Notification",
    "Team",
    "TeamPricing",
    "WorkOrder",
    "WorkOrderStatus",
]

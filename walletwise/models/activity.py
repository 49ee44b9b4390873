"""
Activity Event Models for Walletwise

Every ledger mutation and projection run produces one of these so the
structured log can answer "what happened to this wallet and why".

DESIGN DECISION: Events are written to the local structured log only.
They are not a persisted history; the ledger itself is the record.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from walletwise.models.ledger import utc_now


class LedgerEventType(str, Enum):
    """
    Types of events we log.

    Every ledger operation and every projection step has its own type.
    """
    # Wallets
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_DEACTIVATED = "wallet_deactivated"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSFER_RECORDED = "transfer_recorded"
    MUTATION_REJECTED = "mutation_rejected"

    # Plans and income
    PLANNED_EXPENSE_CHANGED = "planned_expense_changed"
    INCOME_SOURCE_CHANGED = "income_source_changed"
    BUDGET_PERIOD_CHANGED = "budget_period_changed"

    # Projection
    AFFORDABILITY_EVALUATED = "affordability_evaluated"
    CONFIDENCE_RECALCULATED = "confidence_recalculated"
    CONFIDENCE_SWEEP_COMPLETED = "confidence_sweep_completed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class EventSeverity(str, Enum):
    """Severity level for activity events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LedgerEvent(BaseModel):
    """
    A single activity event.

    This is the unit of our structured log.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: LedgerEventType
    severity: EventSeverity = EventSeverity.INFO

    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'wallet', 'transaction', 'planned_expense')"
    )
    entity_id: Optional[UUID] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one external operation"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Decimals and UUIDs inside `details` are rendered as strings so
        the JSON renderer never sees them.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": {key: _plain(value) for key, value in self.details.items()},
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


class LedgerEventBuilder:
    """
    Helper class to build activity events with common patterns.

    Usage:
        event = LedgerEventBuilder.transaction_recorded(txn, correlation_id)
        event = LedgerEventBuilder.mutation_rejected(user_id, "transfer", error)
    """

    @staticmethod
    def wallet_created(
        user_id: str,
        wallet_id: UUID,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.WALLET_CREATED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            correlation_id=correlation_id,
            description=f"Wallet created: {name}",
            details={"opening_balance": opening_balance},
        )

    @staticmethod
    def transaction_recorded(
        user_id: str,
        transaction_id: UUID,
        kind: str,
        amount: Decimal,
        wallet_id: UUID,
        planned_expense_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.TRANSACTION_RECORDED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{kind.title()} of {amount} recorded",
            details={
                "kind": kind,
                "amount": amount,
                "wallet_id": wallet_id,
                "planned_expense_id": planned_expense_id,
            },
        )

    @staticmethod
    def transaction_edited(
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.TRANSACTION_EDITED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction edited ({len(changed_fields)} fields changed)",
            details={"changed_fields": sorted(changed_fields)},
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: UUID,
        removed_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction reversed and removed ({len(removed_ids)} rows)",
            details={"removed_ids": removed_ids},
        )

    @staticmethod
    def transfer_recorded(
        user_id: str,
        transfer_group_id: UUID,
        amount: Decimal,
        fee: Decimal,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.TRANSFER_RECORDED,
            user_id=user_id,
            entity_type="transfer",
            entity_id=transfer_group_id,
            correlation_id=correlation_id,
            description=f"Transfer of {amount} recorded",
            details={
                "amount": amount,
                "fee": fee,
                "from_wallet_id": from_wallet_id,
                "to_wallet_id": to_wallet_id,
            },
        )

    @staticmethod
    def mutation_rejected(
        user_id: str,
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.MUTATION_REJECTED,
            severity=EventSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Ledger operation rejected: {operation}",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def record_changed(
        user_id: str,
        entity_type: str,
        entity_id: UUID,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        event_types = {
            "wallet": LedgerEventType.WALLET_UPDATED,
            "planned_expense": LedgerEventType.PLANNED_EXPENSE_CHANGED,
            "income_source": LedgerEventType.INCOME_SOURCE_CHANGED,
            "budget_period": LedgerEventType.BUDGET_PERIOD_CHANGED,
        }
        event_type = event_types[entity_type]
        if entity_type == "wallet" and action == "deactivated":
            event_type = LedgerEventType.WALLET_DEACTIVATED
        return LedgerEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} {action}",
            details={"action": action},
        )

    @staticmethod
    def affordability_evaluated(
        user_id: str,
        target_amount: Decimal,
        can_afford: bool,
        confidence: str,
        net_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.AFFORDABILITY_EVALUATED,
            severity=EventSeverity.DEBUG,
            user_id=user_id,
            entity_type="projection",
            correlation_id=correlation_id,
            description=f"Affordability of {target_amount}: {'yes' if can_afford else 'no'} ({confidence})",
            details={
                "target_amount": target_amount,
                "can_afford": can_afford,
                "confidence": confidence,
                "net_balance": net_balance,
            },
        )

    @staticmethod
    def confidence_recalculated(
        user_id: str,
        updated_count: int,
        failed_count: int,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.CONFIDENCE_RECALCULATED,
            severity=EventSeverity.WARNING if failed_count else EventSeverity.INFO,
            user_id=user_id,
            entity_type="planned_expense",
            description=f"Confidence recalculated for {updated_count} planned expenses",
            details={"updated": updated_count, "failed": failed_count},
        )

    @staticmethod
    def sweep_completed(
        total_users: int,
        success_count: int,
        error_count: int,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.CONFIDENCE_SWEEP_COMPLETED,
            severity=EventSeverity.WARNING if error_count else EventSeverity.INFO,
            description=f"Confidence sweep completed for {total_users} users",
            details={
                "total_users": total_users,
                "success_count": success_count,
                "error_count": error_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.SYSTEM_ERROR,
            severity=EventSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.EXTERNAL_SERVICE_ERROR,
            severity=EventSeverity.WARNING,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )

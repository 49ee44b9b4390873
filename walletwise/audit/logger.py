"""
Activity Logger

DESIGN DECISION: Every ledger mutation, rejected mutation and projection
run is logged as a structured event. This provides:
1. Traceability of how a wallet balance got to where it is
2. Debugging capability for projection verdicts

The activity logger:
- Writes to the local structured log only (no persisted history)
- Never raises into the caller's flow
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from walletwise.models.activity import EventSeverity, LedgerEvent, LedgerEventBuilder


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class ActivityLogger:
    """
    Central activity logging service.

    Events are rendered through structlog at the level matching their
    severity. Events are kept in memory only when `keep_history` is set,
    which the tests use to assert on what was logged.
    """

    def __init__(self, keep_history: bool = False):
        self._logger = structlog.get_logger("walletwise.activity")
        self._keep_history = keep_history
        self.history: list[LedgerEvent] = []

    async def log(self, event: LedgerEvent) -> None:
        """Log an activity event."""
        log_dict = event.to_log_dict()

        if event.severity == EventSeverity.ERROR:
            self._logger.error("ledger_event", **log_dict)
        elif event.severity == EventSeverity.WARNING:
            self._logger.warning("ledger_event", **log_dict)
        elif event.severity == EventSeverity.DEBUG:
            self._logger.debug("ledger_event", **log_dict)
        else:
            self._logger.info("ledger_event", **log_dict)

        if self._keep_history:
            self.history.append(event)

    async def log_wallet_created(
        self,
        user_id: str,
        wallet_id: UUID,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log wallet creation."""
        await self.log(LedgerEventBuilder.wallet_created(
            user_id=user_id,
            wallet_id=wallet_id,
            name=name,
            opening_balance=opening_balance,
            correlation_id=correlation_id,
        ))

    async def log_transaction_recorded(
        self,
        user_id: str,
        transaction_id: UUID,
        kind: str,
        amount: Decimal,
        wallet_id: UUID,
        planned_expense_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recorded income or expense."""
        await self.log(LedgerEventBuilder.transaction_recorded(
            user_id=user_id,
            transaction_id=transaction_id,
            kind=kind,
            amount=amount,
            wallet_id=wallet_id,
            planned_expense_id=planned_expense_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_edited(
        self,
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(LedgerEventBuilder.transaction_edited(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: UUID,
        removed_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(LedgerEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            removed_ids=removed_ids,
            correlation_id=correlation_id,
        ))

    async def log_transfer_recorded(
        self,
        user_id: str,
        transfer_group_id: UUID,
        amount: Decimal,
        fee: Decimal,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transfer between wallets."""
        await self.log(LedgerEventBuilder.transfer_recorded(
            user_id=user_id,
            transfer_group_id=transfer_group_id,
            amount=amount,
            fee=fee,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_rejected(
        self,
        user_id: str,
        operation: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a ledger operation that was refused and rolled back."""
        await self.log(LedgerEventBuilder.mutation_rejected(
            user_id=user_id,
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_record_changed(
        self,
        user_id: str,
        entity_type: str,
        entity_id: UUID,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(LedgerEventBuilder.record_changed(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_affordability_evaluated(
        self,
        user_id: str,
        target_amount: Decimal,
        can_afford: bool,
        confidence: str,
        net_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(LedgerEventBuilder.affordability_evaluated(
            user_id=user_id,
            target_amount=target_amount,
            can_afford=can_afford,
            confidence=confidence,
            net_balance=net_balance,
            correlation_id=correlation_id,
        ))

    async def log_confidence_recalculated(
        self,
        user_id: str,
        updated_count: int,
        failed_count: int,
    ) -> None:
        await self.log(LedgerEventBuilder.confidence_recalculated(
            user_id=user_id,
            updated_count=updated_count,
            failed_count=failed_count,
        ))

    async def log_sweep_completed(
        self,
        total_users: int,
        success_count: int,
        error_count: int,
    ) -> None:
        await self.log(LedgerEventBuilder.sweep_completed(
            total_users=total_users,
            success_count=success_count,
            error_count=error_count,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(LedgerEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(LedgerEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new external operation (e.g., a transfer).
    Pass it through all subsequent operations.
    """
    return uuid4()

"""Activity logging package."""

from walletwise.audit.logger import ActivityLogger, create_correlation_id

__all__ = ["ActivityLogger", "create_correlation_id"]

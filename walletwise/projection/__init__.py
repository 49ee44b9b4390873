"""
Projection Package

Everything that looks forward from the ledger: income recurrence,
planned-expense commitments, affordability verdicts and the confidence
tiers stored on planned expenses.
"""

from walletwise.projection import advisory
from walletwise.projection.recurrence import OccurrenceSchedule, project_income
from walletwise.projection.commitments import CommitmentAggregator
from walletwise.projection.affordability import AffordabilityEngine
from walletwise.projection.recalculator import (
    ConfidenceRecalculator,
    ConfidenceUpdateQueue,
)

__all__ = [
    "advisory",
    "AffordabilityEngine",
    "CommitmentAggregator",
    "ConfidenceRecalculator",
    "ConfidenceUpdateQueue",
    "OccurrenceSchedule",
    "project_income",
]

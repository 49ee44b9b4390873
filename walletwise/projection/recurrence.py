"""
Recurrence Projector

Turns an income source into the dates it will pay out on.

Calendar steps are always taken from the anchor (`next_pay_date`), never
from the previous occurrence: a source paid on the 31st lands on the
28th/29th in February and back on the 31st in March, instead of drifting
to the 28th for the rest of the year.
"""

from datetime import date, timedelta
from typing import Iterator, Optional, Union

from dateutil.relativedelta import relativedelta

from walletwise.models.affordability import ProjectedIncome
from walletwise.models.ledger import IncomeFrequency, IncomeSource

# Offset of the n-th occurrence from the anchor for each recurring frequency
_STEPS = {
    IncomeFrequency.WEEKLY: lambda n: timedelta(days=7 * n),
    IncomeFrequency.BIWEEKLY: lambda n: timedelta(days=14 * n),
    IncomeFrequency.MONTHLY: lambda n: relativedelta(months=n),
    IncomeFrequency.QUARTERLY: lambda n: relativedelta(months=3 * n),
    IncomeFrequency.ANNUALLY: lambda n: relativedelta(years=n),
}


class OccurrenceSchedule:
    """
    Occurrence dates of one income source in the window (start, end].

    Iterating is lazy and can be repeated; each iteration starts over
    from the anchor. Frequencies without a fixed step (BIMONTHLY,
    IRREGULAR) yield at most the anchor date itself.

    Usage:
        for pay_date in OccurrenceSchedule(source, today, target_date):
            ...
    """

    def __init__(
        self,
        source: Union[IncomeSource, date],
        start: date,
        end: date,
        frequency: Optional[IncomeFrequency] = None,
    ):
        if isinstance(source, IncomeSource):
            self.anchor = source.next_pay_date
            self.frequency = source.frequency
        else:
            self.anchor = source
            self.frequency = frequency
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[date]:
        step = _STEPS.get(self.frequency)

        if step is None:
            if self.start < self.anchor <= self.end:
                yield self.anchor
            return

        n = 0
        occurrence = self.anchor
        while occurrence <= self.end:
            if occurrence > self.start:
                yield occurrence
            n += 1
            occurrence = self.anchor + step(n)

    def __repr__(self) -> str:
        return (
            f"OccurrenceSchedule(anchor={self.anchor}, frequency={self.frequency}, "
            f"start={self.start}, end={self.end})"
        )


def project_income(source: IncomeSource, start: date, end: date) -> list[ProjectedIncome]:
    """Every payment `source` makes after `start`, up to and including `end`."""
    return [
        ProjectedIncome(
            source_id=source.id,
            source_name=source.name,
            amount=source.amount,
            pay_date=pay_date,
        )
        for pay_date in OccurrenceSchedule(source, start, end)
    ]

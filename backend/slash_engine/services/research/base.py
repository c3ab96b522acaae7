# services/research/base.py

from abc import ABC, abstractmethod
from typing import List

from ...models.domain import Bill, CompetitorRate


class CompetitorResearch(ABC):
    """Live competitor pricing lookup used during planning."""

    @abstractmethod
    async def find_competitor_rates(self, bill: Bill) -> List[CompetitorRate]:
        """Competitor rates for the bill's provider, cheapest first. Never raises."""
        ...


class ResearchError(Exception):
    """Raised inside research clients when a lookup fails."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code

"""Competitor price research backed by the Tavily search API."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from ...models.domain import Bill, BillCategory, CompetitorRate, utcnow
from ...models.providers import Provider, get_provider, providers_in_category
from .base import CompetitorResearch, ResearchError

logger = logging.getLogger(__name__)

TAVILY_BASE_URL = "https://api.tavily.com"

_PRICE_PATTERN = re.compile(r"\$\s?(\d{1,4}(?:\.\d{1,2})?)")

_CATEGORY_TERMS = {
    BillCategory.INTERNET: "internet plans",
    BillCategory.CELL_PHONE: "cell phone plans",
    BillCategory.INSURANCE: "auto insurance rates",
}

# Names people actually write that differ from the display name
_EXTRA_ALIASES = {
    "comcast": ("comcast", "xfinity"),
    "att": ("at&t", "att"),
    "verizon": ("verizon", "fios"),
    "tmobile": ("t-mobile", "tmobile"),
    "att_wireless": ("at&t", "att"),
    "verizon_wireless": ("verizon",),
    "mint_mobile": ("mint",),
    "cricket": ("cricket",),
}


def parse_monthly_rate(text: str) -> Optional[float]:
    """First dollar amount in the text, or None."""
    match = _PRICE_PATTERN.search(text)
    if not match:
        return None
    value = float(match.group(1))
    return value if value > 0 else None


def extract_contract_terms(text: str) -> Optional[str]:
    lowered = text.lower()
    if "no contract" in lowered or "month-to-month" in lowered:
        return "Month-to-month"
    if "contract" in lowered or "term" in lowered:
        return "Contract required"
    return None


def _aliases(provider: Provider) -> List[str]:
    names = {provider.display_name.lower(), provider.id.replace("_", " ")}
    names.update(_EXTRA_ALIASES.get(provider.id, ()))
    # Longest first so "verizon wireless" beats "verizon"
    return sorted(names, key=len, reverse=True)


class TavilyResearchClient(CompetitorResearch):
    """Search the web for competitor plans and turn results into CompetitorRates."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = TAVILY_BASE_URL,
        timeout: int = 20,
        max_results: int = 5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_results = max_results
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _request(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ResearchError("TAVILY_API_KEY not configured")
        url = f"{self.base_url}{path}"
        try:
            response = self._session.post(
                url,
                json={**payload, "api_key": self.api_key},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise ResearchError(f"Tavily API error: {status_code}", status_code=status_code) from exc
        except requests.RequestException as exc:
            raise ResearchError(str(exc)) from exc
        except ValueError as exc:
            raise ResearchError(f"Tavily returned invalid JSON: {exc}") from exc

    def search(self, query: str) -> List[Dict[str, Any]]:
        data = self._request("/search", {
            "query": query,
            "search_depth": "advanced",
            "max_results": self.max_results,
        })
        results = data.get("results") or []
        return [r for r in results if isinstance(r, dict)]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build_query(self, bill: Bill) -> Optional[str]:
        provider = get_provider(bill.provider_id)
        terms = _CATEGORY_TERMS.get(bill.category)
        if provider is None or terms is None:
            return None
        competitors = [p.display_name for p in providers_in_category(bill.category) if p.id != provider.id]
        return (
            f"{provider.display_name} {terms} {bill.current_rate:.2f} "
            f"compare {' '.join(competitors)} {utcnow().year}"
        )

    def parse_results(self, bill: Bill, results: List[Dict[str, Any]]) -> List[CompetitorRate]:
        """Keep results that name a competitor in the bill's category and quote a price."""
        candidates = [p for p in providers_in_category(bill.category) if p.id != bill.provider_id]
        rates: List[CompetitorRate] = []
        for result in results:
            title = str(result.get("title") or "")
            content = str(result.get("content") or "")
            text = f"{title} {content}".lower()

            competitor = self._identify(text, candidates)
            if competitor is None:
                continue
            monthly_rate = parse_monthly_rate(content) or parse_monthly_rate(title)
            if monthly_rate is None:
                continue

            rates.append(CompetitorRate(
                provider=competitor.id,
                plan_name=title,
                monthly_rate=monthly_rate,
                source=str(result.get("url") or ""),
                contract_terms=extract_contract_terms(content),
            ))

        rates.sort(key=lambda r: r.monthly_rate)
        return rates

    @staticmethod
    def _identify(text: str, candidates: List[Provider]) -> Optional[Provider]:
        for provider in candidates:
            for alias in _aliases(provider):
                if re.search(rf"(?<![a-z0-9]){re.escape(alias)}(?![a-z0-9])", text):
                    return provider
        return None

    def research(self, bill: Bill) -> List[CompetitorRate]:
        query = self.build_query(bill)
        if query is None:
            logger.debug(f"No research query for bill {bill.id} ({bill.category.value})")
            return []
        try:
            results = self.search(query)
        except ResearchError as exc:
            logger.warning(f"Competitor research failed for bill {bill.id}: {exc}")
            return []
        rates = self.parse_results(bill, results)
        logger.info(f"Competitor research for bill {bill.id}: {len(rates)} rates from {len(results)} results")
        return rates

    async def find_competitor_rates(self, bill: Bill) -> List[CompetitorRate]:
        return await asyncio.to_thread(self.research, bill)

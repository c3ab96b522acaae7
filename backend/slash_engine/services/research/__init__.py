"""Slash Negotiation Engine - Competitor Research"""
from .base import CompetitorResearch, ResearchError
from .tavily import TavilyResearchClient, parse_monthly_rate, extract_contract_terms

__all__ = [
    "CompetitorResearch", "ResearchError",
    "TavilyResearchClient", "parse_monthly_rate", "extract_contract_terms",
]

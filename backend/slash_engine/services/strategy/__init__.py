"""Slash Negotiation Engine - Strategy Engine

This layer takes a Bill plus leverage evidence and creates a NegotiationPlan.
It decides which tactics to use, in which order, and the savings target.
"""
from .selector import (
    StrategyEngine, build_plan, merge_competitor_rates, select_tactics,
    validate_bill, analyze_competition, CompetitiveAnalysis,
)
from .scripts import render_script, get_tactic_line

__all__ = [
    "StrategyEngine", "build_plan", "merge_competitor_rates", "select_tactics",
    "validate_bill", "analyze_competition", "CompetitiveAnalysis",
    "render_script", "get_tactic_line",
]

"""
FactPack package.

Deterministic calculation and assembly of the per-turn ground-truth snapshot.
"""

from finguard.facts.builder import DATA_VERSION, FactPackBuilder, format_period
from finguard.facts.calculator import FactPackCalculator
from finguard.services.interface import FactPackError, FactPackProvider

__all__ = [
    "DATA_VERSION",
    "FactPackBuilder",
    "FactPackCalculator",
    "FactPackError",
    "FactPackProvider",
    "format_period",
]

"""Quantitative metrics engine."""

from .engine import compute, detect_bursts
from .schemas import QuantitativeAnalysis

__all__ = ["QuantitativeAnalysis", "compute", "detect_bursts"]

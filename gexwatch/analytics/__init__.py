"""
Analytics modules for gexwatch

Components:
- gex_calculator: GEX by strike, totals and gamma flip level
- GexScanner: GEX changes and anomaly z-scores from history
"""

from gexwatch.analytics.gex_calculator import (
    calculate_gex_per_strike,
    calculate_gamma_flip_level,
    total_gex,
)
from gexwatch.analytics.scanner import GexScanner

__all__ = [
    "calculate_gex_per_strike",
    "calculate_gamma_flip_level",
    "total_gex",
    "GexScanner",
]

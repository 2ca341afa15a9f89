"""
Gamma Paper Engine
Multi-ticker options paper trading: position lifecycle, execution realism
and risk/exit management
"""

__version__ = "1.0.0"
__author__ = "Gamma Paper Development Team"

from .paper_trading import PaperTradingEngine, RealTimeEngineMonitor
from .config.settings import Settings

__all__ = ["PaperTradingEngine", "RealTimeEngineMonitor", "Settings"]

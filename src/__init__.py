"""
Adaptive crypto trading decision engine.

- adaptive_trader: classification, signals, risk, scaling, learning, orchestration
- data: indicator math, market data and news providers
"""

__version__ = "1.0.0"
__author__ = "Adaptive Trader"

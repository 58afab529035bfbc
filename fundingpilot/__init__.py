"""
Funding-rate arbitrage autopilot.

Opens matched long/short perpetual positions across two exchanges and
collects the funding spread while staying price-neutral.
"""

__version__ = "1.0.0"

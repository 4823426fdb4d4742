"""
Agent Trader.

Multi-role LLM analysis pipeline, deterministic risk gate and per-strategy
trading loops.
"""

__version__ = "0.1.0"
__app_name__ = "Agent Trader"


__all__ = ["__version__", "__app_name__"]

"""Memories, knowledge facts, personality and the retrieval engine behind them."""

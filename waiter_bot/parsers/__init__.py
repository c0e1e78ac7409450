"""
Deterministic text parsing (no LLM): quantities, item phrases, confirmations.
"""

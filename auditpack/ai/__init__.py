"""Compliance scoring: LLM gateway and scorer contract."""

"""Core runtime: store, bus, orchestrator, LLM client and helpers."""

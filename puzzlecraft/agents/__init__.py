"""
LLM agents.

Each agent module pairs a prompt builder with a pydantic output schema and a
deterministic fallback for answers that do not parse. None of them touch the
context store; the orchestrator and the puzzle-session coordinator do.
"""

"""Puzzlecraft: fragments, puzzles and the agents that connect them."""

__version__ = "0.1.0"

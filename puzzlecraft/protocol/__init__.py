"""Event protocol for the puzzlecraft bus."""

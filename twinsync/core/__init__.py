"""Core domain logic: twins, states, collaborators and settings."""

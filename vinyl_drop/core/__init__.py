"""Core domain models and enums."""

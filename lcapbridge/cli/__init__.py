"""CLI module for lcapbridge."""

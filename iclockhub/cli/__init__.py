"""CLI module for iclockhub."""

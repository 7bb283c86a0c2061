"""Lucidity: bounded, persistent memory for frequently restarting agents."""

__version__ = "0.3.0"

"""Jackpot Crank - round lifecycle scheduler for the jackpot program."""

__version__ = "1.0.0"

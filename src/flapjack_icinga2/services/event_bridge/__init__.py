"""Icinga 2 -> Flapjack event bridge service."""

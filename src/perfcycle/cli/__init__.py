"""Typer sub-commands mounted by ``perfcycle.main``."""

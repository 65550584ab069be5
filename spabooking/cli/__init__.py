"""
CLI layer - Typer front end.
"""

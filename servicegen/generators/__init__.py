"""
Code generators

Turns parsed entry-point models into Python source.
"""

from servicegen.generators.loader import LoaderGenerator

__all__ = ["LoaderGenerator"]

"""
Model Catalog - official SunSpec model definitions
"""

from .sync import ModelCatalogSync

__all__ = ["ModelCatalogSync"]

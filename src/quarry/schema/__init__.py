"""
DDL generation for bootstrapping databases.
"""

from .builder import SchemaBuilder, dependency_order

__all__ = ["SchemaBuilder", "dependency_order"]

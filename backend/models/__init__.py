"""
Models package - catalog entity records
"""
from models.catalog import Diagram, Group, Part, Subgroup

__all__ = [
    'Group',
    'Subgroup',
    'Diagram',
    'Part',
]

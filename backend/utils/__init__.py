"""
Utility modules for the backend.
"""
from .normalize import ValidationError, to_float, to_int, to_str
from .identifiers import image_base_name, safe_file_id, strip_numeric_suffix
from .names import clean_subgroup_name

__all__ = [
    'ValidationError',
    'to_float',
    'to_int',
    'to_str',
    'image_base_name',
    'safe_file_id',
    'strip_numeric_suffix',
    'clean_subgroup_name',
]

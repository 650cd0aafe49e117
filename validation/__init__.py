"""
Validation package for the duplicate-title conflict workflow.

A run moves through CLEAN -> VALIDATING -> CONFLICTS_FOUND -> (fix applied)
-> RE-VALIDATING -> CLEAN. The conflict queue and the name fixes are
persisted between runs so an operator can inspect, fix and resume.
"""

from .name_fixer import NameFixer, generate_fixed_page_name
from .page_validator import PageValidator
from .state_store import PageNameFixes, ValidationState

__all__ = [
    'NameFixer',
    'PageNameFixes',
    'PageValidator',
    'ValidationState',
    'generate_fixed_page_name'
]

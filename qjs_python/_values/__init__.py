"""
Value handles and argument lists.
"""

from .value import WeakValue, Value
from .arglist import ArgList

__all__ = ["WeakValue", "Value", "ArgList"]

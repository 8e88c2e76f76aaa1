from .BaseProvider import BaseProvider, estimate_total
from .CursorCache import CursorCache
from .HttpProvider import HttpProvider

__all__ = ['BaseProvider', 'CursorCache', 'HttpProvider', 'estimate_total']

"""querybridge validation layer: structural checks between parsing and building."""
from querybridge.validate.validator import QueryValidator

__all__ = ["QueryValidator"]

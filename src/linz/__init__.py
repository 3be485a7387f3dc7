"""LinZ memory consolidation for FamConomy."""

__version__ = "0.1.0"

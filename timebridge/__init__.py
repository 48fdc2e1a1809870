"""TimeBridge: keeps structural objects and time entries in sync across services"""

__version__ = "1.0.0"

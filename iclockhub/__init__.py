"""
iclockhub - push/pull gateway for iClock/ADMS attendance terminals
"""

__version__ = "0.1.0"
__logo__ = "⏱"

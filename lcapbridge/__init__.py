"""
lcapbridge - call functions of a privileged platform page from another context.
"""

__version__ = "0.1.0"
__logo__ = "🔌"

"""
Analytics Assistant - conversational agents for a multi-tenant web analytics dashboard.
"""

__version__ = "0.1.0"

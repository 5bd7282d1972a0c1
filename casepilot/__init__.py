"""
casepilot - turns test-case descriptions into executed, checkpointed and
generated browser tests
"""

__version__ = "0.1.0"

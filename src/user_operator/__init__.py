"""Directory user operator.

Reconciles declared user-pool users against a remote directory service.
"""

__version__ = "0.1.0"

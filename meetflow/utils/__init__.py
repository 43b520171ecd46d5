"""
Utility modules
Security and helpers

Import directly to avoid circular imports:
    from meetflow.utils.security import SecurityManager
    from meetflow.utils.helpers import retry_async, utc_now
"""

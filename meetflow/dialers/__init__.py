"""
Dialer integration module
Handles provider webhooks, signature checks and recording downloads

Import directly to avoid circular imports:
    from meetflow.dialers.adapters import ProviderAdapter, CanonicalCallEvent
    from meetflow.dialers.client import RecordingDownloader
    from meetflow.dialers.webhooks import WebhookHandler
"""

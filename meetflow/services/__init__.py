"""
Pipeline services
Recording acquisition, lead correlation and score persistence

Import directly to avoid circular imports:
    from meetflow.services.acquisition import RecordingAcquisitionService
    from meetflow.services.lead_correlator import LeadCorrelator
    from meetflow.services.scoring import ScoringService
"""

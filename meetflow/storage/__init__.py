"""
Object storage for call recordings

    from meetflow.storage.recordings import RecordingStorage, build_storage
"""

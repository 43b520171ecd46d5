"""
Periodic jobs

Import directly to avoid circular imports:
    from meetflow.tasks.scheduler import TaskScheduler
"""

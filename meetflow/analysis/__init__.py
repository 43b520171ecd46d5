"""
Transcript analysis module
Model-backed qualification scoring

Import directly to avoid circular imports:
    from meetflow.analysis.qualification_scorer import QualificationScorer, parse_criteria
"""

"""
Meeting qualification module
"""

from .state_machine import QualificationStateMachine, validate_checklist

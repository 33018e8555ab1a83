"""
Job model, lifecycle state machine, job task and registry.
"""

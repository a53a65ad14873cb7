"""Core analytics for chronic-wound CTP coverage eligibility and progression monitoring.

This package contains the measurement pipeline, coverage phase-compliance rules and
clinical alerting logic, isolated from storage, transport and presentation concerns
for easy testing and reasoning.
"""

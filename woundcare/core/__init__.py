"""
Core evaluation engines: measurement, compliance, advisory, policy,
telemetry and eligibility orchestration.
"""

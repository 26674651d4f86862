"""
Wound-Care Coverage Engine

Coverage determination and policy selection for advanced wound therapy
(CTP) under Medicare LCD L39806.

Usage:
    from woundcare.core.eligibility import perform_pre_eligibility_checks
    result = perform_pre_eligibility_checks(episode, encounters)
"""

__version__ = "0.4.0"

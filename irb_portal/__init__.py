"""
IRB Portal
==========
Study management service for Institutional Review Boards: studies, review
workflow, participants, documents and a tamper-evident audit trail.
"""

__version__ = "1.0.0"

"""
Orchestration core of a multi-tenant customer-support chat platform:
conversation lifecycle, context caching, tool-call extraction and
validation, execution locks and per-message reasoning dispatch.
"""

__version__ = "0.1.0"

"""
ITSM Engine

Rules core for an IT service desk:
- Auto-assignment rules (first match wins)
- Round-robin distribution to the least-loaded agent
- SLA deadline clock
- Escalation rule evaluation
"""

__version__ = "0.1.0"

"""
Helpdesk Triage
===============

Ticket triage and assignment pipeline: priority blending, skill-based
assignment and assignee notification, run as journaled workflows.
"""

__version__ = "1.0.0"

"""
Ticket Triage Module
====================

Bounded context for triaging and assigning new tickets.

Layers:
- domain: entities, rule engine, prompt contract
- application: services, DTOs, workflow definitions
- infrastructure: ORM models, repositories, rules file manager
- interfaces: FastAPI event routes
"""

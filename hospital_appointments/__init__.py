"""
Hospital Appointments Service

A FastAPI-based service for scheduling hospital appointments, with doctor
availability checks, a soft-delete lifecycle and role-based access control.
"""

__version__ = "1.0.0"

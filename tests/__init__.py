"""
Test suite for the Hospital Appointments Service.

Contains unit and integration tests for scheduling, availability and access rules.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"

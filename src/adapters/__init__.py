"""Adapters layer for Checkup-Ledger.

This module contains the adapters that interface with external systems.
Adapters implement Port interfaces defined in the domain layer: repositories
for persistence and the survey, notification and approval capabilities.
"""

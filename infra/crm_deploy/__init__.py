"""Deployment CLI for the Twenty CRM infrastructure."""

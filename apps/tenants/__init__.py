"""Tenant provisioning, isolation and settings."""

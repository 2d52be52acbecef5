"""Vendor integrations used by the dashboard: billing, email, analytics, calendars."""

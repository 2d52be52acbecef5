"""
VoiceBridge API — the serverless half of the practice-outreach dashboard.

Proxies chat completions to hosted LLM providers and fronts the billing,
email, analytics and calendar integrations the dashboard talks to.
"""

__version__ = "1.0.0"

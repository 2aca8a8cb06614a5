"""External service integrations (Vapi, Google, OpenAI)."""

from crm_dialer.integrations.vapi import VapiCall, VapiClient

__all__ = ["VapiCall", "VapiClient"]

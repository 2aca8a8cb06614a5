"""Business services: compliance, imports, dialing, webhooks and reporting."""

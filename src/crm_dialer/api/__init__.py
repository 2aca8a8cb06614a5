"""HTTP API routers for the CRM dialer."""

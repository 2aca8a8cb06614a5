"""CRM dialer backend.

Contact management, Vapi outbound calling and appointment booking.
"""

__version__ = "0.1.0"

"""Repository layer for data access."""

from crm_dialer.db.repositories.base import BaseRepository
from crm_dialer.db.repositories.calls import AppointmentRepository, CallLogRepository
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.db.repositories.dnc import DoNotCallRepository
from crm_dialer.db.repositories.profiles import CampaignConfigRepository, ProfileRepository

__all__ = [
    "BaseRepository",
    "ContactRepository",
    "DoNotCallRepository",
    "CallLogRepository",
    "AppointmentRepository",
    "ProfileRepository",
    "CampaignConfigRepository",
]

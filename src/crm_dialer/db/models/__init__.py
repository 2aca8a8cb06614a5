"""Database Models.

CRM Models:
- ContactModel: Leads with pipeline status
- DoNotCallModel: Suppressed phone numbers

Call Models:
- CallLogModel: Completed call records
- AppointmentModel: Booked appointments

Account Models:
- ProfileModel: Dashboard users with Google tokens
- CampaignConfigModel: Per-campaign calling configuration
"""

from crm_dialer.db.models.auth import CampaignConfigModel, ProfileModel
from crm_dialer.db.models.core import AppointmentModel, CallLogModel
from crm_dialer.db.models.crm import ContactModel, DoNotCallModel

__all__ = [
    "ContactModel",
    "DoNotCallModel",
    "CallLogModel",
    "AppointmentModel",
    "ProfileModel",
    "CampaignConfigModel",
]

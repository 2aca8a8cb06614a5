"""Campaign personas and operating configuration.

Each campaign selects the voice agent's script (persona) and carries an
operator-editable configuration: calling hours, tone and voicemail drop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.auth import CampaignConfigModel
from crm_dialer.db.repositories.profiles import CampaignConfigRepository
from crm_dialer.domain import Campaign, Tone

log = get_logger(__name__)


ROOFING_AGENT_PROMPT = """\
You are a professional, friendly roofing inspection coordinator calling homeowners.
You sound natural, calm, confident, and human, never robotic.
Your goal is to determine interest and schedule a free roof inspection.

Rules:
1. Always ask permission to speak before continuing.
2. Never pressure or argue.
3. If the homeowner objects, acknowledge and pivot.
4. If they say no twice, mark as Not Interested and politely end the call.
5. If they ask who you are, say you're calling on behalf of "{company}", a local roofing company.
6. Never mention "AI", "bot", or "automation".
7. If asked to be removed, confirm and mark Do Not Call immediately.
8. Keep responses under 2 sentences unless clarifying.
9. Ask only one question at a time.
10. Do NOT confirm the specific property address until AFTER the homeowner has agreed to an appointment time.

You are speaking with {first_name}. The property on file is {address}.
When a time is agreed, call the book_appointment tool. If the homeowner corrects
the address, call the update_address tool.
"""

B2B_AGENT_PROMPT = """\
You are a concise, professional business development representative for {company}.
Your goal is to book a short discovery call with the decision maker.

Rules:
1. Confirm you are speaking with the right person before pitching.
2. Lead with one sentence of value, then ask a question.
3. Respect gatekeepers and ask for the best time to reach the decision maker.
4. If asked to be removed, confirm and mark Do Not Call immediately.
5. Keep responses under 2 sentences unless clarifying.

You are speaking with {first_name}. The business address on file is {address}.
When a time is agreed, call the book_appointment tool.
"""

STAFFING_AGENT_PROMPT = """\
You are a friendly recruiter calling on behalf of {company}.
Your goal is to gauge the candidate's availability and schedule a screening call.

Rules:
1. Ask whether now is a good time before continuing.
2. Ask about current availability, preferred shifts and commute.
3. Never promise pay rates or placements.
4. If asked to be removed, confirm and mark Do Not Call immediately.
5. Keep responses under 2 sentences unless clarifying.

You are speaking with {first_name}. The address on file is {address}.
When a time is agreed, call the book_appointment tool.
"""


@dataclass(frozen=True)
class CampaignPersona:
    """Voice agent script for a campaign."""

    campaign: Campaign
    company: str
    agent_role: str
    goal: str
    system_prompt: str
    first_message: str = "Hello, is this {name}?"
    voice_provider: str = "11labs"
    voice_id: str = "burt"
    model_provider: str = "openai"
    model: str = "gpt-4"

    def render_prompt(self, first_name: str, address: str) -> str:
        return self.system_prompt.format(
            company=self.company,
            first_name=first_name,
            address=address,
        )


PERSONAS: dict[Campaign, CampaignPersona] = {
    Campaign.RESIDENTIAL: CampaignPersona(
        campaign=Campaign.RESIDENTIAL,
        company="Prime Shield",
        agent_role="Roofing inspection coordinator",
        goal="Book a free roof inspection",
        system_prompt=ROOFING_AGENT_PROMPT,
    ),
    Campaign.B2B: CampaignPersona(
        campaign=Campaign.B2B,
        company="Prime Shield Commercial",
        agent_role="Business development representative",
        goal="Book a discovery call",
        system_prompt=B2B_AGENT_PROMPT,
    ),
    Campaign.STAFFING: CampaignPersona(
        campaign=Campaign.STAFFING,
        company="Prime Shield Staffing",
        agent_role="Recruiter",
        goal="Schedule a candidate screening call",
        system_prompt=STAFFING_AGENT_PROMPT,
    ),
}


def get_persona(campaign: Campaign | str | None) -> CampaignPersona:
    """Get the persona for a campaign (unknown names fall back to residential)."""
    if not isinstance(campaign, Campaign):
        campaign = Campaign.parse(campaign)
    return PERSONAS[campaign]


def build_assistant_overrides(
    campaign: Campaign | str | None,
    first_name: str,
    address: str,
) -> dict[str, Any]:
    """Build the transient Vapi assistant for a call.

    Args:
        campaign: Campaign whose persona to use
        first_name: Contact first name, used in the greeting
        address: Comma-joined address parts for the agent's context

    Returns:
        Vapi ``assistant`` object
    """
    persona = get_persona(campaign)
    name = first_name or "there"

    return {
        "firstMessage": persona.first_message.format(name=name),
        "model": {
            "provider": persona.model_provider,
            "model": persona.model,
            "messages": [
                {
                    "role": "system",
                    "content": persona.render_prompt(name, address),
                }
            ],
        },
        "voice": {
            "provider": persona.voice_provider,
            "voiceId": persona.voice_id,
        },
        "metadata": {"campaign": persona.campaign.value},
    }


# =============================================================================
# Campaign Configuration
# =============================================================================


DEFAULT_CONFIGS: dict[Campaign, dict[str, Any]] = {
    Campaign.RESIDENTIAL: {
        "name": "Residential Roofing",
        "tone": Tone.FRIENDLY.value,
        "voicemail_message": (
            "Hi, this is Prime Shield calling about a free roof inspection in your area. "
            "Please call us back at your convenience."
        ),
    },
    Campaign.B2B: {
        "name": "Commercial Outreach",
        "tone": Tone.DIRECT.value,
        "voicemail_message": (
            "Hi, this is Prime Shield Commercial following up about your facilities. "
            "We'll try you again soon."
        ),
    },
    Campaign.STAFFING: {
        "name": "Staffing Recruitment",
        "tone": Tone.CONSERVATIVE.value,
        "voicemail_message": (
            "Hi, this is Prime Shield Staffing with a job opportunity that may fit you. "
            "Please give us a call back."
        ),
    },
}


def default_config(campaign: Campaign) -> CampaignConfigModel:
    """Build an unsaved default configuration row."""
    defaults = DEFAULT_CONFIGS[campaign]
    return CampaignConfigModel(
        campaign=campaign.value,
        name=defaults["name"],
        is_active=True,
        calling_hours_start="09:00",
        calling_hours_end="18:00",
        tone=defaults["tone"],
        voicemail_message=defaults["voicemail_message"].upper(),
    )


async def get_campaign_config(
    session: AsyncSession,
    campaign: Campaign | str | None,
) -> CampaignConfigModel:
    """Load a campaign's configuration, seeding the defaults on first read."""
    if not isinstance(campaign, Campaign):
        campaign = Campaign.parse(campaign)

    repo = CampaignConfigRepository(session)
    config = await repo.get_for_campaign(campaign.value)
    if config is None:
        config = await repo.create(default_config(campaign))
        log.info("Seeded campaign config", campaign=campaign.value)
    return config


async def update_campaign_config(
    session: AsyncSession,
    campaign: Campaign | str | None,
    changes: dict[str, Any],
) -> CampaignConfigModel:
    """Apply a partial update to a campaign's configuration.

    ``voicemail_message`` is stored upper-cased.
    """
    config = await get_campaign_config(session, campaign)

    if changes.get("voicemail_message") is not None:
        changes = {**changes, "voicemail_message": changes["voicemail_message"].upper()}

    for field in (
        "name",
        "is_active",
        "calling_hours_start",
        "calling_hours_end",
        "tone",
        "voicemail_message",
    ):
        if changes.get(field) is not None:
            setattr(config, field, changes[field])

    await session.flush()
    await session.refresh(config)
    log.info("Updated campaign config", campaign=config.campaign, fields=sorted(changes))
    return config

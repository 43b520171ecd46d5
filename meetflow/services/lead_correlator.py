"""
Lead correlation for imported calls
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import LeadCRUD
from ..database.models import LeadStatus
from ..utils.helpers import split_contact_name

logger = structlog.get_logger("meetflow.services.lead_correlator")


@dataclass
class CallContact:
    """Contact fields carried by a call event"""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    dialed_number: Optional[str] = None


class LeadCorrelator:
    """Match a call contact to a campaign lead, creating one when absent"""

    @staticmethod
    async def find_or_create(
        session: AsyncSession,
        campaign_id: UUID,
        company_id: UUID,
        contact: CallContact
    ) -> UUID:
        """Exact phone match first, then exact email, within the campaign only"""
        if contact.phone:
            lead = await LeadCRUD.find_by_phone(session, campaign_id, contact.phone)
            if lead:
                logger.debug("Lead matched by phone", lead_id=str(lead.id))
                return lead.id

        if contact.email:
            lead = await LeadCRUD.find_by_email(session, campaign_id, contact.email)
            if lead:
                logger.debug("Lead matched by email", lead_id=str(lead.id))
                return lead.id

        first_name, last_name = split_contact_name(contact.name)
        lead = await LeadCRUD.create_lead(
            session,
            campaign_id=campaign_id,
            company_id=company_id,
            first_name=first_name,
            last_name=last_name,
            email=contact.email,
            phone=contact.phone or contact.dialed_number,
            status=LeadStatus.CONTACTED.value,
        )
        logger.info("Lead created from call", lead_id=str(lead.id), campaign_id=str(campaign_id))
        return lead.id

"""Scrape-and-update action for leads.

Fetch the lead, run Firecrawl's LLM extraction on its URL, and write the
company profile back. Failures end up on the lead as ``error_message``;
they are never raised to the caller.
"""

import json
from typing import Any, Optional

from ..config import config
from ..errors import NotFoundError
from ..integrations.company_info import (
    COMPANY_INFO_SCHEMA,
    EXTRACT_PROMPT,
    extract_domain_name,
)
from ..integrations.firecrawl import FirecrawlClient, FirecrawlRateLimitError
from ..logging_utils import get_logger
from ..models import LeadStatus, get_db_session
from ..services import leads
from ..utils import retry_with_backoff, utc_iso_now

logger = get_logger(__name__)


def build_lead_profile(
    company_info: dict[str, Any],
    url: str,
    current_title: Optional[str],
    current_description: Optional[str],
) -> tuple[str, str]:
    """Pick the lead's title and description from an extracted profile.

    Title: company name, then the existing title, then the URL's domain.
    Description: description, short description, existing description, then
    the industry (or "Company").
    """
    title = (
        company_info.get("company_name")
        or current_title
        or extract_domain_name(url)
    )
    description = (
        company_info.get("description")
        or company_info.get("description_short")
        or current_description
        or company_info.get("industry")
        or "Company"
    )
    return title, description


async def scrape_and_update_lead(
    lead_id: str,
    firecrawl_client: Optional[FirecrawlClient] = None,
    will_retry: bool = False,
) -> dict[str, Any]:
    """Extract the company profile behind a lead's URL and store it.

    Args:
        lead_id: Lead to process.
        firecrawl_client: Client to use; built from config when omitted.
        will_retry: Whether the job queue will run this lead again after a
            failure. The lead then stays ``processing`` instead of ``failed``.

    Returns:
        ``{"success": True, "data": company_info}`` or
        ``{"success": False, "error": message}``. A lead that is already
        completed or failed is left alone and reported with
        ``"permanent": True``.

    Raises:
        NotFoundError: If the lead does not exist.
    """
    logger.info("Starting scrape for lead %s", lead_id)

    async with get_db_session() as session:
        lead = await leads.get_internal(session, lead_id)
        if lead is None:
            logger.error("Lead not found: %s", lead_id)
            raise NotFoundError("Lead not found")

        if lead.status.is_terminal:
            logger.warning("Lead %s is already %s, not scraping", lead_id, lead.status.value)
            return {
                "success": False,
                "error": f"Lead is already {lead.status.value}",
                "permanent": True,
            }

        url = lead.url
        current_title = lead.title
        current_description = lead.description
        await leads.update_internal(session, lead_id, status=LeadStatus.PROCESSING)

    try:
        client = firecrawl_client or FirecrawlClient(
            api_key=config.FIRECRAWL_API_KEY,
            timeout_ms=config.FIRECRAWL_TIMEOUT_SECONDS * 1000,
        )

        logger.info("Calling Firecrawl extract for %s", url)
        result = await retry_with_backoff(
            client.extract,
            [url],
            COMPANY_INFO_SCHEMA,
            EXTRACT_PROMPT,
            max_retries=config.RETRY_MAX_ATTEMPTS - 1,
            base_delay=config.RETRY_DELAY_SECONDS,
            retry_on=(FirecrawlRateLimitError,),
        )
        company_info = result.data or {}

        knowledge_base = json.dumps({
            "companyInfo": company_info,
            "extractedAt": utc_iso_now(),
            "metadata": {
                "success": result.success,
                "warning": result.warning,
            },
        })
        title, description = build_lead_profile(
            company_info, url, current_title, current_description
        )

        async with get_db_session() as session:
            await leads.update_internal(
                session,
                lead_id,
                status=LeadStatus.COMPLETED,
                title=title,
                description=description,
                knowledge_base=knowledge_base,
            )

        logger.info("Completed scrape for lead %s (%s)", lead_id, title)
        return {"success": True, "data": company_info}

    except Exception as e:
        error_message = str(e) or "Unknown error occurred"
        logger.error("Scrape failed for lead %s: %s", lead_id, error_message, exc_info=True)

        async with get_db_session() as session:
            if will_retry:
                await leads.update_internal(session, lead_id, error_message=error_message)
            else:
                await leads.update_internal(
                    session,
                    lead_id,
                    status=LeadStatus.FAILED,
                    error_message=error_message,
                )

        return {"success": False, "error": error_message}

"""Company profile extraction schema shared by the scraper service and actions.

The schema is handed to Firecrawl's LLM extraction; ``company_name`` is the
only field the model must always fill.
"""

from urllib.parse import urlparse

EXTRACT_PROMPT = (
    "Extract comprehensive company information from this website. Include all "
    "available details about the company, products, services, pricing, "
    "features, benefits, and more."
)


def _string(description: str) -> dict:
    return {"type": "string", "description": description}


def _string_list(description: str) -> dict:
    return {"type": "array", "items": {"type": "string"}, "description": description}


COMPANY_INFO_SCHEMA = {
    "type": "object",
    "properties": {
        "company_name": _string("The official name of the company"),
        "industry": _string("Which industry or sector this company is part of"),
        "description": _string(
            "A short, jargon-free description of what this company does"
        ),
        "website": _string("Company website URL"),
        "features": _string_list("Friendly, clear list of main features"),
        "benefits": _string_list("Key benefits, practical for users or customers"),
        "pricing": _string_list("How the company or product is priced"),
        "support": _string_list(
            "Support channels, response times, or helpful support info"
        ),
        "integrations": _string_list(
            "What services or tools does this integrate with?"
        ),
        "security": _string_list(
            "Security practices or certifications, in non-technical terms"
        ),
        "contact_info": {
            "type": "object",
            "description": "Contact info: email, forms, or chat links",
        },
        "services_links": _string_list("Links to service/product pages"),
        "case_studies": _string_list(
            "Links or summaries of case studies or customer stories"
        ),
        "use_cases": _string_list("Use cases for the company or product"),
        "tagline_options": _string_list(
            "Brand tagline options, friendly and clear "
            "(e.g. 'Ship updates your clients actually read.')"
        ),
        "value_proposition": _string(
            "Short statement of the unique value (e.g. 'Turns GitHub activity "
            "into client-friendly progress updates automatically.')"
        ),
        "rag_passages": _string_list("Key, clear product passages or selling points"),
        "sales_one_pager": _string("A one-paragraph, no-jargon sales summary"),
        "target_audience": _string_list(
            "Key target audiences (e.g. Agencies, SaaS teams, PMs, freelancers)"
        ),
        "description_short": _string("A very short, friendly product summary"),
        "demo_video_link": _string("A link to a demo video"),
    },
    "required": ["company_name"],
}


def extract_domain_name(url: str) -> str:
    """Derive a display name from a URL's host.

    ``https://www.acme-dental.com/about`` becomes ``acme-dental``. Falls back
    to ``"Company"`` when the URL has no host.
    """
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "Company"
    if not hostname:
        return "Company"
    if hostname.startswith("www."):
        hostname = hostname[len("www."):]
    return hostname.split(".")[0] or "Company"

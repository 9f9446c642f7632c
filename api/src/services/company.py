import httpx
import logging
from typing import Any

from clients.kommo import KommoClient, KommoApiError, Lead
from settings import DealFieldsSettings


logger = logging.getLogger('kommo-pay-company')


class CompanyNameNotFoundError(Exception):
    def __init__(self, lead_id: int, field_ids: tuple[int, ...]):
        super().__init__(
            f'no company name found for lead {lead_id}: '
            f'no linked company, no embedded company and custom fields {list(field_ids)} are empty'
        )
        self.lead_id = lead_id


def _clean_name(value: Any) -> str | None:
    if value is None:
        return None
    name = str(value).strip()
    return name or None


async def resolve_company_name(lead: Lead, kommo: KommoClient, fields: DealFieldsSettings) -> str:
    # Без названия контрагента описание платежа бессмысленно, поэтому без него падаем
    try:
        for company in await kommo.get_lead_companies(lead.id):
            name = _clean_name(company.get('name'))
            if name:
                return name
    except (KommoApiError, httpx.HTTPError) as e:
        logger.warning(f'failed to fetch companies linked to lead {lead.id}: {e}')

    for company in lead.embedded.companies:
        name = _clean_name(company.name)
        if name:
            return name

    for field_id in fields.company_name_field_ids:
        name = _clean_name(lead.custom_field_value(field_id))
        if name:
            return name

    raise CompanyNameNotFoundError(lead.id, fields.company_name_field_ids)

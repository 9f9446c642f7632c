import httpx
from typing import Annotated, Any
from fastapi import APIRouter, Depends, Path

from api.v1.errors import error_response
from clients.kommo import KommoClient, KommoApiError, get_kommo_client
from services.amount import calculate_amount
from settings import deal_fields_settings


router = APIRouter()


@router.get(
    path='/test-deal/{lead_id}',
    response_model=None,
    description='Диагностика: сделка, ее контакты и компании из Kommo и рассчитанная сумма к оплате'
)
async def test_deal(
    lead_id: Annotated[int, Path()],
    kommo: Annotated[KommoClient | None, Depends(get_kommo_client)]
):
    if kommo is None:
        return error_response(503, 'CRM service unavailable', 'Kommo API credentials not configured')

    try:
        lead = await kommo.get_lead(lead_id)
        contacts = [await kommo.get_contact(contact.id) for contact in lead.embedded.contacts]
        companies = await kommo.get_lead_companies(lead_id)
    except (KommoApiError, httpx.HTTPError) as e:
        return error_response(502, 'Failed to fetch deal data', str(e))

    data: dict[str, Any] = {
        'lead': lead.model_dump(mode='json', by_alias=True),
        'contacts': contacts,
        'companies': companies,
        'amount': calculate_amount(lead, deal_fields_settings)
    }
    return data

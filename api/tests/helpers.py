from typing import Any


KOMMO_URL = 'https://testcrm.kommo.com/api/v4'
FLITT_URL = 'https://pay.flitt.com/api'

FEE_FIELD = 985221
UNITS_FIELD = 888918
UNIT_PRICE_FIELD = 985181
PAYMENT_ID_FIELD = 980726
COMPANY_NAME_FIELD = 985223


def lead_url(lead_id: int) -> str:
    return f'{KOMMO_URL}/leads/{lead_id}?with=contacts'


def lead_json(
    lead_id: int = 777,
    price: Any = 100,
    fields: dict[int, Any] | None = None,
    companies: list[dict[str, Any]] | None = None
) -> dict[str, Any]:
    return {
        'id': lead_id,
        'name': f'Deal #{lead_id}',
        'price': price,
        'status_id': 58012340,
        'pipeline_id': 7012345,
        'custom_fields_values': [
            {'field_id': field_id, 'values': [{'value': value}]}
            for field_id, value in (fields or {}).items()
        ] or None,
        '_embedded': {
            'companies': companies or [],
            'contacts': []
        }
    }


def checkout_response(payment_id: int | str = 40001) -> dict[str, Any]:
    return {
        'response': {
            'response_status': 'success',
            'checkout_url': f'https://pay.flitt.com/merchants/5ad6b888f4becb0c33d543d54e57d86c/default/index.html?token={payment_id}',
            'payment_id': payment_id
        }
    }

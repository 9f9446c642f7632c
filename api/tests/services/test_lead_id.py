import pytest
from typing import Any

from services.lead_id import coerce_lead_id, extract_lead_id


@pytest.mark.parametrize('payload', [
    {'leads': {'add': [{'id': 777}]}},
    {'leads': {'status': [{'id': '777', 'status_id': '142'}]}},
    {'_embedded': {'leads': [{'id': 777}]}},
    {'lead_id': 777},
    {'id': '777'},
    {'lead': {'id': 777}},
    {'body': {'leads': {'add': [{'id': 777}]}}},
    {'data': {'lead_id': '777'}},
    {'result': {'lead': {'id': 777}}},
    {'leads': {'update': [{'id': 777}]}},
    {'leads': {'add': {'0': {'id': 777}}}},
])
def test_known_shapes(payload: dict[str, Any]):
    assert extract_lead_id(payload) == 777


def test_first_matching_rule_wins():
    payload = {'leads': {'add': [{'id': 1}], 'status': [{'id': 2}]}, 'lead_id': 3, 'id': 4}
    assert extract_lead_id(payload) == 1


def test_top_level_root_is_checked_first():
    assert extract_lead_id({'lead_id': 10, 'body': {'lead_id': 20}}) == 10


def test_non_numeric_values_are_skipped():
    assert extract_lead_id({'leads': {'add': [{'id': 'abc'}]}, 'lead_id': 5}) == 5
    assert extract_lead_id({'id': True}) is None
    assert extract_lead_id({'id': 1.5}) is None


def test_raw_body_fallback():
    assert extract_lead_id({}, 'leads%5Badd%5D%5B0%5D%5Bid%5D=321&x=1') == 321
    assert extract_lead_id({}, 'leads[add][0][id]=321') == 321
    assert extract_lead_id({}, 'foo=bar&id=321') == 321


def test_nothing_found():
    assert extract_lead_id({}) is None
    assert extract_lead_id({'account': {'subdomain': 'testcrm'}}, 'account=1') is None
    assert extract_lead_id({'leads': {'add': []}}) is None


def test_coerce_lead_id():
    assert coerce_lead_id(5) == 5
    assert coerce_lead_id(' 42 ') == 42
    assert coerce_lead_id('-1') is None
    assert coerce_lead_id(False) is None
    assert coerce_lead_id(None) is None


def test_out_of_range_ids_are_skipped():
    assert extract_lead_id({'id': 123456789012345678901234567890}) is None
    assert extract_lead_id({'id': 0, 'lead': {'id': 7}}) == 7
    assert extract_lead_id({}, 'id=123456789012345678901234567890') is None

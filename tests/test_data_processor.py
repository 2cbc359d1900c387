import pytest

from models.errors import ValidationError
from models.pagination import PagedResult, total_pages_for
from utils.data_processor import DataProcessor

SERVICE_ID = "3f2b8c1e-6a4d-4e8f-9b1a-2c3d4e5f6a7b"


def test_clean_text_collapses_whitespace():
    assert DataProcessor.clean_text("  Maria \n  Encanadora ") == "Maria Encanadora"
    assert DataProcessor.clean_text(None) == ""


def test_normalize_uuid():
    assert DataProcessor.normalize_uuid(SERVICE_ID.upper()) == SERVICE_ID
    with pytest.raises(ValidationError) as exc:
        DataProcessor.normalize_uuid("nope", "serviceIds")
    assert exc.value.fields() == ["serviceIds"]


@pytest.mark.parametrize("services", [
    [SERVICE_ID],
    [{"id": SERVICE_ID, "name": "Plumbing"}],
    [{"serviceId": SERVICE_ID}],
    f" {SERVICE_ID} ,",
])
def test_extract_service_ids_formats(services):
    assert DataProcessor.normalize_service_ids(services) == frozenset({SERVICE_ID})


def test_normalize_provider_fields_prefers_explicit_names():
    normalized = DataProcessor.normalize_provider_fields({
        "id": "entry-id",
        "providerId": "provider-id",
        "rating": 1.0,
        "averageRating": 4.5,
        "location": {"lat": -23.5, "lng": -46.6},
        "name": "  Maria  ",
    })
    assert normalized["provider_id"] == "provider-id"
    assert normalized["average_rating"] == 4.5
    assert normalized["latitude"] == -23.5
    assert normalized["longitude"] == -46.6
    assert normalized["name"] == "Maria"
    assert "location" not in normalized


@pytest.mark.parametrize("value,expected", [
    ("2025-11-02T18:51:50.1635356+00:00", 1762109510163),
    ("2025-11-02T18:51:50Z", 1762109510000),
    ("1762109510000", 1762109510000),
    (1762109510000, 1762109510000),
    ("not a date", 0),
    (None, 0),
])
def test_parse_timestamp_ms(value, expected):
    assert DataProcessor.parse_timestamp_ms(value) == expected


@pytest.mark.parametrize("total,size,pages", [(0, 20, 0), (1, 20, 1), (40, 20, 2), (41, 20, 3), (10, 0, 0)])
def test_total_pages(total, size, pages):
    assert total_pages_for(total, size) == pages


def test_paging_flags():
    assert PagedResult(total_count=0, page_number=1, page_size=20).has_previous_page is False
    middle = PagedResult(total_count=50, page_number=2, page_size=20)
    assert middle.has_next_page and middle.has_previous_page
    last = PagedResult(total_count=50, page_number=3, page_size=20)
    assert not last.has_next_page


def test_paged_result_dict_round_trip():
    page = PagedResult(items=[{"name": "Maria"}], total_count=1, page_number=1, page_size=20)
    assert PagedResult.from_dict(page.to_dict()) == page

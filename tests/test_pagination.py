import pytest

from scimmap.config import ServiceProviderConfig
from scimmap.pagination import Window, compute_window, list_response


@pytest.mark.parametrize(
    ("start_index", "count", "expected_start_index", "expected_items_per_page"),
    (
        (None, None, 1, 100),
        (1, 10, 1, 10),
        (0, 10, 1, 10),
        (-5, 10, 1, 10),
        (3, 0, 3, 0),
        (1, -1, 1, 0),
        (1, 500, 1, 100),
        (10, None, 10, 100),
    ),
)
def test_window_is_computed(start_index, count, expected_start_index, expected_items_per_page):
    window = compute_window(start_index=start_index, count=count, total_results=20)

    assert window == Window(
        start_index=expected_start_index,
        items_per_page=expected_items_per_page,
        total_results=20,
    )


def test_window_uses_configured_pagination():
    config = ServiceProviderConfig.create(pagination={"default_count": 5, "max_count": 10})

    assert compute_window(config=config).items_per_page == 5
    assert compute_window(count=50, config=config).items_per_page == 10
    assert compute_window(count=50, max_count=20, config=config).items_per_page == 20
    assert compute_window(default_count=7, config=config).items_per_page == 7


def test_window_offset_is_zero_based():
    window = compute_window(start_index=2, count=2, total_results=3)

    assert window.offset == 1
    assert window.limit == 2


def test_list_response_is_built():
    window = compute_window(start_index=2, count=2, total_results=3)

    assert list_response(iter([{"id": "2"}, {"id": "3"}]), window) == {
        "schemas": ["urn:ietf:params:scim:api:messages:2.0:ListResponse"],
        "totalResults": 3,
        "startIndex": 2,
        "itemsPerPage": 2,
        "Resources": [{"id": "2"}, {"id": "3"}],
    }

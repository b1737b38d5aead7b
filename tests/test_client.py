"""Unit tests for altmirror.ingestion.client — mocked HTTP session."""

import random
from unittest.mock import MagicMock

import pytest
import requests

from altmirror.errors import CatalogRequestError, RateLimitExceeded
from altmirror.ingestion.client import CatalogClient, hydra_members, hydra_next
from altmirror.ingestion.facets import FilterCombination
from altmirror.sync.models import Pricing


def response(status=200, payload=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = payload if payload is not None else {}
    return resp


def page(members, next_ref=None):
    data = {"hydra:member": members}
    if next_ref:
        data["hydra:view"] = {"hydra:next": next_ref}
    return data


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session, sleeps):
    return CatalogClient(
        base_url="https://api.example.test/",
        locale="en-us",
        token="tok",
        session=session,
        sleep=sleeps.append,
        rng=random.Random(0),
    )


# ============================================================================
# default session
# ============================================================================
class TestDefaultSession:
    def test_server_retries_ignore_retry_after(self):
        client = CatalogClient(base_url="https://api.example.test", server_retries=4)
        retry = client.session.get_adapter("https://api.example.test/cards").max_retries
        assert retry.total == 4
        assert retry.respect_retry_after_header is False
        assert 429 not in retry.status_forcelist
        assert 503 in retry.status_forcelist


# ============================================================================
# hydra helpers
# ============================================================================
class TestHydra:
    def test_members_filters_non_dicts(self):
        assert hydra_members({"hydra:member": [{"id": 1}, "x", None]}) == [{"id": 1}]

    def test_members_missing(self):
        assert hydra_members({}) == []

    def test_next(self):
        assert hydra_next(page([], "/cards?page=2")) == "/cards?page=2"
        assert hydra_next(page([])) is None
        assert hydra_next({"hydra:view": "bogus"}) is None


# ============================================================================
# get_json
# ============================================================================
class TestGetJson:
    def test_success_sends_bearer(self, client, session):
        session.get.return_value = response(payload={"ok": True})
        assert client.get_json("https://api.example.test/cards") == {"ok": True}
        headers = session.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer tok"

    def test_no_token_no_header(self, session, sleeps):
        anon = CatalogClient(session=session, sleep=sleeps.append)
        session.get.return_value = response(payload={})
        anon.get_json("https://api.example.test/cards")
        assert "Authorization" not in session.get.call_args.kwargs["headers"]

    def test_429_then_success(self, client, session, sleeps):
        session.get.side_effect = [response(429), response(429), response(payload={"ok": 1})]
        assert client.get_json("u") == {"ok": 1}
        assert len(sleeps) == 2
        assert 1.0 <= sleeps[0] < 2.0
        assert 2.0 <= sleeps[1] < 3.0

    def test_429_exhausted(self, client, session, sleeps):
        session.get.return_value = response(429)
        with pytest.raises(RateLimitExceeded) as exc_info:
            client.get_json("u")
        assert exc_info.value.status == 429
        assert session.get.call_count == client.max_retries + 1
        assert len(sleeps) == client.max_retries

    def test_rate_limit_is_request_error(self):
        assert issubclass(RateLimitExceeded, CatalogRequestError)

    def test_server_error_raises(self, client, session):
        session.get.return_value = response(500)
        with pytest.raises(CatalogRequestError) as exc_info:
            client.get_json("u")
        assert exc_info.value.status == 500
        assert not isinstance(exc_info.value, RateLimitExceeded)

    def test_network_error_wrapped(self, client, session):
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(CatalogRequestError):
            client.get_json("u")

    def test_invalid_json(self, client, session):
        session.get.return_value = response(json_error=True)
        with pytest.raises(CatalogRequestError):
            client.get_json("u")

    def test_non_object_payload(self, client, session):
        session.get.return_value = response(payload=[1, 2])
        with pytest.raises(CatalogRequestError):
            client.get_json("u")

    def test_backoff_grows(self, client):
        delays = [client.backoff_delay(n) for n in range(3)]
        assert 1.0 <= delays[0] < 2.0
        assert 2.0 <= delays[1] < 3.0
        assert 4.0 <= delays[2] < 5.0


# ============================================================================
# Pagination and endpoints
# ============================================================================
class TestPagination:
    def test_follows_next_until_absent(self, client, session, sleeps):
        session.get.side_effect = [
            response(payload=page([{"id": "A"}], "/cards?page=2")),
            response(payload=page([{"id": "B"}], "/cards?page=3")),
            response(payload=page([{"id": "C"}])),
        ]
        cards = client.fetch_list(FilterCombination(factions=("AX",)))
        assert [c["id"] for c in cards] == ["A", "B", "C"]
        urls = [call.args[0] for call in session.get.call_args_list]
        assert urls == [
            "https://api.example.test/cards",
            "https://api.example.test/cards?page=2",
            "https://api.example.test/cards?page=3",
        ]
        assert session.get.call_args_list[0].kwargs["params"] is not None
        assert session.get.call_args_list[1].kwargs["params"] is None
        # politeness delay between pages only
        assert len(sleeps) == 2

    def test_iter_pages_is_lazy(self, client, session):
        session.get.side_effect = [
            response(payload=page([{"id": "A"}], "/cards?page=2")),
            response(payload=page([{"id": "B"}])),
        ]
        pages = client.iter_pages("/cards")
        next(pages)
        assert session.get.call_count == 1

    def test_list_params(self, client, session):
        session.get.return_value = response(payload=page([]))
        client.fetch_list(FilterCombination(card_sets=("CORE",), main_costs=(3,)))
        params = session.get.call_args.kwargs["params"]
        assert ("cardSet[]", "CORE") in params
        assert ("mainCost[]", "3") in params
        assert ("locale", "en-us") in params

    def test_stats_keyed_by_path_id(self, client, session):
        session.get.return_value = response(payload=page([
            {"@id": "/cards/A", "lowerPrice": 5, "lastSale": 4, "inSale": 2, "numberCopyAvailable": 3},
            {"lowerPrice": 1},
        ]))
        stats = client.fetch_stats(FilterCombination())
        assert stats == {"/cards/A": Pricing(lower_price=5, last_sale=4, in_sale=2, available_count=3)}
        assert session.get.call_args.args[0] == "https://api.example.test/cards/stats"

    def test_detail_accepts_path_or_id(self, client, session):
        session.get.return_value = response(payload={"id": "A"})
        client.fetch_detail("/cards/A")
        client.fetch_detail("A")
        urls = [call.args[0] for call in session.get.call_args_list]
        assert urls == ["https://api.example.test/cards/A"] * 2
        assert session.get.call_args.kwargs["params"] == {"locale": "en-us"}

    def test_detail_empty_ref(self, client):
        with pytest.raises(CatalogRequestError):
            client.fetch_detail("")

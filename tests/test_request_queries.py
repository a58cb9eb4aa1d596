"""
Request query layer tests.

Tests cover:
  - Filter parsing / validation (RequestFilters.from_mapping)
  - Listing: filters, sort whitelist, pagination meta, status_counts
  - Per-user listing, assigned_to
  - Pending counts by initiator and by role
  - Statistics
"""

from datetime import datetime, timedelta, timezone

import pytest

from coopflow.core.exceptions import ValidationError
from coopflow.models import db
from coopflow.models.request import Request
from coopflow.services.request_queries import (
    RequestFilters,
    list_requests,
    list_requests_for_user,
    pending_request_count,
    request_statistics,
)
from coopflow.services.request_service import advance_status, cancel_request, create_request


@pytest.fixture()
def mixed_requests(staff, member_record):
    """
    Five requests across types and statuses:

        loan      LOAN_APPLICATION  IN_REVIEW   (member)
        update    ACCOUNT_UPDATE    PENDING     (member)
        closure   ACCOUNT_CLOSURE   PENDING     (member)
        adjust    SYSTEM_ADJUSTMENT COMPLETED   (admin)
        cancelled ACCOUNT_UPDATE    CANCELLED   (member)
    """
    loan = create_request("LOAN_APPLICATION", "LOAN", staff.member,
                          content={"amount": 5000, "tenure_months": 6})["id"]
    advance_status(loan, "IN_REVIEW", staff.admin)

    update = create_request("ACCOUNT_UPDATE", "ACCOUNT", staff.member)["id"]
    closure = create_request("ACCOUNT_CLOSURE", "ACCOUNT", staff.member,
                             subject_links={"biodata_id": member_record.id})["id"]

    adjust = create_request("SYSTEM_ADJUSTMENT", "SYSTEM", staff.admin)["id"]
    for status in ("REVIEWED", "APPROVED", "COMPLETED"):
        advance_status(adjust, status, staff.super_admin)

    cancelled = create_request("ACCOUNT_UPDATE", "ACCOUNT", staff.member)["id"]
    cancel_request(cancelled, staff.member)

    return {"loan": loan, "update": update, "closure": closure,
            "adjust": adjust, "cancelled": cancelled}


class TestRequestFilters:
    def test_defaults(self):
        f = RequestFilters.from_mapping({})
        assert f.page == 1
        assert f.limit == 10
        assert f.sort_by == "created_at"
        assert f.sort_order == "desc"
        assert f.type is None and f.status is None

    def test_invalid_values_are_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            RequestFilters.from_mapping({
                "type": "NOPE", "status": "LIMBO", "sort_by": "password",
                "sort_order": "sideways", "page": "0", "limit": "ten",
            })
        assert set(exc.value.details) == {"type", "status", "sort_by", "sort_order",
                                          "page", "limit"}

    def test_limit_is_capped(self, app):
        f = RequestFilters.from_mapping({"limit": "5000"})
        assert f.limit == app.config["REQUESTS_MAX_PAGE_SIZE"]

    def test_date_only_end_is_inclusive_of_that_day(self):
        f = RequestFilters.from_mapping({"start_date": "2026-01-01", "end_date": "2026-01-31"})
        assert f.start_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert f.end_date == datetime(2026, 2, 1, tzinfo=timezone.utc)

    def test_bad_date(self):
        with pytest.raises(ValidationError) as exc:
            RequestFilters.from_mapping({"start_date": "yesterday"})
        assert exc.value.details == {"start_date": "must be an ISO-8601 date"}

    def test_sort_order_is_case_insensitive(self):
        assert RequestFilters.from_mapping({"sort_order": "ASC"}).sort_order == "asc"


class TestListRequests:
    def test_lists_everything_with_meta(self, mixed_requests):
        result = list_requests({})
        assert result["meta"]["total"] == 5
        assert result["meta"]["page"] == 1
        assert result["meta"]["total_pages"] == 1
        assert len(result["data"]) == 5
        assert all("approval_steps" in r for r in result["data"])

    def test_filter_by_status_keeps_full_status_counts(self, mixed_requests):
        result = list_requests({"status": "PENDING"})
        assert {r["id"] for r in result["data"]} == {mixed_requests["update"],
                                                    mixed_requests["closure"]}
        assert result["meta"]["status_counts"] == {
            "PENDING": 2, "IN_REVIEW": 1, "COMPLETED": 1, "CANCELLED": 1,
        }

    def test_filter_by_type(self, mixed_requests):
        result = list_requests({"type": "ACCOUNT_UPDATE"})
        assert result["meta"]["total"] == 2
        assert result["meta"]["status_counts"] == {"PENDING": 1, "CANCELLED": 1}

    def test_filter_by_biodata(self, mixed_requests, member_record):
        result = list_requests({"biodata_id": member_record.id})
        assert [r["id"] for r in result["data"]] == [mixed_requests["closure"]]
        assert result["data"][0]["biodata"]["erp_id"] == member_record.erp_id

    def test_assigned_to_matches_any_acted_step(self, mixed_requests, staff):
        result = list_requests({"assigned_to": staff.admin})
        assert [r["id"] for r in result["data"]] == [mixed_requests["loan"]]

        result = list_requests({"assigned_to": staff.super_admin})
        assert [r["id"] for r in result["data"]] == [mixed_requests["adjust"]]

    def test_sort_by_type(self, mixed_requests):
        result = list_requests({"sort_by": "type", "sort_order": "asc"})
        types = [r["type"] for r in result["data"]]
        assert types == sorted(types)
        assert types[0] == "ACCOUNT_CLOSURE"
        assert types[-1] == "SYSTEM_ADJUSTMENT"

    def test_pagination(self, mixed_requests):
        first = list_requests({"sort_by": "type", "sort_order": "asc", "limit": 2, "page": 1})
        third = list_requests({"sort_by": "type", "sort_order": "asc", "limit": 2, "page": 3})
        assert first["meta"]["total"] == 5
        assert first["meta"]["total_pages"] == 3
        assert len(first["data"]) == 2
        assert len(third["data"]) == 1
        assert third["data"][0]["type"] == "SYSTEM_ADJUSTMENT"

    def test_page_past_the_end_is_empty(self, mixed_requests):
        result = list_requests({"page": 10})
        assert result["data"] == []
        assert result["meta"]["total"] == 5

    def test_date_range(self, mixed_requests):
        today = datetime.now(timezone.utc).date()
        yesterday = (today - timedelta(days=1)).isoformat()
        tomorrow = (today + timedelta(days=1)).isoformat()
        assert list_requests({"start_date": yesterday, "end_date": tomorrow})["meta"]["total"] == 5
        assert list_requests({"start_date": tomorrow})["meta"]["total"] == 0
        assert list_requests({"end_date": "2000-01-01"})["meta"]["total"] == 0

    def test_empty_store(self):
        result = list_requests({})
        assert result == {
            "data": [],
            "meta": {"total": 0, "page": 1, "limit": 10, "total_pages": 0, "status_counts": {}},
        }

    def test_accepts_prebuilt_filters(self, mixed_requests):
        result = list_requests(RequestFilters(status="COMPLETED"))
        assert [r["id"] for r in result["data"]] == [mixed_requests["adjust"]]


class TestListRequestsForUser:
    def test_scoped_to_initiator(self, mixed_requests, staff):
        result = list_requests_for_user(staff.member, {})
        assert result["meta"]["total"] == 4
        assert mixed_requests["adjust"] not in {r["id"] for r in result["data"]}

    def test_initiator_filter_cannot_be_overridden(self, mixed_requests, staff):
        result = list_requests_for_user(staff.member, {"initiator_id": str(staff.admin)})
        assert result["meta"]["total"] == 4

    def test_combines_with_other_filters(self, mixed_requests, staff):
        result = list_requests_for_user(staff.member, {"status": "CANCELLED"})
        assert [r["id"] for r in result["data"]] == [mixed_requests["cancelled"]]


class TestPendingRequestCount:
    def test_all_open_requests(self, mixed_requests):
        assert pending_request_count() == 3

    def test_by_initiator(self, mixed_requests, staff):
        assert pending_request_count(user_id=staff.member) == 3
        assert pending_request_count(user_id=staff.admin) == 0

    def test_by_role(self, mixed_requests):
        # loan awaits TREASURER at level 2 and also has TREASURER at level 4
        assert pending_request_count(role="TREASURER") == 2
        assert pending_request_count(role="ADMIN") == 2
        assert pending_request_count(role="CHAIRMAN") == 2
        assert pending_request_count(role="SUPER_ADMIN") == 0


class TestRequestStatistics:
    def test_totals(self, mixed_requests):
        stats = request_statistics({})
        assert stats["total"] == 5
        assert stats["pending"] == 3
        assert stats["approved"] == 1
        assert stats["rejected"] == 0
        assert stats["cancelled"] == 1
        assert stats["by_status"] == {"IN_REVIEW": 1, "PENDING": 2, "COMPLETED": 1,
                                      "CANCELLED": 1}
        assert stats["by_type"] == {
            "LOAN_APPLICATION": 1, "ACCOUNT_UPDATE": 2, "ACCOUNT_CLOSURE": 1,
            "SYSTEM_ADJUSTMENT": 1,
        }

    def test_status_and_type_filters_are_ignored(self, mixed_requests):
        assert request_statistics({"status": "PENDING", "type": "LOAN_APPLICATION"})["total"] == 5

    def test_scoped_by_biodata(self, mixed_requests, member_record):
        stats = request_statistics({"biodata_id": member_record.id})
        assert stats["total"] == 1
        assert stats["by_type"] == {"ACCOUNT_CLOSURE": 1}

    def test_empty(self):
        stats = request_statistics()
        assert stats["total"] == 0
        assert stats["by_status"] == {}


def test_queries_do_not_write(mixed_requests):
    versions = {r.id: r.version for r in db.session.query(Request).all()}
    list_requests({})
    request_statistics({})
    pending_request_count(role="ADMIN")
    assert {r.id: r.version for r in db.session.query(Request).all()} == versions

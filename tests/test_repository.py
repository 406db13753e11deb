"""지원 저장소(sqlite) 테스트."""

import pytest

from src.concierge.provider import StoreDataProvider
from src.concierge.repository import SupportRepository
from src.concierge.types import ProductSummary
from src.core.exceptions import ProviderError


class TestSupportRepository:
    """지원 저장소 테스트."""

    def test_shortlist_upsert(self, support_repo):
        support_repo.save_shortlist("session-1", [{"id": "p1"}, {"id": "p2"}])
        count = support_repo.save_shortlist("session-1", [{"id": "p2"}])

        assert count == 1
        assert support_repo.get_shortlist("session-1") == [{"id": "p2"}]
        assert support_repo.get_shortlist("session-unknown") == []

    def test_ticket_ids_by_kind(self, support_repo):
        stylist = support_repo.create_ticket(session_id="session-1", kind="stylist", customer_email="a@b.co")
        returned = support_repo.create_ticket(session_id="session-1", kind="return", order_number="GG-10452")

        assert stylist.ticket_id.startswith("STY-")
        assert returned.ticket_id.startswith("RET-")
        assert support_repo.get_ticket(returned.ticket_id).order_number == "GG-10452"
        assert support_repo.get_ticket("STY-NOPE") is None
        assert len(support_repo.list_tickets("session-1")) == 2

    def test_csat(self, support_repo):
        support_repo.record_csat(session_id="session-1", rating="good", score=4, intent="track_order")
        support_repo.record_csat(session_id="session-2", rating="bad", score=1)

        assert [r.rating for r in support_repo.list_csat("session-1")] == ["good"]
        assert len(support_repo.list_csat()) == 2

    def test_order_update_subscription_once(self, support_repo):
        assert support_repo.subscribe_order_updates("session-1", "GG-10452") is True
        assert support_repo.subscribe_order_updates("session-1", "GG-10452") is False
        assert support_repo.list_subscriptions("session-1") == ["GG-10452"]

    def test_creates_parent_dir(self, tmp_path):
        repo = SupportRepository(db_path=tmp_path / "nested" / "dir" / "db.sqlite")
        assert repo.db_path.parent.exists()


class BrokenRepository:
    def save_shortlist(self, session_id, items):
        raise RuntimeError("disk full")


class BrokenCatalog:
    def search(self, **kwargs):
        raise OSError("catalog unavailable")

    def find_order(self, **kwargs):
        raise OSError("catalog unavailable")


class TestStoreDataProvider:
    """프로바이더 테스트."""

    @pytest.mark.asyncio
    async def test_save_shortlist(self, provider, support_repo):
        items = [ProductSummary(id="p1", title="Ring", price=10)]
        assert await provider.save_shortlist("session-1", items) == 1
        assert support_repo.get_shortlist("session-1")[0]["id"] == "p1"

    @pytest.mark.asyncio
    async def test_storage_failure_wrapped(self, catalog):
        """저장소 예외는 ProviderError로."""
        provider = StoreDataProvider(catalog=catalog, support=BrokenRepository())
        with pytest.raises(ProviderError):
            await provider.save_shortlist("session-1", [])

    @pytest.mark.asyncio
    async def test_return_request_notes(self, provider):
        ticket = await provider.create_return_request("session-1", "GG-10321", "resize", "half size")
        assert ticket.kind == "return"
        assert ticket.notes == "resize: half size"

    @pytest.mark.asyncio
    async def test_catalog_failure_wrapped(self, support_repo):
        """카탈로그 예외도 ProviderError로."""
        provider = StoreDataProvider(catalog=BrokenCatalog(), support=support_repo)
        with pytest.raises(ProviderError) as search_error:
            await provider.search_products(filters={"metal": "gold"})
        with pytest.raises(ProviderError) as lookup_error:
            await provider.lookup_order(order_number="GG-10452")

        assert search_error.value.details == {"operation": "search_products"}
        assert lookup_error.value.details == {"operation": "lookup_order"}

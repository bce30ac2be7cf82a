"""
Tests for complaint filing, withdrawal and seller-side resolution.
"""

from datetime import timedelta

import pytest

from accounts.ledger import get_balance
from core.errors import DuplicateOperation, Forbidden, InvalidStateTransition, ValidationError
from core.roles import Role
from fulfillment.orders import advance_status, place_order
from fulfillment.transitions import OrderStatus
from insurance.complaints import (
    COMPLAINT_TRANSITIONS,
    ComplaintStatus,
    SellerDecision,
    cancel_complaint,
    file_complaint,
    get_complaint_for,
    list_complaints_for,
    resolve_complaint,
)
from insurance.claims import file_claim


@pytest.fixture
async def shipped_order(test_db, marketplace, ship_order):
    m = marketplace
    order = await place_order(test_db, m["buyer"], m["product"].product_id, 2)
    return await ship_order(order)


@pytest.mark.asyncio
class TestFileComplaint:
    async def test_file_on_dispatched_order(self, test_db, marketplace, shipped_order):
        complaint = await file_complaint(
            test_db, marketplace["buyer"], shipped_order.order_id, "Spoiled", "Half the rice was damp"
        )
        assert complaint.status == "pending"
        assert complaint.amount == 400.0
        assert complaint.seller_id == marketplace["seller"].user_id
        assert complaint.has_claim is False

    async def test_file_on_delivered_order(self, test_db, marketplace, shipped_order):
        await advance_status(test_db, shipped_order.order_id, OrderStatus.DELIVERED, marketplace["driver"])
        complaint = await file_complaint(test_db, marketplace["buyer"], shipped_order.order_id, "Late", "Two days late")
        assert complaint.status == "pending"

    async def test_cannot_complain_before_dispatch(self, test_db, marketplace):
        m = marketplace
        order = await place_order(test_db, m["buyer"], m["product"].product_id, 1)
        with pytest.raises(InvalidStateTransition):
            await file_complaint(test_db, m["buyer"], order.order_id, "Nothing", "Not shipped yet")

    async def test_window_closes_after_24_hours(self, test_db, marketplace, shipped_order):
        late = shipped_order.dispatched_to_customer_at + timedelta(hours=24, minutes=1)
        with pytest.raises(ValidationError):
            await file_complaint(test_db, marketplace["buyer"], shipped_order.order_id, "Late", "x", now=late)

    async def test_window_edge_is_inclusive(self, test_db, marketplace, shipped_order):
        edge = shipped_order.dispatched_to_customer_at + timedelta(hours=24)
        complaint = await file_complaint(test_db, marketplace["buyer"], shipped_order.order_id, "Late", "x", now=edge)
        assert complaint.status == "pending"

    async def test_one_complaint_per_order(self, test_db, marketplace, shipped_order):
        buyer = marketplace["buyer"]
        await file_complaint(test_db, buyer, shipped_order.order_id, "Spoiled", "x")
        with pytest.raises(DuplicateOperation):
            await file_complaint(test_db, buyer, shipped_order.order_id, "Again", "y")

    async def test_only_the_orders_buyer(self, test_db, marketplace, shipped_order, make_user):
        other = await make_user(Role.BUYER)
        with pytest.raises(Forbidden):
            await file_complaint(test_db, other, shipped_order.order_id, "Spoiled", "x")


@pytest.mark.asyncio
class TestCancelComplaint:
    async def test_buyer_withdraws_pending_complaint(self, test_db, marketplace, shipped_order):
        buyer = marketplace["buyer"]
        complaint = await file_complaint(test_db, buyer, shipped_order.order_id, "Spoiled", "x")

        cancelled = await cancel_complaint(test_db, complaint.complaint_id, buyer, reason="sorted it out")
        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "sorted it out"
        assert cancelled.cancellation_date is not None

    async def test_complaint_with_claim_cannot_be_cancelled(self, test_db, marketplace, shipped_order, make_holding):
        m = marketplace
        await make_holding(m["seller"], m["agent"])
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        await file_claim(test_db, complaint.complaint_id, m["seller"])

        with pytest.raises(Forbidden):
            await cancel_complaint(test_db, complaint.complaint_id, m["buyer"])

        await test_db.refresh(complaint)
        assert complaint.status == "claimed"

    async def test_seller_cannot_cancel(self, test_db, marketplace, shipped_order):
        m = marketplace
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        with pytest.raises(Forbidden):
            await cancel_complaint(test_db, complaint.complaint_id, m["seller"])

    async def test_resolved_complaint_cannot_be_cancelled(self, test_db, marketplace, shipped_order):
        m = marketplace
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        await resolve_complaint(test_db, complaint.complaint_id, m["seller"], SellerDecision.REJECT)

        with pytest.raises(InvalidStateTransition):
            await cancel_complaint(test_db, complaint.complaint_id, m["buyer"])


@pytest.mark.asyncio
class TestResolveComplaint:
    async def test_seller_refund_moves_money_back(self, test_db, marketplace, shipped_order):
        m = marketplace
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")

        resolved = await resolve_complaint(test_db, complaint.complaint_id, m["seller"], SellerDecision.REFUND)

        assert resolved.status == "refunded"
        assert await get_balance(test_db, m["buyer"].user_id) == 500.0
        assert await get_balance(test_db, m["seller"].user_id) == 0.0

    async def test_refund_only_once(self, test_db, marketplace, shipped_order):
        m = marketplace
        buyer_id = m["buyer"].user_id
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        await resolve_complaint(test_db, complaint.complaint_id, m["seller"], SellerDecision.REFUND)

        with pytest.raises(InvalidStateTransition):
            await resolve_complaint(test_db, complaint.complaint_id, m["seller"], SellerDecision.REFUND)
        assert await get_balance(test_db, buyer_id) == 500.0

    async def test_reject_keeps_money_with_seller(self, test_db, marketplace, shipped_order):
        m = marketplace
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        resolved = await resolve_complaint(
            test_db, complaint.complaint_id, m["seller"], SellerDecision.REJECT, notes="Photos show fresh stock"
        )
        assert resolved.status == "rejected"
        assert resolved.resolution_notes == "Photos show fresh stock"
        assert await get_balance(test_db, m["seller"].user_id) == 400.0

    async def test_other_seller_cannot_resolve(self, test_db, marketplace, shipped_order, make_user):
        m = marketplace
        other = await make_user(Role.SELLER)
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")
        with pytest.raises(Forbidden):
            await resolve_complaint(test_db, complaint.complaint_id, other, SellerDecision.REFUND)


@pytest.mark.asyncio
class TestComplaintVisibility:
    async def test_listing_by_party(self, test_db, marketplace, shipped_order):
        m = marketplace
        complaint = await file_complaint(test_db, m["buyer"], shipped_order.order_id, "Spoiled", "x")

        for role in ("buyer", "seller", "admin"):
            listed = await list_complaints_for(test_db, m[role])
            assert [c.complaint_id for c in listed] == [complaint.complaint_id]

        with pytest.raises(Forbidden):
            await list_complaints_for(test_db, m["driver"])
        with pytest.raises(Forbidden):
            await get_complaint_for(test_db, complaint.complaint_id, m["agent"])


class TestComplaintGraph:
    def test_cancellation_is_its_own_status(self):
        assert ComplaintStatus.CANCELLED in COMPLAINT_TRANSITIONS[ComplaintStatus.PENDING]
        assert ComplaintStatus.CANCELLED not in COMPLAINT_TRANSITIONS[ComplaintStatus.CLAIMED]

    def test_decided_complaints_are_final(self):
        for status in (
            ComplaintStatus.APPROVED,
            ComplaintStatus.REJECTED,
            ComplaintStatus.REFUNDED,
            ComplaintStatus.CANCELLED,
        ):
            assert COMPLAINT_TRANSITIONS[status] == frozenset()

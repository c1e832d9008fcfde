import itertools
from decimal import Decimal

import pytest
from sqlalchemy import update

from core.errors import Forbidden, InvalidAction, InvalidStatus, InvalidTransition, NotFound
from models.delivery import Delivery
from models.enums import DeliveryStatus, OrderStatus, Role
from models.order import Order
from models.product import Product
from services import order_lifecycle
from services.order_lifecycle import (
    bulk_update_order_status,
    can_transition_order,
    cancel_order,
    update_order_status,
)
from _helpers import as_caller


ALLOWED = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
    (OrderStatus.CANCELLED, OrderStatus.REFUNDED),
}


def _force_status(db, order, status):
    db.execute(update(Order).where(Order.id == order.id).values(status=status))
    db.commit()
    db.refresh(order)


class TestTransitionTable:
    """Forward-only policy with cancel and refund exits."""

    def test_table_matches_policy_for_every_pair(self):
        for current, target in itertools.product(OrderStatus, OrderStatus):
            assert can_transition_order(current, target) == ((current, target) in ALLOWED), (current, target)

    def test_refunded_is_final(self):
        assert order_lifecycle.ORDER_TRANSITIONS[OrderStatus.REFUNDED] == frozenset()

    def test_admin_may_skip_ahead_but_not_back(self):
        sequence = order_lifecycle.ORDER_SEQUENCE
        for i, current in enumerate(sequence):
            for j, target in enumerate(sequence):
                assert can_transition_order(current, target, Role.ADMIN) == (j > i), (current, target)

    def test_seller_never_skips(self):
        assert not can_transition_order(OrderStatus.CONFIRMED, OrderStatus.SHIPPED, Role.SELLER)
        assert not can_transition_order(OrderStatus.PENDING, OrderStatus.PROCESSING, Role.SELLER)

    def test_admin_cannot_leave_cancelled_except_refund(self):
        assert not can_transition_order(OrderStatus.CANCELLED, OrderStatus.DELIVERED, Role.ADMIN)
        assert can_transition_order(OrderStatus.CANCELLED, OrderStatus.REFUNDED, Role.ADMIN)

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.CONFIRMED, OrderStatus.PENDING),
        (OrderStatus.SHIPPED, OrderStatus.PROCESSING),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
        (OrderStatus.PENDING, OrderStatus.REFUNDED),
        (OrderStatus.CONFIRMED, OrderStatus.CONFIRMED),
    ])
    def test_admin_rejected_transitions_leave_order_untouched(self, db, order, admin, current, target):
        _force_status(db, order, current)

        with pytest.raises(InvalidTransition):
            update_order_status(db, order.id, target, as_caller(admin))

        db.refresh(order)
        assert order.status == current


class TestUpdateOrderStatus:

    def test_unknown_status_value(self, db, order, admin):
        with pytest.raises(InvalidStatus):
            update_order_status(db, order.id, "TELEPORTED", as_caller(admin))

    def test_missing_status(self, db, order, admin):
        with pytest.raises(InvalidStatus):
            update_order_status(db, order.id, None, as_caller(admin))

    def test_status_is_case_insensitive(self, db, order, admin):
        updated = update_order_status(db, order.id, "confirmed", as_caller(admin))
        assert updated.status == OrderStatus.CONFIRMED

    def test_missing_order(self, db, admin):
        with pytest.raises(NotFound):
            update_order_status(db, 9999, OrderStatus.CONFIRMED, as_caller(admin))

    def test_admin_advances_and_refreshes_updated_at(self, db, order, admin):
        before = order.updated_at

        updated = update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(admin), notes="Paid by card")

        assert updated.status == OrderStatus.CONFIRMED
        assert updated.notes == "Paid by card"
        assert updated.updated_at >= before

    def test_notes_untouched_when_not_given(self, db, order, admin):
        update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(admin), notes="first")
        updated = update_order_status(db, order.id, OrderStatus.PROCESSING, as_caller(admin))
        assert updated.notes == "first"

    def test_buyer_is_emailed_on_change(self, db, order, admin, buyer, sent_emails):
        update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(admin))

        assert len(sent_emails) == 1
        assert sent_emails[0]["to"] == buyer.email
        assert "confirmed" in sent_emails[0]["body"]

    def test_no_email_on_rejected_change(self, db, order, admin, sent_emails):
        with pytest.raises(InvalidTransition):
            update_order_status(db, order.id, OrderStatus.REFUNDED, as_caller(admin))
        assert sent_emails == []

    def test_stale_read_does_not_overwrite(self, db, order, admin, monkeypatch):
        """The write is conditional on the status that was validated."""
        original_get = db.get

        def _stale_get(entity, ident, **kwargs):
            obj = original_get(entity, ident, **kwargs)
            if entity is Order:
                # Someone else cancels the order right after we read it
                db.execute(
                    update(Order)
                    .where(Order.id == ident)
                    .values(status=OrderStatus.CANCELLED)
                    .execution_options(synchronize_session=False)
                )
            return obj

        monkeypatch.setattr(db, "get", _stale_get)

        with pytest.raises(InvalidTransition):
            update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(admin))


class TestSellerRestrictions:

    @pytest.mark.parametrize("target", [OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED])
    def test_seller_cannot_set_admin_or_driver_statuses(self, db, order, seller, target):
        with pytest.raises(Forbidden):
            update_order_status(db, order.id, target, as_caller(seller))

    def test_seller_moves_own_order_to_processing(self, db, order, seller):
        _force_status(db, order, OrderStatus.CONFIRMED)

        updated = update_order_status(db, order.id, OrderStatus.PROCESSING, as_caller(seller))

        assert updated.status == OrderStatus.PROCESSING

    def test_seller_can_confirm_and_ship(self, db, order, seller):
        update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(seller))
        update_order_status(db, order.id, OrderStatus.PROCESSING, as_caller(seller))
        updated = update_order_status(db, order.id, OrderStatus.SHIPPED, as_caller(seller))
        assert updated.status == OrderStatus.SHIPPED

    def test_seller_without_items_in_order(self, db, order, other_seller):
        _force_status(db, order, OrderStatus.CONFIRMED)

        with pytest.raises(Forbidden):
            update_order_status(db, order.id, OrderStatus.PROCESSING, as_caller(other_seller))

    def test_seller_still_bound_by_forward_policy(self, db, order, seller):
        with pytest.raises(InvalidTransition):
            update_order_status(db, order.id, OrderStatus.SHIPPED, as_caller(seller))

    def test_multi_seller_order_open_to_each_seller(self, db, place_order, product, other_seller, admin):
        other_product = Product(seller_id=other_seller.id, name="Cable", price=Decimal("5.00"), stock=5)
        db.add(other_product)
        db.commit()
        multi = place_order([(product.id, 1), (other_product.id, 1)])
        update_order_status(db, multi.id, OrderStatus.CONFIRMED, as_caller(admin))

        updated = update_order_status(db, multi.id, OrderStatus.PROCESSING, as_caller(other_seller))

        assert updated.status == OrderStatus.PROCESSING

    @pytest.mark.parametrize("role_fixture", ["buyer", "driver"])
    def test_other_roles_forbidden(self, request, db, order, role_fixture):
        caller = request.getfixturevalue(role_fixture)
        with pytest.raises(Forbidden):
            update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(caller))


class TestDeliveryCascade:

    def test_cancel_cancels_open_delivery(self, db, order, admin):
        cancelled = cancel_order(db, order.id, as_caller(admin))

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.delivery.status == DeliveryStatus.CANCELLED

    def test_cancel_keeps_assigned_driver_but_closes_delivery(self, db, order, admin, driver):
        db.execute(
            update(Delivery)
            .where(Delivery.order_id == order.id)
            .values(driver_id=driver.id, status=DeliveryStatus.OUT_FOR_DELIVERY)
        )
        db.commit()

        cancelled = cancel_order(db, order.id, as_caller(admin))

        assert cancelled.delivery.status == DeliveryStatus.CANCELLED
        assert cancelled.delivery.driver_id == driver.id

    def test_delivered_order_completes_delivery(self, db, order, admin):
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            update_order_status(db, order.id, status, as_caller(admin))

        db.refresh(order)
        assert order.status == OrderStatus.DELIVERED
        assert order.delivery.status == DeliveryStatus.DELIVERED

    def test_terminal_delivery_not_overwritten(self, db, order, admin):
        db.execute(update(Delivery).where(Delivery.order_id == order.id).values(status=DeliveryStatus.FAILED))
        db.commit()

        cancel_order(db, order.id, as_caller(admin))

        delivery = db.query(Delivery).filter(Delivery.order_id == order.id).one()
        db.refresh(delivery)
        assert delivery.status == DeliveryStatus.FAILED

    def test_refund_leaves_delivery_alone(self, db, order, admin):
        cancel_order(db, order.id, as_caller(admin))
        refunded = update_order_status(db, order.id, OrderStatus.REFUNDED, as_caller(admin))

        assert refunded.status == OrderStatus.REFUNDED
        assert refunded.delivery.status == DeliveryStatus.CANCELLED


def test_admin_delivers_order_seller_left_in_processing(db, order, admin, seller):
    assert order.status == OrderStatus.PENDING
    assert [(item.quantity, Decimal(str(item.price))) for item in order.items] == [(2, Decimal("49.99"))]

    update_order_status(db, order.id, OrderStatus.CONFIRMED, as_caller(admin))
    update_order_status(db, order.id, OrderStatus.PROCESSING, as_caller(seller))
    with pytest.raises(Forbidden):
        update_order_status(db, order.id, OrderStatus.DELIVERED, as_caller(seller))

    delivered = update_order_status(db, order.id, OrderStatus.DELIVERED, as_caller(admin))

    assert delivered.status == OrderStatus.DELIVERED
    assert delivered.delivery.status == DeliveryStatus.DELIVERED


class TestBulkUpdate:

    def test_partial_failure_reports_missing_order(self, db, place_order, admin):
        first, second = place_order(), place_order()

        result = bulk_update_order_status(db, [first.id, 424242, second.id], "bulkConfirm", as_caller(admin))

        assert result.updated_count == 2
        assert result.updated_ids == [first.id, second.id]
        assert len(result.failures) == 1
        assert result.failures[0].order_id == 424242
        assert result.failures[0].kind == "NotFound"
        for o in (first, second):
            db.refresh(o)
            assert o.status == OrderStatus.CONFIRMED

    def test_invalid_transition_isolated(self, db, place_order, admin):
        pending, shipped = place_order(), place_order()
        _force_status(db, shipped, OrderStatus.SHIPPED)

        result = bulk_update_order_status(db, [pending.id, shipped.id], "bulkConfirm", as_caller(admin))

        assert result.updated_count == 1
        assert result.failures[0].order_id == shipped.id
        assert result.failures[0].kind == "InvalidTransition"

    def test_bulk_update_status_requires_status(self, db, order, admin):
        with pytest.raises(InvalidStatus):
            bulk_update_order_status(db, [order.id], "bulkUpdateStatus", as_caller(admin))

    def test_bulk_update_status_with_status(self, db, order, admin):
        result = bulk_update_order_status(db, [order.id], "bulkUpdateStatus", as_caller(admin), status="CANCELLED")
        assert result.updated_count == 1
        db.refresh(order)
        assert order.status == OrderStatus.CANCELLED

    def test_unknown_action(self, db, order, admin):
        with pytest.raises(InvalidAction):
            bulk_update_order_status(db, [order.id], "bulkExplode", as_caller(admin))

    def test_duplicate_ids_processed_once(self, db, order, admin):
        result = bulk_update_order_status(db, [order.id, order.id], "bulkCancel", as_caller(admin))
        assert result.updated_count == 1
        assert result.failures == []


class TestOrderVisibility:

    def test_buyer_sees_own_order(self, db, order, buyer):
        assert order_lifecycle.get_order_for_caller(db, order.id, as_caller(buyer)).id == order.id

    def test_other_buyer_forbidden(self, db, order, make_user):
        from models.enums import Role

        stranger = make_user(Role.BUYER)
        with pytest.raises(Forbidden):
            order_lifecycle.get_order_for_caller(db, order.id, as_caller(stranger))

    def test_seller_listing_scoped_to_their_items(self, db, order, seller, other_seller):
        mine, total = order_lifecycle.list_orders_for_caller(db, as_caller(seller))
        theirs, other_total = order_lifecycle.list_orders_for_caller(db, as_caller(other_seller))

        assert [o.id for o in mine] == [order.id]
        assert total == 1
        assert theirs == [] and other_total == 0

    def test_listing_filters_by_status(self, db, place_order, admin):
        first, second = place_order(), place_order()
        update_order_status(db, second.id, OrderStatus.CONFIRMED, as_caller(admin))

        orders, total = order_lifecycle.list_orders_for_caller(db, as_caller(admin), status="CONFIRMED")

        assert total == 1
        assert orders[0].id == second.id
        assert order_lifecycle.status_counts(db, as_caller(admin)) == {"PENDING": 1, "CONFIRMED": 1}

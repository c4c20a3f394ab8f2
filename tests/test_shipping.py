"""Tests for the fulfillment state machine, tracking view and admin listings."""

import pytest

from storefront.errors import Conflict, InvalidStage, StageRegression
from storefront.models import Order, OrderStatusEnum, OrderTracking
from storefront.shipping import STAGE_ORDER, advance_stage, cancel_order, parse_target_stage

API = "/api/v1"


def move(client, headers, order_id, stage, **extra):
    return client.put(
        f"{API}/shipping/orders/{order_id}/stage",
        json={"stage": stage, **extra},
        headers=headers,
    )


class TestAdvanceStage:
    def test_forward_moves_then_regression_is_rejected(self, client, db, admin_headers, confirmed_order):
        order_id = confirmed_order["id"]

        response = move(client, admin_headers, order_id, "PACKED")
        assert response.status_code == 200
        assert response.json()["message"] == "Order packed successfully"
        assert response.json()["data"]["order"]["status"] == "PACKED"

        assert move(client, admin_headers, order_id, "SHIPPED").status_code == 200

        response = move(client, admin_headers, order_id, "PACKED")
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "ALREADY_AT_OR_PAST_STAGE"
        assert body["error"] == "Order is already at or past PACKED stage"

        db.expire_all()
        assert db.get(Order, order_id).status == OrderStatusEnum.SHIPPED

    def test_same_stage_twice_is_rejected(self, client, admin_headers, confirmed_order):
        assert move(client, admin_headers, confirmed_order["id"], "PACKED").status_code == 200
        response = move(client, admin_headers, confirmed_order["id"], "PACKED")
        assert response.json()["code"] == "ALREADY_AT_OR_PAST_STAGE"

    def test_stages_can_be_skipped_forward(self, client, admin_headers, confirmed_order):
        response = move(client, admin_headers, confirmed_order["id"], "DELIVERED")
        assert response.status_code == 200
        assert response.json()["data"]["order"]["status"] == "DELIVERED"

    @pytest.mark.parametrize("stage", ["LOST", "CONFIRMED", "PENDING", "packed"])
    def test_invalid_stage(self, client, admin_headers, confirmed_order, stage):
        response = move(client, admin_headers, confirmed_order["id"], stage)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STAGE"

    def test_unpaid_order_cannot_ship(self, client, user_headers, admin_headers, place_order):
        order = place_order(user_headers)
        response = move(client, admin_headers, order["id"], "PACKED")
        assert response.status_code == 400
        assert response.json()["code"] == "CONFLICT"

    def test_unknown_order(self, client, admin_headers):
        assert move(client, admin_headers, 9999, "PACKED").status_code == 404

    def test_customer_cannot_move_stages(self, client, user_headers, confirmed_order):
        response = move(client, user_headers, confirmed_order["id"], "PACKED")
        assert response.status_code == 403
        assert response.json()["error"] == "Admin access required"

    def test_one_tracking_entry_per_transition(self, client, db, admin_headers, confirmed_order):
        order_id = confirmed_order["id"]
        for stage in ("PACKED", "SHIPPED", "SHIPPED", "IN_TRANSIT"):
            move(client, admin_headers, order_id, stage)

        db.expire_all()
        stages = [
            t.stage.value
            for t in db.query(OrderTracking)
            .filter(OrderTracking.order_id == order_id)
            .order_by(OrderTracking.id)
        ]
        assert stages == ["PENDING", "CONFIRMED", "PACKED", "SHIPPED", "IN_TRANSIT"]

    def test_tracking_fields_are_merged(self, client, admin_headers, confirmed_order):
        order_id = confirmed_order["id"]
        move(
            client, admin_headers, order_id, "SHIPPED",
            trackingNumber="TRK123", carrierName="BlueDart",
            estimatedDelivery="2026-11-01T10:00:00",
        )
        response = move(client, admin_headers, order_id, "IN_TRANSIT", notes="Left hub")
        order = response.json()["data"]["order"]
        assert order["trackingNumber"] == "TRK123"
        assert order["carrierName"] == "BlueDart"
        assert order["estimatedDelivery"].startswith("2026-11-01T10:00:00")
        assert order["deliveryNotes"] == "Left hub"


class TestStageService:
    def test_parse_target_stage(self):
        assert parse_target_stage("SHIPPED") == OrderStatusEnum.SHIPPED
        with pytest.raises(InvalidStage):
            parse_target_stage("CONFIRMED")

    def test_regression_raises(self, db, admin, confirmed_order):
        advance_stage(db, admin, confirmed_order["id"], "OUT_FOR_DELIVERY")
        with pytest.raises(StageRegression):
            advance_stage(db, admin, confirmed_order["id"], "IN_TRANSIT")

    def test_stage_order(self):
        assert STAGE_ORDER[0] == OrderStatusEnum.CONFIRMED
        assert STAGE_ORDER[-1] == OrderStatusEnum.DELIVERED
        assert len(STAGE_ORDER) == 6


class TestAdminCancel:
    def test_admin_cancels_confirmed_order(self, client, db, admin_headers, confirmed_order):
        response = client.put(
            f"{API}/shipping/orders/{confirmed_order['id']}/cancel",
            json={"notes": "Out of stock"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["order"]["status"] == "CANCELLED"

        db.expire_all()
        last = (
            db.query(OrderTracking)
            .filter(OrderTracking.order_id == confirmed_order["id"])
            .order_by(OrderTracking.id.desc())
            .first()
        )
        assert last.stage == OrderStatusEnum.CANCELLED
        assert last.notes == "Out of stock"

    def test_delivered_order_cannot_be_cancelled(self, client, admin_headers, confirmed_order):
        move(client, admin_headers, confirmed_order["id"], "DELIVERED")
        response = client.put(
            f"{API}/shipping/orders/{confirmed_order['id']}/cancel", headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "CONFLICT"

    def test_cancelled_order_cannot_advance(self, db, admin, confirmed_order):
        cancel_order(db, admin, confirmed_order["id"])
        with pytest.raises(Conflict):
            advance_stage(db, admin, confirmed_order["id"], "PACKED")


class TestTrackingView:
    def test_progress_flags_and_timestamps(self, client, user_headers, admin_headers, confirmed_order):
        move(client, admin_headers, confirmed_order["id"], "SHIPPED")

        response = client.get(f"{API}/shipping/tracking/{confirmed_order['id']}", headers=user_headers)
        assert response.status_code == 200
        order = response.json()["data"]["order"]
        stages = order["trackingStages"]

        assert [s["stage"] for s in stages] == [s.value for s in STAGE_ORDER]
        assert [s["completed"] for s in stages] == [True, True, True, False, False, False]
        assert stages[0]["timestamp"] is not None
        assert stages[2]["timestamp"] is not None
        # PACKED was skipped, so it has no timestamp of its own
        assert stages[1]["timestamp"] is None
        assert stages[3]["timestamp"] is None
        assert order["customer"]["email"] == "user@example.com"

    def test_pending_order_has_nothing_completed(self, client, user_headers, place_order):
        order = place_order(user_headers)
        response = client.get(f"{API}/shipping/tracking/{order['id']}", headers=user_headers)
        stages = response.json()["data"]["order"]["trackingStages"]
        assert not any(s["completed"] for s in stages)

    def test_tracking_is_owner_scoped(self, client, other_headers, confirmed_order):
        response = client.get(f"{API}/shipping/tracking/{confirmed_order['id']}", headers=other_headers)
        assert response.status_code == 404


class TestAdminListings:
    def test_confirmed_queue_excludes_pending_and_delivered(
        self, client, user_headers, admin_headers, place_order, pay_order
    ):
        pending = place_order(user_headers)
        queued = place_order(user_headers)
        pay_order(queued["id"], user_headers, payment_id="pay_q")
        delivered = place_order(user_headers)
        pay_order(delivered["id"], user_headers, payment_id="pay_d")
        move(client, admin_headers, delivered["id"], "DELIVERED")

        response = client.get(f"{API}/shipping/orders/confirmed", headers=admin_headers)
        ids = [o["id"] for o in response.json()["data"]["orders"]]
        assert ids == [queued["id"]]
        assert pending["id"] not in ids

    def test_admin_sees_every_order(self, client, user_headers, other_headers, admin_headers, place_order):
        place_order(user_headers)
        place_order(other_headers)
        response = client.get(f"{API}/admin/orders", headers=admin_headers)
        data = response.json()["data"]
        assert data["totalOrders"] == 2
        assert {o["customer"]["email"] for o in data["orders"]} == {
            "user@example.com", "other@example.com",
        }

    def test_admin_lists_users(self, client, user, admin_headers):
        response = client.get(f"{API}/admin/users?limit=1", headers=admin_headers)
        data = response.json()["data"]
        assert len(data["users"]) == 1
        assert data["totalUsers"] == 2

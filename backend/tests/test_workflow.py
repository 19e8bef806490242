import pytest

from core.exceptions import (
    AlreadyConfirmed,
    IncompleteChecklist,
    InvalidTransition,
    MissingLocationEvidence,
    MissingPhotoEvidence,
    NotOwner,
    OrderNotFound,
)
from models.common import GeoPin
from models.delivery import DeliveryEvent, DeliveryEvidence, PickupEvidence
from models.order import DeliveryStatus
from services import assignment_service, evidence_service, workflow_service

pytestmark = pytest.mark.anyio


def _delivery_evidence(**overrides) -> DeliveryEvidence:
    data = {
        "photo_reference": "uploads/ord_1/handover.jpg",
        "gps": GeoPin(lat=3.139, lng=101.6869, accuracy=12.0),
        "recipient_name": "Aisyah",
    }
    data.update(overrides)
    return DeliveryEvidence(**data)


async def test_full_delivery_flow(mock_db, make_user, make_order, full_checklist):
    await make_user("drv_1")
    await make_order("ord_1")
    await assignment_service.accept_order("ord_1", "drv_1")

    steps = [
        (DeliveryEvent.DRIVER_DEPARTS, None),
        (DeliveryEvent.DRIVER_ARRIVES_AT_VENDOR, None),
        (DeliveryEvent.DRIVER_CONFIRMS_PICKUP, PickupEvidence(verification_checklist=full_checklist)),
        (DeliveryEvent.DRIVER_DEPARTS_TO_CUSTOMER, None),
        (DeliveryEvent.DRIVER_ARRIVES_AT_CUSTOMER, None),
        (DeliveryEvent.DRIVER_CONFIRMS_DELIVERY, _delivery_evidence()),
    ]
    ranks = []
    for event, evidence in steps:
        status = await workflow_service.request_transition("ord_1", "drv_1", event, evidence)
        ranks.append(status.rank)

    assert ranks == sorted(ranks)
    order = await mock_db.orders.find_one({"order_id": "ord_1"})
    assert order["status"] == "delivered"
    assert set(order["status_timestamps"]) == {s.value for s in DeliveryStatus if s != DeliveryStatus.CANCELLED}

    timeline = await workflow_service.get_order_timeline("ord_1")
    assert [e["event_type"] for e in timeline] == [
        "ORDER_ASSIGNED",
        "STATUS_CHANGED",
        "STATUS_CHANGED",
        "PICKUP_CONFIRMED",
        "STATUS_CHANGED",
        "STATUS_CHANGED",
        "DELIVERY_CONFIRMED",
    ]
    assert await mock_db.order_confirmations.count_documents({"order_id": "ord_1"}) == 2

    driver = await mock_db.users.find_one({"user_id": "drv_1"})
    assert driver["driver_status"] == "online"
    assert driver["deliveries_completed"] == 1
    earning = await mock_db.driver_earnings.find_one({"order_id": "ord_1"})
    assert earning["amount"] == 4.8


async def test_out_of_order_event_rejected(mock_db, held_order):
    await held_order("assigned")

    with pytest.raises(InvalidTransition):
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_ARRIVES_AT_CUSTOMER,
        )

    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ASSIGNED
    assert await mock_db.order_events.count_documents({}) == 0


async def test_backwards_event_rejected(held_order):
    await held_order("on_route_to_customer")

    with pytest.raises(InvalidTransition):
        await workflow_service.request_transition("ord_1", "drv_1", DeliveryEvent.DRIVER_DEPARTS)

    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ON_ROUTE_TO_CUSTOMER


async def test_pickup_with_unchecked_item(mock_db, held_order, full_checklist):
    await held_order("arrived_at_vendor")
    checklist = dict(full_checklist, packaging_intact=False)

    with pytest.raises(IncompleteChecklist) as exc_info:
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_PICKUP,
            PickupEvidence(verification_checklist=checklist),
        )

    assert exc_info.value.context["unchecked_items"] == ["packaging_intact"]
    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ARRIVED_AT_VENDOR
    assert await mock_db.order_confirmations.count_documents({}) == 0


async def test_pickup_without_checklist(held_order, full_checklist):
    await held_order("arrived_at_vendor")

    with pytest.raises(IncompleteChecklist) as exc_info:
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_PICKUP,
        )

    assert exc_info.value.context["unchecked_items"] == list(full_checklist)
    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ARRIVED_AT_VENDOR


async def test_pickup_with_full_checklist(mock_db, held_order, full_checklist):
    await held_order("arrived_at_vendor")

    status = await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_PICKUP,
        PickupEvidence(verification_checklist=full_checklist, notes="Sac isotherme"),
    )

    assert status == DeliveryStatus.PICKED_UP
    record = await mock_db.order_confirmations.find_one({"order_id": "ord_1", "kind": "pickup"})
    assert record["confirmed_by"] == "drv_1"
    assert record["verification_checklist"] == full_checklist
    assert record["notes"] == "Sac isotherme"


async def test_delivery_without_photo(mock_db, held_order):
    await held_order("arrived_at_customer")

    with pytest.raises(MissingPhotoEvidence):
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY,
            _delivery_evidence(photo_reference=None),
        )

    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ARRIVED_AT_CUSTOMER
    assert await mock_db.order_confirmations.count_documents({}) == 0


async def test_delivery_without_location(mock_db, held_order):
    await held_order("arrived_at_customer")

    with pytest.raises(MissingLocationEvidence):
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY,
            _delivery_evidence(gps=None),
        )

    assert await workflow_service.current_status("ord_1") == DeliveryStatus.ARRIVED_AT_CUSTOMER
    assert await mock_db.driver_earnings.count_documents({}) == 0


async def test_retried_departure_is_idempotent(mock_db, held_order):
    await held_order("assigned")

    first = await workflow_service.request_transition("ord_1", "drv_1", DeliveryEvent.DRIVER_DEPARTS)
    second = await workflow_service.request_transition("ord_1", "drv_1", DeliveryEvent.DRIVER_DEPARTS)

    assert first == second == DeliveryStatus.ON_ROUTE_TO_VENDOR
    assert await mock_db.order_events.count_documents({"order_id": "ord_1"}) == 1


async def test_retried_delivery_confirmation_is_idempotent(mock_db, held_order):
    await held_order("arrived_at_customer")
    evidence = _delivery_evidence()

    first = await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY, evidence,
    )
    second = await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY, evidence,
    )

    assert first == second == DeliveryStatus.DELIVERED
    assert await mock_db.order_confirmations.count_documents({"order_id": "ord_1"}) == 1
    assert await mock_db.driver_earnings.count_documents({"order_id": "ord_1"}) == 1


async def test_retry_with_different_evidence(mock_db, held_order):
    await held_order("arrived_at_customer")
    await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY, _delivery_evidence(),
    )

    with pytest.raises(AlreadyConfirmed):
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY,
            _delivery_evidence(photo_reference="uploads/ord_1/other.jpg"),
        )

    record = await mock_db.order_confirmations.find_one({"order_id": "ord_1"})
    assert record["photo_reference"] == "uploads/ord_1/handover.jpg"


@pytest.mark.parametrize("status", ["ready", "assigned", "arrived_at_vendor", "delivered", "cancelled"])
async def test_transition_by_non_holder(make_user, make_order, status):
    await make_user("drv_1", driver_status="on_delivery")
    await make_user("drv_2")
    holder = None if status == "ready" else "drv_1"
    await make_order("ord_1", status=status, assigned_driver_id=holder)

    with pytest.raises(NotOwner):
        await workflow_service.request_transition("ord_1", "drv_2", DeliveryEvent.DRIVER_DEPARTS)


async def test_unknown_order():
    with pytest.raises(OrderNotFound):
        await workflow_service.request_transition("ord_missing", "drv_1", DeliveryEvent.DRIVER_DEPARTS)


@pytest.mark.parametrize("status,event", [
    ("delivered", DeliveryEvent.CANCEL),
    ("delivered", DeliveryEvent.DRIVER_DEPARTS),
    ("cancelled", DeliveryEvent.DRIVER_ARRIVES_AT_VENDOR),
    ("cancelled", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY),
])
async def test_terminal_statuses_are_final(held_order, status, event):
    await held_order(status)

    with pytest.raises(InvalidTransition):
        await workflow_service.request_transition("ord_1", "drv_1", event)

    assert await workflow_service.current_status("ord_1") == DeliveryStatus(status)


async def test_driver_cancel_frees_driver(mock_db, held_order):
    await held_order("on_route_to_customer")

    status = await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.CANCEL, notes="Client injoignable",
    )

    assert status == DeliveryStatus.CANCELLED
    order = await mock_db.orders.find_one({"order_id": "ord_1"})
    assert order["cancel_reason"] == "Client injoignable"
    driver = await mock_db.users.find_one({"user_id": "drv_1"})
    assert driver["driver_status"] == "online"
    event = await mock_db.order_events.find_one({"order_id": "ord_1"})
    assert event["event_type"] == "ORDER_CANCELLED"
    assert await mock_db.notifications.count_documents({"user_id": "cus_1"}) == 1


async def test_operator_cancel(mock_db, held_order):
    await held_order("picked_up")

    status = await workflow_service.cancel_order("ord_1", "adm_1", "admin", reason="Restaurant fermé")
    again = await workflow_service.cancel_order("ord_1", "adm_1", "admin")

    assert status == again == DeliveryStatus.CANCELLED
    order = await mock_db.orders.find_one({"order_id": "ord_1"})
    assert order["cancelled_by"] == "adm_1"
    assert await mock_db.order_events.count_documents({"event_type": "ORDER_CANCELLED"}) == 1


async def test_operator_cannot_cancel_unassigned_order(make_order):
    await make_order("ord_1")

    with pytest.raises(InvalidTransition):
        await workflow_service.cancel_order("ord_1", "adm_1", "admin")


async def test_current_status_before_assignment(make_order):
    await make_order("ord_1")

    assert await workflow_service.current_status("ord_1") == "ready"


async def test_delivery_proof_dropped_when_cancel_wins(mock_db, held_order, monkeypatch):
    await held_order("arrived_at_customer")
    record = evidence_service.record_confirmation

    async def record_then_cancel(*args, **kwargs):
        result = await record(*args, **kwargs)
        await mock_db.orders.update_one({"order_id": "ord_1"}, {"$set": {"status": "cancelled"}})
        return result

    monkeypatch.setattr(evidence_service, "record_confirmation", record_then_cancel)

    with pytest.raises(InvalidTransition) as exc_info:
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_DELIVERY, _delivery_evidence(),
        )

    assert exc_info.value.context["current_status"] == "cancelled"
    assert await mock_db.order_confirmations.count_documents({"order_id": "ord_1"}) == 0
    assert await mock_db.driver_earnings.count_documents({"order_id": "ord_1"}) == 0


async def test_pickup_proof_dropped_when_commit_fails(mock_db, held_order, full_checklist, monkeypatch):
    await held_order("arrived_at_vendor")
    evidence = PickupEvidence(verification_checklist=full_checklist)
    commit = workflow_service._commit

    async def failing_commit(*args, **kwargs):
        raise RuntimeError("mongo indisponible")

    monkeypatch.setattr(workflow_service, "_commit", failing_commit)
    with pytest.raises(RuntimeError):
        await workflow_service.request_transition(
            "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_PICKUP, evidence,
        )

    assert await mock_db.order_confirmations.count_documents({"order_id": "ord_1"}) == 0
    assert (await mock_db.orders.find_one({"order_id": "ord_1"}))["status"] == "arrived_at_vendor"

    monkeypatch.setattr(workflow_service, "_commit", commit)
    new_status = await workflow_service.request_transition(
        "ord_1", "drv_1", DeliveryEvent.DRIVER_CONFIRMS_PICKUP, evidence,
    )

    assert new_status == DeliveryStatus.PICKED_UP
    assert await mock_db.order_confirmations.count_documents({"order_id": "ord_1", "kind": "pickup"}) == 1

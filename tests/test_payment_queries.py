"""Тесты чтения платежей: опрос статуса, история заказа, админка."""
import uuid
from datetime import datetime, timedelta


async def test_customer_can_poll_own_payment(client, customer_id, create_order, create_payment, auth_headers):
    order = await create_order(customer_id)
    payment = await create_payment(order, transaction_id="tx_poll")

    response = await client.get(f"/api/v1/payments/{payment.id}", headers=auth_headers(customer_id))

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(payment.id)
    assert body["orderId"] == str(order.id)
    assert body["status"] == "pending"
    assert body["transactionId"] == "tx_poll"
    assert body["phoneNumber"] == "+254700111222"


async def test_other_customer_cannot_see_payment(client, customer_id, create_order, create_payment, auth_headers):
    order = await create_order(customer_id)
    payment = await create_payment(order)

    response = await client.get(f"/api/v1/payments/{payment.id}", headers=auth_headers(uuid.uuid4()))

    assert response.status_code == 404
    assert response.json()["success"] is False


async def test_order_payments_newest_first_with_state(
    client, customer_id, create_order, create_payment, auth_headers
):
    order = await create_order(customer_id)
    now = datetime.utcnow()
    failed = await create_payment(order, transaction_id="tx_a", status="failed", created_at=now - timedelta(minutes=5))
    pending = await create_payment(order, transaction_id="tx_b", status="pending", created_at=now)

    response = await client.get(f"/api/v1/payments/orders/{order.id}", headers=auth_headers(customer_id))

    assert response.status_code == 200
    body = response.json()
    assert body["orderId"] == str(order.id)
    assert body["orderStatus"] == "pending"
    assert body["paymentState"] == "pending"
    assert [p["id"] for p in body["payments"]] == [str(pending.id), str(failed.id)]


async def test_order_without_payments_is_unpaid(client, customer_id, create_order, auth_headers):
    order = await create_order(customer_id)

    response = await client.get(f"/api/v1/payments/orders/{order.id}", headers=auth_headers(customer_id))

    assert response.status_code == 200
    assert response.json()["paymentState"] == "unpaid"
    assert response.json()["payments"] == []


async def test_order_payments_of_foreign_order(client, customer_id, create_order, auth_headers):
    order = await create_order(customer_id)

    response = await client.get(f"/api/v1/payments/orders/{order.id}", headers=auth_headers(uuid.uuid4()))

    assert response.status_code == 404


async def test_admin_lists_all_payments(client, customer_id, create_order, create_payment, auth_headers):
    first_order = await create_order(customer_id)
    second_order = await create_order(uuid.uuid4(), status="processing")
    now = datetime.utcnow()
    await create_payment(first_order, transaction_id="tx_old", created_at=now - timedelta(hours=1))
    await create_payment(second_order, transaction_id="tx_new", status="success", created_at=now)

    response = await client.get("/api/v1/admin/payments", headers=auth_headers(uuid.uuid4(), role="admin"))

    assert response.status_code == 200
    body = response.json()
    assert [p["transactionId"] for p in body] == ["tx_new", "tx_old"]
    assert body[0]["orderStatus"] == "processing"
    assert body[0]["orderId"] == str(second_order.id)


async def test_admin_list_requires_admin_role(client, customer_id, auth_headers):
    response = await client.get("/api/v1/admin/payments", headers=auth_headers(customer_id))

    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "Insufficient permissions"}


async def test_malformed_app_metadata_is_not_admin(client, customer_id, auth_headers):
    headers = auth_headers(customer_id, extra_claims={"app_metadata": ["admin"]})

    response = await client.get("/api/v1/admin/payments", headers=headers)

    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "Insufficient permissions"}

import hashlib
import hmac
import httpx
import json
import pytest
import time
from decimal import Decimal
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.config import settings
from carbly.models.contract import Contract
from carbly.models.organization import Organization
from carbly.models.payment import Payment
from carbly.models.team import Team
from carbly.services import storage_service, yousign_service
from carbly.services.contract_service import GENERATE_CONTRACT_TASK
from carbly.services.notification_service import SEND_EMAIL_TASK

STRIPE_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    monkeypatch.setattr(settings, "YOUSIGN_WEBHOOK_SECRET", "")

def stripe_headers(payload: str, secret: str = STRIPE_SECRET):
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}

async def post_stripe_event(client: AsyncClient, event: dict, secret: str = STRIPE_SECRET):
    payload = json.dumps(event)
    return await client.post("/webhooks/stripe", content=payload, headers=stripe_headers(payload, secret))

def checkout_completed(reservation, session_id="cs_test_1", amount_total=7500, payment_type="deposit", fee="1.50"):
    return {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "mode": "payment",
            "amount_total": amount_total,
            "payment_intent": f"pi_{session_id}",
            "metadata": {
                "reservation_id": str(reservation.id),
                "payment_type": payment_type,
                "fee": fee,
            },
        }},
    }

async def payments_of(db: AsyncSession, reservation):
    result = await db.execute(select(Payment).filter(Payment.reservation_id == reservation.id))
    return result.scalars().all()

# --- Stripe ---

@pytest.mark.asyncio
async def test_deposit_checkout_records_payment_once(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, sent_tasks
):
    reservation = await make_reservation(status="pending_payment", deposit_amount=Decimal("75.00"))
    event = checkout_completed(reservation)

    response = await post_stripe_event(test_client, event)

    assert response.status_code == 200
    assert response.json() == {"received": True, "result": "recorded"}
    await db_session.refresh(reservation)
    assert reservation.status == "paid"
    payments = await payments_of(db_session, reservation)
    assert len(payments) == 1
    assert payments[0].amount == Decimal("75.00")
    assert payments[0].fee == Decimal("1.50")
    assert payments[0].type == "deposit"
    assert payments[0].status == "succeeded"
    assert payments[0].stripe_payment_intent_id == "pi_cs_test_1"
    # A deposit does not trigger the contract
    assert [name for name, _ in sent_tasks] == [SEND_EMAIL_TASK]

    response = await post_stripe_event(test_client, event)

    assert response.json() == {"received": True, "result": "duplicate"}
    assert len(await payments_of(db_session, reservation)) == 1
    assert len(sent_tasks) == 1

@pytest.mark.asyncio
async def test_total_checkout_queues_contract(test_client: AsyncClient, db_session: AsyncSession, make_reservation, sent_tasks):
    reservation = await make_reservation(status="pending_payment")

    response = await post_stripe_event(
        test_client, checkout_completed(reservation, amount_total=25000, payment_type="total", fee="2.50")
    )

    assert response.json()["result"] == "recorded"
    assert (GENERATE_CONTRACT_TASK, [str(reservation.id)]) in sent_tasks

@pytest.mark.asyncio
async def test_deposit_covering_total_queues_contract(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, sent_tasks
):
    reservation = await make_reservation(status="pending_payment", deposit_amount=Decimal("250.00"))

    response = await post_stripe_event(
        test_client, checkout_completed(reservation, amount_total=25000, payment_type="deposit", fee="2.50")
    )

    assert response.json()["result"] == "recorded"
    assert (GENERATE_CONTRACT_TASK, [str(reservation.id)]) in sent_tasks
    payments = await payments_of(db_session, reservation)
    assert [p.type for p in payments] == ["deposit"]

@pytest.mark.asyncio
async def test_balance_checkout_completes_pending_payment(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment
):
    reservation = await make_reservation(status="confirmed", deposit_amount=Decimal("75.00"))
    await make_payment(reservation, "75", type="deposit", stripe_payment_intent_id="pi_deposit")
    pending = await make_payment(
        reservation, "175", type="balance", status="pending", fee=Decimal("1.75"), stripe_checkout_session_id="cs_balance"
    )

    response = await post_stripe_event(
        test_client, checkout_completed(reservation, session_id="cs_balance", amount_total=17500, payment_type="balance")
    )

    assert response.json()["result"] == "recorded"
    await db_session.refresh(pending)
    assert pending.status == "succeeded"
    assert pending.stripe_payment_intent_id == "pi_cs_balance"
    assert pending.paid_at is not None
    assert len(await payments_of(db_session, reservation)) == 2
    await db_session.refresh(reservation)
    assert reservation.status == "confirmed"

@pytest.mark.asyncio
async def test_balance_paid_through_earlier_session(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment
):
    reservation = await make_reservation(status="confirmed", deposit_amount=Decimal("75.00"))
    await make_payment(reservation, "75", type="deposit", stripe_payment_intent_id="pi_deposit")
    # The customer opened a second checkout, then paid the first one
    pending = await make_payment(
        reservation, "175", type="balance", status="pending", fee=Decimal("1.75"), stripe_checkout_session_id="cs_balance_2"
    )

    response = await post_stripe_event(
        test_client, checkout_completed(reservation, session_id="cs_balance_1", amount_total=17500, payment_type="balance")
    )

    assert response.json()["result"] == "recorded"
    await db_session.refresh(pending)
    assert pending.status == "succeeded"
    assert pending.stripe_checkout_session_id == "cs_balance_1"
    assert pending.stripe_payment_intent_id == "pi_cs_balance_1"
    assert len(await payments_of(db_session, reservation)) == 2

    response = await post_stripe_event(
        test_client, checkout_completed(reservation, session_id="cs_balance_1", amount_total=17500, payment_type="balance")
    )
    assert response.json()["result"] == "duplicate"

@pytest.mark.asyncio
async def test_expired_checkout_fails_pending_payment(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment
):
    reservation = await make_reservation(status="confirmed")
    pending = await make_payment(reservation, "175", type="balance", status="pending", stripe_checkout_session_id="cs_gone")

    response = await post_stripe_event(test_client, {
        "id": "evt_expired",
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_gone"}},
    })

    assert response.json()["result"] == "failed"
    await db_session.refresh(pending)
    assert pending.status == "failed"

@pytest.mark.asyncio
async def test_checkout_for_unknown_reservation_is_ignored(test_client: AsyncClient):
    response = await post_stripe_event(test_client, {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_x", "mode": "payment", "metadata": {"reservation_id": "not-a-uuid"}}},
    })

    assert response.status_code == 200
    assert response.json()["result"] == "ignored"

@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged(test_client: AsyncClient):
    response = await post_stripe_event(test_client, {"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.json() == {"received": True, "result": "ignored"}

@pytest.mark.asyncio
async def test_bad_stripe_signature_is_rejected(test_client: AsyncClient, db_session: AsyncSession, make_reservation):
    reservation = await make_reservation(status="pending_payment")

    response = await post_stripe_event(test_client, checkout_completed(reservation), secret="whsec_wrong")

    assert response.status_code == 400
    await db_session.refresh(reservation)
    assert reservation.status == "pending_payment"
    assert await payments_of(db_session, reservation) == []

@pytest.mark.asyncio
async def test_missing_stripe_signature_is_rejected(test_client: AsyncClient):
    response = await test_client.post("/webhooks/stripe", content="{}")

    assert response.status_code == 400

@pytest.mark.asyncio
async def test_account_updated_tracks_onboarding(test_client: AsyncClient, db_session: AsyncSession, team: Team):
    response = await post_stripe_event(test_client, {
        "id": "evt_acct",
        "type": "account.updated",
        "data": {"object": {"id": "acct_test123", "charges_enabled": False, "details_submitted": True}},
    })

    assert response.json()["result"] == "updated"
    await db_session.refresh(team)
    assert team.stripe_connect_onboarded is False

@pytest.mark.asyncio
async def test_subscription_lifecycle(test_client: AsyncClient, db_session: AsyncSession, team: Team, organization: Organization):
    response = await post_stripe_event(test_client, {
        "id": "evt_sub",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_sub",
            "mode": "subscription",
            "subscription": "sub_42",
            "customer": "cus_42",
            "metadata": {"team_id": str(team.id), "plan": "business"},
        }},
    })
    assert response.json()["result"] == "subscribed"
    await db_session.refresh(team)
    await db_session.refresh(organization)
    assert team.plan == "business"
    assert team.subscription_status == "active"
    assert team.stripe_subscription_id == "sub_42"
    assert organization.stripe_customer_id == "cus_42"

    response = await post_stripe_event(test_client, {
        "id": "evt_sub_upd",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_42", "status": "past_due", "metadata": {"plan": "starter"}}},
    })
    assert response.json()["result"] == "updated"
    await db_session.refresh(team)
    assert team.subscription_status == "past_due"
    assert team.plan == "business"

    response = await post_stripe_event(test_client, {
        "id": "evt_sub_del",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_42", "status": "canceled"}},
    })
    assert response.json()["result"] == "canceled"
    await db_session.refresh(team)
    assert team.plan == "free"
    assert team.subscription_status == "canceled"

# --- Yousign ---

@pytest.fixture
def signed_download(monkeypatch):
    uploads = {}

    async def download_signed_document(signature_request_id, document_id):
        return b"%PDF-1.4 signed"

    def upload_file(path, body, content_type="application/pdf"):
        uploads[path] = body
        return f"https://files.carbly.test/{path}"

    monkeypatch.setattr(yousign_service, "download_signed_document", download_signed_document)
    monkeypatch.setattr(storage_service, "upload_file", upload_file)
    return uploads

async def pending_contract(db: AsyncSession, reservation, document_id="doc_1"):
    contract = Contract(
        reservation_id=reservation.id,
        pdf_url="https://files.carbly.test/contract.pdf",
        status="pending_signature",
        signature_request_id="sr_1",
        signature_document_id=document_id,
    )
    db.add(contract)
    await db.commit()
    await db.refresh(contract)
    return contract

def yousign_event(name, documents=None):
    signature_request = {"id": "sr_1", "status": name.split(".")[-1]}
    if documents is not None:
        signature_request["documents"] = documents
    return {"event_name": name, "data": {"signature_request": signature_request}}

@pytest.mark.asyncio
async def test_yousign_done_signs_contract_and_confirms_reservation(
    test_client: AsyncClient, db_session: AsyncSession, team: Team, make_reservation, signed_download, sent_tasks
):
    reservation = await make_reservation(status="paid")
    contract = await pending_contract(db_session, reservation)

    response = await test_client.post(
        "/webhooks/yousign", json=yousign_event("signature_request.done", documents=[{"id": "doc_1"}])
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "result": "signed"}
    await db_session.refresh(contract)
    await db_session.refresh(reservation)
    assert contract.status == "signed"
    assert contract.signed_pdf_url.endswith(f"{reservation.id}-signed.pdf")
    assert reservation.status == "confirmed"
    assert signed_download[f"contracts/{team.id}/{reservation.id}-signed.pdf"] == b"%PDF-1.4 signed"
    assert [name for name, _ in sent_tasks] == [SEND_EMAIL_TASK]

    # Replayed event leaves the signed contract alone
    response = await test_client.post(
        "/webhooks/yousign", json=yousign_event("signature_request.done", documents=[{"id": "doc_1"}])
    )
    assert response.json()["result"] == "signed"
    assert len(sent_tasks) == 1

@pytest.mark.asyncio
async def test_yousign_declined_cancels_reservation(test_client: AsyncClient, db_session: AsyncSession, make_reservation):
    reservation = await make_reservation(status="paid")
    contract = await pending_contract(db_session, reservation)

    response = await test_client.post("/webhooks/yousign", json=yousign_event("signature_request.declined"))

    assert response.json() == {"received": True, "result": "declined"}
    await db_session.refresh(contract)
    await db_session.refresh(reservation)
    assert contract.status == "declined"
    assert reservation.status == "cancelled"
    assert reservation.cancelled_at is not None

@pytest.mark.asyncio
async def test_yousign_processing_error_is_acknowledged(test_client: AsyncClient, db_session: AsyncSession, make_reservation):
    reservation = await make_reservation(status="paid")
    await pending_contract(db_session, reservation, document_id=None)

    response = await test_client.post("/webhooks/yousign", json=yousign_event("signature_request.done", documents=[]))

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": "Document signé introuvable"}

@pytest.mark.asyncio
async def test_yousign_outage_is_acknowledged(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, monkeypatch
):
    def network_down(request: httpx.Request):
        raise httpx.ConnectError("network down", request=request)

    monkeypatch.setattr(settings, "YOUSIGN_API_KEY", "ys_test_key")
    monkeypatch.setattr(
        yousign_service, "_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(network_down))
    )
    reservation = await make_reservation(status="paid")
    contract = await pending_contract(db_session, reservation)

    response = await test_client.post(
        "/webhooks/yousign", json=yousign_event("signature_request.done", documents=[{"id": "doc_1"}])
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": "Yousign: download signed document failed"}
    await db_session.refresh(contract)
    assert contract.status == "pending_signature"

@pytest.mark.asyncio
async def test_yousign_unknown_request_is_ignored(test_client: AsyncClient):
    response = await test_client.post("/webhooks/yousign", json=yousign_event("signature_request.done"))

    assert response.json() == {"received": True, "result": "ignored"}

@pytest.mark.asyncio
async def test_yousign_signature_enforced_when_configured(
    test_client: AsyncClient, db_session: AsyncSession, make_reservation, monkeypatch
):
    monkeypatch.setattr(settings, "YOUSIGN_WEBHOOK_SECRET", "ys_secret")
    reservation = await make_reservation(status="paid")
    await pending_contract(db_session, reservation)
    payload = json.dumps(yousign_event("signature_request.expired")).encode()

    response = await test_client.post("/webhooks/yousign", content=payload)
    assert response.status_code == 400

    digest = hmac.new(b"ys_secret", payload, hashlib.sha256).hexdigest()
    response = await test_client.post(
        "/webhooks/yousign", content=payload, headers={"X-Yousign-Signature-256": f"sha256={digest}"}
    )
    assert response.status_code == 200
    assert response.json()["result"] == "expired"

@pytest.mark.asyncio
async def test_yousign_malformed_body(test_client: AsyncClient):
    response = await test_client.post("/webhooks/yousign", content=b"not json")

    assert response.status_code == 400

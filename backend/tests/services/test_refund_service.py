import uuid
from decimal import Decimal

from carbly.models.payment import Payment
from carbly.services.refund_service import distribute_refund


def _payment(amount, fee="0", intent="pi_x"):
    return Payment(
        id=uuid.uuid4(),
        amount=Decimal(amount),
        fee=Decimal(fee),
        stripe_payment_intent_id=intent,
    )

def test_refund_split_in_proportion_to_payments():
    deposit = _payment("60", intent="pi_deposit")
    balance = _payment("40", intent="pi_balance")

    shares = distribute_refund(Decimal("50"), [deposit, balance])

    assert [(s.payment_intent_id, s.amount_cents) for s in shares] == [
        ("pi_deposit", 3000),
        ("pi_balance", 2000),
    ]
    assert shares[0].payment_id == str(deposit.id)

def test_refund_gives_back_the_same_share_of_platform_fees():
    shares = distribute_refund(Decimal("50"), [
        _payment("60", fee="1.50", intent="pi_a"),
        _payment("40", fee="1.50", intent="pi_b"),
    ])

    # 50 * 0.6 + 1.50 * 0.6 and 50 * 0.4 + 1.50 * 0.4
    assert [s.amount_cents for s in shares] == [3090, 2060]

def test_single_payment_full_refund():
    shares = distribute_refund(Decimal("250"), [_payment("250")])

    assert len(shares) == 1
    assert shares[0].amount_cents == 25000

def test_shares_are_rounded_independently():
    shares = distribute_refund(Decimal("10"), [
        _payment("1", intent="pi_1"),
        _payment("1", intent="pi_2"),
        _payment("1", intent="pi_3"),
    ])

    assert [s.amount_cents for s in shares] == [333, 333, 333]

def test_payments_without_intent_get_no_share():
    shares = distribute_refund(Decimal("50"), [
        _payment("50", intent="pi_card"),
        _payment("50", intent=None),
    ])

    assert len(shares) == 1
    assert shares[0].amount_cents == 2500

def test_nothing_to_refund():
    assert distribute_refund(Decimal("0"), [_payment("100")]) == []
    assert distribute_refund(Decimal("20"), []) == []
    assert distribute_refund(Decimal("20"), [_payment("0")]) == []

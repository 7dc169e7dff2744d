import re
from datetime import datetime

import pytest

from domain.common.exceptions import DomainValidationException
from domain.order.numbering import generate_order_no, generate_out_refund_no, generate_out_trade_no


def test_order_no_layout():
    order_no = generate_order_no("shop1", now=datetime(2024, 1, 2, 10, 30))
    assert re.fullmatch(r"SHOP120240102\d{10}", order_no)


def test_order_no_requires_tenant():
    with pytest.raises(DomainValidationException):
        generate_order_no("  ")


def test_trade_numbers_fit_gateway_limit():
    trade_no = generate_out_trade_no()
    refund_no = generate_out_refund_no()
    assert trade_no.startswith("WX") and len(trade_no.encode()) <= 32
    assert refund_no.startswith("RF") and len(refund_no.encode()) <= 32
    assert re.fullmatch(r"[0-9a-zA-Z]+", trade_no)

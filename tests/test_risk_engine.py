"""风险评估单元测试。"""

import pytest

from codguard.models.schemas import Order, OrderStatus, RiskLevel
from codguard.services.risk_engine import (
    DEFAULT_RULES,
    RiskRules,
    evaluate_risk,
    is_cod,
    level_for_score,
    load_rules,
)

FULL_ADDRESS = {
    "address_detail": "12 Le Loi",
    "ward": "Ben Nghe",
    "district": "Quan 1",
    "province": "Ho Chi Minh",
}


def _order(**overrides) -> Order:
    data = {
        "id": 0,
        "order_id": "ORD1",
        "owner_id": 1,
        "customer_name": "Nguyen Van A",
        "phone": "0901234567",
        "phone_normalized": "0901234567",
        "amount": 100_000,
        "payment_method": "COD",
    }
    data.update(FULL_ADDRESS)
    data.update(overrides)
    return Order(**data)


def _past(id: int, status: OrderStatus) -> Order:
    return _order(id=id, order_id=f"PAST{id}", status=status)


def _codes(assessment) -> list:
    return [r.code for r in assessment.reasons]


class TestScenarios:

    def test_high_amount_full_address(self):
        result = evaluate_risk(_order(amount=1_200_000))
        assert result.score == 35
        assert result.level == RiskLevel.MEDIUM
        assert _codes(result) == ["COD_BASE", "AMOUNT_HIGH"]

    def test_vague_detail_only_address(self):
        order = _order(amount=300_000, address_detail="Nhà số 5", ward=None, district=None, province=None)
        result = evaluate_risk(order)
        assert result.score == 35
        assert result.level == RiskLevel.MEDIUM
        assert _codes(result) == ["COD_BASE", "ADDRESS_VAGUE"]

    def test_prepaid_not_scored(self):
        result = evaluate_risk(_order(payment_method="BANK_TRANSFER", amount=5_000_000))
        assert result.score is None
        assert result.level == RiskLevel.NONE
        assert result.reasons == ()

    def test_blacklisted_floor(self):
        result = evaluate_risk(_order(amount=100_000), blacklist={"0901234567"})
        assert result.score == 85
        assert result.level == RiskLevel.HIGH
        assert _codes(result)[-1] == "BLACKLIST_OVERRIDE"

    def test_clean_cod_order_low(self):
        result = evaluate_risk(_order())
        assert result.score == 10
        assert result.level == RiskLevel.LOW
        assert result.reasons[0].description == "COD Order (+10)"


class TestAmountRule:

    @pytest.mark.parametrize("amount, code", [
        (499_999, None),
        (500_000, "AMOUNT_MEDIUM"),
        (999_999, "AMOUNT_MEDIUM"),
        (1_000_000, "AMOUNT_HIGH"),
    ])
    def test_thresholds(self, amount, code):
        codes = _codes(evaluate_risk(_order(amount=amount)))
        if code is None:
            assert not any(c.startswith("AMOUNT_") for c in codes)
        else:
            assert code in codes

    def test_monotonic_in_amount(self):
        amounts = [1, 100_000, 499_999, 500_000, 750_000, 1_000_000, 10_000_000]
        scores = [evaluate_risk(_order(amount=a)).score for a in amounts]
        assert scores == sorted(scores)


class TestProductRule:

    def test_electronics_vietnamese(self):
        result = evaluate_risk(_order(product="Nồi chiên không dầu 5L"))
        assert "PRODUCT_ELECTRONICS" in _codes(result)
        assert result.score == 30

    def test_electronics_case_insensitive(self):
        assert "PRODUCT_ELECTRONICS" in _codes(evaluate_risk(_order(product="Bluetooth SPEAKER")))

    def test_fashion(self):
        result = evaluate_risk(_order(product="Áo thun nam"))
        assert "PRODUCT_FASHION" in _codes(result)
        assert result.score == 20

    def test_electronics_wins_over_fashion(self):
        codes = _codes(evaluate_risk(_order(product="Phone bag")))
        assert "PRODUCT_ELECTRONICS" in codes
        assert "PRODUCT_FASHION" not in codes

    def test_unknown_product(self):
        assert _codes(evaluate_risk(_order(product="Kẹo dừa"))) == ["COD_BASE"]

    def test_custom_rules(self):
        rules = RiskRules(electronics_keywords=("drone",), fashion_keywords=(), address_keywords=())
        assert "PRODUCT_ELECTRONICS" in _codes(evaluate_risk(_order(product="Mini DRONE"), rules=rules))
        assert "PRODUCT_ELECTRONICS" not in _codes(evaluate_risk(_order(product="Laptop"), rules=rules))


class TestAddressRule:

    def test_full_structured_no_penalty(self):
        assert not any(c.startswith("ADDRESS_") for c in _codes(evaluate_risk(_order())))

    def test_detail_without_admin_keywords(self):
        order = _order(address_detail="123 Nguyen Trai street Hanoi", ward=None, district=None, province=None)
        assert "ADDRESS_UNSTRUCTURED" in _codes(evaluate_risk(order))

    def test_detail_with_admin_keyword(self):
        order = _order(address_detail="12 Le Loi, Phường Bến Nghé", ward=None, district=None, province=None)
        assert not any(c.startswith("ADDRESS_") for c in _codes(evaluate_risk(order)))

    def test_partial_structure_incomplete(self):
        order = _order(district=None, province=None)
        assert "ADDRESS_INCOMPLETE" in _codes(evaluate_risk(order))

    def test_empty_address_incomplete(self):
        order = _order(address_detail=None, ward=None, district=None, province=None)
        result = evaluate_risk(order)
        assert "ADDRESS_INCOMPLETE" in _codes(result)
        assert result.score == 25

    def test_free_text_address_used_when_unstructured(self):
        order = _order(address_detail=None, ward=None, district=None, province=None, address="Nhà số 5")
        assert "ADDRESS_VAGUE" in _codes(evaluate_risk(order))

    def test_exactly_one_address_reason(self):
        order = _order(address_detail="abc", ward=None, district="Quan 1", province=None)
        codes = [c for c in _codes(evaluate_risk(order)) if c.startswith("ADDRESS_")]
        assert codes == ["ADDRESS_INCOMPLETE"]


class TestHistoryRule:

    def test_one_failure(self):
        past = [_past(1, OrderStatus.CUSTOMER_CANCELLED), _past(2, OrderStatus.COMPLETED)]
        result = evaluate_risk(_order(id=10), past)
        assert "HISTORY_PREVIOUS_FAILURE" in _codes(result)
        assert result.score == 20

    def test_repeated_failures(self):
        past = [
            _past(1, OrderStatus.CUSTOMER_CANCELLED),
            _past(2, OrderStatus.ORDER_REJECTED),
            _past(3, OrderStatus.CUSTOMER_CANCELLED),
        ]
        result = evaluate_risk(_order(id=10), past)
        assert "HISTORY_REPEATED_FAILURES" in _codes(result)
        assert result.score == 40

    def test_successful_history_ignored(self):
        past = [_past(1, OrderStatus.COMPLETED), _past(2, OrderStatus.DELIVERING)]
        assert _codes(evaluate_risk(_order(id=10), past)) == ["COD_BASE"]

    def test_order_itself_excluded(self):
        past = [_past(10, OrderStatus.ORDER_REJECTED)]
        assert _codes(evaluate_risk(_order(id=10), past)) == ["COD_BASE"]


class TestProperties:

    def test_score_clamped_to_100(self):
        order = _order(
            amount=2_000_000, product="Laptop",
            address_detail="Nhà số 5", ward=None, district=None, province=None,
        )
        past = [_past(i, OrderStatus.CUSTOMER_CANCELLED) for i in range(1, 4)]
        result = evaluate_risk(order, past)
        assert result.score == 100
        assert result.level == RiskLevel.HIGH

    def test_blacklist_never_lowers(self):
        order = _order(
            amount=2_000_000, product="Laptop",
            address_detail="Nhà số 5", ward=None, district=None, province=None,
        )
        assert evaluate_risk(order, blacklist={"0901234567"}).score == 100

    def test_blacklist_matches_normalized_phone(self):
        order = _order(phone="+84 901 234 567", phone_normalized="")
        assert evaluate_risk(order, blacklist={"0901234567"}).score == 85

    def test_referentially_transparent(self):
        order = _order(amount=750_000, product="Áo khoác")
        past = [_past(1, OrderStatus.CUSTOMER_CANCELLED)]
        assert evaluate_risk(order, past) == evaluate_risk(order, past)

    def test_empty_payment_method_is_cod(self):
        assert evaluate_risk(_order(payment_method=None)).score == 10
        assert is_cod("")
        assert is_cod("cod")
        assert not is_cod("MOMO")


class TestLevels:

    @pytest.mark.parametrize("score, level", [
        (0, RiskLevel.LOW),
        (30, RiskLevel.LOW),
        (31, RiskLevel.MEDIUM),
        (70, RiskLevel.MEDIUM),
        (71, RiskLevel.HIGH),
        (100, RiskLevel.HIGH),
    ])
    def test_boundaries(self, score, level):
        assert level_for_score(score) == level


class TestLoadRules:

    def test_defaults(self, monkeypatch):
        for var in ("RISK_ELECTRONICS_KEYWORDS", "RISK_FASHION_KEYWORDS", "RISK_ADDRESS_KEYWORDS"):
            monkeypatch.delenv(var, raising=False)
        assert load_rules() == DEFAULT_RULES

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RISK_ELECTRONICS_KEYWORDS", "Drone, Máy Bay ")
        rules = load_rules()
        assert rules.electronics_keywords == ("drone", "máy bay")

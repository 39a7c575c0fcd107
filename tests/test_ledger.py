import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from budget_tracker.core.models import MonthlyIncome, Withdrawal
from budget_tracker.infrastructure.database.repositories import (
    MonthlyIncomeRepository,
    PositionRepository,
    WithdrawalRepository,
)
from budget_tracker.services.ledger import (
    MonthlyIncomeService,
    PositionService,
    WithdrawalService,
    generate_manual_id,
    month_range,
)
from conftest import make_position


def test_month_range_covers_whole_month():
    start, end = month_range(2024, 12)
    assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
    assert end < datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert end > datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def test_manual_id_format():
    parts = generate_manual_id("position").split("_")
    assert parts[:2] == ["manual", "position"]
    assert parts[2].isdigit()
    assert len(parts[3]) == 8


def test_position_totals(db):
    service = PositionService(PositionRepository(db))
    service.save(make_position("1", exchange="bybit", closed_pnl="100", when=datetime(2024, 1, 31, 23, 59, tzinfo=timezone.utc)))
    service.save(make_position("2", exchange="mexc", closed_pnl="-30", when=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    service.save(make_position("3", exchange="bybit", closed_pnl="7", when=datetime(2024, 2, 1, tzinfo=timezone.utc)))

    assert service.total_pnl() == Decimal("77")
    assert service.total_pnl("bybit") == Decimal("107")
    assert service.monthly_pnl(2024, 1) == Decimal("70")
    assert service.monthly_pnl(2024, 1, "mexc") == Decimal("-30")
    assert service.monthly_pnl(2024, 3) == Decimal("0")


def test_manual_position_without_external_id_gets_one(db):
    service = PositionService(PositionRepository(db))
    saved = service.save(make_position(""))

    assert saved.external_id.startswith("manual_position_")
    assert saved.id is not None


def test_generate_and_delete_test_positions(db):
    repo = PositionRepository(db)
    service = PositionService(repo, rng=random.Random(7))
    service.save(make_position("real"))

    assert service.generate_test_positions(25) == 25
    generated = [p for p in repo.find_all() if p.external_id.startswith("test_position_")]
    assert len(generated) == 25
    now = datetime.now(timezone.utc)
    for position in generated:
        assert position.exchange in ("bybit", "mexc")
        assert 1 <= position.leverage <= 20
        assert now - position.updated_at < timedelta(days=181)

    assert service.delete_test_positions() == 25
    assert [p.external_id for p in repo.find_all()] == ["real"]


def test_withdrawal_totals(db):
    service = WithdrawalService(WithdrawalRepository(db))
    when = datetime(2024, 4, 2, tzinfo=timezone.utc)
    service.save(Withdrawal(exchange="bybit", amount=Decimal("100"), currency="USDT", created_at=when))
    service.save(Withdrawal(exchange="mexc", amount=Decimal("20.5"), currency="USDT", created_at=when))

    assert service.total_withdrawals() == Decimal("120.5")
    assert service.total_withdrawals("mexc") == Decimal("20.5")
    assert len(service.list_between(when, when)) == 2


def test_income_totals(db):
    service = MonthlyIncomeService(MonthlyIncomeRepository(db))
    service.save(MonthlyIncome(exchange="bybit", amount=Decimal("500"), pnl=Decimal("50"),
                               created_at=datetime(2024, 5, 31, tzinfo=timezone.utc)))
    service.save(MonthlyIncome(exchange="bybit", amount=Decimal("300"), pnl=Decimal("10"),
                               created_at=datetime(2024, 6, 1, tzinfo=timezone.utc)))

    assert service.total_income() == Decimal("800")
    assert service.monthly_income_total(2024, 5) == Decimal("500")
    assert service.monthly_income_total(2024, 6, "mexc") == Decimal("0")

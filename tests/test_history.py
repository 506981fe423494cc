"""History windows and sparkline path derivation."""

from conftest import make_market
from marketsync.models import PricePoint
from marketsync.sync import HistorySummarizer, generate_sparkline_path


def _points(*prices):
    return [PricePoint(yes_price=p, no_price=1 - p, timestamp=i) for i, p in enumerate(prices)]


def test_window_is_capped_fifo():
    history = HistorySummarizer(window=10)
    for i in range(11):
        history.ingest([make_market("a", 0.5, last_updated=i)])
    window = history.window("id-a")
    assert len(window) == 10
    assert [p.timestamp for p in window] == list(range(1, 11))


def test_ingest_records_yes_no_and_timestamp_per_market():
    history = HistorySummarizer()
    history.ingest([make_market("a", 0.3, last_updated=5), make_market("b", 0.9, last_updated=5)])
    assert history.window("id-a") == [PricePoint(yes_price=0.3, no_price=0.7, timestamp=5)]
    assert sorted(history.market_pks()) == ["id-a", "id-b"]
    assert history.window("id-c") == []


def test_backfill_respects_cap():
    history = HistorySummarizer(window=3)
    history.backfill({"id-a": _points(0.1, 0.2, 0.3, 0.4)})
    assert [p.yes_price for p in history.window("id-a")] == [0.2, 0.3, 0.4]


def test_flat_line_with_fewer_than_two_samples():
    assert generate_sparkline_path(None).path == "M0,15 L60,15"
    single = generate_sparkline_path(_points(0.7))
    assert single.path == "M0,15 L60,15"
    assert single.is_positive is True
    assert generate_sparkline_path([], width=100, height=40).path == "M0,20 L100,20"


def test_equal_endpoints_are_positive():
    spark = generate_sparkline_path(_points(0.3, 0.3))
    assert spark.is_positive is True
    # zero range: epsilon keeps the line at the bottom of the padded box
    assert spark.path == "M0,26 Q15,26 30,26 T60,26"


def test_rising_and_falling_paths():
    rising = generate_sparkline_path(_points(0.2, 0.4))
    assert rising.path == "M0,26 Q15,26 30,15 T60,4"
    assert rising.is_positive is True
    falling = generate_sparkline_path(_points(0.4, 0.2))
    assert falling.path == "M0,4 Q15,4 30,15 T60,26"
    assert falling.is_positive is False


def test_trend_is_first_versus_last_of_window():
    spark = generate_sparkline_path(_points(0.5, 0.9, 0.1, 0.5))
    assert spark.is_positive is True
    assert spark.path.startswith("M0,")
    assert spark.path.count("Q") == 3
    assert spark.path.endswith("T60,15")


def test_summary_uses_current_window():
    history = HistorySummarizer(window=2)
    for price in (0.9, 0.2, 0.3):
        history.ingest([make_market("a", price, last_updated=1)])
    assert history.summary("id-a").is_positive is True
    assert history.summary("id-missing").path == "M0,15 L60,15"


def test_same_condition_id_from_two_sources_keeps_two_windows():
    history = HistorySummarizer()
    polymarket = make_market("a", 0.2, last_updated=1)
    kalshi = make_market("a", 0.8, last_updated=1, source="kalshi").model_copy(update={"id": "id-a-kalshi"})
    history.ingest([polymarket, kalshi])
    assert polymarket.market_id == kalshi.market_id
    assert [p.yes_price for p in history.window("id-a")] == [0.2]
    assert [p.yes_price for p in history.window("id-a-kalshi")] == [0.8]

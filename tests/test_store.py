from kafka_exporter.services.store import (
    ETA_NOT_APPLICABLE, ETA_UNAVAILABLE, RATE_UNAVAILABLE, ConsumptionState, RateEstimator
)


def test_first_scrape_reports_unavailable():
    est = RateEstimator()
    r = est.update("g1", "t1", 1000, now=100.0)
    assert r.rate == RATE_UNAVAILABLE
    assert r.eta == ETA_UNAVAILABLE
    assert not r.available
    assert r.label_values() == ("-1.0", "-2", "0")


def test_first_scrape_still_stores_baseline():
    est = RateEstimator()
    est.update("g1", "t1", 1000, now=100.0)
    assert est.baseline("g1", "t1") == 1000


def test_rate_and_eta_from_two_scrapes():
    est = RateEstimator()
    est.update("g1", "t1", 1000, now=0.0)
    est.mark_scrape(0.0)
    r = est.update("g1", "t1", 1500, now=50.0)
    assert r.rate == 10.0
    assert r.eta == 150.0
    assert r.elapsed == 50.0
    assert r.label_values() == ("10.0", "150", "50")


def test_rewind_gives_zero_rate_and_no_eta():
    est = RateEstimator()
    est.update("g1", "t1", 1500, now=0.0)
    est.mark_scrape(0.0)
    r = est.update("g1", "t1", 1200, now=30.0)
    assert r.rate == 0.0
    assert r.eta == ETA_NOT_APPLICABLE
    assert est.baseline("g1", "t1") == 1200


def test_no_progress_is_not_negative():
    est = RateEstimator()
    est.update("g1", "t1", 700, now=0.0)
    est.mark_scrape(0.0)
    r = est.update("g1", "t1", 700, now=15.0)
    assert (r.rate, r.eta) == (0.0, ETA_NOT_APPLICABLE)


def test_topics_of_one_group_do_not_share_baselines():
    est = RateEstimator()
    est.update("g1", "t1", 1000, now=0.0)
    est.update("g1", "t2", 10, now=0.0)
    est.update("g2", "t1", 5, now=0.0)
    est.mark_scrape(0.0)

    r1 = est.update("g1", "t1", 1100, now=10.0)
    r2 = est.update("g1", "t2", 30, now=10.0)
    r3 = est.update("g2", "t1", 5, now=10.0)

    assert r1.rate == 10.0
    assert r2.rate == 2.0
    assert r3.rate == 0.0
    assert est.baseline("g1", "t1") == 1100
    assert est.baseline("g1", "t2") == 30
    assert est.baseline("g2", "t1") == 5


def test_unseen_key_after_first_scrape_counts_from_zero():
    est = RateEstimator()
    est.mark_scrape(0.0)
    r = est.update("g9", "t9", 400, now=20.0)
    assert r.rate == 20.0
    assert r.eta == 20.0


def test_timestamp_only_moves_on_mark_scrape():
    state = ConsumptionState()
    est = RateEstimator(state)
    est.update("g1", "t1", 1, now=5.0)
    est.update("g1", "t2", 1, now=6.0)
    assert state.last_scrape is None
    est.mark_scrape(7.0)
    assert state.last_scrape == 7.0


def test_zero_elapsed_is_unavailable():
    est = RateEstimator()
    est.update("g1", "t1", 100, now=0.0)
    est.mark_scrape(10.0)
    r = est.update("g1", "t1", 200, now=10.0)
    assert r.rate == RATE_UNAVAILABLE
    assert r.eta == ETA_UNAVAILABLE

"""Tests for the per-location stock resolution."""
from datetime import timedelta

import pytest

from conftest import NOW, ago
from inventario.services.records import StockDataset
from inventario.services.stock_resolver import (
    DEFAULT_FRESHNESS_WINDOW,
    CoveragePolicy,
    ResolverConfig,
    StockMethod,
    method_priority,
    resolve,
)


def _count(cid, loc, when, estado="completed", **extra):
    return {"id": cid, "location_id": loc, "estado": estado, "fecha_completado": when, **extra}


def _detail(cid, pid, fisica=None, sistema=None, contado=True):
    return {"conteo_id": cid, "producto_id": pid, "cantidad_fisica": fisica,
            "cantidad_sistema": sistema, "contado": contado}


def _move(mid, origen, destino, confirmed, estado="completed", created=None):
    return {"id": mid, "origen_id": origen, "destino_id": destino, "estado": estado,
            "fecha_creacion": created, "fecha_confirmacion": confirmed}


# ------------------------------------------------------------------
# reference scenarios
# ------------------------------------------------------------------

def test_old_count_plus_outgoing_movement_is_computed(scenario_dataset):
    res = resolve("P1", "L1", scenario_dataset, NOW)
    assert res.method is StockMethod.COMPUTED
    assert res.quantity == 20
    assert res.reference_date == ago(days=3)
    assert res.age_days == 3
    assert res.salidas == 5
    assert res.entradas == 0
    assert res.count_id == "C1"


def test_recent_count_ignores_later_movements():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(hours=2))],
        count_details=[_detail("C1", "P1", fisica=10)],
        movements=[_move("M1", "L9", "L1", ago(hours=1))],
        movement_details=[{"movimiento_id": "M1", "producto_id": "P1", "cantidad_recibida": 4}],
    )
    res = resolve("P1", "L1", ds, NOW)
    assert res.method is StockMethod.RECENT_COUNT
    assert res.quantity == 10
    assert res.age_days == 0


def test_no_count_falls_back_to_baseline(scenario_dataset):
    res = resolve("P2", "L2", scenario_dataset, NOW)
    assert res.method is StockMethod.NO_COUNT
    assert res.quantity == 7
    assert res.reference_date is None
    assert res.age_days is None


def test_no_count_without_baseline_is_zero():
    res = resolve("PX", "LX", StockDataset(), NOW)
    assert res.method is StockMethod.NO_COUNT
    assert res.quantity == 0


# ------------------------------------------------------------------
# count selection
# ------------------------------------------------------------------

def test_most_recent_eligible_count_wins():
    ds = StockDataset(
        counts=[
            _count("OLD", "L1", ago(days=10)),
            _count("NEW", "L1", ago(days=5), estado="partially-completed"),
            _count("PEND", "L1", ago(days=1), estado="pending"),
            _count("CANC", "L1", ago(days=1), estado="cancelled"),
            _count("OTHER", "L2", ago(days=1)),
        ],
        count_details=[
            _detail("OLD", "P1", fisica=1),
            _detail("NEW", "P1", fisica=2),
            _detail("PEND", "P1", fisica=3),
            _detail("CANC", "P1", fisica=4),
            _detail("OTHER", "P1", fisica=5),
        ],
    )
    res = resolve("P1", "L1", ds, NOW)
    assert res.count_id == "NEW"
    assert res.quantity == 2


def test_count_without_detail_for_product_is_ignored():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(days=5)), _count("C2", "L1", ago(days=2))],
        count_details=[_detail("C1", "P1", fisica=8), _detail("C2", "P2", fisica=1)],
    )
    assert resolve("P1", "L1", ds, NOW).count_id == "C1"


def test_count_without_any_date_is_not_eligible():
    ds = StockDataset(
        counts=[{"id": "C1", "location_id": "L1", "estado": "completed"}],
        count_details=[_detail("C1", "P1", fisica=8)],
        baselines=[{"product_id": "P1", "location_id": "L1", "quantity": 3}],
    )
    res = resolve("P1", "L1", ds, NOW)
    assert res.method is StockMethod.NO_COUNT
    assert res.quantity == 3


def test_scheduled_date_used_when_not_completed():
    ds = StockDataset(
        counts=[{"id": "C1", "location_id": "L1", "estado": "COMPLETADO", "fecha_programada": ago(days=4)}],
        count_details=[_detail("C1", "P1", sistema=6)],
    )
    res = resolve("P1", "L1", ds, NOW)
    assert res.reference_date == ago(days=4)
    assert res.quantity == 6


def test_tied_counts_keep_first_in_dataset_order():
    when = ago(days=3)
    ds = StockDataset(
        counts=[_count("A", "L1", when), _count("B", "L1", when)],
        count_details=[_detail("A", "P1", fisica=1), _detail("B", "P1", fisica=2)],
    )
    assert resolve("P1", "L1", ds, NOW).count_id == "A"


# ------------------------------------------------------------------
# movements
# ------------------------------------------------------------------

class TestMovementScan:
    def _dataset(self, movements, details):
        return StockDataset(
            counts=[_count("C1", "L1", ago(days=5))],
            count_details=[_detail("C1", "P1", fisica=100)],
            movements=movements,
            movement_details=details,
        )

    def test_only_eligible_statuses_count(self):
        ds = self._dataset(
            [
                _move("M1", "X", "L1", ago(days=1), estado="completed"),
                _move("M2", "X", "L1", ago(days=1), estado="partial"),
                _move("M3", "X", "L1", ago(days=1), estado="in-process"),
                _move("M4", "X", "L1", ago(days=1), estado="pending"),
                _move("M5", "X", "L1", ago(days=1), estado="cancelled"),
            ],
            [{"movimiento_id": m, "producto_id": "P1", "cantidad_recibida": 1}
             for m in ("M1", "M2", "M3", "M4", "M5")],
        )
        res = resolve("P1", "L1", ds, NOW)
        assert res.entradas == 3
        assert res.quantity == 103

    def test_movement_at_count_instant_is_excluded(self):
        ds = self._dataset(
            [_move("M1", "L1", "X", ago(days=5)), _move("M2", "L1", "X", ago(days=6))],
            [{"movimiento_id": "M1", "producto_id": "P1", "cantidad_enviada": 7},
             {"movimiento_id": "M2", "producto_id": "P1", "cantidad_enviada": 7}],
        )
        assert resolve("P1", "L1", ds, NOW).quantity == 100

    def test_creation_date_used_without_confirmation(self):
        ds = self._dataset(
            [_move("M1", "L1", "X", None, created=ago(days=1)), _move("M2", "L1", "X", None)],
            [{"movimiento_id": "M1", "producto_id": "P1", "cantidad": 4},
             {"movimiento_id": "M2", "producto_id": "P1", "cantidad": 50}],
        )
        res = resolve("P1", "L1", ds, NOW)
        assert res.salidas == 4
        assert res.quantity == 96

    def test_duplicate_detail_rows_are_summed(self):
        ds = self._dataset(
            [_move("M1", "X", "L1", ago(days=1))],
            [{"movimiento_id": "M1", "producto_id": "P1", "cantidad_recibida": 2},
             {"movimiento_id": "M1", "producto_id": "P1", "cantidad_recibida": 3}],
        )
        assert resolve("P1", "L1", ds, NOW).entradas == 5

    def test_other_products_ignored(self):
        ds = self._dataset(
            [_move("M1", "X", "L1", ago(days=1))],
            [{"movimiento_id": "M1", "producto_id": "P2", "cantidad_recibida": 9}],
        )
        assert resolve("P1", "L1", ds, NOW).quantity == 100

    def test_self_movement_counts_both_ways(self):
        ds = self._dataset(
            [_move("M1", "L1", "L1", ago(days=1))],
            [{"movimiento_id": "M1", "producto_id": "P1", "cantidad_enviada": 5, "cantidad_recibida": 4}],
        )
        res = resolve("P1", "L1", ds, NOW)
        assert (res.entradas, res.salidas, res.quantity) == (4, 5, 99)

    def test_negative_result_not_clamped(self):
        ds = self._dataset(
            [_move("M1", "L1", "X", ago(days=1))],
            [{"movimiento_id": "M1", "producto_id": "P1", "cantidad_enviada": 130}],
        )
        assert resolve("P1", "L1", ds, NOW).quantity == -30


# ------------------------------------------------------------------
# freshness window & config
# ------------------------------------------------------------------

def test_freshness_boundary_is_exclusive():
    ds = StockDataset(
        counts=[_count("C1", "L1", NOW - DEFAULT_FRESHNESS_WINDOW)],
        count_details=[_detail("C1", "P1", fisica=10)],
    )
    res = resolve("P1", "L1", ds, NOW, config=ResolverConfig())
    assert res.method is StockMethod.COMPUTED
    assert res.age_days == 1


def test_custom_freshness_window():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(days=2))],
        count_details=[_detail("C1", "P1", fisica=10)],
    )
    cfg = ResolverConfig(freshness_window=timedelta(days=3))
    assert resolve("P1", "L1", ds, NOW, config=cfg).method is StockMethod.RECENT_COUNT


def test_age_days_is_floored():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(days=2, hours=23))],
        count_details=[_detail("C1", "P1", fisica=10)],
    )
    assert resolve("P1", "L1", ds, NOW).age_days == 2


def test_naive_now_is_taken_as_utc(scenario_dataset):
    naive = NOW.replace(tzinfo=None)
    assert resolve("P1", "L1", scenario_dataset, naive) == resolve("P1", "L1", scenario_dataset, NOW)


def test_now_must_be_datetime(scenario_dataset):
    with pytest.raises(ValueError):
        resolve("P1", "L1", scenario_dataset, "yesterday")


# ------------------------------------------------------------------
# coverage policy
# ------------------------------------------------------------------

def test_uncounted_detail_only_covers_any_detail_policy():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(days=2)), _count("C0", "L1", ago(days=20))],
        count_details=[_detail("C1", "P1", fisica=4, contado=False),
                       _detail("C0", "P1", fisica=9, contado="SI")],
    )
    any_detail = resolve("P1", "L1", ds, NOW, policy=CoveragePolicy.ANY_DETAIL)
    counted = resolve("P1", "L1", ds, NOW, policy=CoveragePolicy.COUNTED)
    assert any_detail.count_id == "C1"
    assert counted.count_id == "C0"
    assert counted.age_days == 20


def test_counted_policy_without_counted_rows_is_no_count():
    ds = StockDataset(
        counts=[_count("C1", "L1", ago(days=2))],
        count_details=[_detail("C1", "P1", fisica=4, contado="NO")],
    )
    assert resolve("P1", "L1", ds, NOW, policy="counted").method is StockMethod.NO_COUNT


# ------------------------------------------------------------------
# properties
# ------------------------------------------------------------------

def test_resolution_is_deterministic(scenario_dataset):
    first = resolve("P1", "L1", scenario_dataset, NOW)
    for _ in range(3):
        assert resolve("P1", "L1", scenario_dataset, NOW) == first


def test_movements_are_additive():
    base = dict(
        counts=[_count("C1", "L1", ago(days=5))],
        count_details=[_detail("C1", "P1", fisica=50)],
    )
    before = resolve("P1", "L1", StockDataset(**base), NOW).quantity
    ds = StockDataset(
        **base,
        movements=[_move("IN", "X", "L1", ago(days=1)), _move("OUT", "L1", "X", ago(days=2))],
        movement_details=[{"movimiento_id": "IN", "producto_id": "P1", "cantidad_recibida": 6},
                          {"movimiento_id": "OUT", "producto_id": "P1", "cantidad_enviada": 11}],
    )
    assert resolve("P1", "L1", ds, NOW).quantity == before + 6 - 11


def test_method_priority_order():
    assert method_priority(StockMethod.RECENT_COUNT) > method_priority(StockMethod.COMPUTED)
    assert method_priority("computed") > method_priority("no_count")


def test_to_dict_uses_report_field_names(scenario_dataset):
    d = resolve("P1", "L1", scenario_dataset, NOW).to_dict()
    assert d["metodo"] == "computed"
    assert d["cantidad"] == 20
    assert d["dias_desde_conteo"] == 3
    assert d["fecha_ultimo_conteo"] == ago(days=3).isoformat()

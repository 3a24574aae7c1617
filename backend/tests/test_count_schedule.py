import pytest

from conftest import NOW, ago
from inventario.services.count_schedule import pending_counts_by_location, products_needing_count
from inventario.services.records import StockDataset


@pytest.fixture
def schedule_dataset():
    """
    L1 holds P1..P4:
    P1 counted 2 days ago, P2 counted 10 days ago, P3 listed but not counted,
    P4 never in a count.  L2 holds P1, counted yesterday.
    """
    return StockDataset(
        locations=[{"id": "L1"}, {"id": "L2"}],
        baselines=[
            {"product_id": pid, "location_id": "L1", "quantity": 1} for pid in ("P1", "P2", "P3", "P4")
        ] + [{"product_id": "P1", "location_id": "L2", "quantity": 1}],
        counts=[
            {"id": "C1", "location_id": "L1", "estado": "completed", "fecha_completado": ago(days=2)},
            {"id": "C2", "location_id": "L1", "estado": "completed", "fecha_completado": ago(days=10)},
            {"id": "C3", "location_id": "L2", "estado": "completed", "fecha_completado": ago(days=1)},
        ],
        count_details=[
            {"conteo_id": "C1", "producto_id": "P1", "cantidad_fisica": 5, "contado": True},
            {"conteo_id": "C1", "producto_id": "P3", "cantidad_sistema": 5, "contado": False},
            {"conteo_id": "C2", "producto_id": "P2", "cantidad_fisica": 5, "contado": "SI"},
            {"conteo_id": "C3", "producto_id": "P1", "cantidad_fisica": 5, "contado": True},
        ],
    )


def test_never_counted_and_overdue_products_are_pending(schedule_dataset):
    items = products_needing_count("L1", None, schedule_dataset, NOW, frequency_days=7)
    by_pid = {p.product_id: p for p in items}
    assert list(by_pid) == ["P2", "P3", "P4"]
    assert by_pid["P2"].days_without_count == 10
    assert by_pid["P2"].last_count_date == ago(days=10)
    assert by_pid["P3"].never_counted
    assert by_pid["P4"].days_without_count is None


def test_threshold_is_inclusive(schedule_dataset):
    items = products_needing_count("L1", ["P1"], schedule_dataset, NOW, frequency_days=2)
    assert [p.product_id for p in items] == ["P1"]
    assert products_needing_count("L1", ["P1"], schedule_dataset, NOW, frequency_days=3) == []


def test_explicit_product_list(schedule_dataset):
    items = products_needing_count("L1", ["P1", "P4", "P4"], schedule_dataset, NOW, frequency_days=7)
    assert [p.product_id for p in items] == ["P4"]


def test_products_missing_from_catalog_are_skipped():
    ds = StockDataset(
        products=[{"id": "P1"}],
        locations=[{"id": "L1"}],
        baselines=[
            {"product_id": "P1", "location_id": "L1", "quantity": 3},
            {"product_id": "GHOST", "location_id": "L1", "quantity": 3},
        ],
    )
    items = products_needing_count("L1", None, ds, NOW, frequency_days=7)
    assert [p.product_id for p in items] == ["P1"]
    assert products_needing_count("L1", ["GHOST"], ds, NOW, frequency_days=7) == []

    by_loc = pending_counts_by_location(ds, NOW, frequency_days=7)
    assert {lid: [p.product_id for p in items] for lid, items in by_loc.items()} == {"L1": ["P1"]}


def test_negative_frequency_rejected(schedule_dataset):
    with pytest.raises(ValueError):
        products_needing_count("L1", None, schedule_dataset, NOW, frequency_days=-1)


def test_by_location_omits_locations_with_nothing_due(schedule_dataset):
    result = pending_counts_by_location(schedule_dataset, NOW, frequency_days=7)
    assert list(result) == ["L1"]
    assert [p.product_id for p in result["L1"]] == ["P2", "P3", "P4"]


def test_to_dict(schedule_dataset):
    item = products_needing_count("L1", ["P2"], schedule_dataset, NOW, frequency_days=7)[0]
    assert item.to_dict() == {
        "producto_id": "P2",
        "ubicacion_id": "L1",
        "dias_sin_contar": 10,
        "fecha_ultimo_conteo": ago(days=10).isoformat(),
        "nunca_contado": False,
    }

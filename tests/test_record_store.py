import struct

import pytest

from supply_db.engine.record import Product, ProductCodec
from supply_db.engine.record_store import RecordStore
from supply_db.errors import CorruptRecord
from supply_db.storage.buffer_pool import BufferPool
from supply_db.storage.pager import Pager
from supply_db.storage.regions import RegionManager


def _store(path, page_size=4096, capacity=16):
    pager = Pager(path, page_size=page_size)
    rm = RegionManager(pager, BufferPool(pager, capacity=capacity))
    return pager, RecordStore(rm.region(1), ProductCodec(), order=8)


def _product(i, **kw):
    base = dict(id=i, name=f"item-{i}", origin="Lagos", current_location="Warehouse A",
                status="Manufactured", timestamp=1000 + i)
    base.update(kw)
    return Product(**base)


def test_get_missing_is_none():
    _, store = _store(":memory:")
    assert store.get(0) is None
    assert store.remove(0) is None
    assert len(store) == 0


def test_insert_get_replace_remove():
    _, store = _store(":memory:")
    store.insert_or_replace(_product(1))
    assert store.get(1) == _product(1)
    assert 1 in store

    changed = _product(1, status="Delivered", iot_data="t" * 500, last_update=2000)
    store.insert_or_replace(changed)
    assert store.get(1) == changed
    assert len(store) == 1

    assert store.remove(1) == changed
    assert store.get(1) is None
    assert store.remove(1) is None


def test_keys_are_ordered():
    _, store = _store(":memory:")
    for i in (5, 3, 9, 1, 7):
        store.insert_or_replace(_product(i))
    assert [k for k, _ in store.items()] == [1, 3, 5, 7, 9]
    assert [p.id for _, p in store.items(low=3, high=7)] == [3, 5, 7]


def test_many_records_span_pages_and_survive_reopen(db_path):
    pager, store = _store(db_path, page_size=1024, capacity=4)
    for i in range(200):
        store.insert_or_replace(_product(i, iot_data="x" * (i % 50)))
    for i in range(0, 200, 4):
        store.remove(i)
    for i in range(1, 200, 4):
        store.insert_or_replace(_product(i, status="In Transit", iot_data="y" * 300))
    assert store.region.size() > 10
    pager.close()

    pager, store = _store(db_path, page_size=1024, capacity=4)
    assert len(store) == 150
    assert store.get(0) is None
    assert store.get(1).status == "In Transit"
    assert store.get(2) == _product(2, iot_data="x" * 2)
    assert [k for k, _ in store.items()] == [i for i in range(200) if i % 4]
    pager.close()


def test_mutations_are_durable_without_close(db_path):
    pager, store = _store(db_path)
    store.insert_or_replace(_product(4))
    # 模拟进程崩溃：不 flush、不 close
    pager._f.close()
    pager, store = _store(db_path)
    assert store.get(4) == _product(4)
    pager.close()


def test_freed_space_is_reused():
    _, store = _store(":memory:", page_size=1024)
    for i in range(20):
        store.insert_or_replace(_product(i, iot_data="z" * 400))
    pages = store.region.size()
    for i in range(20):
        store.remove(i)
    for i in range(20, 40):
        store.insert_or_replace(_product(i, iot_data="z" * 400))
    assert store.region.size() == pages


def _corrupt_first_entry(store):
    rid, payload = next(iter(store.heap.scan()))
    vpage, sid = rid
    mv = store.region.get_page(vpage)
    page_bytes = bytes(mv)
    off = page_bytes.index(payload)
    mv[off + 16] = 99  # 条目头之后的记录格式版本
    store.region.unpin(vpage, dirty=True)
    store.bp.flush_all()


def test_corrupt_entry_surfaces_on_access(db_path):
    pager, store = _store(db_path)
    store.insert_or_replace(_product(1))
    store.insert_or_replace(_product(2))
    _corrupt_first_entry(store)
    pager.close()

    # 打开时只读 key，损坏的条目不影响其他记录
    pager, store = _store(db_path)
    assert len(store) == 2
    with pytest.raises(CorruptRecord):
        store.get(1)
    assert store.get(2) == _product(2)
    pager.close()


def test_duplicate_keys_are_corruption(db_path):
    pager, store = _store(db_path)
    store.insert_or_replace(_product(1))
    # 绕过索引直接在堆里再写一条同 id 的条目
    store.heap.insert(struct.pack("<QQ", 1, 0) + ProductCodec().encode(_product(1)))
    store.bp.flush_all()
    pager.close()
    with pytest.raises(CorruptRecord, match="duplicate"):
        _store(db_path)


def _live_entries(store):
    return [struct.unpack_from("<QQ", payload) for _, payload in store.heap.scan()]


def test_relocating_update_leaves_one_entry():
    _, store = _store(":memory:", page_size=1024)
    store.insert_or_replace(_product(1))
    store.insert_or_replace(_product(2, iot_data="f" * 800))
    moved = _product(1, iot_data="m" * 600, last_update=5000)
    store.insert_or_replace(moved)
    assert store.region.size() == 2
    assert store.get(1) == moved
    assert sorted(_live_entries(store)) == [(1, 1), (2, 0)]


def _inject(store, product, gen):
    """绕过索引再写一份同 id 的条目，相当于换页更新只完成了第一步"""
    store.heap.insert(struct.pack("<QQ", product.id, gen) + ProductCodec().encode(product))
    store.bp.flush_all()


@pytest.mark.parametrize("inject_newer", [True, False])
def test_interrupted_relocation_keeps_newest_copy(db_path, inject_newer):
    old = _product(1)
    new = _product(1, status="Delivered", last_update=3000)
    pager, store = _store(db_path)
    store.insert_or_replace(old)
    if inject_newer:
        _inject(store, new, gen=1)
    else:
        store.insert_or_replace(new)
        _inject(store, old, gen=0)
    pager._f.close()

    pager, store = _store(db_path)
    assert len(store) == 1
    assert store.get(1) == new
    assert len(_live_entries(store)) == 1
    pager._f.close()

    # 清理在打开时已经落盘
    pager, store = _store(db_path)
    assert _live_entries(store) == [(1, 1)]
    assert store.get(1) == new
    pager.close()

import pytest

from supply_db.errors import StorageError, StorageExhausted
from supply_db.storage.buffer_pool import BufferPool
from supply_db.storage.pager import Pager


def test_new_file_has_only_meta_page(db_path):
    pager = Pager(db_path, page_size=4096)
    assert pager.page_count() == 1
    assert pager.page_size() == 4096
    pager.close()


def test_allocate_and_reopen(db_path):
    pager = Pager(db_path, page_size=1024)
    pid = pager.allocate_page()
    assert pid == 1
    pager.write_page(pid, b"\xab" * 1024)
    pager.close()

    pager = Pager(db_path, page_size=1024)
    assert pager.page_count() == 2
    assert pager.read_page(1) == b"\xab" * 1024
    pager.close()


def test_allocated_page_is_zeroed():
    pager = Pager(":memory:", page_size=512)
    pid = pager.allocate_page()
    assert pager.read_page(pid) == bytes(512)


def test_page_size_mismatch(db_path):
    Pager(db_path, page_size=1024).close()
    with pytest.raises(StorageError, match="page size mismatch"):
        Pager(db_path, page_size=4096)


def test_bad_magic(db_path):
    with open(db_path, "wb") as f:
        f.write(b"NOPE" + bytes(4092))
    with pytest.raises(StorageError, match="bad magic"):
        Pager(db_path, page_size=4096)


def test_page_limit():
    pager = Pager(":memory:", page_size=512, max_pages=3)
    pager.allocate_page()
    pager.allocate_page()
    with pytest.raises(StorageExhausted):
        pager.allocate_page()
    assert pager.page_count() == 3


def test_write_page_checks():
    pager = Pager(":memory:", page_size=512)
    pager.allocate_page()
    with pytest.raises(ValueError):
        pager.write_page(0, bytes(512))
    with pytest.raises(ValueError):
        pager.write_page(1, b"short")
    with pytest.raises(IndexError):
        pager.read_page(7)


def test_buffer_pool_write_back_and_discard():
    pager = Pager(":memory:", page_size=512)
    a, b = pager.allocate_page(), pager.allocate_page()
    bp = BufferPool(pager, capacity=4)

    mv = bp.get_page(a)
    mv[0:3] = b"abc"
    bp.unpin(a, dirty=True)
    bp.flush_all()
    assert pager.read_page(a)[:3] == b"abc"

    mv = bp.get_page(b)
    mv[0:3] = b"xyz"
    bp.unpin(b, dirty=True)
    assert bp.dirty_pages() == [b]
    assert bp.discard_dirty() == 1
    assert bp.stats["discarded"] == 1
    assert pager.read_page(b)[:3] == bytes(3)
    # 重新读入的是磁盘上的内容
    mv = bp.get_page(b)
    assert bytes(mv[0:3]) == bytes(3)
    bp.unpin(b)


@pytest.mark.parametrize("policy", ["LRU", "FIFO"])
def test_buffer_pool_eviction_writes_dirty_pages(policy):
    pager = Pager(":memory:", page_size=512)
    pids = [pager.allocate_page() for _ in range(5)]
    bp = BufferPool(pager, capacity=2, policy=policy)
    for i, pid in enumerate(pids):
        mv = bp.get_page(pid)
        mv[0] = i + 1
        bp.unpin(pid, dirty=True)
    assert len(bp.frames) == 2
    stats = bp.stats
    assert stats["evict_dirty"] == 3 and stats["evict_clean"] == 0
    assert stats["reads"] == 5 and stats["miss"] == 5
    assert stats["cached"] == 2 and stats["max_cached"] == 2
    bp.flush_all()
    assert bp.stats["writes"] == 5
    assert [pager.read_page(pid)[0] for pid in pids] == [1, 2, 3, 4, 5]


def test_buffer_pool_all_pinned():
    pager = Pager(":memory:", page_size=512)
    a, b = pager.allocate_page(), pager.allocate_page()
    bp = BufferPool(pager, capacity=1)
    bp.get_page(a)
    with pytest.raises(RuntimeError):
        bp.get_page(b)

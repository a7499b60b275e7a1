import pytest

from supply_db.config import Settings
from supply_db.engine.context import StorageContext
from supply_db.engine.record import ProductPayload
from supply_db.engine.service import ProductService


class FakeClock:
    """每次调用前进 1000ns 的假时钟"""

    def __init__(self, start: int = 1_700_000_000_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1000
        return self.now


@pytest.fixture
def settings():
    return Settings(bp_capacity=32)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "supply.sdb")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def open_service(settings, db_path, clock):
    """open_service() 打开（或重新打开）同一个数据文件；测试结束统一关闭"""
    opened = []

    def _open(path=None):
        ctx = StorageContext(settings, path=path or db_path)
        opened.append(ctx)
        return ProductService(ctx, clock=clock)

    yield _open
    for ctx in opened:
        ctx.close()


@pytest.fixture
def svc(open_service):
    return open_service()


def payload(**kw) -> ProductPayload:
    base = dict(name="Arabica beans", origin="Kenya", current_location="Mombasa", status="Manufactured")
    base.update(kw)
    return ProductPayload(**base)

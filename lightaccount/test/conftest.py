import pytest

from lightaccount import Config, LightAccount, LocalOwner, SmartAccountClient
from lightaccount.test.fakes import OWNER_KEY, FakeBundlerNode, FakeChainNode, FakeEntryPoint


@pytest.fixture
def owner():
    return LocalOwner(OWNER_KEY)


@pytest.fixture
def entry_point():
    return FakeEntryPoint()


@pytest.fixture
def chain(entry_point):
    return FakeChainNode(entry_point)


@pytest.fixture
def bundler(entry_point):
    return FakeBundlerNode(entry_point)


@pytest.fixture
def make_account(chain, owner):
    def _make(version="2.0.0", **kwargs):
        kwargs.setdefault("owner", owner)
        return LightAccount(chain, version=version, **kwargs)
    return _make


@pytest.fixture
def client(make_account, bundler):
    return SmartAccountClient(make_account("2.0.0"), bundler)


@pytest.fixture
def fresh_config(tmp_path):
    Config.reset()
    yield Config(config_path=str(tmp_path / "config.json"))
    Config.reset()

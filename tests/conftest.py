import os as _os
import sys

import fakeredis
import pytest

# Ensure project root is importable (so `import cli` works without installing)
_tests_dir = _os.path.dirname(_os.path.abspath(__file__))
_project_root = _os.path.dirname(_tests_dir)
for _p in (_project_root, _tests_dir):
    if _p not in sys.path:
        sys.path.insert(0, _p)

from beachhead.settings import Settings  # noqa: E402

from fakes import FakeClock  # noqa: E402


@pytest.fixture
def cfg():
    """Settings independent of the environment the tests run in."""
    return Settings(
        store="memory",
        key_prefix="beachhead:domains:",
        expire_s=60,
        enable_expire=True,
        refresh_s=None,
        envvar="BEACHHEAD_DOMAINS",
        docker_network=False,
        strict_parse=False,
        workers=1,
        dry_run=False,
        events_db=None,
        api_port=0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)

import dataclasses
import json

import pytest
import redis

from beachhead.domain_spec import parse
from beachhead.errors import PublishError
from beachhead.publisher import DryRunPublisher, MemoryPublisher, RedisPublisher, publisher_from_settings
from beachhead.records import Scheme, publication_key

PREFIX = "beachhead:domains:"


def _record(raw="example.org:http=8080:https=8043", host="172.17.0.5", container="web"):
    rec = parse(raw).records[0]
    return dataclasses.replace(rec, host=host, container=container)


def test_publication_key_is_stable():
    a = publication_key(PREFIX, "example.org", Scheme.HTTPS)
    b = publication_key(PREFIX, "example.org", Scheme.HTTPS)
    assert a == b == "beachhead:domains:example.org:https"
    assert publication_key(PREFIX, "example.org", Scheme.HTTP) != a


def test_redis_publish_writes_one_key_per_scheme(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    pub.publish(_record(), ttl_s=60)

    assert sorted(redis_client.keys(PREFIX + "*")) == [
        "beachhead:domains:example.org:http",
        "beachhead:domains:example.org:https",
    ]
    payload = json.loads(redis_client.get("beachhead:domains:example.org:https"))
    assert payload == {
        "id": "example_org",
        "domain": "example.org",
        "scheme": "https",
        "port": 8043,
        "host": "172.17.0.5",
        "container": "web",
    }


def test_redis_publish_sets_expiry(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    pub.publish(_record(), ttl_s=60)
    ttl = redis_client.ttl("beachhead:domains:example.org:http")
    assert 0 < ttl <= 60


def test_redis_publish_without_ttl_never_expires(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    pub.publish(_record(), ttl_s=None)
    assert redis_client.ttl("beachhead:domains:example.org:http") == -1


def test_redis_republish_resets_expiry(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    key = "beachhead:domains:example.org:http"
    pub.publish(_record(), ttl_s=60)
    redis_client.expire(key, 5)
    pub.publish(_record(), ttl_s=60)
    assert redis_client.ttl(key) > 5


def test_redis_republish_is_idempotent(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    pub.publish(_record(), ttl_s=60)
    once = pub.query()
    pub.publish(_record(), ttl_s=60)
    assert pub.query() == once
    assert len(once) == 2


def test_redis_query_by_prefix(redis_client):
    pub = RedisPublisher(redis_client, PREFIX)
    pub.publish(_record("example.org"), ttl_s=60)
    pub.publish(_record("admin.example.org:https"), ttl_s=60)
    redis_client.set("unrelated:key", "x")

    assert sorted(pub.query()) == [
        "beachhead:domains:admin.example.org:https",
        "beachhead:domains:example.org:http",
        "beachhead:domains:example.org:https",
    ]
    assert list(pub.query("admin.")) == ["beachhead:domains:admin.example.org:https"]


class _BrokenPipeline:
    def set(self, *args, **kwargs):
        pass

    def execute(self):
        raise redis.ConnectionError("connection refused")

    def reset(self):
        pass


def test_redis_failure_raises_publish_error(redis_client, monkeypatch):
    pub = RedisPublisher(redis_client, PREFIX)
    monkeypatch.setattr(redis_client, "pipeline", lambda transaction=True: _BrokenPipeline())
    with pytest.raises(PublishError) as exc:
        pub.publish(_record(), ttl_s=60)
    assert isinstance(exc.value.__cause__, redis.ConnectionError)


def test_memory_refresh_keeps_key_alive(clock):
    """TTL 60s refreshed every 27s never expires; once refresh stops it lapses."""
    pub = MemoryPublisher(PREFIX, clock=clock)
    key = "beachhead:domains:example.org:http"

    for _ in range(10):
        pub.publish(_record(), ttl_s=60)
        clock.advance(27)
        assert key in pub.query()

    # last write happened 27s ago; the key survives until 60s after it
    clock.advance(32)
    assert key in pub.query()
    clock.advance(1)
    assert key not in pub.query()
    assert pub.query() == {}


def test_memory_without_ttl_never_expires(clock):
    pub = MemoryPublisher(PREFIX, clock=clock)
    pub.publish(_record(), ttl_s=None)
    clock.advance(10**6)
    assert len(pub.query()) == 2
    assert pub.ttl("beachhead:domains:example.org:http") is None


def test_memory_double_publish_equals_single_publish(clock):
    once = MemoryPublisher(PREFIX, clock=clock)
    once.publish(_record(), ttl_s=60)
    twice = MemoryPublisher(PREFIX, clock=clock)
    twice.publish(_record(), ttl_s=60)
    twice.publish(_record(), ttl_s=60)
    assert once.query() == twice.query()


def test_memory_ttl_reports_remaining_time(clock):
    pub = MemoryPublisher(PREFIX, clock=clock)
    pub.publish(_record(), ttl_s=60)
    clock.advance(20)
    assert pub.ttl("beachhead:domains:example.org:https") == 40
    assert pub.ttl("beachhead:domains:missing:https") is None


def test_dry_run_writes_nothing(caplog):
    pub = DryRunPublisher(PREFIX)
    with caplog.at_level("INFO", logger="beachhead.events"):
        pub.publish(_record(), ttl_s=60)
    assert pub.query() == {}
    assert "beachhead:domains:example.org:https" in caplog.text


def test_publisher_from_settings(cfg):
    assert isinstance(publisher_from_settings(cfg), MemoryPublisher)
    assert isinstance(publisher_from_settings(dataclasses.replace(cfg, dry_run=True)), DryRunPublisher)
    assert isinstance(publisher_from_settings(dataclasses.replace(cfg, store="redis")), RedisPublisher)
    with pytest.raises(ValueError):
        publisher_from_settings(dataclasses.replace(cfg, store="etcd"))

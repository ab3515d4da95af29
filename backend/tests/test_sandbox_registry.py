import logging
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.sandbox.errors import StorageUnavailable, UnknownTenant
from app.sandbox.registry import SandboxRegistry, generate_sandbox_id


def test_generated_ids_are_url_safe_and_lower_case():
    sandbox_id = generate_sandbox_id()
    assert len(sandbox_id) == 22
    assert re.fullmatch(r"[a-z0-9_-]+", sandbox_id)


def test_issued_token_is_registered_with_no_indices():
    registry = SandboxRegistry()
    token = registry.issue_token()
    assert registry.contains(token)
    assert registry.indices_of(token) == frozenset()
    assert len(registry) == 1


@pytest.mark.parametrize("token", ["bogus-token", "", None, 42, ["list"]])
def test_contains_rejects_unknown_or_malformed_tokens(token):
    registry = SandboxRegistry()
    registry.issue_token()
    assert registry.contains(token) is False


def test_validate_returns_typed_results():
    registry = SandboxRegistry()
    token = registry.issue_token()

    untagged = registry.validate(None)
    assert untagged.ok and untagged.sandbox_id is None

    valid = registry.validate(token)
    assert valid.ok and valid.sandbox_id == token

    invalid = registry.validate("bogus-token")
    assert not invalid.ok
    assert isinstance(invalid.error, UnknownTenant)
    assert invalid.error.sandbox_id == "bogus-token"
    assert str(invalid.error) == "Invalid Sandbox Id provided"


def test_touch_index_is_idempotent():
    registry = SandboxRegistry()
    token = registry.issue_token()
    registry.touch_index(token, "logs")
    registry.touch_index(token, "logs")
    assert registry.indices_of(token) == {"logs"}


def test_touch_unknown_tenant_raises():
    registry = SandboxRegistry()
    with pytest.raises(UnknownTenant):
        registry.touch_index("bogus-token", "logs")
    with pytest.raises(UnknownTenant):
        registry.indices_of("bogus-token")


def test_teardown_deletes_each_touched_index_once_and_clears():
    registry = SandboxRegistry(persist_enabled=False)
    first = registry.issue_token()
    second = registry.issue_token()
    registry.touch_indices(first, ["logs", "metrics", "logs"])
    registry.touch_index(second, "logs")

    deleted = []
    issued = registry.teardown(deleted.append)

    assert issued == 3
    assert sorted(deleted) == sorted(
        [
            f"sandbox_index_{first}_logs",
            f"sandbox_index_{first}_metrics",
            f"sandbox_index_{second}_logs",
        ]
    )
    assert len(registry) == 0
    assert not registry.contains(first)


def test_teardown_with_persistence_skips_deletes():
    registry = SandboxRegistry(persist_enabled=True)
    token = registry.issue_token()
    registry.touch_index(token, "logs")

    deleted = []
    assert registry.teardown(deleted.append) == 0
    assert deleted == []
    assert len(registry) == 0


def test_teardown_survives_failing_deletes(caplog):
    registry = SandboxRegistry()
    token = registry.issue_token()
    registry.touch_indices(token, ["bad", "good"])
    deleted = []

    def deleter(name):
        if name.endswith("_bad"):
            raise StorageUnavailable("down")
        deleted.append(name)

    logger = logging.getLogger("sandbox.registry")
    logger.addHandler(caplog.handler)
    try:
        assert registry.teardown(deleter) == 2
    finally:
        logger.removeHandler(caplog.handler)

    assert deleted == [f"sandbox_index_{token}_good"]
    assert len(registry) == 0
    assert any(rec.getMessage() == "sandbox.teardown.delete_failed" for rec in caplog.records)


def test_stop_runs_teardown():
    registry = SandboxRegistry()
    token = registry.issue_token()
    registry.touch_index(token, "logs")
    registry.start()
    deleted = []
    registry.stop(deleted.append)
    assert deleted == [f"sandbox_index_{token}_logs"]


def test_reload_adds_unknown_ids_with_empty_indices():
    registry = SandboxRegistry(persist_enabled=True)
    existing = registry.issue_token()
    registry.touch_index(existing, "logs")

    added = registry.reload([existing, "restored", "", "restored"])

    assert added == 1
    assert registry.contains("restored")
    assert registry.indices_of("restored") == frozenset()
    assert registry.indices_of(existing) == {"logs"}
    assert registry.reload(["restored"]) == 0


def test_reload_accepts_a_callable_source():
    registry = SandboxRegistry(persist_enabled=True)
    assert registry.reload(lambda: ["a", "b"]) == 2
    assert set(registry.sandbox_ids()) == {"a", "b"}


def test_reload_failure_recovers_nothing():
    registry = SandboxRegistry(persist_enabled=True)

    def broken():
        raise StorageUnavailable("search failed")

    assert registry.reload(broken) == 0
    assert len(registry) == 0


def test_load_once_reads_the_source_a_single_time():
    registry = SandboxRegistry(persist_enabled=True)
    calls = []

    def source():
        calls.append(1)
        return ["restored"]

    assert registry.load_once(source) == 1
    assert registry.load_once(source) == 0
    assert calls == [1]
    assert registry.loaded


def test_concurrent_issue_token_never_collides_or_loses_inserts():
    registry = SandboxRegistry()
    with ThreadPoolExecutor(max_workers=16) as pool:
        tokens = list(pool.map(lambda _: registry.issue_token(), range(2000)))
    assert len(set(tokens)) == 2000
    assert len(registry) == 2000
    assert all(registry.contains(token) for token in tokens)


def test_concurrent_touches_are_not_lost():
    registry = SandboxRegistry()
    token = registry.issue_token()
    names = [f"index-{n}" for n in range(500)]
    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda name: registry.touch_index(token, name), names))
    assert registry.indices_of(token) == set(names)

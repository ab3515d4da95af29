from app.sandbox.errors import UnknownTenant
from app.sandbox.interceptor import RequestInterceptor
from app.sandbox.registry import SandboxRegistry


def _interceptor():
    registry = SandboxRegistry()
    return registry, RequestInterceptor(registry)


def test_unknown_token_is_rejected_before_rewriting():
    registry, interceptor = _interceptor()
    body = b'{"_index":"docA"}'

    result = interceptor.intercept({"Sandbox": "bogus-token"}, {"index": "test_index"}, body)

    assert result.rejected
    assert isinstance(result.error, UnknownTenant)
    assert result.params == {"index": "test_index"}
    assert result.body == body
    assert not registry.contains("bogus-token")


def test_untagged_request_uses_global_namespace():
    registry, interceptor = _interceptor()
    token = registry.issue_token()

    result = interceptor.intercept({}, {"index": "test-index"})

    assert not result.rejected
    assert result.sandbox_id is None
    assert result.params["index"] == "global_index_test-index"
    assert result.touched == []
    assert registry.indices_of(token) == frozenset()


def test_valid_token_rewrites_path_and_records_touch():
    registry, interceptor = _interceptor()
    token = registry.issue_token()

    result = interceptor.intercept({"Sandbox": token}, {"index": "test-index", "pretty": "true"})

    assert result.sandbox_id == token
    assert result.params == {"index": f"sandbox_index_{token}_test-index", "pretty": "true"}
    assert registry.indices_of(token) == {"test-index"}


def test_header_lookup_is_case_insensitive():
    registry, interceptor = _interceptor()
    token = registry.issue_token()

    result = interceptor.intercept({"sandbox": f" {token} "}, {"index": "logs"})

    assert result.params["index"] == f"sandbox_index_{token}_logs"


def test_body_index_fields_are_rewritten_and_recorded():
    registry, interceptor = _interceptor()
    token = registry.issue_token()
    body = b'{"index":{"_index":"docA"}}\n{"a":1}\n{"index":{"_index":"docB"}}\n{"a":2}\n'

    result = interceptor.intercept({"Sandbox": token}, {}, body)

    assert result.body == (
        f'{{"index":{{"_index":"sandbox_index_{token}_docA"}}}}\n{{"a":1}}\n'
        f'{{"index":{{"_index":"sandbox_index_{token}_docB"}}}}\n{{"a":2}}\n'
    ).encode("utf-8")
    assert registry.indices_of(token) == {"docA", "docB"}
    assert result.touched == ["docA", "docB"]


def test_path_and_body_touches_are_merged():
    registry, interceptor = _interceptor()
    token = registry.issue_token()

    result = interceptor.intercept(
        {"Sandbox": token},
        {"index": "docA"},
        b'{"_index":"docA"}\n{"_index":"docB"}\n',
    )

    assert result.touched == ["docA", "docB"]


def test_undecodable_body_passes_through():
    registry, interceptor = _interceptor()
    token = registry.issue_token()
    body = b'\xff"_index":"docA"'

    result = interceptor.intercept({"Sandbox": token}, {}, body)

    assert not result.rejected
    assert result.body == body
    assert registry.indices_of(token) == frozenset()


def test_tenant_torn_down_between_validation_and_record():
    registry, interceptor = _interceptor()
    token = registry.issue_token()
    original_touch = registry.touch_indices

    def teardown_then_touch(sandbox_id, names):
        registry.teardown(lambda name: None)
        return original_touch(sandbox_id, names)

    registry.touch_indices = teardown_then_touch

    result = interceptor.intercept({"Sandbox": token}, {"index": "logs"})

    assert result.rejected
    assert result.params == {"index": "logs"}


def test_custom_header_and_param_names():
    registry = SandboxRegistry()
    interceptor = RequestInterceptor(registry, header_name="X-Sandbox", index_param="target")
    token = registry.issue_token()

    result = interceptor.intercept({"X-Sandbox": token}, {"target": "logs", "index": "other"})

    assert result.params == {"target": f"sandbox_index_{token}_logs", "index": "other"}


def test_path_index_and_query_index_are_rewritten_separately():
    registry, interceptor = _interceptor()
    token = registry.issue_token()

    result = interceptor.intercept(
        {"Sandbox": token}, {"index": "other", "size": "5"}, path_index="logs"
    )

    assert result.path_index == f"sandbox_index_{token}_logs"
    assert result.params == {"index": f"sandbox_index_{token}_other", "size": "5"}
    assert result.touched == ["logs", "other"]
    assert registry.indices_of(token) == {"logs", "other"}


def test_rejected_request_keeps_path_index():
    _, interceptor = _interceptor()

    result = interceptor.intercept({"Sandbox": "bogus-token"}, {}, path_index="logs")

    assert result.rejected
    assert result.path_index == "logs"

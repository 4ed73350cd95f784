# aiproxy/test_router.py
from types import SimpleNamespace

import httpx
import pytest

from aiproxy.errors import ConfigurationError, ValidationError
from aiproxy.router import (
    CHAT,
    EMBEDDING,
    PARSER,
    VECTORDB,
    check_prefix,
    normalize_path,
    resolve_target,
    vectordb_url,
)


def _settings(**overrides):
    base = dict(
        proxy_token="proxy-secret",
        assistant_api_key="sk-upstream",
        chat_endpoint="http://chat:8000/v1/chat/completions",
        embedding_endpoint="http://embed:8000/v1/embeddings",
        parser_endpoint="http://parser:8000/convert",
        vectordb_endpoint="http://qdrant:6333/",
        vectordb_api_key="qd-key",
        vectordb_prefixes=("/collections", "/health"),
        proxy_timeout=120.0,
        upload_timeout=300.0,
        stream_connect_timeout=15.0,
    )
    base.update(overrides)
    return SimpleNamespace(**base)


# ---------------------------------------------------------------------------
# resolve_target
# ---------------------------------------------------------------------------

class TestResolveTarget:
    def test_chat_uses_assistant_credential(self):
        target = resolve_target(CHAT, _settings())
        assert target.url == "http://chat:8000/v1/chat/completions"
        assert target.api_key == "sk-upstream"

    def test_vectordb_uses_own_credential_and_strips_slash(self):
        target = resolve_target(VECTORDB, _settings())
        assert target.url == "http://qdrant:6333"
        assert target.api_key == "qd-key"
        assert target.allowed_prefixes == ("/collections", "/health")

    def test_non_vectordb_targets_have_no_prefixes(self):
        assert resolve_target(EMBEDDING, _settings()).allowed_prefixes == ()

    def test_ordinary_call_has_finite_timeout(self):
        target = resolve_target(EMBEDDING, _settings(proxy_timeout=30.0))
        assert target.timeout == httpx.Timeout(30.0)

    def test_parser_uses_upload_timeout(self):
        target = resolve_target(PARSER, _settings(upload_timeout=300.0))
        assert target.timeout == httpx.Timeout(300.0)

    def test_stream_has_only_connect_timeout(self):
        target = resolve_target(CHAT, _settings(stream_connect_timeout=5.0), stream=True)
        assert target.timeout.read is None
        assert target.timeout.connect == 5.0

    @pytest.mark.parametrize("field", ["proxy_token", "assistant_api_key", "chat_endpoint"])
    def test_missing_chat_configuration_fails_closed(self, field):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_target(CHAT, _settings(**{field: ""}))
        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize("field", ["vectordb_endpoint", "vectordb_api_key"])
    def test_missing_vectordb_configuration_fails_closed(self, field):
        with pytest.raises(ConfigurationError):
            resolve_target(VECTORDB, _settings(**{field: ""}))

    def test_slash_only_base_counts_as_missing(self):
        with pytest.raises(ConfigurationError):
            resolve_target(VECTORDB, _settings(vectordb_endpoint="/"))

    @pytest.mark.parametrize("name,field", [
        (CHAT, "chat_endpoint"),
        (EMBEDDING, "embedding_endpoint"),
        (PARSER, "parser_endpoint"),
        (VECTORDB, "vectordb_endpoint"),
    ])
    def test_unparseable_url_fails_closed(self, name, field):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_target(name, _settings(**{field: "http://host:abc/v1"}))
        assert exc_info.value.status_code == 500
        assert exc_info.value.to_body() == {"error": "Proxy misconfigured."}

    def test_unknown_target_is_a_programming_error(self):
        with pytest.raises(ValueError):
            resolve_target("billing", _settings())


# ---------------------------------------------------------------------------
# path validation
# ---------------------------------------------------------------------------

class TestNormalizePath:
    def test_empty_becomes_root(self):
        assert normalize_path("") == "/"

    def test_none_becomes_root(self):
        assert normalize_path(None) == "/"

    def test_leading_slash_prepended(self):
        assert normalize_path("collections/foo") == "/collections/foo"

    def test_rooted_path_unchanged(self):
        assert normalize_path("/collections/foo/points") == "/collections/foo/points"

    @pytest.mark.parametrize("raw", ["/../secrets", "/collections/../admin", "..", "/collections/a..b"])
    def test_dotdot_rejected_with_400(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            normalize_path(raw)
        assert exc_info.value.status_code == 400
        assert exc_info.value.to_body() == {"error": "Invalid path."}


class TestCheckPrefix:
    def test_allowed_prefix_passes(self):
        check_prefix("/collections/foo", ("/collections", "/health"))

    def test_disallowed_prefix_403_echoes_path(self):
        with pytest.raises(ValidationError) as exc_info:
            check_prefix("/cluster/recover", ("/collections", "/health"))
        assert exc_info.value.status_code == 403
        assert exc_info.value.to_body() == {"error": "Forbidden path.", "path": "/cluster/recover"}

    def test_no_prefixes_allows_nothing(self):
        with pytest.raises(ValidationError):
            check_prefix("/collections", ())


class TestVectordbUrl:
    def test_base_joined_with_validated_path(self):
        target = resolve_target(VECTORDB, _settings(vectordb_endpoint="http://qdrant:6333///"))
        assert vectordb_url(target, "collections/foo") == "http://qdrant:6333/collections/foo"

    def test_root_path_is_forbidden_by_default(self):
        target = resolve_target(VECTORDB, _settings())
        with pytest.raises(ValidationError) as exc_info:
            vectordb_url(target, "")
        assert exc_info.value.status_code == 403

"""Tests for tokenizer acquisition."""

from __future__ import annotations

import pytest
from huggingface_hub.errors import (
    EntryNotFoundError,
    GatedRepoError,
    HFValidationError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)

from tgi_helpers import tokenizer as tokenizer_module
from tgi_helpers.errors import TokenizerError
from tgi_helpers.tokenizer import (
    LocalSource,
    RemoteSource,
    TokenizerAcquirer,
    auth_token_from_env,
    local_tokenizer_dir,
    select_source,
)


def hub_error(cls: type[Exception], message: str) -> Exception:
    """Build a hub HTTP error without a live response object."""
    error = cls.__new__(cls)
    Exception.__init__(error, message)
    return error


class FakeHub:
    """Stands in for ``hf_hub_download`` and records every call."""

    def __init__(self, path=None, error: Exception | None = None):
        self.path = path
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return str(self.path)


@pytest.fixture
def hub(monkeypatch, tokenizer_dir) -> FakeHub:
    fake = FakeHub(tokenizer_dir / "tokenizer.json")
    monkeypatch.setattr(tokenizer_module, "hf_hub_download", fake)
    return fake


class TestSourceSelection:
    def test_local_directory_selected(self, tokenizer_dir):
        source = select_source(str(tokenizer_dir), "main")
        assert isinstance(source, LocalSource)
        assert source.path == tokenizer_dir / "tokenizer.json"

    def test_missing_path_selects_remote(self, tmp_path):
        source = select_source(str(tmp_path / "nope"), "v2", auth_token="secret")
        assert isinstance(source, RemoteSource)
        assert source.revision == "v2"
        assert source.auth_token == "secret"

    def test_directory_without_definition_selects_remote(self, tmp_path):
        assert local_tokenizer_dir(str(tmp_path)) is None
        assert isinstance(select_source(str(tmp_path), "main"), RemoteSource)

    def test_hub_id_selects_remote(self):
        assert isinstance(select_source("bigscience/bloom-560m", "main"), RemoteSource)


class TestLocalSource:
    def test_loads_without_network(self, tokenizer_dir, hub):
        acquirer = TokenizerAcquirer(environ={})
        handle = acquirer.acquire(str(tokenizer_dir), "ignored-revision", auth_token="ignored")
        assert handle.source == "local"
        assert handle.name == str(tokenizer_dir)
        assert handle.encode("hello world") == [1, 2]
        assert handle.vocab_size == 4
        assert hub.calls == []

    def test_corrupt_definition(self, tmp_path):
        (tmp_path / "tokenizer.json").write_text("{not json")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire(str(tmp_path), "main")
        assert exc_info.value.error_type == TokenizerError.INVALID_FORMAT
        assert exc_info.value.__cause__ is not None


class TestRemoteSource:
    def test_downloads_at_revision_with_token(self, hub):
        acquirer = TokenizerAcquirer(environ={"HUGGING_FACE_HUB_TOKEN": "hf_secret"})
        handle = acquirer.acquire("org/model", "refs/pr/1")

        assert handle.source == "remote"
        assert handle.name == "org/model"
        assert handle.encode("benchmark") == [3]
        (call,) = hub.calls
        assert call["repo_id"] == "org/model"
        assert call["filename"] == "tokenizer.json"
        assert call["revision"] == "refs/pr/1"
        assert call["token"] == "hf_secret"
        assert call["endpoint"] is None

    def test_explicit_token_wins_over_environment(self, hub):
        TokenizerAcquirer(environ={"HF_TOKEN": "from-env"}).acquire("gpt2", "main", "explicit")
        assert hub.calls[0]["token"] == "explicit"

    def test_no_token(self, hub):
        TokenizerAcquirer(environ={}).acquire("gpt2", "main")
        assert hub.calls[0]["token"] is None

    def test_endpoint_override(self, hub):
        TokenizerAcquirer(environ={"HF_ENDPOINT": "https://mirror.test"}).acquire("gpt2", "main")
        assert hub.calls[0]["endpoint"] == "https://mirror.test"

    @pytest.mark.parametrize(
        "error_cls", [RepositoryNotFoundError, RevisionNotFoundError, EntryNotFoundError]
    )
    def test_not_found(self, hub, error_cls):
        hub.error = hub_error(error_cls, "404 Client Error")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("org/missing", "main")
        assert exc_info.value.error_type == TokenizerError.NOT_FOUND
        assert exc_info.value.__cause__ is hub.error

    def test_gated_repository(self, hub):
        hub.error = hub_error(GatedRepoError, "401 Client Error")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("org/gated", "main")
        assert exc_info.value.error_type == TokenizerError.DOWNLOAD_FAILED
        assert "HUGGING_FACE_HUB_TOKEN" in str(exc_info.value)

    def test_offline_and_not_cached(self, hub):
        hub.error = LocalEntryNotFoundError("offline mode is enabled")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("gpt2", "main")
        assert exc_info.value.error_type == TokenizerError.DOWNLOAD_FAILED
        assert exc_info.value.__cause__ is hub.error

    def test_transport_failure_preserves_cause(self, hub):
        hub.error = ConnectionError("name resolution failed")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("gpt2", "main")
        assert exc_info.value.error_type == TokenizerError.DOWNLOAD_FAILED
        assert exc_info.value.__cause__ is hub.error
        assert "name resolution failed" in exc_info.value.reason

    def test_invalid_repository_id(self, hub):
        hub.error = HFValidationError("Repo id must use alphanumeric chars")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("not//a valid id", "main")
        assert exc_info.value.error_type == TokenizerError.NOT_FOUND

    def test_invalid_definition(self, hub, tmp_path):
        hub.path = tmp_path / "tokenizer.json"
        hub.path.write_text("<html>login</html>")
        with pytest.raises(TokenizerError) as exc_info:
            TokenizerAcquirer(environ={}).acquire("gpt2", "main")
        assert exc_info.value.error_type == TokenizerError.INVALID_FORMAT


class TestAuthToken:
    def test_primary_variable_wins(self):
        environ = {"HUGGING_FACE_HUB_TOKEN": "primary", "HF_TOKEN": "secondary"}
        assert auth_token_from_env(environ) == "primary"

    def test_fallback_variable(self):
        assert auth_token_from_env({"HF_TOKEN": "secondary"}) == "secondary"

    def test_unset(self):
        assert auth_token_from_env({}) is None

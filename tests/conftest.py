"""Shared fixtures for tgi-benchmark tests."""

from __future__ import annotations

import contextlib
import shutil
import tempfile
from concurrent import futures
from pathlib import Path
from typing import TYPE_CHECKING

import grpc
import pytest
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import Whitespace

from tgi_helpers import proto

if TYPE_CHECKING:
    from collections.abc import Iterator

VOCAB = {"[UNK]": 0, "hello": 1, "world": 2, "benchmark": 3}

# Environment variables the resolver and acquirer read; cleared for every test
_BENCHMARK_ENV = (
    "TOKENIZER_NAME",
    "REVISION",
    "BATCH_SIZE",
    "SEQUENCE_LENGTH",
    "DECODE_LENGTH",
    "RUNS",
    "WARMUPS",
    "MASTER_SHARD_UDS_PATH",
    "TEMPERATURE",
    "TOP_K",
    "TOP_P",
    "TYPICAL_P",
    "REPETITION_PENALTY",
    "WATERMARK",
    "DO_SAMPLE",
    "MIN_NEW_TOKENS",
    "BENCHMARK_RUNNER",
    "HUGGING_FACE_HUB_TOKEN",
    "HF_TOKEN",
    "HF_ENDPOINT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration tests."""
    for name in _BENCHMARK_ENV:
        monkeypatch.delenv(name, raising=False)


def build_tokenizer() -> Tokenizer:
    """A tiny word-level tokenizer, enough to exercise loading and encoding."""
    tokenizer = Tokenizer(WordLevel(vocab=VOCAB, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = Whitespace()
    return tokenizer


@pytest.fixture
def tokenizer_json() -> str:
    """Serialised tokenizer definition, as served by the hub."""
    return build_tokenizer().to_str()


@pytest.fixture
def tokenizer_dir(tmp_path: Path) -> Path:
    """Local directory holding a valid ``tokenizer.json``."""
    directory = tmp_path / "local-tokenizer"
    directory.mkdir()
    build_tokenizer().save(str(directory / "tokenizer.json"))
    return directory


@pytest.fixture
def socket_dir() -> Iterator[Path]:
    """Short-lived directory for Unix sockets.

    Unix socket paths are limited to ~100 bytes, which pytest's ``tmp_path`` can
    exceed, so sockets live in a short directory under /tmp.
    """
    directory = Path(tempfile.mkdtemp(prefix="tgi-", dir="/tmp"))  # noqa: S108
    yield directory
    shutil.rmtree(directory, ignore_errors=True)


class FakeShard:
    """In-process gRPC server implementing the shard control RPCs.

    Served by a threaded ``grpc.server`` so the clients under test own the only
    event loop in the process.
    """

    def __init__(self, path: Path, *, fail_info: bool = False, fail_clear: bool = False) -> None:
        self.path = path
        self.url = f"unix://{path}"
        self.discovery_urls: list[str] = []
        self.fail_info = fail_info
        self.fail_clear = fail_clear
        self.info_calls = 0
        self.clear_calls: list[int | None] = []
        self.server: grpc.Server | None = None

    def info(self, request, context):
        self.info_calls += 1
        if self.fail_info:
            context.abort(grpc.StatusCode.INTERNAL, "shard not ready")
        return proto.InfoResponse(requires_padding=True, dtype="float16", device_type="cuda")

    def service_discovery(self, request, context):
        return proto.ServiceDiscoveryResponse(urls=self.discovery_urls)

    def clear_cache(self, request, context):
        self.clear_calls.append(request.id if request.HasField("id") else None)
        if self.fail_clear:
            context.abort(grpc.StatusCode.INTERNAL, "cache busy")
        return proto.ClearCacheResponse()

    def start(self) -> None:
        implementations = {
            "Info": self.info,
            "ServiceDiscovery": self.service_discovery,
            "ClearCache": self.clear_cache,
        }
        handlers = {
            name: grpc.unary_unary_rpc_method_handler(
                implementations[name],
                request_deserializer=request_cls.FromString,
                response_serializer=response_cls.SerializeToString,
            )
            for name, (request_cls, response_cls) in proto.METHODS.items()
        }
        self.server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
        self.server.add_generic_rpc_handlers(
            (grpc.method_handlers_generic_handler(proto.SERVICE_NAME, handlers),)
        )
        self.server.add_insecure_port(self.url)
        self.server.start()

    def stop(self) -> None:
        if self.server is not None:
            self.server.stop(None).wait()


@pytest.fixture
def shard_cluster(socket_dir: Path):
    """Factory starting ``count`` fake shards that all advertise each other.

    Usage::

        with shard_cluster(2) as shards:
            master_path = shards[0].path

    ``extra_urls`` are advertised by discovery without a server behind them.
    """

    @contextlib.contextmanager
    def start(
        count: int,
        *,
        fail_info: frozenset[int] = frozenset(),
        fail_clear: frozenset[int] = frozenset(),
        extra_urls: tuple[str, ...] = (),
    ) -> Iterator[list[FakeShard]]:
        shards = [
            FakeShard(
                socket_dir / f"shard-{rank}",
                fail_info=rank in fail_info,
                fail_clear=rank in fail_clear,
            )
            for rank in range(count)
        ]
        urls = [shard.url for shard in shards] + list(extra_urls)
        try:
            for shard in shards:
                shard.discovery_urls = urls
                shard.start()
            yield shards
        finally:
            for shard in shards:
                shard.stop()

    return start

"""Sharded gRPC client for the text generation server.

This module attaches to every model shard through the master shard's Unix socket
and resets their caches before a benchmark. It talks to the shards directly,
bypassing the router. Attaching and resetting are all-or-nothing: if any shard
fails, the whole operation fails and every opened channel is closed.
"""

from __future__ import annotations

import asyncio
import posixpath
from typing import TYPE_CHECKING, Any

import grpc

from . import proto
from .errors import BackendConnectionError
from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Iterable


def uds_target(path: str) -> str:
    """Turn a socket path into a gRPC target; URLs with a scheme pass through unchanged.

    Returns:
        A ``unix:`` target string.
    """
    if "://" in path or path.startswith("unix:"):
        return path
    if posixpath.isabs(path):
        return f"unix://{path}"
    return f"unix:{path}"


def _rpc_code(error: BaseException) -> grpc.StatusCode | None:
    code = getattr(error, "code", None)
    return code() if callable(code) else None


def _describe(error: BaseException) -> str:
    if isinstance(error, grpc.aio.AioRpcError):
        return f"{error.code().name}: {error.details()}"
    return str(error) or type(error).__name__


class ShardClient:
    """Client for a single shard process."""

    def __init__(self, url: str) -> None:
        """Open a channel to one shard.

        Channels connect lazily; nothing is sent until the first RPC.

        Args:
            url: Socket path or ``unix://`` URL of the shard.
        """
        self.url = url
        self.channel = grpc.aio.insecure_channel(uds_target(url))
        self._stubs = {
            name: self.channel.unary_unary(
                proto.method_path(name),
                request_serializer=request_cls.SerializeToString,
                response_deserializer=response_cls.FromString,
            )
            for name, (request_cls, response_cls) in proto.METHODS.items()
        }

    async def info(self) -> Any:
        """Fetch the shard's model information.

        Returns:
            The ``InfoResponse`` message.
        """
        return await self._stubs["Info"](proto.InfoRequest())

    async def service_discovery(self) -> list[str]:
        """Ask the shard for the URLs of every shard serving the model.

        Returns:
            Shard URLs, including this shard's own.
        """
        response = await self._stubs["ServiceDiscovery"](proto.ServiceDiscoveryRequest())
        return list(response.urls)

    async def clear_cache(self, batch_id: int | None = None) -> None:
        """Drop cached generation state for one batch, or for all batches when None."""
        request = proto.ClearCacheRequest()
        if batch_id is not None:
            request.id = batch_id
        await self._stubs["ClearCache"](request)

    async def close(self) -> None:
        """Close the underlying channel."""
        await self.channel.close()


class ShardedClient:
    """One logical connection fanned out to every shard of a model.

    Build it with ``connect_uds``; a constructed client has every shard attached.
    """

    def __init__(self, clients: Iterable[ShardClient]) -> None:
        """Initialise sharded client from already attached shard clients."""
        self.clients = list(clients)

    def __len__(self) -> int:
        """Number of attached shards."""
        return len(self.clients)

    @property
    def urls(self) -> list[str]:
        """URLs of the attached shards, in discovery order."""
        return [client.url for client in self.clients]

    @classmethod
    async def connect_uds(cls, path: str) -> ShardedClient:
        """Discover the shards behind the master socket and attach to all of them.

        Args:
            path: Unix socket path of the master shard.

        Returns:
            A client attached to every shard.

        Raises:
            BackendConnectionError: If the master is unreachable, discovery returns no
                shards, or any shard fails to attach.
        """
        master = ShardClient(path)
        try:
            logger.debug("📤 ServiceDiscovery via %s", master.url)
            urls = await master.service_discovery()
        except grpc.RpcError as e:
            await master.close()
            error_type = (
                BackendConnectionError.UNREACHABLE
                if _rpc_code(e) == grpc.StatusCode.UNAVAILABLE
                else BackendConnectionError.HANDSHAKE_FAILED
            )
            msg = f"Could not reach master shard at {path} ({_describe(e)})"
            raise BackendConnectionError(msg, error_type) from e
        await master.close()

        if not urls:
            msg = f"Master shard at {path} reported no shards"
            raise BackendConnectionError(msg, BackendConnectionError.HANDSHAKE_FAILED)
        logger.debug("📋 Discovered %d shard(s): %s", len(urls), ", ".join(urls))

        clients = [ShardClient(url) for url in urls]
        results = await asyncio.gather(
            *(client.info() for client in clients), return_exceptions=True
        )
        failures = [
            (client.url, result)
            for client, result in zip(clients, results, strict=True)
            if isinstance(result, BaseException)
        ]
        if failures:
            await asyncio.gather(*(client.close() for client in clients))
            details = "; ".join(f"{url}: {_describe(error)}" for url, error in failures)
            msg = f"{len(failures)}/{len(clients)} shard(s) failed to attach ({details})"
            raise BackendConnectionError(
                msg, BackendConnectionError.HANDSHAKE_FAILED
            ) from failures[0][1]

        for client, info in zip(clients, results, strict=True):
            logger.debug(
                "🧩 Shard %s: dtype=%s device=%s requires_padding=%s",
                client.url,
                info.dtype,
                info.device_type,
                info.requires_padding,
            )
        return cls(clients)

    async def clear_cache(self, batch_id: int | None = None) -> None:
        """Clear cached state on every shard and wait for all of them to acknowledge.

        Args:
            batch_id: Batch to drop, or None to drop everything.

        Raises:
            BackendConnectionError: If any shard fails to acknowledge.
        """
        results = await asyncio.gather(
            *(client.clear_cache(batch_id) for client in self.clients), return_exceptions=True
        )
        failures = [
            (client.url, result)
            for client, result in zip(self.clients, results, strict=True)
            if isinstance(result, BaseException)
        ]
        if failures:
            details = "; ".join(f"{url}: {_describe(error)}" for url, error in failures)
            msg = f"{len(failures)}/{len(self.clients)} shard(s) failed to clear cache ({details})"
            raise BackendConnectionError(
                msg, BackendConnectionError.RESET_FAILED
            ) from failures[0][1]

    async def close(self) -> None:
        """Close every shard channel."""
        await asyncio.gather(*(client.close() for client in self.clients))


class BackendConnector:
    """Establishes the sharded connection and resets it before measurement."""

    async def connect(self, socket_path: str) -> ShardedClient:
        """Attach to every shard behind the master socket.

        Returns:
            The attached sharded client.
        """
        logger.info("🔗 Connecting to model server at %s", socket_path)
        client = await ShardedClient.connect_uds(socket_path)
        logger.info("✅ Attached to %d shard(s)", len(client))
        return client

    async def reset_cache(self, client: ShardedClient, scope: int | None = None) -> None:
        """Clear the shard caches, e.g. after a server restart left state behind."""
        logger.info("🧹 Clearing shard caches")
        await client.clear_cache(scope)
        logger.info("✅ Connected")

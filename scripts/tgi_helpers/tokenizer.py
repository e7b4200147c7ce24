"""Tokenizer acquisition for the benchmark.

A tokenizer comes from one of two sources: a local directory holding a
``tokenizer.json`` file, or the Hugging Face hub. The local directory always wins,
so a benchmark pointed at a local copy never touches the network. This runs before
the async phase starts; the benchmark run uses the tokenizer to build payloads.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import (
    EntryNotFoundError,
    GatedRepoError,
    HFValidationError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)
from tokenizers import Tokenizer

from .errors import TokenizerError
from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Mapping

TOKENIZER_FILE = "tokenizer.json"

# Checked in order; the first one set is used
AUTH_TOKEN_ENV_VARS = ("HUGGING_FACE_HUB_TOKEN", "HF_TOKEN")
HUB_ENDPOINT_ENV = "HF_ENDPOINT"


@dataclass(frozen=True)
class TokenizerHandle:
    """Ready tokenizer, read-only for the rest of the process.

    Attributes:
        name: The identifier or path the tokenizer was requested with.
        source: ``"local"`` or ``"remote"``.
        tokenizer: The underlying ``tokenizers.Tokenizer``.
    """

    name: str
    source: str
    tokenizer: Tokenizer

    @property
    def vocab_size(self) -> int:
        """Vocabulary size including added tokens."""
        return self.tokenizer.get_vocab_size(with_added_tokens=True)

    def encode(self, text: str) -> list[int]:
        """Encode text to token ids without special tokens.

        Returns:
            The token ids.
        """
        return self.tokenizer.encode(text, add_special_tokens=False).ids


class TokenizerSource(ABC):
    """A place a tokenizer can be loaded from."""

    kind: str

    def __init__(self, name: str) -> None:
        """Initialise source with the identifier the tokenizer was requested with."""
        self.name = name

    @abstractmethod
    def load(self) -> Tokenizer:
        """Load and instantiate the tokenizer.

        Raises:
            TokenizerError: If the tokenizer cannot be obtained or parsed.
        """

    def acquire(self) -> TokenizerHandle:
        """Load the tokenizer and wrap it in a handle.

        Returns:
            A handle around the loaded tokenizer.
        """
        return TokenizerHandle(name=self.name, source=self.kind, tokenizer=self.load())


class LocalSource(TokenizerSource):
    """Tokenizer definition file inside a local directory. Never uses the network."""

    kind = "local"

    def __init__(self, name: str, directory: Path) -> None:
        """Initialise local source from the directory holding ``tokenizer.json``."""
        super().__init__(name)
        self.path = directory / TOKENIZER_FILE

    def load(self) -> Tokenizer:
        """Load the tokenizer straight from the local definition file.

        Returns:
            The instantiated tokenizer.

        Raises:
            TokenizerError: If the file cannot be parsed as a tokenizer definition.
        """
        logger.info("📁 Found local tokenizer at %s", self.path)
        try:
            return Tokenizer.from_file(str(self.path))
        except Exception as e:
            msg = f"Could not load tokenizer definition from {self.path}"
            raise TokenizerError(msg, TokenizerError.INVALID_FORMAT) from e


class RemoteSource(TokenizerSource):
    """Tokenizer definition fetched from the hub at a given revision.

    Downloads go through the shared hub cache, so a revision fetched once is reused,
    and ``HF_HUB_OFFLINE`` serves it without touching the network.
    """

    kind = "remote"

    def __init__(
        self,
        name: str,
        revision: str,
        auth_token: str | None = None,
        endpoint: str | None = None,
    ) -> None:
        """Initialise remote source.

        Args:
            name: Repository id on the hub, e.g. ``bigscience/bloom-560m``.
            revision: Branch, tag or commit to fetch.
            auth_token: Optional token for gated or private repositories.
            endpoint: Hub base URL; None keeps the hub library's default.
        """
        super().__init__(name)
        self.revision = revision
        self.auth_token = auth_token
        self.endpoint = endpoint

    def download(self) -> str:
        """Fetch ``tokenizer.json`` into the hub cache.

        Returns:
            Local path of the cached file.

        Raises:
            TokenizerError: If the repository, revision or file does not exist, or the
                download fails.
        """
        label = f"{self.name}@{self.revision}"
        try:
            return hf_hub_download(
                repo_id=self.name,
                filename=TOKENIZER_FILE,
                revision=self.revision,
                token=self.auth_token,
                endpoint=self.endpoint,
            )
        except GatedRepoError as e:
            msg = f"Access to tokenizer {label} was refused (check HUGGING_FACE_HUB_TOKEN)"
            raise TokenizerError(msg, TokenizerError.DOWNLOAD_FAILED) from e
        except LocalEntryNotFoundError as e:
            msg = f"Tokenizer {label} is not cached and the hub cannot be reached"
            raise TokenizerError(msg, TokenizerError.DOWNLOAD_FAILED) from e
        except (RepositoryNotFoundError, RevisionNotFoundError, EntryNotFoundError) as e:
            msg = f"Tokenizer {label} not found on the hub"
            raise TokenizerError(msg, TokenizerError.NOT_FOUND) from e
        except HFValidationError as e:
            msg = f"{self.name!r} is neither a local tokenizer directory nor a hub repository id"
            raise TokenizerError(msg, TokenizerError.NOT_FOUND) from e
        except Exception as e:
            msg = f"Could not download tokenizer {label}"
            raise TokenizerError(msg, TokenizerError.DOWNLOAD_FAILED) from e

    def load(self) -> Tokenizer:
        """Download and instantiate the tokenizer.

        Returns:
            The instantiated tokenizer.

        Raises:
            TokenizerError: If the repository or revision does not exist, the download
                fails, or the downloaded definition cannot be parsed.
        """
        logger.info("🌐 Fetching tokenizer %s@%s from the hub", self.name, self.revision)
        path = self.download()
        logger.debug("📥 Tokenizer definition at %s", path)
        try:
            return Tokenizer.from_file(path)
        except Exception as e:
            msg = f"Downloaded tokenizer {self.name}@{self.revision} is not a valid definition"
            raise TokenizerError(msg, TokenizerError.INVALID_FORMAT) from e


def local_tokenizer_dir(tokenizer_id: str) -> Path | None:
    """Return the directory to load from if ``tokenizer_id`` names a local tokenizer.

    A local tokenizer is an existing directory that itself contains ``tokenizer.json``.

    Returns:
        The directory, or None when the identifier should be fetched from the hub.
    """
    path = Path(tokenizer_id).expanduser()
    if path.is_dir() and (path / TOKENIZER_FILE).is_file():
        return path
    return None


def auth_token_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    """Read the hub bearer token from the environment.

    Returns:
        The token, or None when no token variable is set.
    """
    environ = os.environ if environ is None else environ
    for name in AUTH_TOKEN_ENV_VARS:
        token = environ.get(name)
        if token:
            return token
    return None


def select_source(
    tokenizer_id: str, revision: str, auth_token: str | None = None, **remote_options: Any
) -> TokenizerSource:
    """Pick where to load the tokenizer from.

    Returns:
        A ``LocalSource`` when a local definition exists, else a ``RemoteSource``.
    """
    directory = local_tokenizer_dir(tokenizer_id)
    if directory is not None:
        return LocalSource(tokenizer_id, directory)
    return RemoteSource(tokenizer_id, revision, auth_token=auth_token, **remote_options)


class TokenizerAcquirer:
    """Obtains a ready tokenizer, preferring a local copy over a hub download."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        """Initialise acquirer.

        Args:
            environ: Environment to read the token and hub endpoint from.
        """
        self.environ = dict(os.environ if environ is None else environ)

    def acquire(
        self, tokenizer_id: str, revision: str, auth_token: str | None = None
    ) -> TokenizerHandle:
        """Load the tokenizer named by ``tokenizer_id``.

        Args:
            tokenizer_id: Local directory or hub repository id.
            revision: Hub revision; ignored for local directories.
            auth_token: Hub token; read from the environment when omitted.

        Returns:
            A handle around the ready tokenizer.

        Raises:
            TokenizerError: If the tokenizer cannot be obtained.
        """
        logger.info("🔤 Loading tokenizer")
        if auth_token is None:
            auth_token = auth_token_from_env(self.environ)
        source = select_source(
            tokenizer_id,
            revision,
            auth_token=auth_token,
            endpoint=self.environ.get(HUB_ENDPOINT_ENV) or None,
        )
        handle = source.acquire()
        logger.info("✅ Tokenizer loaded (%s, %d tokens)", handle.source, handle.vocab_size)
        return handle

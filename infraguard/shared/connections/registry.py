"""
Account Client Registry

Provisions one bundle of credentialed provider-API handles per cloud account.
Initialization is all-or-nothing: a registry is only handed out once every
account's bundle was built, so downstream code never has to check for gaps.
"""

import inspect
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import structlog

from infraguard.shared.core.exceptions import ConstructionError, ResourceNotFoundError

logger = structlog.get_logger()

HandleFactory = Callable[[str, Any], Any]


@dataclass(frozen=True)
class HandleSpec:
    """One provider-API handle of a bundle: its attribute name, display label and constructor."""

    name: str
    label: str
    factory: HandleFactory


class ClientBundle(Mapping[str, Any]):
    """Immutable set of provider-API handles scoped to one account."""

    def __init__(self, account_id: str, handles: Mapping[str, Any]):
        self.account_id = account_id
        self._handles = MappingProxyType(dict(handles))

    def __getitem__(self, name: str) -> Any:
        return self._handles[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __getattr__(self, name: str) -> Any:
        handles = self.__dict__.get("_handles")
        if handles is not None and name in handles:
            return handles[name]
        raise AttributeError(f"{type(self).__name__!r} has no handle {name!r}")

    def names(self) -> Tuple[str, ...]:
        return tuple(self._handles)

    def __repr__(self) -> str:
        return f"<ClientBundle {self.account_id} handles={list(self._handles)}>"


def build_handle(account_id: str, credential: Any, spec: HandleSpec) -> Any:
    """
    Construct one handle, checking the result twice: the constructor may fail
    outright, or hand back an empty client without raising.
    """
    details = {"account_id": account_id, "handle": spec.name}
    try:
        handle = spec.factory(account_id, credential)
    except Exception as exc:
        raise ConstructionError(
            f"failed to create {spec.label}: {exc}", details=details
        ) from exc
    if handle is None:
        raise ConstructionError(
            f"failed to create {spec.label}. Got empty client", details=details
        )
    return handle


async def build_bundle(
    account_id: str, credential: Any, specs: Sequence[HandleSpec]
) -> ClientBundle:
    """Build every handle of one account; handles built before a failure are closed again."""
    handles: Dict[str, Any] = {}
    try:
        for spec in specs:
            handles[spec.name] = build_handle(account_id, credential, spec)
    except ConstructionError:
        await release_handles((account_id, name, handle) for name, handle in handles.items())
        raise
    return ClientBundle(account_id, handles)


def _bundle_handles(bundles: Iterable[ClientBundle]) -> Iterator[Tuple[str, str, Any]]:
    for bundle in bundles:
        for name, handle in bundle.items():
            yield bundle.account_id, name, handle


async def release_handles(
    targets: Iterable[Tuple[str, str, Any]], *, provider: str = ""
) -> Optional[Exception]:
    """
    Close every (account_id, name, target) exposing close(), awaiting when needed.

    Keeps going past failures so one broken client cannot leak the rest and
    returns the first failure.
    """
    first_error: Optional[Exception] = None
    for account_id, name, target in targets:
        close = getattr(target, "close", None)
        if not callable(close):
            continue
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(
                "account_client_close_failed",
                provider=provider,
                account_id=account_id,
                handle=name,
                error=str(exc),
            )
            if first_error is None:
                first_error = exc
    return first_error


class AccountClientRegistry:
    """
    Holds one ClientBundle per account, keyed by account id.

    Subclasses bind a provider: its display name and the handles a bundle holds.
    The bundle map is populated once by `initialize` and read-only afterwards.
    """

    provider_name: ClassVar[str] = ""
    handle_specs: ClassVar[Tuple[HandleSpec, ...]] = ()

    def __init__(self, credential: Any, bundles: Mapping[str, ClientBundle]):
        self._credential = credential
        self._bundles: Mapping[str, ClientBundle] = MappingProxyType(dict(bundles))

    @classmethod
    async def initialize(
        cls,
        credential: Any,
        accounts: Iterable[str],
        *,
        handle_specs: Optional[Sequence[HandleSpec]] = None,
    ) -> "AccountClientRegistry":
        """
        Build a bundle for every account or raise ConstructionError without returning a registry.

        On failure every handle built so far is closed; the credential stays
        with the caller.
        """
        specs = tuple(handle_specs if handle_specs is not None else cls.handle_specs)
        if credential is None:
            raise ConstructionError(
                "failed to initialize resource clients: no credential supplied",
                details={"provider": cls.provider_name},
            )
        if not specs:
            raise ConstructionError(
                "failed to initialize resource clients: no handles configured",
                details={"provider": cls.provider_name},
            )

        bundles: Dict[str, ClientBundle] = {}
        try:
            for account_id in accounts:
                if not account_id or not str(account_id).strip():
                    raise ConstructionError(
                        "failed to initialize resource clients: empty account ID",
                        details={"provider": cls.provider_name},
                    )
                if account_id in bundles:
                    continue
                try:
                    bundle = await build_bundle(account_id, credential, specs)
                except ConstructionError as exc:
                    logger.error(
                        "account_clients_init_failed",
                        provider=cls.provider_name,
                        account_id=account_id,
                        handle=exc.details.get("handle"),
                        error=exc.message,
                    )
                    raise ConstructionError(
                        f"failed to initialize Client for account ID '{account_id}': {exc.message}",
                        details={**exc.details, "provider": cls.provider_name},
                    ) from exc
                bundles[account_id] = bundle
        except ConstructionError:
            await release_handles(_bundle_handles(bundles.values()), provider=cls.provider_name)
            raise

        logger.info(
            "account_clients_initialized",
            provider=cls.provider_name,
            accounts=len(bundles),
            handles=[spec.name for spec in specs],
        )
        return cls(credential, bundles)

    def get_name(self) -> str:
        return self.provider_name

    @property
    def credential(self) -> Any:
        return self._credential

    def get_bundle(self, account_id: str) -> ClientBundle:
        bundle = self._bundles.get(account_id)
        if bundle is None:
            raise ResourceNotFoundError(
                f"no clients registered for account ID '{account_id}'",
                details={"provider": self.provider_name, "account_id": account_id},
            )
        return bundle

    def account_ids(self) -> Tuple[str, ...]:
        return tuple(self._bundles)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._bundles

    def __len__(self) -> int:
        return len(self._bundles)

    async def close(self) -> None:
        """Close every handle and the credential; the first failure is re-raised at the end."""
        targets = list(_bundle_handles(self._bundles.values()))
        targets.append(("", "credential", self._credential))
        first_error = await release_handles(targets, provider=self.provider_name)
        if first_error is not None:
            raise first_error

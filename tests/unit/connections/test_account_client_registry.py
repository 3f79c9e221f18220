"""
Tests for infraguard/shared/connections/registry.py - per-account client bundles
"""
import pytest

from infraguard.shared.connections.registry import (
    AccountClientRegistry,
    ClientBundle,
    HandleSpec,
    build_bundle,
    build_handle,
)
from infraguard.shared.core.exceptions import ConstructionError, ResourceNotFoundError


class NamedRegistry(AccountClientRegistry):
    provider_name = "Azure"


class RecordingSpecs:
    """Wraps handle factories and remembers every handle they built."""

    def __init__(self, specs):
        self.built = []
        self.specs = tuple(
            HandleSpec(spec.name, spec.label, self._recording(spec.factory)) for spec in specs
        )

    def _recording(self, factory):
        def build(account_id, cred):
            handle = factory(account_id, cred)
            if handle is not None:
                self.built.append(handle)
            return handle
        return build


def _raise_value_error(account_id, cred):
    raise ValueError("nope")


@pytest.mark.asyncio
async def test_initialize_builds_bundle_per_account(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=handle_specs)

    assert registry.account_ids() == ("acc-1", "acc-2")
    assert len(registry) == 2
    for account_id in ("acc-1", "acc-2"):
        bundle = registry.get_bundle(account_id)
        assert bundle.account_id == account_id
        assert bundle.names() == ("network", "peering", "security", "tags")
        for name in bundle:
            assert bundle[name] is not None
            assert bundle[name].account_id == account_id
            assert bundle[name].credential is credential


@pytest.mark.asyncio
async def test_bundle_handles_are_attribute_accessible(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, ["acc-1"], handle_specs=handle_specs)
    bundle = registry.get_bundle("acc-1")

    assert bundle.network is bundle["network"]
    assert bundle.tags.name == "tags"
    with pytest.raises(AttributeError):
        bundle.storage


@pytest.mark.asyncio
async def test_bundles_are_independent_per_account(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=handle_specs)

    assert registry.get_bundle("acc-1").network is not registry.get_bundle("acc-2").network


@pytest.mark.asyncio
async def test_get_bundle_for_unknown_account(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=handle_specs)

    with pytest.raises(ResourceNotFoundError) as exc:
        registry.get_bundle("acc-3")

    assert "acc-3" in exc.value.message
    assert exc.value.details["account_id"] == "acc-3"
    assert "acc-3" not in registry


@pytest.mark.asyncio
async def test_empty_account_list_yields_empty_registry(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, [], handle_specs=handle_specs)

    assert len(registry) == 0
    with pytest.raises(ResourceNotFoundError):
        registry.get_bundle("acc-1")


@pytest.mark.asyncio
async def test_duplicate_accounts_share_one_bundle(credential, handle_specs):
    registry = await NamedRegistry.initialize(credential, ["acc-1", "acc-1"], handle_specs=handle_specs)

    assert registry.account_ids() == ("acc-1",)


def test_provider_name():
    registry = NamedRegistry(object(), {})

    assert registry.get_name() == "Azure"
    assert registry.provider_name == "Azure"


@pytest.mark.asyncio
async def test_initialize_rejects_missing_credential(handle_specs):
    with pytest.raises(ConstructionError, match="no credential"):
        await NamedRegistry.initialize(None, ["acc-1"], handle_specs=handle_specs)


@pytest.mark.asyncio
async def test_initialize_rejects_empty_account_id(credential, handle_specs):
    recording = RecordingSpecs(handle_specs)

    with pytest.raises(ConstructionError, match="empty account ID"):
        await NamedRegistry.initialize(credential, ["acc-1", "  "], handle_specs=recording.specs)

    assert len(recording.built) == 4
    assert all(handle.closed for handle in recording.built)


@pytest.mark.asyncio
async def test_initialize_without_handles_fails(credential):
    with pytest.raises(ConstructionError, match="no handles"):
        await AccountClientRegistry.initialize(credential, ["acc-1"])


class TestAllOrNothing:
    @pytest.mark.asyncio
    async def test_raising_constructor_aborts_initialization(self, credential, handle_specs, handle_factory):
        def broken(account_id, cred):
            if account_id == "acc-2":
                raise ValueError("subscription disabled")
            return handle_factory("security")(account_id, cred)

        specs = handle_specs[:2] + (HandleSpec("security", "Security Group Client", broken),) + handle_specs[3:]

        with pytest.raises(ConstructionError) as exc:
            await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=specs)

        err = exc.value
        assert err.message.startswith("failed to initialize Client for account ID 'acc-2'")
        assert "failed to create Security Group Client: subscription disabled" in err.message
        assert err.details == {"account_id": "acc-2", "handle": "security", "provider": "Azure"}
        assert isinstance(err.__cause__, ConstructionError)
        assert isinstance(err.__cause__.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_empty_client_aborts_initialization(self, credential, handle_specs):
        specs = handle_specs + (HandleSpec("dns", "DNS Client", lambda account_id, cred: None),)

        with pytest.raises(ConstructionError) as exc:
            await NamedRegistry.initialize(credential, ["acc-1"], handle_specs=specs)

        assert "failed to create DNS Client. Got empty client" in exc.value.message
        assert exc.value.details["handle"] == "dns"

    @pytest.mark.asyncio
    async def test_first_failing_handle_is_reported(self, credential, handle_specs):
        def boom(account_id, cred):
            raise RuntimeError("unreachable")

        specs = (handle_specs[0], HandleSpec("peering", "Peering Client", boom),
                 HandleSpec("security", "Security Group Client", lambda a, c: None))

        with pytest.raises(ConstructionError) as exc:
            await NamedRegistry.initialize(credential, ["acc-1"], handle_specs=specs)

        assert exc.value.details["handle"] == "peering"

    @pytest.mark.asyncio
    async def test_failed_initialize_closes_every_built_handle(self, credential, handle_specs):
        def fails_for_second_account(account_id, cred):
            if account_id == "acc-2":
                raise RuntimeError("quota exceeded")
            return handle_specs[3].factory(account_id, cred)

        recording = RecordingSpecs(
            handle_specs[:3] + (HandleSpec("tags", "Tag Client", fails_for_second_account),)
        )

        with pytest.raises(ConstructionError):
            await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=recording.specs)

        # All of acc-1 plus the three acc-2 handles built before the failure.
        assert len(recording.built) == 7
        assert all(handle.closed for handle in recording.built)
        assert not credential.closed


@pytest.mark.asyncio
async def test_build_bundle_closes_partial_bundle(credential, handle_specs):
    recording = RecordingSpecs(handle_specs[:2] + (HandleSpec("tags", "Tag Client", _raise_value_error),))

    with pytest.raises(ConstructionError, match="failed to create Tag Client: nope"):
        await build_bundle("acc-1", credential, recording.specs)

    assert [handle.name for handle in recording.built] == ["network", "peering"]
    assert all(handle.closed for handle in recording.built)


def test_build_handle_checks_both_failure_modes(credential):
    with pytest.raises(ConstructionError, match="failed to create Tag Client: nope"):
        build_handle("acc-1", credential, HandleSpec("tags", "Tag Client", _raise_value_error))
    with pytest.raises(ConstructionError, match="Got empty client"):
        build_handle("acc-1", credential, HandleSpec("tags", "Tag Client", lambda a, c: None))


def test_client_bundle_is_read_only():
    bundle = ClientBundle("acc-1", {"network": object()})

    with pytest.raises(TypeError):
        bundle["network"] = object()
    assert len(bundle) == 1
    assert "acc-1" in repr(bundle)


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_handles_and_credential(self, credential, handle_specs):
        registry = await NamedRegistry.initialize(credential, ["acc-1", "acc-2"], handle_specs=handle_specs)

        await registry.close()

        for account_id in registry.account_ids():
            assert all(handle.closed for handle in registry.get_bundle(account_id).values())
        assert credential.closed

    @pytest.mark.asyncio
    async def test_close_continues_past_failures(self, credential, handle_specs):
        class Stubborn:
            def close(self):
                raise RuntimeError("still in use")

        specs = (HandleSpec("stubborn", "Stubborn Client", lambda a, c: Stubborn()),) + handle_specs
        registry = await NamedRegistry.initialize(credential, ["acc-1"], handle_specs=specs)

        with pytest.raises(RuntimeError, match="still in use"):
            await registry.close()

        assert registry.get_bundle("acc-1").network.closed
        assert credential.closed

    @pytest.mark.asyncio
    async def test_close_skips_objects_without_close(self, handle_specs):
        registry = await NamedRegistry.initialize(object(), ["acc-1"], handle_specs=handle_specs)

        await registry.close()

        assert registry.get_bundle("acc-1").peering.closed

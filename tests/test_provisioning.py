"""Per-environment parameters for the infrastructure generator."""

import json

from sqlalchemy import func, select

from shipyard.auth.jwt import Role
from shipyard.db.models import App, AppBuild, Environment, Organization, SigningKey
from shipyard.provisioning.generator import ProvisioningGenerator


async def _row_counts(session) -> dict[str, int]:
    counts = {}
    for model in (Organization, Environment, App, AppBuild, SigningKey):
        counts[model.__tablename__] = (
            await session.execute(select(func.count()).select_from(model))
        ).scalar_one()
    return counts


async def test_one_parameter_set_per_environment(session, seed, issuer, keystore) -> None:
    generator = ProvisioningGenerator(session, issuer, keystore)

    parameters = await generator.generate()

    assert [(p.org_slug, p.environment_slug) for p in parameters] == [
        ("acme", "dev"),
        ("acme", "prod"),
        ("globex", "dev"),
    ]
    prod = parameters[1]
    assert prod.is_production is True
    assert prod.runner_replicas == 3
    assert prod.environment_id == str(seed.prod.id)
    assert prod.core_schema_version == "0.1.0"
    assert prod.runner_host == "acme-prod.127.0.0.1.nip.io"
    assert prod.rest_host == "rest.acme-prod.127.0.0.1.nip.io"
    assert prod.auth_host == "auth.acme-prod.127.0.0.1.nip.io"
    assert prod.database_host == "db.acme-prod.127.0.0.1.nip.io"


async def test_minted_tokens_verify(session, seed, issuer, keystore, verifier) -> None:
    (dev, _, _) = await ProvisioningGenerator(session, issuer, keystore).generate()

    anon = await verifier.verify(dev.anon_key)
    service = await verifier.verify(dev.service_key)
    runner = await verifier.verify(dev.runner_key)

    assert anon.role is Role.ANON
    assert anon.has_audience("acme")
    assert service.role is Role.SERVICE_ROLE
    assert service.has_audience("acme")
    assert runner.role is Role.RUNNER
    assert runner.is_scoped_to(seed.org.id, seed.env.id)
    assert runner.env_slug == "dev"


async def test_published_key_set_included(session, seed, issuer, keystore) -> None:
    (dev, *_) = await ProvisioningGenerator(session, issuer, keystore).generate()

    jwks = json.loads(dev.jwks)
    assert [k["kid"] for k in jwks["keys"]] == [keystore.material.kid]


async def test_generation_is_read_only(session, seed, issuer, keystore) -> None:
    before = await _row_counts(session)

    await ProvisioningGenerator(session, issuer, keystore).generate()
    await ProvisioningGenerator(session, issuer, keystore).generate()

    assert await _row_counts(session) == before


async def test_no_environments(session, issuer, keystore) -> None:
    assert await ProvisioningGenerator(session, issuer, keystore).generate() == []

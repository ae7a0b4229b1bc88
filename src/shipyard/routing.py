"""Hostname and base-URL derivation for tenant runtimes.

Pure functions shared by the activation push and the provisioning
generator. Every (organization, environment) pair maps to one tenant host
prefix ``{org}-{env}``.
"""

from shipyard.config import settings


def tenant_prefix(org_slug: str, env_slug: str) -> str:
    return f"{org_slug}-{env_slug}"


def runtime_base_url(
    org_slug: str,
    env_slug: str,
    production: bool,
    *,
    base_domain: str | None = None,
    runner_port: int | None = None,
) -> str:
    """Base URL of the tenant runner.

    Production traffic stays on the cluster network; every other environment
    goes through the public per-tenant hostname.
    """
    prefix = tenant_prefix(org_slug, env_slug)
    if production:
        port = runner_port if runner_port is not None else settings.runner_port
        return f"http://runner.{prefix}.svc.cluster.local:{port}"
    domain = base_domain or settings.base_domain
    return f"https://{prefix}.{domain}"


def tenant_hostnames(org_slug: str, env_slug: str, *, base_domain: str | None = None) -> dict[str, str]:
    """Public hostnames served for one tenant environment."""
    prefix = tenant_prefix(org_slug, env_slug)
    domain = base_domain or settings.base_domain
    return {
        "runner": f"{prefix}.{domain}",
        "rest": f"rest.{prefix}.{domain}",
        "auth": f"auth.{prefix}.{domain}",
        "database": f"db.{prefix}.{domain}",
    }

"""
Tenant resolution for inbound requests.

The resolver turns the three tenant-bearing parts of a request (the
``X-Tenant-ID`` header, the Host header and an optional ``/tenant/{slug}``
path prefix) into a ``TenantContext``. Resolution is deterministic; the
first source that names a tenant wins:

    1. Header      explicit, used by trusted internal callers
    2. Subdomain   the tenant label of the host, or a custom domain
    3. Path        /tenant/{slug}/...
    4. Default     only when a default slug is configured

A request that names a tenant explicitly (header or path prefix) and gets
it wrong fails; it never falls through to a later source. The default
tenant is an opt-in precedence step, never a fallback for an error.

When a header and a subdomain disagree the header wins and the mismatch is
logged on the ``luxgen.security`` logger as a possible spoofing attempt or
misconfiguration.

Example:
    resolver = TenantResolver(registry, base_domains=["example.com"])
    ctx = await resolver.resolve(host="sub.acme.example.com", headers={}, path="/")
    assert ctx.slug == "acme"
    assert ctx.resolved_from == ResolvedFrom.SUBDOMAIN
"""

from typing import Iterable, Mapping
import logging

from luxgen.multitenancy.context import ResolvedFrom, TenantContext
from luxgen.multitenancy.errors import TenantResolutionError
from luxgen.multitenancy.registry import TenantRegistry
from luxgen.multitenancy.tenant import TenantRecord, is_valid_slug

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("luxgen.security")

DEFAULT_RESERVED_SUBDOMAINS = ("www", "api", "app", "localhost")


def normalize_host(host: str | None) -> str:
    """Lower-case a Host header value and strip its port.

    Handles bracketed IPv6 literals (``[::1]:8000``) and a trailing dot.
    """
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    host = host.split(":", 1)[0]
    return host.rstrip(".")


def _is_ip_literal(host: str) -> bool:
    if host.startswith("["):
        return True
    labels = host.split(".")
    return len(labels) == 4 and all(label.isdigit() for label in labels)


def split_tenant_path(path: str, prefix: str) -> tuple[str | None, str]:
    """Split ``{prefix}/{slug}/rest`` into ``(slug, "/rest")``.

    Returns ``(None, path)`` when the path does not carry the prefix.
    """
    prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    if not prefix:
        return None, path
    if path != prefix and not path.startswith(prefix + "/"):
        return None, path
    remainder = path[len(prefix):].lstrip("/")
    if not remainder:
        return None, path
    slug, _, rest = remainder.partition("/")
    return slug, "/" + rest


class TenantResolver:
    """Derives the tenant for a request.

    Attributes:
        header_name: Header carrying an explicit tenant id or slug.
        base_domains: Domains under which tenants get subdomains. The label
                      immediately left of a base domain is the tenant slug
                      (``sub.acme.example.com`` -> ``acme``). With no base
                      domains, the third label from the right is used.
        reserved_subdomains: Labels that never name a tenant.
        path_prefix: Prefix for path-based tenancy (``/tenant``). An empty
                     prefix treats the first path segment as a candidate
                     slug that falls through when unknown.
        default_slug: Tenant used when nothing else matches. None disables
                      the default step.

    Example:
        resolver = TenantResolver(registry, default_slug=None)
        ctx = await resolver.resolve(
            host="api.luxgen.com",
            headers={"X-Tenant-ID": "acme"},
            path="/api/polls",
        )
    """

    def __init__(
        self,
        registry: TenantRegistry,
        header_name: str = "X-Tenant-ID",
        base_domains: Iterable[str] = (),
        reserved_subdomains: Iterable[str] = DEFAULT_RESERVED_SUBDOMAINS,
        path_prefix: str = "/tenant",
        default_slug: str | None = None,
    ):
        self._registry = registry
        self.header_name = header_name
        self.base_domains = tuple(
            sorted((d.strip().lower().strip(".") for d in base_domains if d.strip()), key=len, reverse=True)
        )
        self.reserved_subdomains = frozenset(s.lower() for s in reserved_subdomains)
        self.path_prefix = path_prefix
        self.default_slug = default_slug or None

    # -- request parts -------------------------------------------------------

    def _header_value(self, headers: Mapping[str, str]) -> str | None:
        wanted = self.header_name.lower()
        for key, value in headers.items():
            if key.lower() == wanted:
                value = value.strip()
                return value or None
        return None

    def subdomain_of(self, host: str | None) -> str | None:
        """Extract the tenant label from a host, if it has one."""
        host = normalize_host(host)
        if not host or _is_ip_literal(host):
            return None

        label: str | None = None
        if self.base_domains:
            for base in self.base_domains:
                if host.endswith("." + base):
                    label = host[: -len(base) - 1].split(".")[-1]
                    break
        else:
            labels = host.split(".")
            if len(labels) >= 3:
                label = labels[-3]

        if not label or label in self.reserved_subdomains or not is_valid_slug(label):
            return None
        return label

    def path_candidate(self, path: str) -> tuple[str | None, bool]:
        """Get the slug named by the path.

        Returns:
            ``(slug, explicit)``. ``explicit`` is True when the slug came
            from the configured prefix and an unknown slug must fail.
        """
        if self.path_prefix.strip("/"):
            slug, _ = split_tenant_path(path, self.path_prefix)
            return slug, slug is not None
        first = path.lstrip("/").split("/", 1)[0]
        return (first if is_valid_slug(first) else None), False

    # -- lookups -------------------------------------------------------------

    async def _from_host(self, host: str | None) -> TenantRecord | None:
        normalized = normalize_host(host)
        if not normalized:
            return None
        if "." in normalized and normalized not in self.base_domains:
            record = await self._registry.find_by_domain(normalized)
            if record is not None:
                return record
        label = self.subdomain_of(normalized)
        if label is None:
            return None
        return await self._registry.find_by_slug(label)

    async def _from_header(self, value: str) -> TenantRecord | None:
        record = await self._registry.find_by_id(value)
        if record is None:
            record = await self._registry.find_by_slug(value.lower())
        return record

    def _accept(
        self,
        record: TenantRecord,
        source: ResolvedFrom,
        request_id: str | None,
    ) -> TenantContext:
        if not record.is_active:
            logger.info(
                f"Rejected {record.status.value} tenant {record.slug} resolved from {source.value}"
            )
            raise TenantResolutionError(
                f"Tenant '{record.slug}' is not active",
                code="tenant_inactive",
                source=source.value,
            )
        logger.debug(f"Resolved tenant {record.slug} from {source.value}")
        return TenantContext(
            tenant_id=record.id,
            slug=record.slug,
            resolved_from=source,
            request_id=request_id,
        )

    # -- resolution ----------------------------------------------------------

    async def resolve(
        self,
        *,
        host: str | None,
        headers: Mapping[str, str],
        path: str = "/",
        request_id: str | None = None,
    ) -> TenantContext:
        """Resolve the tenant for a request.

        Args:
            host: The Host header value.
            headers: Request headers (case-insensitive lookup).
            path: The request path as sent by the client.
            request_id: Correlation id copied onto the context.

        Returns:
            The TenantContext for the request.

        Raises:
            TenantResolutionError: If no known, active tenant is identified,
                or an explicit header/path names an unknown tenant.
        """
        header_value = self._header_value(headers)
        host_record = await self._from_host(host)

        if header_value is not None:
            record = await self._from_header(header_value)
            if record is None:
                security_logger.warning(
                    f"Unknown tenant in {self.header_name} header: {header_value!r} "
                    f"(host={host!r}, request_id={request_id})"
                )
                raise TenantResolutionError(
                    f"Unknown tenant '{header_value}'",
                    code="tenant_not_found",
                    source=ResolvedFrom.HEADER.value,
                )
            if host_record is not None and host_record.id != record.id:
                security_logger.warning(
                    f"Tenant header/subdomain mismatch: header={record.slug} "
                    f"subdomain={host_record.slug} host={host!r} request_id={request_id}; "
                    f"using header"
                )
            return self._accept(record, ResolvedFrom.HEADER, request_id)

        if host_record is not None:
            return self._accept(host_record, ResolvedFrom.SUBDOMAIN, request_id)

        slug, explicit = self.path_candidate(path)
        if slug is not None:
            record = await self._registry.find_by_slug(slug)
            if record is not None:
                return self._accept(record, ResolvedFrom.PATH_PARAM, request_id)
            if explicit:
                raise TenantResolutionError(
                    f"Unknown tenant '{slug}'",
                    code="tenant_not_found",
                    source=ResolvedFrom.PATH_PARAM.value,
                )

        if self.default_slug is not None:
            record = await self._registry.find_by_slug(self.default_slug)
            if record is None:
                logger.error(f"Configured default tenant {self.default_slug!r} does not exist")
                raise TenantResolutionError(
                    f"Unknown tenant '{self.default_slug}'",
                    code="tenant_not_found",
                    source=ResolvedFrom.DEFAULT.value,
                )
            return self._accept(record, ResolvedFrom.DEFAULT, request_id)

        raise TenantResolutionError(
            "Tenant not identified. Provide it via subdomain, "
            f"{self.header_name} header or {self.path_prefix or '/'}{{slug}} path."
        )

    def __repr__(self) -> str:
        return (
            f"<TenantResolver header={self.header_name} "
            f"path_prefix={self.path_prefix!r} default={self.default_slug!r}>"
        )

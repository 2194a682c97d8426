"""nginx configuration generator for domains, NLB streams and access lists.

All config text is produced here; publishing, validation and reload happen
elsewhere. Nothing in this module touches the filesystem or runs commands.
"""

import ipaddress
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from edgeagent.config import get_settings
from edgeagent.errors import InvalidInputError
from edgeagent.models.entities import (
    AccessList,
    CustomLocation,
    Domain,
    NetworkLoadBalancer,
    Upstream,
)

USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9._@-]+$')
MAX_CREDENTIAL_LENGTH = 255

# Hostnames, IPv4 and bracketed IPv6 only; anything else could break out of a directive
HOST_PATTERN = re.compile(r'^[a-zA-Z0-9._:\[\]-]+$')
LOCATION_PATH_PATTERN = re.compile(r'^[^\s{};"\'\\]+$')

PASS_DIRECTIVE_PATTERN = re.compile(
    r'^\s*(proxy_pass|grpc_pass|fastcgi_pass|uwsgi_pass|scgi_pass|memcached_pass)\s',
    re.MULTILINE
)

DOMAIN_ALGORITHMS = {
    "round_robin": None,
    "least_conn": "least_conn;",
    "ip_hash": "ip_hash;",
}

STREAM_ALGORITHMS = {
    "round_robin": None,
    "least_conn": "least_conn;",
    "ip_hash": "hash $remote_addr consistent;",
    "hash": "hash $remote_addr;",
}

# transport -> listen socket suffixes
STREAM_TRANSPORTS = {
    "tcp": ("",),
    "udp": (" udp",),
    "tcp_udp": ("", " udp"),
}

# nginx stream defaults, omitted from generated lines to keep diffs small
NLB_DEFAULT_WEIGHT = 1
NLB_DEFAULT_MAX_FAILS = 3
NLB_DEFAULT_FAIL_TIMEOUT = 10
NLB_DEFAULT_PROXY_TIMEOUT = 3
NLB_DEFAULT_CONNECT_TIMEOUT = 1

KEEPALIVE_PER_UPSTREAM = 10

HSTS_HEADER = "max-age=31536000; includeSubDomains"
HSTS_PRELOAD_HEADER = "max-age=63072000; includeSubDomains; preload"

SSL_PROTOCOLS = "TLSv1.2 TLSv1.3"
SSL_CIPHERS = (
    "ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256:"
    "ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384:"
    "ECDHE-ECDSA-CHACHA20-POLY1305:ECDHE-RSA-CHACHA20-POLY1305:"
    "DHE-RSA-AES128-GCM-SHA256:DHE-RSA-AES256-GCM-SHA384"
)


@dataclass
class GeneratedConfig:
    """Config file body plus the files it points at"""
    text: str
    referenced_files: list[str] = field(default_factory=list)
    needs_credential_file: bool = False


def sanitize_identifier(value: str) -> str:
    """Replace every non-identifier character with '_' (a.example.com -> a_example_com)"""
    return re.sub(r'[^a-zA-Z0-9_]', '_', value)


def validate_username(username: str) -> str:
    """Reject usernames that are unsafe to pass to htpasswd"""
    if '\0' in username:
        raise InvalidInputError("Username contains a null byte", stage="generate")
    if len(username) == 0 or len(username) > MAX_CREDENTIAL_LENGTH:
        raise InvalidInputError("Username must be between 1 and 255 characters", stage="generate")
    if not USERNAME_PATTERN.match(username):
        raise InvalidInputError(
            "Username contains invalid characters (allowed: letters, digits, . _ @ -)",
            stage="generate"
        )
    return username


def escape_password(password: str) -> str:
    """Bound the password length and escape it for a single-quoted shell argument"""
    if '\0' in password:
        raise InvalidInputError("Password contains a null byte", stage="generate")
    size = len(password.encode('utf-8'))
    if size == 0 or size > MAX_CREDENTIAL_LENGTH:
        raise InvalidInputError("Password must be between 1 and 255 bytes", stage="generate")
    return password.replace("'", "'\\''")


def _check_host(host: str, entity: str):
    if not HOST_PATTERN.match(host):
        raise InvalidInputError(f"Invalid upstream host: {host!r}", entity=entity, stage="generate")


def _check_network(value: str, entity: str) -> str:
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        raise InvalidInputError(f"Invalid IP/CIDR: {value!r}", entity=entity, stage="generate")
    return value


class NginxConfigGenerator:
    """Generates nginx configuration text for each entity kind"""

    def __init__(
        self,
        ssl_dir: str = "/etc/nginx/ssl",
        access_lists_dir: str = "/etc/nginx/access-lists",
        htpasswd_dir: str = "/etc/nginx/htpasswd",
        log_dir: str = "/var/log/nginx",
        acl_rules_path: str = "/etc/nginx/conf.d/acl-rules.conf",
        acme_snippet_path: str = "/etc/nginx/snippets/acme-challenge.conf"
    ):
        self.ssl_dir = Path(ssl_dir)
        self.access_lists_dir = Path(access_lists_dir)
        self.htpasswd_dir = Path(htpasswd_dir)
        self.log_dir = Path(log_dir)
        self.acl_rules_path = acl_rules_path
        self.acme_snippet_path = acme_snippet_path

    # ==================== Paths ====================

    def access_list_path(self, name: str) -> str:
        return str(self.access_lists_dir / f"{name}.conf")

    def htpasswd_path(self, name: str) -> str:
        return str(self.htpasswd_dir / f"{name}.htpasswd")

    def certificate_paths(self, domain: Domain) -> dict[str, str]:
        paths = {
            "cert": str(self.ssl_dir / f"{domain.name}.crt"),
            "key": str(self.ssl_dir / f"{domain.name}.key"),
        }
        if domain.certificate and domain.certificate.has_chain:
            paths["chain"] = str(self.ssl_dir / f"{domain.name}.chain.crt")
        return paths

    # ==================== Dispatch ====================

    def generate(self, entity, cloudflare_ips: Iterable[str] = ()) -> GeneratedConfig:
        """Generate config for any entity kind"""
        if isinstance(entity, Domain):
            return self.generate_domain_config(entity, cloudflare_ips)
        if isinstance(entity, NetworkLoadBalancer):
            return self.generate_nlb_config(entity)
        if isinstance(entity, AccessList):
            return self.generate_access_list_config(entity)
        raise InvalidInputError(f"Unknown entity type: {type(entity).__name__}", stage="generate")

    # ==================== Domain ====================

    def generate_domain_config(self, domain: Domain, cloudflare_ips: Iterable[str] = ()) -> GeneratedConfig:
        """Generate upstream pools and server blocks for a domain"""
        if not domain.upstreams:
            raise InvalidInputError("Domain has no upstreams", entity=domain.name, stage="generate")

        pool = f"{sanitize_identifier(domain.name)}_backend"
        referenced: list[str] = []

        blocks = [self._upstream_block(domain, pool, domain.upstreams)]
        for location in domain.custom_locations:
            if self._location_needs_pool(location, domain.name):
                blocks.append(self._upstream_block(domain, self._location_pool(domain, location), location.upstreams))

        acl_paths = self._access_list_paths(domain)
        referenced.extend(acl_paths)
        include_lines = [f"include {path};" for path in acl_paths]
        real_ip_lines = self._real_ip_lines(domain, cloudflare_ips)

        secure = domain.tls_enabled and domain.certificate is not None

        blocks.append(self._http_server_block(domain, pool, secure, real_ip_lines, include_lines))
        if secure:
            cert_paths = self.certificate_paths(domain)
            referenced.extend(cert_paths.values())
            blocks.append(self._https_server_block(domain, pool, cert_paths, real_ip_lines, include_lines))

        return GeneratedConfig(text="\n\n".join(blocks) + "\n", referenced_files=referenced)

    def _upstream_block(self, domain: Domain, name: str, upstreams: list[Upstream]) -> str:
        if domain.load_balancer.algorithm not in DOMAIN_ALGORITHMS:
            raise InvalidInputError(
                f"Unknown load balancing algorithm: {domain.load_balancer.algorithm}",
                entity=domain.name, stage="generate"
            )
        directive = DOMAIN_ALGORITHMS[domain.load_balancer.algorithm]

        lines = [f"upstream {name} {{"]
        if directive:
            lines.append(f"    {directive}")
        for u in upstreams:
            _check_host(u.host, domain.name)
            lines.append(
                f"    server {u.host}:{u.port} weight={u.weight} "
                f"max_fails={u.max_fails} fail_timeout={u.fail_timeout}s;"
            )
        lines.append(f"    keepalive {len(upstreams) * KEEPALIVE_PER_UPSTREAM};")
        lines.append("}")
        return "\n".join(lines)

    def _location_pool(self, domain: Domain, location: CustomLocation) -> str:
        path_part = sanitize_identifier(location.path).strip("_") or "root"
        return f"{sanitize_identifier(domain.name)}_loc_{path_part}_backend"

    def _location_needs_pool(self, location: CustomLocation, entity: str) -> bool:
        if not LOCATION_PATH_PATTERN.match(location.path):
            raise InvalidInputError(f"Invalid location path: {location.path!r}", entity=entity, stage="generate")
        if not location.use_upstream:
            return False
        if location.config and PASS_DIRECTIVE_PATTERN.search(location.config):
            return False
        if not location.upstreams:
            raise InvalidInputError(
                f"Location {location.path} uses an upstream but has none",
                entity=entity, stage="generate"
            )
        return True

    def _real_ip_lines(self, domain: Domain, cloudflare_ips: Iterable[str]) -> list[str]:
        if not domain.real_ip_enabled:
            return []
        lines = ["    # Real IP"]
        if domain.real_ip_cloudflare:
            for cidr in cloudflare_ips:
                lines.append(f"    set_real_ip_from {_check_network(cidr, domain.name)};")
        for cidr in domain.real_ip_custom_cidrs:
            lines.append(f"    set_real_ip_from {_check_network(cidr, domain.name)};")
        lines.append("    real_ip_header X-Forwarded-For;")
        lines.append("    real_ip_recursive on;")
        return lines

    def _access_list_paths(self, domain: Domain) -> list[str]:
        """Access list files for bindings enabled on both ends, in binding order"""
        return [
            self.access_list_path(binding.access_list.name)
            for binding in domain.access_lists
            if binding.enabled and binding.access_list.enabled
        ]

    def _server_preamble(
        self,
        domain: Domain,
        listen: str,
        real_ip_lines: list[str],
        include_lines: list[str]
    ) -> list[str]:
        lines = [
            "server {",
            f"    listen {listen};",
            f"    server_name {domain.name};",
        ]
        if real_ip_lines:
            lines.append("")
            lines.extend(real_ip_lines)
        lines.append("")
        lines.append(f"    include {self.acl_rules_path};")
        for include in include_lines:
            lines.append(f"    {include}")
        return lines

    def _http_server_block(
        self,
        domain: Domain,
        pool: str,
        redirect: bool,
        real_ip_lines: list[str],
        include_lines: list[str]
    ) -> str:
        lines = self._server_preamble(domain, "80", real_ip_lines, include_lines)
        lines.append(f"    include {self.acme_snippet_path};")
        lines.append("")

        if redirect:
            lines.append("    return 301 https://$server_name$request_uri;")
            lines.append("}")
            return "\n".join(lines)

        lines.extend(self._proxy_body(domain, pool, log_suffix=""))
        lines.append("}")
        return "\n".join(lines)

    def _https_server_block(
        self,
        domain: Domain,
        pool: str,
        cert_paths: dict[str, str],
        real_ip_lines: list[str],
        include_lines: list[str]
    ) -> str:
        listen = "443 ssl http2" if domain.http2_enabled else "443 ssl"
        lines = self._server_preamble(domain, listen, real_ip_lines, include_lines)
        lines.append("")
        lines.append(f"    ssl_certificate {cert_paths['cert']};")
        lines.append(f"    ssl_certificate_key {cert_paths['key']};")
        if "chain" in cert_paths:
            lines.append(f"    ssl_trusted_certificate {cert_paths['chain']};")
        lines.extend([
            f"    ssl_protocols {SSL_PROTOCOLS};",
            f"    ssl_ciphers {SSL_CIPHERS};",
            "    ssl_prefer_server_ciphers on;",
            "    ssl_session_cache shared:SSL:10m;",
            "    ssl_session_timeout 10m;",
            "    ssl_stapling on;",
            "    ssl_stapling_verify on;",
            "",
        ])
        if domain.hsts_enabled:
            hsts = HSTS_PRELOAD_HEADER if domain.hsts_preload else HSTS_HEADER
            lines.append(f'    add_header Strict-Transport-Security "{hsts}" always;')
        lines.extend([
            '    add_header X-Frame-Options "SAMEORIGIN" always;',
            '    add_header X-Content-Type-Options "nosniff" always;',
            '    add_header X-XSS-Protection "1; mode=block" always;',
            "",
        ])
        lines.extend(self._proxy_body(domain, pool, log_suffix="_ssl"))
        lines.append("}")
        return "\n".join(lines)

    def _proxy_body(self, domain: Domain, pool: str, log_suffix: str) -> list[str]:
        lines = [
            f"    modsecurity {'on' if domain.modsec_enabled else 'off'};",
            "",
            f"    access_log {self.log_dir}/{domain.name}{log_suffix}_access.log main;",
            f"    error_log {self.log_dir}/{domain.name}{log_suffix}_error.log warn;",
            "",
        ]

        for location in domain.custom_locations:
            lines.extend(self._custom_location(domain, location))
            lines.append("")

        lines.append("    location / {")
        if domain.grpc_enabled:
            scheme = "grpcs" if self._has_https(domain.upstreams) else "grpc"
            lines.extend(self._grpc_headers())
            lines.append(f"        grpc_pass {scheme}://{pool};")
        else:
            scheme = "https" if self._has_https(domain.upstreams) else "http"
            lines.extend(self._proxy_headers())
            lines.append(f"        proxy_pass {scheme}://{pool};")
            lines.extend(self._https_backend_settings(domain, domain.upstreams))
            lines.extend(self._health_check_settings(domain))
        lines.append("    }")
        lines.extend([
            "",
            "    location /nginx_health {",
            "        access_log off;",
            '        return 200 "healthy\\n";',
            "        add_header Content-Type text/plain;",
            "    }",
        ])
        return lines

    def _custom_location(self, domain: Domain, location: CustomLocation) -> list[str]:
        lines = [f"    location {location.path} {{"]
        if self._location_needs_pool(location, domain.name):
            pool = self._location_pool(domain, location)
            https = self._has_https(location.upstreams)
            if location.upstream_type == "proxy_pass":
                lines.extend(self._proxy_headers())
                lines.append(f"        proxy_pass {'https' if https else 'http'}://{pool};")
                lines.extend(self._https_backend_settings(domain, location.upstreams))
            elif location.upstream_type in ("grpc_pass", "grpcs_pass"):
                scheme = "grpcs" if location.upstream_type == "grpcs_pass" else "grpc"
                lines.extend(self._grpc_headers())
                lines.append(f"        grpc_pass {scheme}://{pool};")
            else:
                raise InvalidInputError(
                    f"Unknown upstream type: {location.upstream_type}",
                    entity=domain.name, stage="generate"
                )
        if location.config:
            for raw in location.config.strip().splitlines():
                lines.append(f"        {raw.strip()}" if raw.strip() else "")
        lines.append("    }")
        return lines

    @staticmethod
    def _has_https(upstreams: list[Upstream]) -> bool:
        return any(u.protocol == "https" for u in upstreams)

    @staticmethod
    def _proxy_headers() -> list[str]:
        return [
            "        proxy_set_header Host $host;",
            "        proxy_set_header X-Real-IP $remote_addr;",
            "        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
            "        proxy_set_header X-Forwarded-Proto $scheme;",
        ]

    @staticmethod
    def _grpc_headers() -> list[str]:
        return [
            "        grpc_set_header Host $host;",
            "        grpc_set_header X-Real-IP $remote_addr;",
            "        grpc_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
        ]

    def _https_backend_settings(self, domain: Domain, upstreams: list[Upstream]) -> list[str]:
        if not self._has_https(upstreams):
            return []
        verify = any(u.protocol == "https" and u.ssl_verify for u in upstreams)
        return [
            "",
            f"        proxy_ssl_verify {'on' if verify else 'off'};",
            "        proxy_ssl_server_name on;",
            f"        proxy_ssl_name {domain.name};",
            "        proxy_ssl_protocols TLSv1.2 TLSv1.3;",
        ]

    @staticmethod
    def _health_check_settings(domain: Domain) -> list[str]:
        if not domain.load_balancer.health_check_enabled:
            return []
        return [
            "",
            "        proxy_next_upstream error timeout http_502 http_503 http_504;",
            "        proxy_next_upstream_tries 3;",
            f"        proxy_next_upstream_timeout {domain.load_balancer.health_check_timeout}s;",
        ]

    # ==================== Network Load Balancer ====================

    def generate_nlb_config(self, nlb: NetworkLoadBalancer) -> GeneratedConfig:
        """Generate stream upstream and one server block per transport"""
        if nlb.algorithm not in STREAM_ALGORITHMS:
            raise InvalidInputError(f"Unknown algorithm: {nlb.algorithm}", entity=nlb.name, stage="generate")
        if nlb.protocol not in STREAM_TRANSPORTS:
            raise InvalidInputError(f"Unknown protocol: {nlb.protocol}", entity=nlb.name, stage="generate")
        if not nlb.upstreams:
            raise InvalidInputError("NLB has no upstreams", entity=nlb.name, stage="generate")

        pool = sanitize_identifier(nlb.name)
        directive = STREAM_ALGORITHMS[nlb.algorithm]

        upstream_lines = [f"upstream {pool} {{"]
        if directive:
            upstream_lines.append(f"    {directive}")
        for u in nlb.upstreams:
            _check_host(u.host, nlb.name)
            params = []
            if u.weight != NLB_DEFAULT_WEIGHT:
                params.append(f"weight={u.weight}")
            if u.max_fails != NLB_DEFAULT_MAX_FAILS:
                params.append(f"max_fails={u.max_fails}")
            if u.fail_timeout != NLB_DEFAULT_FAIL_TIMEOUT:
                params.append(f"fail_timeout={u.fail_timeout}s")
            if u.max_conns > 0:
                params.append(f"max_conns={u.max_conns}")
            if u.backup:
                params.append("backup")
            if u.down:
                params.append("down")
            suffix = " " + " ".join(params) if params else ""
            upstream_lines.append(f"    server {u.host}:{u.port}{suffix};")
        upstream_lines.append("}")

        server_blocks = [
            self._stream_server_block(nlb, pool, listen_suffix)
            for listen_suffix in STREAM_TRANSPORTS[nlb.protocol]
        ]

        header = "\n".join([
            f"# Network Load Balancer: {nlb.name}",
            f"# Protocol: {nlb.protocol}",
            f"# Port: {nlb.port}",
            f"# Algorithm: {nlb.algorithm}",
            "# Managed by edge-proxy-agent - do not edit manually",
        ])
        text = "\n\n".join([header, "\n".join(upstream_lines)] + server_blocks) + "\n"
        return GeneratedConfig(text=text)

    @staticmethod
    def _stream_server_block(nlb: NetworkLoadBalancer, pool: str, listen_suffix: str) -> str:
        lines = [
            "server {",
            f"    listen {nlb.port}{listen_suffix};",
            f"    proxy_pass {pool};",
        ]
        if nlb.proxy_timeout != NLB_DEFAULT_PROXY_TIMEOUT:
            lines.append(f"    proxy_timeout {nlb.proxy_timeout}s;")
        if nlb.proxy_connect_timeout != NLB_DEFAULT_CONNECT_TIMEOUT:
            lines.append(f"    proxy_connect_timeout {nlb.proxy_connect_timeout}s;")
        if nlb.proxy_next_upstream:
            lines.append("    proxy_next_upstream on;")
            if nlb.proxy_next_upstream_timeout > 0:
                lines.append(f"    proxy_next_upstream_timeout {nlb.proxy_next_upstream_timeout}s;")
            if nlb.proxy_next_upstream_tries > 0:
                lines.append(f"    proxy_next_upstream_tries {nlb.proxy_next_upstream_tries};")
        lines.append("}")
        return "\n".join(lines)

    # ==================== Access List ====================

    def generate_access_list_config(self, access_list: AccessList) -> GeneratedConfig:
        """Generate allow/deny rules and/or basic auth directives"""
        self._check_access_list(access_list)

        header = [
            f"# {access_list.name}",
            f"# {access_list.description or 'No description'}",
            "",
        ]

        if access_list.type == "ip_whitelist":
            lines = header + self._ip_rules(access_list)
            return GeneratedConfig(text="\n".join(lines) + "\n")

        htpasswd_file = self.htpasswd_path(access_list.name)
        if access_list.type == "http_basic_auth":
            lines = header + self._auth_rules(htpasswd_file)
        else:
            lines = (
                header
                + ["# IP Whitelist"]
                + self._ip_rules(access_list)
                + ["", "# HTTP Basic Authentication"]
                + self._auth_rules(htpasswd_file)
            )
        return GeneratedConfig(
            text="\n".join(lines) + "\n",
            referenced_files=[htpasswd_file],
            needs_credential_file=True
        )

    def _check_access_list(self, access_list: AccessList):
        wants_ips = access_list.type in ("ip_whitelist", "combined")
        wants_users = access_list.type in ("http_basic_auth", "combined")
        if not (wants_ips or wants_users):
            raise InvalidInputError(
                f"Unknown access list type: {access_list.type}",
                entity=access_list.name, stage="generate"
            )
        if wants_ips and not access_list.allowed_ips:
            raise InvalidInputError(
                "At least one allowed IP is required", entity=access_list.name, stage="generate"
            )
        if wants_users and not access_list.auth_users:
            raise InvalidInputError(
                "At least one auth user is required", entity=access_list.name, stage="generate"
            )
        for ip in access_list.allowed_ips:
            _check_network(ip, access_list.name)
        for user in access_list.auth_users:
            try:
                validate_username(user.username)
                escape_password(user.password)
            except InvalidInputError as e:
                e.entity = access_list.name
                raise

    @staticmethod
    def _ip_rules(access_list: AccessList) -> list[str]:
        return [f"allow {ip};" for ip in access_list.allowed_ips] + ["deny all;"]

    @staticmethod
    def _auth_rules(htpasswd_file: str) -> list[str]:
        return [
            'auth_basic "Restricted Access";',
            f"auth_basic_user_file {htpasswd_file};",
        ]


def get_config_generator(settings: Optional[object] = None) -> NginxConfigGenerator:
    """Create a generator wired to the configured nginx layout"""
    settings = settings or get_settings()
    return NginxConfigGenerator(
        ssl_dir=settings.ssl_dir,
        access_lists_dir=settings.access_lists_dir,
        htpasswd_dir=settings.htpasswd_dir,
        log_dir=settings.nginx_log_dir,
        acl_rules_path=settings.acl_rules_path,
        acme_snippet_path=settings.acme_snippet_path
    )

"""Entity records pushed by the panel: domains, network load balancers, access lists

The agent never loads these from storage; the panel sends them fully
populated (upstreams, certificate, bindings included).
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field

# RFC 1123 labels joined by dots; length is checked separately
DOMAIN_NAME_PATTERN = r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
ENTITY_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$"


# ==================== Domain ====================

class Upstream(BaseModel):
    """Backend endpoint of a domain"""
    host: str = Field(..., min_length=1, max_length=253)
    port: int = Field(..., ge=1, le=65535)
    protocol: str = Field("http", pattern="^(http|https)$")
    weight: int = Field(1, ge=1, le=1000)
    max_fails: int = Field(3, ge=0)
    fail_timeout: int = Field(10, ge=0, description="Seconds")
    ssl_verify: bool = True


class LoadBalancerConfig(BaseModel):
    """Pool algorithm and health-check tunables of a domain"""
    algorithm: str = Field("round_robin", pattern="^(round_robin|least_conn|ip_hash)$")
    health_check_enabled: bool = True
    health_check_interval: int = Field(30, ge=1)
    health_check_timeout: int = Field(5, ge=1)
    health_check_path: str = "/health"


class TlsCertificate(BaseModel):
    """Certificate metadata; files live in ssl_dir as <domain>.crt/.key/.chain.crt"""
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    has_chain: bool = False


class CustomLocation(BaseModel):
    """Extra location block with its own pool or raw directives"""
    path: str = Field(..., min_length=1)
    use_upstream: bool = True
    upstream_type: str = Field("proxy_pass", pattern="^(proxy_pass|grpc_pass|grpcs_pass)$")
    upstreams: list[Upstream] = Field(default_factory=list)
    config: Optional[str] = None


class AccessListRef(BaseModel):
    """Access list as seen from a domain binding"""
    name: str = Field(..., pattern=ENTITY_NAME_PATTERN, max_length=128)
    enabled: bool = True


class AccessListBinding(BaseModel):
    """Domain -> access list link"""
    enabled: bool = True
    access_list: AccessListRef


class Domain(BaseModel):
    """HTTP virtual host"""
    name: str = Field(..., pattern=DOMAIN_NAME_PATTERN, min_length=1, max_length=253)
    status: str = Field("active", pattern="^(inactive|active|error)$")
    tls_enabled: bool = False
    modsec_enabled: bool = False
    real_ip_enabled: bool = False
    real_ip_cloudflare: bool = False
    real_ip_custom_cidrs: list[str] = Field(default_factory=list)
    hsts_enabled: bool = True
    hsts_preload: bool = False
    http2_enabled: bool = True
    grpc_enabled: bool = False
    upstreams: list[Upstream] = Field(default_factory=list)
    load_balancer: LoadBalancerConfig = Field(default_factory=LoadBalancerConfig)
    certificate: Optional[TlsCertificate] = None
    custom_locations: list[CustomLocation] = Field(default_factory=list)
    access_lists: list[AccessListBinding] = Field(default_factory=list)


# ==================== Network Load Balancer ====================

class NLBUpstream(BaseModel):
    """Stream backend endpoint"""
    host: str = Field(..., min_length=1, max_length=253)
    port: int = Field(..., ge=1, le=65535)
    weight: int = Field(1, ge=1, le=1000)
    max_fails: int = Field(3, ge=0)
    fail_timeout: int = Field(10, ge=0, description="Seconds")
    max_conns: int = Field(0, ge=0, description="0 = unlimited")
    backup: bool = False
    down: bool = False
    status: str = Field("checking", pattern="^(up|down|checking)$")


class NetworkLoadBalancer(BaseModel):
    """Raw TCP/UDP load balancer (nginx stream module)"""
    name: str = Field(..., pattern=ENTITY_NAME_PATTERN, min_length=1, max_length=128)
    port: int = Field(..., ge=10000, le=65535)
    protocol: str = Field("tcp", pattern="^(tcp|udp|tcp_udp)$")
    algorithm: str = Field("round_robin", pattern="^(round_robin|least_conn|ip_hash|hash)$")
    upstreams: list[NLBUpstream] = Field(default_factory=list)
    proxy_timeout: int = Field(3, ge=1, description="Seconds")
    proxy_connect_timeout: int = Field(1, ge=1, description="Seconds")
    proxy_next_upstream: bool = True
    proxy_next_upstream_timeout: int = Field(0, ge=0, description="Seconds, 0 = unset")
    proxy_next_upstream_tries: int = Field(0, ge=0, description="0 = unset")
    health_check_enabled: bool = True
    health_check_interval: int = Field(10, ge=1)
    health_check_timeout: int = Field(5, ge=1)
    enabled: bool = True
    status: str = Field("inactive", pattern="^(active|inactive|error)$")


# ==================== Access List ====================

class AuthUser(BaseModel):
    """Basic auth credential; hashed only when the htpasswd file is written"""
    username: str
    password: str


class AccessList(BaseModel):
    """IP allow-list and/or HTTP basic auth"""
    name: str = Field(..., pattern=ENTITY_NAME_PATTERN, min_length=1, max_length=128)
    type: str = Field(..., pattern="^(ip_whitelist|http_basic_auth|combined)$")
    description: Optional[str] = None
    allowed_ips: list[str] = Field(default_factory=list)
    auth_users: list[AuthUser] = Field(default_factory=list)
    enabled: bool = True


ProxyEntity = Union[Domain, NetworkLoadBalancer, AccessList]

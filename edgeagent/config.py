"""Configuration settings loaded from environment variables"""

from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from .env file"""

    # API
    api_key: str = "change-me"
    api_host: str = "127.0.0.1"
    api_port: int = 7600

    # Node identity
    node_name: str = "edge-01"

    # nginx layout
    nginx_binary: str = "nginx"
    nginx_service: str = "nginx"
    sites_available_dir: str = "/etc/nginx/sites-available"
    sites_enabled_dir: str = "/etc/nginx/sites-enabled"
    streams_available_dir: str = "/etc/nginx/streams-available"
    streams_enabled_dir: str = "/etc/nginx/streams-enabled"
    access_lists_dir: str = "/etc/nginx/access-lists"
    access_lists_enabled_dir: str = "/etc/nginx/access-lists-enabled"
    htpasswd_dir: str = "/etc/nginx/htpasswd"
    ssl_dir: str = "/etc/nginx/ssl"
    nginx_log_dir: str = "/var/log/nginx"
    acl_rules_path: str = "/etc/nginx/conf.d/acl-rules.conf"
    acme_snippet_path: str = "/etc/nginx/snippets/acme-challenge.conf"
    acme_webroot: str = "/var/www/html"

    # Runtime environment: nginx inside this container vs systemd on the host
    containerized: bool = False
    use_nsenter: bool = False  # run commands in host namespaces (agent in docker, nginx on host)

    # Reload orchestration
    command_timeout: int = 30
    validate_timeout: int = 30
    reload_settle_delay: float = 0.5
    restart_settle_delay: float = 1.0

    # Upstream health checks
    health_check_history_size: int = 100
    health_monitor_enabled: bool = True

    # Real IP
    cloudflare_ips_ttl: int = 86400  # 24 hours
    cloudflare_fetch_timeout: float = 10.0

    @property
    def sites_available(self) -> Path:
        return Path(self.sites_available_dir)

    @property
    def sites_enabled(self) -> Path:
        return Path(self.sites_enabled_dir)

    @property
    def streams_available(self) -> Path:
        return Path(self.streams_available_dir)

    @property
    def streams_enabled(self) -> Path:
        return Path(self.streams_enabled_dir)

    @property
    def access_lists(self) -> Path:
        return Path(self.access_lists_dir)

    @property
    def access_lists_enabled(self) -> Path:
        return Path(self.access_lists_enabled_dir)

    @property
    def htpasswd(self) -> Path:
        return Path(self.htpasswd_dir)

    @property
    def environment_mode(self) -> str:
        return "container" if self.containerized else "host"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()

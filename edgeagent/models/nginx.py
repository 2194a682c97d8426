"""Pydantic models for the nginx management API"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from edgeagent.models.entities import AccessList, Domain, NetworkLoadBalancer


class ReloadResponse(BaseModel):
    """Outcome of a reload cycle"""
    success: bool
    mode: str
    method: Optional[str] = None
    stage: Optional[str] = None
    diagnostic: str = ""
    transitions: list[str] = []


class ValidateResponse(BaseModel):
    """nginx -t result"""
    valid: bool
    message: str


class StatusResponse(BaseModel):
    """nginx process and config status"""
    running: bool
    mode: str
    config_valid: bool
    config_message: str
    reload_state: str
    last_reload: Optional[ReloadResponse] = None
    sites: list[str] = []
    streams: list[str] = []
    access_lists: list[str] = []


class ApplyResponse(BaseModel):
    """Response for apply/delete of one entity"""
    success: bool
    name: str
    status: str
    reloaded: bool = False
    message: str = ""
    referenced_files: list[str] = []
    reload: Optional[ReloadResponse] = None


class PreviewResponse(BaseModel):
    """Generated config text, not published"""
    name: str
    config: str
    referenced_files: list[str] = []


class ToggleRequest(BaseModel):
    """NLB record plus the desired enabled flag"""
    nlb: NetworkLoadBalancer
    enabled: bool


class AccessListApplyRequest(BaseModel):
    """Access list plus the domains bound to it, already updated"""
    access_list: AccessList
    domains: list[Domain] = Field(default_factory=list)


class AccessListDeleteRequest(BaseModel):
    """Domains to re-publish after the binding is gone"""
    domains: list[Domain] = Field(default_factory=list)


class HealthCheckItem(BaseModel):
    upstream_host: str
    upstream_port: int
    status: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime


class HealthCheckResponse(BaseModel):
    """Upstream health results for one NLB"""
    name: str
    count: int
    results: list[HealthCheckItem]

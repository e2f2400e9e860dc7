from pydantic import BaseModel
from typing import Optional


class ErrorEnvelope(BaseModel):
    error: bool = True
    message: str
    status: Optional[int] = None
    path: Optional[str] = None
    asaasUrl: Optional[str] = None


class ServiceStatus(BaseModel):
    status: str = "ok"
    sistema: str
    ambiente: str
    versao: str


class HealthStatus(BaseModel):
    status: str = "ok"
    sistema: str
    ambiente: str
    endpoint: str
    timestamp: str


class UnmatchedPath(BaseModel):
    status: str = "ok"
    path: str


class WebhookAck(BaseModel):
    received: bool = True

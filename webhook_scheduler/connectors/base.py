from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"  # 4xx: bad payload or URL, retrying will not help
    TRANSIENT = "transient"  # 5xx, timeout or network error


class DeliveryAttachment(BaseModel):
    """Binary attachment sent as a multipart files[n] part."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class DeliveryResult(BaseModel):
    """Classified outcome of one POST to the delivery target."""
    status: DeliveryStatus = Field(..., description="Classification of the attempt")
    status_code: Optional[int] = Field(None, description="HTTP status, absent for network errors")
    error: Optional[str] = Field(None, description="Error detail for failed attempts")
    elapsed_ms: int = Field(0, ge=0, description="Wall time of the request")

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS

    @classmethod
    def rejected(cls, error: str, status_code: Optional[int] = None) -> "DeliveryResult":
        return cls(status=DeliveryStatus.REJECTED, status_code=status_code, error=error)


class BaseDeliveryConnector(ABC):
    """Abstract Base Class for delivery targets."""

    @abstractmethod
    async def deliver(
        self,
        url: str,
        payload: Dict[str, Any],
        attachments: Optional[List[DeliveryAttachment]] = None,
    ) -> DeliveryResult:
        """Performs one POST and classifies the response. Must not raise for HTTP or network errors."""
        pass

    async def aclose(self) -> None:
        """Releases network resources."""
        return None

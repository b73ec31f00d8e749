# outreach/schemas/target.py
"""Read-only view of a customer or service as seen by the campaign engine"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class TargetRecord(BaseModel):
    id: int
    target_type: str
    tenant_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Built-in fields merged with the data map")

    def can_receive_sms(self) -> bool:
        return bool(self.phone and self.phone.strip())

    def can_receive_email(self) -> bool:
        return bool(self.email and self.email.strip())

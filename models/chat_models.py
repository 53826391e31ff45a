"""
Chat and billing request models
"""
from typing import Optional
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    # Optional so that missing fields surface as 400 rather than a validation 422
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    message: Optional[str] = None

    model_config = {"populate_by_name": True}


class SubscribeRequest(BaseModel):
    price_id: Optional[str] = Field(default=None, description="Override for the configured Stripe price")

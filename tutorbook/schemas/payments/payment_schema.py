from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class CreatePaymentIntentRequest(BaseModel):
    booking_id: int


class PaymentIntentData(BaseModel):
    payment_id: int
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str


class PaymentIntentResponse(BaseModel):
    success: bool
    message: str
    data: PaymentIntentData


class PaymentData(BaseModel):
    id: int
    booking_id: int
    amount: int
    currency: str
    status: str
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None


class PaymentResponse(BaseModel):
    success: bool
    message: str
    data: PaymentData


class PaymentHistoryItem(PaymentData):
    subject: str
    scheduled_at: datetime
    created_at: datetime


class PaymentHistoryResponse(BaseModel):
    success: bool
    message: str
    data: List[PaymentHistoryItem]

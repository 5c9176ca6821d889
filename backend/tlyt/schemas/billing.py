"""Pydantic schemas for billing"""
from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    price_ref: str
    quantity: int = 1

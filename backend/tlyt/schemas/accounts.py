"""Pydantic schemas for accounts"""
from pydantic import BaseModel, EmailStr
from typing import Optional


class CreateAccountRequest(BaseModel):
    email: Optional[EmailStr] = None

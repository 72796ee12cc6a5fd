from __future__ import annotations

from pydantic import BaseModel


class NewSubscriber(BaseModel):
    name: str
    email: str

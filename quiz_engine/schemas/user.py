from pydantic import BaseModel, EmailStr
from quiz_engine.models.user import UserRole

class UserSummary(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: UserRole

    class Config:
        from_attributes = True

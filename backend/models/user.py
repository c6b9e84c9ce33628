from sqlalchemy import Column, String, Boolean
from core.database import BaseModel, CHAR_LENGTH
from typing import Dict, Any


class User(BaseModel):
    __tablename__ = "users"
    __table_args__ = {'extend_existing': True}

    email = Column(String(CHAR_LENGTH), unique=True,
                   index=True, nullable=False)
    firstname = Column(String(CHAR_LENGTH), nullable=False)
    lastname = Column(String(CHAR_LENGTH), nullable=False)
    role = Column(String(50), default="Listener")  # Listener, Creator, Admin
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "email": self.email,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "role": self.role,
            "is_active": self.is_active,
        }

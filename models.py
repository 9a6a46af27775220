from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import uuid

# Banco local: usado quando o Supabase não está configurado
db = SQLAlchemy()

ROLES = ("admin", "member")


def _uuid():
    return str(uuid.uuid4())


class Employee(db.Model):
    __tablename__ = "employees"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(100))  # cargo, não papel de acesso
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UserRole(db.Model):
    __tablename__ = "user_roles"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    user_id = db.Column(db.String(36), nullable=False, unique=True)
    role = db.Column(db.Enum(*ROLES, name="app_role"), nullable=False, default="member")

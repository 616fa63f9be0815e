from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    GERENTE = "GERENTE"
    ENCARGADA = "ENCARGADA"
    ANFITRION = "ANFITRION"
    TECNICO = "TECNICO"
    QA = "QA"
    ALMACEN = "ALMACEN"
    MENSAJERO = "MENSAJERO"


class AuthContext(BaseModel):
    user_id: UUID
    user_role: Optional[str] = None
    store_id: Optional[UUID] = None

    @property
    def is_super_admin(self) -> bool:
        return self.user_role == UserRole.SUPER_ADMIN.value

"""
Dependencias de autenticación para FastAPI.

Los tokens los emite el servicio de autenticación externo; aquí solo se
validan y se leen los claims `sub`, `role` y `store_id`.
"""
from typing import Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from servistech.modules.auth.schemas import AuthContext
from servistech.core.config import settings

# Security scheme
security = HTTPBearer()


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthContext:
        """
        Obtener contexto de autenticación desde el token JWT.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No se pudieron validar las credenciales",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
            user_id: str = payload.get("sub")
            if user_id is None:
                raise credentials_exception
            store_claim: Optional[str] = payload.get("store_id")
            return AuthContext(
                user_id=UUID(user_id),
                user_role=payload.get("role"),
                store_id=UUID(store_claim) if store_claim else None
            )
        except (jwt.PyJWTError, ValueError):
            raise credentials_exception

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """
        Dependencia para requerir roles específicos.
        """
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if auth_context.user_role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed_roles)}"
                )
            return auth_context
        return role_checker

    @staticmethod
    def resolve_store_scope(
        request: Request,
        auth_context: AuthContext
    ) -> UUID:
        """
        Resolver la sucursal sobre la que opera el request.

        SUPER_ADMIN puede operar sobre cualquier sede indicando X-Store-ID;
        los demás roles quedan restringidos a la sede de su token.
        """
        requested: Optional[UUID] = getattr(request.state, "store_id", None)

        if auth_context.is_super_admin:
            store_id = requested or auth_context.store_id
            if store_id is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Se requiere el header X-Store-ID"
                )
            return store_id

        if auth_context.store_id is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="El usuario no tiene una sede asignada"
            )
        if requested and requested != auth_context.store_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No tienes acceso a esta sede"
            )
        return auth_context.store_id


def get_store_scope(
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)
) -> UUID:
    return AuthDependencies.resolve_store_scope(request, auth_context)


def get_optional_store_scope(
    request: Request,
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)
) -> Optional[UUID]:
    """Igual que get_store_scope, pero SUPER_ADMIN sin sede indicada ve todas (None)."""
    if auth_context.is_super_admin and getattr(request.state, "store_id", None) is None:
        return auth_context.store_id
    return AuthDependencies.resolve_store_scope(request, auth_context)


get_auth_context = AuthDependencies.get_auth_context

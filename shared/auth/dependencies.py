"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict
from shared.auth.jwt_handler import decode_token
from services.ticket_validation.models.ticket import OperatorIdentity


security = HTTPBearer()

SCANNER_ROLES = ('scanner', 'admin', 'coordinator', 'super_admin')


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )

    return {
        'user_id': user_id,
        'email': payload.get('email'),
        'role': payload.get('role', 'user')
    }


async def get_current_scanner(
    current_user: Dict = Depends(get_current_user)
) -> OperatorIdentity:
    '''Verificar que el usuario pueda escanear y devolver su identidad de operador'''
    role = current_user.get('role')
    if role not in SCANNER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de scanner'
        )
    return OperatorIdentity(
        user_id=str(current_user['user_id']),
        email=current_user.get('email'),
        role=role,
    )

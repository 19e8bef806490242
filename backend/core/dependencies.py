"""
Dépendances d'authentification : le jeton est émis par le fournisseur
d'identité de la plateforme, ce service ne fait que le vérifier.
"""
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import verify_access_token
from core.exceptions import credentials_exception, forbidden_exception
from database import db
from models.common import DriverStatus, UserRole

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Utilisateur GigaEats porté par le jeton Bearer (livreur, support ou admin)."""
    payload = verify_access_token(credentials.credentials) if credentials else None
    user_id = (payload or {}).get("sub")
    if not user_id:
        raise credentials_exception()

    user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if not user:
        raise credentials_exception()
    if not user.get("is_active", True):
        raise forbidden_exception("Compte désactivé")
    return user


def require_role(*roles: UserRole):
    """Refuse (403) tout compte dont le rôle n'est pas dans `roles`."""
    allowed = {r.value for r in roles}

    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise forbidden_exception()
        return current_user
    return _check


require_admin = require_role(UserRole.ADMIN, UserRole.SUPERADMIN)


async def require_driver(
    current_user: dict = Depends(require_role(UserRole.DRIVER)),
) -> dict:
    """
    Compte livreur avec un profil de disponibilité exploitable : sans
    `driver_status` connu, ni l'acceptation ni la libération ne peuvent
    réserver ou rendre le livreur.
    """
    if current_user.get("driver_status") not in {s.value for s in DriverStatus}:
        raise forbidden_exception("Profil livreur incomplet")
    return current_user

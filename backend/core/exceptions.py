from typing import Any, Optional

from fastapi import HTTPException, status


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Identifiants invalides ou token expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Accès refusé") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def not_found_exception(resource: str = "Ressource") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} introuvable",
    )


# ── Erreurs métier du workflow livreur ────────────────────────────────────────
class WorkflowError(Exception):
    """
    Erreur métier typée. Chaque sous-classe porte un `code` stable que l'app
    mobile traduit en message précis (« commande prise par un autre livreur »…).
    Aucune de ces erreurs ne laisse la commande dans un état intermédiaire.
    """
    code: str = "workflow_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Opération refusée"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, **self.context}


class OrderNotFound(WorkflowError):
    code = "order_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Commande introuvable"


class OrderNoLongerAvailable(WorkflowError):
    code = "order_no_longer_available"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Cette commande a déjà été prise par un autre livreur"


class DriverUnavailable(WorkflowError):
    code = "driver_unavailable"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Le livreur doit être en ligne et sans livraison en cours"


class NotOwner(WorkflowError):
    code = "not_owner"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Cette commande n'est pas assignée à ce livreur"


class InvalidTransition(WorkflowError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Transition interdite"


class IncompleteChecklist(WorkflowError):
    code = "incomplete_checklist"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    default_detail = "Vérification de collecte incomplète"


class MissingPhotoEvidence(WorkflowError):
    code = "missing_photo_evidence"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    default_detail = "Photo de livraison obligatoire"


class MissingLocationEvidence(WorkflowError):
    code = "missing_location_evidence"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    default_detail = "Position GPS de livraison obligatoire"


class AlreadyConfirmed(WorkflowError):
    code = "already_confirmed"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Cette étape a déjà été confirmée"

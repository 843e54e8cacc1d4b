"""
Taxonomie d'erreurs du pipeline panier -> paiement -> commande.

Chaque erreur porte un `code` stable (contrat JSON côté client) et un statut HTTP.
Le handler unique (storefront.app_setup.exceptions) rend {"error": {"code", "message", ...details}}.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Erreur interne"

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_payload(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, **self.details}}


class ValidationError(StorefrontError):
    """Entrée invalide, rejetée avant tout changement d'état."""
    code = "VALIDATION_FAILED"
    status_code = 400
    default_message = "Requête invalide"


class EmptyCartError(ValidationError):
    default_message = "Le panier est vide"


class ProductNotFoundError(StorefrontError):
    code = "PRODUCT_NOT_FOUND"
    status_code = 404
    default_message = "Produit introuvable"


class CartConflictError(StorefrontError):
    """Écritures concurrentes sur la même session: tentatives CAS épuisées."""
    code = "CART_CONFLICT"
    status_code = 409
    default_message = "Le panier a été modifié en parallèle, veuillez réessayer"


class StorageUnavailableError(StorefrontError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    default_message = "Base de données indisponible"


class AmountMismatchError(StorefrontError):
    code = "AMOUNT_MISMATCH"
    status_code = 400
    default_message = "Le montant déclaré ne correspond pas au total du panier"


class PaymentDeclinedError(StorefrontError):
    """Aucun débit n'a eu lieu: l'utilisateur peut réessayer avec un autre moyen de paiement."""
    code = "PAYMENT_DECLINED"
    status_code = 402
    default_message = "Paiement refusé"


class GatewayUnavailableError(StorefrontError):
    """Statut du débit inconnu ou passerelle indisponible: réessayer avec la MÊME tentative."""
    code = "GATEWAY_UNAVAILABLE"
    status_code = 503
    default_message = "Service de paiement momentanément indisponible, veuillez réessayer"


class CheckoutInProgressError(StorefrontError):
    code = "CHECKOUT_IN_PROGRESS"
    status_code = 409
    default_message = "Un paiement est déjà en cours pour cette tentative"


class PersistenceFailureError(StorefrontError):
    """
    Débit capturé mais commande non enregistrée. Jamais rendu comme un 500 générique:
    le client ne doit pas repayer, la réconciliation prend le relais.
    """
    code = "PERSISTENCE_FAILED"
    status_code = 202
    default_message = (
        "Paiement reçu, la finalisation de votre commande est en cours. "
        "Ne renouvelez pas le paiement."
    )


class NotificationError(StorefrontError):
    """Échec d'envoi d'email: journalisé uniquement, jamais propagé au checkout."""
    code = "NOTIFICATION_FAILED"

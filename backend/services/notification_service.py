"""
Service notification : notifications in-app + push FCM au restaurant et au client,
SMS Twilio au client à l'arrivée du livreur.
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional

import firebase_admin
from firebase_admin import credentials, messaging

from config import settings
from database import db
from models.notification import NotificationChannel, NotificationStatus
from models.order import DeliveryStatus

logger = logging.getLogger(__name__)

_firebase_app = None


def _get_firebase_app():
    """Initialise Firebase Admin au premier envoi push."""
    global _firebase_app
    if _firebase_app is None:
        # Fichier de compte de service en local, credentials par défaut en prod
        if os.path.exists(settings.FIREBASE_CREDENTIALS_PATH):
            cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
            _firebase_app = firebase_admin.initialize_app(cred)
        else:
            _firebase_app = firebase_admin.initialize_app()
    return _firebase_app


def _notif_id() -> str:
    return f"ntf_{uuid.uuid4().hex[:12]}"


VENDOR_MESSAGES = {
    DeliveryStatus.ASSIGNED:          "Un livreur a accepté la commande {order_number}.",
    DeliveryStatus.ARRIVED_AT_VENDOR: "Le livreur est arrivé pour récupérer la commande {order_number}.",
    DeliveryStatus.CANCELLED:         "La livraison de la commande {order_number} a été annulée.",
}

CUSTOMER_MESSAGES = {
    DeliveryStatus.PICKED_UP:            "Votre commande {order_number} a été récupérée au restaurant.",
    DeliveryStatus.ON_ROUTE_TO_CUSTOMER: "Votre livreur est en route avec la commande {order_number}.",
    DeliveryStatus.ARRIVED_AT_CUSTOMER:  "Votre livreur est arrivé avec la commande {order_number} !",
    DeliveryStatus.DELIVERED:            "Commande {order_number} livrée. Bon appétit et merci d'avoir choisi GigaEats !",
    DeliveryStatus.CANCELLED:            "La livraison de votre commande {order_number} a été annulée.",
}


async def notify_workflow_status_change(order: dict, new_status: DeliveryStatus):
    """Notifie le restaurant et/ou le client selon l'étape atteinte."""
    order_number = order.get("order_number", "")

    vendor_body = VENDOR_MESSAGES.get(new_status)
    if vendor_body and order.get("vendor_id"):
        await _store_and_send(
            user_id=order["vendor_id"],
            title="Suivi livreur",
            body=vendor_body.format(order_number=order_number),
            ref_type="order",
            ref_id=order.get("order_id"),
        )

    customer_body = CUSTOMER_MESSAGES.get(new_status)
    if customer_body and order.get("customer_id"):
        body = customer_body.format(order_number=order_number)
        await _store_and_send(
            user_id=order["customer_id"],
            title="Suivi de votre commande",
            body=body,
            ref_type="order",
            ref_id=order.get("order_id"),
        )
        # Le client n'a pas forcément l'app ouverte : SMS à l'arrivée
        if new_status == DeliveryStatus.ARRIVED_AT_CUSTOMER and order.get("customer_phone"):
            await _send_sms(order["customer_phone"], body)


async def _store_and_send(
    user_id: str,
    title: str,
    body: str,
    ref_type: Optional[str] = None,
    ref_id: Optional[str] = None,
):
    """Stocke la notification en base et tente l'envoi."""
    now = datetime.now(timezone.utc)
    notif = {
        "notif_id":   _notif_id(),
        "user_id":    user_id,
        "channel":    NotificationChannel.IN_APP.value,
        "title":      title,
        "body":       body,
        "status":     NotificationStatus.SENT.value,
        "metadata":   {},
        "ref_type":   ref_type,
        "ref_id":     ref_id,
        "created_at": now,
        "sent_at":    now,
        "read_at":    None,
    }
    await db.notifications.insert_one(notif)

    # --- Envoi Push réel via FCM ---
    user = await db.users.find_one({"user_id": user_id}, {"fcm_token": 1})
    fcm_token = user.get("fcm_token") if user else None

    if fcm_token:
        try:
            message = messaging.Message(
                notification=messaging.Notification(
                    title=title,
                    body=body,
                ),
                data={
                    "ref_type": ref_type or "",
                    "ref_id": ref_id or "",
                },
                token=fcm_token,
            )
            messaging.send(message, app=_get_firebase_app())
            logger.info(f"Push FCM envoyé à {user_id}")
        except Exception as e:
            logger.warning(f"Échec envoi Push FCM à {user_id}: {e}")


async def _send_sms(phone: str, body: str):
    """Envoi SMS via Twilio (best-effort, ne lève pas d'exception)."""
    try:
        if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_SMS_NUMBER:
            return
        from twilio.rest import Client
        client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        client.messages.create(body=body, from_=settings.TWILIO_SMS_NUMBER, to=phone)
    except Exception as e:
        logger.warning(f"SMS non envoyé à {phone} : {e}")

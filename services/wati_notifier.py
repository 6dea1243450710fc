import logging
import re
from typing import Any, Dict, Optional, Union

from models.article import CuratedUpdate
from models.dispatch import DispatchReason, DispatchRecord
from services.config import WATI_BROADCAST_NAME, WATI_CHANNEL_NUMBER, WATI_TEMPLATE_NAME
from services.duplicate_detector import DispatchCandidate, compute_content_hash

logger = logging.getLogger(__name__)


def normalize_phone(country_code: Optional[str], phone_number: Optional[str]) -> Optional[str]:
    """Digits-only E.164 without '+', or None when either part is empty."""
    cc_digits = re.sub(r"\D", "", str(country_code or ""))
    pn_digits = re.sub(r"\D", "", str(phone_number or ""))
    if not cc_digits or not pn_digits:
        return None
    return f"{cc_digits}{pn_digits}"


def build_template_payload(
    whatsapp_number: str,
    image_url: str,
    title: str,
    description: str,
    template_name: str,
    broadcast_name: str,
    channel_number: Optional[str] = None,
) -> Dict[str, Any]:
    # Template variables: {{1}} image, {{2}} title, {{3}} description
    payload = {
        "receivers": [
            {
                "whatsappNumber": whatsapp_number,
                "customParams": [
                    {"name": "1", "value": image_url or ""},
                    {"name": "2", "value": title or ""},
                    {"name": "3", "value": description or ""},
                ],
            }
        ],
        "template_name": template_name,
        "broadcast_name": broadcast_name,
    }
    if channel_number:
        payload["channel_number"] = channel_number
    return payload


def _skipped(reason: DispatchReason) -> Dict[str, Any]:
    return {"status": "skipped", "reason": reason.value, "message_sent": False}


class WatiNotificationService:
    """Resolves the phone, runs the duplicate chain, sends and logs every attempt."""

    def __init__(
        self,
        store,
        detector,
        client=None,
        users_collection=None,
        template_name: str = WATI_TEMPLATE_NAME,
        broadcast_name: str = WATI_BROADCAST_NAME,
        channel_number: Optional[str] = WATI_CHANNEL_NUMBER,
    ):
        self.store = store
        self.detector = detector
        self.client = client
        self.users = users_collection
        self.template_name = template_name
        self.broadcast_name = broadcast_name
        self.channel_number = channel_number or None

    async def _resolve_phone(self, user_id: str, phone: Optional[Dict[str, Any]]) -> Optional[str]:
        country_code = (phone or {}).get("country_code")
        phone_number = (phone or {}).get("phone_number")
        if not country_code or not phone_number:
            if self.users is None:
                return None
            user = await self.users.find_one({"user_id": user_id})
            if not user:
                logger.warning(f"[WATI] User {user_id} not found")
                return None
            country_code = user.get("country_code")
            phone_number = user.get("phone_number")
        return normalize_phone(country_code, phone_number)

    async def send_news_notification(
        self,
        user_id: str,
        alert_id: Optional[str],
        article: Union[CuratedUpdate, Dict[str, Any]],
        phone: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if isinstance(article, CuratedUpdate):
            article = article.model_dump()
        article = article or {}

        if self.client is None:
            logger.info("[WATI] Config missing; skipping WhatsApp send")
            return _skipped(DispatchReason.missing_config)

        title = article.get("title") or ""
        description = article.get("description") or ""
        image_url = article.get("image_url") or ""
        article_hash = article.get("content_hash") or article.get("article_hash") or None
        base_record = dict(
            user_id=user_id,
            alert_id=alert_id,
            template_name=self.template_name,
            broadcast_name=self.broadcast_name,
            title=title,
            description=description,
            image_url=image_url,
        )

        try:
            whatsapp_number = await self._resolve_phone(user_id, phone)
            if not whatsapp_number:
                logger.warning(f"[WATI] Phone missing for user {user_id}")
                return _skipped(DispatchReason.phone_missing)

            content_hash = compute_content_hash(image_url, title, description, self.template_name, self.broadcast_name)
            candidate = DispatchCandidate(
                user_id=user_id,
                template_name=self.template_name,
                content_hash=content_hash,
                title=title,
                description=description,
                article_hash=article_hash,
            )

            duplicate = await self.detector.check(candidate)
            if duplicate is not None:
                await self.store.record(DispatchRecord(
                    **base_record,
                    content_hash=content_hash,
                    article_hash=article_hash,
                    payload={},
                    response={},
                    message_sent=False,
                    reason=duplicate,
                ))
                return _skipped(duplicate)

            payload = build_template_payload(
                whatsapp_number, image_url, title, description,
                self.template_name, self.broadcast_name, self.channel_number,
            )
            logger.info(f"[WATI] Sending to user={user_id} alert={alert_id} title='{title[:50]}'")
            response = await self.client.send_template(payload)

            log_id = await self.store.record(DispatchRecord(
                **base_record,
                content_hash=content_hash,
                article_hash=article_hash,
                payload=payload,
                response=response,
                message_sent=True,
                reason=DispatchReason.success,
            ))
            return {
                "status": "success",
                "reason": DispatchReason.success.value,
                "message_sent": True,
                "response": response,
                "template_payload": payload,
                "log_id": str(log_id) if log_id is not None else None,
            }
        except Exception as e:
            logger.error(f"[WATI] News notification error: {e}")
            try:
                await self.store.record(DispatchRecord(
                    **base_record,
                    content_hash="",
                    article_hash=article_hash,
                    payload={},
                    response=getattr(e, "response", None) or {"message": str(e)},
                    message_sent=False,
                    reason=DispatchReason.error,
                    error=str(e),
                ))
            except Exception as log_error:
                logger.error(f"[WATI] Failed to log dispatch error: {log_error}")
            return {
                "status": "error",
                "reason": DispatchReason.error.value,
                "message_sent": False,
                "error": str(e),
            }

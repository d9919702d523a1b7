from typing import List

from tuckshop.api.schemas import InboundMessage


def _text_of(msg: dict) -> str:
    text = msg.get("text")
    if isinstance(text, dict):
        return text.get("body") or ""
    if isinstance(text, str):
        return text
    # Quick-reply / list replies carry the chosen option's title
    interactive = msg.get("interactive") or {}
    for kind in ("button_reply", "list_reply"):
        reply = interactive.get(kind) or {}
        if reply.get("title") or reply.get("id"):
            return reply.get("title") or reply.get("id")
    button = msg.get("button") or {}
    return button.get("text") or msg.get("body") or ""


def extract_inbound_messages(payload: dict) -> List[InboundMessage]:
    """
    Accepts the WhatsApp Cloud envelope

      {"entry": [{"changes": [{"value": {"contacts": [...], "messages": [...]}}]}]}

    and a legacy flat shape {"from": ..., "text"|"body": ..., "id": ...}.
    Status callbacks (delivered/read) and non-text messages yield nothing.
    """
    if not isinstance(payload, dict):
        return []

    out: List[InboundMessage] = []

    if "entry" in payload:
        for entry in payload.get("entry") or []:
            for change in (entry or {}).get("changes") or []:
                value = (change or {}).get("value") or {}
                names = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts") or []
                    if isinstance(c, dict)
                }
                for msg in value.get("messages") or []:
                    if not isinstance(msg, dict):
                        continue
                    text = _text_of(msg).strip()
                    sender = msg.get("from") or ""
                    if not text or not sender:
                        continue
                    out.append(InboundMessage(
                        sender=str(sender),
                        text=text,
                        message_id=str(msg.get("id") or ""),
                        display_name=names.get(sender),
                    ))
        return out

    sender = payload.get("from") or payload.get("sender") or payload.get("phone") or ""
    text = _text_of(payload).strip() or str(payload.get("message") or "").strip()
    if sender and text:
        out.append(InboundMessage(
            sender=str(sender),
            text=text,
            message_id=str(payload.get("id") or payload.get("messageId") or ""),
            display_name=payload.get("name") or payload.get("profileName"),
        ))
    return out

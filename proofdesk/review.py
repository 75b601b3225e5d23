# proofdesk/review.py
"""
Review workflow: approve / reject / contact a pending submission.

Env vars:
- CHANNEL_PREMIUM_ID, CHANNEL_LIFETIME_ID
- INVITE_TTL_SECONDS (default: 86400)
- ADMIN_CONTACT (default: @admin)
- KEEP_RECORD_ON_SEND_FAILURE (default: false) - keep the record when an
  approval message cannot be delivered, instead of deleting it anyway
- REVIEW_EXCLUSIVE_LOCKS (default: false) - serialize reviews of the same id
- MSG_APPROVED, MSG_JOIN_PREMIUM, MSG_JOIN_LIFETIME, MSG_DECLINE, MSG_CONTACT
  - message templates; a literal "\\n" in the env value becomes a newline
"""
import contextlib
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from proofdesk import monitoring
from proofdesk import db as dbmod
from proofdesk.broadcaster import Broadcaster
from proofdesk.errors import NotFoundError, PersistenceError, UpstreamError
from proofdesk.schemas import ReviewEvent, Submission, SubmissionStatus, now_iso
from proofdesk.storage import StorageError
from proofdesk.store import RecordStore

INVITE_MEMBER_LIMIT = 1

# entity markers of Telegram legacy Markdown; they cannot be escaped inside *bold*
_MARKDOWN_SPECIALS = str.maketrans("", "", "_*`[\\")


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _template(name: str, default: str) -> str:
    return os.getenv(name, default).replace("\\n", "\n")


def plain_text(value: str) -> str:
    """Drop Markdown entity markers from user-supplied text."""
    return value.translate(_MARKDOWN_SPECIALS)


CHANNEL_PREMIUM_ID = os.getenv("CHANNEL_PREMIUM_ID", "").strip()
CHANNEL_LIFETIME_ID = os.getenv("CHANNEL_LIFETIME_ID", "").strip()
INVITE_TTL_SECONDS = int(os.getenv("INVITE_TTL_SECONDS", "86400"))
ADMIN_CONTACT = os.getenv("ADMIN_CONTACT", "@admin")
KEEP_RECORD_ON_SEND_FAILURE = _flag("KEEP_RECORD_ON_SEND_FAILURE")
REVIEW_EXCLUSIVE_LOCKS = _flag("REVIEW_EXCLUSIVE_LOCKS")

MSG_APPROVED = _template("MSG_APPROVED", "🎉 Your payment for the *{paket}* plan has been APPROVED!")
MSG_JOIN_PREMIUM = _template("MSG_JOIN_PREMIUM", "👉 Join Premium:\n{link}")
MSG_JOIN_LIFETIME = _template("MSG_JOIN_LIFETIME", "👉 Join Lifetime:\n{link}")
MSG_DECLINE = _template(
    "MSG_DECLINE",
    "⚠️ Sorry, your payment could not be approved by the admin.\n\n"
    "Want to know why? Ask here 👉 {contact}",
)
MSG_CONTACT = _template(
    "MSG_CONTACT",
    "📢 What you need to do now:\n\n"
    "Message the admin here 👉 {contact}\n\n"
    "And send:\n"
    "✅ Your game ID\n"
    "✅ A request to approve your transaction so you can join the Premium channel",
)


class ReviewWorkflow:
    def __init__(self, store: RecordStore, bot, broadcaster: Broadcaster,
                 premium_channel_id: str = CHANNEL_PREMIUM_ID,
                 lifetime_channel_id: str = CHANNEL_LIFETIME_ID,
                 invite_ttl: int = INVITE_TTL_SECONDS,
                 admin_contact: str = ADMIN_CONTACT,
                 keep_record_on_send_failure: bool = KEEP_RECORD_ON_SEND_FAILURE,
                 exclusive_locks: bool = REVIEW_EXCLUSIVE_LOCKS,
                 clock: Callable[[], float] = time.time,
                 audit_sink: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.store = store
        self.bot = bot
        self.broadcaster = broadcaster
        self.premium_channel_id = premium_channel_id
        self.lifetime_channel_id = lifetime_channel_id
        self.invite_ttl = invite_ttl
        self.admin_contact = admin_contact
        self.keep_record_on_send_failure = keep_record_on_send_failure
        self.exclusive_locks = exclusive_locks
        self.clock = clock
        self._audit_sink = audit_sink
        # record_id -> [lock, holders]; an entry lives only while someone holds or waits on it
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _lock_for(self, record_id: str):
        if not self.exclusive_locks:
            yield
            return
        with self._locks_guard:
            entry = self._locks.setdefault(record_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(record_id, None)

    def _lookup(self, record_id: str, action: str) -> Submission:
        rec = self.store.get(record_id)
        if rec is None:
            monitoring.inc_review(action, "not_found")
            raise NotFoundError("Transaction not found", {"id": record_id})
        return rec

    def _audit(self, rec: Submission, action: str, status: Optional[str],
               detail: Optional[Dict[str, Any]] = None):
        event = ReviewEvent(
            record_id=rec.id, user_id=rec.userId, paket=rec.paket,
            action=action, status=status, detail=detail or {}, timestamp=now_iso(),
        ).model_dump()
        if self._audit_sink is not None:
            self._audit_sink(event)
        else:
            dbmod.save_review_event(event)

    def _delete(self, rec: Submission, action: str):
        try:
            removed = self.store.remove_by_id(rec.id)
        except (OSError, StorageError) as e:
            monitoring.inc_review(action, "delete_failed")
            monitoring.logger.exception("Failed to delete transaction", extra={"record_id": rec.id})
            raise PersistenceError("Failed to delete transaction", {"id": rec.id}) from e
        if not removed:
            monitoring.inc_review(action, "delete_failed")
            raise PersistenceError("Failed to delete transaction", {"id": rec.id})
        self.broadcaster.broadcast_deleted(rec.id)

    def target_channels(self, rec: Submission) -> List[Tuple[str, str]]:
        """[(label, channel_id)]: premium always, lifetime only for the lifetime plan."""
        if rec.is_lifetime:
            return [("premium", self.premium_channel_id), ("lifetime", self.lifetime_channel_id)]
        return [("premium", self.premium_channel_id)]

    def compose_approval(self, rec: Submission, links: List[Tuple[str, str]]) -> List[str]:
        paket = plain_text(rec.paket).strip().lower()
        if rec.is_lifetime:
            messages = [MSG_APPROVED.format(paket="Lifetime")]
            for label, link in links:
                tpl = MSG_JOIN_LIFETIME if label == "lifetime" else MSG_JOIN_PREMIUM
                messages.append(tpl.format(link=link))
            return messages
        _, link = links[0]
        return [MSG_APPROVED.format(paket=paket) + "\n" + MSG_JOIN_PREMIUM.format(link=link)]

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def approve(self, record_id: str) -> Dict[str, Any]:
        """
        Issue fresh invite links, message them to the user, then delete the record.

        Any invite-link failure aborts before anything is sent or deleted.
        A failed send still deletes the record unless keep_record_on_send_failure
        is set; either way the caller gets UpstreamError.
        """
        with self._lock_for(record_id):
            rec = self._lookup(record_id, "approve")

            expire_at = int(self.clock()) + self.invite_ttl
            links: List[Tuple[str, str]] = []
            for label, channel_id in self.target_channels(rec):
                try:
                    link = self.bot.create_invite_link(channel_id, INVITE_MEMBER_LIMIT, expire_at)
                except UpstreamError:
                    monitoring.inc_review("approve", "invite_failed")
                    monitoring.logger.error("Failed to create invite link",
                                            extra={"record_id": rec.id, "channel": label})
                    raise
                links.append((label, link))

            messages = self.compose_approval(rec, links)
            sent = 0
            send_error: Optional[UpstreamError] = None
            for text in messages:
                try:
                    self.bot.send_message(rec.userId, text, parse_mode="Markdown")
                    sent += 1
                except UpstreamError as e:
                    send_error = e
                    break

            if send_error is not None:
                detail = {"messages_sent": sent, "messages_total": len(messages)}
                monitoring.inc_review("approve", "send_failed")
                monitoring.logger.error("Approval message not delivered",
                                        extra={"record_id": rec.id, **detail})
                if self.keep_record_on_send_failure:
                    self._audit(rec, "approve_send_failed", SubmissionStatus.PENDING.value, detail)
                    raise UpstreamError("Approval message not delivered; transaction kept",
                                        {"id": rec.id, **detail}) from send_error
                self._delete(rec, "approve")
                self._audit(rec, "approve_send_failed", SubmissionStatus.APPROVED.value, detail)
                raise UpstreamError("Approval message not delivered; transaction removed",
                                    {"id": rec.id, **detail}) from send_error

            self._delete(rec, "approve")
            self._audit(rec, "approved", SubmissionStatus.APPROVED.value,
                        {"channels": [label for label, _ in links], "expire_date": expire_at})
            monitoring.inc_review("approve", "success")
            monitoring.logger.info("Transaction approved", extra={"record_id": rec.id, "paket": rec.paket})
            return {"id": rec.id, "links_issued": len(links), "messages_sent": sent}

    def reject(self, record_id: str) -> Dict[str, Any]:
        """Best-effort decline notice, then delete. Send failures never abort."""
        with self._lock_for(record_id):
            rec = self._lookup(record_id, "reject")

            notified = True
            try:
                self.bot.send_message(rec.userId, MSG_DECLINE.format(contact=self.admin_contact))
            except UpstreamError:
                notified = False
                monitoring.logger.warning("Failed to send decline notice", extra={"record_id": rec.id})

            self._delete(rec, "reject")
            self._audit(rec, "rejected", SubmissionStatus.REJECTED.value, {"notified": notified})
            monitoring.inc_review("reject", "success")
            monitoring.logger.info("Transaction rejected", extra={"record_id": rec.id})
            return {"id": rec.id, "notified": notified}

    def contact(self, record_id: str) -> Dict[str, Any]:
        rec = self._lookup(record_id, "contact")
        try:
            self.bot.send_message(rec.userId, MSG_CONTACT.format(contact=self.admin_contact),
                                  parse_mode="Markdown")
        except UpstreamError:
            monitoring.inc_review("contact", "send_failed")
            monitoring.logger.error("Failed to send contact message", extra={"record_id": rec.id})
            raise
        self._audit(rec, "contacted", None)
        monitoring.inc_review("contact", "success")
        return {"id": rec.id}

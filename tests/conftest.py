# tests/conftest.py
import os
import tempfile

# Env must be in place before proofdesk modules are imported (they read it at import time)
_TMP = tempfile.mkdtemp(prefix="proofdesk-tests-")
os.environ["DATA_DIR"] = _TMP
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/proofdesk.db"
os.environ["RECORD_STORE"] = "json"
os.environ["LOG_AS_JSON"] = "false"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "secret"
os.environ["SESSION_SECRET"] = "test-secret"
os.environ["BOT_TOKEN"] = "test-token"
os.environ["CHANNEL_PREMIUM_ID"] = "-100111"
os.environ["CHANNEL_LIFETIME_ID"] = "-100222"
os.environ.pop("REDIS_URL", None)

from types import SimpleNamespace

import pytest

from proofdesk import auth as authmod
from proofdesk.broadcaster import Broadcaster
from proofdesk.errors import UpstreamError
from proofdesk.intake import SubmissionIntake
from proofdesk.review import ReviewWorkflow
from proofdesk.storage import LocalStorage
from proofdesk.store import JsonFileRecordStore

PREMIUM = "-100111"
LIFETIME = "-100222"
FIXED_NOW = 1_700_000_000


class FakeBot:
    """Records calls; fail_invite / fail_send make the matching call raise UpstreamError."""

    def __init__(self, fail_invite=False, fail_send=False):
        self.fail_invite = fail_invite
        self.fail_send = fail_send
        self.invites = []
        self.messages = []

    def create_invite_link(self, channel_id, member_limit, expire_at):
        self.invites.append({"channel_id": channel_id, "member_limit": member_limit, "expire_at": expire_at})
        if self.fail_invite:
            raise UpstreamError("createChatInviteLink failed")
        return f"https://t.me/+invite{len(self.invites)}"

    def send_message(self, user_id, text, parse_mode=None):
        if self.fail_send:
            raise UpstreamError("sendMessage failed")
        self.messages.append({"user_id": user_id, "text": text, "parse_mode": parse_mode})
        return {"message_id": len(self.messages)}


@pytest.fixture(autouse=True)
def reset_login_limiter():
    authmod.get_limiter().reset()
    yield


@pytest.fixture
def services(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    storage = LocalStorage(root=root)
    store = JsonFileRecordStore(tmp_path / "transactions.json", storage)
    broadcaster = Broadcaster()
    bot = FakeBot()
    audit = []
    intake = SubmissionIntake(store, storage, broadcaster)
    workflow = ReviewWorkflow(
        store, bot, broadcaster,
        premium_channel_id=PREMIUM,
        lifetime_channel_id=LIFETIME,
        admin_contact="@helpdesk",
        keep_record_on_send_failure=False,
        exclusive_locks=False,
        clock=lambda: FIXED_NOW,
        audit_sink=audit.append,
    )
    return SimpleNamespace(storage=storage, store=store, broadcaster=broadcaster, bot=bot,
                           audit=audit, intake=intake, workflow=workflow)


def submit(services, paket="Premium", user_id="u1", username="Ali", filename="proof.png"):
    return services.intake.submit(user_id, username, paket, filename, b"\x89PNG fake image bytes")

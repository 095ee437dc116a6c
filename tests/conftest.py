"""
Shared test fixtures.

No real API calls in tests: the hosted backend is the package's
InMemoryBackend, and Gemini, Google Calendar, Stripe, Supabase auth and
storage are replaced by the fakes below.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Optional

import pytest

from gossip_couple.agents.completion import CompletionClient, CompletionResult, ToolInvocation
from gossip_couple.audit.logger import AuditLogger
from gossip_couple.services.payments import WebhookSignatureError
from gossip_couple.services.repository import InMemoryBackend


COUPLE_ID = "c1"
OTHER_COUPLE_ID = "c2"
USER_ID = "u1"


# =============================================================================
# Completion endpoint
# =============================================================================

class FakeCompletionClient(CompletionClient):
    """Returns queued results (or raises queued exceptions) in order."""

    def __init__(self, results=None, delay: float = 0.0):
        self.results = list(results or [])
        self.delay = delay
        self.calls: list[dict] = []

    async def complete(
        self,
        message: str,
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        search_grounding: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        self.calls.append({
            "message": message,
            "system_instruction": system_instruction,
            "tools": tools,
            "search_grounding": search_grounding,
            "temperature": temperature,
        })
        result = self.results.pop(0) if self.results else CompletionResult(text="ok")
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(result, BaseException):
            raise result
        return result


def tool_calls(*calls: tuple[str, dict], text: Optional[str] = None) -> CompletionResult:
    """A completion result carrying the given (name, args) invocations."""
    return CompletionResult(
        text=text,
        invocations=[ToolInvocation(name=name, args=args) for name, args in calls],
    )


# =============================================================================
# Google Calendar
# =============================================================================

class FakeResponse:
    def __init__(self, data: dict, ok: bool = True):
        self._data = data
        self.ok = ok

    def json(self) -> dict:
        return self._data


class FakeCalendarSession:
    """Stands in for google-auth's AuthorizedSession."""

    def __init__(self, items=None, post_response: Optional[FakeResponse] = None):
        self.items = list(items or [])
        self.post_response = post_response or FakeResponse(
            {"id": "g-1", "htmlLink": "https://calendar.google.com/event?eid=g-1"}
        )
        self.posts: list[dict] = []
        self.gets: list[dict] = []

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json})
        return self.post_response

    def get(self, url, params=None, timeout=None):
        self.gets.append({"url": url, "params": params})
        return FakeResponse({"items": self.items})


# =============================================================================
# Stripe
# =============================================================================

class FakeStripeGateway:
    VALID_SIGNATURE = "t=1,v1=valid"

    def __init__(self, existing_customer: Optional[str] = None):
        self.existing_customer = existing_customer
        self.created_customers: list[tuple[str, str]] = []
        self.sessions: list[dict] = []

    async def find_customer(self, email: str) -> Optional[str]:
        return self.existing_customer

    async def create_customer(self, email: str, user_id: str) -> str:
        self.created_customers.append((email, user_id))
        return "cus_new"

    async def create_checkout_session(self, customer_id: str, user_id: str, origin: str) -> str:
        self.sessions.append({"customer_id": customer_id, "user_id": user_id, "origin": origin})
        return f"https://checkout.stripe.com/c/pay/{customer_id}"

    def verify_webhook(self, body: str, signature: str) -> dict:
        if signature != self.VALID_SIGNATURE:
            raise WebhookSignatureError("Webhook signature verification failed")
        return json.loads(body)


# =============================================================================
# Supabase auth and storage
# =============================================================================

def make_user(user_id: str = USER_ID, email: str = "ana@example.com"):
    return SimpleNamespace(id=user_id, email=email)


class FakeGoTrue:
    """Minimal async GoTrue client."""

    def __init__(self, users=None, session_user=None, sign_up_error: Optional[Exception] = None):
        self.users = {u.email: u for u in (users or [])}
        self.passwords: dict[str, str] = {}
        self.session_user = session_user
        self.sign_up_error = sign_up_error
        self.signed_out = False
        self.admin = SimpleNamespace(list_users=self._list_users)

    def _session(self, user):
        return SimpleNamespace(access_token=f"token-{user.id}", user=user)

    async def _list_users(self):
        return list(self.users.values())

    async def sign_in_with_password(self, credentials: dict):
        user = self.users.get(credentials["email"])
        if user is None or self.passwords.get(user.email) != credentials["password"]:
            raise Exception("Invalid login credentials")
        self.session_user = user
        return SimpleNamespace(user=user, session=self._session(user))

    async def sign_up(self, credentials: dict):
        if self.sign_up_error is not None:
            raise self.sign_up_error
        user = make_user(f"u-{len(self.users) + 1}", credentials["email"])
        self.users[user.email] = user
        self.passwords[user.email] = credentials["password"]
        self.session_user = user
        return SimpleNamespace(user=user, session=self._session(user))

    async def sign_out(self):
        self.signed_out = True
        self.session_user = None

    async def get_session(self):
        if self.session_user is None:
            return None
        return self._session(self.session_user)


class FakeBucket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[dict] = []

    async def upload(self, path, file, file_options=None):
        if self.fail:
            raise Exception("storage unavailable")
        self.uploads.append({"path": path, "size": len(file), "options": file_options})

    async def get_public_url(self, path):
        return f"https://cdn.example.com/avatars/{path}"


class FakeStorage:
    def __init__(self, bucket: FakeBucket):
        self.bucket = bucket
        self.requested: list[str] = []

    def from_(self, name: str) -> FakeBucket:
        self.requested.append(name)
        return self.bucket


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def audit(backend) -> AuditLogger:
    return AuditLogger(backend)

"""Shared test helpers for session tokens, webhook signing and config."""

from __future__ import annotations

import json
import time
from typing import Any

from task_market_service.services.payment_webhook import compute_signature
from task_market_service.services.session_tokens import SessionTokenIssuer

TEST_SESSION_SECRET = "test-session-secret-0123456789"
TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_CRON_SECRET = "test-cron-secret"


def make_config_yaml(db_path: str, log_directory: str) -> str:
    """Render a complete service config pointing at temp paths."""
    return f"""\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
payment_processor:
  base_url: "http://localhost:12111"
  secret_key: "sk_test_123"
  webhook_secret: "{TEST_WEBHOOK_SECRET}"
  webhook_tolerance_seconds: 300
  timeout_seconds: 5
  currency: "usd"
pricing:
  platform_fee_percent: 15
  min_job_price_usd: 7
  emergency_min_price_usd: 100
auth:
  session_secret: "{TEST_SESSION_SECRET}"
  token_ttl_seconds: 3600
otp:
  code_ttl_seconds: 600
tasks:
  expiry_days: 5
  max_photos: 10
  max_title_length: 100
  chat_thread_ttl_days: 3
  price_prompt_after_hours: 24
urls:
  frontend_url: "http://frontend.test"
request:
  max_body_size: 1048576
internal:
  cron_secret: "{TEST_CRON_SECRET}"
"""


def make_session_token(user_id: str, ttl_seconds: int = 3600) -> str:
    """Issue a bearer token the test app will accept."""
    return SessionTokenIssuer(TEST_SESSION_SECRET, ttl_seconds).issue(user_id)


def auth_headers(user_id: str) -> dict[str, str]:
    """Authorization header for user_id."""
    return {"Authorization": f"Bearer {make_session_token(user_id)}"}


def checkout_completed_event(
    session_id: str,
    metadata: dict[str, str],
    *,
    payment_intent: str | None = "pi_test_1",
    event_id: str = "evt_test_1",
) -> dict[str, Any]:
    """Build a checkout.session.completed event body."""
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "metadata": metadata,
            }
        },
    }


def signed_webhook(
    event: dict[str, Any],
    *,
    secret: str = TEST_WEBHOOK_SECRET,
    timestamp: int | None = None,
) -> tuple[bytes, dict[str, str]]:
    """Serialize an event and sign it the way the processor does."""
    body = json.dumps(event).encode()
    ts = int(time.time()) if timestamp is None else timestamp
    signature = compute_signature(secret, ts, body)
    return body, {"Stripe-Signature": f"t={ts},v1={signature}", "Content-Type": "application/json"}

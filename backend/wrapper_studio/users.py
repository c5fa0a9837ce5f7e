"""Demo-user bootstrap.

There is no login flow: every wrapper belongs to a single demo user that is
created on startup. Passwords are still stored as argon2id hashes.
"""
from __future__ import annotations

import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from wrapper_studio.schemas import User, WrapperCreate
from wrapper_studio.storage import EntityKind, Storage

logger = logging.getLogger(__name__)

DEMO_USERNAME = "demo_user"
DEMO_PASSWORD = "password123"

PWD = PasswordHasher()

DEMO_WRAPPER = WrapperCreate(
    name="Customer Support Assistant",
    description=(
        "AI assistant that helps customer support agents respond to inquiries "
        "with accurate information from the knowledge base."
    ),
    base_model="Gemini Pro",
    system_prompt=(
        "You are a customer support assistant for a software company. You should be "
        "helpful, friendly, and knowledgeable. When you don't know the answer, refer to "
        "the knowledge base or suggest escalating to a human agent."
    ),
    temperature=70,
    max_tokens=2048,
    top_p=90,
    enable_memory=True,
    knowledge_base_integration=True,
    web_search_access=False,
)


def hash_password(password: str) -> str:
    return PWD.hash(password)


def verify_password(password: str, encoded: str) -> bool:
    try:
        return bool(PWD.verify(encoded, password))
    except (VerificationError, InvalidHashError):
        return False


async def create_user(storage: Storage, username: str, password: str) -> User:
    if await storage.find_one(EntityKind.USERS, "username", username):
        raise ValueError(f"Username already taken: {username}")
    record = await storage.create(
        EntityKind.USERS,
        {"username": username, "password_hash": hash_password(password)},
    )
    return User.model_validate(record)


async def ensure_demo_user(storage: Storage, *, seed_wrapper: bool = False) -> User:
    """Return the demo user, creating it (and optionally its demo wrapper) if absent."""
    existing = await storage.find_one(EntityKind.USERS, "username", DEMO_USERNAME)
    if existing:
        user = User.model_validate(existing)
    else:
        user = await create_user(storage, DEMO_USERNAME, DEMO_PASSWORD)
        logger.info("Created demo user id=%s", user.id)

    if seed_wrapper and not await storage.list_by_parent(EntityKind.WRAPPERS, user.id):
        await storage.create(EntityKind.WRAPPERS, {**DEMO_WRAPPER.to_record(), "user_id": user.id})
        logger.info("Seeded demo wrapper %r", DEMO_WRAPPER.name)
    return user


__all__ = [
    "DEMO_USERNAME",
    "DEMO_WRAPPER",
    "create_user",
    "ensure_demo_user",
    "hash_password",
    "verify_password",
]

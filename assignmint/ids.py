"""ID generation utilities."""

import secrets

from nanoid import generate

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 12


def gen_id(prefix: str) -> str:
    return f"{prefix}{generate(ALPHABET, ID_LENGTH)}"


def expert_id() -> str:
    return gen_id("ex_")


def task_id() -> str:
    return gen_id("tk_")


def invite_id() -> str:
    return gen_id("iv_")


def api_key() -> str:
    return f"am_{secrets.token_urlsafe(24)}"

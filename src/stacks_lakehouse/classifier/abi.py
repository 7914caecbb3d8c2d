"""Helpers for reading Clarity contract interfaces and source text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

SIP010_INTERFACE = "sip-010-ft"
VAULT_INTERFACE = "vault"

SIP010_CALLABLE_FUNCTIONS = (
    "transfer",
    "get-name",
    "get-symbol",
    "get-decimals",
    "get-balance",
    "get-total-supply",
)

_SOURCE_DEFINITION = re.compile(r"\(\s*define-(public|read-only|private)\s+\(\s*([a-zA-Z0-9_!?<>=*+/-]+)")


@dataclass(frozen=True)
class AbiFunction:
    name: str
    access: str
    arg_names: tuple[str, ...]


def parse_abi_functions(abi: dict[str, Any] | None) -> list[AbiFunction]:
    """Extract function descriptors from a parsed interface, skipping malformed entries."""
    if not isinstance(abi, dict) or not isinstance(abi.get("functions"), list):
        return []
    functions = []
    for raw in abi["functions"]:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            continue
        args = raw.get("args") if isinstance(raw.get("args"), list) else []
        functions.append(
            AbiFunction(
                name=raw["name"],
                access=str(raw.get("access") or ""),
                arg_names=tuple(str(a.get("name", "")) for a in args if isinstance(a, dict)),
            )
        )
    return functions


def abi_function_names(abi: dict[str, Any] | None) -> frozenset[str]:
    return frozenset(f.name for f in parse_abi_functions(abi))


def source_function_names(source: str | None) -> frozenset[str]:
    """Function names defined in Clarity source via define-public/read-only/private."""
    if not source:
        return frozenset()
    return frozenset(match.group(2) for match in _SOURCE_DEFINITION.finditer(source))


def _has_vault_signature(fn: AbiFunction, access: str) -> bool:
    return fn.access == access and len(fn.arg_names) >= 2 and fn.arg_names[:2] == ("amount", "opcode")


def detect_interfaces(abi: dict[str, Any] | None) -> frozenset[str]:
    """Standard interfaces a contract's ABI conforms to."""
    functions = parse_abi_functions(abi)
    if not functions:
        return frozenset()
    by_name = {f.name: f for f in functions}
    interfaces = set()

    if all(name in by_name for name in SIP010_CALLABLE_FUNCTIONS):
        interfaces.add(SIP010_INTERFACE)

    execute = by_name.get("execute")
    quote = by_name.get("quote")
    opcode_vault = (
        execute is not None
        and quote is not None
        and _has_vault_signature(execute, "public")
        and _has_vault_signature(quote, "read_only")
    )
    reserves = by_name.get("get-reserves")
    swap_a = by_name.get("swap-a-to-b")
    swap_b = by_name.get("swap-b-to-a")
    variables = abi.get("variables") if isinstance(abi, dict) else None
    has_opcodes = isinstance(variables, list) and any(
        isinstance(v, dict) and str(v.get("name", "")).startswith("OP_") for v in variables
    )
    reserve_vault = (
        reserves is not None
        and reserves.access == "read_only"
        and swap_a is not None
        and swap_a.access == "private"
        and swap_b is not None
        and swap_b.access == "private"
        and has_opcodes
    )
    if opcode_vault or reserve_vault:
        interfaces.add(VAULT_INTERFACE)

    return frozenset(interfaces)


def fungible_token_identifier(abi: dict[str, Any] | None) -> str | None:
    """Name of the first fungible token declared by the contract, if any."""
    if not isinstance(abi, dict):
        return None
    tokens = abi.get("fungible_tokens")
    if isinstance(tokens, list) and tokens and isinstance(tokens[0], dict):
        name = tokens[0].get("name")
        return name if isinstance(name, str) else None
    return None

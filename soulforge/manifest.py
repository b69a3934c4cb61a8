"""
SOULFORGE Token Manifest

The manifest is the only input the core takes from the launch form: name,
symbol, human-readable supply and optional social links, plus the policy
bindings the launchpad advertises.

Bindings (lock liquidity, renounce mint, no god wallet, open source) are
advisory. They are forwarded with the result as metadata and are never
enforced on-chain by this core.

Two payload shapes are accepted by ``TokenManifest.from_dict``:

    flat      {"name": ..., "symbol": ..., "human_supply": ..., "bindings": {...}}
    launch    {"token": {"name": ..., "supply": ...}, "bindings": {"lockLiquidity": ...}}

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator

from soulforge.errors import InvalidSupply, ManifestError, ManifestFieldError
from soulforge.observability import ForgeLayer, get_logger
from soulforge.units import parse_supply

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "token_manifest.schema.json"

MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 8
_SYMBOL_RE = re.compile(rf"[A-Z0-9]{{1,{MAX_SYMBOL_LENGTH}}}")

_BINDING_ALIASES = {
    "lockLiquidity": "lock_liquidity",
    "renounceMint": "renounce_mint",
    "noGodWallet": "no_god_wallet",
    "openSource": "open_source",
}

_TOKEN_ALIASES = {
    "supply": "human_supply",
    "humanSupply": "human_supply",
}

logger = get_logger("manifest", ForgeLayer.MANIFEST)


@lru_cache(maxsize=1)
def manifest_validator() -> Draft202012Validator:
    """Compiled validator for the manifest schema."""
    with open(SCHEMA_PATH, encoding="utf-8") as f:
        schema = json.load(f)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def validate_with_schema(obj: Any, validator: Draft202012Validator) -> List[ManifestFieldError]:
    errors = []
    for e in sorted(validator.iter_errors(obj), key=str):
        path = ".".join(str(p) for p in e.absolute_path) or "<root>"
        errors.append(ManifestFieldError(path, e.message))
    return errors


@dataclass(frozen=True)
class PolicyBindings:
    """Advisory launch policies, forwarded as metadata only."""
    lock_liquidity: bool = True
    renounce_mint: bool = True
    no_god_wallet: bool = True
    open_source: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "lock_liquidity": self.lock_liquidity,
            "renounce_mint": self.renounce_mint,
            "no_god_wallet": self.no_god_wallet,
            "open_source": self.open_source,
        }


@dataclass(frozen=True)
class TokenManifest:
    """
    Immutable description of the token to create.

    The symbol is stored stripped and uppercased. ``human_supply`` is kept as
    the caller's digit string; conversion to raw units happens in the unit
    converter so that a bad supply surfaces as ``InvalidSupply``.
    """
    name: str
    symbol: str
    human_supply: str
    description: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None
    bindings: PolicyBindings = field(default_factory=PolicyBindings)

    def __post_init__(self):
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "symbol", self.symbol.strip().upper())

        errors = []
        if not 1 <= len(self.name) <= MAX_NAME_LENGTH:
            errors.append(ManifestFieldError("name", f"must be 1 to {MAX_NAME_LENGTH} characters"))
        if not _SYMBOL_RE.fullmatch(self.symbol):
            errors.append(ManifestFieldError(
                "symbol", f"must be 1 to {MAX_SYMBOL_LENGTH} ASCII letters or digits",
            ))
        if errors:
            raise ManifestError(errors)

    @property
    def links(self) -> Dict[str, str]:
        """Non-empty social links."""
        candidates = {
            "twitter": self.twitter,
            "telegram": self.telegram,
            "website": self.website,
        }
        return {k: v.strip() for k, v in candidates.items() if v and v.strip()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "human_supply": self.human_supply,
            "description": self.description,
            "twitter": self.twitter,
            "telegram": self.telegram,
            "website": self.website,
            "bindings": self.bindings.to_dict(),
        }

    def to_metadata(self) -> Dict[str, Any]:
        """Metadata forwarded with a successful mint."""
        metadata: Dict[str, Any] = {
            "name": self.name,
            "symbol": self.symbol,
            "bindings": self.bindings.to_dict(),
            "bindings_enforced": False,
        }
        if self.description and self.description.strip():
            metadata["description"] = self.description.strip()
        if self.links:
            metadata["links"] = self.links
        return metadata

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenManifest":
        """
        Build a manifest from a request payload.

        Raises:
            ManifestError: listing every failing field
        """
        flat = normalize_payload(data)

        errors = validate_with_schema(flat, manifest_validator())
        supply = flat.get("human_supply")
        if isinstance(supply, str):
            try:
                parse_supply(supply)
            except InvalidSupply as e:
                errors.append(ManifestFieldError("human_supply", e.message))

        if errors:
            logger.warning(
                "Manifest rejected",
                error_code=ManifestError.code,
                fields=[e.field for e in errors],
            )
            raise ManifestError(errors)

        bindings = PolicyBindings(**flat.get("bindings", {}))
        return cls(
            name=flat["name"],
            symbol=flat["symbol"],
            human_supply=flat["human_supply"],
            description=flat.get("description"),
            twitter=flat.get("twitter"),
            telegram=flat.get("telegram"),
            website=flat.get("website"),
            bindings=bindings,
        )


def normalize_payload(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten the launch payload shape and map camelCase keys to field names."""
    if not isinstance(data, Mapping):
        raise ManifestError([ManifestFieldError("<root>", f"expected mapping, got {type(data).__name__}")])

    if isinstance(data.get("token"), Mapping):
        flat: Dict[str, Any] = dict(data["token"])
        if "bindings" in data:
            flat["bindings"] = data["bindings"]
    else:
        flat = dict(data)

    for alias, name in _TOKEN_ALIASES.items():
        if alias in flat and name not in flat:
            flat[name] = flat.pop(alias)

    bindings = flat.get("bindings")
    if isinstance(bindings, Mapping):
        flat["bindings"] = {_BINDING_ALIASES.get(k, k): v for k, v in bindings.items()}

    return flat

from __future__ import annotations

import re
from dataclasses import dataclass, field

_PHONE_CHARS = re.compile(r"[\s\-().]")
_PHONE = re.compile(r"^\+?\d{6,15}$")
_PHONE_CHANNELS = ("whatsapp:", "sms:", "tel:")


def normalize_identity(raw: str) -> str:
    """Pure function: transport sender string → conversation identity.

    Phone-based transports collapse to E.164-ish form so that
    ``whatsapp:+1 416-555-0000`` and ``+14165550000`` share one lock and one
    pending state. Other transports keep their ``channel:peer`` form.
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("sender identity must not be empty")

    lowered = value.lower()
    for prefix in _PHONE_CHANNELS:
        if lowered.startswith(prefix):
            value = value[len(prefix):]
            break

    compact = _PHONE_CHARS.sub("", value)
    if _PHONE.match(compact):
        return compact if compact.startswith("+") else f"+{compact}"
    return value


def lock_key(identity: str) -> str:
    return f"lock:{identity}"


@dataclass
class TenantDirectory:
    """Maps a conversation identity to the tenant (owner_id) it writes for.

    Explicit entries come from PIPELINE_TENANT_MAP. Without an entry the
    tenant is the identity's digits, i.e. the owner's own phone number.
    """

    entries: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_setting(cls, raw: str) -> TenantDirectory:
        entries: dict[str, str] = {}
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            identity, tenant = part.split("=", 1)
            entries[normalize_identity(identity)] = tenant.strip()
        return cls(entries)

    def tenant_for(self, identity: str) -> str:
        if identity in self.entries:
            return self.entries[identity]
        digits = re.sub(r"\D", "", identity)
        return digits or identity

"""
Configurator configuration — single source of truth for product-group ids,
engineering ratios, quality tiers and runtime settings.

Import from here in all engines rather than hardcoding values.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


# ── Runtime settings (environment) ─────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()
DEFAULT_LOCATION_ID: str = os.getenv("DEFAULT_LOCATION_ID", "1")
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
]

# Travel costs as a share of material + labor (quote summary)
TRAVEL_COST_PCT: float = float(os.getenv("TRAVEL_COST_PCT", "5.0"))

# In-process configurator sessions: idle expiry (seconds) and upper bound
SESSION_IDLE_TTL: int = max(60, int(os.getenv("SESSION_IDLE_TTL", "3600")))
MAX_SESSIONS: int = max(1, int(os.getenv("MAX_SESSIONS", "500")))


# ── Quality tiers ──────────────────────────────────────────────────────────────
QUALITY_BASIC = "Basic"
QUALITY_STANDARD = "Standard"
QUALITY_PREMIUM = "Premium"
QUALITY_LEVELS: list[str] = [QUALITY_BASIC, QUALITY_STANDARD, QUALITY_PREMIUM]

# Tiers tried after the requested / package level, in order
QUALITY_FALLBACK: list[str] = [QUALITY_STANDARD, QUALITY_BASIC]

# Global parameter holding the requested quality tier
GLOBAL_QUALITY_PARAM = "qualitaetsstufe"


# ── Labor roles ────────────────────────────────────────────────────────────────
ROLES: tuple[str, ...] = ("meister", "geselle", "monteur")


# ── Consumer product groups (input of the protection-device rules) ─────────────
GROUP_SOCKET_SINGLE = "GRP-SOC-SKT"
GROUP_SOCKET_DOUBLE = "GRP-SOC-DBL"
GROUP_LIGHT_SWITCH = "GRP-SWI-AUS"
GROUP_STOVE = "GRP-SOC-HERD"

# Socket weight per unit of each socket group
SOCKET_WEIGHTS: dict[str, int] = {
    GROUP_SOCKET_SINGLE: 1,
    GROUP_SOCKET_DOUBLE: 2,
}


# ── Protection devices (Schutzorgane) ──────────────────────────────────────────
GROUP_MCB_B16 = "GRP-MCB-B16"        # 1-pole 16 A breaker
GROUP_MCB_B10 = "GRP-MCB-B10"        # 1-pole 10 A breaker
GROUP_MCB_B16_3P = "GRP-MCB-B16-3P"  # 3-pole 16 A breaker
GROUP_RCD_40A = "GRP-RCD-40A"        # RCD 40 A
GROUP_LTS_35A = "GRP-LTS-35A"        # main disconnect switch

BREAKER_GROUPS: tuple[str, ...] = (GROUP_MCB_B16, GROUP_MCB_B10, GROUP_MCB_B16_3P)
PROTECTION_GROUPS: tuple[str, ...] = BREAKER_GROUPS + (GROUP_RCD_40A, GROUP_LTS_35A)

SOCKETS_PER_BREAKER: int = 8
LIGHTS_PER_BREAKER: int = 10
BREAKERS_PER_RCD: int = 6

# Synthetic package that owns all derived protection-device line items
PROTECTION_PACKAGE_ID: int = -1
PROTECTION_PACKAGE_NAME = "Schutzorgane"
PROTECTION_ID_PREFIX = "schutzorgane"


# ── Enclosure (Unterverteiler) sizing ──────────────────────────────────────────
GROUP_ENCLOSURE = "GRP-VERT-UV"

# Capacity ladder in module slots, ascending
ENCLOSURE_SLOT_LADDER: list[int] = [12, 24, 36, 48, 60]

BREAKER_SLOTS: int = 1
SURGE_PROTECTION_SLOTS: int = 1
RCD_SLOTS: int = 3


# ── Pricing ────────────────────────────────────────────────────────────────────
DEFAULT_MARKUP_PCT: float = 40.0

# Accepted range for a per-item markup override (percent)
MARKUP_PCT_MIN: float = 0.0
MARKUP_PCT_MAX: float = 400.0

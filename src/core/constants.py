"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Modes ────────────────────────────────────────────────────────
MODE_TEST = "test"
MODE_LIVE = "live"

# ── Providers ────────────────────────────────────────────────────
PROVIDER_GITHUB = "github"
PROVIDER_STRIPE = "stripe"

# ── Tiers ────────────────────────────────────────────────────────
DEFAULT_TIER = "pro"
FREE_PLAN = "free"

# ── Public keys ──────────────────────────────────────────────────
PUBLIC_KEY_PREFIX = "pk"
PUBLIC_KEY_HEX_LENGTH = 32

# ── Secret keys ──────────────────────────────────────────────────
SECRET_KEY_PREFIX = "sk"
SECRET_KEY_HEX_LENGTH = 64

# ── OAuth ────────────────────────────────────────────────────────
OAUTH_STATE_TTL_SECONDS = 600  # 10 minutes

# ── Directory key layout ─────────────────────────────────────────
DIR_TENANT_NAMESPACE = "tenant:{tenant_id}:namespace"
DIR_TENANT_PUBLIC_KEY = "tenant:{tenant_id}:publickey:{mode}"
DIR_PUBLIC_KEY_TENANT = "publickey:{public_key}:tenant"
DIR_TENANT_SECRET_KEY = "tenant:{tenant_id}:secretkey:{mode}"
DIR_SECRET_KEY_TENANT = "secretkey:{key_hash}:tenant"
DIR_OAUTH_STATE = "oauth:state:{nonce}"

# ── Namespace key layout ─────────────────────────────────────────
NS_CREDENTIAL = "credential:{provider}:{mode}"
NS_TIER_CONFIG = "tiers:{mode}"

# ── HTTP headers ─────────────────────────────────────────────────
HEADER_PUBLIC_KEY = "X-Publishable-Key"
HEADER_USER_ID = "X-User-Id"
HEADER_USER_EMAIL = "X-User-Email"
HEADER_INTERNAL_TOKEN = "X-Internal-Token"
STRIPE_ACCOUNT_HEADER = "Stripe-Account"

# ── Payment provider endpoints ───────────────────────────────────
STRIPE_API_BASE = "https://api.stripe.com/v1"
STRIPE_CHECKOUT_PATH = "/checkout/sessions"
STRIPE_PORTAL_PATH = "/billing_portal/sessions"
STRIPE_PRODUCTS_PATH = "/products"
STRIPE_PRICES_PATH = "/prices"

# ── Storage platform ─────────────────────────────────────────────
CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

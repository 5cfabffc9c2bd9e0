"""Client-side auth state mirror for storefront front ends."""

from browser.auth_state import AuthSnapshot, ClientAuthState, LoginOutcome, merge_auth_signals
from browser.triggers import AuthTrigger, CrossTabChannel, Navigator, PollingTrigger

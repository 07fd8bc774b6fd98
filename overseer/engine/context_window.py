"""Context window size for a model run."""
from __future__ import annotations

CONTEXT_1M = 1_000_000
CONTEXT_200K = 200_000


def get_context_window(model: str, betas: list[str] | None = None) -> int:
    """Return 1M when a ``context-1m`` beta is active, else 200k.

    The model name alone cannot tell whether the account gets the larger
    window, so 200k is the conservative default.
    """
    if betas and any(b.startswith("context-1m") for b in betas):
        return CONTEXT_1M
    return CONTEXT_200K

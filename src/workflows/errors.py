from __future__ import annotations

from typing import Optional


class ValidationError(ValueError):
    """Input rejected; the session stays in the same state and `prompt` is sent back."""

    def __init__(self, prompt: str) -> None:
        super().__init__(prompt)
        self.prompt = prompt


class OwnershipDenied(RuntimeError):
    """The user's wallet does not own the asset they are trying to change. Terminal."""

    def __init__(self, asset_id: int, owner: Optional[str] = None) -> None:
        super().__init__(f"asset {asset_id} is owned by {owner}")
        self.asset_id = asset_id
        self.owner = owner


__all__ = ["OwnershipDenied", "ValidationError"]

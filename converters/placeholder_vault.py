"""Placeholder vault protecting hand-built markdown from later conversion passes."""

import logging
import secrets
from typing import Dict, List, Optional

logger = logging.getLogger('forum_import.converters.placeholdervault')

KEY_BYTES = 16


class VaultError(Exception):
    """Base exception for placeholder vault misuse."""
    pass


class LeftoverPlaceholderError(VaultError):
    """A placeholder key survived apply(); some pass ran in the wrong order."""

    def __init__(self, keys: List[str]):
        self.keys = keys
        super().__init__(f"{len(keys)} placeholder key(s) left in text: {', '.join(keys)}")


class VaultAlreadyAppliedError(VaultError):
    """A vault was applied twice."""
    pass


class PlaceholderVault:
    """
    Stores literal fragments under random keys until the text is final.

    Rewrite passes splice the returned key into the working text in place
    of the fragment; apply() swaps the fragments back in after the generic
    HTML to markdown pass. One vault serves exactly one body.
    """

    def __init__(self, strict: bool = False, logger: Optional[logging.Logger] = None):
        """
        Initialize an empty vault.

        Args:
            strict: Raise LeftoverPlaceholderError instead of logging when a
                key survives apply()
            logger: Optional logger instance
        """
        self.strict = strict
        self.logger = logger or logging.getLogger('forum_import.converters.placeholdervault')
        self._store: Dict[str, str] = {}
        self._issued: List[str] = []
        self._applied = False

    def store(self, literal: str) -> str:
        """
        Bind a literal to a fresh key.

        Args:
            literal: Text that must reach the final output verbatim

        Returns:
            The key to splice into the working text
        """
        if self._applied:
            raise VaultAlreadyAppliedError("Cannot store into a vault that was already applied")

        key = secrets.token_hex(KEY_BYTES)
        while key in self._store:
            key = secrets.token_hex(KEY_BYTES)

        self._store[key] = literal
        self._issued.append(key)
        return key

    def apply(self, text: str) -> str:
        """
        Replace every stored key with its literal and clear the vault.

        Keys are replaced newest first: a literal stored later may contain
        keys stored before it, never the other way round.

        Raises:
            VaultAlreadyAppliedError: If called a second time
            LeftoverPlaceholderError: In strict mode, if a key survives
        """
        if self._applied:
            raise VaultAlreadyAppliedError("Placeholder vault can only be applied once")
        self._applied = True

        text = self.expand(text)

        leftovers = [key for key in self._issued if key in text]
        self._store.clear()

        if leftovers:
            if self.strict:
                raise LeftoverPlaceholderError(leftovers)
            self.logger.error(f"{len(leftovers)} placeholder key(s) left in transcoded text")

        return text

    def expand(self, text: str) -> str:
        """
        Substitute stored literals without draining the vault.

        Block rules use this to lay out a fragment that embeds keys of
        fragments stored before it (a quote inside a quote).
        """
        for key in reversed(self._issued):
            literal = self._store.get(key)
            if literal is not None and key in text:
                text = text.replace(key, literal)
        return text

    @property
    def keys(self) -> List[str]:
        return list(self._issued)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store


__all__ = [
    'LeftoverPlaceholderError',
    'PlaceholderVault',
    'VaultAlreadyAppliedError',
    'VaultError'
]

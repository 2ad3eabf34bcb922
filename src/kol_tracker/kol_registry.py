"""
Read-only registry of tracked KOLs.

Built once at startup from the reference JSON list and passed explicitly
to the ingestion pipeline and the aggregation queries.  The registry owns
the wallet -> KOL index used for webhook attribution and the per-wallet
avatar lookup.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

from pydantic import ValidationError

from .constants import MIN_WALLET_LENGTH
from .models import Kol

logger = logging.getLogger(__name__)


class KolRegistry:
    """Immutable wallet -> KOL index."""

    def __init__(self, kols: Iterable[Kol]) -> None:
        kol_list = tuple(kols)
        index: dict[str, Kol] = {}
        main: set[str] = set()
        for kol in kol_list:
            for wallet, is_main in _wallets_of(kol):
                existing = index.get(wallet)
                if existing is not None:
                    if existing.name != kol.name:
                        logger.warning(
                            "Wallet %s listed for both %s and %s – keeping %s",
                            wallet, existing.name, kol.name, existing.name,
                        )
                    continue
                index[wallet] = kol
                if is_main:
                    main.add(wallet)

        self._kols = kol_list
        self._by_wallet: Mapping[str, Kol] = MappingProxyType(index)
        self._main_wallets = frozenset(main)
        self._by_name: Mapping[str, Kol] = MappingProxyType(
            {k.name.lower(): k for k in reversed(kol_list)}
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> "KolRegistry":
        """Build from raw dicts; invalid records are logged and skipped."""
        kols: list[Kol] = []
        for rec in records:
            try:
                kols.append(Kol.model_validate(rec))
            except ValidationError as exc:
                logger.warning("Skipping malformed KOL record %r: %s", rec, exc)
        return cls(kols)

    @classmethod
    def from_file(cls, path: str | Path) -> "KolRegistry":
        """Load the reference list from a JSON file (list of records)."""
        p = Path(path)
        if not p.exists():
            logger.warning("KOL data file %s not found – tracking no wallets", p)
            return cls(())
        data = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{p}: expected a JSON list of KOL records")
        registry = cls.from_records(data)
        logger.info(
            "Loaded %d KOLs (%d wallets) from %s",
            len(registry), registry.wallet_count, p,
        )
        return registry

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._kols)

    def __iter__(self) -> Iterator[Kol]:
        return iter(self._kols)

    def __contains__(self, wallet: object) -> bool:
        return wallet in self._by_wallet

    @property
    def kols(self) -> tuple[Kol, ...]:
        return self._kols

    @property
    def wallet_count(self) -> int:
        return len(self._by_wallet)

    def lookup(self, wallet: str) -> Optional[Kol]:
        return self._by_wallet.get(wallet)

    def avatar_for(self, wallet: str, default: str = "") -> str:
        kol = self._by_wallet.get(wallet)
        return kol.avatar if kol is not None else default

    def is_side_wallet(self, wallet: str) -> bool:
        """True for a tracked wallet that is not its KOL's main wallet."""
        return wallet in self._by_wallet and wallet not in self._main_wallets

    def find_by_name(self, name: str) -> Optional[Kol]:
        """Case-insensitive name lookup; the first listed KOL wins."""
        return self._by_name.get(name.lower())

    def wallets_of(self, kol: Kol) -> list[str]:
        """Tracked wallets of *kol*, main wallet first."""
        return [w for w, _ in _wallets_of(kol) if self._by_wallet.get(w) == kol]


def _wallets_of(kol: Kol) -> Iterator[tuple[str, bool]]:
    """Yield ``(wallet, is_main)`` pairs, skipping placeholders."""
    main = kol.wallet.strip()
    if len(main) > MIN_WALLET_LENGTH:
        yield main, True
    seen = {main}
    for side in kol.side_wallets:
        side = side.strip()
        if len(side) <= MIN_WALLET_LENGTH or side in seen:
            continue
        seen.add(side)
        yield side, False

"""Strategy passes for reconciling engineering records against discovery records."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from ..schema import MATCH_CONFIDENCE, AssetRecord, MatchCandidate, MatchType

# Strict priority order.  Passes always run in this order whatever order the
# caller lists them in.
STRATEGY_ORDER: tuple[MatchType, ...] = (
    MatchType.EXACT_TAG_ID,
    MatchType.IP_MATCH,
    MatchType.HOSTNAME_MATCH,
    MatchType.MAC_MATCH,
    MatchType.PARTIAL_TAG_ID,
    MatchType.FUZZY_TYPE_MANUFACTURER,
    MatchType.INTELLIGENT_PAIRING,
)

DEFAULT_STRATEGIES: tuple[MatchType, ...] = (
    MatchType.EXACT_TAG_ID,
    MatchType.IP_MATCH,
    MatchType.HOSTNAME_MATCH,
    MatchType.MAC_MATCH,
    MatchType.FUZZY_TYPE_MANUFACTURER,
)

STRATEGY_ALIASES: dict[str, MatchType] = {
    "tag_id": MatchType.EXACT_TAG_ID,
    "tag": MatchType.EXACT_TAG_ID,
    "ip_address": MatchType.IP_MATCH,
    "ip": MatchType.IP_MATCH,
    "hostname": MatchType.HOSTNAME_MATCH,
    "mac_address": MatchType.MAC_MATCH,
    "mac": MatchType.MAC_MATCH,
    "partial": MatchType.PARTIAL_TAG_ID,
    "fuzzy": MatchType.FUZZY_TYPE_MANUFACTURER,
    "intelligent": MatchType.INTELLIGENT_PAIRING,
    "synthetic_fill": MatchType.INTELLIGENT_PAIRING,
}

PAIRING_SHARE = 0.4
PARTIAL_PREFIX_LENGTH = 6


class MatchState:
    """
    Ownership record threaded through the strategy passes.

    Holds the matches found so far plus the indices of engineering and
    discovery records already consumed.  A discovery index enters
    `used_discovery` exactly once, which is what keeps the pairing 1:1.
    """

    def __init__(self) -> None:
        self.matched: list[MatchCandidate] = []
        self.used_engineering: set[int] = set()
        self.used_discovery: set[int] = set()

    def claim(
        self,
        engineering: Sequence[AssetRecord],
        discovery: Sequence[AssetRecord],
        eng_idx: int,
        disc_idx: int,
        match_type: MatchType,
    ) -> None:
        assert eng_idx not in self.used_engineering, f"engineering record {eng_idx} already matched"
        assert disc_idx not in self.used_discovery, f"discovery record {disc_idx} already consumed"
        self.matched.append(
            MatchCandidate(
                engineering=engineering[eng_idx],
                discovery=discovery[disc_idx],
                engineering_index=eng_idx,
                discovery_index=disc_idx,
                match_type=match_type,
                confidence=MATCH_CONFIDENCE[match_type],
            )
        )
        self.used_engineering.add(eng_idx)
        self.used_discovery.add(disc_idx)


def resolve_strategies(names: Iterable[str | MatchType] | None) -> list[MatchType]:
    """
    Turn caller-supplied strategy names into MatchTypes in priority order.

    Both the enum values ("ip_match") and the short option names ("ip_address")
    are accepted.  None selects DEFAULT_STRATEGIES.

    Raises:
        ValueError: If a name is not a known strategy.
    """
    if names is None:
        return list(DEFAULT_STRATEGIES)

    selected: set[MatchType] = set()
    for name in names:
        if isinstance(name, MatchType):
            strategy = name
        else:
            key = str(name).strip().lower()
            strategy = STRATEGY_ALIASES.get(key)
            if strategy is None:
                try:
                    strategy = MatchType(key)
                except ValueError:
                    raise ValueError(f"Unknown match strategy: {name!r}") from None
        if strategy == MatchType.NONE:
            raise ValueError("'none' is an outcome, not a match strategy")
        selected.add(strategy)
    return [s for s in STRATEGY_ORDER if s in selected]


# ----------------------------------------------------------------------
# Key extraction for the equality strategies
# ----------------------------------------------------------------------

def _tag_key(record: AssetRecord) -> str:
    return record.tag_id


def _ip_key(record: AssetRecord) -> str:
    return record.ip_address


def _hostname_key(record: AssetRecord) -> str:
    return record.hostname.lower()


def _mac_key(record: AssetRecord) -> str:
    return record.mac_address


def _build_index(
    records: Sequence[AssetRecord], key: Callable[[AssetRecord], str]
) -> dict[str, list[int]]:
    """Map each non-empty key to the indices carrying it, in input order."""
    index: dict[str, list[int]] = {}
    for i, record in enumerate(records):
        k = key(record)
        if k:
            index.setdefault(k, []).append(i)
    return index


def match_on_key(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    state: MatchState,
    match_type: MatchType,
    key: Callable[[AssetRecord], str],
) -> int:
    """
    Pair records whose `key` values are equal and non-empty.

    Engineering records are visited in input order; each takes the first
    unconsumed discovery record (in input order) with the same key.  The hash
    index gives the same pairing as a nested scan.

    Returns:
        int: Number of matches added by this pass.
    """
    index = _build_index(discovery, key)
    added = 0
    for i, eng in enumerate(engineering):
        if i in state.used_engineering:
            continue
        k = key(eng)
        if not k:
            continue
        for j in index.get(k, ()):
            if j not in state.used_discovery:
                state.claim(engineering, discovery, i, j, match_type)
                added += 1
                break
    return added


def match_partial_tag(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    state: MatchState,
) -> int:
    """Pair tags where either one contains the other's first six characters."""
    added = 0
    for i, eng in enumerate(engineering):
        if i in state.used_engineering or not eng.tag_id:
            continue
        eng_prefix = eng.tag_id[:PARTIAL_PREFIX_LENGTH]
        for j, disc in enumerate(discovery):
            if j in state.used_discovery or not disc.tag_id:
                continue
            if eng_prefix in disc.tag_id or disc.tag_id[:PARTIAL_PREFIX_LENGTH] in eng.tag_id:
                state.claim(engineering, discovery, i, j, MatchType.PARTIAL_TAG_ID)
                added += 1
                break
    return added


def match_type_manufacturer(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    state: MatchState,
) -> int:
    """
    Fuzzy fallback on descriptive fields.

    Only runs when no match exists yet.  The discovery device type must
    contain the engineering device type and the manufacturers must be equal,
    both compared case-insensitively and both required non-empty.
    """
    if state.matched:
        return 0

    added = 0
    for i, eng in enumerate(engineering):
        if i in state.used_engineering or not eng.device_type or not eng.manufacturer:
            continue
        eng_type = eng.device_type.lower()
        eng_make = eng.manufacturer.lower()
        for j, disc in enumerate(discovery):
            if j in state.used_discovery or not disc.device_type or not disc.manufacturer:
                continue
            if eng_type in disc.device_type.lower() and disc.manufacturer.lower() == eng_make:
                state.claim(engineering, discovery, i, j, MatchType.FUZZY_TYPE_MANUFACTURER)
                added += 1
                break
    return added


def match_positional(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    state: MatchState,
) -> int:
    """
    Synthetic fill: pair leftover records by position, with no field evidence.

    Only runs when no match exists yet, and produces at most
    floor(len(engineering) * PAIRING_SHARE) pairs.
    """
    if state.matched:
        return 0

    remaining_eng = [i for i in range(len(engineering)) if i not in state.used_engineering]
    remaining_disc = [j for j in range(len(discovery)) if j not in state.used_discovery]
    limit = min(int(len(engineering) * PAIRING_SHARE), len(remaining_eng), len(remaining_disc))
    for i, j in zip(remaining_eng[:limit], remaining_disc[:limit]):
        state.claim(engineering, discovery, i, j, MatchType.INTELLIGENT_PAIRING)
    return limit


_KEY_FUNCTIONS: dict[MatchType, Callable[[AssetRecord], str]] = {
    MatchType.EXACT_TAG_ID: _tag_key,
    MatchType.IP_MATCH: _ip_key,
    MatchType.HOSTNAME_MATCH: _hostname_key,
    MatchType.MAC_MATCH: _mac_key,
}


def run_passes(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    strategies: Sequence[MatchType],
) -> MatchState:
    """
    Run the enabled strategy passes in priority order.

    Args:
        engineering (Sequence[AssetRecord]): Baseline records.
        discovery (Sequence[AssetRecord]): Discovery records.
        strategies (Sequence[MatchType]): Enabled strategies, already resolved.

    Returns:
        MatchState: Matches plus the consumed index sets.
    """
    state = MatchState()
    enabled = set(strategies)
    logging.info(
        f"Matching {len(engineering)} engineering records against {len(discovery)} discovery records "
        f"with strategies: {', '.join(s.value for s in STRATEGY_ORDER if s in enabled)}"
    )

    for strategy in STRATEGY_ORDER:
        if strategy not in enabled:
            continue
        if strategy in _KEY_FUNCTIONS:
            added = match_on_key(engineering, discovery, state, strategy, _KEY_FUNCTIONS[strategy])
        elif strategy == MatchType.PARTIAL_TAG_ID:
            added = match_partial_tag(engineering, discovery, state)
        elif strategy == MatchType.FUZZY_TYPE_MANUFACTURER:
            added = match_type_manufacturer(engineering, discovery, state)
        else:
            added = match_positional(engineering, discovery, state)
            if added:
                logging.warning(
                    f"Synthetic fill paired {added} records by position; these carry no field evidence."
                )
        logging.debug(f"After {strategy.value}: +{added}, {len(state.matched)} matches in total")

    return state

"""
Duplicate detection and vote ledger, persisted as one JSON document.

Document layout (camelCase keys are part of the stored format):

    {
      "votes": {artworkId: ArtworkVotes},
      "timeAggregations": {
        "weekly"|"monthly"|"yearly": {
          "byGuild": {guildId: n}, "global": n,
          "byArtwork": {artworkId: n}, "topArtwork": [artworkId],
          "topArtists": {username: n}
        },
        "lastReset": {"weekly": iso, "monthly": iso, "yearly": iso}
      },
      "schemaVersion": 2,
      "lastUpdated": iso
    }

Reads go through a short-TTL cache. Every write runs under one lock as a
single read-modify-write on a private copy, and the saved copy replaces the
cache; a failed save drops the cache instead.
"""
from __future__ import annotations

import asyncio
import copy
import json
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import StorageKeyNotFound
from ..utils.logging import get_logger
from .storage import ObjectStore
from .types import ArtworkShare, DuplicateCheck, OriginalShare, PeriodStats, VoteResult

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 2
PERIODS = ("weekly", "monthly", "yearly")
TOP_N = 10

_TWITTER_ID = re.compile(r"status/(\d+)")
_PIXIV_ID = re.compile(r"artworks/(\d+)")
_PIXIV_LEGACY_ID = re.compile(r"illust_id=(\d+)")
_INSTAGRAM_ID = re.compile(r"/(p|reel|tv)/([A-Za-z0-9_-]+)")


def _parse_iso(value: str) -> float:
    # Older documents carry a trailing "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def _empty_period() -> Dict[str, Any]:
    return {"byGuild": {}, "global": 0, "byArtwork": {}, "topArtwork": [], "topArtists": {}}


def _bump(table: Dict[str, int], key: str, delta: int) -> None:
    value = table.get(key, 0) + delta
    if value <= 0:
        table.pop(key, None)
    else:
        table[key] = value


class VoteLedger:
    def __init__(
        self,
        store: ObjectStore,
        key: str = "data/embed-fix/embed-votes.json",
        cache_ttl_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.key = key
        self.cache_ttl_s = cache_ttl_s
        self._clock = clock
        self._cache: Optional[Dict[str, Any]] = None
        self._cache_expiry = 0.0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Artwork identity
    # ------------------------------------------------------------------

    @staticmethod
    def generate_artwork_id(platform: str, url: str) -> str:
        platform = str(getattr(platform, "value", platform))
        if platform == "twitter":
            m = _TWITTER_ID.search(url)
            return f"twitter:{m.group(1)}" if m else f"twitter:{url}"
        if platform == "pixiv":
            m = _PIXIV_ID.search(url) or _PIXIV_LEGACY_ID.search(url)
            return f"pixiv:{m.group(1)}" if m else f"pixiv:{url}"
        if platform == "instagram":
            m = _INSTAGRAM_ID.search(url)
            return f"instagram:{m.group(2)}" if m else f"instagram:{url}"
        return f"{platform}:{url}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

    def _default_data(self) -> Dict[str, Any]:
        now = self._now_iso()
        return {
            "votes": {},
            "timeAggregations": {
                **{p: _empty_period() for p in PERIODS},
                "lastReset": {p: now for p in PERIODS},
            },
            "schemaVersion": CURRENT_SCHEMA_VERSION,
            "lastUpdated": now,
        }

    def invalidate_cache(self) -> None:
        self._cache = None
        self._cache_expiry = 0.0

    async def get_data(self) -> Dict[str, Any]:
        if self._cache is not None and self._clock() < self._cache_expiry:
            return self._cache

        try:
            raw = await self.store.get(self.key)
        except StorageKeyNotFound:
            logger.warning(
                "⚠️ Vote ledger not found, creating default document",
                extra={"subsys": "ledger", "event": "ledger_created"},
            )
            data = self._default_data()
            await self._save(data)
            return data

        data = json.loads(raw.decode("utf-8")) if raw else self._default_data()
        version = int(data.get("schemaVersion") or 1)
        if version < CURRENT_SCHEMA_VERSION:
            data = await self._migrate(data, version)
        elif version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                f"⚠️ Vote ledger schema {version} is newer than {CURRENT_SCHEMA_VERSION}; unknown fields are kept",
                extra={"subsys": "ledger"},
            )

        self._cache = data
        self._cache_expiry = self._clock() + self.cache_ttl_s
        return data

    async def _save(self, data: Dict[str, Any]) -> None:
        data["lastUpdated"] = self._now_iso()
        body = json.dumps(data, indent=2).encode("utf-8")
        try:
            await self.store.put(self.key, body, "application/json")
        except Exception:
            self.invalidate_cache()
            raise
        self._cache = data
        self._cache_expiry = self._clock() + self.cache_ttl_s

    async def _migrate(self, data: Dict[str, Any], version: int) -> Dict[str, Any]:
        backup_key = f"{self.key}.v{version}.bak"
        await self.store.copy(self.key, backup_key)

        aggregations = data.setdefault("timeAggregations", {})
        for period in PERIODS:
            period_data = aggregations.setdefault(period, _empty_period())
            by_artwork = period_data.setdefault("byArtwork", {})
            # Version 1 only listed ids; seed counts so ordering survives
            for rank, artwork_id in enumerate(reversed(period_data.get("topArtwork") or []), start=1):
                by_artwork.setdefault(artwork_id, rank)
            for key in ("byGuild", "topArtists"):
                period_data.setdefault(key, {})
            period_data.setdefault("global", 0)
        aggregations.setdefault("lastReset", {p: self._now_iso() for p in PERIODS})
        data.setdefault("votes", {})
        data["schemaVersion"] = CURRENT_SCHEMA_VERSION

        await self._save(data)
        logger.info(
            f"✅ Vote ledger migrated v{version} -> v{CURRENT_SCHEMA_VERSION} (backup at {backup_key})",
            extra={"subsys": "ledger", "event": "ledger_migrated"},
        )
        return data

    async def _load_for_write(self) -> Dict[str, Any]:
        return copy.deepcopy(await self.get_data())

    # ------------------------------------------------------------------
    # Shares and duplicates
    # ------------------------------------------------------------------

    async def record_artwork(self, artwork_id: str, share: ArtworkShare) -> None:
        """Register a share. Re-sharing in a guild that already has a record is a no-op."""
        async with self._lock:
            data = await self._load_for_write()
            now = self._now_iso()
            votes = data["votes"]

            artwork = votes.get(artwork_id)
            if artwork is None:
                artwork = votes[artwork_id] = {
                    "artworkId": artwork_id,
                    "originalUrl": share.original_url,
                    "platform": share.platform,
                    "artistUsername": share.artist_username,
                    "artistName": share.artist_name,
                    "guildVotes": {},
                    "globalVoteCount": 0,
                    "firstSharedAt": now,
                    "lastVotedAt": now,
                }

            if share.guild_id in artwork["guildVotes"]:
                return

            artwork["guildVotes"][share.guild_id] = {
                "voters": [],
                "voteCount": 0,
                "sharedBy": share.shared_by,
                "sharedAt": now,
                "messageId": share.message_id,
                "channelId": share.channel_id,
            }
            await self._save(data)

        logger.debug(
            f"Recorded artwork {artwork_id}",
            extra={"subsys": "ledger", "event": "artwork_recorded", "guild_id": share.guild_id},
        )

    async def check_duplicate(self, artwork_id: str, guild_id: str, window_s: float = 24 * 60 * 60) -> DuplicateCheck:
        data = await self.get_data()
        guild_data = (data["votes"].get(artwork_id) or {}).get("guildVotes", {}).get(guild_id)
        if not guild_data:
            return DuplicateCheck(is_duplicate=False)

        if self._clock() - _parse_iso(guild_data["sharedAt"]) < window_s:
            return DuplicateCheck(
                is_duplicate=True,
                original_share=OriginalShare(
                    shared_by=guild_data["sharedBy"],
                    shared_at=guild_data["sharedAt"],
                    message_id=guild_data["messageId"],
                    channel_id=guild_data["channelId"],
                ),
            )
        return DuplicateCheck(is_duplicate=False)

    async def find_artwork_by_message(self, guild_id: str, message_id: str) -> Optional[str]:
        data = await self.get_data()
        for artwork_id, artwork in data["votes"].items():
            guild_data = artwork.get("guildVotes", {}).get(guild_id)
            if guild_data and guild_data.get("messageId") == message_id:
                return artwork_id
        return None

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    def _apply_vote(self, data: Dict[str, Any], artwork_id: str, guild_id: str, user_id: str, add: bool) -> int:
        artwork = data["votes"][artwork_id]
        guild_data = artwork["guildVotes"][guild_id]
        delta = 1 if add else -1

        if add:
            guild_data["voters"].append(user_id)
            artwork["lastVotedAt"] = self._now_iso()
        else:
            guild_data["voters"].remove(user_id)
        guild_data["voteCount"] = max(0, guild_data["voteCount"] + delta)
        artwork["globalVoteCount"] = sum(g["voteCount"] for g in artwork["guildVotes"].values())

        aggregations = data["timeAggregations"]
        for period in PERIODS:
            period_data = aggregations[period]
            _bump(period_data["byGuild"], guild_id, delta)
            _bump(period_data["topArtists"], artwork["artistUsername"], delta)
            _bump(period_data.setdefault("byArtwork", {}), artwork_id, delta)
            period_data["global"] = max(0, period_data["global"] + delta)
            ranked = sorted(period_data["byArtwork"].items(), key=lambda kv: kv[1], reverse=True)
            period_data["topArtwork"] = [aid for aid, _ in ranked[:TOP_N]]

        return guild_data["voteCount"]

    async def toggle_vote(self, artwork_id: str, guild_id: str, user_id: str) -> VoteResult:
        async with self._lock:
            data = await self._load_for_write()
            guild_data = (data["votes"].get(artwork_id) or {}).get("guildVotes", {}).get(guild_id)
            if guild_data is None:
                logger.warning(
                    f"⚠️ Artwork {artwork_id} not shared in guild {guild_id}; vote ignored",
                    extra={"subsys": "ledger", "guild_id": guild_id},
                )
                return VoteResult(added=False, vote_count=0, changed=False)

            add = user_id not in guild_data["voters"]
            count = self._apply_vote(data, artwork_id, guild_id, user_id, add)
            await self._save(data)
        return VoteResult(added=add, vote_count=count)

    async def set_vote(self, artwork_id: str, guild_id: str, user_id: str, voted: bool) -> VoteResult:
        """Idempotent: only writes when the user's vote state actually changes."""
        async with self._lock:
            data = await self._load_for_write()
            guild_data = (data["votes"].get(artwork_id) or {}).get("guildVotes", {}).get(guild_id)
            if guild_data is None:
                return VoteResult(added=False, vote_count=0, changed=False)

            has_vote = user_id in guild_data["voters"]
            if has_vote == voted:
                return VoteResult(added=has_vote, vote_count=guild_data["voteCount"], changed=False)

            count = self._apply_vote(data, artwork_id, guild_id, user_id, voted)
            await self._save(data)
        return VoteResult(added=voted, vote_count=count)

    async def get_vote_count(self, artwork_id: str, guild_id: Optional[str] = None) -> int:
        data = await self.get_data()
        artwork = data["votes"].get(artwork_id)
        if not artwork:
            return 0
        if guild_id is not None:
            return (artwork["guildVotes"].get(guild_id) or {}).get("voteCount", 0)
        return artwork["globalVoteCount"]

    async def has_user_voted(self, artwork_id: str, guild_id: str, user_id: str) -> bool:
        data = await self.get_data()
        guild_data = (data["votes"].get(artwork_id) or {}).get("guildVotes", {}).get(guild_id)
        return bool(guild_data) and user_id in guild_data["voters"]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_stats(self, guild_id: str, period: str) -> PeriodStats:
        if period not in PERIODS and period != "alltime":
            raise ValueError(f"Unknown period: {period}")
        data = await self.get_data()

        if period == "alltime":
            guild_votes = 0
            global_votes = 0
            artists: Dict[str, int] = {}
            artwork_totals: List[tuple] = []
            for artwork_id, artwork in data["votes"].items():
                total = artwork.get("globalVoteCount", 0)
                global_votes += total
                artwork_totals.append((artwork_id, total))
                artists[artwork["artistUsername"]] = artists.get(artwork["artistUsername"], 0) + total
                guild_votes += (artwork["guildVotes"].get(guild_id) or {}).get("voteCount", 0)
            artwork_totals.sort(key=lambda kv: kv[1], reverse=True)
            return PeriodStats(
                period=period,
                guild_votes=guild_votes,
                global_votes=global_votes,
                top_artwork=artwork_totals[:TOP_N],
                top_artists=sorted(artists.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N],
            )

        period_data = data["timeAggregations"][period]
        by_artwork = period_data.get("byArtwork", {})
        top_artwork = [(aid, by_artwork.get(aid, 0)) for aid in period_data.get("topArtwork", []) if aid in data["votes"]]
        return PeriodStats(
            period=period,
            guild_votes=period_data["byGuild"].get(guild_id, 0),
            global_votes=period_data["global"],
            top_artwork=top_artwork[:TOP_N],
            top_artists=sorted(period_data["topArtists"].items(), key=lambda kv: kv[1], reverse=True)[:TOP_N],
        )

    async def reset_period(self, period: str) -> None:
        if period not in PERIODS:
            raise ValueError(f"Unknown period: {period}")
        async with self._lock:
            data = await self._load_for_write()
            data["timeAggregations"][period] = _empty_period()
            data["timeAggregations"]["lastReset"][period] = self._now_iso()
            await self._save(data)
        logger.info(f"🔄 Reset {period} vote aggregation", extra={"subsys": "ledger", "event": "period_reset"})

"""SQLite-backed inventory store with optimistic-concurrency writes."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .errors import ConcurrencyExhaustedError, StoreError
from .models import Inventory, InventoryCharacter, Like, Manifest, Pack, User
from .utils import diff_in_minutes, discord_timestamp, utc_now

logger = logging.getLogger("fablebot.store")

R = TypeVar("R")

MAX_PULLS = 5
MAX_NEW_PULLS = 10
RECHARGE_MINS = 30
MAX_ATTEMPTS = 5
PARTY_SIZE = 5
CUSTOM_FIELDS = ("nickname", "image")

# (table, row id, expected version)
VersionCheck = Tuple[str, object, int]
Write = Tuple[str, Tuple[object, ...]]


def recharge_timestamp(value: Optional[datetime] = None) -> str:
    """Unix timestamp (seconds, as a string) of the next pull recharge."""
    base = value or utc_now()
    return discord_timestamp(base + timedelta(minutes=RECHARGE_MINS))


def recharge(inventory: Inventory, now: datetime) -> Tuple[int, Optional[datetime]]:
    """Return ``(available_pulls, recharge_timestamp)`` after crediting elapsed recharges."""
    started = inventory.recharge_timestamp or now
    current = inventory.available_pulls
    new_pulls = max(0, min(MAX_PULLS - current, diff_in_minutes(started, now) // RECHARGE_MINS))
    if new_pulls == 0:
        return current, inventory.recharge_timestamp

    recharged = current + new_pulls
    if recharged >= MAX_PULLS:
        return min(99, recharged), None
    return recharged, started + timedelta(minutes=new_pulls * RECHARGE_MINS)


@dataclass
class AddCharacterResult:
    inventory: Inventory
    character: InventoryCharacter
    guarantees: List[int]
    likes: List[str]


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class InventoryStore:
    """Owns the sqlite connection; every mutation is a version-checked transaction."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn = self._connect_db()
        self._lock = asyncio.Lock()
        self._create_tables()

    def _connect_db(self) -> sqlite3.Connection:
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _create_tables(self) -> None:
        with self._transaction():
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    guarantees TEXT NOT NULL DEFAULT '[]',
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS likes (
                    user_id TEXT NOT NULL,
                    character_id TEXT,
                    media_id TEXT
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS inventories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    guild_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    available_pulls INTEGER NOT NULL,
                    recharge_timestamp TEXT,
                    last_pull TEXT,
                    steal_timestamp TEXT,
                    party1 TEXT,
                    party2 TEXT,
                    party3 TEXT,
                    party4 TEXT,
                    party5 TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (guild_id, user_id)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS characters (
                    guild_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    inventory_id INTEGER NOT NULL REFERENCES inventories (id),
                    user_id TEXT NOT NULL,
                    media_id TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    nickname TEXT,
                    image TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (guild_id, id)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS packs (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    private INTEGER NOT NULL DEFAULT 0,
                    manifest TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS guild_packs (
                    guild_id TEXT NOT NULL,
                    pack_id TEXT NOT NULL REFERENCES packs (id),
                    installed_by TEXT,
                    installed_at TEXT NOT NULL,
                    PRIMARY KEY (guild_id, pack_id)
                )
                """
            )

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    def close(self) -> None:
        self._conn.close()

    # Optimistic concurrency -------------------------------------------

    async def atomic_update(self, label: str, attempt: Callable[[], Awaitable[Tuple[bool, R]]]) -> R:
        """Run ``attempt`` (read, compute, conditional write) until it commits.

        ``attempt`` returns ``(committed, result)``; a version conflict makes it
        return ``committed=False`` and the whole cycle is repeated.
        """
        for attempt_no in range(1, MAX_ATTEMPTS + 1):
            committed, result = await attempt()
            if committed:
                return result
            logger.debug("Version conflict updating %s (attempt %s/%s)", label, attempt_no, MAX_ATTEMPTS)
        logger.warning("Giving up on %s after %s conflicting attempts", label, MAX_ATTEMPTS)
        raise ConcurrencyExhaustedError(label)

    async def _commit(self, checks: Sequence[VersionCheck], writes: Sequence[Write]) -> bool:
        """Apply ``writes`` only if every row in ``checks`` still has its expected version."""
        async with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                for table, row_id, version in checks:
                    cur = self._conn.execute(
                        f"UPDATE {table} SET version = version + 1 WHERE id = ? AND version = ?",
                        (row_id, version),
                    )
                    if cur.rowcount != 1:
                        self._conn.execute("ROLLBACK")
                        return False
                for sql, params in writes:
                    self._conn.execute(sql, params)
            except sqlite3.IntegrityError as exc:
                self._conn.execute("ROLLBACK")
                raise StoreError("CHARACTER_EXISTS", detail=str(exc)) from exc
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return True

    # Users ------------------------------------------------------------

    async def get_user(self, user_id: str) -> User:
        async with self._lock:
            self._conn.execute("INSERT OR IGNORE INTO users (id) VALUES (?)", (user_id,))
            row = self._conn.execute(
                "SELECT guarantees, version FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            likes = [
                Like(character_id=like_row[0], media_id=like_row[1])
                for like_row in self._conn.execute(
                    "SELECT character_id, media_id FROM likes WHERE user_id = ?", (user_id,)
                ).fetchall()
            ]
        return User(id=user_id, guarantees=list(json.loads(row[0])), likes=likes, version=row[1])

    async def add_guarantee(self, user_id: str, stars: int) -> User:
        async def attempt() -> Tuple[bool, User]:
            user = await self.get_user(user_id)
            guarantees = sorted(user.guarantees + [stars], reverse=True)
            committed = await self._commit(
                [("users", user.id, user.version)],
                [("UPDATE users SET guarantees = ? WHERE id = ?", (json.dumps(guarantees), user.id))],
            )
            return committed, replace(user, guarantees=guarantees, version=user.version + 1)

        return await self.atomic_update(f"user {user_id}", attempt)

    async def like(self, user_id: str, *, character_id: Optional[str] = None, media_id: Optional[str] = None) -> bool:
        """Add a like; returns False when it already existed."""
        await self.get_user(user_id)
        async with self._lock:
            existing = self._conn.execute(
                "SELECT 1 FROM likes WHERE user_id = ? AND character_id IS ? AND media_id IS ?",
                (user_id, character_id, media_id),
            ).fetchone()
            if existing:
                return False
            self._conn.execute(
                "INSERT INTO likes (user_id, character_id, media_id) VALUES (?, ?, ?)",
                (user_id, character_id, media_id),
            )
            return True

    async def unlike(self, user_id: str, *, character_id: Optional[str] = None, media_id: Optional[str] = None) -> bool:
        async with self._lock:
            cur = self._conn.execute(
                "DELETE FROM likes WHERE user_id = ? AND character_id IS ? AND media_id IS ?",
                (user_id, character_id, media_id),
            )
            return cur.rowcount > 0

    async def users_liking(self, guild_id: str, character_id: str, media_id: Optional[str]) -> List[str]:
        """Users of ``guild_id`` that like the character or its media."""
        async with self._lock:
            cur = self._conn.execute(
                """
                SELECT DISTINCT likes.user_id
                FROM likes
                JOIN inventories ON inventories.user_id = likes.user_id AND inventories.guild_id = ?
                WHERE likes.character_id = ? OR (likes.media_id IS NOT NULL AND likes.media_id = ?)
                ORDER BY likes.user_id
                """,
                (guild_id, character_id, media_id),
            )
            return [row[0] for row in cur.fetchall()]

    # Inventories ------------------------------------------------------

    def _inventory_from_row(self, row: Sequence[object]) -> Inventory:
        return Inventory(
            id=int(row[0]),  # type: ignore[arg-type]
            guild_id=str(row[1]),
            user_id=str(row[2]),
            available_pulls=int(row[3]),  # type: ignore[arg-type]
            recharge_timestamp=_dt(row[4]),  # type: ignore[arg-type]
            last_pull=_dt(row[5]),  # type: ignore[arg-type]
            steal_timestamp=_dt(row[6]),  # type: ignore[arg-type]
            party=tuple(row[7:12]),  # type: ignore[arg-type]
            version=int(row[12]),  # type: ignore[arg-type]
        )

    async def get_inventory(self, guild_id: str, user_id: str) -> Inventory:
        """Return the user's inventory in the guild, creating it with the new-player pulls."""
        async with self._lock:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO inventories (guild_id, user_id, available_pulls)
                VALUES (?, ?, ?)
                """,
                (guild_id, user_id, MAX_NEW_PULLS),
            )
            row = self._conn.execute(
                """
                SELECT id, guild_id, user_id, available_pulls, recharge_timestamp, last_pull,
                       steal_timestamp, party1, party2, party3, party4, party5, version
                FROM inventories
                WHERE guild_id = ? AND user_id = ?
                """,
                (guild_id, user_id),
            ).fetchone()
        return self._inventory_from_row(row)

    async def recharge_pulls(self, guild_id: str, user_id: str) -> Inventory:
        async def attempt() -> Tuple[bool, Inventory]:
            inventory = await self.get_inventory(guild_id, user_id)
            pulls, next_recharge = recharge(inventory, utc_now())
            if pulls == inventory.available_pulls and next_recharge == inventory.recharge_timestamp:
                return True, inventory
            committed = await self._commit(
                [("inventories", inventory.id, inventory.version)],
                [
                    (
                        "UPDATE inventories SET available_pulls = ?, recharge_timestamp = ? WHERE id = ?",
                        (pulls, _iso(next_recharge), inventory.id),
                    )
                ],
            )
            return committed, replace(
                inventory,
                available_pulls=pulls,
                recharge_timestamp=next_recharge,
                version=inventory.version + 1,
            )

        return await self.atomic_update(f"inventory {guild_id}/{user_id}", attempt)

    async def add_pulls(self, guild_id: str, user_id: str, amount: int) -> Inventory:
        async def attempt() -> Tuple[bool, Inventory]:
            inventory = await self.get_inventory(guild_id, user_id)
            pulls = min(99, inventory.available_pulls + amount)
            committed = await self._commit(
                [("inventories", inventory.id, inventory.version)],
                [("UPDATE inventories SET available_pulls = ? WHERE id = ?", (pulls, inventory.id))],
            )
            return committed, replace(inventory, available_pulls=pulls, version=inventory.version + 1)

        return await self.atomic_update(f"inventory {guild_id}/{user_id}", attempt)

    async def set_party_member(self, guild_id: str, user_id: str, slot: int, character_id: Optional[str]) -> Inventory:
        if not 1 <= slot <= PARTY_SIZE:
            raise ValueError(f"party slot must be between 1 and {PARTY_SIZE}")

        async def attempt() -> Tuple[bool, Inventory]:
            inventory = await self.get_inventory(guild_id, user_id)
            if character_id is not None:
                owned = await self.get_character(guild_id, character_id)
                if owned is None or owned.inventory_id != inventory.id:
                    raise StoreError("CHARACTER_NOT_OWNED")
            party = list(inventory.party)
            party = [None if member == character_id else member for member in party]
            party[slot - 1] = character_id
            committed = await self._commit(
                [("inventories", inventory.id, inventory.version)],
                [
                    (
                        "UPDATE inventories SET party1 = ?, party2 = ?, party3 = ?, party4 = ?, party5 = ? WHERE id = ?",
                        (*party, inventory.id),
                    )
                ],
            )
            return committed, replace(inventory, party=tuple(party), version=inventory.version + 1)

        return await self.atomic_update(f"inventory {guild_id}/{user_id}", attempt)

    async def customize_character(
        self,
        guild_id: str,
        user_id: str,
        character_id: str,
        field: str,
        value: Optional[str],
    ) -> InventoryCharacter:
        """Set (or with ``None`` reset) an owned card's ``nickname`` or ``image``."""
        if field not in CUSTOM_FIELDS:
            raise ValueError(f"cards can only customize {', '.join(CUSTOM_FIELDS)}")

        async def attempt() -> Tuple[bool, InventoryCharacter]:
            inventory = await self.get_inventory(guild_id, user_id)
            character = await self.get_character(guild_id, character_id)
            if character is None or character.inventory_id != inventory.id:
                raise StoreError("CHARACTER_NOT_OWNED", detail=character_id)
            committed = await self._commit(
                [("inventories", inventory.id, inventory.version)],
                [(f"UPDATE characters SET {field} = ? WHERE guild_id = ? AND id = ?", (value, guild_id, character_id))],
            )
            return committed, replace(character, **{field: value})

        return await self.atomic_update(f"customize {guild_id}/{character_id}", attempt)

    async def set_steal_cooldown(self, guild_id: str, user_id: str, until: datetime) -> Inventory:
        async def attempt() -> Tuple[bool, Inventory]:
            inventory = await self.get_inventory(guild_id, user_id)
            committed = await self._commit(
                [("inventories", inventory.id, inventory.version)],
                [("UPDATE inventories SET steal_timestamp = ? WHERE id = ?", (_iso(until), inventory.id))],
            )
            return committed, replace(inventory, steal_timestamp=until, version=inventory.version + 1)

        return await self.atomic_update(f"inventory {guild_id}/{user_id}", attempt)

    # Characters -------------------------------------------------------

    def _character_from_row(self, row: Sequence[object]) -> InventoryCharacter:
        return InventoryCharacter(
            guild_id=str(row[0]),
            id=str(row[1]),
            inventory_id=int(row[2]),  # type: ignore[arg-type]
            user_id=str(row[3]),
            media_id=str(row[4]),
            rating=int(row[5]),  # type: ignore[arg-type]
            nickname=row[6],  # type: ignore[arg-type]
            image=row[7],  # type: ignore[arg-type]
            created_at=datetime.fromisoformat(str(row[8])),
        )

    _CHARACTER_COLUMNS = "guild_id, id, inventory_id, user_id, media_id, rating, nickname, image, created_at"

    async def get_character(self, guild_id: str, character_id: str) -> Optional[InventoryCharacter]:
        async with self._lock:
            row = self._conn.execute(
                f"SELECT {self._CHARACTER_COLUMNS} FROM characters WHERE guild_id = ? AND id = ?",
                (guild_id, character_id),
            ).fetchone()
        return self._character_from_row(row) if row else None

    async def find_characters(self, guild_id: str, character_ids: Sequence[str]) -> Dict[str, InventoryCharacter]:
        found: Dict[str, InventoryCharacter] = {}
        for character_id in dict.fromkeys(character_ids):
            character = await self.get_character(guild_id, character_id)
            if character is not None:
                found[character_id] = character
        return found

    async def get_user_characters(self, inventory: Inventory) -> List[InventoryCharacter]:
        async with self._lock:
            cur = self._conn.execute(
                f"""
                SELECT {self._CHARACTER_COLUMNS}
                FROM characters
                WHERE inventory_id = ?
                ORDER BY created_at, id
                """,
                (inventory.id,),
            )
            return [self._character_from_row(row) for row in cur.fetchall()]

    async def get_user_party(self, inventory: Inventory) -> List[Optional[InventoryCharacter]]:
        party: List[Optional[InventoryCharacter]] = []
        for member_id in inventory.party:
            party.append(await self.get_character(inventory.guild_id, member_id) if member_id else None)
        return party

    async def try_add_character(
        self,
        inventory: Inventory,
        user: User,
        *,
        character_id: str,
        media_id: str,
        rating: int,
        guaranteed: Optional[int] = None,
        sacrifices: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> Optional[Tuple[Inventory, InventoryCharacter, List[int]]]:
        """One read-compute-write cycle of ``add_character`` against a snapshot.

        Returns ``None`` when the snapshot's version is stale.
        """
        now = now or utc_now()
        pulls, next_recharge = recharge(inventory, now)
        guarantees = list(user.guarantees)
        checks: List[VersionCheck] = [("inventories", inventory.id, inventory.version)]
        writes: List[Write] = []

        if sacrifices:
            owned = await self.find_characters(inventory.guild_id, sacrifices)
            for sacrifice_id in sacrifices:
                sacrifice = owned.get(sacrifice_id)
                if sacrifice is None or sacrifice.inventory_id != inventory.id:
                    raise StoreError("CHARACTER_NOT_OWNED", detail=sacrifice_id)
                if sacrifice_id in inventory.party:
                    raise StoreError("CHARACTER_IN_PARTY", detail=sacrifice_id)
                writes.append(
                    (
                        "DELETE FROM characters WHERE guild_id = ? AND id = ? AND inventory_id = ?",
                        (inventory.guild_id, sacrifice_id, inventory.id),
                    )
                )
        elif guaranteed is not None:
            if guaranteed not in guarantees:
                raise StoreError("NO_GUARANTEES", detail=guaranteed)
            guarantees.remove(guaranteed)
            checks.append(("users", user.id, user.version))
            writes.append(("UPDATE users SET guarantees = ? WHERE id = ?", (json.dumps(guarantees), user.id)))
        else:
            if pulls <= 0:
                raise StoreError("NO_PULLS_AVAILABLE", detail=next_recharge)
            pulls -= 1
            if next_recharge is None:
                next_recharge = now

        existing = await self.get_character(inventory.guild_id, character_id)
        if existing is not None and existing.id not in sacrifices:
            raise StoreError("CHARACTER_EXISTS", detail=existing)

        writes.append(
            (
                """
                UPDATE inventories
                SET available_pulls = ?, recharge_timestamp = ?, last_pull = ?
                WHERE id = ?
                """,
                (pulls, _iso(next_recharge), _iso(now), inventory.id),
            )
        )
        new_character = InventoryCharacter(
            id=character_id,
            media_id=media_id,
            rating=rating,
            user_id=inventory.user_id,
            guild_id=inventory.guild_id,
            inventory_id=inventory.id,
            created_at=now,
        )
        writes.append(
            (
                f"INSERT INTO characters ({self._CHARACTER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    new_character.guild_id,
                    new_character.id,
                    new_character.inventory_id,
                    new_character.user_id,
                    new_character.media_id,
                    new_character.rating,
                    None,
                    None,
                    _iso(now),
                ),
            )
        )

        if not await self._commit(checks, writes):
            return None

        updated = replace(
            inventory,
            available_pulls=pulls,
            recharge_timestamp=next_recharge,
            last_pull=now,
            version=inventory.version + 1,
        )
        return updated, new_character, guarantees

    async def add_character(
        self,
        guild_id: str,
        user_id: str,
        *,
        character_id: str,
        media_id: str,
        rating: int,
        guaranteed: Optional[int] = None,
        sacrifices: Sequence[str] = (),
    ) -> AddCharacterResult:
        """Commit a pull: spend a pull, a guarantee, or the sacrifices, and insert the card."""

        async def attempt() -> Tuple[bool, Optional[AddCharacterResult]]:
            inventory = await self.get_inventory(guild_id, user_id)
            user = await self.get_user(user_id)
            outcome = await self.try_add_character(
                inventory,
                user,
                character_id=character_id,
                media_id=media_id,
                rating=rating,
                guaranteed=guaranteed,
                sacrifices=sacrifices,
            )
            if outcome is None:
                return False, None
            updated, character, guarantees = outcome
            likes = await self.users_liking(guild_id, character_id, media_id)
            return True, AddCharacterResult(
                inventory=updated,
                character=character,
                guarantees=guarantees,
                likes=likes,
            )

        result = await self.atomic_update(f"inventory {guild_id}/{user_id}", attempt)
        assert result is not None
        logger.info(
            "Added %s (%s★) to %s in guild %s%s",
            character_id,
            rating,
            user_id,
            guild_id,
            f" consuming {len(sacrifices)} sacrifices" if sacrifices else "",
        )
        return result

    async def merge_characters(
        self,
        guild_id: str,
        user_id: str,
        *,
        character_id: str,
        media_id: str,
        rating: int,
        sacrifices: Sequence[str],
    ) -> AddCharacterResult:
        if not sacrifices:
            raise ValueError("a merge needs at least one sacrifice")
        return await self.add_character(
            guild_id,
            user_id,
            character_id=character_id,
            media_id=media_id,
            rating=rating,
            sacrifices=sacrifices,
        )

    async def trade_characters(
        self,
        guild_id: str,
        a_user_id: str,
        b_user_id: str,
        *,
        give_ids: Sequence[str],
        take_ids: Sequence[str] = (),
    ) -> Tuple[Inventory, Inventory]:
        """Move ``give_ids`` from user A to user B and ``take_ids`` from B to A atomically."""

        async def attempt() -> Tuple[bool, Tuple[Inventory, Inventory]]:
            a_inventory = await self.get_inventory(guild_id, a_user_id)
            b_inventory = await self.get_inventory(guild_id, b_user_id)
            owned = await self.find_characters(guild_id, [*give_ids, *take_ids])
            writes: List[Write] = []
            for ids, source, destination in (
                (give_ids, a_inventory, b_inventory),
                (take_ids, b_inventory, a_inventory),
            ):
                for character_id in ids:
                    character = owned.get(character_id)
                    if character is None:
                        raise StoreError("CHARACTER_NOT_FOUND", detail=character_id)
                    if character.inventory_id != source.id:
                        raise StoreError("CHARACTER_NOT_OWNED", detail=character_id)
                    if character_id in source.party:
                        raise StoreError("CHARACTER_IN_PARTY", detail=character_id)
                    writes.append(self._transfer_write(guild_id, character_id, destination))
            committed = await self._commit(
                [
                    ("inventories", a_inventory.id, a_inventory.version),
                    ("inventories", b_inventory.id, b_inventory.version),
                ],
                writes,
            )
            return committed, (
                replace(a_inventory, version=a_inventory.version + 1),
                replace(b_inventory, version=b_inventory.version + 1),
            )

        return await self.atomic_update(f"trade {guild_id}/{a_user_id}/{b_user_id}", attempt)

    async def steal_character(
        self,
        guild_id: str,
        user_id: str,
        character_id: str,
        *,
        cooldown_until: datetime,
        allow_party: bool = False,
    ) -> InventoryCharacter:
        """Transfer ``character_id`` to ``user_id`` and start the thief's cooldown.

        Party members are only taken with ``allow_party``; their slot is emptied.
        """

        async def attempt() -> Tuple[bool, InventoryCharacter]:
            thief = await self.get_inventory(guild_id, user_id)
            character = await self.get_character(guild_id, character_id)
            if character is None:
                raise StoreError("CHARACTER_NOT_FOUND", detail=character_id)
            if character.inventory_id == thief.id:
                raise StoreError("CHARACTER_OWNED", detail=character_id)
            victim = await self.get_inventory(guild_id, character.user_id)
            writes: List[Write] = [
                self._transfer_write(guild_id, character_id, thief),
                ("UPDATE inventories SET steal_timestamp = ? WHERE id = ?", (_iso(cooldown_until), thief.id)),
            ]
            if character_id in victim.party:
                if not allow_party:
                    raise StoreError("CHARACTER_IN_PARTY", detail=character_id)
                slot = victim.party.index(character_id) + 1
                writes.append((f"UPDATE inventories SET party{slot} = NULL WHERE id = ?", (victim.id,)))
            committed = await self._commit(
                [
                    ("inventories", thief.id, thief.version),
                    ("inventories", victim.id, victim.version),
                ],
                writes,
            )
            return committed, replace(
                character, inventory_id=thief.id, user_id=thief.user_id, nickname=None, image=None
            )

        return await self.atomic_update(f"steal {guild_id}/{user_id}", attempt)

    @staticmethod
    def _transfer_write(guild_id: str, character_id: str, destination: Inventory) -> Write:
        return (
            """
            UPDATE characters
            SET inventory_id = ?, user_id = ?, nickname = NULL, image = NULL
            WHERE guild_id = ? AND id = ?
            """,
            (destination.id, destination.user_id, guild_id, character_id),
        )

    # Packs ------------------------------------------------------------

    async def publish_pack(self, manifest: Manifest, payload: dict, owner_id: Optional[str] = None) -> Pack:
        async with self._lock:
            self._conn.execute(
                """
                INSERT INTO packs (id, owner_id, private, manifest) VALUES (?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET private = excluded.private, manifest = excluded.manifest
                """,
                (manifest.id, owner_id, 1 if manifest.private else 0, json.dumps(payload)),
            )
        return Pack(manifest=manifest, owner_id=owner_id)

    async def get_pack(self, pack_id: str) -> Optional[Pack]:
        async with self._lock:
            row = self._conn.execute(
                "SELECT owner_id, manifest FROM packs WHERE id = ?", (pack_id,)
            ).fetchone()
        if row is None:
            return None
        return Pack(manifest=Manifest.from_dict(json.loads(row[1])), owner_id=row[0])

    async def install_pack(self, guild_id: str, pack_id: str, user_id: str) -> Pack:
        pack = await self.get_pack(pack_id)
        if pack is None:
            raise StoreError("PACK_NOT_FOUND", detail=pack_id)
        if pack.manifest.private and pack.owner_id != user_id:
            raise StoreError("PACK_PRIVATE", detail=pack_id)
        async with self._lock:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO guild_packs (guild_id, pack_id, installed_by, installed_at)
                VALUES (?, ?, ?, ?)
                """,
                (guild_id, pack_id, user_id, utc_now().isoformat()),
            )
        return pack

    async def uninstall_pack(self, guild_id: str, pack_id: str) -> Pack:
        pack = await self.get_pack(pack_id)
        if pack is None:
            raise StoreError("PACK_NOT_FOUND", detail=pack_id)
        async with self._lock:
            cur = self._conn.execute(
                "DELETE FROM guild_packs WHERE guild_id = ? AND pack_id = ?", (guild_id, pack_id)
            )
            removed = cur.rowcount
        if not removed:
            raise StoreError("PACK_NOT_INSTALLED", detail=pack_id)
        return pack

    async def get_guild_packs(self, guild_id: str) -> List[Pack]:
        async with self._lock:
            cur = self._conn.execute(
                """
                SELECT packs.owner_id, packs.manifest
                FROM guild_packs
                JOIN packs ON packs.id = guild_packs.pack_id
                WHERE guild_packs.guild_id = ?
                ORDER BY guild_packs.installed_at, packs.id
                """,
                (guild_id,),
            )
            rows = cur.fetchall()
        return [Pack(manifest=Manifest.from_dict(json.loads(row[1])), owner_id=row[0]) for row in rows]


__all__ = [
    "AddCharacterResult",
    "CUSTOM_FIELDS",
    "InventoryStore",
    "MAX_ATTEMPTS",
    "MAX_NEW_PULLS",
    "MAX_PULLS",
    "RECHARGE_MINS",
    "recharge",
    "recharge_timestamp",
]

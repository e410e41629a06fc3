# shelf_core.py
from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Literal, Mapping, Optional, Sequence, get_args

import requests

logger = logging.getLogger(__name__)

Format = Literal["DVD", "Blu-ray", "4K UHD", "3D Blu-ray"]
Condition = Literal["New", "Like New", "Good", "Fair", "Poor"]
CollectionType = Literal["owned", "wishlist", "for_sale", "loaned_out", "missing"]
SessionState = Literal["idle", "groups_loaded", "decisions_pending", "merging", "merged", "failed"]

FORMATS: tuple[str, ...] = get_args(Format)
CONDITIONS: tuple[str, ...] = get_args(Condition)  # best -> worst
COLLECTION_TYPES: tuple[str, ...] = get_args(CollectionType)

TMDB_BASE = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"

# (field, points) for optional enrichment; technical specs weigh the most
SCORE_WEIGHTS: tuple[tuple[str, int], ...] = (
    ("poster_url", 2),
    ("purchase_date", 1),
    ("purchase_price", 1),
    ("purchase_location", 1),
    ("personal_rating", 2),
    ("notes", 1),
    ("technical_specs_id", 3),
)
CONDITION_SCORES: dict[str, int] = {"New": 5, "Like New": 4, "Good": 3, "Fair": 2, "Poor": 1}


# -------------------------
# Configuration
# -------------------------
def default_db_path(base_dir: Path | str) -> Path:
    env = os.getenv("DISCSHELF_DB")
    if env:
        return Path(env).expanduser()
    return Path(base_dir) / "discshelf.sqlite3"


def default_user_id() -> str:
    return os.getenv("DISCSHELF_USER", "").strip() or "local"


def configure_logging(level: Optional[str] = None) -> None:
    name = (level or os.getenv("DISCSHELF_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------
# Data shapes
# -------------------------
@dataclass(frozen=True)
class CollectionItem:
    id: str
    user_id: str
    title: str
    format: Format
    condition: Condition = "Good"
    year: Optional[int] = None
    imdb_id: Optional[str] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    poster_url: Optional[str] = None
    purchase_date: Optional[str] = None
    purchase_price: Optional[float] = None
    purchase_location: Optional[str] = None
    personal_rating: Optional[int] = None
    notes: Optional[str] = None
    technical_specs_id: Optional[str] = None
    collection_type: CollectionType = "owned"
    created_at: str = ""
    updated_at: str = ""


ITEM_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(CollectionItem))
MUTABLE_FIELDS: frozenset[str] = frozenset(ITEM_COLUMNS) - {"id", "user_id", "created_at", "updated_at"}


@dataclass(frozen=True)
class DuplicateGroup:
    """Items sharing the same (title, format); always at least two, in input order."""

    key: tuple[str, str]
    items: tuple[CollectionItem, ...]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[CollectionItem]:
        return iter(self.items)

    @property
    def ids(self) -> list[str]:
        return [it.id for it in self.items]

    @property
    def title(self) -> str:
        return self.key[0]

    @property
    def format(self) -> str:
        return self.key[1]

    @property
    def year(self) -> Optional[int]:
        return self.items[0].year if self.items else None


@dataclass(frozen=True)
class MergeResult:
    removed: int
    groups: int


@dataclass(frozen=True)
class ImportResult:
    added: int
    skipped: int
    errors: list[str]


@dataclass(frozen=True)
class TmdbChoice:
    id: int
    title: str
    year: Optional[int]
    overview: str


@dataclass(frozen=True)
class AddResult:
    status: Literal["added", "exists", "error"]
    item: Optional[CollectionItem] = None
    message: Optional[str] = None


class MergeError(RuntimeError):
    """A deletion failed mid-merge. Earlier deletions are not rolled back."""

    def __init__(self, message: str, removed: int = 0, item_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.removed = removed
        self.item_id = item_id


class MergeInProgressError(RuntimeError):
    pass


# -------------------------
# Utilities
# -------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _opt_int(name: str, value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid {name}: {value!r}")


def _opt_float(name: str, value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid {name}: {value!r}")


def item_from_dict(data: Mapping[str, Any]) -> CollectionItem:
    """Build a validated CollectionItem from a loosely typed mapping (DB row, import row, API dict).

    Required: id, title, format. Closed sets are checked for format, condition and
    collection_type; personal_rating must be 1..10. Unknown keys are ignored.
    """
    item_id = _text(data.get("id"))
    if not item_id:
        raise ValueError("Collection item is missing an id.")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValueError("Collection item is missing a title.")

    fmt = _text(data.get("format"))
    if not fmt:
        raise ValueError(f"'{title}' is missing a format.")
    if fmt not in FORMATS:
        raise ValueError(f"Unknown format '{fmt}' (expected one of: {', '.join(FORMATS)}).")

    condition = _text(data.get("condition")) or "Good"
    if condition not in CONDITIONS:
        raise ValueError(f"Unknown condition '{condition}'.")

    collection_type = _text(data.get("collection_type")) or "owned"
    if collection_type not in COLLECTION_TYPES:
        raise ValueError(f"Unknown collection type '{collection_type}'.")

    rating = _opt_int("personal_rating", data.get("personal_rating"))
    if rating is not None and not 1 <= rating <= 10:
        raise ValueError(f"Personal rating must be between 1 and 10, got {rating}.")

    return CollectionItem(
        id=item_id,
        user_id=str(data.get("user_id") or ""),
        title=title,
        format=fmt,  # type: ignore[arg-type]
        condition=condition,  # type: ignore[arg-type]
        year=_opt_int("year", data.get("year")),
        imdb_id=_text(data.get("imdb_id")),
        genre=_text(data.get("genre")),
        director=_text(data.get("director")),
        poster_url=_text(data.get("poster_url")),
        purchase_date=_text(data.get("purchase_date")),
        purchase_price=_opt_float("purchase_price", data.get("purchase_price")),
        purchase_location=_text(data.get("purchase_location")),
        personal_rating=rating,
        notes=_text(data.get("notes")),
        technical_specs_id=_text(data.get("technical_specs_id")),
        collection_type=collection_type,  # type: ignore[arg-type]
        created_at=str(data.get("created_at") or ""),
        updated_at=str(data.get("updated_at") or ""),
    )


def new_item(user_id: str, values: Mapping[str, Any]) -> CollectionItem:
    """Validate fields for an item that is about to be added; assigns id and timestamps."""
    ts = now_iso()
    data = dict(values)
    data["id"] = uuid.uuid4().hex
    data["user_id"] = user_id
    if isinstance(data.get("title"), str):
        data["title"] = data["title"].strip()
    data["created_at"] = ts
    data["updated_at"] = ts
    return item_from_dict(data)


# -------------------------
# Duplicate detection & scoring
# -------------------------
def duplicate_key(item: CollectionItem) -> tuple[str, str]:
    # exact match, no case/whitespace folding
    return item.title, item.format


def find_duplicate_groups(items: Iterable[CollectionItem]) -> list[DuplicateGroup]:
    buckets: dict[tuple[str, str], list[CollectionItem]] = {}
    for it in items:
        buckets.setdefault(duplicate_key(it), []).append(it)
    return [DuplicateGroup(key=k, items=tuple(v)) for k, v in buckets.items() if len(v) > 1]


def _present(value: Any) -> bool:
    return value is not None and value != ""


def item_score(item: CollectionItem) -> int:
    score = sum(points for name, points in SCORE_WEIGHTS if _present(getattr(item, name)))
    return score + CONDITION_SCORES.get(item.condition, 0)


def suggested_keep(group: Iterable[CollectionItem]) -> CollectionItem:
    best: Optional[CollectionItem] = None
    best_score = 0
    for it in group:
        s = item_score(it)
        if best is None or s > best_score:
            best, best_score = it, s
    if best is None:
        raise ValueError("Cannot suggest a keeper for an empty group.")
    return best


def auto_select_best(groups: Sequence[DuplicateGroup]) -> dict[int, str]:
    return {i: suggested_keep(g).id for i, g in enumerate(groups) if len(g) > 0}


def total_duplicates(groups: Iterable[DuplicateGroup]) -> int:
    return sum(len(g) - 1 for g in groups)


# -------------------------
# Merge
# -------------------------
def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


class MergeResolver:
    """Deletes every non-keeper of a duplicate group through `remove_item`.

    Deletions run one at a time in group order. A failure stops the merge and raises
    MergeError carrying the number of items already removed; nothing is rolled back,
    so callers should regroup before retrying.
    """

    def __init__(self, remove_item: Callable[[str], None]):
        self.remove_item = remove_item

    def merge_group(self, item_ids: Iterable[str], keep_id: str) -> int:
        ids = _unique(item_ids)
        if keep_id not in ids:
            raise ValueError(f"Keeper {keep_id} is not a member of the group.")
        removed = self._remove([i for i in ids if i != keep_id], removed_before=0)
        logger.info("Merged group: kept %s, removed %d", keep_id, removed)
        return removed

    def merge_decisions(self, groups: Sequence[DuplicateGroup], decisions: Mapping[int, str]) -> MergeResult:
        plan: list[tuple[DuplicateGroup, str]] = []
        for index, keep_id in decisions.items():
            if not 0 <= index < len(groups):
                raise ValueError(f"No duplicate group at index {index}.")
            group = groups[index]
            if keep_id not in group.ids:
                raise ValueError(f"Keeper {keep_id} is not a member of group {index + 1} ({group.title}).")
            plan.append((group, keep_id))

        total = 0
        for group, keep_id in plan:
            doomed = [i for i in _unique(group.ids) if i != keep_id]
            removed = self._remove(doomed, removed_before=total)
            total += removed
            logger.info("Merged %r [%s]: kept %s, removed %d", group.title, group.format, keep_id, removed)
        return MergeResult(removed=total, groups=len(plan))

    def _remove(self, ids: Sequence[str], removed_before: int) -> int:
        removed = 0
        for item_id in ids:
            try:
                self.remove_item(item_id)
            except Exception as e:
                logger.error("Failed to remove duplicate %s after %d removals: %s", item_id, removed_before + removed, e)
                raise MergeError(
                    f"Failed to remove duplicate item {item_id}: {e}",
                    removed=removed_before + removed,
                    item_id=item_id,
                ) from e
            logger.debug("Removed duplicate %s", item_id)
            removed += 1
        return removed


def _run_now(delay_s: float, fn: Callable[[], Any]) -> None:
    fn()


class MergeSession:
    """Operator workflow around duplicate merging.

    idle -> groups_loaded -> decisions_pending -> merging -> merged | failed.
    A successful merge hands a refresh to `schedule(refresh_delay_s, fn)`, which returns
    the session to groups_loaded. `schedule` must call back on the caller's thread (the
    GUI passes QTimer.singleShot); without one the refresh runs right after the merge.
    After a failed merge the groups are reloaded at once so decisions match storage.
    Only one merge may run at a time.
    """

    def __init__(
        self,
        list_items: Callable[[], Iterable[CollectionItem]],
        remove_item: Callable[[str], None],
        schedule: Optional[Callable[[float, Callable[[], Any]], Any]] = None,
        refresh_delay_s: float = 1.0,
    ):
        self.list_items = list_items
        self.resolver = MergeResolver(remove_item)
        self.schedule = schedule or _run_now
        self.refresh_delay_s = refresh_delay_s

        self.state: SessionState = "idle"
        self.groups: list[DuplicateGroup] = []
        self.decisions: dict[int, str] = {}
        self.message: Optional[str] = None
        self.error: Optional[str] = None
        self.last_removed = 0

    @property
    def total_duplicates(self) -> int:
        return total_duplicates(self.groups)

    def refresh(self) -> list[DuplicateGroup]:
        if self.state == "merging":
            raise MergeInProgressError("Cannot refresh while a merge is running.")
        self.groups = find_duplicate_groups(self.list_items())
        self.decisions = {}
        self.error = None
        self.state = "groups_loaded"
        return self.groups

    def scores(self) -> list[list[tuple[CollectionItem, int, bool]]]:
        out: list[list[tuple[CollectionItem, int, bool]]] = []
        for g in self.groups:
            suggested = suggested_keep(g).id
            out.append([(it, item_score(it), it.id == suggested) for it in g])
        return out

    def select_keeper(self, group_index: int, item_id: str) -> None:
        self._check_editable()
        if not 0 <= group_index < len(self.groups):
            raise ValueError(f"No duplicate group at index {group_index}.")
        if item_id not in self.groups[group_index].ids:
            raise ValueError(f"Item {item_id} is not in group {group_index + 1}.")
        self.decisions[group_index] = item_id
        self.state = "decisions_pending"

    def auto_select_best(self) -> dict[int, str]:
        self._check_editable()
        self.decisions = auto_select_best(self.groups)
        if self.decisions:
            self.state = "decisions_pending"
        return dict(self.decisions)

    def clear_decisions(self) -> None:
        self._check_editable()
        self.decisions = {}
        self.state = "groups_loaded"

    def merge_selected(self) -> int:
        if self.state == "merging":
            raise MergeInProgressError("A merge is already running.")
        if self.state == "failed":
            self._revalidate_decisions()
        if not self.decisions:
            return 0

        self.state = "merging"
        self.message = None
        self.error = None
        try:
            result = self.resolver.merge_decisions(self.groups, self.decisions)
        except MergeError as e:
            # some items are gone; show what storage holds now
            self._revalidate_decisions()
            self.state = "failed"
            self.error = e.message
            self.last_removed = e.removed
            raise
        except ValueError as e:
            self.state = "failed"
            self.error = str(e)
            self.last_removed = 0
            raise

        self.state = "merged"
        self.last_removed = result.removed
        self.message = f"Successfully merged {result.removed} duplicate items!"
        self.decisions = {}
        self.schedule(self.refresh_delay_s, self._scheduled_refresh)
        return result.removed

    def _scheduled_refresh(self) -> None:
        if self.state == "merged":
            self.refresh()

    def _check_editable(self) -> None:
        if self.state == "merging":
            raise MergeInProgressError("Cannot change decisions while a merge is running.")
        if self.state == "merged":
            raise RuntimeError("Duplicate groups are stale; refresh before selecting again.")

    def _revalidate_decisions(self) -> None:
        # regroup after a partial failure; keep decisions whose keeper still heads a group
        keepers = list(self.decisions.values())
        self.groups = find_duplicate_groups(self.list_items())
        index_of = {item_id: i for i, g in enumerate(self.groups) for item_id in g.ids}
        self.decisions = {index_of[k]: k for k in keepers if k in index_of}
        self.state = "decisions_pending" if self.decisions else "groups_loaded"


# -------------------------
# DB wrapper
# -------------------------
class CollectionDB:
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS technical_specs (
                    id TEXT PRIMARY KEY,
                    disc_format TEXT,
                    video_codec TEXT,
                    audio_codecs TEXT,
                    aspect_ratio TEXT,
                    runtime_minutes INTEGER,
                    region TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS collection_items (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    format TEXT NOT NULL,      -- DVD|Blu-ray|4K UHD|3D Blu-ray
                    condition TEXT NOT NULL DEFAULT 'Good',
                    year INTEGER,
                    imdb_id TEXT,
                    genre TEXT,
                    director TEXT,
                    poster_url TEXT,
                    purchase_date TEXT,
                    purchase_price REAL,
                    purchase_location TEXT,
                    personal_rating INTEGER,
                    notes TEXT,
                    technical_specs_id TEXT REFERENCES technical_specs(id) ON DELETE SET NULL,
                    collection_type TEXT NOT NULL DEFAULT 'owned',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS scraping_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection_item_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',   -- pending|done
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (collection_item_id) REFERENCES collection_items(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_items_user ON collection_items(user_id);
                CREATE INDEX IF NOT EXISTS idx_items_user_title_format ON collection_items(user_id, title, format);
                CREATE INDEX IF NOT EXISTS idx_queue_item ON scraping_queue(collection_item_id);
                """
            )
            conn.commit()

    # -------- items --------
    def list_items(self, user_id: str, collection_type: Optional[CollectionType] = None) -> list[CollectionItem]:
        q = "SELECT * FROM collection_items WHERE user_id = ?"
        args: list[Any] = [user_id]
        if collection_type:
            q += " AND collection_type = ?"
            args.append(collection_type)
        q += " ORDER BY created_at DESC, rowid DESC"

        with self.connect() as conn:
            rows = conn.execute(q, args).fetchall()
        return [item_from_dict(dict(r)) for r in rows]

    def get_item(self, user_id: str, item_id: str) -> CollectionItem:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM collection_items WHERE id = ? AND user_id = ?",
                (item_id, user_id),
            ).fetchone()
        if not row:
            raise LookupError("Item not found or you do not have permission to view it")
        return item_from_dict(dict(row))

    def insert_item(self, item: CollectionItem) -> CollectionItem:
        self.insert_items([item])
        return item

    def insert_items(self, items: Sequence[CollectionItem]) -> int:
        if not items:
            return 0
        cols = ", ".join(ITEM_COLUMNS)
        params = ", ".join(f":{c}" for c in ITEM_COLUMNS)
        with self.connect() as conn:
            conn.executemany(
                f"INSERT INTO collection_items ({cols}) VALUES ({params})",
                [asdict(it) for it in items],
            )
            conn.commit()
        return len(items)

    def update_item(self, user_id: str, item_id: str, updates: Mapping[str, Any]) -> CollectionItem:
        unknown = set(updates) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        current = self.get_item(user_id, item_id)
        merged = {**asdict(current), **updates, "updated_at": now_iso()}
        if isinstance(merged.get("title"), str):
            merged["title"] = merged["title"].strip()
        updated = item_from_dict(merged)

        names = sorted(updates) + ["updated_at"]
        assignments = ", ".join(f"{n} = :{n}" for n in names)
        with self.connect() as conn:
            conn.execute(
                f"UPDATE collection_items SET {assignments} WHERE id = :id AND user_id = :user_id",
                asdict(updated),
            )
            conn.commit()
        return updated

    def set_collection_type(self, user_id: str, item_id: str, collection_type: CollectionType) -> CollectionItem:
        return self.update_item(user_id, item_id, {"collection_type": collection_type})

    def delete_item(self, user_id: str, item_id: str) -> None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id FROM collection_items WHERE id = ? AND user_id = ?",
                (item_id, user_id),
            ).fetchone()
            if not row:
                raise LookupError("Item not found or you do not have permission to delete it")

            conn.execute("DELETE FROM scraping_queue WHERE collection_item_id = ?", (item_id,))
            conn.execute("DELETE FROM collection_items WHERE id = ? AND user_id = ?", (item_id, user_id))
            conn.commit()

    def find_existing(self, user_id: str, titles: Iterable[str]) -> set[tuple[str, str]]:
        wanted = {t.strip().lower() for t in titles if t}
        if not wanted:
            return set()
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT title, format FROM collection_items WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        out: set[tuple[str, str]] = set()
        for r in rows:
            t = str(r["title"]).lower()
            if t in wanted:
                out.add((t, str(r["format"])))
        return out

    # -------- technical specs / scrape queue --------
    def insert_technical_specs(self, values: Mapping[str, Any]) -> str:
        specs_id = uuid.uuid4().hex
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO technical_specs (id, disc_format, video_codec, audio_codecs, aspect_ratio, runtime_minutes, region, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    specs_id,
                    _text(values.get("disc_format")),
                    _text(values.get("video_codec")),
                    _text(values.get("audio_codecs")),
                    _text(values.get("aspect_ratio")),
                    _opt_int("runtime_minutes", values.get("runtime_minutes")),
                    _text(values.get("region")),
                    now_iso(),
                ),
            )
            conn.commit()
        return specs_id

    def get_technical_specs(self, specs_id: str) -> Optional[dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM technical_specs WHERE id = ?", (specs_id,)).fetchone()
        return dict(row) if row else None

    def link_technical_specs(self, user_id: str, item_id: str, specs_id: str) -> CollectionItem:
        item = self.update_item(user_id, item_id, {"technical_specs_id": specs_id})
        with self.connect() as conn:
            conn.execute(
                "UPDATE scraping_queue SET status = 'done' WHERE collection_item_id = ? AND user_id = ?",
                (item_id, user_id),
            )
            conn.commit()
        return item

    def enqueue_scrape(self, user_id: str, item_id: str) -> None:
        self.get_item(user_id, item_id)
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO scraping_queue (collection_item_id, user_id, status, created_at) VALUES (?, ?, 'pending', ?)",
                (item_id, user_id, now_iso()),
            )
            conn.commit()

    def pending_scrapes(self, user_id: str) -> list[str]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT collection_item_id FROM scraping_queue WHERE user_id = ? AND status = 'pending' ORDER BY id ASC",
                (user_id,),
            ).fetchall()
        return [str(r["collection_item_id"]) for r in rows]


# -------------------------
# TMDB client (no prompting/printing)
# -------------------------
class TMDBClient:
    def __init__(self, token_env: str = "TMDB_TOKEN"):
        self.token_env = token_env

    def _headers(self) -> dict:
        token = os.getenv(self.token_env)
        if not token:
            raise RuntimeError(f"Missing {self.token_env} env var (TMDB v4 Read Access Token).")
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def search_movie(self, query: str, language: str = "en-US") -> list[dict]:
        r = requests.get(
            f"{TMDB_BASE}/search/movie",
            headers=self._headers(),
            params={"query": query, "include_adult": "false", "language": language},
            timeout=15,
        )
        r.raise_for_status()
        return r.json().get("results", [])

    def movie_details(self, movie_id: int, language: str = "en-US") -> dict:
        r = requests.get(
            f"{TMDB_BASE}/movie/{movie_id}",
            headers=self._headers(),
            params={"language": language},
            timeout=15,
        )
        r.raise_for_status()
        return r.json()

    def search_choices(self, query: str, language: str = "en-US", limit: int = 8) -> list[TmdbChoice]:
        results = [r for r in self.search_movie(query, language=language) if r.get("id")]
        results.sort(key=lambda r: (float(r.get("popularity") or 0), int(r.get("vote_count") or 0)), reverse=True)

        out: list[TmdbChoice] = []
        for r in results[:limit]:
            date = (r.get("release_date") or "").strip()
            out.append(
                TmdbChoice(
                    id=int(r["id"]),
                    title=(r.get("title") or "?").strip(),
                    year=int(date[:4]) if date[:4].isdigit() else None,
                    overview=(r.get("overview") or "").strip(),
                )
            )
        return out

    def fetch_details_as_item_fields(self, choice: TmdbChoice, language: str = "en-US") -> dict[str, Any]:
        details = self.movie_details(choice.id, language=language)
        date = (details.get("release_date") or "").strip()
        genres = [g.get("name") for g in (details.get("genres") or []) if g.get("name")]
        poster_path = details.get("poster_path")
        return {
            "title": (details.get("title") or choice.title).strip(),
            "year": int(date[:4]) if date[:4].isdigit() else choice.year,
            "imdb_id": details.get("imdb_id") or None,
            "genre": ", ".join(genres) or None,
            "poster_url": f"{TMDB_IMAGE_BASE}{poster_path}" if poster_path else None,
        }


# -------------------------
# High-level service for GUI
# -------------------------
class CollectionService:
    def __init__(self, db: CollectionDB, user_id: str, tmdb: Optional[TMDBClient] = None):
        self.db = db
        self.user_id = user_id
        self.tmdb = tmdb

    def list_items(self, collection_type: Optional[CollectionType] = None) -> list[CollectionItem]:
        return self.db.list_items(self.user_id, collection_type=collection_type)

    def get_item(self, item_id: str) -> CollectionItem:
        return self.db.get_item(self.user_id, item_id)

    def add_item(self, values: Mapping[str, Any]) -> CollectionItem:
        item = self.db.insert_item(new_item(self.user_id, values))
        logger.info("Added %r [%s] to %s", item.title, item.format, item.collection_type)
        return item

    def tmdb_search(self, query: str, limit: int = 8) -> list[TmdbChoice]:
        if not self.tmdb:
            raise RuntimeError("TMDB client not configured.")
        return self.tmdb.search_choices(query, limit=limit)

    def add_from_tmdb(
        self,
        choice: TmdbChoice,
        format: Format,
        condition: Condition = "New",
        allow_duplicate: bool = False,
        **extra: Any,
    ) -> AddResult:
        if not self.tmdb:
            return AddResult(status="error", message="TMDB client not configured.")

        try:
            values = self.tmdb.fetch_details_as_item_fields(choice)
        except RuntimeError as e:
            return AddResult(status="error", message=str(e))
        except requests.RequestException as e:
            return AddResult(status="error", message=f"TMDB details request failed: {e}")

        if not allow_duplicate:
            key = (values["title"].lower(), format)
            if key in self.db.find_existing(self.user_id, [values["title"]]):
                existing = next(
                    (it for it in self.list_items() if (it.title.lower(), it.format) == key),
                    None,
                )
                return AddResult(status="exists", item=existing, message="Already in your collection.")

        try:
            item = self.add_item({**extra, **values, "format": format, "condition": condition})
        except ValueError as e:
            return AddResult(status="error", message=str(e))
        return AddResult(status="added", item=item)

    def update_item(self, item_id: str, updates: Mapping[str, Any]) -> CollectionItem:
        return self.db.update_item(self.user_id, item_id, updates)

    def move_to(self, item_id: str, collection_type: CollectionType) -> CollectionItem:
        return self.db.set_collection_type(self.user_id, item_id, collection_type)

    def remove_item(self, item_id: str) -> None:
        self.db.delete_item(self.user_id, item_id)

    def request_specs_lookup(self, item_id: str) -> None:
        self.db.enqueue_scrape(self.user_id, item_id)

    def attach_technical_specs(self, item_id: str, specs: Mapping[str, Any]) -> CollectionItem:
        specs_id = self.db.insert_technical_specs(specs)
        return self.db.link_technical_specs(self.user_id, item_id, specs_id)

    def find_duplicates(self) -> list[DuplicateGroup]:
        return find_duplicate_groups(self.list_items())

    def merge_duplicates(self, item_ids: Iterable[str], keep_id: str) -> int:
        return MergeResolver(self.remove_item).merge_group(item_ids, keep_id)

    def new_merge_session(
        self,
        schedule: Optional[Callable[[float, Callable[[], Any]], Any]] = None,
        refresh_delay_s: float = 1.0,
    ) -> MergeSession:
        session = MergeSession(
            list_items=self.list_items,
            remove_item=self.remove_item,
            schedule=schedule,
            refresh_delay_s=refresh_delay_s,
        )
        session.refresh()
        return session

    def import_items(self, rows: Iterable[Mapping[str, Any]]) -> ImportResult:
        """Add already-parsed rows, skipping titles (case-insensitive) already shelved in the same format."""
        errors: list[str] = []
        prepared: list[CollectionItem] = []
        for n, row in enumerate(rows, start=2):
            values = dict(row)
            values["format"] = values.get("format") or "DVD"
            values["condition"] = values.get("condition") or "New"
            values["collection_type"] = values.get("collection_type") or "owned"
            try:
                prepared.append(new_item(self.user_id, values))
            except ValueError as e:
                errors.append(f"Row {n}: {e}")

        if not prepared:
            raise ValueError("No valid rows found to import")

        existing = self.db.find_existing(self.user_id, [it.title for it in prepared])
        unique = [it for it in prepared if (it.title.lower(), it.format) not in existing]
        if not unique:
            raise ValueError("All items already exist in your collection")

        added = self.db.insert_items(unique)
        skipped = len(prepared) - len(unique)
        if skipped:
            errors.append(f"{skipped} items skipped (already in collection)")
        logger.info("Imported %d item(s), skipped %d, %d error line(s)", added, skipped, len(errors))
        return ImportResult(added=added, skipped=skipped, errors=errors)

import sqlite3
from contextlib import contextmanager
import functools
import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging

import pandas as pd

from roadguard.config import config
from roadguard.exceptions import HazardNotFoundError, StoreError
from roadguard.models import GeoPoint, HazardRecord, HazardType, Vote
from roadguard.utils import distance_meters

logger = logging.getLogger(__name__)

HazardListener = Callable[[List[HazardRecord]], None]

UPDATABLE_FIELDS = {
    'type', 'severity', 'source', 'verified', 'confidence',
    'removal_requested', 'removal_votes', 'city', 'region',
}


class HazardStore(ABC):
    """Persistence contract for hazard records"""

    def __init__(self):
        self._listeners: List[HazardListener] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def ping(self) -> bool:
        """Health probe; True when the store can serve requests"""

    @abstractmethod
    def create(self, hazard: HazardRecord) -> str:
        pass

    @abstractmethod
    def read(self, hazard_id: str) -> Optional[HazardRecord]:
        pass

    @abstractmethod
    def update(self, hazard_id: str, **fields) -> HazardRecord:
        pass

    @abstractmethod
    def delete(self, hazard_id: str) -> bool:
        """Delete a record; True only for the call that actually removed it"""

    @abstractmethod
    def list_hazards(self) -> List[HazardRecord]:
        pass

    @abstractmethod
    def apply_vote(self, hazard_id: str, vote: Vote) -> Optional[HazardRecord]:
        """Atomically add one vote and return the record as it is after the increment"""

    @abstractmethod
    def mark_verified(self, hazard_id: str) -> bool:
        """Set verified only if still unverified; True for the call that flipped it"""

    @abstractmethod
    def add_removal_vote(self, hazard_id: str) -> Optional[HazardRecord]:
        """Atomically flag removal and add one removal vote"""

    def subscribe(self, callback: HazardListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(callback)
        try:
            callback(self.list_hazards())
        except StoreError as e:
            logger.error(f"Initial hazard load failed: {e}")

        def unsubscribe():
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self):
        with self._listeners_lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        try:
            hazards = self.list_hazards()
        except StoreError as e:
            logger.error(f"Cannot reload hazards for listeners: {e}")
            return
        for listener in listeners:
            try:
                listener(hazards)
            except Exception as e:
                logger.error(f"Hazard listener error: {e}")

    def find_nearby(self, location: GeoPoint, radius_m: float,
                    hazard_type: Optional[HazardType] = None) -> List[HazardRecord]:
        return [
            h for h in self.list_hazards()
            if (hazard_type is None or h.type == hazard_type)
            and distance_meters(location, h.location) <= radius_m
        ]

    def _frame(self) -> pd.DataFrame:
        return pd.DataFrame([h.to_dict() for h in self.list_hazards()])

    def get_statistics(self) -> Dict:
        df = self._frame()
        if df.empty:
            return {'total': 0, 'verified': 0, 'by_type': {}, 'by_severity': {}, 'top_regions': []}

        regions = df['region'].dropna().value_counts().head(10)
        return {
            'total': int(len(df)),
            'verified': int(df['verified'].sum()),
            'by_type': {k: int(v) for k, v in df['type'].value_counts().items()},
            'by_severity': {k: int(v) for k, v in df['severity'].value_counts().items()},
            'top_regions': [(region, int(count)) for region, count in regions.items()],
        }

    def export_csv(self, path: Optional[str] = None) -> str:
        if path is None:
            os.makedirs(config.EXPORT_DIR, exist_ok=True)
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            path = os.path.join(config.EXPORT_DIR, f'hazards_{timestamp}.csv')
        self._frame().to_csv(path, index=False)
        logger.info(f"Exported hazards to {path}")
        return path


class SqliteHazardStore(HazardStore):

    def __init__(self, db_path: Optional[str] = None):
        super().__init__()
        self.db_path = db_path or config.DB_PATH
        self.init_database()

    @contextmanager
    def get_connection(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Connection holding the write lock for the whole block"""
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(str(e)) from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def init_database(self):
        with self.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS hazards (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    source TEXT NOT NULL,
                    verified INTEGER NOT NULL DEFAULT 0,
                    vote_yes INTEGER NOT NULL DEFAULT 0 CHECK (vote_yes >= 0),
                    vote_no INTEGER NOT NULL DEFAULT 0 CHECK (vote_no >= 0),
                    confidence REAL,
                    removal_requested INTEGER NOT NULL DEFAULT 0,
                    removal_votes INTEGER NOT NULL DEFAULT 0,
                    city TEXT,
                    region TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_location ON hazards(latitude, longitude)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_type ON hazards(type)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_verified ON hazards(verified)")

    def ping(self) -> bool:
        try:
            with self.get_connection() as conn:
                conn.execute("SELECT 1 FROM hazards LIMIT 1")
            return True
        except StoreError as e:
            logger.warning(f"SQLite store unavailable: {e}")
            return False

    @staticmethod
    def _row_to_hazard(row) -> HazardRecord:
        return HazardRecord.from_dict({
            'id': row['id'],
            'type': row['type'],
            'severity': row['severity'],
            'lat': row['latitude'],
            'lng': row['longitude'],
            'source': row['source'],
            'verified': bool(row['verified']),
            'vote_yes': row['vote_yes'],
            'vote_no': row['vote_no'],
            'confidence': row['confidence'],
            'removal_requested': bool(row['removal_requested']),
            'removal_votes': row['removal_votes'],
            'city': row['city'],
            'region': row['region'],
            'created_at': row['created_at'],
        })

    def create(self, hazard: HazardRecord) -> str:
        hazard_id = hazard.id or uuid.uuid4().hex
        with self.get_connection() as conn:
            conn.execute("""
                INSERT INTO hazards
                (id, type, severity, latitude, longitude, source, verified, vote_yes, vote_no,
                 confidence, removal_requested, removal_votes, city, region, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                hazard_id, hazard.type.value, hazard.severity.value,
                hazard.location.lat, hazard.location.lng, hazard.source.value,
                int(hazard.verified), hazard.vote_yes, hazard.vote_no, hazard.confidence,
                int(hazard.removal_requested), hazard.removal_votes,
                hazard.city, hazard.region, hazard.created_at.isoformat()
            ))
        logger.info(f"Hazard saved: {hazard_id} ({hazard.type.value}, {hazard.severity.value})")
        self._notify()
        return hazard_id

    def read(self, hazard_id: str) -> Optional[HazardRecord]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM hazards WHERE id = ?", (hazard_id,)).fetchone()
            return self._row_to_hazard(row) if row else None

    def update(self, hazard_id: str, **fields) -> HazardRecord:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        columns = []
        params = []
        for name, value in fields.items():
            if hasattr(value, 'value'):
                value = value.value
            if isinstance(value, bool):
                value = int(value)
            columns.append(f"{name} = ?")
            params.append(value)

        with self.transaction() as conn:
            if columns:
                cur = conn.execute(f"UPDATE hazards SET {', '.join(columns)} WHERE id = ?",
                                   params + [hazard_id])
                if cur.rowcount == 0:
                    raise HazardNotFoundError(hazard_id)
            row = conn.execute("SELECT * FROM hazards WHERE id = ?", (hazard_id,)).fetchone()
            if row is None:
                raise HazardNotFoundError(hazard_id)
            hazard = self._row_to_hazard(row)
        self._notify()
        return hazard

    def delete(self, hazard_id: str) -> bool:
        with self.get_connection() as conn:
            cur = conn.execute("DELETE FROM hazards WHERE id = ?", (hazard_id,))
            deleted = cur.rowcount == 1
        if deleted:
            self._notify()
        return deleted

    def list_hazards(self) -> List[HazardRecord]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM hazards ORDER BY created_at").fetchall()
            return [self._row_to_hazard(row) for row in rows]

    def apply_vote(self, hazard_id: str, vote: Vote) -> Optional[HazardRecord]:
        column = 'vote_yes' if vote == Vote.YES else 'vote_no'
        with self.transaction() as conn:
            cur = conn.execute(f"UPDATE hazards SET {column} = {column} + 1 WHERE id = ?", (hazard_id,))
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM hazards WHERE id = ?", (hazard_id,)).fetchone()
            hazard = self._row_to_hazard(row)
        self._notify()
        return hazard

    def mark_verified(self, hazard_id: str) -> bool:
        with self.get_connection() as conn:
            cur = conn.execute("UPDATE hazards SET verified = 1 WHERE id = ? AND verified = 0", (hazard_id,))
            changed = cur.rowcount == 1
        if changed:
            self._notify()
        return changed

    def add_removal_vote(self, hazard_id: str) -> Optional[HazardRecord]:
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE hazards SET removal_requested = 1, removal_votes = removal_votes + 1 WHERE id = ?",
                (hazard_id,))
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM hazards WHERE id = ?", (hazard_id,)).fetchone()
            hazard = self._row_to_hazard(row)
        self._notify()
        return hazard

    def get_statistics(self) -> Dict:
        with self.get_connection() as conn:
            cur = conn.cursor()

            cur.execute("SELECT COUNT(*) AS total, COALESCE(SUM(verified), 0) AS verified FROM hazards")
            row = cur.fetchone()
            total, verified = row['total'], row['verified']

            cur.execute("SELECT type, COUNT(*) AS count FROM hazards GROUP BY type")
            type_stats = {row['type']: row['count'] for row in cur.fetchall()}

            cur.execute("SELECT severity, COUNT(*) AS count FROM hazards GROUP BY severity")
            severity_stats = {row['severity']: row['count'] for row in cur.fetchall()}

            cur.execute("""
                SELECT region, COUNT(*) AS count
                FROM hazards
                WHERE region IS NOT NULL
                GROUP BY region
                ORDER BY count DESC
                LIMIT 10
            """)
            region_stats = [(row['region'], row['count']) for row in cur.fetchall()]

            return {
                'total': total,
                'verified': verified,
                'by_type': type_stats,
                'by_severity': severity_stats,
                'top_regions': region_stats
            }


class OfflineHazardStore(HazardStore):
    """Local JSON file store used while the database is unreachable"""

    def __init__(self, path: Optional[str] = None):
        super().__init__()
        self.path = path or os.path.join(config.OFFLINE_LOG_DIR, 'hazards.json')
        self._lock = threading.RLock()

    def _load(self) -> List[dict]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted offline log {self.path}: {e}")
            # Keep the corrupted file aside and start over
            backup_dir = os.path.join(os.path.dirname(self.path), 'corrupted')
            os.makedirs(backup_dir, exist_ok=True)
            os.replace(self.path, os.path.join(backup_dir, os.path.basename(self.path)))
            logger.info(f"Moved corrupted file to {backup_dir}")
            return []
        except OSError as e:
            raise StoreError(f"Cannot read offline log {self.path}: {e}") from e

    def _save(self, items: List[dict]):
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, 'w') as f:
                json.dump(items, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write offline log {self.path}: {e}") from e

    def _mutate(self, hazard_id: str, change: Callable[[dict], None]) -> Optional[HazardRecord]:
        with self._lock:
            items = self._load()
            for item in items:
                if item.get('id') == hazard_id:
                    change(item)
                    self._save(items)
                    hazard = HazardRecord.from_dict(item)
                    break
            else:
                return None
        self._notify()
        return hazard

    def ping(self) -> bool:
        try:
            with self._lock:
                self._save(self._load())
            return True
        except StoreError as e:
            logger.warning(f"Offline store unavailable: {e}")
            return False

    def create(self, hazard: HazardRecord) -> str:
        hazard_id = hazard.id or f"local_{uuid.uuid4().hex[:12]}"
        data = hazard.to_dict()
        data['id'] = hazard_id
        with self._lock:
            items = self._load()
            items.append(data)
            self._save(items)
        logger.info(f"Hazard saved locally: {hazard_id}")
        self._notify()
        return hazard_id

    def read(self, hazard_id: str) -> Optional[HazardRecord]:
        with self._lock:
            for item in self._load():
                if item.get('id') == hazard_id:
                    return HazardRecord.from_dict(item)
        return None

    def update(self, hazard_id: str, **fields) -> HazardRecord:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        def change(item):
            for name, value in fields.items():
                item[name] = value.value if hasattr(value, 'value') else value

        hazard = self._mutate(hazard_id, change)
        if hazard is None:
            raise HazardNotFoundError(hazard_id)
        return hazard

    def delete(self, hazard_id: str) -> bool:
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.get('id') != hazard_id]
            if len(remaining) == len(items):
                return False
            self._save(remaining)
        self._notify()
        return True

    def list_hazards(self) -> List[HazardRecord]:
        with self._lock:
            items = self._load()
        hazards = []
        for item in items:
            try:
                hazards.append(HazardRecord.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Skipping malformed offline hazard {item.get('id')}: {e}")
        return hazards

    def apply_vote(self, hazard_id: str, vote: Vote) -> Optional[HazardRecord]:
        field = 'vote_yes' if vote == Vote.YES else 'vote_no'

        def change(item):
            item[field] = int(item.get(field) or 0) + 1

        return self._mutate(hazard_id, change)

    def mark_verified(self, hazard_id: str) -> bool:
        flipped = []

        def change(item):
            if not item.get('verified'):
                item['verified'] = True
                flipped.append(True)

        self._mutate(hazard_id, change)
        return bool(flipped)

    def add_removal_vote(self, hazard_id: str) -> Optional[HazardRecord]:
        def change(item):
            item['removal_requested'] = True
            item['removal_votes'] = int(item.get('removal_votes') or 0) + 1

        return self._mutate(hazard_id, change)


class HazardRepository(HazardStore):
    """
    Routes hazard operations to the primary store when it is healthy and to
    the offline fallback otherwise. The choice is made by a health probe at
    construction and can be revisited with retry_primary().

    Mutations of an existing record (votes, promotion, deletion) are never
    replayed on the other store: the record only exists in the store that
    created it, so a failure there is raised to the caller.
    """

    def __init__(self, primary: HazardStore, fallback: HazardStore):
        super().__init__()
        self.primary = primary
        self.fallback = fallback
        self.active = primary if primary.ping() else fallback
        if self.active is fallback:
            logger.warning("Primary hazard store unavailable, using offline store")
        self._unsubscribers = [
            primary.subscribe(functools.partial(self._forward, primary)),
            fallback.subscribe(functools.partial(self._forward, fallback)),
        ]

    @property
    def using_fallback(self) -> bool:
        return self.active is self.fallback

    def _forward(self, store: HazardStore, hazards: List[HazardRecord]):
        if store is not self.active:
            return
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(hazards)
            except Exception as e:
                logger.error(f"Hazard listener error: {e}")

    def _call(self, name: str, *args, failover: bool = True, **kwargs):
        store = self.active
        try:
            return getattr(store, name)(*args, **kwargs)
        except HazardNotFoundError:
            raise
        except StoreError as e:
            if store is not self.primary:
                raise
            if not failover:
                logger.error(f"Primary store {name} failed: {e}")
                raise
            logger.error(f"Primary store {name} failed, switching to offline store: {e}")
            self.active = self.fallback
            return getattr(self.fallback, name)(*args, **kwargs)

    def retry_primary(self) -> bool:
        """Switch back to the primary store and push offline records into it"""
        logger.info("Retrying primary hazard store connection...")
        if not self.primary.ping():
            return False

        synced = 0
        for hazard in self.fallback.list_hazards():
            local_id = hazard.id
            hazard.id = None
            self.primary.create(hazard)
            self.fallback.delete(local_id)
            synced += 1

        self.active = self.primary
        logger.info(f"Primary hazard store connected, synced {synced} offline hazards")
        self._forward(self.primary, self.primary.list_hazards())
        return True

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()

    def ping(self) -> bool:
        return self.active.ping()

    def create(self, hazard: HazardRecord) -> str:
        return self._call('create', hazard)

    def read(self, hazard_id: str) -> Optional[HazardRecord]:
        return self._call('read', hazard_id)

    def update(self, hazard_id: str, **fields) -> HazardRecord:
        return self._call('update', hazard_id, failover=False, **fields)

    def delete(self, hazard_id: str) -> bool:
        return self._call('delete', hazard_id, failover=False)

    def list_hazards(self) -> List[HazardRecord]:
        return self._call('list_hazards')

    def apply_vote(self, hazard_id: str, vote: Vote) -> Optional[HazardRecord]:
        return self._call('apply_vote', hazard_id, vote, failover=False)

    def mark_verified(self, hazard_id: str) -> bool:
        return self._call('mark_verified', hazard_id, failover=False)

    def add_removal_vote(self, hazard_id: str) -> Optional[HazardRecord]:
        return self._call('add_removal_vote', hazard_id, failover=False)

    def get_statistics(self) -> Dict:
        return self._call('get_statistics')

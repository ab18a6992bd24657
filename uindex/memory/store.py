import sqlite3
import logging
import threading
from typing import Dict, Any, Optional, List, Callable, Tuple
from datetime import datetime, timedelta
from pathlib import Path
from contextlib import contextmanager

from ..core.config import StoreConfig, UIElement, SCAN_MARKER_ROLE, TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)

schema_version = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_info (
key TEXT PRIMARY KEY,
value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ui_elements (
id                  INTEGER PRIMARY KEY AUTOINCREMENT,
app_name            TEXT NOT NULL,
window_title        TEXT NOT NULL,
element_role        TEXT NOT NULL,
element_label       TEXT NOT NULL,
element_value       TEXT,

x                   INTEGER NOT NULL,
y                   INTEGER NOT NULL,
width               INTEGER NOT NULL,
height              INTEGER NOT NULL,

accessibility_id    TEXT,
class_name          TEXT,
automation_id       TEXT,

is_enabled          INTEGER NOT NULL DEFAULT 1,
is_visible          INTEGER NOT NULL DEFAULT 1,
confidence_score    REAL NOT NULL DEFAULT 0.5,

last_seen           TEXT NOT NULL,
created_at          TEXT NOT NULL,
updated_at          TEXT NOT NULL
);
"""

INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_ui_elements_app_window
    ON ui_elements(app_name, window_title);
CREATE INDEX IF NOT EXISTS idx_ui_elements_role_label
    ON ui_elements(element_role, element_label);
CREATE INDEX IF NOT EXISTS idx_ui_elements_geometry
    ON ui_elements(x, y, width, height);
CREATE INDEX IF NOT EXISTS idx_ui_elements_last_seen
    ON ui_elements(last_seen);
"""

# Only enabled, visible, real elements are returned by the targeted queries.
ACTIONABLE_SQL = "is_enabled = 1 AND is_visible = 1 AND element_role != ?"


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ElementStore:
    """Durable index of UI elements, one snapshot per (app, window)."""

    def __init__(self, config: Optional[StoreConfig] = None,
                 db_path: Optional[str] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or StoreConfig()
        self.db_path = db_path or self.config.database_path
        self._memory = self.db_path == ":memory:"
        if not self._memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._clock = clock
        self._local = threading.local()
        self._shared: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        # An in-memory database only exists on one connection, so share it.
        if self._memory:
            if self._shared is None:
                self._shared = self._connect()
            return self._shared

        if not hasattr(self._local, 'connection') or self._local.connection is None:
            self._local.connection = self._connect()
        return self._local.connection

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            str(self.db_path),
            timeout=self.config.busy_timeout_seconds,
            check_same_thread=False
        )
        connection.row_factory = sqlite3.Row
        return connection

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None
        if hasattr(self._local, 'connection') and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None

    @contextmanager
    def transaction(self):
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _query(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            cursor = self._get_connection().execute(sql, params)
            return cursor.fetchall()

    def initialize(self) -> None:
        """Create the schema; safe to call more than once."""
        with self.transaction() as conn:
            cursor = conn.cursor()
            cursor.executescript(SCHEMA_SQL)
            cursor.executescript(INDEXES_SQL)
            cursor.execute(
                "INSERT OR REPLACE INTO schema_info (key, value) VALUES ('version', ?)",
                (str(schema_version),)
            )
            cursor.execute(
                "INSERT OR IGNORE INTO schema_info (key, value) VALUES ('created_at', ?)",
                (self._now_str(),)
            )
        if not self._initialized:
            logger.info("Element store ready at %s", self.db_path)
        self._initialized = True

    def get_schema_version(self) -> int:
        rows = self._query("SELECT value FROM schema_info WHERE key = 'version'")
        return int(rows[0]['value']) if rows else 0

    def _now_str(self) -> str:
        return self._clock().strftime(TIMESTAMP_FORMAT)

    def _fresh_cutoff(self) -> str:
        cutoff = self._clock() - timedelta(minutes=self.config.freshness_minutes)
        return cutoff.strftime(TIMESTAMP_FORMAT)

    @staticmethod
    def _row_to_element(row: sqlite3.Row) -> UIElement:
        return UIElement(
            id=row['id'],
            app_name=row['app_name'],
            window_title=row['window_title'],
            role=row['element_role'],
            label=row['element_label'],
            value=row['element_value'],
            x=row['x'],
            y=row['y'],
            width=row['width'],
            height=row['height'],
            accessibility_id=row['accessibility_id'] or "",
            class_name=row['class_name'] or "",
            automation_id=row['automation_id'] or "",
            is_enabled=bool(row['is_enabled']),
            is_visible=bool(row['is_visible']),
            confidence=row['confidence_score'],
            last_seen=datetime.strptime(row['last_seen'], TIMESTAMP_FORMAT),
        )

    def store_elements(self, elements: List[UIElement]) -> int:
        """
        Replace the snapshot of one (app, window) identity with `elements`.
        All-or-nothing; returns the number of rows written.
        """
        if not elements:
            return 0

        identities = {e.identity for e in elements}
        if len(identities) > 1:
            raise ValueError(f"store_elements got {len(identities)} identities; expected one")
        app_name, window_title = identities.pop()
        now = self._now_str()
        row_ids: List[int] = []

        with self.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM ui_elements WHERE app_name = ? AND window_title = ?",
                (app_name, window_title)
            )
            for element in elements:
                cursor.execute('''
                    INSERT INTO ui_elements (
                        app_name, window_title, element_role, element_label, element_value,
                        x, y, width, height,
                        accessibility_id, class_name, automation_id,
                        is_enabled, is_visible, confidence_score,
                        last_seen, created_at, updated_at
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                    ''', (
                        element.app_name,
                        element.window_title,
                        element.role,
                        element.label,
                        element.value,
                        element.x,
                        element.y,
                        element.width,
                        element.height,
                        element.accessibility_id,
                        element.class_name,
                        element.automation_id,
                        int(element.is_enabled),
                        int(element.is_visible),
                        float(element.confidence),
                        element.last_seen.strftime(TIMESTAMP_FORMAT),
                        now,
                        now,
                    ))
                row_ids.append(cursor.lastrowid)

        # Ids only become real once the replace has committed.
        for element, row_id in zip(elements, row_ids):
            element.id = row_id
        logger.debug("Stored %d elements for %s / %s", len(elements), app_name, window_title)
        return len(elements)

    def get_elements(self, app_name: Optional[str] = None,
                     window_title: Optional[str] = None) -> List[UIElement]:
        """Fresh rows (markers included), newest first."""
        sql = "SELECT * FROM ui_elements WHERE last_seen > ?"
        params: List[Any] = [self._fresh_cutoff()]
        if app_name is not None:
            sql += " AND app_name = ?"
            params.append(app_name)
        if window_title is not None:
            sql += " AND window_title = ?"
            params.append(window_title)
        sql += " ORDER BY last_seen DESC, confidence_score DESC, id ASC"
        return [self._row_to_element(r) for r in self._query(sql, tuple(params))]

    def _targeted(self, where: str, params: List[Any], app_name: Optional[str],
                  limit: Optional[int] = None) -> List[UIElement]:
        sql = f"SELECT * FROM ui_elements WHERE ({where}) AND last_seen > ? AND {ACTIONABLE_SQL}"
        params = params + [self._fresh_cutoff(), SCAN_MARKER_ROLE]
        if app_name is not None:
            sql += " AND app_name = ?"
            params.append(app_name)
        sql += " ORDER BY confidence_score DESC, last_seen DESC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_element(r) for r in self._query(sql, tuple(params))]

    def get_elements_by_role(self, role: str, app_name: Optional[str] = None) -> List[UIElement]:
        return self._targeted("LOWER(element_role) = LOWER(?)", [role], app_name)

    def get_elements_by_label(self, label: str, app_name: Optional[str] = None) -> List[UIElement]:
        return self._targeted("element_label LIKE ? ESCAPE '\\'", [_like_pattern(label)], app_name)

    def search_elements(self, query: str, app_name: Optional[str] = None) -> List[UIElement]:
        pattern = _like_pattern(query)
        return self._targeted(
            "element_label LIKE ? ESCAPE '\\' OR element_value LIKE ? ESCAPE '\\' "
            "OR element_role LIKE ? ESCAPE '\\'",
            [pattern, pattern, pattern],
            app_name,
            limit=self.config.search_limit,
        )

    def get_active_applications(self) -> List[Dict[str, Any]]:
        """Distinct fresh identities with their real element counts, most active first."""
        rows = self._query('''
            SELECT app_name, window_title,
                   SUM(CASE WHEN element_role != ? THEN 1 ELSE 0 END) AS element_count,
                   MAX(last_seen) AS last_seen
            FROM ui_elements
            WHERE last_seen > ?
            GROUP BY app_name, window_title
            ORDER BY element_count DESC, app_name ASC
            ''', (SCAN_MARKER_ROLE, self._fresh_cutoff()))
        return [
            {
                'app_name': r['app_name'],
                'window_title': r['window_title'],
                'element_count': int(r['element_count'] or 0),
                'last_seen': r['last_seen'],
            }
            for r in rows
        ]

    def cleanup_stale_elements(self) -> int:
        cutoff = (self._clock() - timedelta(hours=self.config.staleness_hours)).strftime(TIMESTAMP_FORMAT)
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM ui_elements WHERE last_seen < ?", (cutoff,))
            deleted = cursor.rowcount
        if deleted:
            logger.info("Removed %d stale elements", deleted)
        return deleted

    def count_elements(self, app_name: Optional[str] = None,
                       window_title: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM ui_elements WHERE element_role != ?"
        params: List[Any] = [SCAN_MARKER_ROLE]
        if app_name is not None:
            sql += " AND app_name = ?"
            params.append(app_name)
        if window_title is not None:
            sql += " AND window_title = ?"
            params.append(window_title)
        return int(self._query(sql, tuple(params))[0]['n'])

    def get_statistics(self) -> Dict[str, Any]:
        row = self._query('''
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN element_role = ? THEN 1 ELSE 0 END) AS markers,
                   COUNT(DISTINCT app_name || char(31) || window_title) AS identities,
                   AVG(confidence_score) AS avg_confidence,
                   MAX(last_seen) AS newest
            FROM ui_elements
            ''', (SCAN_MARKER_ROLE,))[0]
        return {
            'total_elements': int(row['total'] or 0),
            'scan_markers': int(row['markers'] or 0),
            'identities': int(row['identities'] or 0),
            'avg_confidence': round(row['avg_confidence'] or 0.0, 3),
            'newest': row['newest'],
            'schema_version': self.get_schema_version(),
        }

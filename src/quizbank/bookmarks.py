from typing import List, Optional

from .database import get_db_connection
from .models import Question


class BookmarkStore:
    """Bookmarked questions per client, stored as full copies for offline use."""

    def __init__(self, client_id: str, db_path: Optional[str] = None):
        self.client_id = client_id
        self.db_path = db_path

    def list(self) -> List[Question]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT payload FROM bookmarks WHERE client_id = ? ORDER BY created_at, rowid",
                (self.client_id,),
            ).fetchall()
        finally:
            conn.close()
        return [Question.model_validate_json(row["payload"]) for row in rows]

    def add(self, question: Question) -> None:
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO bookmarks (client_id, question_id, payload) "
                "VALUES (?, ?, ?)",
                (self.client_id, question.id, question.model_dump_json()),
            )
        conn.close()

    def remove(self, question_id: str) -> bool:
        conn = get_db_connection(self.db_path)
        with conn:
            cur = conn.execute(
                "DELETE FROM bookmarks WHERE client_id = ? AND question_id = ?",
                (self.client_id, question_id),
            )
        conn.close()
        return cur.rowcount > 0

"""Comments attached to tasks."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from .database import Database
from .errors import ValidationError
from .models import Comment, utc_now
from .repositories import generate_id

logger = logging.getLogger("plantrack.comments")


def _row_to_comment(row: sqlite3.Row) -> Comment:
    return Comment(
        id=row["id"],
        task_id=row["task_id"],
        content=row["content"],
        author=row["author"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class CommentStore:
    """Reads and writes ``task_comments``; rows go away with their task."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, task_id: str, content: str, author: Optional[str] = None) -> Comment:
        if not content or not content.strip():
            raise ValidationError("Comment content cannot be empty")
        comment = Comment(id=generate_id(), task_id=task_id, content=content, author=author or None)
        self.db.execute(
            """
            INSERT INTO task_comments (id, task_id, content, author, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                comment.id,
                comment.task_id,
                comment.content,
                comment.author,
                comment.created_at,
                comment.updated_at,
            ),
        )
        logger.debug(f"Added comment {comment.id} to task {task_id}")
        return comment

    def find_by_id(self, comment_id: str) -> Optional[Comment]:
        row = self.db.query_one("SELECT * FROM task_comments WHERE id = ?", (comment_id,))
        return _row_to_comment(row) if row is not None else None

    def find_by_task(self, task_id: str, newest_first: bool = False) -> List[Comment]:
        order = "DESC" if newest_first else "ASC"
        rows = self.db.query_all(
            f"SELECT * FROM task_comments WHERE task_id = ? ORDER BY created_at {order}, rowid {order}",
            (task_id,),
        )
        return [_row_to_comment(row) for row in rows]

    def find_recent_for_plan(self, plan_id: str, limit: int = 20) -> List[Comment]:
        """Newest comments across every task of a plan."""
        rows = self.db.query_all(
            """
            SELECT c.* FROM task_comments c
            JOIN tasks t ON c.task_id = t.id
            WHERE t.plan_id = ?
            ORDER BY c.created_at DESC, c.rowid DESC
            LIMIT ?
            """,
            (plan_id, limit),
        )
        return [_row_to_comment(row) for row in rows]

    def update(self, comment_id: str, content: str) -> Optional[Comment]:
        if not content or not content.strip():
            raise ValidationError("Comment content cannot be empty")
        cursor = self.db.execute(
            "UPDATE task_comments SET content = ?, updated_at = ? WHERE id = ?",
            (content, utc_now(), comment_id),
        )
        if cursor.rowcount == 0:
            return None
        return self.find_by_id(comment_id)

    def delete(self, comment_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM task_comments WHERE id = ?", (comment_id,))
        return cursor.rowcount > 0

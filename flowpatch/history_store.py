from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from flowpatch.engine.executor import WorkflowExecutionResult


@dataclass(slots=True)
class NodeResultRecord:
    position: int
    node_id: str
    node_label: str
    success: bool
    output: object
    error_text: str | None
    duration: float
    item_index: int | None


@dataclass(slots=True)
class ExecutionRecord:
    execution_id: str
    workflow_name: str
    success: bool
    input_payload: object
    final_output: object
    error_text: str | None
    total_duration: float
    node_count: int
    created_at: str
    node_results: list[NodeResultRecord] = field(default_factory=list)


class ExecutionHistoryStore:
    """SQLite persistence for workflow runs and their per-node results."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    execution_id TEXT PRIMARY KEY,
                    workflow_name TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    input_json TEXT,
                    output_json TEXT,
                    error_text TEXT,
                    total_duration REAL NOT NULL DEFAULT 0,
                    node_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_node_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    node_id TEXT NOT NULL,
                    node_label TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    output_json TEXT,
                    error_text TEXT,
                    duration REAL NOT NULL DEFAULT 0,
                    item_index INTEGER
                )
                """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_execution_node_results_execution
                ON execution_node_results(execution_id, position)
                """
            )

            conn.commit()

    def record(
        self,
        workflow_name: str,
        result: WorkflowExecutionResult,
        initial_payload: object = None,
    ) -> str:
        execution_id = f"exec_{uuid.uuid4().hex[:12]}"
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO executions (
                    execution_id,
                    workflow_name,
                    success,
                    input_json,
                    output_json,
                    error_text,
                    total_duration,
                    node_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    execution_id,
                    workflow_name,
                    1 if result.success else 0,
                    self._dump(initial_payload),
                    self._dump(result.final_output),
                    result.error,
                    result.total_duration,
                    len(result.results),
                ),
            )
            conn.executemany(
                """
                INSERT INTO execution_node_results (
                    execution_id,
                    position,
                    node_id,
                    node_label,
                    success,
                    output_json,
                    error_text,
                    duration,
                    item_index
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        execution_id,
                        position,
                        node_result.node_id,
                        node_result.node_label,
                        1 if node_result.success else 0,
                        self._dump(node_result.output),
                        node_result.error,
                        node_result.duration,
                        node_result.item_index,
                    )
                    for position, node_result in enumerate(result.results)
                ],
            )
            conn.commit()
        return execution_id

    def list_executions(self, limit: int = 20) -> list[ExecutionRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM executions
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ).fetchall()
        return [self._row_to_execution(row) for row in rows]

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM executions WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
            if row is None:
                return None
            node_rows = conn.execute(
                """
                SELECT * FROM execution_node_results
                WHERE execution_id = ?
                ORDER BY position ASC
                """,
                (execution_id,),
            ).fetchall()
        record = self._row_to_execution(row)
        record.node_results = [self._row_to_node_result(item) for item in node_rows]
        return record

    def delete_execution(self, execution_id: str) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM execution_node_results WHERE execution_id = ?", (execution_id,))
            cursor = conn.execute("DELETE FROM executions WHERE execution_id = ?", (execution_id,))
            conn.commit()
            return cursor.rowcount > 0

    def _row_to_execution(self, row: sqlite3.Row) -> ExecutionRecord:
        return ExecutionRecord(
            execution_id=str(row["execution_id"]),
            workflow_name=str(row["workflow_name"]),
            success=bool(row["success"]),
            input_payload=self._load(row["input_json"]),
            final_output=self._load(row["output_json"]),
            error_text=row["error_text"],
            total_duration=float(row["total_duration"]),
            node_count=int(row["node_count"]),
            created_at=str(row["created_at"]),
        )

    def _row_to_node_result(self, row: sqlite3.Row) -> NodeResultRecord:
        return NodeResultRecord(
            position=int(row["position"]),
            node_id=str(row["node_id"]),
            node_label=str(row["node_label"]),
            success=bool(row["success"]),
            output=self._load(row["output_json"]),
            error_text=row["error_text"],
            duration=float(row["duration"]),
            item_index=row["item_index"],
        )

    def _dump(self, value: object) -> str:
        try:
            return json.dumps(value, ensure_ascii=False)
        except TypeError:
            sanitized = self._sanitize_for_json(value)
            return json.dumps(sanitized, ensure_ascii=False)

    def _load(self, value: str | None) -> object:
        if value is None:
            return None
        return json.loads(value)

    def _sanitize_for_json(self, value: object) -> object:
        if isinstance(value, dict):
            return {str(key): self._sanitize_for_json(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._sanitize_for_json(item) for item in value]
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        return str(value)

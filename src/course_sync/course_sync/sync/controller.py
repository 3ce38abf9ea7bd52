from __future__ import annotations

import logging

from flask import Flask, jsonify, request

from ..core.exceptions import NotFoundError, ValidationError
from ..container import Container
from ..runtime import SyncRuntime
from .model import FullSyncOptions

logger = logging.getLogger(__name__)


def register(app: Flask, container: Container, runtime: SyncRuntime) -> None:
    orchestrator = container.orchestrator
    aggregator = container.aggregator

    def _body() -> dict:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError("Body phải là JSON object")
        return data

    def _term(data: dict) -> str:
        term = str(data.get("term") or "").strip()
        if not term:
            raise ValidationError("term không hợp lệ")
        return term

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        return jsonify({"success": False, "error": str(e)}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e: NotFoundError):
        return jsonify({"success": False, "error": str(e)}), 404

    @app.route("/api/sync/full", methods=["POST"], endpoint="sync_full")
    def sync_full():
        data = _body()
        term = _term(data)
        batch_size = data.get("batch_size")
        max_concurrency = data.get("max_concurrency")
        course_ids = data.get("course_ids")
        if course_ids is not None and not isinstance(course_ids, list):
            raise ValidationError("course_ids phải là danh sách")
        try:
            options = FullSyncOptions(
                batch_size=int(batch_size) if batch_size is not None else FullSyncOptions.batch_size,
                max_concurrency=int(max_concurrency) if max_concurrency is not None else FullSyncOptions.max_concurrency,
                course_ids=course_ids,
            )
        except (TypeError, ValueError):
            raise ValidationError("Tham số đồng bộ không hợp lệ") from None

        result = runtime.run(orchestrator.start_full_sync(term, options))
        return jsonify({"success": True, "data": result.to_dict()}), 202

    @app.route("/api/sync/incremental", methods=["POST"], endpoint="sync_incremental")
    def sync_incremental():
        data = _body()
        since = data.get("since")
        try:
            since = int(since) if since is not None else None
        except (TypeError, ValueError):
            raise ValidationError("since không hợp lệ") from None

        result = runtime.run(orchestrator.incremental_sync(_term(data), since))
        return jsonify({"success": True, "data": result.to_dict()}), 202

    @app.route("/api/sync/task/<task_id>/status", methods=["GET"], endpoint="sync_status")
    def sync_status(task_id: str):
        stats = runtime.run(orchestrator.get_sync_status(task_id))
        if stats is None:
            raise NotFoundError(f"Không tìm thấy task {task_id}")
        return jsonify({"success": True, "data": stats.to_dict()})

    @app.route("/api/sync/task/<task_id>/cancel", methods=["POST"], endpoint="sync_cancel")
    def sync_cancel(task_id: str):
        if runtime.run(container.task_store.get_task(task_id)) is None:
            raise NotFoundError(f"Không tìm thấy task {task_id}")
        cancelled = runtime.run(orchestrator.cancel_sync(task_id))
        return jsonify({"success": True, "data": {"task_id": task_id, "cancelled": cancelled}})

    @app.route("/api/sync/task/<task_id>/reconcile", methods=["POST"], endpoint="sync_reconcile")
    def sync_reconcile(task_id: str):
        result = runtime.run(aggregator.reconcile(task_id))
        return jsonify({"success": True, "data": result.to_dict()})

    @app.route("/api/sync/soft-delete", methods=["POST"], endpoint="sync_soft_delete")
    def sync_soft_delete():
        ids = _body().get("occurrence_ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("occurrence_ids phải là danh sách không rỗng")

        result = runtime.run(aggregator.soft_delete([str(i) for i in ids]))
        return jsonify({"success": not result.failed, "data": result.to_dict()})

    @app.route("/api/sync/soft-delete/complete", methods=["POST"], endpoint="sync_soft_delete_complete")
    def sync_soft_delete_complete():
        result = runtime.run(aggregator.complete_soft_delete(_term(_body())))
        return jsonify({"success": not result.failed, "data": result.to_dict()})

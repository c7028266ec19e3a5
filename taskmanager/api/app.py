"""FastAPI web application for the task manager."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse

from taskmanager import __version__
from taskmanager.api import health
from taskmanager.api.dependencies import get_settings, get_task_repository
from taskmanager.api.task_models import (
    BulkOperationName,
    BulkRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
    bulk_delete_id,
    bulk_update_item,
    create_fields,
    parse_bulk_items,
    serialize_task,
    serialize_tasks,
    split_list_param,
    update_fields,
)
from taskmanager.config import Settings
from taskmanager.database.database import Database, DatabaseUnavailable
from taskmanager.database.errors import StoreError, ValidationFailed
from taskmanager.database.repository import TaskRepository
from taskmanager.logging_setup import setup_logging
from taskmanager.models.constants import DEFAULT_LIMIT, DEFAULT_PAGE
from taskmanager.models.timeutil import utc_now

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found"


async def store_error_handler(_: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def request_validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies and query parameters in the same shape as field validation."""
    errors = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(location) or "body"] = error.get("msg", "Invalid value")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ValidationFailed(errors).to_dict()},
    )


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the application.

    Args:
        settings: runtime settings (read from the environment when omitted)
        database: prebuilt Database handle (built from `settings` when omitted)
    """
    settings = settings or Settings.from_env()
    database = database or Database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        try:
            database.connect()
        except DatabaseUnavailable as e:
            logger.critical(f"Startup aborted: {str(e)}")
            raise SystemExit(1)
        database.init_schema()
        logger.info(f"Task Manager API {__version__} started ({settings.app_env})")

        yield

        database.close()
        logger.info("Task Manager API stopped")

    app = FastAPI(
        title="Task Manager API",
        description="A basic to-do list service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    app.include_router(health.router)
    _register_task_routes(app)
    return app


def _register_task_routes(app: FastAPI) -> None:

    @app.get("/", response_class=HTMLResponse)
    def root():
        """Root endpoint with basic UI."""
        return INDEX_HTML

    @app.get("/tasks")
    def list_tasks(
        page: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
        completed: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        tags: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        sort_by: Optional[str] = Query("createdAt", alias="sortBy"),
        sort_order: Optional[str] = Query("desc", alias="sortOrder"),
        due_date_from: Optional[str] = Query(None, alias="dueDateFrom"),
        due_date_to: Optional[str] = Query(None, alias="dueDateTo"),
        created_from: Optional[str] = Query(None, alias="createdFrom"),
        created_to: Optional[str] = Query(None, alias="createdTo"),
        include_deleted: Optional[str] = Query(None, alias="includeDeleted"),
        repository: TaskRepository = Depends(get_task_repository),
    ):
        """List tasks with filtering, sorting and pagination."""
        filters = {
            "completed": completed,
            "priority": split_list_param(priority),
            "tags": split_list_param(tags.lower() if tags else tags),
            "search": search,
            "dueDateFrom": due_date_from,
            "dueDateTo": due_date_to,
            "createdFrom": created_from,
            "createdTo": created_to,
            "includeDeleted": include_deleted,
        }
        result = repository.list_tasks(
            filters,
            page=page if page is not None else DEFAULT_PAGE,
            limit=limit if limit is not None else DEFAULT_LIMIT,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return {"data": serialize_tasks(result.data, utc_now()), "pagination": result.pagination}

    @app.get("/tasks/overdue")
    def list_overdue_tasks(repository: TaskRepository = Depends(get_task_repository)):
        now = utc_now()
        tasks = repository.find_overdue(now)
        return {"data": serialize_tasks(tasks, now), "count": len(tasks)}

    @app.get("/tasks/search")
    def search_tasks(
        q: str = Query("", description="Whitespace-separated search terms"),
        repository: TaskRepository = Depends(get_task_repository),
    ):
        tasks = repository.search_tasks(q)
        return {"data": serialize_tasks(tasks, utc_now()), "count": len(tasks)}

    @app.post("/tasks", status_code=status.HTTP_201_CREATED)
    def create_task(
        request: TaskCreateRequest,
        repository: TaskRepository = Depends(get_task_repository),
    ):
        task = repository.create(request.to_fields())
        return serialize_task(task)

    @app.post("/tasks/bulk")
    def bulk_tasks(
        request: BulkRequest,
        repository: TaskRepository = Depends(get_task_repository),
    ):
        """Run a create, update or delete over many tasks. Per-item failures are reported in writeErrors."""
        if request.operation is BulkOperationName.CREATE:
            if not request.tasks:
                raise ValidationFailed({"tasks": "Bulk create requires a non-empty tasks list"})
            result = repository.bulk_create(parse_bulk_items(request.tasks, create_fields))
        elif request.operation is BulkOperationName.UPDATE:
            result = repository.bulk_update(
                items=parse_bulk_items(request.tasks, bulk_update_item),
                filters=request.filters,
                updates=update_fields(request.updates) if request.updates is not None else None,
            )
        else:
            result = repository.bulk_delete(
                ids=[bulk_delete_id(item) for item in request.tasks or []],
                filters=request.filters,
            )
        return {"operation": request.operation.value, "result": result.to_dict()}

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str, repository: TaskRepository = Depends(get_task_repository)):
        task = repository.get(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=TASK_NOT_FOUND)
        return serialize_task(task)

    @app.put("/tasks/{task_id}")
    def update_task(
        task_id: str,
        request: TaskUpdateRequest,
        repository: TaskRepository = Depends(get_task_repository),
    ):
        task = repository.update(task_id, request.to_fields())
        if task is None:
            raise HTTPException(status_code=404, detail=TASK_NOT_FOUND)
        return serialize_task(task)

    @app.patch("/tasks/{task_id}/toggle")
    def toggle_task(task_id: str, repository: TaskRepository = Depends(get_task_repository)):
        task = repository.toggle_completion(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=TASK_NOT_FOUND)
        return serialize_task(task)

    @app.post("/tasks/{task_id}/restore")
    def restore_task(task_id: str, repository: TaskRepository = Depends(get_task_repository)):
        task = repository.restore(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=TASK_NOT_FOUND)
        return serialize_task(task)

    @app.delete("/tasks/{task_id}")
    def delete_task(
        task_id: str,
        permanent: bool = Query(False),
        repository: TaskRepository = Depends(get_task_repository),
        settings: Settings = Depends(get_settings),
    ):
        """Soft-delete a task, or remove it for good with `permanent=true` (not in production)."""
        if permanent:
            if settings.is_production:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Permanent deletion is not allowed in production",
                )
            task = repository.purge(task_id)
            message = "Task permanently deleted"
        else:
            task = repository.soft_delete(task_id)
            message = "Task deleted successfully"
        if task is None:
            raise HTTPException(status_code=404, detail=TASK_NOT_FOUND)
        return {"message": message, "task": serialize_task(task)}


INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>Task Manager</title>
    <style>
        body { font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }
        button { padding: 6px 12px; margin: 2px; cursor: pointer; }
        input, select { padding: 6px; margin: 2px; }
        .section { margin: 20px 0; padding: 15px; border: 1px solid #ddd; border-radius: 5px; }
        table { width: 100%; border-collapse: collapse; margin-top: 10px; }
        th, td { padding: 8px; text-align: left; border-bottom: 1px solid #ddd; }
        th { background-color: #f2f2f2; }
        .done { text-decoration: line-through; color: #888; }
        .overdue { color: #c00; }
    </style>
</head>
<body>
    <h1>Task Manager</h1>

    <div class="section">
        <h2>New task</h2>
        <input id="title" placeholder="What needs to be done?" size="40">
        <select id="priority">
            <option value="low">low</option>
            <option value="medium" selected>medium</option>
            <option value="high">high</option>
            <option value="urgent">urgent</option>
        </select>
        <input id="tags" placeholder="tags, comma separated">
        <button onclick="createTask()">Add</button>
    </div>

    <div class="section">
        <h2>Tasks</h2>
        <select id="filter" onchange="loadTasks()">
            <option value="">All</option>
            <option value="false">Pending</option>
            <option value="true">Completed</option>
        </select>
        <input id="search" placeholder="Search" onchange="loadTasks()">
        <div id="status"></div>
        <div id="tasks"></div>
    </div>

    <script>
        function escapeHtml(value) {
            const div = document.createElement('div');
            div.textContent = String(value);
            return div.innerHTML.replace(/"/g, '&quot;').replace(/'/g, '&#39;');
        }

        function showError(data, fallback) {
            const status = document.getElementById('status');
            if (data && data.error) {
                const details = data.error.errors ? Object.values(data.error.errors).join('; ') : '';
                status.textContent = 'Error: ' + data.error.message + (details ? ' (' + details + ')' : '');
            } else {
                status.textContent = 'Error: ' + ((data && data.detail) || fallback);
            }
        }

        async function createTask() {
            const title = document.getElementById('title').value;
            const priority = document.getElementById('priority').value;
            const tags = document.getElementById('tags').value.split(',');
            try {
                const response = await fetch('/tasks', {
                    method: 'POST',
                    headers: { 'Content-Type': 'application/json' },
                    body: JSON.stringify({ title, priority, tags })
                });
                const data = await response.json();
                if (!response.ok) {
                    showError(data, response.statusText);
                    return;
                }
                document.getElementById('title').value = '';
                document.getElementById('tags').value = '';
                loadTasks();
            } catch (error) {
                showError(null, error.message);
            }
        }

        async function toggleTask(id) {
            await fetch(`/tasks/${id}/toggle`, { method: 'PATCH' });
            loadTasks();
        }

        async function deleteTask(id) {
            await fetch(`/tasks/${id}`, { method: 'DELETE' });
            loadTasks();
        }

        async function loadTasks() {
            const tasksDiv = document.getElementById('tasks');
            const params = new URLSearchParams({ limit: '100' });
            const completed = document.getElementById('filter').value;
            const search = document.getElementById('search').value;
            if (completed) params.set('completed', completed);
            if (search) params.set('search', search);
            try {
                const response = await fetch('/tasks?' + params.toString());
                const data = await response.json();
                if (!response.ok) {
                    showError(data, response.statusText);
                    return;
                }
                document.getElementById('status').innerHTML = `${data.pagination.totalCount} tasks`;
                if (data.data.length === 0) {
                    tasksDiv.innerHTML = '<p>No tasks yet.</p>';
                    return;
                }
                let html = '<table><tr><th></th><th>Task</th><th>Priority</th><th>Tags</th><th></th></tr>';
                data.data.forEach(task => {
                    const cls = task.completed ? 'done' : (task.isOverdue ? 'overdue' : '');
                    html += `<tr>
                        <td><input type="checkbox" ${task.completed ? 'checked' : ''} onclick="toggleTask('${task.id}')"></td>
                        <td class="${cls}">${escapeHtml(task.title)}</td>
                        <td>${escapeHtml(task.priority)}</td>
                        <td>${task.tags.map(escapeHtml).join(', ')}</td>
                        <td><button onclick="deleteTask('${task.id}')">Delete</button></td>
                    </tr>`;
                });
                html += '</table>';
                tasksDiv.innerHTML = html;
            } catch (error) {
                showError(null, error.message);
            }
        }

        loadTasks();
    </script>
</body>
</html>
"""

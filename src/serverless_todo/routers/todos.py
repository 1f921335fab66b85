from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status

from ..auth import get_subject
from ..schemas import TodoOut, TodoPage
from ..service import TodoService

router = APIRouter(
    prefix="/todos",
    tags=["todos"],
    dependencies=[Depends(get_subject)],
)


def get_service(request: Request) -> TodoService:
    """
    Dependency returning the TodoService built once for the app.
    """
    return request.app.state.container.service


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=TodoPage,
    summary="List Todos",
    description=(
        "List todos one page at a time.\n\n"
        "Query parameters:\n"
        "- limit: page size, clamped to 1..100; 20 when absent or not an integer\n"
        "- cursor: opaque nextCursor value from the previous page\n\n"
        "Returns the page items and nextCursor (null once the listing is exhausted)."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid cursor"},
    },
)
def list_todos(
    limit: Optional[str] = Query(None, description="Maximum number of items to return"),
    cursor: Optional[str] = Query(None, description="Opaque pagination cursor"),
    service: TodoService = Depends(get_service),
) -> TodoPage:
    """
    List todos with cursor pagination.
    """
    page = service.list(limit, cursor)
    return TodoPage(items=[TodoOut(**it) for it in page.items], next_cursor=page.next_cursor)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item and schedule its aging. Body: {title, dueDate?}.",
    responses={
        201: {"description": "Todo created successfully"},
        400: {"description": "Invalid JSON or missing title"},
    },
)
def create_todo(
    payload: Optional[Dict[str, Any]] = Body(None),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Create a new Todo.
    """
    created = service.create(payload)
    return TodoOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
def get_todo(todo_id: str, service: TodoService = Depends(get_service)) -> TodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    return TodoOut(**service.get(todo_id))


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description=(
        "Partially update a Todo item. Any non-empty subset of title, completed and dueDate "
        "is accepted; other fields are ignored."
    ),
    responses={
        200: {"description": "Todo updated"},
        400: {"description": "Invalid JSON or no updatable fields"},
        404: {"description": "Todo not found"},
    },
)
def update_todo(
    todo_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    return TodoOut(**service.update(todo_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete Todo",
    description="Delete a Todo item by ID. Deleting a missing item returns 404, also on repeat deletes.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
def delete_todo(todo_id: str, service: TodoService = Depends(get_service)) -> Response:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    service.delete(todo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

"""
Socket.IO transport.

Every event is acknowledged with the handler's return value: the result on
success, ``{"error": ..., "code": ...}`` on failure. Successful mutations are
also broadcast to every connected client (not only the task owner), so other
open sessions can refresh.
"""
import logging
from http.cookies import CookieError, SimpleCookie
from typing import Any, Callable, Dict, Optional

import socketio
from starlette.concurrency import run_in_threadpool

import errors
from context import AppContext
from dependencies import resolve_user
from schemas import LoginRequest, RegisterRequest, TaskCreate, TaskUpdate, parse_payload

logger = logging.getLogger(__name__)


def create_socket_server(context: AppContext) -> socketio.AsyncServer:
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=context.settings.cors_origins,
    )


def _cookie_token(environ: dict, cookie_name: str) -> Optional[str]:
    raw = environ.get("HTTP_COOKIE")
    if not raw:
        return None
    cookie = SimpleCookie()
    try:
        cookie.load(raw)
    except CookieError:
        return None
    morsel = cookie.get(cookie_name)
    return morsel.value if morsel else None


def _require_id(data: Any) -> int:
    value = data.get("id") if isinstance(data, dict) else None
    # int() would turn True into 1 and 2.9 into 2.
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise errors.ValidationError("A numeric id is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise errors.ValidationError("A numeric id is required")


class RealtimeGateway:
    """Maps Socket.IO events onto AuthService/TaskService calls."""

    def __init__(self, context: AppContext, sio: socketio.AsyncServer):
        self.context = context
        self.sio = sio
        # Token captured at connect time (auth payload or cookie), per sid.
        self.connection_tokens: Dict[str, str] = {}
        self.handlers: Dict[str, Callable] = {
            "auth:register": self.auth_register,
            "auth:login": self.auth_login,
            "auth:logout": self.auth_logout,
            "auth:me": self.auth_me,
            "tasks:get": self.tasks_get,
            "tasks:getById": self.tasks_get_by_id,
            "tasks:create": self.tasks_create,
            "tasks:update": self.tasks_update,
            "tasks:delete": self.tasks_delete,
            "attachments:delete": self.attachments_delete,
        }

    def register(self) -> None:
        self.sio.on("connect", handler=self.on_connect)
        self.sio.on("disconnect", handler=self.on_disconnect)
        for event in self.handlers:
            self.sio.on(event, handler=self._bind(event))

    def _bind(self, event: str):
        async def handler(sid, data=None):
            return await self.dispatch(event, sid, data)
        return handler

    async def on_connect(self, sid, environ, auth=None):
        token = None
        if isinstance(auth, dict):
            token = auth.get("token")
        token = token or _cookie_token(environ or {}, self.context.settings.cookie_name)
        if token:
            self.connection_tokens[sid] = token
        logger.debug("Socket connected sid=%s authenticated=%s", sid, bool(token))

    async def on_disconnect(self, sid, *args):
        self.connection_tokens.pop(sid, None)
        logger.debug("Socket disconnected sid=%s", sid)

    async def dispatch(self, event: str, sid: str, data: Any = None):
        handler = self.handlers[event]
        try:
            return await handler(sid, data)
        except errors.TaskTrackerError as exc:
            return exc.to_payload()
        except Exception:
            logger.exception("Socket event %s failed (sid=%s)", event, sid)
            return errors.InternalError().to_payload()

    def _token_for(self, sid: str, data: Any) -> Optional[str]:
        if isinstance(data, dict) and data.get("token"):
            return data["token"]
        return self.connection_tokens.get(sid)

    async def _run(self, sid: str, data: Any, operation: Callable, authenticated: bool = True):
        """Run ``operation(db, user)`` in the threadpool with a fresh session."""
        token = self._token_for(sid, data)

        def unit_of_work():
            with self.context.session() as db:
                user = resolve_user(db, self.context.tokens, token) if authenticated else None
                return operation(db, user)

        return await run_in_threadpool(unit_of_work)

    # --- Auth events ---
    async def auth_register(self, sid, data):
        payload = parse_payload(RegisterRequest, data)
        result = await self._run(sid, data, lambda db, _: self.context.auth_service(db).register(payload), False)
        return {"user": result.user.model_dump(), "token": result.token}

    async def auth_login(self, sid, data):
        payload = parse_payload(LoginRequest, data)
        result = await self._run(sid, data, lambda db, _: self.context.auth_service(db).login(payload), False)
        return {"user": result.user.model_dump(), "token": result.token}

    async def auth_logout(self, sid, data):
        self.connection_tokens.pop(sid, None)
        return {"message": "Logout successful"}

    async def auth_me(self, sid, data):
        user = await self._run(sid, data, lambda db, user: self.context.auth_service(db).me(user))
        return {"user": user.model_dump()}

    # --- Task events ---
    # Payloads are parsed inside the unit of work so that authentication is
    # checked first, as on the HTTP side.
    async def tasks_get(self, sid, data):
        def operation(db, user):
            status = (data.get("status") if isinstance(data, dict) else None) or "all"
            return self.context.task_service(db).list_tasks(user, status)

        tasks = await self._run(sid, data, operation)
        return [t.model_dump(mode="json", by_alias=True) for t in tasks]

    async def tasks_get_by_id(self, sid, data):
        def operation(db, user):
            return self.context.task_service(db).get_task(user, _require_id(data))

        task = await self._run(sid, data, operation)
        return task.model_dump(mode="json", by_alias=True)

    async def tasks_create(self, sid, data):
        def operation(db, user):
            return self.context.task_service(db).create_task(user, parse_payload(TaskCreate, data))

        task = await self._run(sid, data, operation)
        body = task.model_dump(mode="json", by_alias=True)
        await self.sio.emit("tasks:created", body)
        return body

    async def tasks_update(self, sid, data):
        def operation(db, user):
            task_id = _require_id(data)
            fields = {k: v for k, v in data.items() if k not in ("id", "token")}
            return self.context.task_service(db).update_task(user, task_id, parse_payload(TaskUpdate, fields))

        task = await self._run(sid, data, operation)
        body = task.model_dump(mode="json", by_alias=True)
        await self.sio.emit("tasks:updated", body)
        return body

    async def tasks_delete(self, sid, data):
        def operation(db, user):
            task_id = _require_id(data)
            self.context.task_service(db).delete_task(user, task_id)
            return task_id

        task_id = await self._run(sid, data, operation)
        await self.sio.emit("tasks:deleted", {"id": task_id})
        return {"success": True}

    async def attachments_delete(self, sid, data):
        def operation(db, user):
            attachment_id = _require_id(data)
            self.context.task_service(db).delete_attachment(user, attachment_id)
            return attachment_id

        attachment_id = await self._run(sid, data, operation)
        await self.sio.emit("attachments:deleted", {"id": attachment_id})
        return {"success": True}
